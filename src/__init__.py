"""
Media ingestion for the trick catalog.

This package contains the complete application:
- core: Framework-agnostic media routing, classification and retries
- infrastructure: Cloudflare Stream, Images and R2 clients
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
