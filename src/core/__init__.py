"""
Core business logic for media ingestion.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or any backend client. Backends are reached through the small protocols
in media.router, so routing and retry behaviour can be tested with fakes.
"""
