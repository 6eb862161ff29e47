"""
Cloudflare Images integration: single-request uploads and variant URLs.
"""

from .client import IMAGE_VARIANTS, ImagesClient, ImageUpload

__all__ = ["IMAGE_VARIANTS", "ImagesClient", "ImageUpload"]
