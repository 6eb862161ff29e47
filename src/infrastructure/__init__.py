"""
Infrastructure layer - external service integrations.

Each subdirectory wraps one Cloudflare backend:
- stream: Cloudflare Stream (resumable video uploads)
- images: Cloudflare Images (image uploads and variants)
- storage: Cloudflare R2 object storage (S3-compatible)

These wrappers translate between backend formats and our domain models.
media.py wires them into a MediaRouter.
"""
