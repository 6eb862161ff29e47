"""
Cloudflare Images client.

Uploads are a single multipart request, either carrying the file itself
or a source URL that Cloudflare fetches (used by the migration). There is
no retry layer: the request is not chunked, so a failure is reported
straight back to the caller.

Delivered images are addressed as {delivery}/{account_hash}/{image_id}/{variant};
the variants below must exist on the account.

Docs: https://developers.cloudflare.com/images/
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlencode, urlparse

import httpx

from ...config.credentials import ImagesCredentials
from ...core.media.classifier import IMAGES_DELIVERY_DOMAIN, content_type_for
from ...core.media.errors import (
    NotConfiguredError,
    ProtocolError,
    TransportError,
    UploadFailedError,
)

logger = logging.getLogger(__name__)

# thumbnail 200x200, medium 800x800, large 1920x1920, public as uploaded
IMAGE_VARIANTS = ("thumbnail", "medium", "large", "public")
DEFAULT_VARIANT = "public"
UPLOAD_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class ImageUpload:
    """An uploaded image and its variant URLs."""
    image_id: str
    variants: dict[str, str] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return self.variants[DEFAULT_VARIANT]


class ImagesClient:
    """Upload, address and delete images on Cloudflare Images."""

    def __init__(
        self,
        credentials: ImagesCredentials,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = UPLOAD_TIMEOUT_SECONDS,
    ) -> None:
        self._credentials = credentials
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

        if not credentials.is_configured:
            logger.warning("Cloudflare Images credentials not configured")

    @property
    def is_configured(self) -> bool:
        return self._credentials.is_configured

    @property
    def delivery_host(self) -> str:
        return urlparse(self._credentials.delivery_url).hostname or ""

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def upload_image(
        self,
        path: Path,
        *,
        file_name: Optional[str] = None,
        image_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        require_signed_urls: Optional[bool] = None,
    ) -> ImageUpload:
        """
        Upload a local image file.

        Raises:
            NotConfiguredError: credentials missing
            TransportError: network failure or unreadable file
            UploadFailedError: backend rejected the upload
            ProtocolError: backend accepted it but returned no id
        """
        self._ensure_configured()
        name = file_name or path.name
        fields = self._form_fields(image_id, metadata, require_signed_urls)

        logger.info("Uploading image to Cloudflare Images", extra={"image_filename": name})

        try:
            with open(path, "rb") as fh:
                response = await self._http.post(
                    self._credentials.endpoint,
                    headers=self._auth_headers(),
                    data=fields,
                    files={"file": (name, fh, content_type_for(name))},
                )
        except httpx.HTTPError as e:
            raise TransportError(f"Image upload failed: {e}") from e
        except OSError as e:
            raise TransportError(f"Image file not readable: {e}") from e

        return self._parse_upload(response)

    async def upload_from_url(
        self,
        source_url: str,
        *,
        image_id: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
        require_signed_urls: Optional[bool] = None,
    ) -> ImageUpload:
        """Have Cloudflare fetch and ingest an image from a public URL."""
        self._ensure_configured()
        fields = self._form_fields(image_id, metadata, require_signed_urls)
        fields["url"] = source_url

        logger.info("Uploading image from URL", extra={"source_url": source_url})

        try:
            # (None, value) parts keep the body multipart without a file
            response = await self._http.post(
                self._credentials.endpoint,
                headers=self._auth_headers(),
                files={name: (None, value) for name, value in fields.items()},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Image upload from URL failed: {e}") from e

        return self._parse_upload(response)

    def _form_fields(
        self,
        image_id: Optional[str],
        metadata: Optional[dict[str, str]],
        require_signed_urls: Optional[bool],
    ) -> dict[str, str]:
        fields: dict[str, str] = {}
        if image_id:
            fields["id"] = image_id
        if require_signed_urls is not None:
            fields["requireSignedURLs"] = "true" if require_signed_urls else "false"
        if metadata:
            fields["metadata"] = json.dumps(metadata)
        return fields

    def _parse_upload(self, response: httpx.Response) -> ImageUpload:
        if not response.is_success:
            raise UploadFailedError(
                f"Image upload rejected (status {response.status_code}): {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProtocolError("Image upload response was not JSON") from e

        if not payload.get("success"):
            errors = payload.get("errors") or []
            message = errors[0].get("message") if errors else None
            raise UploadFailedError(message or "Image upload rejected without an error message")

        image_id = (payload.get("result") or {}).get("id")
        if not image_id:
            raise ProtocolError("Image upload response did not include an image id")

        logger.info("Image uploaded", extra={"image_id": image_id})
        return self.build_upload(image_id)

    def build_upload(self, image_id: str) -> ImageUpload:
        return ImageUpload(
            image_id=image_id,
            variants={variant: self.get_image_url(image_id, variant) for variant in IMAGE_VARIANTS},
        )

    def get_image_url(
        self,
        image_id: str,
        variant: str = DEFAULT_VARIANT,
        *,
        format: Optional[str] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        fit: Optional[str] = None,
        quality: Optional[int] = None,
    ) -> str:
        """
        Delivery URL for an image variant with optional transformations.

        Args:
            format: auto, webp, avif or json
            fit: scale-down, contain, cover, crop or pad
            quality: 1-100
        """
        url = f"{self._credentials.delivery_url}/{self._credentials.account_hash}/{image_id}/{variant}"
        params = {}
        if format:
            params["format"] = format
        if width:
            params["width"] = str(width)
        if height:
            params["height"] = str(height)
        if fit:
            params["fit"] = fit
        if quality:
            params["quality"] = str(quality)
        return f"{url}?{urlencode(params)}" if params else url

    def owns_url(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        return IMAGES_DELIVERY_DOMAIN in host or host == self.delivery_host.lower()

    def extract_image_id(self, url: str) -> Optional[str]:
        """Image id from {delivery}/{account_hash}/{image_id}/{variant}."""
        if not self.owns_url(url):
            return None
        parsed = urlparse(url)
        segments = [s for s in parsed.path.split("/") if s]

        # a custom delivery URL may carry its own path before the account hash
        if (parsed.hostname or "").lower() == self.delivery_host.lower():
            prefix = [s for s in urlparse(self._credentials.delivery_url).path.split("/") if s]
            if segments[:len(prefix)] != prefix:
                return None
            segments = segments[len(prefix):]

        return segments[1] if len(segments) >= 2 else None

    async def delete_image(self, image_id: str) -> bool:
        """Delete an image. A 404 counts as success."""
        if not self._credentials.is_configured:
            logger.warning("Cannot delete image, Images not configured", extra={"image_id": image_id})
            return False

        try:
            response = await self._http.delete(
                f"{self._credentials.endpoint}/{image_id}",
                headers=self._auth_headers(),
            )
        except httpx.HTTPError as e:
            logger.error("Failed to delete image", extra={"image_id": image_id, "error": str(e)})
            return False

        if response.status_code == 404:
            logger.info("Image already absent", extra={"image_id": image_id})
            return True

        if not response.is_success:
            logger.error(
                "Failed to delete image",
                extra={"image_id": image_id, "status": response.status_code, "body": response.text},
            )
            return False

        logger.info("Deleted image", extra={"image_id": image_id})
        return True

    async def get_image_details(self, image_id: str) -> Optional[dict[str, Any]]:
        try:
            response = await self._http.get(
                f"{self._credentials.endpoint}/{image_id}",
                headers=self._auth_headers(),
            )
            response.raise_for_status()
            return response.json().get("result")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch image details", extra={"image_id": image_id, "error": str(e)})
            return None

    async def list_images(self, page: int = 1, per_page: int = 100) -> Optional[dict[str, Any]]:
        try:
            response = await self._http.get(
                self._credentials.endpoint,
                headers=self._auth_headers(),
                params={"page": page, "per_page": per_page},
            )
            response.raise_for_status()
            return response.json().get("result")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to list images", extra={"page": page, "error": str(e)})
            return None

    def _ensure_configured(self) -> None:
        if not self._credentials.is_configured:
            raise NotConfiguredError(
                "Cloudflare Images is not configured. Check CLOUDFLARE_ACCOUNT_ID, "
                "CLOUDFLARE_IMAGES_API_TOKEN and CLOUDFLARE_IMAGES_ACCOUNT_HASH"
            )

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._credentials.api_token}"}
