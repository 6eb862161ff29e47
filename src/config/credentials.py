"""
Per-backend credential sets.

Settings is a flat bag of environment variables; the upload clients want
one small, immutable value each. BackendCredentialSet is built once at
startup from Settings and handed to the clients, never mutated afterwards.
"""

from dataclasses import dataclass

from .settings import Settings


@dataclass(frozen=True)
class StreamCredentials:
    """Cloudflare Stream account access."""
    account_id: str = ""
    api_token: str = ""
    customer_subdomain: str = ""
    api_base_url: str = "https://api.cloudflare.com/client/v4"

    @property
    def is_configured(self) -> bool:
        return bool(self.account_id and self.api_token and self.customer_subdomain)

    @property
    def endpoint(self) -> str:
        return f"{self.api_base_url}/accounts/{self.account_id}/stream"


@dataclass(frozen=True)
class ImagesCredentials:
    """Cloudflare Images account access."""
    account_id: str = ""
    api_token: str = ""
    account_hash: str = ""
    delivery_url: str = "https://imagedelivery.net"
    api_base_url: str = "https://api.cloudflare.com/client/v4"

    @property
    def is_configured(self) -> bool:
        return bool(self.account_id and self.api_token and self.account_hash)

    @property
    def endpoint(self) -> str:
        return f"{self.api_base_url}/accounts/{self.account_id}/images/v1"


@dataclass(frozen=True)
class ObjectStoreCredentials:
    """R2 (S3-compatible) bucket access."""
    access_key_id: str = ""
    secret_access_key: str = ""
    bucket_name: str = ""
    endpoint_url: str = ""
    public_base_url: str = ""
    region: str = "auto"  # R2 uses 'auto' for region

    @property
    def is_configured(self) -> bool:
        return bool(
            self.access_key_id
            and self.secret_access_key
            and self.endpoint_url
            and self.bucket_name
            and self.public_base_url
        )


@dataclass(frozen=True)
class BackendCredentialSet:
    """Credentials for all three backends."""
    stream: StreamCredentials
    images: ImagesCredentials
    object_store: ObjectStoreCredentials

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendCredentialSet":
        return cls(
            stream=StreamCredentials(
                account_id=settings.cloudflare_account_id,
                api_token=settings.cloudflare_stream_api_token,
                customer_subdomain=settings.cloudflare_stream_customer_subdomain,
                api_base_url=settings.cloudflare_api_base_url,
            ),
            images=ImagesCredentials(
                account_id=settings.cloudflare_account_id,
                api_token=settings.cloudflare_images_api_token,
                account_hash=settings.cloudflare_images_account_hash,
                delivery_url=settings.cloudflare_images_delivery_url.rstrip("/"),
                api_base_url=settings.cloudflare_api_base_url,
            ),
            object_store=ObjectStoreCredentials(
                access_key_id=settings.cloudflare_r2_access_key_id,
                secret_access_key=settings.cloudflare_r2_secret_access_key,
                bucket_name=settings.cloudflare_r2_bucket_name,
                endpoint_url=settings.r2_endpoint,
                public_base_url=settings.cloudflare_r2_public_url.rstrip("/"),
            ),
        )

    def configuration_status(self) -> dict[str, bool]:
        return {
            "stream": self.stream.is_configured,
            "images": self.images.is_configured,
            "r2": self.object_store.is_configured,
        }
