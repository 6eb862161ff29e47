"""
Media classification by file name and by URL.

Pure functions, no I/O. Unknown inputs fall back to MediaKind.FILE so the
generic object store always has a chance to take them.
"""

from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

from .models import MediaKind

VIDEO_EXTENSIONS = frozenset({"mp4", "mov", "avi", "mkv", "webm", "m4v"})
IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "heic", "heif"})

STREAM_PLAYBACK_DOMAIN = "cloudflarestream.com"
IMAGES_DELIVERY_DOMAIN = "imagedelivery.net"

CONTENT_TYPES = {
    # videos
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "webm": "video/webm",
    "m4v": "video/x-m4v",
    # images
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    # other
    "pdf": "application/pdf",
    "json": "application/json",
    "txt": "text/plain",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

UrlRule = tuple[Callable[[str], bool], MediaKind]


def file_extension(file_name: str) -> Optional[str]:
    """Lower-cased extension without the dot, or None."""
    base = file_name.rsplit("/", 1)[-1]
    if "." not in base:
        return None
    ext = base.rsplit(".", 1)[-1].lower()
    return ext or None


def classify_by_name(file_name: str) -> MediaKind:
    ext = file_extension(file_name)
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    return MediaKind.FILE


def content_type_for(file_name: str) -> str:
    ext = file_extension(file_name)
    if ext is None:
        return DEFAULT_CONTENT_TYPE
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


def _host_matches(hosts: Iterable[str]) -> Callable[[str], bool]:
    markers = tuple(h.lower() for h in hosts if h)

    def predicate(url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return any(marker in host for marker in markers)

    return predicate


def _path_has_image_extension(url: str) -> bool:
    path = urlparse(url).path
    return file_extension(path) in IMAGE_EXTENSIONS


def build_url_rules(
    stream_hosts: Iterable[str] = (),
    image_hosts: Iterable[str] = (),
) -> list[UrlRule]:
    """
    Ordered (predicate, kind) table for classify_by_url.

    Configured hosts (customer subdomain, custom delivery domain) are
    checked alongside Cloudflare's default domains.
    """
    return [
        (_host_matches((STREAM_PLAYBACK_DOMAIN, *stream_hosts)), MediaKind.VIDEO),
        (_host_matches((IMAGES_DELIVERY_DOMAIN, *image_hosts)), MediaKind.IMAGE),
        (_path_has_image_extension, MediaKind.IMAGE),
    ]


DEFAULT_URL_RULES = build_url_rules()


def classify_by_url(url: str, rules: Optional[list[UrlRule]] = None) -> MediaKind:
    """First matching rule wins; anything else is a generic file."""
    for predicate, kind in rules if rules is not None else DEFAULT_URL_RULES:
        if predicate(url):
            return kind
    return MediaKind.FILE
