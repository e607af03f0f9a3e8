"""Cloudinary client for durable asset storage (signed REST uploads)."""

import hashlib
import time
from typing import Any
from uuid import UUID

import httpx
import structlog

from visionlight.services.exceptions import StorageError

logger = structlog.get_logger()


def sign_params(params: dict[str, Any], api_secret: str) -> str:
    """Compute a Cloudinary upload signature.

    Parameters are sorted by name, joined as `key=value` pairs with `&`, the
    API secret is appended and the result is SHA-1 hashed.

    Args:
        params: Parameters to sign (file, api_key, resource_type excluded)
        api_secret: Cloudinary API secret

    Returns:
        Hex-encoded SHA-1 signature
    """
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


def context_value(value: str) -> str:
    """Escape `=` and `|`, the separators of Cloudinary context metadata."""
    return value.replace("=", "\\=").replace("|", "\\|")


class CloudinaryStorage:
    """Durable asset storage backed by Cloudinary."""

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        root_folder: str = "visionlight",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Cloudinary client.

        Args:
            cloud_name: Cloudinary cloud name (from CLOUDINARY_CLOUD_NAME env var)
            api_key: API key (from CLOUDINARY_API_KEY env var)
            api_secret: API secret (from CLOUDINARY_API_SECRET env var)
            root_folder: Top-level folder for every upload
            timeout: Request timeout in seconds (video re-hosting is slow)
            transport: Optional httpx transport (tests)
        """
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.root_folder = root_folder
        self.timeout = timeout
        self._transport = transport

    def folder_for(self, user_id: UUID | str, resource_type: str) -> str:
        """Per-user folder, e.g. visionlight/user_<id>/videos."""
        return f"{self.root_folder}/user_{user_id}/{resource_type}s"

    async def upload(
        self,
        data: bytes | str,
        folder: str,
        public_id: str | None = None,
        resource_type: str = "auto",
        caption: str | None = None,
    ) -> str:
        """Upload bytes or re-host a remote URL.

        Args:
            data: Raw file bytes, or an http(s) URL Cloudinary fetches itself
            folder: Destination folder
            public_id: Stable asset name inside the folder (optional)
            resource_type: "image", "video", "raw" or "auto"
            caption: Caption/alt text stored as context metadata

        Returns:
            HTTPS URL of the stored asset

        Raises:
            StorageError: Credentials missing, network failure or rejected upload
        """
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise StorageError("Cloudinary credentials not configured")

        params: dict[str, Any] = {
            "folder": folder,
            "public_id": public_id,
            "timestamp": int(time.time()),
        }
        if caption:
            escaped = context_value(caption)
            params["context"] = f"caption={escaped}|alt={escaped}"
        form = {key: str(value) for key, value in params.items() if value not in (None, "")}
        form["api_key"] = self.api_key
        form["signature"] = sign_params(params, self.api_secret)

        url = f"https://api.cloudinary.com/v1_1/{self.cloud_name}/{resource_type}/upload"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                if isinstance(data, str):
                    response = await client.post(url, data={**form, "file": data})
                else:
                    response = await client.post(
                        url, data=form, files={"file": (public_id or "upload", data)}
                    )
        except httpx.TimeoutException as e:
            raise StorageError(f"Upload timeout after {self.timeout}s: {e}") from e
        except httpx.TransportError as e:
            raise StorageError(f"Network error: {e}") from e

        if response.status_code >= 400:
            raise StorageError(f"Upload rejected ({response.status_code}): {response.text[:300]}")

        try:
            secure_url = response.json().get("secure_url")
        except ValueError as e:
            raise StorageError("Upload response is not JSON") from e
        if not secure_url:
            raise StorageError("Upload response has no secure_url")

        logger.info("storage.upload.completed", folder=folder, public_id=public_id)
        return secure_url
