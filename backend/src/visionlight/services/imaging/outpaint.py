"""Replicate inpainting client used to extend images to a new aspect ratio."""

import asyncio
from typing import Any
from uuid import uuid4

import httpx
import structlog

from visionlight.services.exceptions import (
    OutpaintError,
    OutpaintTimeoutError,
    ProviderError,
    StorageError,
)
from visionlight.services.providers.replicate_adapter import (
    FAILED_STATES,
    build_replicate_client,
    create_prediction,
    get_prediction,
    output_urls,
)
from visionlight.services.storage.cloudinary_client import CloudinaryStorage

logger = structlog.get_logger()

TEMP_FOLDER = "outpaint_tmp"


class ReplicateOutpainter:
    """Fills the masked area of a canvas with a Replicate inpainting model.

    Canvas and mask are uploaded to temporary storage first because the model
    takes URLs. Polling is bounded by `max_attempts`.
    """

    def __init__(
        self,
        api_token: str,
        model_ref: str,
        storage: CloudinaryStorage,
        max_attempts: int = 30,
        poll_interval: float = 1.0,
        client: Any = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize outpainter.

        Args:
            api_token: Replicate API authentication token
            model_ref: Inpainting model reference ("owner/name:version")
            storage: Storage used for the temporary canvas and mask
            max_attempts: Maximum number of status polls
            poll_interval: Seconds between polls
            client: Pre-built SDK client (tests inject a fake)
            transport: Optional httpx transport for downloading the result
        """
        self.api_token = api_token
        self.model_ref = model_ref
        self.storage = storage
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self._client = client
        self._transport = transport

    async def outpaint(self, canvas: bytes, mask: bytes, width: int, height: int) -> bytes:
        """Return the inpainted image bytes.

        Raises:
            OutpaintError: Credentials missing, upload failed or prediction failed
            OutpaintTimeoutError: Prediction still running after max_attempts polls
        """
        try:
            client = self._client or build_replicate_client(self.api_token)
        except ProviderError as e:
            raise OutpaintError(str(e)) from e

        name = uuid4().hex
        folder = f"{self.storage.root_folder}/{TEMP_FOLDER}"
        try:
            canvas_url = await self.storage.upload(canvas, folder, f"{name}_canvas", "image")
            mask_url = await self.storage.upload(mask, folder, f"{name}_mask", "image")
        except StorageError as e:
            raise OutpaintError(f"Temporary upload failed: {e}") from e

        try:
            prediction = await create_prediction(
                client, self.model_ref, {"image": canvas_url, "mask": mask_url}
            )
            prediction_id = prediction.id
            logger.info("outpaint.submitted", prediction_id=prediction_id, size=f"{width}x{height}")

            for _ in range(self.max_attempts):
                await asyncio.sleep(self.poll_interval)
                current = await get_prediction(client, prediction_id)
                if current.status == "succeeded":
                    return await self._download(current.output)
                if current.status in FAILED_STATES:
                    raise OutpaintError(f"Outpainting failed: {current.error}")
        except ProviderError as e:
            raise OutpaintError(str(e)) from e

        raise OutpaintTimeoutError(
            f"Outpainting not finished after {self.max_attempts} polls"
        )

    async def _download(self, output: Any) -> bytes:
        urls = output_urls(output)
        if not urls:
            raise OutpaintError("Outpainting returned no output")
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.get(urls[0])
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise OutpaintError(f"Downloading outpainted image failed: {e}") from e
