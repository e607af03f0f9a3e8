"""OpenAI video API adapter (Sora 2)."""

import httpx
import structlog

from visionlight.services.exceptions import ProviderPermanentError
from visionlight.services.providers.base import (
    PollResult,
    ProviderAdapter,
    SubmitHandle,
    SubmitRequest,
    download,
    send,
)

logger = structlog.get_logger()


class OpenAIVideoAdapter(ProviderAdapter):
    """Multipart submission to /videos, polling /videos/{id}."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        upload_timeout: float = 600.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.upload_timeout = upload_timeout
        self.timeout = timeout
        self._transport = transport

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def submit(self, request: SubmitRequest) -> SubmitHandle:
        """Upload the prompt and optional reference frame.

        The reference frame must already match `width`x`height`; the API
        rejects mismatched sizes.

        Raises:
            ProviderTransientError: Network failure, 429 or 5xx
            ProviderPermanentError: Rejected request or missing video id
        """
        if not self.api_key:
            raise ProviderPermanentError("openai: OPENAI_API_KEY not configured")

        form = {
            "prompt": request.prompt,
            "model": request.model or "sora-2",
            "seconds": str(request.duration_seconds or 4),
            "size": f"{request.width}x{request.height}",
        }
        # Plain fields go in as (None, value) parts so the body is always multipart
        files: dict[str, tuple] = {key: (None, value) for key, value in form.items()}
        if request.reference_image:
            files["input_reference"] = ("ref.jpg", request.reference_image, "image/jpeg")

        async with httpx.AsyncClient(timeout=self.upload_timeout, transport=self._transport) as client:
            data = await send(
                client,
                "POST",
                f"{self.base_url}/videos",
                self.name,
                files=files,
                headers=self.headers,
            )

        video_id = data.get("id") if isinstance(data, dict) else None
        if not video_id:
            raise ProviderPermanentError("openai: submission response has no video id")

        logger.info("provider.openai.submitted", video_id=video_id, model=form["model"])
        return SubmitHandle(external_id=video_id)

    async def poll(self, handle: SubmitHandle, current_progress: int = 0) -> PollResult:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            data = await send(
                client,
                "GET",
                f"{self.base_url}/videos/{handle.external_id}",
                self.name,
                headers=self.headers,
            )

        status = data.get("status") if isinstance(data, dict) else None
        if status == "completed":
            return PollResult.done(f"{self.base_url}/videos/{handle.external_id}/content")
        if status == "failed":
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            return PollResult.failed(message)

        progress = data.get("progress") if isinstance(data, dict) else None
        return PollResult.pending(int(progress) if isinstance(progress, (int, float)) else None)

    async def fetch_output(self, url: str) -> bytes:
        """Download a finished video; the content endpoint requires the API key."""
        async with httpx.AsyncClient(timeout=self.upload_timeout, transport=self._transport) as client:
            return await download(client, url, self.name, headers=self.headers)
