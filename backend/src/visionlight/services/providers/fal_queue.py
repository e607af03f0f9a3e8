"""Fal queue adapter (Kling and Veo video models)."""

from typing import Any

import httpx
import structlog

from visionlight.services.exceptions import ProviderPermanentError
from visionlight.services.providers.base import (
    PollResult,
    ProviderAdapter,
    SubmitHandle,
    SubmitRequest,
    send,
)

logger = structlog.get_logger()

# model → (text-to-video endpoint, image-to-video endpoint)
FAL_ENDPOINTS: dict[str, tuple[str, str]] = {
    "kling-2.5": (
        "fal-ai/kling-video/v2.5-turbo/pro/text-to-video",
        "fal-ai/kling-video/v2.5-turbo/pro/image-to-video",
    ),
    "kling-3": (
        "fal-ai/kling-video/v3/pro/text-to-video",
        "fal-ai/kling-video/v3/pro/image-to-video",
    ),
    "veo-3": ("fal-ai/veo3.1", "fal-ai/veo3.1/image-to-video"),
}


class FalQueueAdapter(ProviderAdapter):
    """Submit to the Fal request queue and poll its status URL.

    A COMPLETED status needs a second request to `response_url` for the payload.
    """

    name = "fal"

    def __init__(
        self,
        api_key: str,
        queue_url: str = "https://queue.fal.run",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.queue_url = queue_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Key {self.api_key}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _endpoint(self, request: SubmitRequest) -> str:
        text_endpoint, image_endpoint = FAL_ENDPOINTS.get(request.model, FAL_ENDPOINTS["kling-2.5"])
        return image_endpoint if request.reference_image_url else text_endpoint

    def _payload(self, request: SubmitRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {"prompt": request.prompt, "aspect_ratio": request.aspect_ratio}
        duration = request.duration_seconds or 5
        if request.model.startswith("veo"):
            payload["duration"] = f"{duration}s"
            payload["resolution"] = request.resolution or "720p"
            payload["generate_audio"] = True
            if request.reference_image_url:
                payload["image_url"] = request.reference_image_url
        else:
            payload["duration"] = str(duration)
            if request.reference_image_url:
                payload["start_image_url"] = request.reference_image_url
        return payload

    async def submit(self, request: SubmitRequest) -> SubmitHandle:
        """Enqueue a request.

        Raises:
            ProviderTransientError: Network failure, 429 or 5xx
            ProviderPermanentError: Rejected request or missing request_id
        """
        if not self.api_key:
            raise ProviderPermanentError("fal: FAL_KEY not configured")

        endpoint = self._endpoint(request)
        async with self._client() as client:
            data = await send(
                client,
                "POST",
                f"{self.queue_url}/{endpoint}",
                self.name,
                json=self._payload(request),
                headers=self.headers,
            )

        request_id = data.get("request_id") if isinstance(data, dict) else None
        if not request_id:
            raise ProviderPermanentError("fal: submission response has no request_id")

        status_url = data.get("status_url") or f"{self.queue_url}/{endpoint}/requests/{request_id}/status"
        logger.info("provider.fal.submitted", request_id=request_id, endpoint=endpoint)
        return SubmitHandle(external_id=request_id, status_url=status_url)

    async def poll(self, handle: SubmitHandle, current_progress: int = 0) -> PollResult:
        """Read the queue status and, when completed, the result payload."""
        if not handle.status_url:
            raise ProviderPermanentError(f"fal: job {handle.external_id} has no status URL")

        async with self._client() as client:
            status = await send(client, "GET", handle.status_url, self.name, headers=self.headers)
            state = status.get("status") if isinstance(status, dict) else None

            if state == "COMPLETED":
                response_url = status.get("response_url")
                if not response_url:
                    return PollResult.failed("Completed but no response URL returned")
                result = await send(client, "GET", response_url, self.name, headers=self.headers)
                url = _extract_video_url(result)
                if not url:
                    return PollResult.failed("Completed but no video URL found in response")
                return PollResult.done(url)

        if state == "FAILED":
            return PollResult.failed(status.get("error"))
        if state == "IN_QUEUE":
            return PollResult.pending(max(10, current_progress))
        if state == "IN_PROGRESS":
            return PollResult.pending(min(90, current_progress + 5))
        return PollResult.pending()


def _extract_video_url(result: Any) -> str | None:
    """Result shapes differ across Fal models."""
    if not isinstance(result, dict):
        return None
    video = result.get("video")
    if isinstance(video, dict) and video.get("url"):
        return video["url"]
    return result.get("url") or result.get("file_url")
