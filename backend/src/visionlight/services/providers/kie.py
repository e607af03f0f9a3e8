"""Kie.ai task adapter (Sora 2 served through Kie)."""

import json
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


class KieAdapter(ProviderAdapter):
    """createTask / recordInfo task API."""

    name = "kie"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.kie.ai/api/v1",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _payload(self, request: SubmitRequest) -> dict[str, Any]:
        base_model = "sora-2-pro" if request.model.endswith("-pro") else "sora-2"
        mode = "image-to-video" if request.reference_image_url else "text-to-video"
        task_input: dict[str, Any] = {
            "prompt": request.prompt,
            "aspect_ratio": "portrait" if request.aspect_ratio == "9:16" else "landscape",
            "n_frames": str(request.duration_seconds or 10),
            "remove_watermark": True,
        }
        if request.reference_image_url:
            task_input["image_urls"] = [request.reference_image_url]
        return {"model": f"{base_model}-{mode}", "input": task_input}

    async def submit(self, request: SubmitRequest) -> SubmitHandle:
        """Create a Kie task.

        Raises:
            ProviderTransientError: Network failure, 429 or 5xx
            ProviderPermanentError: Non-200 envelope code or missing taskId
        """
        if not self.api_key:
            raise ProviderPermanentError("kie: KIE_AI_API_KEY not configured")

        async with self._client() as client:
            data = await send(
                client,
                "POST",
                f"{self.base_url}/jobs/createTask",
                self.name,
                json=self._payload(request),
                headers=self.headers,
            )

        if not isinstance(data, dict) or data.get("code") != 200:
            message = data.get("msg") if isinstance(data, dict) else None
            raise ProviderPermanentError(f"kie: task creation rejected: {message}")
        task_id = (data.get("data") or {}).get("taskId")
        if not task_id:
            raise ProviderPermanentError("kie: task creation response has no taskId")

        logger.info("provider.kie.submitted", task_id=task_id)
        return SubmitHandle(external_id=task_id)

    async def poll(self, handle: SubmitHandle, current_progress: int = 0) -> PollResult:
        async with self._client() as client:
            data = await send(
                client,
                "GET",
                f"{self.base_url}/jobs/recordInfo",
                self.name,
                params={"taskId": handle.external_id},
                headers=self.headers,
            )

        record = (data.get("data") if isinstance(data, dict) else None) or {}
        state = record.get("state")

        if state == "success":
            urls = _parse_result_urls(record.get("resultJson"))
            if not urls:
                return PollResult.failed("Task succeeded but returned no result URL")
            return PollResult.done(urls[0])
        if state == "fail":
            return PollResult.failed(record.get("failMsg"))
        return PollResult.pending(min(95, current_progress + 5))


def _parse_result_urls(result_json: Any) -> list[str]:
    # resultJson arrives as a JSON-encoded string
    if isinstance(result_json, str):
        try:
            result_json = json.loads(result_json)
        except ValueError:
            return []
    if not isinstance(result_json, dict):
        return []
    urls = result_json.get("resultUrls") or []
    return [u for u in urls if isinstance(u, str) and u]
