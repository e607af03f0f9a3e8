"""Provider adapter contract and shared HTTP error classification."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from visionlight.models.job import MediaKind
from visionlight.services.exceptions import ProviderPermanentError, ProviderTransientError


class PollPhase(str, Enum):
    """Normalized provider state."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SubmitRequest:
    """Everything an adapter needs to start one generation."""

    model: str
    prompt: str
    media_kind: MediaKind
    aspect_ratio: str = "16:9"
    width: int = 1280
    height: int = 720
    duration_seconds: int | None = None
    resolution: str | None = None
    reference_image_url: str | None = None
    reference_image: bytes | None = None  # conforming JPEG, for multipart uploads
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SubmitHandle:
    """Opaque provider job reference persisted on the job."""

    external_id: str
    status_url: str | None = None


@dataclass(frozen=True)
class PollResult:
    phase: PollPhase
    result_url: str | None = None
    result_urls: list[str] | None = None
    error_message: str | None = None
    progress_hint: int | None = None

    @classmethod
    def pending(cls, progress_hint: int | None = None) -> "PollResult":
        return cls(PollPhase.PENDING, progress_hint=progress_hint)

    @classmethod
    def done(cls, result_url: str, result_urls: list[str] | None = None) -> "PollResult":
        return cls(PollPhase.DONE, result_url=result_url, result_urls=result_urls)

    @classmethod
    def failed(cls, error_message: str | None) -> "PollResult":
        return cls(PollPhase.FAILED, error_message=error_message or "Generation failed")


class ProviderAdapter(ABC):
    """Uniform submit/poll interface over one generation backend.

    Implementations raise ProviderTransientError for retryable problems and
    ProviderPermanentError for everything else. Unrecognized provider states
    are reported as PENDING.
    """

    name: str

    @abstractmethod
    async def submit(self, request: SubmitRequest) -> SubmitHandle:
        """Start a generation and return its handle."""

    @abstractmethod
    async def poll(self, handle: SubmitHandle, current_progress: int = 0) -> PollResult:
        """Fetch the current state of a generation."""

    async def fetch_output(self, url: str) -> str | bytes:
        """Source handed to durable storage for a finished output.

        Public result URLs are returned as-is and fetched by the storage
        service. Adapters whose outputs need credentials download the bytes.
        """
        return url


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Classify a non-2xx response into the provider error hierarchy.

    Classification rules:
        - 429 (rate limit) → ProviderTransientError
        - 408 / 5xx → ProviderTransientError
        - 401/403 (authentication) → ProviderPermanentError
        - Other 4xx → ProviderPermanentError

    Raises:
        ProviderTransientError: Retryable failure
        ProviderPermanentError: Non-retryable failure
    """
    status = response.status_code
    if status < 400:
        return

    body = response.text[:500]
    if status == 429:
        raise ProviderTransientError(f"{provider}: rate limit exceeded: {body}")
    if status == 408 or status >= 500:
        raise ProviderTransientError(f"{provider}: service unavailable ({status}): {body}")
    if status in (401, 403):
        raise ProviderPermanentError(f"{provider}: authentication failed ({status})")
    raise ProviderPermanentError(f"{provider}: request rejected ({status}): {body}")


async def send(
    client: httpx.AsyncClient, method: str, url: str, provider: str, **kwargs: Any
) -> Any:
    """Send a request and return its decoded JSON body.

    Network-level failures become ProviderTransientError, non-JSON bodies
    ProviderPermanentError.
    """
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise ProviderTransientError(f"{provider}: request timeout: {e}") from e
    except httpx.TransportError as e:
        raise ProviderTransientError(f"{provider}: network error: {e}") from e

    raise_for_provider_status(response, provider)
    try:
        return response.json()
    except ValueError as e:
        raise ProviderPermanentError(f"{provider}: malformed response body") from e


async def download(
    client: httpx.AsyncClient, url: str, provider: str, **kwargs: Any
) -> bytes:
    """GET a binary body, with the same error classification as `send`."""
    try:
        response = await client.get(url, follow_redirects=True, **kwargs)
    except httpx.TimeoutException as e:
        raise ProviderTransientError(f"{provider}: download timeout: {e}") from e
    except httpx.TransportError as e:
        raise ProviderTransientError(f"{provider}: network error: {e}") from e

    raise_for_provider_status(response, provider)
    if not response.content:
        raise ProviderTransientError(f"{provider}: empty download from {url}")
    return response.content
