"""Replicate predictions adapter (images and carousels) with error classification."""

import asyncio
from typing import Any

import httpx
import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from visionlight.models.job import MediaKind
from visionlight.services.exceptions import (
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
)
from visionlight.services.providers.base import (
    PollResult,
    ProviderAdapter,
    SubmitHandle,
    SubmitRequest,
)

logger = structlog.get_logger()

CAROUSEL_OUTPUTS = 3
FAILED_STATES = frozenset({"failed", "canceled", "aborted"})


def classify_replicate_error(exception: Exception) -> ProviderError:
    """Classify exception into retry category.

    Classification rules:
        - Timeout errors → ProviderTransientError
        - 429 (rate limit) → ProviderTransientError
        - 5xx (service unavailable) → ProviderTransientError
        - Connection errors (incl. httpx transport errors) → ProviderTransientError
        - 401/403 (authentication) → ProviderPermanentError
        - Anything else → ProviderPermanentError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()
    status = getattr(exception, "status", None)

    if "timeout" in error_message_lower or isinstance(exception, TimeoutError):
        return ProviderTransientError(f"replicate: network timeout: {error_message}")
    if status == 429 or "429" in error_message or "rate limit" in error_message_lower:
        return ProviderTransientError(f"replicate: rate limit exceeded: {error_message}")
    if (isinstance(status, int) and status >= 500) or "service unavailable" in error_message_lower:
        return ProviderTransientError(f"replicate: service unavailable: {error_message}")
    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return ProviderTransientError(f"replicate: connection error: {error_message}")
    if status in (401, 403) or "unauthorized" in error_message_lower or "authentication" in error_message_lower:
        return ProviderPermanentError(f"replicate: authentication failed: {error_message}")
    return ProviderPermanentError(f"replicate: {error_message}")


def build_replicate_client(api_token: str) -> Any:
    """Create an SDK client bound to `api_token` (no process-wide env mutation)."""
    if not api_token:
        raise ProviderPermanentError("replicate: REPLICATE_API_TOKEN not configured")
    return replicate.Client(api_token=api_token)


def _create_kwargs(model_ref: str) -> dict[str, str]:
    # "owner/name:version" pins a version; "owner/name" runs the latest official model
    if ":" in model_ref:
        return {"version": model_ref.split(":", 1)[1]}
    return {"model": model_ref}


async def create_prediction(client: Any, model_ref: str, model_input: dict[str, Any]) -> Any:
    """Create a prediction in a worker thread; SDK errors are classified."""
    try:
        return await asyncio.to_thread(
            client.predictions.create, input=model_input, **_create_kwargs(model_ref)
        )
    except (ReplicateAPIError, ConnectionError, OSError, TimeoutError) as e:
        raise classify_replicate_error(e) from e
    except Exception as e:
        # The SDK surfaces its HTTP client's errors unwrapped
        raise classify_replicate_error(e) from e


async def get_prediction(client: Any, prediction_id: str) -> Any:
    """Fetch a prediction in a worker thread; SDK errors are classified."""
    try:
        return await asyncio.to_thread(client.predictions.get, prediction_id)
    except (ReplicateAPIError, ConnectionError, OSError, TimeoutError) as e:
        raise classify_replicate_error(e) from e
    except Exception as e:
        # The SDK surfaces its HTTP client's errors unwrapped
        raise classify_replicate_error(e) from e


def output_urls(output: Any) -> list[str]:
    """Extract URLs from a prediction output (format varies by model)."""
    if isinstance(output, str):
        return [output]
    if isinstance(output, (list, tuple)):
        return [str(item) for item in output if item]
    if isinstance(output, dict) and output.get("url"):
        return [str(output["url"])]
    return []


class ReplicateAdapter(ProviderAdapter):
    """Image and carousel generation on Replicate.

    Carousel requests ask the model for several outputs at once and report
    them in order through `result_urls`.
    """

    name = "replicate"

    def __init__(self, api_token: str, default_model: str, client: Any = None):
        """Initialize adapter.

        Args:
            api_token: Replicate API authentication token
            default_model: Model reference used when the request names a short alias
            client: Pre-built SDK client (tests inject a fake)
        """
        self.api_token = api_token
        self.default_model = default_model
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = build_replicate_client(self.api_token)
        return self._client

    def _model_ref(self, model: str) -> str:
        return model if "/" in model else self.default_model

    async def submit(self, request: SubmitRequest) -> SubmitHandle:
        model_input: dict[str, Any] = {
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio,
            "output_format": "jpg",
        }
        if request.media_kind == MediaKind.CAROUSEL:
            model_input["num_outputs"] = CAROUSEL_OUTPUTS
        if request.reference_image_url:
            model_input["image"] = request.reference_image_url

        model_ref = self._model_ref(request.model)
        prediction = await create_prediction(self.client, model_ref, model_input)
        if not getattr(prediction, "id", None):
            raise ProviderPermanentError("replicate: prediction has no id")

        logger.info("provider.replicate.submitted", prediction_id=prediction.id, model=model_ref)
        return SubmitHandle(external_id=prediction.id)

    async def poll(self, handle: SubmitHandle, current_progress: int = 0) -> PollResult:
        prediction = await get_prediction(self.client, handle.external_id)
        status = getattr(prediction, "status", None)

        if status == "succeeded":
            urls = output_urls(prediction.output)
            if not urls:
                return PollResult.failed("Prediction succeeded without output")
            return PollResult.done(urls[0], urls)
        if status in FAILED_STATES:
            return PollResult.failed(str(prediction.error) if prediction.error else None)
        return PollResult.pending()
