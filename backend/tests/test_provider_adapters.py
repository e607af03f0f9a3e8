"""Provider adapter tests.

HTTP adapters run against httpx.MockTransport; the Replicate adapter gets a
fake SDK client. Tests focus on:
- Submission payloads and returned handles
- Normalization of provider states into PENDING / DONE / FAILED
- Transient vs permanent error classification
"""

import json
from types import SimpleNamespace

import httpx
import pytest

from visionlight.models.job import MediaKind
from visionlight.services.exceptions import ProviderPermanentError, ProviderTransientError
from visionlight.services.providers.base import PollPhase, SubmitHandle, SubmitRequest
from visionlight.services.providers.fal_queue import FalQueueAdapter
from visionlight.services.providers.kie import KieAdapter
from visionlight.services.providers.openai_video import OpenAIVideoAdapter
from visionlight.services.providers.replicate_adapter import (
    ReplicateAdapter,
    classify_replicate_error,
    output_urls,
)


def video_request(**overrides) -> SubmitRequest:
    fields = {
        "model": "kling-2.5",
        "prompt": "Waves crashing on black sand",
        "media_kind": MediaKind.VIDEO,
        "aspect_ratio": "16:9",
        "width": 1280,
        "height": 720,
        "duration_seconds": 10,
    }
    fields.update(overrides)
    return SubmitRequest(**fields)


# Fal queue


@pytest.mark.asyncio
async def test_fal_submit_returns_handle():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"request_id": "req-42", "status_url": "https://queue.test/req-42/status"}
        )

    adapter = FalQueueAdapter("fal-key", "https://queue.test", transport=httpx.MockTransport(handler))
    handle = await adapter.submit(
        video_request(reference_image_url="https://cdn.test/ref.jpg")
    )

    assert handle == SubmitHandle("req-42", "https://queue.test/req-42/status")
    assert captured["url"].endswith("/image-to-video")
    assert captured["auth"] == "Key fal-key"
    assert captured["body"]["start_image_url"] == "https://cdn.test/ref.jpg"
    assert captured["body"]["duration"] == "10"


@pytest.mark.asyncio
async def test_fal_poll_completed_fetches_response_url():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/status"):
            return httpx.Response(
                200, json={"status": "COMPLETED", "response_url": "https://queue.test/req-1"}
            )
        return httpx.Response(200, json={"video": {"url": "https://fal.media/out.mp4"}})

    adapter = FalQueueAdapter("fal-key", transport=httpx.MockTransport(handler))
    result = await adapter.poll(SubmitHandle("req-1", "https://queue.test/req-1/status"))

    assert result.phase == PollPhase.DONE
    assert result.result_url == "https://fal.media/out.mp4"


@pytest.mark.asyncio
async def test_fal_poll_completed_without_video_url_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/status"):
            return httpx.Response(
                200, json={"status": "COMPLETED", "response_url": "https://queue.test/req-1"}
            )
        return httpx.Response(200, json={"images": []})

    adapter = FalQueueAdapter("fal-key", transport=httpx.MockTransport(handler))
    result = await adapter.poll(SubmitHandle("req-1", "https://queue.test/req-1/status"))

    assert result.phase == PollPhase.FAILED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, current, phase, hint",
    [
        ({"status": "IN_QUEUE"}, 0, PollPhase.PENDING, 10),
        ({"status": "IN_PROGRESS"}, 40, PollPhase.PENDING, 45),
        ({"status": "IN_PROGRESS"}, 88, PollPhase.PENDING, 90),
        ({"status": "SOMETHING_NEW"}, 40, PollPhase.PENDING, None),
        ({"status": "FAILED", "error": "NSFW"}, 40, PollPhase.FAILED, None),
    ],
)
async def test_fal_poll_state_mapping(payload, current, phase, hint):
    adapter = FalQueueAdapter(
        "fal-key", transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload))
    )
    result = await adapter.poll(SubmitHandle("req-1", "https://queue.test/s"), current)

    assert result.phase == phase
    assert result.progress_hint == hint


@pytest.mark.asyncio
async def test_fal_submit_without_key_is_permanent():
    with pytest.raises(ProviderPermanentError, match="FAL_KEY"):
        await FalQueueAdapter("").submit(video_request())


# Kie


@pytest.mark.asyncio
async def test_kie_submit_and_success_poll():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/createTask"):
            body = json.loads(request.content)
            assert body["model"] == "sora-2-text-to-video"
            return httpx.Response(200, json={"code": 200, "data": {"taskId": "task-7"}})
        assert request.url.params["taskId"] == "task-7"
        return httpx.Response(
            200,
            json={
                "code": 200,
                "data": {
                    "state": "success",
                    "resultJson": json.dumps({"resultUrls": ["https://kie.test/v.mp4"]}),
                },
            },
        )

    adapter = KieAdapter("kie-key", "https://kie.test/api/v1", transport=httpx.MockTransport(handler))
    handle = await adapter.submit(video_request(model="kie-sora-2"))
    result = await adapter.poll(handle)

    assert handle.external_id == "task-7"
    assert result.phase == PollPhase.DONE
    assert result.result_url == "https://kie.test/v.mp4"


@pytest.mark.asyncio
async def test_kie_rejected_envelope_is_permanent():
    adapter = KieAdapter(
        "kie-key",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"code": 422, "msg": "bad prompt"})
        ),
    )
    with pytest.raises(ProviderPermanentError, match="bad prompt"):
        await adapter.submit(video_request(model="kie-sora-2"))


@pytest.mark.asyncio
async def test_kie_poll_fail_and_pending():
    responses = iter(
        [
            {"data": {"state": "generating"}},
            {"data": {"state": "fail", "failMsg": "content rejected"}},
        ]
    )
    adapter = KieAdapter(
        "kie-key",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=next(responses))),
    )

    pending = await adapter.poll(SubmitHandle("task-1"), 20)
    assert pending.phase == PollPhase.PENDING
    assert pending.progress_hint == 25

    failed = await adapter.poll(SubmitHandle("task-1"), 25)
    assert failed.phase == PollPhase.FAILED
    assert failed.error_message == "content rejected"


# OpenAI


@pytest.mark.asyncio
async def test_openai_submit_is_multipart_with_reference():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["content_type"] = request.headers["content-type"]
        captured["body"] = request.content
        return httpx.Response(200, json={"id": "video_123", "status": "queued"})

    adapter = OpenAIVideoAdapter(
        "sk-test", "https://openai.test/v1", transport=httpx.MockTransport(handler)
    )
    handle = await adapter.submit(
        video_request(model="sora-2", duration_seconds=8, reference_image=b"\xff\xd8jpeg")
    )

    assert handle.external_id == "video_123"
    assert captured["content_type"].startswith("multipart/form-data")
    assert b'name="size"' in captured["body"]
    assert b"1280x720" in captured["body"]
    assert b'name="input_reference"' in captured["body"]


@pytest.mark.asyncio
async def test_openai_poll_states():
    responses = iter(
        [
            {"id": "video_123", "status": "in_progress", "progress": 33},
            {"id": "video_123", "status": "failed", "error": {"message": "moderation"}},
            {"id": "video_123", "status": "completed"},
        ]
    )
    adapter = OpenAIVideoAdapter(
        "sk-test",
        "https://openai.test/v1",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=next(responses))),
    )
    handle = SubmitHandle("video_123")

    pending = await adapter.poll(handle)
    assert (pending.phase, pending.progress_hint) == (PollPhase.PENDING, 33)

    failed = await adapter.poll(handle)
    assert (failed.phase, failed.error_message) == (PollPhase.FAILED, "moderation")

    done = await adapter.poll(handle)
    assert done.result_url == "https://openai.test/v1/videos/video_123/content"


@pytest.mark.asyncio
async def test_openai_fetch_output_downloads_with_api_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["authorization"] = request.headers.get("authorization")
        seen["path"] = request.url.path
        return httpx.Response(200, content=b"mp4-bytes")

    adapter = OpenAIVideoAdapter(
        "sk-test", "https://openai.test/v1", transport=httpx.MockTransport(handler)
    )

    data = await adapter.fetch_output("https://openai.test/v1/videos/video_123/content")

    assert data == b"mp4-bytes"
    assert seen == {"authorization": "Bearer sk-test", "path": "/v1/videos/video_123/content"}


@pytest.mark.asyncio
async def test_openai_fetch_output_failures_are_classified():
    adapter = OpenAIVideoAdapter(
        "sk-test",
        transport=httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway")),
    )
    with pytest.raises(ProviderTransientError):
        await adapter.fetch_output("https://api.openai.com/v1/videos/v/content")


@pytest.mark.asyncio
async def test_public_outputs_are_handed_over_as_urls():
    adapter = KieAdapter("kie-key")
    assert await adapter.fetch_output("https://cdn.kie.test/v.mp4") == "https://cdn.kie.test/v.mp4"


# HTTP error classification


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, error_type",
    [
        (429, ProviderTransientError),
        (503, ProviderTransientError),
        (408, ProviderTransientError),
        (401, ProviderPermanentError),
        (400, ProviderPermanentError),
        (404, ProviderPermanentError),
    ],
)
async def test_http_status_classification(status_code, error_type):
    adapter = OpenAIVideoAdapter(
        "sk-test",
        transport=httpx.MockTransport(lambda request: httpx.Response(status_code, text="nope")),
    )
    with pytest.raises(error_type):
        await adapter.poll(SubmitHandle("video_1"))


@pytest.mark.asyncio
async def test_network_errors_are_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    adapter = KieAdapter("kie-key", transport=httpx.MockTransport(handler))
    with pytest.raises(ProviderTransientError):
        await adapter.poll(SubmitHandle("task-1"))


@pytest.mark.asyncio
async def test_non_json_body_is_permanent():
    adapter = KieAdapter(
        "kie-key",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")),
    )
    with pytest.raises(ProviderPermanentError, match="malformed"):
        await adapter.poll(SubmitHandle("task-1"))


# Replicate


class FakePredictions:
    def __init__(self, predictions: list, create_error: Exception | None = None):
        self.predictions = list(predictions)
        self.create_error = create_error
        self.created: list[dict] = []

    def create(self, **kwargs):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(kwargs)
        return SimpleNamespace(id="pred-1", status="starting", output=None, error=None)

    def get(self, prediction_id):
        return self.predictions.pop(0)


def fake_client(predictions=(), create_error=None):
    return SimpleNamespace(predictions=FakePredictions(list(predictions), create_error))


@pytest.mark.asyncio
async def test_replicate_carousel_requests_multiple_outputs():
    client = fake_client(
        [
            SimpleNamespace(status="processing", output=None, error=None),
            SimpleNamespace(
                status="succeeded",
                output=["https://r.test/1.jpg", "https://r.test/2.jpg", "https://r.test/3.jpg"],
                error=None,
            ),
        ]
    )
    adapter = ReplicateAdapter("r8-token", "black-forest-labs/flux-schnell", client=client)

    handle = await adapter.submit(
        SubmitRequest(model="flux-schnell", prompt="Three panels", media_kind=MediaKind.CAROUSEL)
    )
    pending = await adapter.poll(handle)
    done = await adapter.poll(handle)

    created = client.predictions.created[0]
    assert created["model"] == "black-forest-labs/flux-schnell"
    assert created["input"]["num_outputs"] == 3
    assert pending.phase == PollPhase.PENDING
    assert done.result_url == "https://r.test/1.jpg"
    assert done.result_urls == ["https://r.test/1.jpg", "https://r.test/2.jpg", "https://r.test/3.jpg"]


@pytest.mark.asyncio
async def test_replicate_failed_prediction():
    client = fake_client([SimpleNamespace(status="failed", output=None, error="NSFW content")])
    adapter = ReplicateAdapter("r8-token", "owner/model", client=client)

    result = await adapter.poll(SubmitHandle("pred-1"))

    assert result.phase == PollPhase.FAILED
    assert result.error_message == "NSFW content"


@pytest.mark.asyncio
async def test_replicate_connection_error_is_transient():
    client = fake_client(create_error=ConnectionError("connection reset"))
    adapter = ReplicateAdapter("r8-token", "owner/model", client=client)

    with pytest.raises(ProviderTransientError):
        await adapter.submit(
            SubmitRequest(model="flux-schnell", prompt="A cat", media_kind=MediaKind.IMAGE)
        )


@pytest.mark.asyncio
async def test_replicate_http_client_errors_are_transient():
    class FailingPredictions(FakePredictions):
        def get(self, prediction_id):
            raise httpx.ConnectError("connection refused")

    client = SimpleNamespace(predictions=FailingPredictions([]))
    adapter = ReplicateAdapter("r8-token", "owner/model", client=client)

    with pytest.raises(ProviderTransientError, match="connection error"):
        await adapter.poll(SubmitHandle("pred-1"))


@pytest.mark.asyncio
async def test_replicate_unexpected_errors_are_classified():
    client = fake_client(create_error=RuntimeError("unexpected payload"))
    adapter = ReplicateAdapter("r8-token", "owner/model", client=client)

    with pytest.raises(ProviderPermanentError, match="unexpected payload"):
        await adapter.submit(
            SubmitRequest(model="flux-schnell", prompt="A cat", media_kind=MediaKind.IMAGE)
        )


def test_classify_replicate_error():
    class StatusError(Exception):
        def __init__(self, message, status):
            super().__init__(message)
            self.status = status

    assert isinstance(classify_replicate_error(TimeoutError("slow")), ProviderTransientError)
    assert isinstance(classify_replicate_error(StatusError("busy", 503)), ProviderTransientError)
    assert isinstance(classify_replicate_error(StatusError("slow down", 429)), ProviderTransientError)
    assert isinstance(classify_replicate_error(StatusError("denied", 401)), ProviderPermanentError)
    assert isinstance(classify_replicate_error(ValueError("invalid input")), ProviderPermanentError)


def test_output_urls_shapes():
    assert output_urls("https://r.test/a.png") == ["https://r.test/a.png"]
    assert output_urls(["https://r.test/a.png", None]) == ["https://r.test/a.png"]
    assert output_urls({"url": "https://r.test/b.png"}) == ["https://r.test/b.png"]
    assert output_urls(None) == []
