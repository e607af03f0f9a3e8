"""Image compositor tests.

Every path through ImageCompositor.fit must produce exactly the requested
dimensions: strict resize, outpainting, blur fill and the undecodable-input
fallback.
"""

from io import BytesIO

import pytest
from PIL import Image

from visionlight.models.job import MediaKind
from visionlight.services.exceptions import OutpaintError
from visionlight.services.imaging.compositor import (
    ImageCompositor,
    aspect_matches,
    blur_fill,
    build_outpaint_canvas_and_mask,
    image_size,
    resize_strict,
    resolve_target_dimensions,
)


def make_image(width: int, height: int, color=(200, 40, 40), fmt: str = "JPEG") -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def decoded_size(data: bytes) -> tuple[int, int]:
    with Image.open(BytesIO(data)) as image:
        return image.size


class RecordingOutpainter:
    def __init__(self, result_size=(1300, 740), error: Exception | None = None):
        self.result_size = result_size
        self.error = error
        self.calls: list[tuple[int, int]] = []
        self.mask: bytes | None = None

    async def outpaint(self, canvas: bytes, mask: bytes, width: int, height: int) -> bytes:
        self.calls.append((width, height))
        self.mask = mask
        if self.error is not None:
            raise self.error
        return make_image(*self.result_size, fmt="PNG")


@pytest.mark.parametrize(
    "media_kind, aspect_ratio, resolution, model, expected",
    [
        (MediaKind.VIDEO, "16:9", None, "kling-2.5", (1280, 720)),
        (MediaKind.VIDEO, "9:16", None, "sora-2", (720, 1280)),
        (MediaKind.VIDEO, "16:9", "1080p", "veo-3", (1920, 1080)),
        (MediaKind.VIDEO, "9:16", None, "kling-3", (1080, 1920)),
        (MediaKind.VIDEO, "1:1", None, "sora-2", (1024, 1024)),
        (MediaKind.IMAGE, "16:9", None, None, (1344, 768)),
        (MediaKind.IMAGE, "4:5", None, None, (896, 1120)),
        (MediaKind.CAROUSEL, "21:9", None, None, (1024, 1024)),
    ],
)
def test_resolve_target_dimensions(media_kind, aspect_ratio, resolution, model, expected):
    assert resolve_target_dimensions(media_kind, aspect_ratio, resolution, model) == expected


def test_aspect_matches_tolerance():
    assert aspect_matches(1920, 1080, 1280, 720)
    assert aspect_matches(1300, 720, 1280, 720)
    assert not aspect_matches(1000, 1000, 1280, 720)
    assert not aspect_matches(0, 720, 1280, 720)


def test_resize_strict_produces_exact_size():
    result = resize_strict(make_image(1920, 1088), 1280, 720)
    assert decoded_size(result) == (1280, 720)


def test_blur_fill_produces_exact_size():
    result = blur_fill(make_image(1000, 1000), 1280, 720)
    assert decoded_size(result) == (1280, 720)


def test_canvas_and_mask_layout():
    canvas, mask = build_outpaint_canvas_and_mask(make_image(500, 500), 1280, 720, seam_margin=8)

    assert image_size(canvas) == (1280, 720)
    with Image.open(BytesIO(mask)) as mask_image:
        assert mask_image.mode == "L"
        assert mask_image.size == (1280, 720)
        # Left border is generated, center is kept
        assert mask_image.getpixel((10, 360)) == 255
        assert mask_image.getpixel((640, 360)) == 0


@pytest.mark.asyncio
async def test_fit_matching_aspect_skips_outpainting():
    outpainter = RecordingOutpainter()
    compositor = ImageCompositor(outpainter)

    result = await compositor.fit(make_image(1920, 1080), 1280, 720)

    assert decoded_size(result) == (1280, 720)
    assert outpainter.calls == []


@pytest.mark.asyncio
async def test_fit_outpaints_mismatched_aspect():
    """Outpainted results are resized again because models may drift by a few pixels."""
    outpainter = RecordingOutpainter(result_size=(1296, 736))
    compositor = ImageCompositor(outpainter)

    result = await compositor.fit(make_image(800, 800), 1280, 720)

    assert outpainter.calls == [(1280, 720)]
    assert outpainter.mask is not None
    assert decoded_size(result) == (1280, 720)


@pytest.mark.asyncio
async def test_fit_falls_back_to_blur_fill_when_outpainting_fails():
    outpainter = RecordingOutpainter(error=OutpaintError("model failed"))
    compositor = ImageCompositor(outpainter)

    result = await compositor.fit(make_image(800, 800), 720, 1280)

    assert outpainter.calls == [(720, 1280)]
    assert decoded_size(result) == (720, 1280)


@pytest.mark.asyncio
async def test_fit_without_outpainter_uses_blur_fill():
    result = await ImageCompositor(None).fit(make_image(640, 480), 1280, 720)
    assert decoded_size(result) == (1280, 720)


@pytest.mark.asyncio
async def test_fit_undecodable_input_returns_solid_canvas():
    result = await ImageCompositor(None).fit(b"definitely not an image", 1024, 1024)

    assert decoded_size(result) == (1024, 1024)
    with Image.open(BytesIO(result)) as image:
        red, green, blue = image.convert("RGB").getpixel((512, 512))
        assert max(red, green, blue) < 10
