"""Image compositor: conform a reference image to a provider's exact frame size.

Strategy, in order:
1. Aspect within tolerance → cover-fit crop and resize.
2. Otherwise → AI outpainting of a letterboxed canvas.
3. Outpainting unavailable or failed → blurred-background fill.

`ImageCompositor.fit` never raises; the worst case is a solid canvas of the
requested size.
"""

import asyncio
from io import BytesIO
from typing import Protocol

import structlog
from PIL import Image, ImageDraw, ImageFilter, ImageOps

from visionlight.models.job import MediaKind

logger = structlog.get_logger()

JPEG_QUALITY = 95
BLUR_RADIUS = 40
DEFAULT_TOLERANCE = 0.05
DEFAULT_SEAM_MARGIN = 8

_VIDEO_SIZES = {
    "16:9": (1280, 720),
    "9:16": (720, 1280),
    "1:1": (1024, 1024),
}
_VIDEO_HD_SIZES = {
    "16:9": (1920, 1080),
    "9:16": (1080, 1920),
    "1:1": (1024, 1024),
}
_IMAGE_SIZES = {
    "1:1": (1024, 1024),
    "16:9": (1344, 768),
    "9:16": (768, 1344),
    "4:5": (896, 1120),
}


class Outpainter(Protocol):
    async def outpaint(self, canvas: bytes, mask: bytes, width: int, height: int) -> bytes: ...


def resolve_target_dimensions(
    media_kind: MediaKind,
    aspect_ratio: str = "16:9",
    resolution: str | None = None,
    model: str | None = None,
) -> tuple[int, int]:
    """Exact frame size a provider expects for a request.

    Videos are 720p unless 1080p is requested or the model only renders 1080p
    (kling-3). Unknown ratios fall back to landscape for video and square for
    images.
    """
    if media_kind == MediaKind.VIDEO:
        hd = resolution == "1080p" or model == "kling-3"
        table = _VIDEO_HD_SIZES if hd else _VIDEO_SIZES
        return table.get(aspect_ratio, table["16:9"])
    return _IMAGE_SIZES.get(aspect_ratio, _IMAGE_SIZES["1:1"])


def aspect_matches(
    width: int, height: int, target_width: int, target_height: int, tolerance: float = DEFAULT_TOLERANCE
) -> bool:
    """True if the two aspect ratios differ by at most `tolerance`, relative to the target."""
    if width <= 0 or height <= 0 or target_width <= 0 or target_height <= 0:
        return False
    source_ratio = width / height
    target_ratio = target_width / target_height
    return abs(source_ratio - target_ratio) / target_ratio <= tolerance


def _open(data: bytes) -> Image.Image:
    image = Image.open(BytesIO(data))
    image = ImageOps.exif_transpose(image)
    return image.convert("RGB")


def _to_jpeg(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


def _to_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def image_size(data: bytes) -> tuple[int, int]:
    """Decode just enough of `data` to return (width, height)."""
    with Image.open(BytesIO(data)) as image:
        transposed = ImageOps.exif_transpose(image)
        return transposed.size


def resize_strict(data: bytes, width: int, height: int) -> bytes:
    """Cover-fit: scale to fill the frame, crop the overflow around the center."""
    fitted = ImageOps.fit(_open(data), (width, height), method=Image.Resampling.LANCZOS)
    return _to_jpeg(fitted)


def blur_fill(data: bytes, width: int, height: int) -> bytes:
    """Contain-fit the source over a blurred, cover-fit copy of itself."""
    source = _open(data)
    background = ImageOps.fit(source, (width, height), method=Image.Resampling.LANCZOS)
    background = background.filter(ImageFilter.GaussianBlur(BLUR_RADIUS))
    foreground = ImageOps.contain(source, (width, height), method=Image.Resampling.LANCZOS)
    offset = ((width - foreground.width) // 2, (height - foreground.height) // 2)
    background.paste(foreground, offset)
    return _to_jpeg(background)


def solid_canvas(width: int, height: int, color: tuple[int, int, int] = (0, 0, 0)) -> bytes:
    return _to_jpeg(Image.new("RGB", (width, height), color))


def build_outpaint_canvas_and_mask(
    data: bytes, width: int, height: int, seam_margin: int = DEFAULT_SEAM_MARGIN
) -> tuple[bytes, bytes]:
    """Build the inputs of an outpainting request.

    The canvas is black at the target size with the source contain-fit and
    centered. The mask is white where pixels must be generated and black
    where the source is kept; the kept rectangle is shrunk by `seam_margin`
    so the model repaints across the border.

    Returns:
        (canvas PNG, mask PNG)
    """
    foreground = ImageOps.contain(_open(data), (width, height), method=Image.Resampling.LANCZOS)
    left = (width - foreground.width) // 2
    top = (height - foreground.height) // 2

    canvas = Image.new("RGB", (width, height), (0, 0, 0))
    canvas.paste(foreground, (left, top))

    mask = Image.new("L", (width, height), 255)
    keep = (
        left + seam_margin,
        top + seam_margin,
        left + foreground.width - seam_margin - 1,
        top + foreground.height - seam_margin - 1,
    )
    if keep[0] <= keep[2] and keep[1] <= keep[3]:
        ImageDraw.Draw(mask).rectangle(keep, fill=0)

    return _to_png(canvas), _to_png(mask)


class ImageCompositor:
    """Conforms reference images to exact target dimensions.

    Pillow work runs in a worker thread; the outpainter is awaited directly.
    """

    def __init__(
        self,
        outpainter: Outpainter | None = None,
        tolerance: float = DEFAULT_TOLERANCE,
        seam_margin: int = DEFAULT_SEAM_MARGIN,
    ):
        self.outpainter = outpainter
        self.tolerance = tolerance
        self.seam_margin = seam_margin

    async def fit(self, source: bytes, width: int, height: int) -> bytes:
        """Return a JPEG of exactly `width`x`height` derived from `source`.

        Never raises. Undecodable input yields a solid black canvas.
        """
        try:
            source_width, source_height = await asyncio.to_thread(image_size, source)
        except Exception as e:
            logger.warning("compositor.decode_failed", error=str(e))
            return await asyncio.to_thread(solid_canvas, width, height)

        if aspect_matches(source_width, source_height, width, height, self.tolerance):
            try:
                return await asyncio.to_thread(resize_strict, source, width, height)
            except Exception as e:
                logger.warning("compositor.resize_failed", error=str(e))
                return await self._blur_fill(source, width, height)

        if self.outpainter is not None:
            try:
                result = await self._outpaint(self.outpainter, source, width, height)
                logger.info(
                    "compositor.outpaint.completed",
                    source=f"{source_width}x{source_height}",
                    target=f"{width}x{height}",
                )
                return result
            except Exception as e:
                logger.warning(
                    "compositor.outpaint.failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    fallback="blur_fill",
                )

        return await self._blur_fill(source, width, height)

    async def _outpaint(
        self, outpainter: Outpainter, source: bytes, width: int, height: int
    ) -> bytes:
        canvas, mask = await asyncio.to_thread(
            build_outpaint_canvas_and_mask, source, width, height, self.seam_margin
        )
        painted = await outpainter.outpaint(canvas, mask, width, height)
        # Models may return a slightly different size
        return await asyncio.to_thread(resize_strict, painted, width, height)

    async def _blur_fill(self, source: bytes, width: int, height: int) -> bytes:
        try:
            return await asyncio.to_thread(blur_fill, source, width, height)
        except Exception as e:
            logger.error("compositor.blur_fill_failed", error=str(e))
            return await asyncio.to_thread(solid_canvas, width, height)
