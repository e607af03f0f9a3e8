"""Pure cost and pool selection for generation requests.

Nothing here touches the database; the ledger and the orchestrator call these
functions once at submission and persist the result on the job.
"""

import math
from dataclasses import dataclass
from enum import Enum

from visionlight.models.credit import CreditPool
from visionlight.models.job import MediaKind

DEFAULT_VIDEO_DURATION_SECONDS = 5


@dataclass(frozen=True)
class PricingTable:
    """Credit prices per product line."""

    image: float = 1
    carousel: float = 3
    kie_seconds_per_credit: float = 5
    kling_per_second: float = 1
    video_flat: float = 5
    safety: float = 25


DEFAULT_PRICING = PricingTable()


class BillingRule(str, Enum):
    """How a request is priced."""

    IMAGE = "image"
    CAROUSEL = "carousel"
    PER_KIE_BLOCK = "per_kie_block"  # one credit per started block of seconds
    PER_SECOND = "per_second"
    FLAT_VIDEO = "flat_video"
    SAFETY = "safety"


def _coerce_kind(media_kind: MediaKind | str) -> MediaKind | None:
    try:
        return MediaKind(media_kind)
    except ValueError:
        return None


def billing_rule(media_kind: MediaKind | str, model: str | None = None) -> BillingRule:
    """Classify a request into the rule that prices it."""
    kind = _coerce_kind(media_kind)
    if kind == MediaKind.IMAGE:
        return BillingRule.IMAGE
    if kind == MediaKind.CAROUSEL:
        return BillingRule.CAROUSEL
    if kind == MediaKind.VIDEO:
        name = (model or "").lower()
        if name.startswith("kie-"):
            return BillingRule.PER_KIE_BLOCK
        if name.startswith("kling-"):
            return BillingRule.PER_SECOND
        return BillingRule.FLAT_VIDEO
    return BillingRule.SAFETY


def calculate_cost(
    media_kind: MediaKind | str,
    duration_seconds: int | None = None,
    model: str | None = None,
    pricing: PricingTable = DEFAULT_PRICING,
) -> float:
    """Compute the credit cost of a generation request.

    Args:
        media_kind: Kind of media requested
        duration_seconds: Video duration, ignored for images and carousels
        model: Model identifier (e.g. "kie-sora-2", "kling-2.5", "veo-3")
        pricing: Price table to apply

    Returns:
        Cost in credits. Unrecognized media kinds get the safety price.

    Example:
        >>> calculate_cost("video", 10, "kie-sora-2")
        2
        >>> calculate_cost("video", 10, "kling-2.5")
        10
    """
    rule = billing_rule(media_kind, model)
    duration = duration_seconds or DEFAULT_VIDEO_DURATION_SECONDS
    if rule == BillingRule.IMAGE:
        return pricing.image
    if rule == BillingRule.CAROUSEL:
        return pricing.carousel
    if rule == BillingRule.PER_KIE_BLOCK:
        return math.ceil(duration / pricing.kie_seconds_per_credit)
    if rule == BillingRule.PER_SECOND:
        return duration * pricing.kling_per_second
    if rule == BillingRule.FLAT_VIDEO:
        return pricing.video_flat
    return pricing.safety


def select_pool(media_kind: MediaKind | str, model: str | None = None) -> CreditPool:
    """Map a request onto the credit pool that pays for it.

    kling → PICDRIFT, image/carousel → IMAGE_FX, kie → VIDEO_FX1,
    any other video model → VIDEO_FX2.
    """
    name = (model or "").lower()
    if name.startswith("kling-"):
        return CreditPool.PICDRIFT
    kind = _coerce_kind(media_kind)
    if kind in (MediaKind.IMAGE, MediaKind.CAROUSEL):
        return CreditPool.IMAGE_FX
    if name.startswith("kie-"):
        return CreditPool.VIDEO_FX1
    if kind == MediaKind.VIDEO:
        return CreditPool.VIDEO_FX2
    return CreditPool.IMAGE_FX
