"""Cost, pool selection and model routing tests."""

import pytest

from visionlight.models.credit import CreditPool
from visionlight.models.job import MediaKind
from visionlight.services.credits.pricing import (
    BillingRule,
    PricingTable,
    billing_rule,
    calculate_cost,
    select_pool,
)
from visionlight.services.providers.registry import ProviderName, resolve_model


@pytest.mark.parametrize(
    "media_kind, duration, model, expected",
    [
        ("video", 10, "kie-sora-2", 2),
        ("video", 12, "kie-sora-2-pro", 3),
        ("video", 10, "kling-2.5", 10),
        ("video", None, "kling-3", 5),
        ("video", 8, "veo-3", 5),
        ("video", 8, "some-future-model", 5),
        ("image", None, None, 1),
        ("carousel", None, None, 3),
        ("hologram", None, None, 25),
    ],
)
def test_calculate_cost(media_kind, duration, model, expected):
    assert calculate_cost(media_kind, duration, model) == expected


def test_calculate_cost_uses_pricing_table():
    pricing = PricingTable(image=2, kling_per_second=1.5)
    assert calculate_cost(MediaKind.IMAGE, pricing=pricing) == 2
    assert calculate_cost(MediaKind.VIDEO, 4, "kling-2.5", pricing) == 6


def test_billing_rule_classification():
    assert billing_rule(MediaKind.VIDEO, "kie-sora-2") == BillingRule.PER_KIE_BLOCK
    assert billing_rule(MediaKind.VIDEO, "kling-3") == BillingRule.PER_SECOND
    assert billing_rule(MediaKind.VIDEO, "sora-2") == BillingRule.FLAT_VIDEO
    assert billing_rule("unknown") == BillingRule.SAFETY


@pytest.mark.parametrize(
    "media_kind, model, pool",
    [
        (MediaKind.VIDEO, "kling-2.5", CreditPool.PICDRIFT),
        (MediaKind.IMAGE, None, CreditPool.IMAGE_FX),
        (MediaKind.CAROUSEL, "flux-schnell", CreditPool.IMAGE_FX),
        (MediaKind.VIDEO, "kie-sora-2", CreditPool.VIDEO_FX1),
        (MediaKind.VIDEO, "veo-3", CreditPool.VIDEO_FX2),
        (MediaKind.VIDEO, "sora-2", CreditPool.VIDEO_FX2),
    ],
)
def test_select_pool(media_kind, model, pool):
    assert select_pool(media_kind, model) == pool


def test_resolve_model_routes_images_to_replicate():
    spec = resolve_model(MediaKind.IMAGE)
    assert spec.provider == ProviderName.REPLICATE
    assert spec.pool == CreditPool.IMAGE_FX
    assert spec.billing == BillingRule.IMAGE


@pytest.mark.parametrize(
    "model, provider",
    [
        ("kling-2.5", ProviderName.FAL),
        ("veo-3", ProviderName.FAL),
        ("kie-sora-2", ProviderName.KIE),
        ("sora-2-pro", ProviderName.OPENAI),
        ("unlisted-model", ProviderName.OPENAI),
        (None, ProviderName.OPENAI),
    ],
)
def test_resolve_model_routes_video(model, provider):
    assert resolve_model(MediaKind.VIDEO, model).provider == provider
