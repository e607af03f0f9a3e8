"""Typed provider/model registry, resolved once per job at submission."""

from dataclasses import dataclass
from enum import Enum

from visionlight.core.config import Settings
from visionlight.models.credit import CreditPool
from visionlight.models.job import MediaKind
from visionlight.services.credits.pricing import BillingRule, billing_rule, select_pool
from visionlight.services.providers.base import ProviderAdapter
from visionlight.services.providers.fal_queue import FalQueueAdapter
from visionlight.services.providers.kie import KieAdapter
from visionlight.services.providers.openai_video import OpenAIVideoAdapter
from visionlight.services.providers.replicate_adapter import ReplicateAdapter


class ProviderName(str, Enum):
    REPLICATE = "replicate"
    FAL = "fal"
    KIE = "kie"
    OPENAI = "openai"


@dataclass(frozen=True)
class ModelSpec:
    """Resolved routing and billing facts for one model."""

    name: str
    provider: ProviderName
    pool: CreditPool
    billing: BillingRule
    family: str
    accepts_reference: bool = True


DEFAULT_IMAGE_MODEL = "flux-schnell"
DEFAULT_VIDEO_MODEL = "sora-2"

# Video model → (provider, family)
_VIDEO_MODELS: dict[str, tuple[ProviderName, str]] = {
    "kling-2.5": (ProviderName.FAL, "kling"),
    "kling-3": (ProviderName.FAL, "kling"),
    "veo-3": (ProviderName.FAL, "veo"),
    "kie-sora-2": (ProviderName.KIE, "sora"),
    "kie-sora-2-pro": (ProviderName.KIE, "sora"),
    "sora-2": (ProviderName.OPENAI, "sora"),
    "sora-2-pro": (ProviderName.OPENAI, "sora"),
}


def resolve_model(media_kind: MediaKind, model: str | None = None) -> ModelSpec:
    """Resolve a requested model into its provider, pool and pricing rule.

    Images and carousels always run on Replicate. Video models outside the
    table go to the default provider (OpenAI) and are billed flat.

    Args:
        media_kind: Kind of media requested
        model: Requested model name, None for the kind's default

    Returns:
        ModelSpec for the request
    """
    if media_kind in (MediaKind.IMAGE, MediaKind.CAROUSEL):
        name = model or DEFAULT_IMAGE_MODEL
        return ModelSpec(
            name=name,
            provider=ProviderName.REPLICATE,
            pool=select_pool(media_kind, name),
            billing=billing_rule(media_kind, name),
            family="flux",
        )

    name = model or DEFAULT_VIDEO_MODEL
    provider, family = _VIDEO_MODELS.get(name, (ProviderName.OPENAI, "sora"))
    return ModelSpec(
        name=name,
        provider=provider,
        pool=select_pool(media_kind, name),
        billing=billing_rule(media_kind, name),
        family=family,
    )


def build_adapters(settings: Settings) -> dict[ProviderName, ProviderAdapter]:
    """Instantiate one adapter per provider from configuration.

    Adapters with missing credentials are still built; they raise a permanent
    error on first use, which fails and refunds the job.
    """
    return {
        ProviderName.REPLICATE: ReplicateAdapter(
            settings.replicate_api_token, settings.replicate_image_model
        ),
        ProviderName.FAL: FalQueueAdapter(settings.fal_key, settings.fal_queue_url),
        ProviderName.KIE: KieAdapter(settings.kie_api_key, settings.kie_base_url),
        ProviderName.OPENAI: OpenAIVideoAdapter(
            settings.openai_api_key,
            settings.openai_base_url,
            upload_timeout=settings.video_upload_timeout_seconds,
        ),
    }
