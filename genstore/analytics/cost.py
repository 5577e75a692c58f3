"""Estimated generation cost for providers that do not report one.

Prices are USD list prices. Image models bill per output; video and
upscaler models bill per second of output.
"""

from dataclasses import dataclass
from typing import Any, Literal

from genstore.logging.logger import Log


@dataclass(frozen=True)
class ModelPricing:
    base_cost: float
    cost_type: Literal["per_image", "per_second"]


MODEL_PRICING: dict[str, ModelPricing] = {
    "flux-schnell": ModelPricing(0.003, "per_image"),
    "flux-dev": ModelPricing(0.025, "per_image"),
    "flux-pro": ModelPricing(0.04, "per_image"),
    "flux-1.1-pro": ModelPricing(0.04, "per_image"),
    "flux-ultra": ModelPricing(0.06, "per_image"),
    "flux-kontext-dev": ModelPricing(0.025, "per_image"),
    "flux-kontext-pro": ModelPricing(0.045, "per_image"),
    "flux-kontext-max": ModelPricing(0.055, "per_image"),
    "sdxl-lightning-4step": ModelPricing(0.0035, "per_image"),
    "ideogram-v2": ModelPricing(0.000975, "per_second"),
    "seedream-3": ModelPricing(0.0012, "per_second"),
    "seedance-1-lite": ModelPricing(0.02, "per_second"),
    "seedance-1-pro": ModelPricing(0.08, "per_second"),
    "minimax-video-01": ModelPricing(0.05, "per_second"),
    "stable-video-diffusion": ModelPricing(0.03, "per_second"),
    "real-esrgan": ModelPricing(0.00023, "per_second"),
}

RESOLUTION_MULTIPLIERS: dict[str, float] = {
    "512x512": 1.0,
    "768x768": 1.2,
    "1024x1024": 1.5,
    "1280x720": 1.3,
    "1920x1080": 2.0,
    "2048x2048": 3.0,
}
QUALITY_MULTIPLIERS: dict[str, float] = {"low": 0.8, "medium": 1.0, "high": 1.3, "ultra": 1.8}
PRIORITY_MULTIPLIERS: dict[str, float] = {"normal": 1.0, "high": 1.5, "urgent": 2.0}
# Price of a batch relative to one output.
BATCH_MULTIPLIERS: dict[int, float] = {1: 1.0, 2: 1.9, 3: 2.7, 4: 3.5, 5: 4.2, 6: 4.8, 7: 5.4, 8: 6.0}

DEFAULT_VIDEO_SECONDS = 6


def pricing_for(model: str) -> ModelPricing | None:
    """Look a model up by its bare name; ``owner/name:version`` is accepted."""
    name = model.rsplit("/", 1)[-1].split(":", 1)[0].lower()
    return MODEL_PRICING.get(name)


def _multiplier(parameters: dict[str, Any], default_resolution: str) -> float:
    width = parameters.get("width")
    height = parameters.get("height")
    resolution = f"{width}x{height}" if width and height else default_resolution
    return (
        RESOLUTION_MULTIPLIERS.get(resolution, 1.0)
        * QUALITY_MULTIPLIERS.get(str(parameters.get("quality", "medium")), 1.0)
        * PRIORITY_MULTIPLIERS.get(str(parameters.get("priority", "normal")), 1.0)
    )


def estimate_cost(
    model: str,
    parameters: dict[str, Any] | None = None,
    num_outputs: int = 1,
) -> float | None:
    """Estimate the cost of one generation, or None for an unpriced model."""
    pricing = pricing_for(model)
    if pricing is None:
        Log.debug(f"No pricing known for model {model}")
        return None

    params = parameters or {}
    if pricing.cost_type == "per_second":
        duration = params.get("duration") or DEFAULT_VIDEO_SECONDS
        total = pricing.base_cost * float(duration) * _multiplier(params, "1280x720")
    else:
        outputs = max(1, num_outputs)
        batch = BATCH_MULTIPLIERS.get(outputs, float(outputs))
        total = pricing.base_cost * batch * _multiplier(params, "1024x1024")
    return round(total, 4)
