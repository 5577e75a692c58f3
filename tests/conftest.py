import io
from typing import Any

import pytest
from PIL import Image


def make_png(width: int = 64, height: int = 32) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 40, 40)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def png_bytes() -> bytes:
    """A small valid PNG with known dimensions (64x32)."""
    return make_png()


@pytest.fixture()
def provider_urls() -> list[str]:
    return [
        "https://replicate.delivery/pbxt/abc/out-0.png",
        "https://replicate.delivery/pbxt/abc/out-1.png",
        "https://replicate.delivery/pbxt/abc/out-2.png",
    ]


@pytest.fixture()
def succeeded_response(provider_urls: list[str]) -> dict[str, Any]:
    return {
        "id": "gen-123",
        "status": "succeeded",
        "output": provider_urls,
        "model": "black-forest-labs/flux-schnell",
        "metrics": {"predict_time": 2.5, "total_time": 3.1},
    }
