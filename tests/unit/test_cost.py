import pytest

from genstore.analytics.cost import estimate_cost, pricing_for


class TestPricingFor:
    def test_accepts_owner_and_version(self) -> None:
        assert pricing_for("black-forest-labs/flux-schnell:abc123") == pricing_for("flux-schnell")

    def test_unknown_model(self) -> None:
        assert pricing_for("acme/unknown") is None


class TestEstimateCost:
    def test_single_image_at_default_resolution(self) -> None:
        # 1024x1024 carries a 1.5x resolution multiplier.
        assert estimate_cost("flux-schnell") == pytest.approx(0.0045)

    def test_batch_discount(self) -> None:
        params = {"width": 512, "height": 512}
        assert estimate_cost("flux-dev", params, num_outputs=4) == pytest.approx(0.0875)

    def test_video_is_billed_per_second(self) -> None:
        params = {"duration": 5, "width": 1280, "height": 720}
        assert estimate_cost("minimax/minimax-video-01", params) == pytest.approx(0.325)

    def test_priority_multiplier(self) -> None:
        params = {"width": 512, "height": 512, "priority": "urgent"}
        assert estimate_cost("flux-pro", params) == pytest.approx(0.08)

    def test_unknown_model_has_no_estimate(self) -> None:
        assert estimate_cost("acme/unknown") is None
