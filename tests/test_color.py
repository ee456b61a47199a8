# Tests for colour-space helpers

import pytest

from tryon_engine.color import (
    NEUTRAL_GREY,
    NEUTRAL_LUMINANCE,
    delta_e,
    luminance,
    mean_color,
    mean_luminance,
    rgb_to_lab,
    round_half_up,
)
from tryon_engine.state import RGB


class TestRoundHalfUp:
    def test_half_goes_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(3.5) == 4

    def test_builtin_round_would_differ(self):
        """Banker's rounding sends 2.5 to 2; the scores must not."""
        assert round(2.5) == 2
        assert round_half_up(2.5) != round(2.5)

    def test_decimal_places(self):
        assert round_half_up(0.125, 2) == pytest.approx(0.13)
        assert round_half_up(12.34, 1) == pytest.approx(12.3)


class TestMeanColor:
    def test_average_is_rounded(self):
        assert mean_color([(0, 0, 0), (1, 1, 1)]) == RGB(1, 1, 1)

    def test_single_colour(self):
        assert mean_color([(200, 50, 50)] * 7) == RGB(200, 50, 50)

    def test_empty_sample_is_neutral_grey(self):
        assert mean_color([]) == NEUTRAL_GREY


class TestLuminance:
    def test_bt601_weights(self):
        assert luminance((200, 50, 50)) == pytest.approx(94.85)

    def test_mean_luminance(self):
        assert mean_luminance([(0, 0, 0), (255, 255, 255)]) == pytest.approx(127.5)

    def test_empty_sample_is_mid_grey(self):
        assert mean_luminance([]) == NEUTRAL_LUMINANCE


class TestLab:
    def test_black(self):
        lab = rgb_to_lab(RGB(0, 0, 0))
        assert lab.l == pytest.approx(0.0, abs=1e-6)
        assert lab.a == pytest.approx(0.0, abs=1e-6)
        assert lab.b == pytest.approx(0.0, abs=1e-6)

    def test_white(self):
        lab = rgb_to_lab(RGB(255, 255, 255))
        assert lab.l == pytest.approx(100.0, abs=0.1)
        assert lab.a == pytest.approx(0.0, abs=0.1)
        assert lab.b == pytest.approx(0.0, abs=0.1)


class TestDeltaE:
    def test_identical_colours(self):
        assert delta_e(RGB(200, 50, 50), RGB(200, 50, 50)) == 0.0

    def test_black_vs_white(self):
        assert delta_e(RGB(0, 0, 0), RGB(255, 255, 255)) == pytest.approx(100.0)

    def test_symmetric(self):
        a, b = RGB(10, 120, 200), RGB(180, 40, 90)
        assert delta_e(a, b) == delta_e(b, a)

    def test_rounded_to_one_decimal(self):
        d = delta_e(RGB(10, 120, 200), RGB(12, 118, 205))
        assert d == round_half_up(d, 1)
