"""Colour-space helpers for the rule-based quality checks.

All functions are pure: they take sampled RGB pixels (tuples of 0-255 ints)
and return plain numbers, so the validator's output is a deterministic
function of its inputs.

Conversion path: sRGB -> linear RGB -> CIE XYZ -> CIE L*a*b* (D65 white).
"""

import math
from typing import Iterable, Sequence

from tryon_engine.state import RGB, Lab

# sRGB companding
_GAMMA_THRESHOLD = 0.04045
_LINEAR_SCALE = 12.92
_GAMMA_OFFSET = 0.055
_GAMMA_EXPONENT = 2.4

# D65 reference white (XYZ scaled to 0-100)
_XN = 95.047
_YN = 100.0
_ZN = 108.883

# CIE Lab f(t) breakpoints
_LAB_EPSILON = 0.008856
_LAB_KAPPA = 7.787

# Fallback when a sample is empty
NEUTRAL_GREY = RGB(128, 128, 128)
NEUTRAL_LUMINANCE = 128.0

Pixel = Sequence[int]


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like ``Math.round`` does: .5 always goes up.

    Python's built-in ``round`` uses banker's rounding, which would move
    recommendation boundaries for scores that land exactly on .5.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def mean_color(pixels: Iterable[Pixel]) -> RGB:
    """Average RGB of the sample, rounded to integers (the "dominant" colour)."""
    r_total = g_total = b_total = 0
    count = 0
    for px in pixels:
        r_total += px[0]
        g_total += px[1]
        b_total += px[2]
        count += 1

    if count == 0:
        return NEUTRAL_GREY

    return RGB(
        r=int(round_half_up(r_total / count)),
        g=int(round_half_up(g_total / count)),
        b=int(round_half_up(b_total / count)),
    )


def luminance(px: Pixel) -> float:
    """Perceptual luminance (ITU-R BT.601 weights)."""
    return 0.299 * px[0] + 0.587 * px[1] + 0.114 * px[2]


def mean_luminance(pixels: Iterable[Pixel]) -> float:
    total = 0.0
    count = 0
    for px in pixels:
        total += luminance(px)
        count += 1
    return total / count if count else NEUTRAL_LUMINANCE


def _to_linear(channel: int) -> float:
    c = channel / 255
    if c > _GAMMA_THRESHOLD:
        return ((c + _GAMMA_OFFSET) / (1 + _GAMMA_OFFSET)) ** _GAMMA_EXPONENT
    return c / _LINEAR_SCALE


def _lab_f(t: float) -> float:
    if t > _LAB_EPSILON:
        return t ** (1 / 3)
    return _LAB_KAPPA * t + 16 / 116


def rgb_to_lab(color: RGB) -> Lab:
    r = _to_linear(color.r)
    g = _to_linear(color.g)
    b = _to_linear(color.b)

    x = (r * 0.4124 + g * 0.3576 + b * 0.1805) * 100
    y = (r * 0.2126 + g * 0.7152 + b * 0.0722) * 100
    z = (r * 0.0193 + g * 0.1192 + b * 0.9505) * 100

    fx = _lab_f(x / _XN)
    fy = _lab_f(y / _YN)
    fz = _lab_f(z / _ZN)

    return Lab(l=116 * fy - 16, a=500 * (fx - fy), b=200 * (fy - fz))


def delta_e(color1: RGB, color2: RGB) -> float:
    """CIE76 colour difference, rounded to one decimal."""
    lab1 = rgb_to_lab(color1)
    lab2 = rgb_to_lab(color2)
    distance = math.sqrt(
        (lab1.l - lab2.l) ** 2 + (lab1.a - lab2.a) ** 2 + (lab1.b - lab2.b) ** 2
    )
    return round_half_up(distance, 1)
