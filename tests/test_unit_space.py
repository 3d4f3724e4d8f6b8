"""
Tests for the falloff evaluator and the unit-space quantizer.

Run with: python -m pytest tests/test_unit_space.py -v
"""

from fractions import Fraction

import numpy as np
import pytest

import ttk_sim as ts
from ttk_rules import WEAPON_DEFS


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(params=sorted(WEAPON_DEFS))
def profile(request):
    return ts.WEAPON_PROFILES[request.param]


@pytest.fixture
def dense_distances():
    return np.linspace(0.0, 120.0, 24001)


# =============================================================================
# UNIT SPACE CONSTANTS
# =============================================================================

@pytest.mark.parametrize(
    "name, body_step, head_step, tmax",
    [
        (".50 Akimbo", 1, 2, 16),
        ("ShAK-50", 2, 3, 36),
        ("M60", 2, 3, 70),
        ("M134", 100, 133, 7955),
        ("Lewis Gun", 2, 3, 46),
        ("BFR Titan", 2, 3, 12),
    ],
)
def test_headshot_weapon_steps_and_tmax(name, body_step, head_step, tmax):
    profile = ts.WEAPON_PROFILES[name]
    assert profile.body_step == body_step
    assert profile.head_step == head_step
    assert profile.tmax == tmax


def test_slug_weapon_uses_single_hit_step():
    profile = ts.WEAPON_PROFILES["KS-23"]
    assert not profile.headshot_modeled
    assert profile.unit_damage == 100
    assert profile.body_step == 1
    assert profile.tmax == 5


def test_unit_divides_body_and_head_damage(profile):
    assert profile.body_damage / profile.unit_damage == profile.body_step
    if profile.headshot_modeled:
        assert profile.head_damage / profile.unit_damage == profile.head_step


def test_fractional_unit_is_exact():
    m134 = ts.WEAPON_PROFILES["M134"]
    lewis = ts.WEAPON_PROFILES["Lewis Gun"]
    assert m134.unit_damage == Fraction(11, 100)
    assert lewis.unit_damage == Fraction(23, 2)


def test_fraction_gcd():
    assert ts.fraction_gcd(Fraction(30), Fraction(45)) == 15
    assert ts.fraction_gcd(Fraction(23), Fraction(69, 2)) == Fraction(23, 2)
    assert ts.fraction_gcd(Fraction(11), Fraction(1463, 100)) == Fraction(11, 100)


# =============================================================================
# FALLOFF
# =============================================================================

@pytest.mark.parametrize(
    "name, reference",
    [
        (".50 Akimbo", lambda mm: Fraction(46000 - mm, 14000)),
        ("ShAK-50", lambda mm: Fraction(305000 - 7 * mm, 200000)),
        ("M60", lambda mm: Fraction(45000 - mm, 20000)),
        ("M134", lambda mm: Fraction(190000 - 3 * mm, 100000)),
        ("KS-23", lambda mm: Fraction(104000 - 3 * mm, 50000)),
        ("Lewis Gun", lambda mm: Fraction(3310000 - 66 * mm, 1000000)),
        ("BFR Titan", lambda mm: Fraction(80000 - mm, 50000)),
    ],
)
def test_mid_zone_matches_reference_fraction(name, reference):
    profile = ts.WEAPON_PROFILES[name]
    for mm in range(profile.near_mm + 1, profile.far_mm, 997):
        expected = reference(mm)
        actual = Fraction(profile.mid_intercept - profile.mid_slope * mm, profile.mid_denominator)
        assert actual == expected


def test_continuity_at_breakpoints(profile):
    near = float(profile.near_radius_m)
    far = float(profile.far_radius_m)
    assert ts.multiplier_at(profile, near) == 1
    assert ts.multiplier_at(profile, far) == profile.far_multiplier
    # one millimeter inside a breakpoint moves the multiplier by exactly one slope step
    step = Fraction(profile.mid_slope, profile.mid_denominator)
    assert ts.multiplier_at(profile, near + 0.001) == 1 - step
    assert ts.multiplier_at(profile, far - 0.001) == profile.far_multiplier + step


def test_multiplier_non_increasing(profile, dense_distances):
    num, den = ts.falloff_fraction(profile, dense_distances)
    multiplier = num / den
    assert np.all(np.diff(multiplier) <= 0.0)
    assert multiplier.max() == 1.0
    assert multiplier.min() == pytest.approx(float(profile.far_multiplier))


def test_breakpoints_belong_to_closed_zones():
    profile = ts.WEAPON_PROFILES[".50 Akimbo"]
    num, den = ts.falloff_fraction(profile, np.array([32.0, 39.0, 39.0 - 1e-13, 39.0 - 1e-3]))
    assert (num[0], den[0]) == (1, 1)
    assert (num[1], den[1]) == (1, 2)
    # the quantization epsilon pulls representation noise back onto the breakpoint
    assert (num[2], den[2]) == (1, 2)
    assert den[3] == profile.mid_denominator


def test_far_zone_saturates():
    profile = ts.WEAPON_PROFILES["M134"]
    distances = np.array([50.0, 60.0, 100.0, 1000.0, 1e15, 1e16, 1e17, 1e300, np.inf])
    num, den = ts.falloff_fraction(profile, distances)
    assert np.all(num == 2)
    assert np.all(den == 5)


@pytest.mark.parametrize("name", ["M60", "ShAK-50"])
def test_huge_distances_quantize_to_far_breakpoint(name):
    profile = ts.WEAPON_PROFILES[name]
    mm = ts.quantize_distance_mm(profile, np.array([1e16, 1e300, np.inf]))
    assert mm.tolist() == [profile.far_mm] * 3


def test_m60_rounds_distance_to_nearest_mm():
    m60 = ts.WEAPON_PROFILES["M60"]
    shak = ts.WEAPON_PROFILES["ShAK-50"]
    assert m60.distance_rounding == "round"
    assert ts.quantize_distance_mm(m60, np.array([25.0006]))[0] == 25001
    assert ts.quantize_distance_mm(m60, np.array([25.0004]))[0] == 25000
    assert ts.quantize_distance_mm(shak, np.array([15.0006]))[0] == 15000
    assert ts.multiplier_at(m60, 25.0006) < 1


# =============================================================================
# THRESHOLDS
# =============================================================================

def test_threshold_non_decreasing_with_distance(profile, dense_distances):
    num, den = ts.falloff_fraction(profile, dense_distances)
    thresholds = ts.unit_thresholds(profile, num, den)
    assert np.all(np.diff(thresholds) >= 0)
    assert thresholds[0] >= 1


def test_tmax_bounds_every_reachable_threshold(profile, dense_distances):
    num, den = ts.falloff_fraction(profile, dense_distances)
    raw = ts.unit_thresholds(profile, num, den, clamp=False)
    assert raw.max() == profile.tmax
    assert raw.min() >= 1


def test_threshold_is_exact_ceiling():
    shak = ts.WEAPON_PROFILES["ShAK-50"]
    thresholds = ts.unit_thresholds(shak, np.array([1, 13]), np.array([1, 20]))
    assert thresholds.tolist() == [24, 36]

    # 350 / 10 = 35 exactly, no rounding up
    m60 = ts.WEAPON_PROFILES["M60"]
    assert m60.threshold_for(1, 1) == 35
