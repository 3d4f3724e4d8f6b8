"""
TTK Calculator for ranged weapons
Exact single-magazine hit DP with distance falloff and reload cycling
"""

import json
import locale
import logging
import math
import os
import sys
from dataclasses import dataclass, field, replace
from fractions import Fraction
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from ttk_rules import (
    DISTANCE_ROUNDING_MODES,
    MM_EPSILON,
    MM_PER_METER,
    OVERRIDABLE_FIELDS,
    PROGRESS_MIN_POINTS,
    TTK_VARIANTS,
    WEAPON_DEFS,
)
from ttk_accel import (
    ChunkPool,
    ChunkTask,
    build_point_chunks,
    chunk_points_for_budget,
    magazine_dp_chunk,
    run_chunks,
)

logger = logging.getLogger(__name__)

# ============================================================================
# CONSTANTS
# ============================================================================

WEAPON_OVERRIDES_PATH = Path(__file__).with_name("weapon_overrides.json")

# Largest integer product allowed in the vectorized threshold division.
INT64_SAFE_LIMIT = 2**62


def as_fraction(value) -> Optional[Fraction]:
    if value is None:
        return None
    if isinstance(value, Fraction):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}.")
    if isinstance(value, int):
        return Fraction(value)
    # str() keeps float literals like 0.65 exact (13/20) instead of binary noise
    return Fraction(str(value).strip())


def fraction_gcd(a: Fraction, b: Fraction) -> Fraction:
    """Largest rational g such that a/g and b/g are both integers."""
    common_den = a.denominator * b.denominator // math.gcd(a.denominator, b.denominator)
    a_scaled = a.numerator * (common_den // a.denominator)
    b_scaled = b.numerator * (common_den // b.denominator)
    return Fraction(math.gcd(a_scaled, b_scaled), common_den)


def ceil_div(numerator: int, denominator: int) -> int:
    return -((-numerator) // denominator)


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class WeaponProfile:
    """Immutable weapon constants plus the exact unit-space derived from them."""
    name: str
    max_hp: Fraction
    magazine_size: int
    rounds_per_minute: Fraction
    body_damage: Fraction
    head_damage: Optional[Fraction]
    near_radius_m: Fraction
    far_radius_m: Fraction
    far_multiplier: Fraction
    reload_seconds: Fraction = Fraction(0)
    startup_delay_seconds: Fraction = Fraction(0)
    variant: str = "empty_reload"
    distance_rounding: str = "floor"
    headshot_modeled: bool = True

    near_mm: int = field(init=False, repr=False)
    far_mm: int = field(init=False, repr=False)
    mid_intercept: int = field(init=False, repr=False)
    mid_slope: int = field(init=False, repr=False)
    mid_denominator: int = field(init=False, repr=False)
    unit_damage: Fraction = field(init=False, repr=False)
    body_step: int = field(init=False, repr=False)
    head_step: int = field(init=False, repr=False)
    tmax: int = field(init=False, repr=False)

    def __post_init__(self):
        """Validate constants and derive falloff coefficients, steps and Tmax."""
        for name in (
            "max_hp",
            "rounds_per_minute",
            "body_damage",
            "head_damage",
            "near_radius_m",
            "far_radius_m",
            "far_multiplier",
            "reload_seconds",
            "startup_delay_seconds",
        ):
            object.__setattr__(self, name, as_fraction(getattr(self, name)))
        object.__setattr__(self, "magazine_size", int(self.magazine_size))

        if self.variant not in TTK_VARIANTS:
            raise ValueError(f"{self.name}: unknown variant '{self.variant}'.")
        if self.distance_rounding not in DISTANCE_ROUNDING_MODES:
            raise ValueError(
                f"{self.name}: unknown distance rounding '{self.distance_rounding}'."
            )
        if self.max_hp <= 0:
            raise ValueError(f"{self.name}: max_hp must be > 0.")
        if self.magazine_size < 1:
            raise ValueError(f"{self.name}: magazine_size must be >= 1.")
        if self.rounds_per_minute <= 0:
            raise ValueError(f"{self.name}: rounds_per_minute must be > 0.")
        if self.body_damage <= 0:
            raise ValueError(f"{self.name}: body_damage must be > 0.")
        if self.headshot_modeled:
            if self.head_damage is None or self.head_damage <= 0:
                raise ValueError(f"{self.name}: head_damage must be > 0.")
        if self.reload_seconds < 0:
            raise ValueError(f"{self.name}: reload_seconds must be >= 0.")
        if self.startup_delay_seconds < 0:
            raise ValueError(f"{self.name}: startup_delay_seconds must be >= 0.")
        if not 0 < self.far_multiplier <= 1:
            raise ValueError(f"{self.name}: far_multiplier must be in (0, 1].")
        if self.near_radius_m < 0 or self.far_radius_m <= self.near_radius_m:
            raise ValueError(f"{self.name}: need 0 <= near_radius_m < far_radius_m.")

        near_mm = self.near_radius_m * MM_PER_METER
        far_mm = self.far_radius_m * MM_PER_METER
        if near_mm.denominator != 1 or far_mm.denominator != 1:
            raise ValueError(f"{self.name}: falloff breakpoints must be whole millimeters.")
        near_mm = int(near_mm)
        far_mm = int(far_mm)

        # mid zone: m(mm) = ((far - mm)*1 + (mm - near)*farMult) / (far - near)
        far_num = self.far_multiplier.numerator
        far_den = self.far_multiplier.denominator
        intercept = far_mm * far_den - near_mm * far_num
        slope = far_den - far_num
        denominator = (far_mm - near_mm) * far_den
        common = math.gcd(math.gcd(intercept, slope), denominator)

        if self.headshot_modeled:
            unit = fraction_gcd(self.body_damage, self.head_damage)
            head_step = int(self.head_damage / unit)
        else:
            unit = self.body_damage
            head_step = 1
        body_step = int(self.body_damage / unit)

        object.__setattr__(self, "near_mm", near_mm)
        object.__setattr__(self, "far_mm", far_mm)
        object.__setattr__(self, "mid_intercept", intercept // common)
        object.__setattr__(self, "mid_slope", slope // common)
        object.__setattr__(self, "mid_denominator", denominator // common)
        object.__setattr__(self, "unit_damage", unit)
        object.__setattr__(self, "body_step", body_step)
        object.__setattr__(self, "head_step", head_step)

        largest = (
            self.max_hp.numerator
            * unit.denominator
            * max(self.mid_denominator, far_den)
        )
        if largest >= INT64_SAFE_LIMIT:
            raise ValueError(f"{self.name}: constants too fine-grained for exact thresholds.")

        object.__setattr__(self, "tmax", self.threshold_for(far_num, far_den))

    @property
    def dt_seconds(self) -> float:
        return float(Fraction(60) / self.rounds_per_minute)

    @property
    def far_fraction(self) -> Tuple[int, int]:
        return self.far_multiplier.numerator, self.far_multiplier.denominator

    def threshold_for(self, numerator: int, denominator: int) -> int:
        """Exact units needed to kill at multiplier numerator/denominator."""
        hp = self.max_hp
        unit = self.unit_damage
        return max(
            1,
            ceil_div(
                hp.numerator * unit.denominator * denominator,
                hp.denominator * unit.numerator * numerator,
            ),
        )


@dataclass
class TTKResult:
    """Per-point outputs shaped like the broadcast inputs."""
    ettk: np.ndarray
    p_kill: np.ndarray
    eb_mag: np.ndarray
    eb_uncapped: Optional[np.ndarray] = None

    def as_tuple(self):
        return self.ettk, self.p_kill, self.eb_mag, self.eb_uncapped


# ============================================================================
# CONFIGURATION
# ============================================================================

def build_weapon_profile(name: str, definition: Mapping[str, object]) -> WeaponProfile:
    unknown = set(definition) - OVERRIDABLE_FIELDS
    if unknown:
        raise ValueError(f"{name}: unknown weapon fields {sorted(unknown)}.")
    return WeaponProfile(name=name, **definition)


def build_weapon_profiles(
    definitions: Mapping[str, Mapping[str, object]] = WEAPON_DEFS,
) -> Dict[str, WeaponProfile]:
    return {
        name: build_weapon_profile(name, definition)
        for name, definition in definitions.items()
    }


WEAPON_PROFILES = build_weapon_profiles()


def load_weapon_overrides(path: Path = WEAPON_OVERRIDES_PATH) -> Dict[str, Dict[str, object]]:
    if not path.exists():
        return {}
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{path.name} must contain an object keyed by weapon name.")
    overrides: Dict[str, Dict[str, object]] = {}
    for weapon_name, fields in raw.items():
        if not isinstance(fields, dict):
            raise ValueError(f"{path.name}: overrides for '{weapon_name}' must be an object.")
        overrides[str(weapon_name)] = dict(fields)
    return overrides


def apply_weapon_overrides(
    profiles: Mapping[str, WeaponProfile],
    overrides: Mapping[str, Mapping[str, object]],
) -> Dict[str, WeaponProfile]:
    merged = dict(profiles)
    for weapon_name, fields in overrides.items():
        if weapon_name not in merged:
            raise ValueError(f"Override for unknown weapon '{weapon_name}'.")
        unknown = set(fields) - OVERRIDABLE_FIELDS
        if unknown:
            raise ValueError(f"{weapon_name}: cannot override {sorted(unknown)}.")
        # replace() re-runs __post_init__, so overridden constants are re-validated
        merged[weapon_name] = replace(merged[weapon_name], **fields)
        logger.info("Applied overrides to %s: %s", weapon_name, sorted(fields))
    return merged


def load_weapon_profiles(path: Path = WEAPON_OVERRIDES_PATH) -> Dict[str, WeaponProfile]:
    return apply_weapon_overrides(WEAPON_PROFILES, load_weapon_overrides(path))


def get_weapon_profile(
    name: str,
    profiles: Optional[Mapping[str, WeaponProfile]] = None,
) -> WeaponProfile:
    profiles = WEAPON_PROFILES if profiles is None else profiles
    try:
        return profiles[name]
    except KeyError:
        known = ", ".join(sorted(profiles))
        raise ValueError(f"Unknown weapon '{name}'. Known: {known}.") from None


# ============================================================================
# FALLOFF / UNIT SPACE
# ============================================================================

def validate_inputs(q, h, dist_m) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Check the whole batch, then broadcast to one shape.

    Any single bad element rejects the call; NaN fails the range checks.
    """
    q = np.asarray(q, dtype=np.float64)
    h = np.asarray(h, dtype=np.float64)
    dist_m = np.asarray(dist_m, dtype=np.float64)

    if not np.all((q >= 0.0) & (q <= 1.0)):
        raise ValueError("q must be in [0,1]")
    if not np.all((h >= 0.0) & (h <= 1.0)):
        raise ValueError("h must be in [0,1]")
    if not np.all(dist_m >= 0.0):
        raise ValueError("dist_m must be >= 0")

    return np.broadcast_arrays(q, h, dist_m)


def quantize_distance_mm(profile: WeaponProfile, dist_m) -> np.ndarray:
    dist_m = np.asarray(dist_m, dtype=np.float64)
    if profile.distance_rounding == "round":
        # half away from zero; distances are never negative here
        scaled = dist_m * MM_PER_METER + 0.5
    else:
        scaled = dist_m * MM_PER_METER + MM_EPSILON
    # everything at or past the far breakpoint is one zone; capping keeps
    # huge and infinite distances inside int64
    mm = np.floor(np.minimum(scaled, profile.far_mm))
    return mm.astype(np.int64)


def falloff_fraction(profile: WeaponProfile, dist_m) -> Tuple[np.ndarray, np.ndarray]:
    """Exact damage multiplier per distance as integer (numerator, denominator)."""
    mm = quantize_distance_mm(profile, dist_m)
    num = np.ones(mm.shape, dtype=np.int64)
    den = np.ones(mm.shape, dtype=np.int64)

    far = mm >= profile.far_mm
    mid = (mm > profile.near_mm) & (mm < profile.far_mm)

    far_num, far_den = profile.far_fraction
    num[far] = far_num
    den[far] = far_den

    num[mid] = profile.mid_intercept - profile.mid_slope * mm[mid]
    den[mid] = profile.mid_denominator
    return num, den


def multiplier_at(profile: WeaponProfile, dist_m: float) -> Fraction:
    num, den = falloff_fraction(profile, np.asarray([dist_m], dtype=np.float64))
    return Fraction(int(num[0]), int(den[0]))


def unit_thresholds(
    profile: WeaponProfile,
    num: np.ndarray,
    den: np.ndarray,
    clamp: bool = True,
) -> np.ndarray:
    hp = profile.max_hp
    unit = profile.unit_damage
    top = (hp.numerator * unit.denominator) * np.asarray(den, dtype=np.int64)
    bottom = (hp.denominator * unit.numerator) * np.asarray(num, dtype=np.int64)
    thresholds = -((-top) // bottom)
    if not clamp:
        return thresholds

    over = thresholds > profile.tmax
    if np.any(over):
        logger.warning(
            "%s: %d thresholds above Tmax=%d were clamped; check the falloff constants.",
            profile.name,
            int(np.count_nonzero(over)),
            profile.tmax,
        )
    return np.clip(thresholds, 1, profile.tmax)


def shot_probabilities(
    profile: WeaponProfile,
    q: np.ndarray,
    h: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    p_miss = 1.0 - q
    if not profile.headshot_modeled:
        return p_miss, q.astype(np.float64, copy=True), np.zeros_like(q)
    return p_miss, q * (1.0 - h), q * h


# ============================================================================
# EXPECTATIONS
# ============================================================================

def extend_expectation(
    profile: WeaponProfile,
    p_kill: np.ndarray,
    eb_mag: np.ndarray,
) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """Turn one-magazine results into (Ettk, uncapped expected shots).

    Failed magazines are independent attempts, so the number of empty reloads
    before the killing magazine is geometric with mean (1 - pKill) / pKill.
    """
    dt = profile.dt_seconds
    delay = float(profile.startup_delay_seconds)
    reload_time = float(profile.reload_seconds)
    ok = p_kill > 0.0

    if profile.variant == "capped":
        ettk = np.where(ok, delay + dt * (eb_mag - 1.0), np.inf)
        return ettk, None

    safe_p = np.where(ok, p_kill, 1.0)
    with np.errstate(over="ignore"):
        failed_mags = np.where(ok, (1.0 - p_kill) / safe_p, np.inf)
        if profile.variant == "fixed_magazine":
            shots = eb_mag + (1.0 - p_kill) * (profile.magazine_size / safe_p)
        else:
            shots = eb_mag / safe_p
        shots = np.where(ok, shots, np.inf)

        ettk = delay + dt * (shots - 1.0)
        if reload_time > 0.0:
            ettk = ettk + reload_time * failed_mags
    ettk = np.where(ok, ettk, np.inf)
    return ettk, shots


# ============================================================================
# ENTRYPOINTS
# ============================================================================

def _run_magazine_batch(
    profile: WeaponProfile,
    q,
    h,
    dist_m,
    store_tail: bool,
    chunk_size: Optional[int],
    use_numba: bool,
    pool: Optional[ChunkPool],
    max_workers: Optional[int],
    show_progress: bool,
    memory_budget_bytes: Optional[int],
):
    q, h, dist_m = validate_inputs(q, h, dist_m)
    shape = q.shape
    q_flat = q.ravel()
    h_flat = h.ravel()
    dist_flat = dist_m.ravel()
    total = q_flat.size

    num, den = falloff_fraction(profile, dist_flat)
    thresholds = unit_thresholds(profile, num, den)
    p_miss, p_body, p_head = shot_probabilities(profile, q_flat, h_flat)

    if chunk_size is None:
        chunk_size = chunk_points_for_budget(profile.tmax, memory_budget_bytes)
    chunks = build_point_chunks(total, chunk_size)
    logger.debug(
        "%s: %d points in %d chunks (Tmax=%d)",
        profile.name,
        total,
        len(chunks),
        profile.tmax,
    )

    tasks = [
        ChunkTask(
            start=start,
            size=size,
            args=(
                p_miss[start:start + size],
                p_body[start:start + size],
                p_head[start:start + size],
                thresholds[start:start + size],
                profile.magazine_size,
                profile.body_step,
                profile.head_step,
                profile.tmax,
            ),
            kwargs={
                "use_head": profile.headshot_modeled,
                "store_tail": store_tail,
                "use_numba": use_numba,
            },
        )
        for start, size in chunks
    ]
    results = run_chunks(
        magazine_dp_chunk,
        tasks,
        pool=pool,
        max_workers=max_workers,
        progress_label=profile.name,
        show_progress=show_progress and total >= PROGRESS_MIN_POINTS,
    )

    p_kill = np.empty(total, dtype=np.float64)
    eb_mag = np.empty(total, dtype=np.float64)
    tails = np.empty((total, profile.magazine_size + 1), dtype=np.float64) if store_tail else None
    for task, (chunk_p_kill, chunk_eb, chunk_tails) in zip(tasks, results):
        start, size = task.start, task.size
        p_kill[start:start + size] = chunk_p_kill
        eb_mag[start:start + size] = chunk_eb
        if tails is not None:
            tails[start:start + size] = chunk_tails
    return shape, p_kill, eb_mag, tails


def compute_weapon_ttk(
    profile: WeaponProfile,
    q,
    h,
    dist_m,
    chunk_size: Optional[int] = None,
    use_numba: bool = True,
    pool: Optional[ChunkPool] = None,
    max_workers: Optional[int] = 1,
    show_progress: bool = False,
    memory_budget_bytes: Optional[int] = None,
) -> TTKResult:
    """Expected TTK of one weapon over a batch of (q, h, dist) points.

    Inputs broadcast against each other; every output has the broadcast shape.
    Points where the target cannot die within a magazine report Ettk = +inf.
    Chunk size and worker count never change the numbers.
    """
    shape, p_kill, eb_mag, _ = _run_magazine_batch(
        profile,
        q,
        h,
        dist_m,
        store_tail=False,
        chunk_size=chunk_size,
        use_numba=use_numba,
        pool=pool,
        max_workers=max_workers,
        show_progress=show_progress,
        memory_budget_bytes=memory_budget_bytes,
    )
    ettk, eb_uncapped = extend_expectation(profile, p_kill, eb_mag)
    return TTKResult(
        ettk=ettk.reshape(shape),
        p_kill=p_kill.reshape(shape),
        eb_mag=eb_mag.reshape(shape),
        eb_uncapped=None if eb_uncapped is None else eb_uncapped.reshape(shape),
    )


def survival_curve(
    profile: WeaponProfile,
    q,
    h,
    dist_m,
    chunk_size: Optional[int] = None,
    use_numba: bool = True,
) -> np.ndarray:
    """P(alive after n shots) for n = 0..magazine_size, as a trailing axis."""
    shape, _, _, tails = _run_magazine_batch(
        profile,
        q,
        h,
        dist_m,
        store_tail=True,
        chunk_size=chunk_size,
        use_numba=use_numba,
        pool=None,
        max_workers=1,
        show_progress=False,
        memory_budget_bytes=None,
    )
    return tails.reshape(shape + (profile.magazine_size + 1,))


def evaluate_weapon(
    name: str,
    q,
    h,
    dist_m,
    profiles: Optional[Mapping[str, WeaponProfile]] = None,
    **kwargs,
) -> TTKResult:
    return compute_weapon_ttk(get_weapon_profile(name, profiles), q, h, dist_m, **kwargs)


# ============================================================================
# FILES / CONSOLE
# ============================================================================

def _load_json(path: Path) -> object:
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}


def _write_json(path: Path, payload: object):
    path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def format_seconds(value: float) -> str:
    if not math.isfinite(value):
        return "never"
    return f"{value:.3f}s"


def configure_console_encoding():
    if os.name != "nt":
        return

    forced = os.getenv("TTK_CONSOLE_ENCODING")
    preferred = locale.getpreferredencoding(False)
    target = forced

    if not target:
        stdout_encoding = (sys.stdout.encoding or "").lower()
        preferred_lower = (preferred or "").lower()
        if stdout_encoding.startswith("utf") and preferred_lower and preferred_lower != stdout_encoding:
            target = preferred

    if not target:
        return

    try:
        sys.stdout.reconfigure(encoding=target, errors="replace")
    except (AttributeError, ValueError):
        pass


def prompt_int(prompt: str, min_value: int = None, max_value: int = None) -> int:
    while True:
        raw = input(prompt).strip()
        try:
            value = int(raw)
        except ValueError:
            print("Enter a number.")
            continue
        if min_value is not None and value < min_value:
            print(f"Minimum: {min_value}.")
            continue
        if max_value is not None and value > max_value:
            print(f"Maximum: {max_value}.")
            continue
        return value


def prompt_float(prompt: str, min_value: float = None, max_value: float = None) -> float:
    while True:
        raw = input(prompt).strip().replace("%", "")
        try:
            value = float(raw)
        except ValueError:
            print("Enter a number.")
            continue
        if not math.isfinite(value):
            print("Enter a finite number.")
            continue
        if min_value is not None and value < min_value:
            print(f"Minimum: {min_value}.")
            continue
        if max_value is not None and value > max_value:
            print(f"Maximum: {max_value}.")
            continue
        return value


def prompt_yes_no(prompt: str) -> bool:
    while True:
        raw = input(prompt).strip().lower()
        if raw in ("y", "yes"):
            return True
        if raw in ("n", "no"):
            return False
        print("Enter y or n.")


def prompt_weapon(prompt: str, profiles: Mapping[str, WeaponProfile]) -> WeaponProfile:
    names = sorted(profiles)
    for idx, name in enumerate(names, start=1):
        print(f"{idx}) {name}")
    choice = prompt_int(prompt, 1, len(names))
    return profiles[names[choice - 1]]
