"""
TTK Calculator for ranged weapons
Ranks every weapon against the others over one (q, h, dist) grid
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

import ttk_sim as ts
from ttk_accel import ChunkPool
from ttk_rules import (
    DEFAULT_DIST_RANGE,
    DEFAULT_H_RANGE,
    DEFAULT_Q_RANGE,
    RANKING_DEPTH,
    SPREAD_CAP_SECONDS,
)

logger = logging.getLogger(__name__)

RANKING_RESULTS_PATH = Path(__file__).with_name("ttk_rankings.json")


@dataclass
class ParameterGrid:
    q_values: np.ndarray
    h_values: np.ndarray
    dist_values: np.ndarray

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (len(self.q_values), len(self.h_values), len(self.dist_values))

    def mesh(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return np.meshgrid(self.q_values, self.h_values, self.dist_values, indexing="ij")

    def describe(self) -> Dict[str, object]:
        def axis(values: np.ndarray) -> Dict[str, object]:
            return {
                "min": float(values.min()) if values.size else None,
                "max": float(values.max()) if values.size else None,
                "count": int(values.size),
            }

        return {
            "q": axis(self.q_values),
            "h": axis(self.h_values),
            "dist_m": axis(self.dist_values),
        }


def build_parameter_grid(
    q_range: Tuple[float, float, int] = DEFAULT_Q_RANGE,
    h_range: Tuple[float, float, int] = DEFAULT_H_RANGE,
    dist_range: Tuple[float, float, int] = DEFAULT_DIST_RANGE,
) -> ParameterGrid:
    return ParameterGrid(
        q_values=np.linspace(*q_range),
        h_values=np.linspace(*h_range),
        dist_values=np.linspace(*dist_range),
    )


def evaluate_weapons(
    profiles: Sequence[ts.WeaponProfile],
    q,
    h,
    dist_m,
    use_numba: bool = True,
    pool: Optional[ChunkPool] = None,
    max_workers: Optional[int] = 1,
    show_progress: bool = False,
) -> Tuple[List[str], np.ndarray]:
    """Stack every weapon's Ettk into a (points x weapons) table.

    Inputs are validated once up front so a bad grid halts the whole run
    before any weapon is evaluated.
    """
    q, h, dist_m = ts.validate_inputs(q, h, dist_m)
    names = [profile.name for profile in profiles]
    table = np.empty((q.size, len(profiles)), dtype=np.float64)
    for column, profile in enumerate(profiles):
        if show_progress:
            print(f"Weapon {column + 1}/{len(profiles)}: {profile.name}")
        result = ts.compute_weapon_ttk(
            profile,
            q,
            h,
            dist_m,
            use_numba=use_numba,
            pool=pool,
            max_workers=max_workers,
            show_progress=show_progress,
        )
        table[:, column] = result.ettk.ravel()
    return names, table


def top_k_lowest(table: np.ndarray, k: int = RANKING_DEPTH) -> Tuple[np.ndarray, np.ndarray]:
    """Repeated masked minimum: (k x points) winner columns and their TTKs.

    Ties go to the lowest column index. Each winner is masked to +inf before
    the next pass, so the k picks per row are distinct weapons.
    """
    table = np.asarray(table, dtype=np.float64)
    if table.ndim != 2:
        raise ValueError("TTK table must be 2-D (points x weapons).")
    if table.shape[1] < k:
        raise ValueError(f"Need at least {k} weapons to rank, got {table.shape[1]}.")

    rows = np.arange(table.shape[0])
    used = np.zeros(table.shape, dtype=bool)
    indices = np.empty((k, table.shape[0]), dtype=np.int64)
    values = np.empty((k, table.shape[0]), dtype=np.float64)
    for rank in range(k):
        masked = np.where(used, np.inf, table)
        winners = np.argmin(masked, axis=1)
        # rows left with only +inf would re-pick a masked column
        stale = used[rows, winners]
        if np.any(stale):
            winners[stale] = np.argmax(~used[stale], axis=1)
        indices[rank] = winners
        values[rank] = table[rows, winners]
        used[rows, winners] = True
    return indices, values


def rank_spreads(values: np.ndarray, cap: float = SPREAD_CAP_SECONDS) -> np.ndarray:
    """Gaps between consecutive ranks, clamped to [0, cap].

    A gap involving an unreachable kill (inf) is shown as the cap.
    """
    values = np.asarray(values, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        gaps = values[1:] - values[:-1]
    gaps = np.where(np.isfinite(gaps), gaps, cap)
    return np.clip(gaps, 0.0, cap)


def summarize_rankings(
    names: Sequence[str],
    table: np.ndarray,
    indices: np.ndarray,
    spreads: Optional[np.ndarray] = None,
    cap: float = SPREAD_CAP_SECONDS,
) -> Dict[str, object]:
    points = table.shape[0]
    weapons: Dict[str, Dict[str, object]] = {}
    for column, name in enumerate(names):
        ttk = table[:, column]
        finite = ttk[np.isfinite(ttk)]
        shares = {
            f"rank_{rank + 1}_share": (
                float(np.count_nonzero(indices[rank] == column)) / points if points else 0.0
            )
            for rank in range(indices.shape[0])
        }
        weapons[name] = {
            **shares,
            "mean_finite_ttk": float(finite.mean()) if finite.size else None,
            "unreachable_share": (
                float(points - finite.size) / points if points else 0.0
            ),
        }

    summary: Dict[str, object] = {"points": int(points), "weapons": weapons}
    if spreads is not None:
        summary["spreads"] = {
            f"rank_{rank + 2}_minus_{rank + 1}": {
                "mean": float(spreads[rank].mean()) if points else 0.0,
                "capped_share": (
                    float(np.count_nonzero(spreads[rank] >= cap)) / points if points else 0.0
                ),
            }
            for rank in range(spreads.shape[0])
        }
    return summary


def run_ranking(
    profiles: Mapping[str, ts.WeaponProfile],
    grid: Optional[ParameterGrid] = None,
    depth: int = RANKING_DEPTH,
    cap: float = SPREAD_CAP_SECONDS,
    use_numba: bool = True,
    pool: Optional[ChunkPool] = None,
    max_workers: Optional[int] = 1,
    show_progress: bool = False,
) -> Dict[str, object]:
    grid = grid or build_parameter_grid()
    ordered = [profiles[name] for name in sorted(profiles)]
    q, h, dist_m = grid.mesh()
    names, table = evaluate_weapons(
        ordered,
        q,
        h,
        dist_m,
        use_numba=use_numba,
        pool=pool,
        max_workers=max_workers,
        show_progress=show_progress,
    )
    indices, values = top_k_lowest(table, depth)
    spreads = rank_spreads(values, cap)
    summary = summarize_rankings(names, table, indices, spreads, cap)
    summary["grid"] = grid.describe()
    summary["depth"] = depth
    summary["spread_cap_seconds"] = cap
    logger.info("Ranked %d weapons over %d points", len(names), table.shape[0])
    return summary


def load_rankings(path: Path = RANKING_RESULTS_PATH) -> Dict[str, object]:
    raw = ts._load_json(path)
    return raw if isinstance(raw, dict) else {}


def write_rankings(summary: Dict[str, object], path: Path = RANKING_RESULTS_PATH):
    ts._write_json(path, summary)


def print_ranking_summary(summary: Mapping[str, object]):
    weapons = summary.get("weapons", {})
    depth = int(summary.get("depth", RANKING_DEPTH))
    print()
    print(f"Points evaluated: {summary.get('points', 0):,}")
    header = "".join(f"{'#' + str(rank + 1):>8}" for rank in range(depth))
    print(f"{'Weapon':<14}{header}{'mean TTK':>12}")
    order = sorted(
        weapons.items(),
        key=lambda item: -float(item[1].get("rank_1_share", 0.0)),
    )
    for name, stats in order:
        shares = "".join(
            f"{float(stats.get(f'rank_{rank + 1}_share', 0.0)) * 100:>7.1f}%"
            for rank in range(depth)
        )
        mean_ttk = stats.get("mean_finite_ttk")
        mean_text = ts.format_seconds(mean_ttk if mean_ttk is not None else math.inf)
        print(f"{name:<14}{shares}{mean_text:>12}")
    for label, stats in (summary.get("spreads") or {}).items():
        print(
            f"Spread {label}: mean {stats['mean']:.3f}s, "
            f"at cap {stats['capped_share'] * 100:.1f}%"
        )
