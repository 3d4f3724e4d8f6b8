import logging
from typing import Dict

import sheets_sync
import ttk_ranking as tr
import ttk_sim as ts
from ttk_accel import ChunkPool
from ttk_rules import (
    DEFAULT_DIST_RANGE,
    DEFAULT_H_RANGE,
    DEFAULT_Q_RANGE,
    SPREAD_CAP_SECONDS,
)


def prompt_action() -> int:
    print()
    print("What do you want to do?")
    print("1) Expected TTK for one weapon at one point")
    print("2) Show weapon constants and falloff")
    print("3) Rank all weapons over the grid")
    print("4) Push saved rankings to Google Sheet")
    print("5) Rank and push")
    while True:
        raw = input("Choose 1-5: ").strip().lower()
        if raw in ("1", "2", "3", "4", "5"):
            return int(raw)
        print("Enter 1-5.")


def prompt_grid() -> tr.ParameterGrid:
    if not ts.prompt_yes_no("Use the default grid (46 x 46 x 51)? (y/n): "):
        q_points = ts.prompt_int("Accuracy steps (q from 0.10 to 1.00): ", 1)
        h_points = ts.prompt_int("Headshot steps (h from 0 to 1): ", 1)
        max_dist = ts.prompt_float("Max distance (m): ", 0.0)
        dist_points = ts.prompt_int("Distance steps: ", 1)
        return tr.build_parameter_grid(
            (DEFAULT_Q_RANGE[0], DEFAULT_Q_RANGE[1], q_points),
            (DEFAULT_H_RANGE[0], DEFAULT_H_RANGE[1], h_points),
            (DEFAULT_DIST_RANGE[0], max_dist, dist_points),
        )
    return tr.build_parameter_grid()


def print_single_point(profiles: Dict[str, ts.WeaponProfile]):
    profile = ts.prompt_weapon("Weapon: ", profiles)
    q = ts.prompt_float("Accuracy q (0-1): ", 0.0, 1.0)
    h = ts.prompt_float("Headshot fraction h (0-1): ", 0.0, 1.0)
    dist_m = ts.prompt_float("Distance (m): ", 0.0)

    result = ts.compute_weapon_ttk(profile, q, h, dist_m)
    print()
    print(f"{profile.name} at q={q:.3f}, h={h:.3f}, {dist_m:.3f} m")
    print(f"Damage multiplier: {ts.multiplier_at(profile, dist_m)}")
    print(f"Kill within one magazine: {float(result.p_kill) * 100:.2f}%")
    print(f"Expected shots in one magazine: {float(result.eb_mag):.3f}")
    if result.eb_uncapped is not None:
        print(f"Expected shots to kill: {float(result.eb_uncapped):.3f}")
    print(f"Expected TTK: {ts.format_seconds(float(result.ettk))}")


def print_weapon_constants(profiles: Dict[str, ts.WeaponProfile]):
    print()
    print(f"{'Weapon':<12}{'Mag':>5}{'RPM':>8}{'Unit':>8}{'Body':>6}{'Head':>6}{'Tmax':>7}  Variant")
    for name in sorted(profiles):
        profile = profiles[name]
        head = str(profile.head_step) if profile.headshot_modeled else "-"
        print(
            f"{name:<12}{profile.magazine_size:>5}{float(profile.rounds_per_minute):>8.1f}"
            f"{float(profile.unit_damage):>8.3f}{profile.body_step:>6}{head:>6}"
            f"{profile.tmax:>7}  {profile.variant}"
        )
        print(
            f"{'':<12}falloff {float(profile.near_radius_m):g}-{float(profile.far_radius_m):g} m, "
            f"mid = ({profile.mid_intercept} - {profile.mid_slope}*mm)/{profile.mid_denominator}, "
            f"far = {profile.far_multiplier}"
        )


def main():
    ts.configure_console_encoding()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    action = prompt_action()
    task_map = {
        1: ("single",),
        2: ("constants",),
        3: ("rank",),
        4: ("sheet",),
        5: ("rank", "sheet"),
    }
    tasks = task_map[action]

    profiles = ts.load_weapon_profiles()

    if "single" in tasks:
        print_single_point(profiles)

    if "constants" in tasks:
        print_weapon_constants(profiles)

    if "rank" in tasks:
        grid = prompt_grid()
        points = grid.shape[0] * grid.shape[1] * grid.shape[2]
        print(f"Grid points: {points:,}.")
        print(f"Spread cap: {SPREAD_CAP_SECONDS:.1f}s.")
        show_progress = ts.prompt_yes_no("Show progress? (y/n): ")
        use_pool = ts.prompt_yes_no("Use all CPU cores? (y/n): ")

        pool = ChunkPool().start() if use_pool else None
        try:
            summary = tr.run_ranking(
                profiles,
                grid=grid,
                pool=pool,
                show_progress=show_progress,
            )
        finally:
            if pool is not None:
                pool.close()
        tr.write_rankings(summary)
        tr.print_ranking_summary(summary)
        print()
        print(f"Rankings saved to {tr.RANKING_RESULTS_PATH.name}.")

    if "sheet" in tasks:
        config = sheets_sync.load_config()
        try:
            target_range = sheets_sync.write_rankings(config)
        except Exception as exc:
            print(f"Failed to write rankings to Google Sheet: {exc}")
            raise
        print(f"Rankings written to Google Sheet ({target_range}).")

    input("Press Enter to exit...")


if __name__ == "__main__":
    main()
