import json
import os
from pathlib import Path

from google.oauth2 import service_account
from googleapiclient.discovery import build

import ttk_ranking
from ttk_rules import RANKING_DEPTH

SHEETS_CONFIG_PATH = Path(__file__).with_name("sheets_sync_config.json")
SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


def load_config(path=SHEETS_CONFIG_PATH):
    if not path.exists():
        raise RuntimeError(
            f"Missing {path.name}. Copy it next to sheets_sync.py with "
            "sheet_id, worksheet and a rankings block."
        )
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def load_ranking_summary(path_str):
    path = Path(path_str)
    if not path.is_absolute():
        path = Path(__file__).parent / path
    return ttk_ranking.load_rankings(path)


def col_to_a1(col_number):
    col = col_number
    letters = []
    while col > 0:
        col, remainder = divmod(col - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def a1_range(sheet, start_row, start_col, end_row, end_col):
    start = f"{col_to_a1(start_col)}{start_row}"
    end = f"{col_to_a1(end_col)}{end_row}"
    return f"{sheet}!{start}:{end}"


def share_cell(value):
    if value is None:
        return ""
    return round(float(value) * 100, 2)


def build_ranking_rows(summary, include_header=True):
    depth = int(summary.get("depth", RANKING_DEPTH))
    weapons = summary.get("weapons", {})
    width = 1 + depth + 2

    rows = []
    if include_header:
        rows.append(
            ["Weapon"]
            + [f"Rank #{rank + 1} %" for rank in range(depth)]
            + ["Mean TTK (s)", "Unreachable %"]
        )

    order = sorted(
        weapons.items(),
        key=lambda item: (-float(item[1].get("rank_1_share", 0.0)), item[0]),
    )
    for name, stats in order:
        mean_ttk = stats.get("mean_finite_ttk")
        rows.append(
            [name]
            + [share_cell(stats.get(f"rank_{rank + 1}_share")) for rank in range(depth)]
            + [
                "" if mean_ttk is None else round(float(mean_ttk), 4),
                share_cell(stats.get("unreachable_share")),
            ]
        )

    spreads = summary.get("spreads") or {}
    if spreads:
        if rows:
            rows.append([""] * width)
        for label, stats in spreads.items():
            row = [
                f"Spread {label}",
                round(float(stats.get("mean", 0.0)), 4),
                share_cell(stats.get("capped_share")),
            ]
            rows.append(row + [""] * (width - len(row)))

    return rows


def load_dotenv(paths):
    for path in paths:
        if not path.exists():
            continue
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip().lstrip("\ufeff")
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                if not key or os.environ.get(key):
                    continue
                os.environ[key] = value.strip().strip('"').strip("'")


def get_credentials():
    repo_root = Path(__file__).resolve().parent
    load_dotenv([repo_root / ".env", repo_root.parent / ".env"])
    creds_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if not creds_path:
        raise RuntimeError(
            "Missing GOOGLE_APPLICATION_CREDENTIALS. "
            "Set it to your service account JSON path."
        )
    if not Path(creds_path).exists():
        raise RuntimeError(
            "GOOGLE_APPLICATION_CREDENTIALS points to a missing file: "
            f"{creds_path}"
        )
    return service_account.Credentials.from_service_account_file(
        creds_path, scopes=SHEETS_SCOPES
    )


def write_rankings(config):
    rk_config = config["rankings"]
    summary = load_ranking_summary(rk_config["rankings_path"])
    rows = build_ranking_rows(summary, rk_config.get("include_header", True))
    if not summary.get("weapons"):
        raise RuntimeError("No ranking rows generated. Run the ranking first.")

    start_row = rk_config["start_row"]
    start_col = rk_config["start_col"]
    end_row = start_row + len(rows) - 1
    end_col = start_col + max(len(row) for row in rows) - 1

    target_range = a1_range(config["worksheet"], start_row, start_col, end_row, end_col)

    credentials = get_credentials()
    service = build("sheets", "v4", credentials=credentials)
    service.spreadsheets().values().update(
        spreadsheetId=config["sheet_id"],
        range=target_range,
        valueInputOption="RAW",
        body={"values": rows},
    ).execute()
    return target_range


def main():
    config = load_config()
    target_range = write_rankings(config)
    print(f"Rankings written to {target_range}.")


if __name__ == "__main__":
    main()
