"""
Tests for the Google Sheet export of saved rankings.

Run with: python -m pytest tests/test_sheets_sync.py -v
"""

import json

import pytest

import sheets_sync


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def summary():
    return {
        "points": 10,
        "depth": 2,
        "weapons": {
            "M60": {
                "rank_1_share": 0.3,
                "rank_2_share": 0.5,
                "mean_finite_ttk": 1.23456,
                "unreachable_share": 0.0,
            },
            "ShAK-50": {
                "rank_1_share": 0.7,
                "rank_2_share": 0.2,
                "mean_finite_ttk": None,
                "unreachable_share": 1.0,
            },
        },
        "spreads": {"rank_2_minus_1": {"mean": 0.41234, "capped_share": 0.1}},
    }


@pytest.fixture
def rankings_file(tmp_path, summary):
    path = tmp_path / "ttk_rankings.json"
    path.write_text(json.dumps(summary), encoding="utf-8")
    return path


class FakeRequest:
    def __init__(self, calls, kwargs):
        self.calls = calls
        self.kwargs = kwargs

    def execute(self):
        self.calls.append(self.kwargs)
        return {"updatedRange": self.kwargs["range"]}


class FakeValues:
    def __init__(self, calls):
        self.calls = calls

    def update(self, **kwargs):
        return FakeRequest(self.calls, kwargs)


class FakeSpreadsheets:
    def __init__(self, calls):
        self.calls = calls

    def values(self):
        return FakeValues(self.calls)


class FakeService:
    def __init__(self):
        self.calls = []

    def spreadsheets(self):
        return FakeSpreadsheets(self.calls)


# =============================================================================
# A1 HELPERS
# =============================================================================

@pytest.mark.parametrize(
    "col, letters",
    [(1, "A"), (26, "Z"), (27, "AA"), (52, "AZ"), (703, "AAA")],
)
def test_col_to_a1(col, letters):
    assert sheets_sync.col_to_a1(col) == letters


def test_a1_range():
    assert sheets_sync.a1_range("TTK", 2, 1, 5, 4) == "TTK!A2:D5"


# =============================================================================
# ROWS
# =============================================================================

def test_ranking_rows_sorted_by_first_place_share(summary):
    rows = sheets_sync.build_ranking_rows(summary)
    assert rows[0] == ["Weapon", "Rank #1 %", "Rank #2 %", "Mean TTK (s)", "Unreachable %"]
    assert rows[1] == ["ShAK-50", 70.0, 20.0, "", 100.0]
    assert rows[2] == ["M60", 30.0, 50.0, 1.2346, 0.0]
    assert rows[3] == [""] * 5
    assert rows[4] == ["Spread rank_2_minus_1", 0.4123, 10.0, "", ""]


def test_ranking_rows_without_header(summary):
    rows = sheets_sync.build_ranking_rows(summary, include_header=False)
    assert rows[0][0] == "ShAK-50"


# =============================================================================
# WRITE
# =============================================================================

def test_write_rankings_updates_target_range(monkeypatch, rankings_file):
    service = FakeService()
    monkeypatch.setattr(sheets_sync, "get_credentials", lambda: object())
    monkeypatch.setattr(sheets_sync, "build", lambda *args, **kwargs: service)
    config = {
        "sheet_id": "sheet-123",
        "worksheet": "TTK",
        "rankings": {
            "rankings_path": str(rankings_file),
            "start_row": 3,
            "start_col": 2,
        },
    }

    target_range = sheets_sync.write_rankings(config)

    assert target_range == "TTK!B3:F7"
    assert len(service.calls) == 1
    call = service.calls[0]
    assert call["spreadsheetId"] == "sheet-123"
    assert call["valueInputOption"] == "RAW"
    assert len(call["body"]["values"]) == 5


def test_write_rankings_requires_results(monkeypatch, tmp_path):
    monkeypatch.setattr(sheets_sync, "get_credentials", lambda: object())
    config = {
        "sheet_id": "sheet-123",
        "worksheet": "TTK",
        "rankings": {
            "rankings_path": str(tmp_path / "absent.json"),
            "start_row": 1,
            "start_col": 1,
        },
    }
    with pytest.raises(RuntimeError, match="Run the ranking first"):
        sheets_sync.write_rankings(config)


def test_missing_credentials_env(monkeypatch):
    monkeypatch.setattr(sheets_sync, "load_dotenv", lambda paths: None)
    monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)
    with pytest.raises(RuntimeError, match="Missing GOOGLE_APPLICATION_CREDENTIALS"):
        sheets_sync.get_credentials()


def test_credentials_file_must_exist(monkeypatch, tmp_path):
    monkeypatch.setattr(sheets_sync, "load_dotenv", lambda paths: None)
    monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", str(tmp_path / "nope.json"))
    with pytest.raises(RuntimeError, match="missing file"):
        sheets_sync.get_credentials()


def test_load_dotenv_skips_comments_and_existing(monkeypatch, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\ufeff# comment\nTTK_TEST_A='alpha'\nTTK_TEST_B=beta\nnot a pair\n",
        encoding="utf-8",
    )
    monkeypatch.delenv("TTK_TEST_A", raising=False)
    monkeypatch.setenv("TTK_TEST_B", "kept")
    sheets_sync.load_dotenv([env_file, tmp_path / "missing.env"])
    assert sheets_sync.os.environ["TTK_TEST_A"] == "alpha"
    assert sheets_sync.os.environ["TTK_TEST_B"] == "kept"
    monkeypatch.delenv("TTK_TEST_A")


def test_load_config_missing(tmp_path):
    with pytest.raises(RuntimeError, match="Missing"):
        sheets_sync.load_config(tmp_path / "sheets_sync_config.json")
