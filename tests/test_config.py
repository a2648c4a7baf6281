from datetime import date, timedelta
from pathlib import Path

import pytest

import config
from errors import InvalidConfigError


def _write_config(path: Path, text: str) -> None:
    path.write_text(text, encoding="utf-8")


def test_load_config_copies_example_when_missing(config_dir):
    loaded = config.load_config()

    assert (config_dir / "config.toml").exists()
    assert loaded["scheduling"]["new_cards_daily_limit"] == 20
    assert loaded["tags"]["flagged_tag_name"] == "flagged"
    assert loaded["render"]["output_dir"] == str(config_dir / "cache")


def test_scheduler_config_normalizes_easy_days(config_dir):
    _write_config(
        config_dir / "config.toml",
        "\n".join([
            "[scheduling]",
            "maximum_interval_days = 365",
            "minimum_interval_days = 1",
            "",
            "[easy_days]",
            "days_to_workload_percentage = [1.0, 1.0, 1.0, 1.0, 1.0, 0.5, 0.5]",
            "",
            "[easy_days.specific_dates]",
            "\"2026-12-25\" = 0.0",
        ]),
    )

    settings = config.scheduler_config()

    assert settings.maximum_interval == timedelta(days=365)
    assert settings.minimum_interval == timedelta(days=1)
    assert sum(settings.easy_days.days_to_workload_percentage) == pytest.approx(1.0)
    assert settings.easy_days.specific_dates == {date(2026, 12, 25): 0.0}


def test_env_overrides_scheduling(config_dir, monkeypatch):
    monkeypatch.setenv("SPARES_NEW_CARDS_DAILY_LIMIT", "5")
    monkeypatch.setenv("SPARES_ENABLE_FUZZ", "true")

    settings = config.scheduler_config()

    assert settings.new_cards_daily_limit == 5
    assert settings.enable_fuzz is True


def test_invalid_workload_rejected(config_dir):
    _write_config(
        config_dir / "config.toml",
        "[easy_days]\ndays_to_workload_percentage = [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]\n",
    )

    with pytest.raises(InvalidConfigError):
        config.load_config()


def test_workload_needs_seven_days(config_dir):
    _write_config(
        config_dir / "config.toml",
        "[easy_days]\ndays_to_workload_percentage = [1.0, 1.0]\n",
    )

    with pytest.raises(InvalidConfigError):
        config.load_config()


def test_internal_state_round_trip(config_dir):
    assert config.load_internal_state()["last_unburied"] is None

    config.save_internal_state({"last_unburied": "2026-01-02", "linked_notes_generated": True})

    assert config.load_internal_state()["last_unburied"] == "2026-01-02"
