import json
import os
import shutil
import tomllib
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from errors import InvalidConfigError

CONFIG_DIR = Path.home() / ".spares"
CONFIG_PATH = CONFIG_DIR / "config.toml"
INTERNAL_STATE_PATH = CONFIG_DIR / "internal.json"
PROJECT_CONFIG_EXAMPLE = Path(__file__).parent / "config.toml"

DEFAULT_WORKLOAD = [1.0] * 7


class EasyDaysConfig(BaseModel):
    enabled: bool = True
    # Monday first; normalized so the seven values sum to 1
    days_to_workload_percentage: List[float] = [1.0 / 7] * 7
    specific_dates: Dict[date, float] = {}


class SchedulerConfig(BaseModel):
    maximum_interval: timedelta = timedelta(days=180)
    minimum_interval: timedelta = timedelta(days=2)
    new_cards_daily_limit: int = 20
    enable_fuzz: bool = False
    leech_lapses_threshold: int = 8
    flagged_tag_name: str = "flagged"
    easy_days: EasyDaysConfig = EasyDaysConfig()


def _env_bool(name: str, fallback: Any) -> bool:
    return os.getenv(name, str(fallback)).lower() == "true"


def load_config() -> Dict[str, Any]:
    """Load config from ~/.spares/config.toml, copy example if missing, load .env overrides."""
    load_dotenv()
    if not CONFIG_PATH.exists():
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        shutil.copy(PROJECT_CONFIG_EXAMPLE, CONFIG_PATH)
    with open(CONFIG_PATH, "rb") as f:
        config = tomllib.load(f)

    scheduling_cfg = config.get("scheduling", {})
    config["scheduling"] = {
        "maximum_interval_days": int(os.getenv(
            "SPARES_MAXIMUM_INTERVAL", scheduling_cfg.get("maximum_interval_days", 180)
        )),
        "minimum_interval_days": int(os.getenv(
            "SPARES_MINIMUM_INTERVAL", scheduling_cfg.get("minimum_interval_days", 2)
        )),
        "new_cards_daily_limit": int(os.getenv(
            "SPARES_NEW_CARDS_DAILY_LIMIT", scheduling_cfg.get("new_cards_daily_limit", 20)
        )),
        "enable_fuzz": _env_bool("SPARES_ENABLE_FUZZ", scheduling_cfg.get("enable_fuzz", False)),
    }
    leech_cfg = config.get("leech", {})
    config["leech"] = {
        "lapses_threshold": int(leech_cfg.get("lapses_threshold", 8)),
    }
    tags_cfg = config.get("tags", {})
    config["tags"] = {
        "flagged_tag_name": tags_cfg.get("flagged_tag_name", "flagged"),
    }
    easy_days_cfg = config.get("easy_days", {})
    config["easy_days"] = {
        "enabled": bool(easy_days_cfg.get("enabled", True)),
        "days_to_workload_percentage": [
            float(x) for x in easy_days_cfg.get("days_to_workload_percentage", DEFAULT_WORKLOAD)
        ],
        "specific_dates": {
            str(k): float(v) for k, v in easy_days_cfg.get("specific_dates", {}).items()
        },
    }
    render_cfg = config.get("render", {})
    config["render"] = {
        "typst_root": os.getenv("TYPST_ROOT", render_cfg.get("typst_root", "")),
        "output_dir": os.getenv(
            "SPARES_OUTPUT_DIR", render_cfg.get("output_dir", str(CONFIG_DIR / "cache"))
        ),
    }
    validate_config(config)
    return config


def validate_config(config: Dict[str, Any]) -> None:
    """Raise InvalidConfigError for settings the scheduler cannot use."""
    percentages = config["easy_days"]["days_to_workload_percentage"]
    if len(percentages) != 7:
        raise InvalidConfigError("`days_to_workload_percentage` must contain 7 values.")
    values = list(percentages) + list(config["easy_days"]["specific_dates"].values())
    if any(not 0.0 <= value <= 1.0 for value in values):
        raise InvalidConfigError("Easy day percentages must be between 0 and 1.")
    if all(value == 0.0 for value in percentages):
        raise InvalidConfigError("Easy day percentages cannot all be 0.")
    scheduling = config["scheduling"]
    if scheduling["minimum_interval_days"] > scheduling["maximum_interval_days"]:
        raise InvalidConfigError("`minimum_interval_days` cannot exceed `maximum_interval_days`.")


def scheduler_config(config: Optional[Dict[str, Any]] = None) -> SchedulerConfig:
    """Build the typed scheduler settings from the loaded config."""
    if config is None:
        config = load_config()
    percentages = config["easy_days"]["days_to_workload_percentage"]
    total = sum(percentages)
    return SchedulerConfig(
        maximum_interval=timedelta(days=config["scheduling"]["maximum_interval_days"]),
        minimum_interval=timedelta(days=config["scheduling"]["minimum_interval_days"]),
        new_cards_daily_limit=config["scheduling"]["new_cards_daily_limit"],
        enable_fuzz=config["scheduling"]["enable_fuzz"],
        leech_lapses_threshold=config["leech"]["lapses_threshold"],
        flagged_tag_name=config["tags"]["flagged_tag_name"],
        easy_days=EasyDaysConfig(
            enabled=config["easy_days"]["enabled"],
            days_to_workload_percentage=[p / total for p in percentages],
            specific_dates={
                date.fromisoformat(k): v for k, v in config["easy_days"]["specific_dates"].items()
            },
        ),
    )


def get_config_value(section: str, key: str, default: Optional[Any] = None) -> Any:
    """Get nested config value, e.g., get_config_value('scheduling', 'new_cards_daily_limit')."""
    config = load_config()
    value = config.get(section, {}).get(key, default)
    return value


def load_internal_state() -> Dict[str, Any]:
    """Read bookkeeping values (last unbury, link generation) kept next to the config."""
    if not INTERNAL_STATE_PATH.exists():
        return {"last_unburied": None, "linked_notes_generated": False}
    return json.loads(INTERNAL_STATE_PATH.read_text(encoding="utf-8"))


def save_internal_state(state: Dict[str, Any]) -> None:
    """Persist bookkeeping values."""
    INTERNAL_STATE_PATH.parent.mkdir(parents=True, exist_ok=True)
    INTERNAL_STATE_PATH.write_text(json.dumps(state, indent=2), encoding="utf-8")
