# kindle_bot/config/checker_config.py

"""Per-checker runtime tuning stored next to the book lists."""

import json
import logging
from dataclasses import dataclass, field, fields
from typing import Any

from kindle_bot.config.settings import ConfigError, Settings

logger = logging.getLogger("kindle_bot.config")


@dataclass(frozen=True)
class SaleCheckerConfig:
    """Tuning for the segmented sale checker."""

    enabled: bool = True
    gist_id: str = ""
    gist_filename: str = ""
    execution_interval_minutes: int = 0
    get_items_retry_count: int = Settings.MAX_RETRIES
    get_items_initial_retry_seconds: float = Settings.INITIAL_BACKOFF
    segment_size: int = Settings.SEGMENT_SIZE
    sale_threshold: int = Settings.SALE_THRESHOLD
    point_percent: int = Settings.POINT_PERCENT
    price_change_amount: int = Settings.PRICE_CHANGE_AMOUNT


@dataclass(frozen=True)
class SlotCheckerConfig:
    """Tuning shared by the two slot-scheduled checkers."""

    enabled: bool = True
    gist_id: str = ""
    gist_filename: str = ""
    cycle_days: float = Settings.CYCLE_DAYS
    search_items_retry_count: int = Settings.MAX_RETRIES
    search_items_initial_retry_seconds: float = Settings.INITIAL_BACKOFF
    get_items_retry_count: int = Settings.MAX_RETRIES
    get_items_initial_retry_seconds: float = Settings.INITIAL_BACKOFF


@dataclass(frozen=True)
class CheckerConfigs:
    """All checker settings, read once per run."""

    report_failure: bool = True
    sale_checker: SaleCheckerConfig = field(
        default_factory=SaleCheckerConfig
    )
    new_release_checker: SlotCheckerConfig = field(
        default_factory=SlotCheckerConfig
    )
    paper_to_kindle_checker: SlotCheckerConfig = field(
        default_factory=SlotCheckerConfig
    )


# JSON key -> dataclass field, per section
_SALE_KEYS: dict[str, str] = {
    "Enabled": "enabled",
    "GistID": "gist_id",
    "GistFilename": "gist_filename",
    "ExecutionIntervalMinutes": "execution_interval_minutes",
    "GetItemsPaapiRetryCount": "get_items_retry_count",
    "GetItemsInitialRetrySeconds": "get_items_initial_retry_seconds",
    "SegmentSize": "segment_size",
    "SaleThreshold": "sale_threshold",
    "PointPercent": "point_percent",
    "PriceChangeAmount": "price_change_amount",
}

_SLOT_KEYS: dict[str, str] = {
    "Enabled": "enabled",
    "GistID": "gist_id",
    "GistFilename": "gist_filename",
    "CycleDays": "cycle_days",
    "SearchItemsPaapiRetryCount": "search_items_retry_count",
    "SearchItemsInitialRetrySeconds": (
        "search_items_initial_retry_seconds"
    ),
    "GetItemsPaapiRetryCount": "get_items_retry_count",
    "GetItemsInitialRetrySeconds": "get_items_initial_retry_seconds",
}


def _pick(
    section: Any, keys: dict[str, str], target: type,
) -> dict[str, Any]:
    """Map the known JSON keys of *section* onto fields of *target*.

    Zero / empty numeric values fall back to the defaults, matching
    how the stored document leaves unused knobs at 0. Whole floats
    such as ``3.0`` are accepted for integer fields.

    Raises:
        ConfigError: an integer field holds a fractional number.
    """
    if not isinstance(section, dict):
        return {}
    types = {f.name: f.type for f in fields(target)}
    values: dict[str, Any] = {}
    for json_key, field_name in keys.items():
        if json_key not in section:
            continue
        value = section[json_key]
        if isinstance(value, bool) or isinstance(value, str):
            values[field_name] = value
        elif isinstance(value, (int, float)) and value > 0:
            if types[field_name] is int:
                if value != int(value):
                    raise ConfigError(
                        f"{json_key} must be a whole number, got {value}"
                    )
                value = int(value)
            values[field_name] = value
    return values


def parse_checker_configs(raw: bytes | str) -> CheckerConfigs:
    """Parse the checker configuration JSON document.

    Raises:
        ConfigError: the document is not a JSON object.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(
            f"Checker config is not valid JSON: {exc}"
        ) from exc
    if not isinstance(data, dict):
        raise ConfigError("Checker config must be a JSON object")

    configs = CheckerConfigs(
        report_failure=bool(data.get("ReportFailure", True)),
        sale_checker=SaleCheckerConfig(
            **_pick(data.get("SaleChecker"), _SALE_KEYS, SaleCheckerConfig)
        ),
        new_release_checker=SlotCheckerConfig(
            **_pick(
                data.get("NewReleaseChecker"), _SLOT_KEYS, SlotCheckerConfig
            )
        ),
        paper_to_kindle_checker=SlotCheckerConfig(
            **_pick(
                data.get("PaperToKindleChecker"),
                _SLOT_KEYS,
                SlotCheckerConfig,
            )
        ),
    )
    logger.debug("Checker configs loaded: %s", configs)
    return configs
