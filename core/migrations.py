"""
Schema migrations for persisted settings and report state.

Each persisted JSON document carries a `schema_version`. Documents written before
versioning existed are treated as version 1. Every version transition has its own
function so it can be tested in isolation.
"""
import logging
from typing import Any, Callable, Dict

from core.models import REPORT_SCHEMA_VERSION, SETTINGS_SCHEMA_VERSION, is_absolute_http_url

logger = logging.getLogger(__name__)

# v1 (camelCase, unversioned) -> v2 field names
_SETTINGS_V1_KEYS = {
    "apiEndpoint": "api_endpoint",
    "symbolCount": "universe_size",
    "sortCriteria": "ranking_metric",
    "minZScore": "min_z_score",
    "soundEnabled": "alert_sound_enabled",
    "displayTimezone": "display_timezone",
}


def settings_v1_to_v2(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rename camelCase v1 keys; keys unknown to v1 are dropped.

    - A relative `apiEndpoint` (v1 defaulted to the `/bybit_api` dev proxy path)
      is dropped so the absolute default endpoint applies.
    - `minVolumeRatio` is dropped: v1 stored it (default 2.0) but never applied
      it, so carrying it over would enable a gate v1 users never had.
    """
    migrated = {}
    for old_key, new_key in _SETTINGS_V1_KEYS.items():
        if old_key in data:
            migrated[new_key] = data[old_key]
        elif new_key in data:
            migrated[new_key] = data[new_key]

    endpoint = migrated.get("api_endpoint")
    if endpoint is not None and not is_absolute_http_url(endpoint):
        logger.warning(f"Dropping relative API endpoint {endpoint!r} from v1 settings")
        del migrated["api_endpoint"]

    migrated["schema_version"] = 2
    return migrated


_EVENT_V1_DIRECTIONS = {"bullish": "up", "bearish": "down"}
_EVENT_V1_SEVERITIES = {"medium": "elevated", "high": "extreme"}


def _event_v1_to_v2(event: Dict[str, Any]) -> Dict[str, Any]:
    if "type" not in event and "zScore" not in event:
        return event
    return {
        "id": event["id"],
        "symbol": event["symbol"],
        "timeframe": event["timeframe"],
        "time": event["time"],
        "direction": _EVENT_V1_DIRECTIONS.get(event.get("type"), event.get("type")),
        "severity": _EVENT_V1_SEVERITIES.get(event.get("severity"), event.get("severity")),
        "z_score": event["zScore"],
        "open_price": event["openPrice"],
        "close_price": event["closePrice"],
    }


def report_v1_to_v2(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Single `timeframe` becomes the `timeframes` list, camelCase keys are renamed
    and v1 event labels (bullish/bearish, medium/high) are mapped to v2 ones.
    """
    migrated = dict(data)
    config = dict(migrated.get("config") or {})
    if "timeframe" in config:
        timeframe = config.pop("timeframe")
        if not config.get("timeframes"):
            config["timeframes"] = [timeframe]
    if "minZScore" in config:
        config["min_z_score"] = config.pop("minZScore")
    migrated["config"] = config
    migrated["results"] = [_event_v1_to_v2(e) for e in migrated.get("results") or []]
    if "lastRun" in migrated:
        migrated["last_run"] = migrated.pop("lastRun")
    migrated["schema_version"] = 2
    return migrated


SETTINGS_MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: settings_v1_to_v2,
}

REPORT_MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: report_v1_to_v2,
}


def _migrate(
    data: Dict[str, Any],
    migrations: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]],
    target: int,
    kind: str
) -> Dict[str, Any]:
    version = data.get("schema_version", 1)
    if version > target:
        raise ValueError(f"{kind} schema version {version} is newer than supported {target}")

    while version < target:
        migration = migrations.get(version)
        if migration is None:
            raise ValueError(f"No {kind} migration from version {version}")
        logger.info(f"Migrating {kind} from schema version {version} to {version + 1}")
        data = migration(data)
        version = data["schema_version"]
    return data


def migrate_settings(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a persisted settings document up to the current schema."""
    return _migrate(data, SETTINGS_MIGRATIONS, SETTINGS_SCHEMA_VERSION, "settings")


def migrate_report_state(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a persisted report state up to the current schema."""
    return _migrate(data, REPORT_MIGRATIONS, REPORT_SCHEMA_VERSION, "report state")
