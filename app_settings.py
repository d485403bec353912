import json
import os
from typing import Any


CURRENT_SETTINGS_VERSION = 1

DEFAULT_LOG_HINT_COMMAND = ["journalctl", "--follow", "--lines=0", "--output=short-unix"]

DEFAULT_SETTINGS = {
    "settings_version": CURRENT_SETTINGS_VERSION,
    "player": "auto",
    "device": "",
    "manual_override_rate": 0,
    "startup_rate": 44100,
    "fallback_rate": 44100,
    "transition_poll_ms": 510,
    "steady_poll_ms": 3000,
    "hint_burst_seconds": 5.0,
    "local_switch_delay_ms": 200,
    "trusted_switch_delay_ms": 100,
    "stability_poll_ms": 500,
    "stability_max_attempts": 30,
    "stability_required_seconds": 0.5,
    "hint_staleness_seconds": 2.0,
    "rate_epsilon_hz": 0.1,
    "query_timeout_seconds": 1.0,
    "termination_cooldown_seconds": 5.0,
    "timeout_cooldown_seconds": 10.0,
    "launch_skip_seconds": 5.0,
    "log_hint_command": list(DEFAULT_LOG_HINT_COMMAND),
    "mpris_rate_key": "xesam:audioSampleRate",
}

# Rates offered by players and DACs; a manual override must be one of these.
STANDARD_RATES = (44100, 48000, 88200, 96000, 176400, 192000, 352800, 384000, 705600, 768000)


def _as_str(value: Any, default: str, allow_empty: bool = False) -> str:
    if isinstance(value, str) and (allow_empty or value.strip()):
        return value.strip()
    return default


def _as_int(value: Any, default: int, minimum: int | None = None, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    if minimum is not None and value < minimum:
        return default
    if maximum is not None and value > maximum:
        return default
    return value


def _as_float(value: Any, default: float, minimum: float | None = None, maximum: float | None = None) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    value = float(value)
    if minimum is not None and value < minimum:
        return default
    if maximum is not None and value > maximum:
        return default
    return value


def _as_str_list(value: Any, default: list[str], max_items: int = 10) -> list[str]:
    if not isinstance(value, list):
        return list(default)
    out: list[str] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            out.append(item.strip())
        if len(out) >= max_items:
            break
    return out or list(default)


def _as_rate(value: Any, default: int, allow_zero: bool = True) -> int:
    rate = _as_int(value, default, minimum=0)
    if rate == 0:
        return 0 if allow_zero else default
    if rate not in STANDARD_RATES:
        return default
    return rate


def normalize_settings(raw: dict[str, Any] | None) -> dict[str, Any]:
    raw = raw or {}
    normalized = dict(DEFAULT_SETTINGS)
    normalized["player"] = _as_str(raw.get("player"), DEFAULT_SETTINGS["player"])
    normalized["device"] = _as_str(raw.get("device"), DEFAULT_SETTINGS["device"], allow_empty=True)
    normalized["manual_override_rate"] = _as_rate(raw.get("manual_override_rate"), DEFAULT_SETTINGS["manual_override_rate"])
    normalized["startup_rate"] = _as_rate(raw.get("startup_rate"), DEFAULT_SETTINGS["startup_rate"])
    normalized["fallback_rate"] = _as_rate(raw.get("fallback_rate"), DEFAULT_SETTINGS["fallback_rate"], allow_zero=False)
    normalized["transition_poll_ms"] = _as_int(raw.get("transition_poll_ms"), DEFAULT_SETTINGS["transition_poll_ms"], minimum=50, maximum=5000)
    normalized["steady_poll_ms"] = _as_int(raw.get("steady_poll_ms"), DEFAULT_SETTINGS["steady_poll_ms"], minimum=250, maximum=60000)
    normalized["hint_burst_seconds"] = _as_float(raw.get("hint_burst_seconds"), DEFAULT_SETTINGS["hint_burst_seconds"], minimum=0.5, maximum=60.0)
    normalized["local_switch_delay_ms"] = _as_int(raw.get("local_switch_delay_ms"), DEFAULT_SETTINGS["local_switch_delay_ms"], minimum=0, maximum=5000)
    normalized["trusted_switch_delay_ms"] = _as_int(raw.get("trusted_switch_delay_ms"), DEFAULT_SETTINGS["trusted_switch_delay_ms"], minimum=0, maximum=5000)
    normalized["stability_poll_ms"] = _as_int(raw.get("stability_poll_ms"), DEFAULT_SETTINGS["stability_poll_ms"], minimum=50, maximum=5000)
    normalized["stability_max_attempts"] = _as_int(raw.get("stability_max_attempts"), DEFAULT_SETTINGS["stability_max_attempts"], minimum=1, maximum=600)
    normalized["stability_required_seconds"] = _as_float(raw.get("stability_required_seconds"), DEFAULT_SETTINGS["stability_required_seconds"], minimum=0.0, maximum=30.0)
    normalized["hint_staleness_seconds"] = _as_float(raw.get("hint_staleness_seconds"), DEFAULT_SETTINGS["hint_staleness_seconds"], minimum=0.0, maximum=60.0)
    normalized["rate_epsilon_hz"] = _as_float(raw.get("rate_epsilon_hz"), DEFAULT_SETTINGS["rate_epsilon_hz"], minimum=0.0, maximum=100.0)
    normalized["query_timeout_seconds"] = _as_float(raw.get("query_timeout_seconds"), DEFAULT_SETTINGS["query_timeout_seconds"], minimum=0.1, maximum=30.0)
    normalized["termination_cooldown_seconds"] = _as_float(raw.get("termination_cooldown_seconds"), DEFAULT_SETTINGS["termination_cooldown_seconds"], minimum=0.0, maximum=120.0)
    normalized["timeout_cooldown_seconds"] = _as_float(raw.get("timeout_cooldown_seconds"), DEFAULT_SETTINGS["timeout_cooldown_seconds"], minimum=0.0, maximum=120.0)
    normalized["launch_skip_seconds"] = _as_float(raw.get("launch_skip_seconds"), DEFAULT_SETTINGS["launch_skip_seconds"], minimum=0.0, maximum=120.0)
    normalized["log_hint_command"] = _as_str_list(raw.get("log_hint_command"), DEFAULT_SETTINGS["log_hint_command"], max_items=32)
    normalized["mpris_rate_key"] = _as_str(raw.get("mpris_rate_key"), DEFAULT_SETTINGS["mpris_rate_key"])
    normalized["settings_version"] = CURRENT_SETTINGS_VERSION

    # A burst shorter than one fast tick would never poll.
    if normalized["hint_burst_seconds"] * 1000 < normalized["transition_poll_ms"]:
        normalized["hint_burst_seconds"] = DEFAULT_SETTINGS["hint_burst_seconds"]
    return normalized


def load_settings(path: str) -> dict[str, Any]:
    if not os.path.exists(path):
        return normalize_settings(None)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except Exception:
        return normalize_settings(None)

    if not isinstance(data, dict):
        return normalize_settings(None)
    return normalize_settings(data)


def save_settings(path: str, settings: dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    data = normalize_settings(settings)
    temp_file = f"{path}.tmp"
    with open(temp_file, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    os.replace(temp_file, path)
