from __future__ import annotations

import subprocess


def classify_exception(exc: Exception) -> str:
    if isinstance(exc, subprocess.TimeoutExpired):
        return "timeout"
    if isinstance(exc, (FileNotFoundError, PermissionError)):
        return "unavailable"
    text = str(exc).lower()
    if any(k in text for k in ("timeout", "timed out", "noreply", "no reply")):
        return "timeout"
    if any(k in text for k in ("serviceunknown", "name has no owner", "not provided by any", "connection", "disconnected")):
        return "unavailable"
    if any(k in text for k in ("not found", "no such", "unknown device", "unknown object")):
        return "not_found"
    if any(k in text for k in ("busy", "in use", "resource busy", "not supported", "invalid argument", "einval")):
        return "hardware"
    if any(k in text for k in ("json", "decode", "parse", "invalid")):
        return "parse"
    return "unknown"


def user_message(kind: str, context: str = "general") -> str:
    if context == "metadata":
        mapping = {
            "timeout": "Player did not answer in time; pausing queries.",
            "unavailable": "Player is not running.",
            "not_found": "Player exposes no current track.",
            "parse": "Player metadata could not be read.",
            "unknown": "Player query failed; retrying.",
        }
        return mapping.get(kind, mapping["unknown"])

    if context == "device":
        mapping = {
            "timeout": "Audio server did not answer in time.",
            "unavailable": "Audio server tools are not available.",
            "not_found": "Output device not found.",
            "hardware": "Output device rejected the requested format.",
            "parse": "Audio server reported an unreadable format.",
            "unknown": "Output format change failed.",
        }
        return mapping.get(kind, mapping["unknown"])

    if context == "hints":
        mapping = {
            "unavailable": "Log hint source is not available; relying on metadata only.",
            "timeout": "Log hint source stalled.",
            "unknown": "Log hint source stopped unexpectedly.",
        }
        return mapping.get(kind, mapping["unknown"])

    return "Operation failed. Will retry on next check."
