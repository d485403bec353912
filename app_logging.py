import logging
import os
from pathlib import Path
from logging.handlers import RotatingFileHandler

ENV_PREFIX = "HZSWITCH_LOG_"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def _env(name: str, default: str = "") -> str:
    return os.getenv(ENV_PREFIX + name, default)


def _parse_int_env(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    return val if val >= 1 else default


def _parse_level(level_name: str, default: int) -> int:
    level = getattr(logging, level_name.strip().upper(), default)
    return level if isinstance(level, int) else default


def parse_module_levels(raw: str, default_level: int) -> tuple[list[tuple[str, int]], list[str]]:
    """'switcher_service=DEBUG,log_parser=INFO' -> ([(module, level), ...], [bad entries])."""
    levels: list[tuple[str, int]] = []
    invalid: list[str] = []
    for item in (raw or "").split(","):
        entry = item.strip()
        if not entry:
            continue
        module_name, sep, level_name = entry.partition("=")
        if not sep or not module_name.strip() or not level_name.strip():
            invalid.append(entry)
            continue
        levels.append((module_name.strip(), _parse_level(level_name, default_level)))
    return levels, invalid


def _rotating_file_handler(log_file: str, level: int, formatter: logging.Formatter) -> RotatingFileHandler:
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=_parse_int_env("ROTATE_BYTES", 2 * 1024 * 1024),
        backupCount=_parse_int_env("BACKUP_COUNT", 3),
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging() -> None:
    """
    Configure process-wide logging once; safe to call again.

    HZSWITCH_LOG_LEVEL (default INFO), HZSWITCH_LOG_FILE (rotating, sized by
    HZSWITCH_LOG_ROTATE_BYTES / HZSWITCH_LOG_BACKUP_COUNT) and
    HZSWITCH_LOG_MODULE_LEVELS, e.g. "music_bridge=DEBUG" to trace D-Bus
    queries without the poll noise of switcher_service.
    """
    level = _parse_level(_env("LEVEL", "INFO"), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S")
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    log_file = _env("FILE")
    if log_file:
        root.addHandler(_rotating_file_handler(log_file, level, formatter))

    levels, invalid = parse_module_levels(_env("MODULE_LEVELS"), level)
    for entry in invalid:
        root.warning("Invalid module-level logging entry: %s", entry)
    for module_name, module_level in levels:
        logging.getLogger(module_name).setLevel(module_level)
        root.info("Log level override: %s=%s", module_name, logging.getLevelName(module_level))
