import logging
from logging.handlers import RotatingFileHandler

from app_logging import parse_module_levels, setup_logging


def test_parse_module_levels_splits_valid_and_invalid():
    levels, invalid = parse_module_levels("switcher_service=DEBUG, log_parser=bogus,=INFO,music_bridge", logging.INFO)
    assert levels == [("switcher_service", logging.DEBUG), ("log_parser", logging.INFO)]
    assert invalid == ["=INFO", "music_bridge"]


def test_setup_logging_applies_env(monkeypatch, tmp_path):
    log_file = tmp_path / "logs" / "hzswitch.log"
    monkeypatch.setenv("HZSWITCH_LOG_LEVEL", "warning")
    monkeypatch.setenv("HZSWITCH_LOG_FILE", str(log_file))
    monkeypatch.setenv("HZSWITCH_LOG_ROTATE_BYTES", "1024")
    monkeypatch.setenv("HZSWITCH_LOG_MODULE_LEVELS", "music_bridge=DEBUG")
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging()
        assert root.level == logging.WARNING
        file_handlers = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 1024
        assert logging.getLogger("music_bridge").level == logging.DEBUG
        for h in file_handlers:
            h.close()
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        logging.getLogger("music_bridge").setLevel(logging.NOTSET)
