import logging
import os
import signal

from app_logging import setup_logging
from app_settings import load_settings, save_settings
from device_manager import DeviceManager
from file_parser import FileParser
from log_parser import LogParser
from main_loop import GLibLoop
from music_bridge import MusicBridge
from switcher_service import SwitcherService

logger = logging.getLogger(__name__)


def settings_path():
    override = os.getenv("HZSWITCH_SETTINGS_FILE")
    if override:
        return os.path.expanduser(override)
    base = os.getenv("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
    return os.path.join(base, "hzswitch", "settings.json")


def log_status(track, track_format, device, device_format):
    logger.info("Now: %s [%s] -> %s [%s]", track, track_format, device, device_format)


def build_service(loop, settings):
    return SwitcherService(
        loop,
        DeviceManager(),
        MusicBridge(player=settings["player"], rate_key=settings["mpris_rate_key"]),
        log_parser=LogParser(command=settings["log_hint_command"]),
        file_parser=FileParser(),
        settings=settings,
        on_status_update=log_status,
    )


def main():
    setup_logging()
    path = settings_path()
    settings = load_settings(path)
    if not os.path.exists(path):
        try:
            save_settings(path, settings)
            logger.info("Wrote default settings to %s", path)
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", path, e)

    loop = GLibLoop()
    service = build_service(loop, settings)

    devices = service.list_devices()
    if devices:
        for dev in devices:
            logger.info("Output device: %s (%s) %.0fHz", dev.name, dev.id, dev.sample_rate)
    else:
        logger.warning("No output devices found; switching will be skipped until one appears")

    def _shutdown():
        logger.info("Shutting down")
        service.stop()
        loop.quit()
        return False

    loop.add_signal_handler(signal.SIGINT, _shutdown)
    loop.add_signal_handler(signal.SIGTERM, _shutdown)

    service.start()
    loop.run()


if __name__ == "__main__":
    main()
