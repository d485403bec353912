import logging
from pathlib import Path

import gi

gi.require_version("Gst", "1.0")
gi.require_version("GstPbutils", "1.0")
from gi.repository import GLib, Gst, GstPbutils

logger = logging.getLogger(__name__)


class FileParser:
    """Reads the native sample rate and bit depth of a local audio file."""

    def __init__(self, timeout_seconds=1):
        Gst.init(None)
        self.discoverer = GstPbutils.Discoverer.new(int(timeout_seconds) * Gst.SECOND)

    def get_audio_format(self, path):
        """Returns ``(sample_rate, bit_depth or None)``, or None if unreadable."""
        p = Path(path)
        if not p.is_file():
            logger.debug("Not a readable file: %s", path)
            return None
        try:
            info = self.discoverer.discover_uri(p.resolve().as_uri())
        except GLib.Error as e:
            logger.warning("Format discovery failed for %s: %s", path, e)
            return None
        streams = info.get_audio_streams()
        if not streams:
            return None
        rate = streams[0].get_sample_rate()
        depth = streams[0].get_depth()
        if not rate or rate <= 0:
            return None
        logger.debug("Source %s is %sHz / %sbit", p.name, rate, depth or "?")
        # Lossy codecs report depth 0.
        return float(rate), (int(depth) if depth and depth > 0 else None)
