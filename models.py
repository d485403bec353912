import logging
import os
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)


class Track:
    """
    One answer from the player: who is playing, from where, and at what rate
    the player claims it is. Built fresh on every query and never mutated.
    """

    def __init__(self, name, artist, album=None, location=None, sample_rate=None):
        self.name = name
        self.artist = artist
        # Empty album means "no album"; album continuity must not match on it.
        self.album = album or None
        self.location = location or None
        try:
            rate = float(sample_rate) if sample_rate is not None else None
        except (TypeError, ValueError):
            rate = None
        self.sample_rate = rate if rate and rate > 0 else None

    @property
    def identity(self):
        return f"{self.name}|{self.artist}"

    @property
    def is_local(self):
        return self.location is not None

    def __eq__(self, other):
        if not isinstance(other, Track):
            return NotImplemented
        return (
            self.name == other.name
            and self.artist == other.artist
            and self.album == other.album
            and self.location == other.location
            and self.sample_rate == other.sample_rate
        )

    def __repr__(self):
        return (
            f"Track(name={self.name!r}, artist={self.artist!r}, album={self.album!r}, "
            f"location={self.location!r}, sample_rate={self.sample_rate!r})"
        )


class DeviceInfo:
    def __init__(self, device_id, name, sample_rate=0.0, serial=None):
        self.id = device_id
        self.name = name or str(device_id)
        self.sample_rate = float(sample_rate or 0.0)
        # PipeWire object id, needed by pw-cli; not stable across restarts.
        self.serial = serial

    def __eq__(self, other):
        if not isinstance(other, DeviceInfo):
            return NotImplemented
        return self.id == other.id and self.name == other.name

    def __repr__(self):
        return f"DeviceInfo(id={self.id!r}, name={self.name!r}, sample_rate={self.sample_rate!r})"


class StreamFormat:
    def __init__(self, sample_rate, bit_depth, format_id=""):
        self.sample_rate = float(sample_rate or 0.0)
        self.bit_depth = int(bit_depth or 0)
        self.format_id = format_id or ""

    @property
    def description(self):
        return f"{int(self.sample_rate)}Hz / {self.bit_depth}bit"

    def __eq__(self, other):
        if not isinstance(other, StreamFormat):
            return NotImplemented
        return (self.sample_rate, self.bit_depth, self.format_id) == (
            other.sample_rate,
            other.bit_depth,
            other.format_id,
        )

    def __repr__(self):
        return f"StreamFormat({self.description}, {self.format_id!r})"


def format_track_label(sample_rate, bit_depth=None):
    if bit_depth:
        return f"{int(sample_rate)}Hz / {bit_depth}bit"
    return f"{int(sample_rate)}Hz (stream)"


def _first_str(value):
    if isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, str) and item.strip():
                return item
        return None
    if isinstance(value, str) and value.strip():
        return value
    return None


def location_from_url(url):
    """Map an MPRIS ``xesam:url`` to a local path; streams map to None."""
    if not isinstance(url, str) or not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return unquote(parsed.path) or None
    if not parsed.scheme and os.path.isabs(url):
        return url
    return None


def track_from_mpris(metadata, rate_key="xesam:audioSampleRate"):
    if not isinstance(metadata, dict):
        return None
    name = _first_str(metadata.get("xesam:title"))
    if not name:
        return None
    artist = _first_str(metadata.get("xesam:artist")) or _first_str(metadata.get("xesam:albumArtist")) or ""
    album = _first_str(metadata.get("xesam:album"))
    location = location_from_url(metadata.get("xesam:url"))
    rate = metadata.get(rate_key) if rate_key else None
    if isinstance(rate, str):
        try:
            rate = float(rate)
        except ValueError:
            logger.debug("Ignoring non-numeric %s=%r", rate_key, rate)
            rate = None
    return Track(name, artist, album=album, location=location, sample_rate=rate)
