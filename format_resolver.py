import logging

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_DEPTH = 16


def resolve_format(track, manual_override=None, latest_rate=None, inspect=None, fallback_rate=44100.0):
    """
    Pick the ``(sample_rate, bit_depth)`` a track should play at.

    First match wins:
    1. manual override (depth left to the device)
    2. the local file's own format (depth defaults to 16 when unknown)
    3. the rate the player reports for the track
    4. the latest accepted log hint
    5. ``fallback_rate``

    Depth is only ever pinned for local files; ``None`` means "do not
    constrain depth".
    """
    if manual_override:
        return float(manual_override), None

    if track is not None and track.location and inspect is not None:
        fmt = None
        try:
            fmt = inspect(track.location)
        except Exception as e:
            logger.warning("Could not inspect %s: %s", track.location, e)
        if fmt:
            rate, depth = fmt
            if rate and rate > 0:
                return float(rate), int(depth or DEFAULT_LOCAL_DEPTH)

    if track is not None and track.sample_rate and track.sample_rate > 0:
        return float(track.sample_rate), None

    if latest_rate:
        return float(latest_rate), None

    return float(fallback_rate), None
