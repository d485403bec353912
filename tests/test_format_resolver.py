from format_resolver import DEFAULT_LOCAL_DEPTH, resolve_format
from models import Track


def _local(rate=None):
    return Track("Song", "Artist", location="/music/song.flac", sample_rate=rate)


def test_manual_override_wins_over_everything():
    out = resolve_format(_local(48000), manual_override=192000, latest_rate=88200, inspect=lambda p: (96000, 24))
    assert out == (192000.0, None)


def test_local_file_format_beats_reported_and_hint():
    out = resolve_format(_local(48000), latest_rate=88200, inspect=lambda p: (96000, 24))
    assert out == (96000.0, 24)


def test_local_file_without_depth_defaults_to_16():
    out = resolve_format(_local(), inspect=lambda p: (44100, None))
    assert out == (44100.0, DEFAULT_LOCAL_DEPTH)


def test_unreadable_local_file_falls_through():
    def boom(path):
        raise OSError("gone")

    assert resolve_format(_local(48000), inspect=boom) == (48000.0, None)
    assert resolve_format(_local(), latest_rate=96000, inspect=lambda p: None) == (96000.0, None)


def test_stream_uses_reported_then_hint_then_fallback():
    stream = Track("Song", "Artist")
    assert resolve_format(Track("Song", "Artist", sample_rate=176400)) == (176400.0, None)
    assert resolve_format(stream, latest_rate=88200) == (88200.0, None)
    assert resolve_format(stream, fallback_rate=48000) == (48000.0, None)
