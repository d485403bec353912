from models import StreamFormat, Track, format_track_label, location_from_url, track_from_mpris


def test_track_identity_and_empty_album():
    t = Track("Song", "Artist", album="", sample_rate="0")
    assert t.identity == "Song|Artist"
    assert t.album is None
    assert t.sample_rate is None
    assert not t.is_local


def test_location_from_url():
    assert location_from_url("file:///music/My%20Album/01.flac") == "/music/My Album/01.flac"
    assert location_from_url("/music/a.flac") == "/music/a.flac"
    assert location_from_url("https://example.invalid/stream") is None
    assert location_from_url("") is None


def test_track_from_mpris_builds_local_track():
    meta = {
        "xesam:title": "Song",
        "xesam:artist": ["", "Artist"],
        "xesam:album": "Album",
        "xesam:url": "file:///music/song.flac",
        "xesam:audioSampleRate": "96000",
    }
    t = track_from_mpris(meta)
    assert t == Track("Song", "Artist", album="Album", location="/music/song.flac", sample_rate=96000)


def test_track_from_mpris_falls_back_to_album_artist():
    t = track_from_mpris({"xesam:title": "Song", "xesam:albumArtist": ["Band"], "custom:rate": 44100}, "custom:rate")
    assert t.artist == "Band"
    assert t.sample_rate == 44100.0


def test_track_from_mpris_requires_title():
    assert track_from_mpris({"xesam:artist": ["Artist"]}) is None
    assert track_from_mpris(None) is None


def test_format_labels():
    assert format_track_label(96000.0, 24) == "96000Hz / 24bit"
    assert format_track_label(44100.0) == "44100Hz (stream)"
    assert StreamFormat(192000, 32).description == "192000Hz / 32bit"
