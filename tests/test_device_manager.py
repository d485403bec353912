import copy
import json

from device_manager import DeviceManager, depth_from_format
from models import StreamFormat

USB_NODE = {
    "id": 57,
    "type": "PipeWire:Interface:Node",
    "info": {
        "props": {
            "media.class": "Audio/Sink",
            "node.name": "alsa_output.usb-dac",
            "node.description": "USB DAC",
            "api.alsa.card": "2",
        },
        "params": {
            "EnumFormat": [
                {
                    "mediaType": "audio",
                    "mediaSubtype": "raw",
                    "format": {"default": "S32LE", "alternatives": ["S32LE", "S24LE", "S16LE"]},
                    "rate": {"default": 48000, "min": 44100, "max": 384000},
                    "channels": 2,
                }
            ],
            "Format": [{"mediaType": "audio", "format": "S24LE", "rate": 96000, "channels": 2}],
        },
    },
}

HDMI_NODE = {
    "id": 42,
    "type": "PipeWire:Interface:Node",
    "info": {"props": {"media.class": "Audio/Sink", "node.name": "alsa_output.pci-hdmi", "node.description": "HDMI Audio"}, "params": {}},
}

STREAM_NODE = {
    "id": 60,
    "type": "PipeWire:Interface:Node",
    "info": {"props": {"media.class": "Stream/Output/Audio", "node.name": "player"}},
}

DEFAULT_METADATA = {
    "id": 31,
    "type": "PipeWire:Interface:Metadata",
    "info": {"props": {"metadata.name": "default"}},
    "metadata": [{"subject": 0, "key": "default.audio.sink", "type": "Spa:String:JSON", "value": {"name": "alsa_output.usb-dac"}}],
}


class FakeRunner:
    def __init__(self, objects, default_sink=None, reject=()):
        self.dump = json.dumps(objects)
        self.default_sink = default_sink
        self.reject = reject
        self.calls = []

    def __call__(self, cmd):
        self.calls.append(cmd)
        if cmd[0] == "pw-dump":
            return self.dump
        if cmd[0] == "pactl":
            return self.default_sink
        if cmd[0] == "pw-cli":
            if any(f'"{fmt}"' in cmd[-1] for fmt in self.reject):
                return None
            return ""
        if cmd[0] == "pw-metadata":
            return ""
        return None

    def commands(self, name):
        return [c for c in self.calls if c[0] == name]


def _manager(objects=None, **kwargs):
    if objects is None:
        objects = [DEFAULT_METADATA, HDMI_NODE, USB_NODE, STREAM_NODE]
    runner = FakeRunner(objects, **kwargs)
    return DeviceManager(runner=runner), runner


def test_depth_from_format():
    assert depth_from_format("S24LE") == 24
    assert depth_from_format("S24_3LE") == 24
    assert depth_from_format("F32LE") == 32
    assert depth_from_format("garbage") == 0


def test_lists_only_sink_nodes():
    dm, _ = _manager()
    devices = dm.get_all_output_devices()
    assert [d.id for d in devices] == ["alsa_output.pci-hdmi", "alsa_output.usb-dac"]
    assert devices[1].name == "USB DAC"
    assert devices[1].sample_rate == 96000.0
    assert devices[1].serial == 57
    assert devices[0].sample_rate == 0.0


def test_default_device_from_metadata():
    dm, runner = _manager()
    assert dm.get_default_output_device().id == "alsa_output.usb-dac"
    assert runner.commands("pactl") == []


def test_default_device_from_pactl_without_metadata():
    dm, _ = _manager([HDMI_NODE, USB_NODE], default_sink="alsa_output.pci-hdmi\n")
    assert dm.get_default_output_device().id == "alsa_output.pci-hdmi"


def test_current_format_from_node():
    dm, _ = _manager()
    assert dm.get_current_format("alsa_output.usb-dac") == StreamFormat(96000, 24, "S24LE")
    assert dm.get_current_format("missing") is None


def test_current_format_falls_back_to_alsa_hw_params(tmp_path):
    node = copy.deepcopy(USB_NODE)
    del node["info"]["params"]["Format"]
    sub = tmp_path / "card2" / "pcm0p" / "sub0"
    sub.mkdir(parents=True)
    (sub / "hw_params").write_text(
        "access: RW_INTERLEAVED\nformat: S24_3LE\nsubformat: STD\nchannels: 2\nrate: 88200 (88200/1)\n",
        encoding="utf-8",
    )
    dm = DeviceManager(runner=FakeRunner([node]), asound_root=str(tmp_path))
    assert dm.get_current_format("alsa_output.usb-dac") == StreamFormat(88200, 24, "S24_3LE")


def test_set_format_tries_depths_from_highest():
    dm, runner = _manager(reject=("S32LE",))
    assert dm.set_format("alsa_output.usb-dac", 192000) is True

    pw_cli = runner.commands("pw-cli")
    assert len(pw_cli) == 2
    assert '"S32LE"' in pw_cli[0][-1]
    assert '"S24LE"' in pw_cli[1][-1]
    assert pw_cli[1][2] == "57"
    assert runner.commands("pw-metadata")[-1][-1] == "192000"


def test_set_format_with_pinned_depth_uses_exact_match():
    dm, runner = _manager()
    assert dm.set_format("alsa_output.usb-dac", 96000, 16) is True
    pw_cli = runner.commands("pw-cli")
    assert len(pw_cli) == 1
    assert '"S16LE"' in pw_cli[0][-1]


def test_set_format_all_rejected_returns_false():
    dm, _ = _manager(reject=("S32LE", "S24LE", "S16LE"))
    assert dm.set_format("alsa_output.usb-dac", 96000) is False


def test_set_format_outside_enumerated_range_forces_clock_only():
    dm, runner = _manager()
    assert dm.set_format("alsa_output.usb-dac", 768000) is True
    assert runner.commands("pw-cli") == []
    assert runner.commands("pw-metadata")[-1][-1] == "768000"


def test_set_format_unknown_device():
    dm, runner = _manager()
    assert dm.set_format("nope", 96000) is False
    assert runner.commands("pw-metadata") == []
