import glob
import json
import logging
import re
import subprocess

from models import DeviceInfo, StreamFormat

logger = logging.getLogger(__name__)

_DEPTH_RE = re.compile(r"^[SUF](\d+)", re.IGNORECASE)


def depth_from_format(format_id):
    """'S24LE' / 'S24_3LE' / 'F32LE' -> 24 / 24 / 32; unknown -> 0."""
    m = _DEPTH_RE.match(str(format_id or "").strip())
    if not m:
        return 0
    try:
        return int(m.group(1))
    except ValueError:
        return 0


def _choice_values(value):
    """Flatten a pw-dump SPA choice into its candidate values."""
    if isinstance(value, dict):
        alts = value.get("alternatives")
        if isinstance(alts, list) and alts:
            return list(alts)
        if "default" in value:
            return [value["default"]]
        return []
    if isinstance(value, list):
        return list(value)
    if value is None:
        return []
    return [value]


def _rate_matcher(value):
    """Return a predicate telling whether a pw-dump rate choice admits a rate."""
    if isinstance(value, dict) and ("min" in value or "max" in value):
        lo = float(value.get("min", 0) or 0)
        hi = float(value.get("max", 0) or 0)
        return lambda rate: lo <= rate <= hi
    rates = set()
    for v in _choice_values(value):
        try:
            rates.add(float(v))
        except (TypeError, ValueError):
            continue
    return lambda rate: any(abs(rate - r) < 0.5 for r in rates)


class PhysicalFormat:
    def __init__(self, format_id, admits_rate):
        self.format_id = format_id
        self.bit_depth = depth_from_format(format_id)
        self.admits_rate = admits_rate

    def __repr__(self):
        return f"PhysicalFormat({self.format_id!r})"


class DeviceManager:
    """
    Output devices as PipeWire sink nodes.

    Reads come from ``pw-dump``; writes force the graph clock with
    ``pw-metadata clock.force-rate`` and set the node sample format through
    ``pw-cli set-param``. Devices are identified by their ``node.name``.
    """

    def __init__(self, runner=None, command_timeout=1.5, asound_root="/proc/asound"):
        self._run = runner or self._run_command
        self.command_timeout = command_timeout
        self.asound_root = asound_root

    def _run_command(self, cmd):
        try:
            res = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except FileNotFoundError:
            logger.debug("Command not available: %s", cmd[0])
            return None
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out: %s", " ".join(cmd))
            return None
        if res.returncode != 0:
            logger.debug("Command failed rc=%s: %s (%s)", res.returncode, " ".join(cmd), (res.stderr or "").strip())
            return None
        return res.stdout or ""

    # ------------------------------------------------------------------
    # Graph snapshot
    # ------------------------------------------------------------------
    def _dump(self):
        out = self._run(["pw-dump"])
        if not out:
            return []
        try:
            data = json.loads(out)
        except ValueError as e:
            logger.warning("Unreadable pw-dump output: %s", e)
            return []
        return data if isinstance(data, list) else []

    @staticmethod
    def _props(obj):
        info = obj.get("info") if isinstance(obj, dict) else None
        props = info.get("props") if isinstance(info, dict) else None
        return props if isinstance(props, dict) else {}

    @staticmethod
    def _params(obj, key):
        info = obj.get("info") if isinstance(obj, dict) else None
        params = info.get("params") if isinstance(info, dict) else None
        if not isinstance(params, dict):
            return []
        values = params.get(key)
        return [v for v in values if isinstance(v, dict)] if isinstance(values, list) else []

    def _sink_nodes(self, objects):
        nodes = []
        for obj in objects:
            if not isinstance(obj, dict) or obj.get("type") != "PipeWire:Interface:Node":
                continue
            if self._props(obj).get("media.class") != "Audio/Sink":
                continue
            nodes.append(obj)
        return nodes

    def _find_node(self, objects, device_id):
        for node in self._sink_nodes(objects):
            if self._props(node).get("node.name") == device_id:
                return node
        return None

    def _format_from_node(self, node):
        for param in self._params(node, "Format"):
            rate = param.get("rate")
            fmt = param.get("format")
            if isinstance(rate, (int, float)) and rate > 0:
                return StreamFormat(rate, depth_from_format(fmt), str(fmt or ""))
        return None

    def _device_from_node(self, node):
        props = self._props(node)
        name = props.get("node.description") or props.get("node.nick") or props.get("node.name")
        fmt = self._format_from_node(node)
        return DeviceInfo(
            props.get("node.name"),
            name,
            sample_rate=fmt.sample_rate if fmt is not None else 0.0,
            serial=node.get("id"),
        )

    def _default_sink_name(self, objects):
        for obj in objects:
            if not isinstance(obj, dict) or obj.get("type") != "PipeWire:Interface:Metadata":
                continue
            if self._props(obj).get("metadata.name") != "default":
                continue
            for entry in obj.get("metadata") or []:
                if not isinstance(entry, dict) or entry.get("key") != "default.audio.sink":
                    continue
                value = entry.get("value")
                if isinstance(value, dict) and value.get("name"):
                    return value["name"]
        out = self._run(["pactl", "get-default-sink"])
        return out.strip() if out else None

    # ------------------------------------------------------------------
    # Device controller interface
    # ------------------------------------------------------------------
    def get_all_output_devices(self):
        return [self._device_from_node(n) for n in self._sink_nodes(self._dump())]

    def get_default_output_device(self):
        objects = self._dump()
        name = self._default_sink_name(objects)
        if name:
            node = self._find_node(objects, name)
            if node is not None:
                return self._device_from_node(node)
        nodes = self._sink_nodes(objects)
        return self._device_from_node(nodes[0]) if nodes else None

    def get_device_info(self, device_id):
        node = self._find_node(self._dump(), device_id)
        return self._device_from_node(node) if node is not None else None

    def get_current_format(self, device_id):
        node = self._find_node(self._dump(), device_id)
        if node is None:
            return None
        fmt = self._format_from_node(node)
        if fmt is not None:
            return fmt
        # Suspended nodes carry no Format; the ALSA side may still be open.
        return self._read_hw_params(self._props(node))

    def _read_hw_params(self, props):
        card = props.get("api.alsa.card") or props.get("alsa.card")
        if card is None:
            return None
        device = props.get("api.alsa.pcm.device") or props.get("alsa.device") or 0
        pattern = f"{self.asound_root}/card{card}/pcm{device}p/sub*/hw_params"
        for path in sorted(glob.glob(pattern)):
            try:
                with open(path, "r", encoding="utf-8", errors="ignore") as f:
                    text = f.read()
            except OSError:
                continue
            fmt = ""
            rate = 0.0
            for ln in text.splitlines():
                s = ln.strip()
                if s.lower().startswith("format:"):
                    fmt = s.split(":", 1)[1].strip()
                elif s.lower().startswith("rate:"):
                    try:
                        rate = float(s.split(":", 1)[1].strip().split(" ", 1)[0])
                    except ValueError:
                        rate = 0.0
            if rate > 0:
                return StreamFormat(rate, depth_from_format(fmt), fmt)
        return None

    def _available_formats(self, node):
        out = []
        seen = set()
        for param in self._params(node, "EnumFormat"):
            admits = _rate_matcher(param.get("rate"))
            for fmt in _choice_values(param.get("format")):
                fmt = str(fmt)
                if not depth_from_format(fmt) or fmt in seen:
                    continue
                seen.add(fmt)
                out.append(PhysicalFormat(fmt, admits))
        return out

    def set_format(self, device_id, sample_rate, bit_depth=None):
        """
        Best-matching physical format for the rate (and depth, if pinned).
        Without a pinned depth the formats are tried 32 -> 24 -> 16 and the
        first one the device accepts wins.
        """
        objects = self._dump()
        node = self._find_node(objects, device_id)
        if node is None:
            logger.warning("Output device %s not found", device_id)
            return False

        valid = [f for f in self._available_formats(node) if f.admits_rate(float(sample_rate))]
        if not valid:
            logger.info("No enumerated format lists %.0fHz on %s; forcing clock rate only", sample_rate, device_id)
            return self._force_rate(sample_rate)

        if bit_depth:
            exact = [f for f in valid if f.bit_depth == bit_depth]
            if exact:
                logger.info("Exact physical match: %s", exact[0].format_id)
                return self._apply_format(node, exact[0], sample_rate)
            closest = min(valid, key=lambda f: abs(f.bit_depth - bit_depth))
            logger.info("Closest physical depth: %s (wanted %sbit)", closest.format_id, bit_depth)
            return self._apply_format(node, closest, sample_rate)

        for fmt in sorted(valid, key=lambda f: f.bit_depth, reverse=True):
            if self._apply_format(node, fmt, sample_rate):
                return True
            logger.info("%s rejected %s, trying next", device_id, fmt.format_id)
        logger.warning("All physical formats rejected by %s at %.0fHz", device_id, sample_rate)
        return False

    def _force_rate(self, sample_rate):
        out = self._run(["pw-metadata", "-n", "settings", "0", "clock.force-rate", str(int(sample_rate))])
        return out is not None

    def _apply_format(self, node, fmt, sample_rate):
        serial = node.get("id")
        if serial is None:
            return False
        params = f'{{ params = [ "audio.format" "{fmt.format_id}" "audio.rate" {int(sample_rate)} ] }}'
        if self._run(["pw-cli", "set-param", str(serial), "Props", params]) is None:
            return False
        if not self._force_rate(sample_rate):
            return False
        logger.info("Applied format: %.0fHz / %s", sample_rate, fmt.format_id)
        return True
