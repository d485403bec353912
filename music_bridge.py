import logging

import psutil
from gi.repository import Gio, GLib

from models import track_from_mpris

logger = logging.getLogger(__name__)

MPRIS_PREFIX = "org.mpris.MediaPlayer2."
MPRIS_PATH = "/org/mpris/MediaPlayer2"
PLAYER_IFACE = "org.mpris.MediaPlayer2.Player"
PROPS_IFACE = "org.freedesktop.DBus.Properties"
DBUS_NAME = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"


class MusicBridge:
    """
    Player queries over the MPRIS D-Bus interface.

    Every call uses NO_AUTO_START: asking a player that has quit must never
    launch it again. ``get_current_track`` and ``get_player_start_time`` are
    called from worker threads; signal callbacks run on the main loop.
    """

    def __init__(self, player="auto", rate_key="xesam:audioSampleRate", call_timeout_ms=1500):
        self.player = (player or "auto").strip()
        self.rate_key = rate_key
        self.call_timeout_ms = int(call_timeout_ms)
        self.on_terminated = None
        self.on_state_changed = None
        self._bus = None
        self._bus_name = None
        self._subscriptions = []

    # ------------------------------------------------------------------
    # Connection and lifecycle
    # ------------------------------------------------------------------
    def _connection(self):
        if self._bus is None:
            self._bus = Gio.bus_get_sync(Gio.BusType.SESSION, None)
        return self._bus

    def start(self):
        bus = self._connection()
        self.stop()
        self._subscriptions.append(
            bus.signal_subscribe(
                DBUS_NAME,
                DBUS_NAME,
                "NameOwnerChanged",
                DBUS_PATH,
                None,
                Gio.DBusSignalFlags.NONE,
                self._on_name_owner_changed,
            )
        )
        self._subscriptions.append(
            bus.signal_subscribe(
                None,
                PROPS_IFACE,
                "PropertiesChanged",
                MPRIS_PATH,
                None,
                Gio.DBusSignalFlags.NONE,
                self._on_properties_changed,
            )
        )
        logger.info("MPRIS bridge watching %s", self.player if self.player != "auto" else "any player")

    def stop(self):
        if self._bus is None:
            return
        for sub_id in self._subscriptions:
            try:
                self._bus.signal_unsubscribe(sub_id)
            except Exception as e:
                logger.debug("signal_unsubscribe failed: %s", e)
        self._subscriptions = []

    def _matches_player(self, bus_name):
        if not bus_name or not bus_name.startswith(MPRIS_PREFIX):
            return False
        if self.player == "auto":
            # Only the player we have been talking to counts.
            return bus_name == self._bus_name
        return bus_name == MPRIS_PREFIX + self.player

    def _on_name_owner_changed(self, _conn, _sender, _path, _iface, _signal, params, *_user):
        try:
            name, old_owner, new_owner = params.unpack()
        except Exception as e:
            logger.debug("Bad NameOwnerChanged payload: %s", e)
            return
        if not self._matches_player(name):
            return
        if old_owner and not new_owner:
            logger.info("Player %s left the bus", name)
            self._bus_name = None
            if callable(self.on_terminated):
                self.on_terminated()
        elif new_owner and not old_owner:
            logger.info("Player %s appeared on the bus", name)

    def _on_properties_changed(self, _conn, sender, _path, _iface, _signal, params, *_user):
        try:
            iface = params.unpack()[0]
        except Exception:
            return
        if iface != PLAYER_IFACE:
            return
        if callable(self.on_state_changed):
            self.on_state_changed()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def _call(self, bus_name, path, iface, method, args, reply_type):
        reply = self._connection().call_sync(
            bus_name,
            path,
            iface,
            method,
            args,
            GLib.VariantType.new(reply_type),
            Gio.DBusCallFlags.NO_AUTO_START,
            self.call_timeout_ms,
            None,
        )
        return reply.unpack()

    def _resolve_bus_name(self):
        if self.player != "auto":
            return MPRIS_PREFIX + self.player
        (names,) = self._call(DBUS_NAME, DBUS_PATH, DBUS_NAME, "ListNames", None, "(as)")
        players = sorted(n for n in names if n.startswith(MPRIS_PREFIX))
        if self._bus_name in players:
            return self._bus_name
        return players[0] if players else None

    def _get_property(self, bus_name, prop):
        (value,) = self._call(
            bus_name,
            MPRIS_PATH,
            PROPS_IFACE,
            "Get",
            GLib.Variant("(ss)", (PLAYER_IFACE, prop)),
            "(v)",
        )
        return value

    def get_current_track(self):
        """The playing track, or None when nothing is playing."""
        try:
            bus_name = self._resolve_bus_name()
            if not bus_name:
                return None
            self._bus_name = bus_name
            status = self._get_property(bus_name, "PlaybackStatus")
            if status != "Playing":
                return None
            metadata = self._get_property(bus_name, "Metadata")
        except GLib.Error as e:
            logger.debug("MPRIS query failed: %s", e)
            return None
        return track_from_mpris(metadata, self.rate_key)

    def get_player_start_time(self):
        """
        Creation time (epoch seconds) of the player process, if known.

        Looked up fresh on every call: after the player exits and relaunches
        the new process is exactly the one that must not be queried yet.
        """
        try:
            bus_name = self._resolve_bus_name()
            if not bus_name:
                return None
            self._bus_name = bus_name
            (pid,) = self._call(
                DBUS_NAME,
                DBUS_PATH,
                DBUS_NAME,
                "GetConnectionUnixProcessID",
                GLib.Variant("(s)", (bus_name,)),
                "(u)",
            )
            return psutil.Process(int(pid)).create_time()
        except GLib.Error as e:
            logger.debug("Player pid lookup failed: %s", e)
        except psutil.Error as e:
            logger.debug("Player process lookup failed: %s", e)
        return None
