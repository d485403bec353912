import logging
import math

from app_errors import classify_exception, user_message
from app_settings import normalize_settings
from format_resolver import resolve_format
from models import format_track_label
from poll_scheduler import PollScheduler
from rate_aggregator import RateAggregator
from termination_guard import TerminationGuard

logger = logging.getLogger(__name__)

# Transition start is back-dated so a hint logged just before the track
# query noticed the change still counts for the new track.
TRANSITION_START_SLACK = 0.5


class SwitcherService:
    """
    Decides the output format for whatever the player is playing and applies
    it once per track transition.

    All state lives on the main-loop thread. The only work done elsewhere is
    the blocking player query (``loop.run_in_thread``) and the log monitor
    thread; both hand their results back through ``loop.idle_add``.
    """

    def __init__(self, loop, device_manager, music_bridge, log_parser=None, file_parser=None,
                 settings=None, on_status_update=None):
        self.loop = loop
        self.device_manager = device_manager
        self.music_bridge = music_bridge
        self.log_parser = log_parser
        self.file_parser = file_parser
        self.settings = normalize_settings(settings)
        self.on_status_update = on_status_update

        s = self.settings
        self.fallback_rate = float(s["fallback_rate"])
        self.startup_rate = float(s["startup_rate"])
        self.rate_epsilon = float(s["rate_epsilon_hz"])
        self.local_switch_delay_ms = s["local_switch_delay_ms"]
        self.trusted_switch_delay_ms = s["trusted_switch_delay_ms"]
        self.stability_poll_ms = s["stability_poll_ms"]
        self.stability_max_attempts = s["stability_max_attempts"]
        self.hint_burst_seconds = s["hint_burst_seconds"]

        self.aggregator = RateAggregator(
            loop.now,
            staleness_tolerance=s["hint_staleness_seconds"],
            epsilon=s["rate_epsilon_hz"],
            required_stable=s["stability_required_seconds"],
        )
        self.guard = TerminationGuard(
            loop.now,
            termination_cooldown=s["termination_cooldown_seconds"],
            timeout_cooldown=s["timeout_cooldown_seconds"],
            query_timeout=s["query_timeout_seconds"],
            launch_skip=s["launch_skip_seconds"],
        )
        self.poller = PollScheduler(
            loop,
            self.check_for_track_change,
            transition_ms=s["transition_poll_ms"],
            steady_ms=s["steady_poll_ms"],
            hold_fast=self.is_transition_pending,
        )

        self.is_running = False
        self.selected_device_id = s["device"] or None
        self.manual_override_rate = float(s["manual_override_rate"]) if s["manual_override_rate"] else None

        # Transition state
        self.track_identity = ""
        self.current_track = None
        self.previous_album = None
        self.confirmed_album_rate = None
        self.switch_applied = False
        self._seen_first_track = False
        self._pending_source = 0
        self._resume_source = 0
        self._query_epoch = 0
        self._query_in_flight = False
        self._last_status = None
        self._inspect_cache = (None, None)

        if self.music_bridge is not None:
            self.music_bridge.on_terminated = self.on_player_terminated
            self.music_bridge.on_state_changed = self.notify_player_state_changed
        if self.log_parser is not None:
            self.log_parser.on_rate_hint = self.on_rate_hint

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self):
        if self.is_running:
            return
        self.is_running = True
        self.guard.reset()
        logger.info("Switcher starting (device=%s, override=%s)", self.selected_device_id or "default", self.manual_override_rate)

        if self.log_parser is not None:
            try:
                self.log_parser.start()
            except Exception as e:
                logger.warning("%s (%s)", user_message(classify_exception(e), "hints"), e)
        if self.music_bridge is not None:
            try:
                self.music_bridge.start()
            except Exception as e:
                logger.warning("%s (%s)", user_message(classify_exception(e), "metadata"), e)

        if self.startup_rate > 0:
            device = self._target_device()
            if device is not None:
                self._write_format(device, self.startup_rate, None)

        self.check_for_track_change()
        self.poller.start()

    def stop(self):
        if not self.is_running:
            return
        self.is_running = False
        self._query_epoch += 1
        self.poller.stop()
        self._cancel_pending()
        self._cancel_resume()
        self.aggregator.reset()
        self.track_identity = ""
        self.current_track = None
        self.switch_applied = False
        if self.log_parser is not None:
            try:
                self.log_parser.stop()
            except Exception:
                logger.debug("Log monitor stop failed", exc_info=True)
        if self.music_bridge is not None:
            try:
                self.music_bridge.stop()
            except Exception:
                logger.debug("Player bridge stop failed", exc_info=True)
        logger.info("Switcher stopped")

    # ------------------------------------------------------------------
    # Presentation-facing controls
    # ------------------------------------------------------------------
    def set_manual_override(self, rate):
        self.manual_override_rate = float(rate) if rate else None
        logger.info("Manual override: %s", f"{self.manual_override_rate:.0f}Hz" if self.manual_override_rate else "disabled")
        self._reapply_current()
        self.check_for_track_change()

    def select_device(self, device_id):
        self.selected_device_id = device_id or None
        logger.info("Output device: %s", self.selected_device_id or "system default")
        self._reapply_current()
        self.check_for_track_change()

    def list_devices(self):
        try:
            return list(self.device_manager.get_all_output_devices() or [])
        except Exception as e:
            logger.warning("%s (%s)", user_message(classify_exception(e), "device"), e)
            return []

    def notify_player_state_changed(self, *_args):
        if not self.is_running or self.guard.in_cooldown():
            return
        self.check_for_track_change()
        self.poller.burst(self.hint_burst_seconds)

    def is_transition_pending(self):
        return bool(self._pending_source)

    # ------------------------------------------------------------------
    # Player query
    # ------------------------------------------------------------------
    def check_for_track_change(self):
        if not self.is_running:
            return
        # One query at a time; a slow player must not pile up threads.
        if self._query_in_flight:
            return
        self._query_in_flight = True
        epoch = self._query_epoch

        def task():
            track, timed_out = self._fetch_track()
            self.loop.idle_add(self._on_track_result, epoch, track, timed_out)

        self.loop.run_in_thread(task)

    def _player_start_time(self):
        getter = getattr(self.music_bridge, "get_player_start_time", None)
        if not callable(getter):
            return None
        try:
            return getter()
        except Exception:
            logger.debug("Player start time unavailable", exc_info=True)
            return None

    def _fetch_track(self):
        """Runs off the main loop. Touches only the guard and the bridge."""
        if self.music_bridge is None:
            return None, False
        if not self.guard.allow_query(self._player_start_time):
            return None, False
        started = self.loop.now()
        try:
            track = self.music_bridge.get_current_track()
        except Exception as e:
            logger.info("%s (%s)", user_message(classify_exception(e), "metadata"), e)
            track = None
        elapsed = self.loop.now() - started
        if self.guard.is_timeout(elapsed):
            # Set the deadline right here so concurrent work sees it at once.
            self.guard.trip(f"player query took {elapsed:.2f}s", self.guard.timeout_cooldown)
            return None, True
        return track, False

    def _on_track_result(self, epoch, track, timed_out):
        self._query_in_flight = False
        if not self.is_running:
            return
        if timed_out:
            self._enter_cooldown("player query timed out", tripped=True)
            return
        if epoch != self._query_epoch:
            logger.debug("Discarding player result from an earlier epoch")
            return
        if track is None:
            self._handle_idle()
            return
        self.process_track(track)

    # ------------------------------------------------------------------
    # Track transition detection
    # ------------------------------------------------------------------
    def process_track(self, track):
        if track.identity != self.track_identity:
            self.current_track = track
            self._begin_transition(track, same_identity=False)
        elif self.aggregator.candidate is not None and not self._pending_source:
            # A hint arrived after this track had settled.
            self.current_track = track
            self._begin_transition(track, same_identity=True)
        else:
            self.current_track = track
            if not self._pending_source:
                self._report_track(track)

    def _handle_idle(self):
        if self.track_identity:
            logger.info("Playback stopped")
            self.track_identity = ""
            self.current_track = None
            self.switch_applied = False
            self._cancel_pending()
            self.aggregator.clear_candidate()
        device = self._target_device()
        self._update_status("Idle", "-", self._device_label(device), self._device_format_label(device))

    def _begin_transition(self, track, same_identity):
        is_same_album = (
            self._seen_first_track
            and self.previous_album is not None
            and track.album == self.previous_album
        )
        self._seen_first_track = True
        self.track_identity = track.identity
        self.previous_album = track.album
        self.switch_applied = False
        self.aggregator.mark_transition(self.loop.now() - TRANSITION_START_SLACK)
        if not same_identity:
            self.aggregator.clear_candidate()
        self._cancel_pending()
        if self.is_running:
            self.poller.use_transition()

        logger.info("Track change: '%s' by %s%s", track.name, track.artist, " (late rate hint)" if same_identity else "")
        self._report_track(track)

        if track.is_local:
            self._schedule_switch(track, self.local_switch_delay_ms)
        elif track.sample_rate:
            logger.info("Player reports %.0fHz; switching without waiting for hints", track.sample_rate)
            self.aggregator.latest_rate = track.sample_rate
            self._schedule_switch(track, self.trusted_switch_delay_ms)
        elif is_same_album and self.confirmed_album_rate and not same_identity:
            logger.info("Same album ('%s'); keeping %.0fHz", track.album, self.confirmed_album_rate)
            self.aggregator.seed(self.confirmed_album_rate)
            self._schedule_switch(track, self.trusted_switch_delay_ms)
        else:
            logger.info("Streaming track; waiting for a stable rate hint")
            self.confirmed_album_rate = None
            self._wait_for_stable_rate(track)

    def _schedule_switch(self, track, delay_ms):
        self._cancel_pending()

        def _fire():
            self._pending_source = 0
            self.apply_switch(track)
            return False

        self._pending_source = self.loop.timeout_add(delay_ms, _fire)

    def _wait_for_stable_rate(self, track):
        self._cancel_pending()
        attempts = [0]

        def _check():
            attempts[0] += 1
            if self.aggregator.is_stable():
                logger.info(
                    "Verified stable rate %.0fHz (held >= %.1fs)",
                    self.aggregator.candidate.value,
                    self.aggregator.required_stable,
                )
                self._pending_source = 0
                self.apply_switch(track)
                return False
            if attempts[0] >= self.stability_max_attempts:
                logger.warning("No stable rate after %s checks; proceeding with best guess", attempts[0])
                self._pending_source = 0
                self.apply_switch(track)
                return False
            if attempts[0] % 4 == 0:
                logger.info("Verifying stream rate... attempt %s/%s", attempts[0], self.stability_max_attempts)
            return True

        self._pending_source = self.loop.timeout_add(self.stability_poll_ms, _check)

    def _reapply_current(self):
        track = self.current_track
        if track is None or not self.track_identity or self._pending_source:
            return
        self.switch_applied = False
        self._schedule_switch(track, self.trusted_switch_delay_ms)

    def _cancel_pending(self):
        if self._pending_source:
            self.loop.source_remove(self._pending_source)
            self._pending_source = 0

    def _cancel_resume(self):
        if self._resume_source:
            self.loop.source_remove(self._resume_source)
            self._resume_source = 0

    # ------------------------------------------------------------------
    # Rate hints
    # ------------------------------------------------------------------
    def on_rate_hint(self, rate, timestamp):
        """Log monitor thread entry point; never mutates state directly."""
        self.loop.idle_add(self._handle_rate_hint, rate, timestamp)

    def _handle_rate_hint(self, rate, timestamp):
        if not self.is_running or self.guard.in_cooldown():
            return
        result = self.aggregator.accept(rate, timestamp)
        if result == RateAggregator.REJECTED:
            return
        # Audio path is changing; the push notification may not come.
        self.poller.burst(self.hint_burst_seconds)
        if result == RateAggregator.NEW_CANDIDATE and not self.switch_applied and not self._pending_source:
            device = self._target_device()
            self._update_status(
                "Detecting...",
                f"{int(rate):,}Hz?",
                self._device_label(device),
                self._device_format_label(device),
            )

    # ------------------------------------------------------------------
    # Switch decision
    # ------------------------------------------------------------------
    def resolve_format(self, track):
        return resolve_format(
            track,
            manual_override=self.manual_override_rate,
            latest_rate=self.aggregator.latest_rate,
            inspect=self._inspect_file if self.file_parser is not None else None,
            fallback_rate=self.fallback_rate,
        )

    def _inspect_file(self, path):
        cached_path, cached_fmt = self._inspect_cache
        if cached_path == path and cached_fmt is not None:
            return cached_fmt
        fmt = self.file_parser.get_audio_format(path)
        self._inspect_cache = (path, fmt)
        return fmt

    def apply_switch(self, track):
        """
        Apply the resolved format for the current transition. Returns True if
        this call did the work; repeated calls in one transition are no-ops.
        """
        if self.switch_applied:
            return False
        if self.guard.in_cooldown():
            logger.debug("Switch for '%s' suppressed during cooldown", track.name)
            return False
        self.switch_applied = True

        rate, depth = self.resolve_format(track)
        device = self._target_device()
        if device is None:
            logger.warning("No output device available; skipping switch for '%s'", track.name)
            self.aggregator.clear_candidate()
            return True

        current = self._current_format(device)
        current_rate = current.sample_rate if current is not None else device.sample_rate
        rate_changed = not current_rate or abs(current_rate - rate) > self.rate_epsilon
        depth_changed = depth is not None and (current is None or current.bit_depth != depth)

        if rate_changed or depth_changed:
            logger.info(
                "Switching %s to %.0fHz / %s for '%s'",
                device.name,
                rate,
                f"{depth}bit" if depth else "any",
                track.name,
            )
            self._write_format(device, rate, depth)
        else:
            logger.info("%s already at %.0fHz; no switch needed", device.name, rate)

        self.confirmed_album_rate = rate
        self.aggregator.clear_candidate()
        if self.is_running:
            self.poller.use_steady()
        self._report_track(track, device)
        return True

    def _write_format(self, device, rate, depth):
        try:
            ok = bool(self.device_manager.set_format(device.id, rate, depth))
        except Exception as e:
            logger.warning("%s (%s)", user_message(classify_exception(e), "device"), e)
            return False
        if not ok:
            logger.warning("%s (%s @ %.0fHz)", user_message("hardware", "device"), device.name, rate)
        return ok

    # ------------------------------------------------------------------
    # Termination guard
    # ------------------------------------------------------------------
    def on_player_terminated(self, *_args):
        self._enter_cooldown("player exited")

    def _enter_cooldown(self, reason, cooldown=None, tripped=False):
        deadline = self.guard.deadline if tripped else self.guard.trip(reason, cooldown)
        self.poller.stop()
        self._cancel_pending()
        self.track_identity = ""
        self.current_track = None
        self.switch_applied = False
        self.aggregator.clear_candidate()
        self._query_epoch += 1
        self._cancel_resume()
        if not self.is_running:
            return
        # Round up; the resume must not land before the deadline.
        delay_ms = max(0, math.ceil((deadline - self.loop.now()) * 1000))
        self._resume_source = self.loop.timeout_add(delay_ms, self._on_cooldown_over)

    def _on_cooldown_over(self):
        self._resume_source = 0
        if not self.is_running:
            return False
        logger.info("Cooldown over; resuming polling")
        self.check_for_track_change()
        self.poller.use_steady()
        return False

    # ------------------------------------------------------------------
    # Devices and status
    # ------------------------------------------------------------------
    def _target_device(self):
        try:
            if self.selected_device_id:
                return self.device_manager.get_device_info(self.selected_device_id)
            return self.device_manager.get_default_output_device()
        except Exception as e:
            logger.info("%s (%s)", user_message(classify_exception(e), "device"), e)
            return None

    def _current_format(self, device):
        try:
            return self.device_manager.get_current_format(device.id)
        except Exception as e:
            logger.debug("Format read failed for %s: %s", device.id, e)
            return None

    def _device_label(self, device):
        return device.name if device is not None else "Default"

    def _device_format_label(self, device):
        if device is None:
            return "Unknown"
        fmt = self._current_format(device)
        return fmt.description if fmt is not None else "Unknown"

    def _report_track(self, track, device=None):
        rate, depth = self.resolve_format(track)
        if device is None:
            device = self._target_device()
        self._update_status(
            track.name,
            format_track_label(rate, depth),
            self._device_label(device),
            self._device_format_label(device),
        )

    def _update_status(self, track_label, track_format, device_label, device_format):
        status = (track_label, track_format, device_label, device_format)
        # Polling is frequent; only changes go downstream.
        if status == self._last_status:
            return
        self._last_status = status
        logger.debug("Status: %s | %s | %s | %s", *status)
        if callable(self.on_status_update):
            try:
                self.on_status_update(*status)
            except Exception:
                logger.exception("Status listener failed")
