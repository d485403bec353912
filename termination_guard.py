import logging
import threading

logger = logging.getLogger(__name__)


class TerminationGuard:
    """
    ACTIVE -> COOLDOWN(deadline) -> ACTIVE.

    One deadline decides everything. It is read from the metadata worker
    thread and written from the main loop, hence the lock. The engine owns
    the side effects of entering cooldown (stopping timers); this class only
    answers "may we talk to the player right now".
    """

    ACTIVE = "active"
    COOLDOWN = "cooldown"

    def __init__(self, clock, termination_cooldown=5.0, timeout_cooldown=10.0,
                 query_timeout=1.0, launch_skip=5.0):
        self._clock = clock
        self._lock = threading.Lock()
        self._deadline = 0.0
        self._state = self.ACTIVE
        self.termination_cooldown = float(termination_cooldown)
        self.timeout_cooldown = float(timeout_cooldown)
        self.query_timeout = float(query_timeout)
        self.launch_skip = float(launch_skip)

    @property
    def state(self):
        with self._lock:
            return self._state

    @property
    def deadline(self):
        with self._lock:
            return self._deadline

    def in_cooldown(self):
        with self._lock:
            return self._state == self.COOLDOWN and self._clock() < self._deadline

    def trip(self, reason, cooldown=None):
        """Enter (or extend) cooldown. Returns the new deadline."""
        seconds = self.termination_cooldown if cooldown is None else float(cooldown)
        with self._lock:
            deadline = self._clock() + seconds
            # Never shorten a cooldown that is already running.
            if self._state == self.COOLDOWN and self._deadline > deadline:
                deadline = self._deadline
            self._deadline = deadline
            self._state = self.COOLDOWN
        logger.warning("Player guard: cooldown for %.1fs (%s)", seconds, reason)
        return deadline

    def allow_query(self, player_started_at=None):
        """
        Lazily leaves cooldown once the deadline has passed. A player process
        younger than ``launch_skip`` is never queried, since it may be a
        relaunch our own query caused.

        ``player_started_at`` may be a callable; it is only invoked outside
        cooldown so a cooling-down guard never touches the player.
        """
        now = self._clock()
        with self._lock:
            if self._state == self.COOLDOWN:
                if now < self._deadline:
                    return False
                self._state = self.ACTIVE
                logger.info("Player guard: cooldown expired, queries resumed")
        if callable(player_started_at):
            player_started_at = player_started_at()
        if player_started_at is not None:
            age = now - float(player_started_at)
            if 0 <= age < self.launch_skip:
                logger.info("Player launched %.1fs ago; skipping query to avoid a relaunch loop", age)
                return False
        return True

    def is_timeout(self, elapsed):
        return elapsed > self.query_timeout

    def reset(self):
        with self._lock:
            self._state = self.ACTIVE
            self._deadline = 0.0
