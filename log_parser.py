import logging
import re
import subprocess
import time
from threading import Thread

from app_errors import classify_exception, user_message
from app_settings import DEFAULT_LOG_HINT_COMMAND, STANDARD_RATES

logger = logging.getLogger(__name__)

_RATE_ALTERNATION = "|".join(str(r) for r in sorted(STANDARD_RATES, reverse=True))
_HZ_RE = re.compile(r"(?<![\d.])(" + _RATE_ALTERNATION + r")(?:\.0+)?(?![\d])")
_KHZ_RE = re.compile(r"(?<![\d.])(44\.1|48|88\.2|96|176\.4|192|352\.8|384|705\.6|768)\s?kHz", re.IGNORECASE)
# journalctl --output=short-unix prefixes every line with epoch seconds.
_TS_RE = re.compile(r"^\s*(\d{9,11}(?:\.\d+)?)\s")


def parse_rate(line):
    m = _HZ_RE.search(line or "")
    if m:
        return float(m.group(1))
    m = _KHZ_RE.search(line or "")
    if m:
        return float(round(float(m.group(1)) * 1000.0))
    return None


def parse_timestamp(line):
    m = _TS_RE.match(line or "")
    if not m:
        return None
    try:
        return float(m.group(1))
    except ValueError:
        return None


def parse_line(line, clock=time.time):
    """``(rate, timestamp)`` for a line naming a standard rate, else None."""
    rate = parse_rate(line)
    if rate is None:
        return None
    ts = parse_timestamp(line)
    return rate, (ts if ts is not None else clock())


class LogParser:
    """
    Tails the system log and reports standard sample rates it mentions.

    Lines are read on a daemon thread; ``on_rate_hint(rate, timestamp)`` is
    called from that thread, so receivers must hop to their own loop.
    """

    def __init__(self, command=None, clock=time.time):
        self.command = list(command or DEFAULT_LOG_HINT_COMMAND)
        self.clock = clock
        self.on_rate_hint = None
        self._proc = None
        self._thread = None

    @property
    def running(self):
        return self._proc is not None and self._proc.poll() is None

    def start(self):
        self.stop()
        try:
            self._proc = subprocess.Popen(
                self.command,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            self._proc = None
            logger.warning("%s (%s)", user_message(classify_exception(e), "hints"), e)
            return False
        proc = self._proc
        self._thread = Thread(target=self._read_loop, args=(proc,), daemon=True)
        self._thread.start()
        logger.info("Log monitor started: %s", " ".join(self.command))
        return True

    def _read_loop(self, proc):
        try:
            for line in proc.stdout:
                self.feed_line(line)
        except (OSError, ValueError) as e:
            # stdout closed under us by stop().
            logger.debug("Log monitor read ended: %s", e)
        if proc is self._proc and proc.poll() is not None:
            logger.info("Log monitor exited rc=%s", proc.returncode)

    def feed_line(self, line):
        hint = parse_line(line, self.clock)
        if hint is None:
            return False
        cb = self.on_rate_hint
        if callable(cb):
            try:
                cb(*hint)
            except Exception:
                logger.exception("Rate hint receiver failed")
        return True

    def stop(self):
        proc = self._proc
        self._proc = None
        if proc is None:
            return
        try:
            proc.terminate()
            proc.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            proc.kill()
        except OSError as e:
            logger.debug("Log monitor stop: %s", e)
        logger.info("Log monitor stopped")
