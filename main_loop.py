import logging
import time
from threading import Thread

from gi.repository import GLib

logger = logging.getLogger(__name__)


class GLibLoop:
    """
    Timer/idle facade over the default GLib main context.

    Everything scheduled here runs on the thread iterating the main loop,
    which makes that thread the only writer of engine state. Blocking work
    goes through ``run_in_thread`` and must post its result back with
    ``idle_add``.
    """

    def __init__(self):
        self.loop = GLib.MainLoop()

    def now(self):
        return time.time()

    def timeout_add(self, interval_ms, callback, *args):
        return GLib.timeout_add(max(0, int(interval_ms)), callback, *args)

    def idle_add(self, callback, *args):
        def _once():
            callback(*args)
            return False

        return GLib.idle_add(_once)

    def source_remove(self, source_id):
        if not source_id:
            return
        try:
            GLib.source_remove(source_id)
        except Exception as e:
            # Already fired one-shot sources are gone from the context.
            logger.debug("source_remove(%s) ignored: %s", source_id, e)

    def run_in_thread(self, task):
        Thread(target=task, daemon=True).start()

    def add_signal_handler(self, signum, callback):
        return GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, signum, callback)

    def run(self):
        self.loop.run()

    def quit(self):
        self.loop.quit()
