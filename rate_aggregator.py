import logging

logger = logging.getLogger(__name__)


class CandidateRate:
    def __init__(self, value, first_seen_at):
        self.value = float(value)
        self.first_seen_at = float(first_seen_at)

    def age(self, now):
        return now - self.first_seen_at

    def __repr__(self):
        return f"CandidateRate({self.value!r}, first_seen_at={self.first_seen_at!r})"


class RateAggregator:
    """
    Fuses log hints into one candidate rate.

    ``latest_rate`` is the last accepted hint and survives track changes: the
    hint for a new track often lands before the track query notices the
    change. ``candidate`` is the stability tracker and is reset per
    transition.
    """

    REJECTED = "rejected"
    CONTINUED = "continued"
    NEW_CANDIDATE = "new"

    def __init__(self, clock, staleness_tolerance=2.0, epsilon=0.1, required_stable=0.5):
        self._clock = clock
        self.staleness_tolerance = float(staleness_tolerance)
        self.epsilon = float(epsilon)
        self.required_stable = float(required_stable)
        self.transition_start = float("-inf")
        self.candidate = None
        self.latest_rate = None

    def mark_transition(self, started_at):
        self.transition_start = float(started_at)

    def is_stale(self, timestamp):
        return timestamp < self.transition_start - self.staleness_tolerance

    def accept(self, rate, timestamp):
        """
        Feed one hint. Returns REJECTED, CONTINUED or NEW_CANDIDATE. A stale
        hint changes nothing, not even ``latest_rate``.
        """
        if self.is_stale(timestamp):
            logger.debug("Ignoring stale hint %.0fHz (ts=%.3f < start=%.3f)", rate, timestamp, self.transition_start)
            return self.REJECTED
        rate = float(rate)
        self.latest_rate = rate
        if self.candidate is not None and self.same_rate(self.candidate.value, rate):
            return self.CONTINUED
        self.candidate = CandidateRate(rate, self._clock())
        logger.debug("New candidate rate %.0fHz", rate)
        return self.NEW_CANDIDATE

    def same_rate(self, a, b):
        return abs(float(a) - float(b)) < self.epsilon

    def candidate_age(self):
        if self.candidate is None:
            return None
        return self.candidate.age(self._clock())

    def is_stable(self):
        age = self.candidate_age()
        return age is not None and age >= self.required_stable

    def seed(self, rate):
        self.latest_rate = float(rate)
        self.candidate = CandidateRate(rate, self._clock())

    def clear_candidate(self):
        self.candidate = None

    def reset(self):
        self.transition_start = float("-inf")
        self.candidate = None
        self.latest_rate = None
