"""
Tick-driven discrete-event schedule.

Entries due at the same tick run in (ordering, insertion) order. An entry
added for the current tick while that tick is being processed still runs in
the same tick.
"""

import heapq
import itertools

from cell_states import InvariantViolation

ORDERING_CELLS = 0
ORDERING_HELPERS = 1
ORDERING_ENVIRONMENT = 2
ORDERING_PROFILER = 3


class Stopper:
    """Handle returned for every scheduled entry; stop() cancels it."""

    def __init__(self, steppable, ordering, interval):
        self.steppable = steppable
        self.ordering = ordering
        self.interval = interval
        self.stopped = False

    def stop(self):
        self.stopped = True


class Schedule:
    def __init__(self, start=0.0):
        self.time = start
        self._queue = []
        self._seq = itertools.count()

    def _push(self, time, stopper):
        heapq.heappush(self._queue, (time, stopper.ordering, next(self._seq), stopper))

    def schedule_once(self, time, ordering, steppable):
        if time < self.time:
            raise InvariantViolation(f"Cannot schedule at {time} before current time", tick=self.time)
        stopper = Stopper(steppable, ordering, None)
        self._push(time, stopper)
        return stopper

    def schedule_repeating(self, start, ordering, steppable, interval=1):
        if start < self.time:
            raise InvariantViolation(f"Cannot schedule at {start} before current time", tick=self.time)
        stopper = Stopper(steppable, ordering, interval)
        self._push(start, stopper)
        return stopper

    def next_time(self):
        while self._queue and self._queue[0][3].stopped:
            heapq.heappop(self._queue)
        return self._queue[0][0] if self._queue else None

    def step(self, sim):
        """Advance to the next tick with live entries and run all of them."""
        t = self.next_time()
        if t is None:
            return False
        self.time = t

        while self._queue and self._queue[0][0] == t:
            _, _, _, stopper = heapq.heappop(self._queue)
            if stopper.stopped:
                continue
            stopper.steppable.step(sim)
            if stopper.interval is None:
                stopper.stopped = True
            elif not stopper.stopped:
                self._push(t + stopper.interval, stopper)

        return True

    def run_until(self, time, sim):
        """Run every tick up to and including time."""
        while True:
            t = self.next_time()
            if t is None or t > time:
                break
            self.step(sim)
        self.time = max(self.time, time)

    def __len__(self):
        return sum(1 for entry in self._queue if not entry[3].stopped)
