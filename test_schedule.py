import pytest

from cell_states import InvariantViolation
from schedule import (Schedule, ORDERING_CELLS, ORDERING_HELPERS, ORDERING_ENVIRONMENT,
                      ORDERING_PROFILER)


class Recorder:
    def __init__(self, name, log, on_step=None):
        self.name = name
        self.log = log
        self.on_step = on_step

    def step(self, sim):
        self.log.append((sim.schedule.time, self.name))
        if self.on_step is not None:
            self.on_step(sim)


class FakeSim:
    def __init__(self):
        self.schedule = Schedule()


def test_orderings_within_a_tick():
    sim = FakeSim()
    log = []
    sim.schedule.schedule_once(1, ORDERING_PROFILER, Recorder('profiler', log))
    sim.schedule.schedule_once(1, ORDERING_HELPERS, Recorder('helper', log))
    sim.schedule.schedule_once(1, ORDERING_ENVIRONMENT, Recorder('env', log))
    sim.schedule.schedule_once(1, ORDERING_CELLS, Recorder('cell', log))

    sim.schedule.step(sim)

    assert [name for _, name in log] == ['cell', 'helper', 'env', 'profiler']


def test_insertion_order_breaks_ties():
    sim = FakeSim()
    log = []
    for name in ('a', 'b', 'c'):
        sim.schedule.schedule_once(2, ORDERING_CELLS, Recorder(name, log))

    sim.schedule.step(sim)

    assert [name for _, name in log] == ['a', 'b', 'c']


def test_entry_added_for_current_tick_runs_same_tick():
    sim = FakeSim()
    log = []
    late = Recorder('late', log)

    def add_late(sim):
        sim.schedule.schedule_once(sim.schedule.time, ORDERING_HELPERS, late)

    sim.schedule.schedule_once(5, ORDERING_CELLS, Recorder('cell', log, add_late))
    sim.schedule.step(sim)

    assert log == [(5, 'cell'), (5, 'late')]


def test_repeating_and_stop():
    sim = FakeSim()
    log = []
    stopper = sim.schedule.schedule_repeating(1, ORDERING_CELLS, Recorder('r', log), interval=2)

    sim.schedule.run_until(5, sim)
    assert [t for t, _ in log] == [1, 3, 5]

    stopper.stop()
    sim.schedule.run_until(10, sim)
    assert len(log) == 3
    assert len(sim.schedule) == 0
    assert sim.schedule.time == 10


def test_one_shot_marked_stopped_after_firing():
    sim = FakeSim()
    stopper = sim.schedule.schedule_once(1, ORDERING_HELPERS, Recorder('x', []))
    sim.schedule.step(sim)
    assert stopper.stopped
    assert sim.schedule.next_time() is None


def test_scheduling_in_the_past_raises():
    sim = FakeSim()
    sim.schedule.run_until(10, sim)
    with pytest.raises(InvariantViolation):
        sim.schedule.schedule_once(9, ORDERING_CELLS, Recorder('x', []))
    with pytest.raises(InvariantViolation):
        sim.schedule.schedule_repeating(3, ORDERING_CELLS, Recorder('x', []))
