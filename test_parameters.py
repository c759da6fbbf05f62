import numpy as np
import pytest

from cell_states import CODE_H_CELL, CODE_T_CELL, SUBTYPE_CD4, SUBTYPE_CD8, InvariantViolation
from environment import Environment
from parameters import (Parameter, build_populations, POP_HEALTHY, POP_TUMOR, POP_CD4,
                        POP_CD8)
from simulation_utils import RandomStream


def test_parameter_draw_and_update():
    rng = RandomStream(3)
    dist = Parameter(100.0, 0.1, False, rng)
    values = [dist.next_double() for _ in range(500)]

    assert np.mean(values) == pytest.approx(100.0, rel=0.05)
    assert np.std(values) == pytest.approx(10.0, rel=0.2)

    child = dist.update(values[0])
    assert child.get_mu() == values[0]
    assert child.heterogeneity == dist.heterogeneity


def test_fraction_parameters_are_clamped():
    rng = RandomStream(3)
    dist = Parameter(0.95, 0.5, True, rng)
    values = [dist.next_double() for _ in range(200)]
    assert min(values) >= 0.0
    assert max(values) <= 1.0


def test_zero_heterogeneity_still_draws():
    rng = RandomStream(3)
    dist = Parameter(4.0, 0.0, False, rng)
    assert dist.next_double() == 4.0
    assert dist.next_int() == 4
    assert rng.index == 2


def test_replayed_stream():
    rng = RandomStream(stream=[0.1, 0.9, 0.5])
    assert rng.runif() == 0.1
    assert rng.shuffle([1, 2]) == [1, 2]
    assert rng.jitter(60, 20) == 60
    with pytest.raises(RuntimeError, match='exhausted'):
        rng.runif()


def test_populations(params):
    rng = RandomStream(1)
    populations = build_populations(params, rng)

    assert populations[POP_HEALTHY].code == CODE_H_CELL
    assert populations[POP_CD4].subtype == SUBTYPE_CD4
    assert populations[POP_CD8].subtype == SUBTYPE_CD8
    assert populations[POP_CD8].code == CODE_T_CELL
    assert populations[POP_CD4].is_cart
    assert not populations[POP_TUMOR].is_cart
    # healthy tissue overrides the CAR antigen density
    assert populations[POP_HEALTHY].params['car_antigens'].get_mu() == \
        params['healthy_overrides']['car_antigens']
    assert populations[POP_TUMOR].params['car_antigens'].get_mu() == params['car_antigens']


def test_death_probability_is_cumulative(params):
    population = build_populations(params, RandomStream(1))[POP_CD8]
    early = population.death_probability(1000)
    late = population.death_probability(60000)
    assert 0.0 <= early < 0.5 < late <= 1.0


def test_environment_bounds_and_neighbours():
    env = Environment(3, 3, 2)
    assert env.in_bounds((2, 2, 1))
    assert not env.in_bounds((3, 0, 0))

    neighbours = env.neighbor_locations((0, 0, 0))
    assert (0, 0, 0) in neighbours
    assert (1, 1, 0) in neighbours
    assert (0, 0, 1) in neighbours
    assert len(neighbours) == 5

    class Dummy:
        id = 1
        volume = 10.0
        location = None

    with pytest.raises(InvariantViolation):
        env.add_object(Dummy(), (5, 5, 0))


def test_environment_listener_and_fields():
    env = Environment(3, 3)
    events = []
    env.add_listener(lambda old, new: events.append((old, new)))

    class Dummy:
        volume = 10.0
        location = None

    agent = Dummy()
    env.add_object(agent, (1, 1, 0))
    env.move_object(agent, (2, 1, 0))
    assert events == [(None, (1, 1, 0)), ((1, 1, 0), (2, 1, 0))]
    assert env.count_at((1, 1, 0)) == 0
    assert env.total_volume((2, 1, 0)) == 10.0

    env.add_field('glucose', 2.0)
    env.scale_value('glucose', (0, 0, 0), 0.5)
    assert env.get_value('glucose', (0, 0, 0)) == 1.0
    assert env.get_total_value('glucose', (1, 1, 0)) == pytest.approx(2.0 * env.volume)
    assert env.get_average_value('glucose', (0, 0, 0)) == pytest.approx(1.75)


def test_jitter_rounds_half_up():
    rng = RandomStream(stream=[0.75, 0.25])
    assert rng.jitter(60, 1) == 61
    assert rng.jitter(60, 1) == 60
