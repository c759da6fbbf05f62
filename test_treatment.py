import pytest

from cell_states import CODE_T_CELL, SUBTYPE_CD4, SUBTYPE_CD8
from environment import SITE_GRAPH
from helpers import TreatHelper, HELPER_COMPLETED
from locations import check_location_space
from parameters import POP_CD4, POP_CD8


def near_site(sim, loc):
    env = sim.environment
    return any(env.sites[loc[2], x, y] != 0 for x, y in env.lattice_positions(loc))


def test_dose_split_by_fraction(sim):
    helper = TreatHelper(0, 10, [POP_CD4, POP_CD8], [0.25, 0.75])
    helper.schedule_helper(sim)
    sim.schedule.step(sim)

    assert helper.state == HELPER_COMPLETED
    assert sum(helper.counts) == 10
    assert tuple(helper.counts) in ((3, 7), (2, 8))
    assert helper.shortfall == 0

    placed = [sim.agents[i] for i in helper.placed]
    assert len(placed) == 10
    assert all(a.code == CODE_T_CELL for a in placed)
    assert sum(a.tcode == SUBTYPE_CD4 for a in placed) == helper.counts[0]
    assert sum(a.tcode == SUBTYPE_CD8 for a in placed) == helper.counts[1]
    for agent in placed:
        assert sim.environment.in_bounds(agent.location)
        assert near_site(sim, agent.location)
        assert agent in sim.environment.objects_at(agent.location)


def test_seed_order_uses_ceiling_counts(sim):
    helper = TreatHelper(0, 10, [POP_CD4, POP_CD8], [0.25, 0.75])
    order = helper.seed_order(sim)
    assert order.count(POP_CD4) == 3
    assert order.count(POP_CD8) == 8


def test_fires_after_delay(sim):
    helper = TreatHelper(30, 4, [POP_CD4, POP_CD8], [0.5, 0.5])
    helper.schedule_helper(sim)

    sim.schedule.run_until(29, sim)
    assert helper.placed == []

    sim.schedule.run_until(30, sim)
    assert len(helper.placed) == 4


def test_site_locations_prefer_occupied(sim, make_tissue):
    make_tissue(location=(0, 2, 0))
    helper = TreatHelper(0, 1, [POP_CD8], [1.0], positions_per_location=2)

    locations = helper.site_locations(sim)

    # (0, 2, 0) has one occupant, every other qualifying location is empty
    assert locations.index((0, 2, 0)) == 0
    # Three of its lattice positions lie on the x = 0 site column
    assert locations.count((0, 2, 0)) == 2 * 3


def test_damaged_sites_do_not_qualify(sim):
    sim.environment.damage[:] = sim.params['max_damage_seed'] + 1
    helper = TreatHelper(0, 10, [POP_CD4, POP_CD8], [0.5, 0.5])
    helper.schedule_helper(sim)

    sim.schedule.step(sim)

    assert helper.counts == [0, 0]
    assert helper.shortfall == 10
    assert helper.state == HELPER_COMPLETED


def test_graph_sites_need_radius(sim):
    env = sim.environment
    env.site_type = SITE_GRAPH
    env.radius[:] = sim.params['min_radius_seed'] - 1

    helper = TreatHelper(0, 5, [POP_CD8], [1.0])
    assert helper.site_locations(sim) == []

    env.radius[env.sites != 0] = sim.params['min_radius_seed']
    assert len(helper.site_locations(sim)) > 0


def test_full_locations_are_skipped(sim):
    # One site position: only the four locations around it qualify
    sim.environment.sites[:] = 0
    sim.environment.sites[0, 0, 0] = 1
    helper = TreatHelper(0, 50, [POP_CD8], [1.0])
    helper.schedule_helper(sim)

    sim.schedule.step(sim)

    assert 0 < sum(helper.counts) < 50
    assert helper.shortfall == 50 - sum(helper.counts)
    for loc in {sim.agents[i].location for i in helper.placed}:
        assert sim.environment.count_at(loc) <= sim.environment.max_agents


def test_check_location_space(sim, make_cart):
    loc = (1, 1, 0)
    assert check_location_space(sim, loc, 175.0)
    for _ in range(sim.environment.max_agents):
        make_cart(location=loc)
    assert not check_location_space(sim, loc, 175.0)


def test_snapshot(sim):
    helper = TreatHelper(1440, 10, [POP_CD4, POP_CD8], [0.5, 0.5])
    snapshot = helper.to_json()
    assert snapshot['type'] == 'TREAT'
    assert snapshot['delay'] == pytest.approx(1.0)
    assert snapshot['pops'] == [[POP_CD4, 0], [POP_CD8, 0]]
