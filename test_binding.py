import pytest

from cell_states import IS_BOUNDANTIGEN, IS_BOUNDSELFRECEPTOR, TYPE_APOPT
from main_simulation import Simulation
from parameters import CART_FIXED, POP_CD8, POP_TUMOR, POP_HEALTHY
from simulation_utils import hill_binding_score


def build_binding_scene(params, seed):
    """One CD8 cell surrounded by a few tumour and healthy cells."""
    sim = Simulation(params, random_seed=seed)
    pop = sim.populations[POP_CD8]
    cell = sim.new_cart_cell(POP_CD8, (2, 2, 0), pop.next_volume(), pop.next_age())
    sim.place_agent(cell, (2, 2, 0))

    for loc, tissue_pop in [((2, 2, 0), POP_TUMOR), ((1, 2, 0), POP_TUMOR),
                            ((3, 3, 0), POP_HEALTHY), ((2, 1, 0), POP_TUMOR)]:
        sim.place_agent(sim.new_tissue_cell(tissue_pop, loc), loc)

    cell.search_ability = 4
    return sim, cell


def test_hill_score_range():
    assert hill_binding_score(0.0, 0.5, 1.0, 0.01, 1.0, 3.0) == 0.0
    high = hill_binding_score(1e9, 0.5, 1.0, 0.01, 1.0, 3.0)
    assert 0.0 < high < 1.0
    low = hill_binding_score(10.0, 0.5, 1e6, 0.01, 1.0, 3.0)
    assert low < high


def test_no_neighbours_clears_flags(sim, make_cart):
    cell = make_cart()
    cell.flags[IS_BOUNDANTIGEN] = True
    cell.flags[IS_BOUNDSELFRECEPTOR] = True
    index = sim.rng.index

    assert cell.bind_target(sim, cell.location) is None
    assert not cell.flags[IS_BOUNDANTIGEN]
    assert not cell.flags[IS_BOUNDSELFRECEPTOR]
    assert sim.rng.index == index


def test_car_t_neighbours_are_not_targets(sim, make_cart):
    cell = make_cart()
    make_cart(location=(2, 3, 0))
    cell.search_ability = 10

    assert cell.bind_target(sim, cell.location) is None
    assert not cell.flags[IS_BOUNDANTIGEN]


def test_dead_targets_are_skipped(sim, make_cart, make_tissue):
    cell = make_cart()
    target = make_tissue()
    target.type = TYPE_APOPT
    cell.search_ability = 10

    assert cell.bind_target(sim, cell.location) is None


def test_binding_is_deterministic(params):
    outcomes = []
    for _ in range(2):
        sim, cell = build_binding_scene(params, seed=11)
        decisions = []
        for _ in range(20):
            target = cell.bind_target(sim, cell.location)
            decisions.append((None if target is None else target.id,
                              bool(cell.flags[IS_BOUNDANTIGEN]),
                              bool(cell.flags[IS_BOUNDSELFRECEPTOR])))
        outcomes.append((decisions, sim.rng.index, cell.self_receptors))

    assert outcomes[0] == outcomes[1]


def test_antigen_binding_upregulates_self_receptors(sim, make_cart, make_tissue, monkeypatch):
    import cart_cell
    monkeypatch.setattr(cart_cell, 'hill_binding_score',
                        lambda density, *args: 1.0 if density > 0 else -1.0)

    cell = make_cart()
    target = make_tissue()
    target.self_targets = 0.0
    start = cell.self_receptors

    assert cell.bind_target(sim, cell.location) is target
    assert cell.flags[IS_BOUNDANTIGEN]
    assert not cell.flags[IS_BOUNDSELFRECEPTOR]
    assert cell.bound_antigen_count == 1
    assert cell.self_receptors > start
    assert cell.params['self_receptors'].get_mu() == cell.self_receptors


def test_self_only_binding(sim, make_cart, make_tissue, monkeypatch):
    import cart_cell
    monkeypatch.setattr(cart_cell, 'hill_binding_score',
                        lambda density, *args: 1.0 if density > 0 else -1.0)

    cell = make_cart()
    target = make_tissue()
    target.car_antigens = 0.0

    assert cell.bind_target(sim, cell.location) is target
    assert not cell.flags[IS_BOUNDANTIGEN]
    assert cell.flags[IS_BOUNDSELFRECEPTOR]
    assert cell.bound_antigen_count == 0
    assert cell.bound_self_count == 1


def test_biophysical_constants_do_not_drift(sim, make_cart):
    parent = make_cart()
    daughter = parent.new_cell(sim, parent.location, parent.volume)
    population = sim.populations[POP_CD8]

    for key in CART_FIXED:
        assert daughter.params[key] is population.params[key]
    assert daughter.car_affinity == population.params['car_affinity'].get_mu()


def test_heritable_traits_recentre(sim, make_cart):
    cell = make_cart()
    assert cell.params['cars'].get_mu() == cell.cars
    assert cell.params['senes_frac'].get_mu() == cell.senes_frac
    assert cell.params['division_potential'].get_mu() == cell.divisions


@pytest.mark.parametrize('cars', [5000, 50000])
def test_car_count_scales_score(cars):
    kd = 1e-7 * 7830 * 1e-15 * 6.022e23
    score = hill_binding_score(5000, 0.5, kd, 0.01, cars / 50000.0, 3.0)
    assert 0.0 <= score < 1.0
