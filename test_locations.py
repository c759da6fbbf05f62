from cell_states import TYPE_APOPT
from locations import count_living_targets, get_best_location, get_free_locations
from main_simulation import Simulation
from parameters import POP_CD8, POP_HEALTHY


def test_free_locations_include_current(sim, make_cart):
    cell = make_cart(location=(0, 0, 0))
    free = get_free_locations(sim, cell)
    assert sorted(free) == [(0, 0, 0), (0, 1, 0), (1, 0, 0), (1, 1, 0)]


def test_full_location_is_not_free(sim, make_cart):
    cell = make_cart(location=(0, 0, 0))
    for _ in range(sim.environment.max_agents):
        make_cart(location=(1, 1, 0))
    assert (1, 1, 0) not in get_free_locations(sim, cell)


def test_tissue_height_limits_space(sim, make_cart, make_tissue):
    cell = make_cart(location=(0, 0, 0))
    tissue = make_tissue(location=(1, 0, 0))
    tissue.params['max_height'] = tissue.params['max_height'].update(2.0)
    # Stacked volume over the location area exceeds the tissue cell's max height
    assert (1, 0, 0) not in get_free_locations(sim, cell)


def test_living_targets_exclude_dead(sim, make_tissue):
    alive = make_tissue(location=(1, 1, 0))
    dead = make_tissue(location=(1, 1, 0))
    dead.type = TYPE_APOPT
    make_tissue(location=(1, 1, 0), pop=POP_HEALTHY)
    assert count_living_targets(sim.environment, (1, 1, 0)) == 1
    alive.type = TYPE_APOPT
    assert count_living_targets(sim.environment, (1, 1, 0)) == 0


def test_best_location_follows_tumour(sim, make_cart, make_tissue):
    cell = make_cart()
    make_tissue(location=(3, 2, 0))
    assert get_best_location(sim, cell) == (3, 2, 0)


def test_best_location_none_when_boxed_in(sim, make_cart):
    cell = make_cart(location=(0, 0, 0))
    for loc in [(0, 0, 0), (0, 1, 0), (1, 0, 0), (1, 1, 0)]:
        # The cell itself does not count against its own location
        limit = sim.environment.max_agents + (1 if loc == cell.location else 0)
        while sim.environment.count_at(loc) < limit:
            make_cart(location=loc)
    assert get_best_location(sim, cell) is None


def test_best_location_picks_a_layer_winner(params):
    params['grid_layers'] = 2
    sim = Simulation(params, random_seed=5)
    pop = sim.populations[POP_CD8]
    cell = sim.new_cart_cell(POP_CD8, (2, 2, 0), pop.next_volume(), pop.next_age())
    sim.place_agent(cell, (2, 2, 0))

    chosen = {get_best_location(sim, cell) for _ in range(40)}

    assert chosen
    assert all(loc in sim.environment.neighbor_locations((2, 2, 0)) for loc in chosen)
    assert any(loc[2] == 1 for loc in chosen)
    assert any(loc[2] == 0 for loc in chosen)
