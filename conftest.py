import pytest

from main_simulation import initialize_parameters, Simulation
from parameters import POP_CD8, POP_TUMOR


@pytest.fixture
def params():
    """Small, quiet configuration: 5x5 lattice, no tissue, no treatment."""
    params = initialize_parameters()
    params['grid_size'] = 5
    params['t_max'] = 20
    params['n_tumor_cells'] = 0
    params['n_healthy_cells'] = 0
    params['treat_dose'] = 0
    params['heterogeneity'] = 0.0
    return params


@pytest.fixture
def sim(params):
    return Simulation(params, random_seed=7)


@pytest.fixture
def make_cart(sim):
    """Create a CAR T-cell (CD8 by default) and place it on the lattice."""
    def _make(location=(2, 2, 0), pop=POP_CD8, place=True):
        population = sim.populations[pop]
        cell = sim.new_cart_cell(pop, location, population.next_volume(), population.next_age())
        if place:
            sim.place_agent(cell, location)
        return cell
    return _make


@pytest.fixture
def make_tissue(sim):
    """Create a tissue cell (tumour by default) and place it on the lattice."""
    def _make(location=(2, 2, 0), pop=POP_TUMOR):
        cell = sim.new_tissue_cell(pop, location)
        sim.place_agent(cell, location)
        return cell
    return _make
