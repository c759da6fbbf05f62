import json

import pandas as pd
import pytest

from cell_states import CODE_T_CELL, InvariantViolation
from main_simulation import Simulation, run_simulation, create_results_dataframe
from parameters import POP_CD8


@pytest.fixture
def small_params(params):
    params['grid_size'] = 7
    params['t_max'] = 30
    params['n_tumor_cells'] = 10
    params['n_healthy_cells'] = 5
    params['treat_delay'] = 5
    params['treat_dose'] = 10
    params['profiler_interval'] = 10
    return params


def test_run_returns_dataframe(small_params):
    df, sim = run_simulation(small_params, random_seed=3, verbose=False, return_simulation=True)

    assert isinstance(df, pd.DataFrame)
    assert len(df) == small_params['t_max']
    assert list(df['t']) == list(range(1, small_params['t_max'] + 1))
    for col in ['cart_total', 'cd4', 'cd8', 'tumor_alive', 'healthy_alive', 'kills',
                'mean_energy', 'cart_neutral', 'cart_cytotoxic']:
        assert col in df.columns

    placed = sum(sim.treatment.counts)
    assert placed == 10
    assert (df.loc[df['t'] < 5, 'cart_total'] == 0).all()
    assert df['cart_total'].iloc[-1] == placed
    assert (df['cd4'] + df['cd8'] == df['cart_total']).all()
    assert df['tumor_alive'].iloc[0] + df['tumor_dead'].iloc[0] == 10
    assert df['kills'].is_monotonic_increasing


def test_same_seed_same_trajectory(small_params):
    first = run_simulation(small_params, random_seed=9, verbose=False)
    second = run_simulation(small_params, random_seed=9, verbose=False)
    pd.testing.assert_frame_equal(first, second)


def test_profilers_record_intervals(small_params):
    df, sim = run_simulation(small_params, random_seed=3, verbose=False, return_simulation=True)

    assert [tp['time'] for tp in sim.parameter_profiler.timepoints] == [10, 20, 30]
    assert len(sim.lysis_profiler.timepoints) == 3

    table = sim.parameter_profiler.to_dataframe()
    cart_rows = table[table['code'] == CODE_T_CELL]
    assert len(cart_rows[cart_rows['time'] == 30]) == df['cart_total'].iloc[-1]
    assert 'cars' in table.columns


def test_profiler_writes_json(small_params, tmp_path):
    prefix = str(tmp_path / 'run')
    run_simulation(small_params, random_seed=3, verbose=False, output_prefix=prefix)

    with open(f'{prefix}_parameters.json') as fh:
        saved = json.load(fh)
    assert len(saved['timepoints']) == 3
    assert (tmp_path / 'run_lysis.json').exists()


def test_verbose_progress(small_params, capsys):
    small_params['t_max'] = 100
    run_simulation(small_params, random_seed=3, verbose=True)
    out = capsys.readouterr().out
    assert 'Time step 100/100' in out
    assert 'Simulation complete!' in out


def test_environment_step_keeps_sites_supplied(small_params):
    sim = Simulation(small_params, random_seed=1)
    sim.environment.fields['glucose'][:] = 0.0
    sim.schedule_environment()
    sim.schedule.run_until(1, sim)

    glucose = sim.environment.fields['glucose'][0]
    assert glucose[0, 3] == small_params['glucose_concentration']
    assert glucose[3, 3] == 0.0


def test_out_of_bounds_placement_aborts(small_params):
    sim = Simulation(small_params, random_seed=1)
    pop = sim.populations[POP_CD8]
    cell = sim.new_cart_cell(POP_CD8, (0, 0, 0), pop.next_volume(), pop.next_age())
    with pytest.raises(InvariantViolation, match=f'agent={cell.id}'):
        sim.place_agent(cell, (20, 0, 0))


def test_create_results_dataframe_orders_columns(small_params):
    df = create_results_dataframe([{'kills': 0, 't': 1}], small_params)
    assert list(df.columns[:3]) == ['t', 'treat_dose', 'cd4_fraction']
