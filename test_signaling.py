import numpy as np
import pytest

from cell_states import IS_ACTIVATED
from parameters import POP_CD4, POP_CD8
from signaling import (SignalingModule, SIGNALING_LYTIC, SIGNALING_STIMULATORY,
                       HISTORY_LENGTH)
from simulation_utils import (IL2R_TOTAL, IL2Rbg, IL2Rbga, IL2_IL2Rbg, IL2_IL2Rbga,
                              IL2_INT_TOTAL, GRANZYME, delayed_index)


def receptor_sum(amts):
    return amts[IL2Rbg] + amts[IL2Rbga] + amts[IL2_IL2Rbg] + amts[IL2_IL2Rbga]


def test_subtype_selects_kind(sim):
    lytic = SignalingModule.for_subtype(8, sim.populations[POP_CD8])
    stim = SignalingModule.for_subtype(4, sim.populations[POP_CD4])

    assert lytic.kind == SIGNALING_LYTIC
    assert len(lytic.amts) == 8
    assert lytic.granzyme == 1.0
    assert stim.kind == SIGNALING_STIMULATORY
    assert len(stim.amts) == 7
    assert stim.granzyme == 0.0


def test_receptor_total_conserved(sim, make_cart):
    cell = make_cart()
    sim.environment.fields['il2'][:] = 1e10
    receptors = cell.signaling.il2_receptors

    for _ in range(5):
        cell.signaling.step(sim, cell)
        amts = cell.signaling.amts
        assert amts[IL2R_TOTAL] == pytest.approx(receptor_sum(amts), rel=1e-9)
        assert amts[IL2R_TOTAL] == pytest.approx(receptors, rel=1e-6)
        assert amts[IL2_INT_TOTAL] == pytest.approx(amts[IL2_IL2Rbg] + amts[IL2_IL2Rbga])

    assert cell.signaling.amts[IL2_INT_TOTAL] > 0


def test_no_external_il2_binds_nothing(sim, make_cart):
    cell = make_cart()
    cell.signaling.step(sim, cell)
    assert cell.signaling.amts[IL2_INT_TOTAL] == pytest.approx(0.0, abs=1e-12)


def test_history_buffer_records_bound_il2(sim, make_cart):
    cell = make_cart()
    sim.environment.fields['il2'][:] = 1e10

    bound = []
    for _ in range(4):
        cell.signaling.step(sim, cell)
        bound.append(cell.signaling.amts[IL2_INT_TOTAL])

    assert cell.signaling.ticker == 4
    # ticker points at the next write slot
    assert cell.signaling.delayed_bound(4) == bound[0]
    assert cell.signaling.delayed_bound(1) == bound[3]


def test_delayed_index_wraps():
    assert delayed_index(5, HISTORY_LENGTH, 10) == HISTORY_LENGTH - 5
    assert delayed_index(200, HISTORY_LENGTH, 10) == 10
    assert delayed_index(0, HISTORY_LENGTH, 0) == 0


def test_stimulatory_secretes_il2_when_active(sim, make_cart):
    cell = make_cart(pop=POP_CD4)
    signaling = cell.signaling
    cell.flags[IS_ACTIVATED] = True
    signaling.active_ticker = signaling.synthesis_delay

    signaling.step(sim, cell)

    assert signaling.produced >= signaling.prod_rate_active
    assert sim.environment.get_value('il2', cell.location) > 0


def test_granzyme_needs_activation(sim, make_cart):
    cell = make_cart()
    sim.environment.fields['il2'][:] = 1e10
    for _ in range(3):
        cell.signaling.step(sim, cell)
    assert cell.signaling.amts[GRANZYME] == 1.0


def test_split_conserves_content(sim, make_cart):
    parent = make_cart()
    daughter = make_cart(place=False)
    sim.environment.fields['il2'][:] = 1e10
    for _ in range(3):
        parent.signaling.step(sim, parent)
    parent.signaling.amts[GRANZYME] = 4.0

    before = parent.signaling.amts.copy()
    f = 0.47
    parent.signaling.split(daughter.signaling, f)

    p = parent.signaling.amts
    d = daughter.signaling.amts
    for index in (IL2Rbga, IL2_IL2Rbg, IL2_IL2Rbga, GRANZYME):
        assert p[index] + d[index] == pytest.approx(before[index])
        assert d[index] == pytest.approx(before[index] * f)

    for amts in (p, d):
        assert amts[IL2R_TOTAL] == pytest.approx(receptor_sum(amts))
        assert amts[IL2R_TOTAL] == pytest.approx(parent.signaling.il2_receptors)

    assert daughter.signaling.ticker == parent.signaling.ticker
    np.testing.assert_array_equal(daughter.signaling.bound_history,
                                  parent.signaling.bound_history)
