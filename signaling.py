"""
IL-2 signaling module for CAR T-cells.

Receptor binding is integrated as an ODE network every tick. Production is
driven by how much IL-2 was bound a fixed number of ticks ago, read from a
circular history buffer. The two subtypes differ only in what they produce:
CD8 cells accumulate granzyme, CD4 cells secrete IL-2 into the environment.
"""

import numpy as np

from cell_states import IS_ACTIVATED, SUBTYPE_CD8
from simulation_utils import (IL2_INT_TOTAL, IL2_EXT, IL2R_TOTAL, IL2Rbg, IL2Rbga,
                              IL2_IL2Rbg, IL2_IL2Rbga, GRANZYME,
                              NUM_SHARED_SPECIES, NUM_LYTIC_SPECIES,
                              rk4_integrate, delayed_index)

SIGNALING_LYTIC = 'lytic'
SIGNALING_STIMULATORY = 'stimulatory'

STEP_DIVIDER = 3.0
K_CONVERT = 1e-3 / STEP_DIVIDER
K_REC = 1e-5 / STEP_DIVIDER
STEP_SIZE = 1.0 / STEP_DIVIDER
INTEGRATION_TIME = 60.0
HISTORY_LENGTH = 180
GRANZ_PER_IL2 = 0.005

SPECIES_NAMES = ['il2_bound', 'il2_external', 'receptor_total', 'two_chain',
                 'three_chain', 'il2_two_chain', 'il2_three_chain', 'granzyme']


class SignalingModule:
    """
    Tagged signaling module; `kind` selects the production rule.

    Args:
        kind: SIGNALING_LYTIC or SIGNALING_STIMULATORY
        population: population supplying the rate constants
    """

    def __init__(self, kind, population):
        self.kind = kind
        self.shell_thickness = population.get_param('shell_thickness')
        self.il2_receptors = population.get_param('il2_receptors')
        self.on_rate_min = population.get_param('il2_binding_on_rate_min')
        self.on_rate_max = population.get_param('il2_binding_on_rate_max')
        self.off_rate = population.get_param('il2_binding_off_rate')

        if kind == SIGNALING_LYTIC:
            self.synthesis_delay = int(population.get_param('granz_synthesis_delay'))
            self.amts = np.zeros(NUM_LYTIC_SPECIES)
            self.amts[GRANZYME] = 1.0
        else:
            self.synthesis_delay = int(population.get_param('il2_synthesis_delay'))
            self.prod_rate_il2 = population.get_param('il2_prod_rate_il2')
            self.prod_rate_active = population.get_param('il2_prod_rate_active')
            self.amts = np.zeros(NUM_SHARED_SPECIES)

        self.amts[IL2R_TOTAL] = self.il2_receptors
        self.amts[IL2Rbg] = self.il2_receptors

        self.bound_history = np.zeros(HISTORY_LENGTH)
        self.ticker = 0
        self.active = False
        self.active_ticker = 0
        self.ext_il2 = 0.0
        self.f = 0.0
        self.produced = 0.0

    @classmethod
    def for_subtype(cls, subtype, population):
        kind = SIGNALING_LYTIC if subtype == SUBTYPE_CD8 else SIGNALING_STIMULATORY
        return cls(kind, population)

    def get_internal(self, key):
        return self.amts[SPECIES_NAMES.index(key)]

    def set_internal(self, key, value):
        self.amts[SPECIES_NAMES.index(key)] = value

    @property
    def granzyme(self):
        return self.amts[GRANZYME] if self.kind == SIGNALING_LYTIC else 0.0

    def delayed_bound(self, delay):
        """IL-2 bound `delay` ticks ago."""
        return self.bound_history[delayed_index(self.ticker, HISTORY_LENGTH, delay)]

    def shell_fraction(self, volume, loc_volume):
        """Volume of the shell around the cell relative to the location volume."""
        rad_cell = np.cbrt((3.0 / 4.0) * (1.0 / np.pi) * volume)
        rad_shell = rad_cell + self.shell_thickness
        vol_shell = volume * ((rad_shell ** 3) / (rad_cell ** 3) - 1.0)
        return vol_shell / loc_volume

    def step(self, sim, cell):
        env = sim.environment
        loc = cell.location
        loc_volume = env.volume

        self.f = self.shell_fraction(cell.volume, loc_volume)
        self.ext_il2 = env.get_average_value('il2', loc) * loc_volume / 1e12

        self.active = cell.flags[IS_ACTIVATED]
        if self.active:
            self.active_ticker += 1
        else:
            self.active_ticker = 0

        self.amts[IL2_EXT] = self.ext_il2 * self.f

        kon_2 = self.on_rate_min / loc_volume / 60 / STEP_DIVIDER
        kon_3 = self.on_rate_max / loc_volume / 60 / STEP_DIVIDER
        koff = self.off_rate / 60 / STEP_DIVIDER
        self.amts = rk4_integrate(self.amts, 0.0, INTEGRATION_TIME, STEP_SIZE,
                                  kon_2, kon_3, koff, K_CONVERT, K_REC)
        self._recompute_totals()

        if self.kind == SIGNALING_LYTIC:
            self._produce_granzyme(env, loc, loc_volume)
        else:
            self._produce_il2(env, loc, loc_volume)

        self.bound_history[self.ticker % HISTORY_LENGTH] = self.amts[IL2_INT_TOTAL]
        self.ticker += 1

    def _recompute_totals(self):
        self.amts[IL2_INT_TOTAL] = self.amts[IL2_IL2Rbg] + self.amts[IL2_IL2Rbga]
        self.amts[IL2R_TOTAL] = (self.amts[IL2Rbg] + self.amts[IL2Rbga]
                                 + self.amts[IL2_IL2Rbg] + self.amts[IL2_IL2Rbga])

    def _remaining_external(self):
        # Unbound IL-2 returned to the location, in molecules
        return self.ext_il2 - (self.ext_il2 * self.f - self.amts[IL2_EXT])

    def _produce_granzyme(self, env, loc, loc_volume):
        prior = self.delayed_bound(self.synthesis_delay)
        if self.active and self.active_ticker > self.synthesis_delay:
            self.amts[GRANZYME] += GRANZ_PER_IL2 * (prior / self.il2_receptors)

        env.set_value('il2', loc, self._remaining_external() * 1e12 / loc_volume)

    def _produce_il2(self, env, loc, loc_volume):
        prior = self.delayed_bound(self.synthesis_delay)
        rate = self.prod_rate_il2 * (prior / self.il2_receptors)
        if self.active and self.active_ticker >= self.synthesis_delay:
            rate += self.prod_rate_active
        self.produced = rate

        env.set_value('il2', loc, (self._remaining_external() + self.produced) * 1e12 / loc_volume)

    def split(self, daughter, f):
        """
        Move fraction f of the cell content to the daughter module.
        Free two-chain receptors and totals are recomputed from conservation.
        """
        for index in (IL2Rbga, IL2_IL2Rbg, IL2_IL2Rbga):
            daughter.amts[index] = self.amts[index] * f
            self.amts[index] *= (1 - f)

        if self.kind == SIGNALING_LYTIC:
            daughter.amts[GRANZYME] = self.amts[GRANZYME] * f
            self.amts[GRANZYME] *= (1 - f)

        for module in (daughter, self):
            module.amts[IL2Rbg] = (module.il2_receptors - module.amts[IL2Rbga]
                                   - module.amts[IL2_IL2Rbg] - module.amts[IL2_IL2Rbga])
            module._recompute_totals()

        daughter.bound_history = self.bound_history.copy()
        daughter.ticker = self.ticker
