"""
Minimal tissue cell (healthy, cancer or cancer stem) used as a CAR T-cell target.
Tissue cells age, can be made quiescent by stimulatory CAR T-cells, and die
through the same removal helper as CAR T-cells.
"""

import numpy as np

from cell_states import (TYPE_NEUTRAL, TYPE_APOPT, TYPE_QUIES, NUM_FLAGS)
from helpers import RemoveHelper


class TissueCell:
    def __init__(self, cell_id, population, location, volume, age, params=None):
        self.id = cell_id
        self.pop = population.index
        self.code = population.code
        self.location = location
        self.volume = volume
        self.crit_volume = volume
        self.age = age
        self.type = TYPE_NEUTRAL
        self.flags = np.zeros(NUM_FLAGS, dtype=bool)
        self.helper = None
        self.stopped = False
        self.stopper = None
        self.energy = 0.0
        self.cycle = []

        p = population.get_params() if params is None else params
        self.car_antigens = p['car_antigens'].next_double()
        self.self_targets = p['self_targets'].next_double()
        self.params = {
            'car_antigens': p['car_antigens'].update(self.car_antigens),
            'self_targets': p['self_targets'].update(self.self_targets),
            'max_height': p['max_height'],
        }

    def step(self, sim):
        self.age += 1

    def set_helper(self, sim, helper):
        if self.helper is not None and self.helper is not helper:
            self.helper.stop()
        self.helper = helper
        helper.schedule_helper(sim)

    def apoptose(self, sim):
        if self.type == TYPE_APOPT:
            return
        self.type = TYPE_APOPT
        self.flags[:] = False
        self.set_helper(sim, RemoveHelper(self))

    def quiesce(self, sim):
        if self.type != TYPE_APOPT:
            self.type = TYPE_QUIES

    def stop(self):
        if self.stopper is not None:
            self.stopper.stop()
        self.stopped = True

    def to_json(self):
        return [self.code, self.pop, self.type, list(self.location),
                round(self.volume, 2), int(self.age), list(self.cycle)]
