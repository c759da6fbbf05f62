"""
CAR T-cell agent.

Every tick a cell ages, checks its lifespan and energy, advances its
metabolism and signaling modules, and, when neutral or paused, looks for a
target to bind. The outcome of binding picks the next state, and states that
take time to finish hand off to a helper.
"""

import numpy as np

from cell_states import (TYPE_NEUTRAL, TYPE_APOPT, TYPE_MIGRA, TYPE_PROLI, TYPE_SENES,
                         TYPE_NECRO, TYPE_CYTOT, TYPE_STIMU, TYPE_EXHAU, TYPE_ANERG,
                         TYPE_STARV, TYPE_PAUSE,
                         IS_MIGRATING, IS_PROLIFERATING, IS_ACTIVATED, IS_BOUNDANTIGEN,
                         IS_BOUNDSELFRECEPTOR, NUM_FLAGS,
                         CODE_T_CELL, SUBTYPE_CD4, SUBTYPE_CD8, InvariantViolation)
from helpers import MakeHelper, RemoveHelper, MoveHelper, KillHelper, ResetHelper
from metabolism import MetabolismModule
from signaling import SignalingModule
from simulation_utils import hill_binding_score

MINUTES_PER_DAY = 1440
DAYS_UNTIL_INACTIVE = 7
AVOGADRO_SCALE = 1e-15 * 6.022e23
CAR_REFERENCE = 50000.0

# Types that do not switch to starved when energy goes negative
NO_STARVE_TYPES = (TYPE_APOPT, TYPE_SENES, TYPE_EXHAU, TYPE_ANERG, TYPE_STARV)


class CARTCell:
    """
    CAR T-cell with CD4 (stimulatory) or CD8 (cytotoxic) behaviour.

    Args:
        sim: the owning simulation
        cell_id: identifier in the simulation's agent table
        population: Population with a CD4 or CD8 subtype tag
        location: (x, y, z) location
        volume: initial volume, also the critical volume
        age: initial age in minutes
        params: parameter distributions to draw from (population's by default)
    """

    def __init__(self, sim, cell_id, population, location, volume, age, params=None):
        self.id = cell_id
        self.pop = population.index
        self.code = CODE_T_CELL
        self.tcode = population.subtype
        self.location = location
        self.volume = volume
        self.crit_volume = volume
        self.energy = 0.0
        self.age = age
        self.type = TYPE_NEUTRAL
        self.flags = np.zeros(NUM_FLAGS, dtype=bool)
        self.helper = None
        self.stopped = False
        self.stopper = None
        self.cycle = []

        self.bound_antigen_count = 0
        self.bound_self_count = 0
        self.last_active_ticker = 0

        p = population.get_params() if params is None else dict(params)

        self.senes_frac = p['senes_frac'].next_double()
        self.exhau_frac = p['exhau_frac'].next_double()
        self.anerg_frac = p['anerg_frac'].next_double()
        self.proli_frac = p['proli_frac'].next_double()
        self.energy_threshold = p['energy_threshold'].next_double()
        accuracy = p['accuracy'].next_double()
        self.death_age = p['death_age_avg'].next_double()
        self.divisions = p['division_potential'].next_int()
        self.search_ability = p['search_ability'].get_mu_int()
        self.max_antigen_binding = p['max_antigen_binding'].next_int()
        self.cars = p['cars'].next_int()
        self.self_receptors = p['self_receptors'].next_int()
        self.self_receptors_start = self.self_receptors

        self.car_affinity = p['car_affinity'].get_mu()
        self.car_alpha = p['car_alpha'].get_mu()
        self.car_beta = p['car_beta'].get_mu()
        self.self_receptor_affinity = p['self_receptor_affinity'].get_mu()
        self.self_alpha = p['self_alpha'].get_mu()
        self.self_beta = p['self_beta'].get_mu()
        self.contact_frac = p['contact_frac'].get_mu()

        drawn = {
            'senes_frac': self.senes_frac,
            'exhau_frac': self.exhau_frac,
            'anerg_frac': self.anerg_frac,
            'proli_frac': self.proli_frac,
            'energy_threshold': self.energy_threshold,
            'accuracy': accuracy,
            'death_age_avg': self.death_age,
            'division_potential': self.divisions,
            'max_antigen_binding': self.max_antigen_binding,
            'cars': self.cars,
            'self_receptors': self.self_receptors,
        }
        self.params = {}
        for key, dist in p.items():
            self.params[key] = dist.update(drawn[key]) if key in drawn else dist

        self.metabolism = MetabolismModule(sim, self, population)
        self.signaling = SignalingModule.for_subtype(self.tcode, population)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def add_cycle(self, duration):
        self.cycle.append(duration)

    def set_helper(self, sim, helper):
        """Attach and schedule a helper, stopping any helper still live."""
        if self.helper is not None and self.helper is not helper:
            self.helper.stop()
        self.helper = helper
        helper.schedule_helper(sim)

    def stop(self):
        if self.stopper is not None:
            self.stopper.stop()
        self.stopped = True

    def new_cell(self, sim, location, volume):
        """Daughter cell drawing from this cell's recentred distributions."""
        population = sim.populations[self.pop]
        return make_cart_cell(sim, population, location, volume, 0, self.params)

    def split_modules(self, daughter, f):
        self.signaling.split(daughter.signaling, f)
        self.metabolism.split(daughter.metabolism, f)
        for cell in (self, daughter):
            cell.volume = cell.metabolism.volume
            cell.energy = cell.metabolism.energy

    def _clear(self, *flags):
        for flag in flags:
            self.flags[flag] = False

    # ------------------------------------------------------------------
    # Step
    # ------------------------------------------------------------------

    def step(self, sim):
        self.age += 1
        if self.age > self.death_age and self.type != TYPE_APOPT:
            p = sim.get_death_prob(self.pop, self.age)
            if sim.rng.runif() < p:
                self.apoptose(sim)

        # Antigen memory fades one binding per day without activity
        self.last_active_ticker += 1
        if self.last_active_ticker % MINUTES_PER_DAY == 0 and self.bound_antigen_count > 0:
            self.bound_antigen_count -= 1
        if self.last_active_ticker // MINUTES_PER_DAY >= DAYS_UNTIL_INACTIVE:
            self.flags[IS_ACTIVATED] = False

        self.metabolism.step(sim, self, self.signaling)

        if self.energy < self.energy_threshold and self.type != TYPE_APOPT:
            self.apoptose(sim)
        elif self.type not in NO_STARVE_TYPES and self.energy < 0:
            self.starve(sim)
        elif self.type == TYPE_STARV and self.energy >= 0:
            self.type = TYPE_NEUTRAL

        self.signaling.step(sim, self)

        if self.type in (TYPE_NEUTRAL, TYPE_PAUSE):
            if self.divisions == 0:
                self.senesce(sim)
            else:
                self.decide(sim)

    def decide(self, sim):
        target = self.bind_target(sim, self.location)

        if self.flags[IS_BOUNDANTIGEN]:
            if self.flags[IS_BOUNDSELFRECEPTOR]:
                self.anergy(sim)
            elif self.bound_antigen_count > self.max_antigen_binding:
                self.exhaust(sim)
            elif self.tcode == SUBTYPE_CD8:
                self.cytotoxic(sim, target)
            elif self.tcode == SUBTYPE_CD4:
                self.stimulate(sim, target)
        else:
            if self.flags[IS_BOUNDSELFRECEPTOR]:
                self.flags[IS_BOUNDSELFRECEPTOR] = False
            if self.flags[IS_ACTIVATED]:
                self.proliferate(sim)
            elif sim.rng.runif() > self.proli_frac:
                self.migrate(sim)
            else:
                self.proliferate(sim)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def senesce(self, sim):
        if sim.rng.runif() > self.senes_frac:
            self.apoptose(sim)
        else:
            self.type = TYPE_SENES
            self._clear(IS_MIGRATING, IS_PROLIFERATING, IS_BOUNDANTIGEN,
                        IS_BOUNDSELFRECEPTOR, IS_ACTIVATED)

    def apoptose(self, sim):
        self.type = TYPE_APOPT
        self._clear(IS_MIGRATING, IS_PROLIFERATING, IS_BOUNDANTIGEN,
                    IS_BOUNDSELFRECEPTOR, IS_ACTIVATED)
        self.set_helper(sim, RemoveHelper(self))

    def starve(self, sim):
        self.type = TYPE_STARV
        self._clear(IS_MIGRATING, IS_PROLIFERATING, IS_BOUNDANTIGEN, IS_BOUNDSELFRECEPTOR)

    def pause(self, sim):
        self.type = TYPE_PAUSE
        self._clear(IS_MIGRATING, IS_PROLIFERATING, IS_BOUNDANTIGEN, IS_BOUNDSELFRECEPTOR)

    def migrate(self, sim):
        self.type = TYPE_MIGRA
        self.flags[IS_MIGRATING] = True
        self._clear(IS_PROLIFERATING, IS_BOUNDANTIGEN, IS_BOUNDSELFRECEPTOR)
        self.set_helper(sim, MoveHelper(self))

    def proliferate(self, sim):
        self.type = TYPE_PROLI
        self.flags[IS_PROLIFERATING] = True
        self._clear(IS_MIGRATING, IS_BOUNDANTIGEN, IS_BOUNDSELFRECEPTOR)

        f = sim.rng.runif() / 10 + 0.45
        daughter = self.new_cell(sim, self.location, self.crit_volume * 2 * f)
        self.set_helper(sim, MakeHelper(self, daughter, sim.time, f))

    def cytotoxic(self, sim, target):
        self.type = TYPE_CYTOT
        self.flags[IS_ACTIVATED] = True
        self._clear(IS_MIGRATING, IS_PROLIFERATING)
        self.last_active_ticker = 0
        self.set_helper(sim, KillHelper(self, target))

    def stimulate(self, sim, target):
        self.type = TYPE_STIMU
        self.flags[IS_ACTIVATED] = True
        self._clear(IS_MIGRATING, IS_PROLIFERATING)
        self.last_active_ticker = 0

        if target.stopped:
            self.flags[IS_BOUNDANTIGEN] = False
            self.type = TYPE_NEUTRAL
            if self.helper is not None:
                self.helper.stop()
            self.helper = None
        else:
            target.quiesce(sim)
            self.set_helper(sim, ResetHelper(self))

    def exhaust(self, sim):
        if sim.rng.runif() > self.exhau_frac:
            self.apoptose(sim)
        else:
            self.type = TYPE_EXHAU
            self._clear(IS_MIGRATING, IS_PROLIFERATING, IS_BOUNDANTIGEN, IS_ACTIVATED)

    def anergy(self, sim):
        if sim.rng.runif() > self.anerg_frac:
            self.apoptose(sim)
        else:
            self.type = TYPE_ANERG
            self._clear(IS_MIGRATING, IS_PROLIFERATING, IS_BOUNDANTIGEN,
                        IS_BOUNDSELFRECEPTOR, IS_ACTIVATED)

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def _upregulate_self_receptors(self, sim):
        self.self_receptors += int(self.self_receptors_start * (0.95 + sim.rng.runif() / 10))
        self.params['self_receptors'] = self.params['self_receptors'].update(self.self_receptors)

    def bind_target(self, sim, location):
        """
        Look for a target among neighbouring tissue cells.

        Sets the antigen and self-receptor binding flags and returns the bound
        cell, or None when nothing was bound.
        """
        env = sim.environment
        kd_car = self.car_affinity * (env.volume * AVOGADRO_SCALE)
        kd_self = self.self_receptor_affinity * (env.volume * AVOGADRO_SCALE)

        candidates = [a for a in env.neighbors(location) if a is not self]
        sim.rng.shuffle(candidates)

        n = len(candidates)
        if n == 0:
            self._clear(IS_BOUNDANTIGEN, IS_BOUNDSELFRECEPTOR)
            return None

        max_search = min(n, self.search_ability)
        for i in range(max_search):
            cell = candidates[i]
            if cell.code == CODE_T_CELL or cell.type in (TYPE_APOPT, TYPE_NECRO):
                continue

            score_car = hill_binding_score(cell.car_antigens, self.contact_frac, kd_car,
                                           self.car_beta, self.cars / CAR_REFERENCE, self.car_alpha)
            score_self = hill_binding_score(cell.self_targets, self.contact_frac, kd_self,
                                            self.self_beta,
                                            self.self_receptors / self.self_receptors_start,
                                            self.self_alpha)

            random_antigen = sim.rng.runif()
            random_self = sim.rng.runif()
            bound_antigen = score_car >= random_antigen
            bound_self = score_self >= random_self

            self.flags[IS_BOUNDANTIGEN] = bound_antigen
            self.flags[IS_BOUNDSELFRECEPTOR] = bound_self

            if bound_antigen:
                self.bound_antigen_count += 1
                if bound_self:
                    self.bound_self_count += 1
                self._upregulate_self_receptors(sim)
                return cell
            if bound_self:
                self.bound_self_count += 1
                return cell

        self._clear(IS_BOUNDANTIGEN, IS_BOUNDSELFRECEPTOR)
        return None

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def to_json(self):
        return [self.tcode, self.pop, self.type, list(self.location),
                round(self.volume, 2), int(self.age), list(self.cycle)]


def make_cart_cell(sim, population, location, volume, age, params=None):
    """Create a CD4 or CD8 CAR T-cell for a CAR T-cell population."""
    if not population.is_cart:
        raise InvariantViolation(
            f"Population '{population.name}' is not a CAR T-cell population",
            tick=sim.time)
    return CARTCell(sim, sim.next_id(), population, location, volume, age, params)
