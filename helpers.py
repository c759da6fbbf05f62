"""
Helpers: scheduled continuations that finish a transition an agent has
already decided on (moving, dividing, dying, killing, holding a bound state).

A cell helper stores the id of its agent, not the agent itself. The agent is
looked up in the simulation when the helper fires, and a stopped agent turns
the helper into a detach-only no-op.
"""

import math

from cell_states import (TYPE_NEUTRAL, TYPE_PROLI, TYPE_MIGRA, TYPE_CYTOT, TYPE_STIMU,
                         IS_PROLIFERATING, IS_MIGRATING, IS_DOUBLED, IS_ACTIVATED,
                         IS_BOUNDANTIGEN, IS_BOUNDSELFRECEPTOR)
from environment import SITE_SOURCE, SITE_PATTERN, SITE_GRAPH
from locations import get_best_location, check_location_space
from schedule import ORDERING_HELPERS

HELPER_SCHEDULED = 'scheduled'
HELPER_ACTIVE = 'active'
HELPER_COMPLETED = 'completed'
HELPER_STOPPED = 'stopped'


class Helper:
    """Base class holding the schedule handle and lifecycle state."""

    def __init__(self):
        self.begin = None
        self.end = None
        self.state = HELPER_SCHEDULED
        self.stopper = None

    @property
    def is_live(self):
        return self.state in (HELPER_SCHEDULED, HELPER_ACTIVE)

    def stop(self):
        """Cancel the helper; it will not fire again."""
        if self.stopper is not None:
            self.stopper.stop()
        if self.is_live:
            self.state = HELPER_STOPPED

    def schedule_helper(self, sim, begin=None):
        raise NotImplementedError


class CellHelper(Helper):
    def __init__(self, cell):
        super().__init__()
        self.cell_id = cell.id
        self.pop = cell.pop

    def get_cell(self, sim):
        return sim.get_agent(self.cell_id)

    def detach(self, sim, cell):
        """Clear the agent's reference to this helper and leave the schedule."""
        if cell is not None and cell.helper is self:
            cell.helper = None
        self.end = sim.time
        self.state = HELPER_COMPLETED
        if self.stopper is not None:
            self.stopper.stop()

    def _fire(self, sim):
        """Resolve the agent at fire time; returns None if it has been stopped."""
        self.state = HELPER_ACTIVE
        cell = self.get_cell(sim)
        if cell is None or cell.stopped:
            self.detach(sim, cell)
            return None
        return cell

    def to_json(self, sim):
        cell = self.get_cell(sim)
        return [type(self).__name__, cell.to_json() if cell is not None else None]


class MakeHelper(CellHelper):
    """Division: waits for doubled mass and synthesis time, then places the daughter."""

    def __init__(self, cell, daughter, start, f):
        super().__init__(cell)
        self.daughter = daughter
        self.start = start
        self.f = f
        self.ticker = 0
        self.synth_time = None

    def schedule_helper(self, sim, begin=None):
        pop = sim.populations[self.pop]
        self.synth_time = sim.rng.jitter(pop.get_param('synthesis_time_t'),
                                         pop.get_param('synthesis_range_t'))
        self.begin = sim.time
        self.stopper = sim.schedule.schedule_repeating(self.begin + 1, ORDERING_HELPERS, self)

    def detach(self, sim, cell):
        if cell is not None and not cell.stopped:
            cell.flags[IS_PROLIFERATING] = False
        super().detach(sim, cell)

    def step(self, sim):
        cell = self._fire(sim)
        if cell is None:
            return

        if cell.type != TYPE_PROLI:
            self.detach(sim, cell)
            return

        new_loc = get_best_location(sim, self.daughter)
        if new_loc is None:
            self.detach(sim, cell)
            cell.pause(sim)
            return

        if cell.flags[IS_DOUBLED]:
            if self.ticker > self.synth_time:
                self._complete(sim, cell, new_loc)
            else:
                self.ticker += 1

    def _complete(self, sim, cell, new_loc):
        daughter = self.daughter
        cell.flags[IS_DOUBLED] = False
        cell.add_cycle(sim.time - self.start)

        sim.place_agent(daughter, new_loc)
        cell.split_modules(daughter, self.f)

        cell.divisions -= 1
        daughter.divisions = cell.divisions
        daughter.self_receptors = cell.self_receptors
        daughter.bound_antigen_count = cell.bound_antigen_count
        daughter.bound_self_count = cell.bound_self_count
        daughter.flags[IS_ACTIVATED] = cell.flags[IS_ACTIVATED]

        cell.type = TYPE_NEUTRAL
        self.detach(sim, cell)


class RemoveHelper(CellHelper):
    """Death: removes the agent from the environment after a fixed delay."""

    def schedule_helper(self, sim, begin=None):
        self.begin = sim.time if begin is None else begin
        pop = sim.populations[self.pop]
        self.end = self.begin + sim.rng.jitter(pop.get_param('death_time'),
                                               pop.get_param('death_range'))
        self.stopper = sim.schedule.schedule_once(self.end, ORDERING_HELPERS, self)

    def step(self, sim):
        cell = self._fire(sim)
        if cell is None:
            return
        sim.remove_agent(cell)
        self.detach(sim, cell)


class MoveHelper(CellHelper):
    """Migration: moves the agent to the best neighbouring location."""

    def schedule_helper(self, sim, begin=None):
        self.begin = sim.time if begin is None else begin
        pop = sim.populations[self.pop]
        rate = pop.get_param('migra_rate') + pop.get_param('migra_range') * (2 * sim.rng.runif() - 1)
        self.end = self.begin + math.floor(sim.environment.side / rate + 0.5)
        self.stopper = sim.schedule.schedule_once(self.end, ORDERING_HELPERS, self)

    def step(self, sim):
        cell = self._fire(sim)
        if cell is None:
            return

        if cell.type == TYPE_MIGRA:
            cell.flags[IS_MIGRATING] = False
            new_loc = get_best_location(sim, cell)
            if new_loc is None:
                self.detach(sim, cell)
                cell.pause(sim)
                return
            if new_loc != cell.location:
                sim.environment.move_object(cell, new_loc)
            cell.type = TYPE_NEUTRAL

        self.detach(sim, cell)


class KillHelper(CellHelper):
    """Lytic interaction with a bound target; always ends in a ResetHelper."""

    def __init__(self, cell, target):
        super().__init__(cell)
        self.target_id = target.id

    def schedule_helper(self, sim, begin=None):
        self.begin = sim.time if begin is None else begin
        self.end = self.begin
        self.stopper = sim.schedule.schedule_once(self.begin, ORDERING_HELPERS, self)

    def step(self, sim):
        cell = self._fire(sim)
        if cell is None:
            return

        target = sim.get_agent(self.target_id)
        if target is None or target.stopped:
            cell.flags[IS_BOUNDANTIGEN] = False
            cell.type = TYPE_NEUTRAL
            self.detach(sim, cell)
            return

        signaling = cell.signaling
        granzyme = signaling.get_internal('granzyme')
        if granzyme >= 1:
            target.apoptose(sim)
            sim.record_lysis(target)
            signaling.set_internal('granzyme', granzyme - 1)

        self.detach(sim, cell)
        cell.set_helper(sim, ResetHelper(cell))


class ResetHelper(CellHelper):
    """Holds the bound state for a fixed time, then returns the agent to neutral."""

    def schedule_helper(self, sim, begin=None):
        self.begin = sim.time if begin is None else begin
        pop = sim.populations[self.pop]
        self.end = self.begin + sim.rng.jitter(pop.get_param('bound_time'),
                                               pop.get_param('bound_range'))
        self.stopper = sim.schedule.schedule_once(self.end, ORDERING_HELPERS, self)

    def step(self, sim):
        cell = self._fire(sim)
        if cell is None:
            return

        if cell.type in (TYPE_CYTOT, TYPE_STIMU):
            cell.flags[IS_BOUNDANTIGEN] = False
            cell.flags[IS_BOUNDSELFRECEPTOR] = False
            cell.type = TYPE_NEUTRAL

        self.detach(sim, cell)


class TreatHelper(Helper):
    """
    Bulk seeding of CAR T-cells next to usable sites.

    Args:
        delay: ticks after scheduling at which the dose is placed
        dose: number of cells to place
        treat_pops: population indices to seed
        treat_frac: fraction of the dose for each population
        positions_per_location: entries added per qualifying site position
    """

    def __init__(self, delay, dose, treat_pops, treat_frac, positions_per_location=16):
        super().__init__()
        self.delay = delay
        self.dose = dose
        self.treat_pops = list(treat_pops)
        self.treat_frac = list(treat_frac)
        self.positions_per_location = positions_per_location
        self.counts = [0] * len(self.treat_pops)
        self.placed = []

    def schedule_helper(self, sim, begin=None):
        self.begin = sim.time if begin is None else begin
        self.end = self.begin + self.delay
        self.stopper = sim.schedule.schedule_once(self.end, ORDERING_HELPERS, self)

    def _qualifies(self, sim, z, position):
        env = sim.environment
        x, y = position
        if env.site_type in (SITE_SOURCE, SITE_PATTERN):
            return env.sites[z, x, y] != 0 and env.damage[z, x, y] <= sim.params['max_damage_seed']
        if env.site_type == SITE_GRAPH:
            return env.sites[z, x, y] != 0 and env.radius[z, x, y] >= sim.params['min_radius_seed']
        return False

    def site_locations(self, sim):
        """Candidate locations ordered from most to least occupied bucket."""
        env = sim.environment
        buckets = [[], [], [], []]

        for loc in env.get_locations():
            z = loc[2]
            for position in env.lattice_positions(loc):
                if self._qualifies(sim, z, position):
                    k = min(env.count_at(loc), 3)
                    buckets[k].extend([loc] * self.positions_per_location)

        for bucket in reversed(buckets):
            sim.rng.shuffle(bucket)

        return buckets[3] + buckets[2] + buckets[1] + buckets[0]

    def seed_order(self, sim):
        order = []
        for p, frac in zip(self.treat_pops, self.treat_frac):
            order.extend([p] * int(math.ceil(frac * self.dose)))
        sim.rng.shuffle(order)
        return order

    def step(self, sim):
        self.state = HELPER_ACTIVE
        site_locs = self.site_locations(sim)
        order = self.seed_order(sim)
        volume = sim.populations[self.treat_pops[0]].get_param('t_cell_vol_avg')

        i = 0
        while i < self.dose:
            while i < len(site_locs) and not check_location_space(sim, site_locs[i], volume):
                del site_locs[i]
            if i >= len(site_locs) or i >= len(order):
                break

            pop = order[i]
            population = sim.populations[pop]
            cell = sim.new_cart_cell(pop, site_locs[i], population.next_volume(), population.next_age())
            sim.place_agent(cell, site_locs[i])
            self.counts[self.treat_pops.index(pop)] += 1
            self.placed.append(cell.id)
            i += 1

        self.state = HELPER_COMPLETED
        self.end = sim.time

    @property
    def shortfall(self):
        return self.dose - sum(self.counts)

    def to_json(self):
        return {
            'type': 'TREAT',
            'delay': self.delay / 60.0 / 24.0,
            'pops': [[p, c] for p, c in zip(self.treat_pops, self.counts)],
        }
