"""
Rectangular 3D lattice holding agents and diffusible molecule fields.

Locations are (x, y, z) tuples. Each location is a box of side
`side` x `side` x `height` um that can hold up to `max_agents` agents.
Molecule fields are stored as numpy arrays of shape (nz, nx, ny).
"""

import math
import numpy as np

from cell_states import InvariantViolation
from simulation_utils import diffuse_matrix, neighborhood_average

SITE_SOURCE = 'source'
SITE_PATTERN = 'pattern'
SITE_GRAPH = 'graph'


class Environment:
    def __init__(self, nx, ny, nz=1, side=30.0, height=8.7, max_agents=6,
                 site_type=SITE_SOURCE):
        self.nx = nx
        self.ny = ny
        self.nz = nz
        self.side = side
        self.height = height
        self.area = side * side
        self.volume = self.area * height
        self.max_agents = max_agents
        self.site_type = site_type

        self.occupancy = {}
        self.fields = {}
        self.sites = np.zeros((nz, nx, ny), dtype=np.int32)
        self.damage = np.zeros((nz, nx, ny))
        self.radius = np.zeros((nz, nx, ny))
        self.listeners = []

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def in_bounds(self, loc):
        x, y, z = loc
        return 0 <= x < self.nx and 0 <= y < self.ny and 0 <= z < self.nz

    def get_locations(self):
        return [(x, y, z) for z in range(self.nz)
                for x in range(self.nx) for y in range(self.ny)]

    def neighbor_locations(self, loc):
        """In-plane Moore neighbourhood (including loc) plus directly above and below."""
        x, y, z = loc
        locs = []
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                n = (x + dx, y + dy, z)
                if self.in_bounds(n):
                    locs.append(n)
        for dz in (1, -1):
            n = (x, y, z + dz)
            if self.in_bounds(n):
                locs.append(n)
        return locs

    def lattice_positions(self, loc):
        """Lattice positions adjacent to loc in its own layer."""
        x, y, z = loc
        return [(x + dx, y + dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1)
                if 0 <= x + dx < self.nx and 0 <= y + dy < self.ny]

    def perimeter(self, f):
        """Perimeter of the share f of a location's footprint."""
        return 4 * self.side * math.sqrt(f)

    # ------------------------------------------------------------------
    # Occupancy
    # ------------------------------------------------------------------

    def objects_at(self, loc):
        return list(self.occupancy.get(loc, ()))

    def count_at(self, loc):
        return len(self.occupancy.get(loc, ()))

    def neighbors(self, loc):
        """All agents at loc and its neighbouring locations."""
        agents = []
        for n in self.neighbor_locations(loc):
            agents.extend(self.occupancy.get(n, ()))
        return agents

    def total_volume(self, loc):
        return sum(agent.volume for agent in self.occupancy.get(loc, ()))

    def add_object(self, agent, loc):
        if not self.in_bounds(loc):
            raise InvariantViolation(f"Location {loc} is outside the lattice",
                                     agent_id=getattr(agent, 'id', None))
        agent.location = loc
        self.occupancy.setdefault(loc, []).append(agent)
        self.notify(None, loc)

    def move_object(self, agent, loc):
        if not self.in_bounds(loc):
            raise InvariantViolation(f"Location {loc} is outside the lattice",
                                     agent_id=getattr(agent, 'id', None))
        old = agent.location
        self._detach(agent, old)
        agent.location = loc
        self.occupancy.setdefault(loc, []).append(agent)
        self.notify(old, loc)

    def remove_object(self, agent):
        self._detach(agent, agent.location)

    def _detach(self, agent, loc):
        occupants = self.occupancy.get(loc)
        if occupants and agent in occupants:
            occupants.remove(agent)
            if not occupants:
                del self.occupancy[loc]

    def add_listener(self, callback):
        """Register callback(old_location, new_location) for moves and additions."""
        self.listeners.append(callback)

    def notify(self, old, new):
        for callback in self.listeners:
            callback(old, new)

    # ------------------------------------------------------------------
    # Molecule fields
    # ------------------------------------------------------------------

    def add_field(self, name, value=0.0):
        self.fields[name] = np.full((self.nz, self.nx, self.ny), float(value))

    def get_value(self, name, loc):
        x, y, z = loc
        return self.fields[name][z, x, y]

    def set_value(self, name, loc, value):
        x, y, z = loc
        self.fields[name][z, x, y] = value

    def scale_value(self, name, loc, factor):
        x, y, z = loc
        self.fields[name][z, x, y] *= factor

    def get_total_value(self, name, loc):
        """Amount of a molecule in the location (concentration times volume)."""
        return self.get_value(name, loc) * self.volume

    def get_average_value(self, name, loc):
        x, y, z = loc
        return neighborhood_average(x, y, 1, self.fields[name][z])

    def step_fields(self, params):
        """Diffuse every field and regenerate nutrients at intact sites."""
        for name, field in self.fields.items():
            D = params[f'diffusion_{name}']
            decay = params[f'decay_{name}']
            cap = params[f'max_{name}']
            for z in range(self.nz):
                field[z] = diffuse_matrix(field[z], D, decay, cap)

        active = (self.sites != 0) & (self.damage <= params['max_damage_seed'])
        for name in ('glucose', 'oxygen'):
            if name in self.fields:
                self.fields[name][active] = params[f'{name}_concentration']
