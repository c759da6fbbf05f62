"""
Periodic profilers for lysis events and per-cell parameters.
Each profiler keeps its records in memory and, when given an output path,
rewrites its JSON file after every interval so completed intervals stay on disk.
"""

import json

import pandas as pd

from cell_states import CODE_T_CELL, TYPE_NAMES
from schedule import ORDERING_PROFILER


class Profiler:
    def __init__(self, interval, output_file=None):
        self.interval = interval
        self.output_file = output_file
        self.timepoints = []
        self.stopper = None

    def schedule_profiler(self, sim):
        self.stopper = sim.schedule.schedule_repeating(sim.time + self.interval, ORDERING_PROFILER,
                                                       self, interval=self.interval)

    def step(self, sim):
        self.timepoints.append(self.profile(sim))
        if self.output_file is not None:
            self.save_json(self.output_file)

    def profile(self, sim):
        raise NotImplementedError

    def save_json(self, path):
        with open(path, 'w') as fh:
            json.dump({'timepoints': self.timepoints}, fh)


class LysisProfiler(Profiler):
    """Collects the lysis records produced since the last interval."""

    def profile(self, sim):
        lysed = list(sim.lysed_cells)
        sim.lysed_cells.clear()
        return {'time': sim.time, 'lysed': lysed}

    def to_dataframe(self):
        rows = []
        for tp in self.timepoints:
            for time, location, snapshot in tp['lysed']:
                rows.append({
                    'profile_time': tp['time'],
                    'lysis_time': time,
                    'x': location[0], 'y': location[1], 'z': location[2],
                    'code': snapshot[0],
                    'pop': snapshot[1],
                    'volume': snapshot[4],
                    'age': snapshot[5],
                })
        return pd.DataFrame(rows)


class ParameterProfiler(Profiler):
    """Snapshot of every live agent's parameter means, grouped by location."""

    def profile(self, sim):
        cells = {}
        for agent in sim.agents.values():
            entry = {
                'id': agent.id,
                'code': agent.code,
                'pop': agent.pop,
                'type': TYPE_NAMES[agent.type],
                'params': {key: float(dist.get_mu()) for key, dist in agent.params.items()},
            }
            if agent.code == CODE_T_CELL:
                entry['tcode'] = agent.tcode
                entry['divisions'] = agent.divisions
            cells.setdefault(str(list(agent.location)), []).append(entry)
        return {'time': sim.time, 'cells': cells}

    def to_dataframe(self):
        rows = []
        for tp in self.timepoints:
            for location, entries in tp['cells'].items():
                for entry in entries:
                    row = {'time': tp['time'], 'location': location, 'id': entry['id'],
                           'code': entry['code'], 'pop': entry['pop'], 'type': entry['type'],
                           'divisions': entry.get('divisions')}
                    row.update(entry['params'])
                    rows.append(row)
        return pd.DataFrame(rows)
