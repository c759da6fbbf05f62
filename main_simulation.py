"""
Main CAR T-cell Agent-Based Model Simulation
Tissue with a tumour, vascular sites feeding glucose and oxygen, and a dose of
CD4/CD8 CAR T-cells seeded next to the sites.
"""

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
from time import time

from cart_cell import make_cart_cell
from cell_states import (TYPE_NAMES, TYPE_APOPT, TYPE_NECRO, CODE_T_CELL, TISSUE_CODES,
                         CODE_H_CELL, SUBTYPE_CD4, InvariantViolation)
from environment import Environment
from helpers import TreatHelper
from locations import check_location_space
from parameters import build_populations, POP_HEALTHY, POP_TUMOR, POP_STEM, POP_CD4, POP_CD8
from profilers import LysisProfiler, ParameterProfiler
from schedule import Schedule, ORDERING_CELLS, ORDERING_ENVIRONMENT
from simulation_utils import RandomStream
from tissue_cell import TissueCell

CART_TYPES = ['neutral', 'apoptotic', 'migratory', 'proliferative', 'senescent',
              'necrotic', 'cytotoxic', 'stimulatory', 'exhausted', 'anergic', 'starved', 'paused']


def initialize_parameters():
    """Initialize all simulation parameters."""
    params = {}

    # Grid parameters
    params['grid_size'] = 15
    params['grid_layers'] = 1
    params['location_side'] = 30.0      # um
    params['location_height'] = 8.7     # um
    params['max_agents'] = 6
    params['t_max'] = 2880              # minutes
    params['heterogeneity'] = 0.1

    # Sites (vasculature along the two x borders)
    params['site_type'] = 'source'
    params['site_radius'] = 5.0
    params['max_damage_seed'] = 2.0
    params['min_radius_seed'] = 3.0

    # Molecules (concentrations in fmol/um^3, IL-2 in molecules/cm^3)
    params['glucose_concentration'] = 5e-3
    params['oxygen_concentration'] = 1e-4
    params['tgfa_concentration'] = 0.0
    params['il2_concentration'] = 0.0

    # Diffusion parameters (must be < 0.125 for stability)
    params['diffusion_glucose'] = 0.1
    params['diffusion_oxygen'] = 0.12
    params['diffusion_tgfa'] = 0.05
    params['diffusion_il2'] = 0.05

    # Decay rates
    params['decay_glucose'] = 0.0
    params['decay_oxygen'] = 0.0
    params['decay_tgfa'] = 0.01
    params['decay_il2'] = 0.01

    # Max cell values
    params['max_glucose'] = 5e-3
    params['max_oxygen'] = 1e-4
    params['max_tgfa'] = 1.0
    params['max_il2'] = 1e20

    # Tissue cells
    params['n_tumor_cells'] = 40
    params['tumor_radius'] = 3
    params['stem_fraction'] = 0.1
    params['n_healthy_cells'] = 30
    params['tissue_vol_avg'] = 2250.0
    params['tissue_vol_range'] = 200.0
    params['tissue_age_min'] = 0
    params['tissue_age_max'] = 1440
    params['death_age_avg_tissue'] = 1e6
    params['death_age_range_tissue'] = 1e4
    params['car_antigens'] = 5000
    params['self_targets'] = 500
    params['max_height'] = 8.7
    params['healthy_overrides'] = {'car_antigens': 500, 'self_targets': 5000}

    # CAR T-cell size, age and lifespan
    params['t_cell_vol_avg'] = 175.0
    params['t_cell_vol_range'] = 10.0
    params['t_cell_age_min'] = 0
    params['t_cell_age_max'] = 1440
    params['death_age_avg_t'] = 30240
    params['death_age_range_t'] = 5000

    # CAR T-cell heterogeneous parameters (population means)
    params['senes_frac'] = 0.5
    params['exhau_frac'] = 0.5
    params['anerg_frac'] = 0.5
    params['proli_frac'] = 0.7
    params['energy_threshold'] = -1.0
    params['accuracy'] = 0.8
    params['death_age_avg'] = 30240
    params['division_potential'] = 10
    params['max_antigen_binding'] = 10
    params['cars'] = 50000
    params['self_receptors'] = 5000

    # Binding (biophysical, no drift)
    params['search_ability'] = 1
    params['car_affinity'] = 1e-7
    params['car_alpha'] = 3.0
    params['car_beta'] = 0.01
    params['self_receptor_affinity'] = 1e-7
    params['self_alpha'] = 3.0
    params['self_beta'] = 0.02
    params['contact_frac'] = 0.5

    # Signaling
    params['shell_thickness'] = 1.0
    params['il2_receptors'] = 1500
    params['il2_binding_on_rate_min'] = 3.8193e-2
    params['il2_binding_on_rate_max'] = 3.155
    params['il2_binding_off_rate'] = 0.015
    params['il2_synthesis_delay'] = 60
    params['il2_prod_rate_il2'] = 16.0
    params['il2_prod_rate_active'] = 293.0
    params['granz_synthesis_delay'] = 100

    # Metabolism
    params['meta_pref'] = 0.3
    params['meta_pref_il2'] = 0.01
    params['meta_pref_active'] = 0.1
    params['gluc_uptake_rate'] = 0.01
    params['gluc_uptake_rate_il2'] = 0.001
    params['gluc_uptake_rate_active'] = 0.005
    params['frac_mass'] = 0.25
    params['frac_mass_active'] = 0.25
    params['ratio_gluc_to_pyru'] = 0.5
    params['lactate_rate'] = 0.1
    params['autophagy_rate'] = 1e-4
    params['min_mass_frac'] = 0.5
    params['meta_switch_delay'] = 10
    params['mass_to_gluc'] = 500.0
    params['basal_energy'] = 1e-3
    params['prolif_energy'] = 1e-3
    params['migra_energy'] = 1e-4

    # Transition timings (minutes)
    params['synthesis_time_t'] = 637
    params['synthesis_range_t'] = 60
    params['migra_rate'] = 0.5          # um/min
    params['migra_range'] = 0.1
    params['death_time'] = 60
    params['death_range'] = 10
    params['bound_time'] = 60
    params['bound_range'] = 20

    # Treatment
    params['n_initial_cart'] = 0
    params['treat_delay'] = 60
    params['treat_dose'] = 50
    params['cd4_fraction'] = 0.5
    params['positions_per_location'] = 16

    # Profilers
    params['profiler_interval'] = 720

    return params


class Simulation:
    """
    Owns the agents, the environment, the schedule and the single random stream.
    Agents are kept in an id -> agent table; helpers look agents up by id.
    """

    def __init__(self, params, random_seed=42, random_stream_file=None, output_prefix=None):
        self.params = params
        if random_stream_file is not None:
            self.rng = RandomStream.from_file(random_stream_file)
        else:
            self.rng = RandomStream(random_seed)

        self.schedule = Schedule()
        self.environment = self._build_environment(params)
        self.populations = build_populations(params, self.rng)
        self.agents = {}
        self._next_id = 0

        self.lysed_cells = []
        self.removed_tissue = {code: 0 for code in TISSUE_CODES}
        self.total_kills = 0
        self.arrivals = 0
        self.environment.add_listener(self._on_agent_arrival)

        lysis_file = f"{output_prefix}_lysis.json" if output_prefix else None
        param_file = f"{output_prefix}_parameters.json" if output_prefix else None
        self.lysis_profiler = LysisProfiler(params['profiler_interval'], lysis_file)
        self.parameter_profiler = ParameterProfiler(params['profiler_interval'], param_file)
        self.treatment = None

    @staticmethod
    def _build_environment(params):
        n = params['grid_size']
        env = Environment(n, n, params['grid_layers'], params['location_side'],
                          params['location_height'], params['max_agents'], params['site_type'])

        for name in ('glucose', 'oxygen', 'tgfa', 'il2'):
            env.add_field(name, params[f'{name}_concentration'])

        env.sites[:, 0, :] = 1
        env.sites[:, n - 1, :] = 1
        env.radius[env.sites != 0] = params['site_radius']
        return env

    @property
    def time(self):
        return self.schedule.time

    def next_id(self):
        self._next_id += 1
        return self._next_id

    def get_agent(self, agent_id):
        return self.agents.get(agent_id)

    def get_death_prob(self, pop, age):
        return self.populations[pop].death_probability(age)

    def get_next_volume(self, pop):
        return self.populations[pop].next_volume()

    def get_next_age(self, pop):
        return self.populations[pop].next_age()

    def _on_agent_arrival(self, old, new):
        self.arrivals += 1

    # ------------------------------------------------------------------
    # Agent lifecycle
    # ------------------------------------------------------------------

    def new_cart_cell(self, pop, location, volume, age, params=None):
        return make_cart_cell(self, self.populations[pop], location, volume, age, params)

    def new_tissue_cell(self, pop, location):
        population = self.populations[pop]
        return TissueCell(self.next_id(), population, location,
                          population.next_volume(), population.next_age())

    def place_agent(self, agent, location):
        """Add an agent to the lattice and schedule it every tick from the next one."""
        if not self.environment.in_bounds(location):
            raise InvariantViolation(f"Location {location} is outside the lattice",
                                     agent_id=agent.id, tick=self.time)
        self.environment.add_object(agent, location)
        self.agents[agent.id] = agent
        agent.stopper = self.schedule.schedule_repeating(self.time + 1, ORDERING_CELLS, agent)

    def remove_agent(self, agent):
        """Take a dead agent off the lattice and out of the agent table."""
        self.environment.remove_object(agent)
        agent.stop()
        if agent.helper is not None:
            helper, agent.helper = agent.helper, None
            helper.stop()
        self.agents.pop(agent.id, None)
        if agent.code in TISSUE_CODES:
            self.removed_tissue[agent.code] += 1

    def record_lysis(self, target):
        self.lysed_cells.append([self.time, list(target.location), target.to_json()])
        self.total_kills += 1

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup_agents(self):
        """Plate a tumour disc in the centre and healthy cells around it."""
        env = self.environment
        params = self.params
        center = params['grid_size'] // 2
        radius = params['tumor_radius']

        disc = [(x, y, 0) for x in range(env.nx) for y in range(env.ny)
                if (x - center) ** 2 + (y - center) ** 2 <= radius ** 2]
        outside = [loc for loc in env.get_locations() if loc[2] == 0 and loc not in disc]

        self._plate(disc, params['n_tumor_cells'], tumor=True)
        self._plate(outside, params['n_healthy_cells'], tumor=False)

        n_cart = params['n_initial_cart']
        for i in range(n_cart):
            pop = POP_CD4 if self.rng.runif() < params['cd4_fraction'] else POP_CD8
            loc = (int(self.rng.runif() * env.nx), int(self.rng.runif() * env.ny), 0)
            cell = self.new_cart_cell(pop, loc, self.get_next_volume(pop), self.get_next_age(pop))
            self.place_agent(cell, loc)

    def _plate(self, locations, n, tumor):
        locations = list(locations)
        self.rng.shuffle(locations)
        placed = 0
        for loc in locations * 3:
            if placed >= n:
                break
            if tumor:
                pop = POP_STEM if self.rng.runif() < self.params['stem_fraction'] else POP_TUMOR
            else:
                pop = POP_HEALTHY
            cell = self.new_tissue_cell(pop, loc)
            if check_location_space(self, loc, cell.volume):
                self.place_agent(cell, loc)
                placed += 1
        return placed

    def schedule_treatment(self):
        params = self.params
        frac = params['cd4_fraction']
        self.treatment = TreatHelper(params['treat_delay'], params['treat_dose'],
                                     [POP_CD4, POP_CD8], [frac, 1 - frac],
                                     params['positions_per_location'])
        self.treatment.schedule_helper(self)

    def schedule_environment(self):
        self.schedule.schedule_repeating(self.time + 1, ORDERING_ENVIRONMENT, self)

    def step(self, sim):
        """Per-tick environment update (scheduled after cells and helpers)."""
        self.environment.step_fields(self.params)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def count_state(self):
        counts = {f'cart_{name}': 0 for name in CART_TYPES}
        counts.update({'cd4': 0, 'cd8': 0, 'tumor_alive': 0, 'tumor_dead': 0,
                       'healthy_alive': 0, 'healthy_dead': 0})
        energies = []

        # Removed tissue cells are no longer in the agent table
        for code, n in self.removed_tissue.items():
            counts['healthy_dead' if code == CODE_H_CELL else 'tumor_dead'] += n

        for agent in self.agents.values():
            if agent.code == CODE_T_CELL:
                counts[f'cart_{TYPE_NAMES[agent.type]}'] += 1
                counts['cd4' if agent.tcode == SUBTYPE_CD4 else 'cd8'] += 1
                energies.append(agent.energy)
            else:
                dead = agent.type in (TYPE_APOPT, TYPE_NECRO)
                if agent.code == CODE_H_CELL:
                    counts['healthy_dead' if dead else 'healthy_alive'] += 1
                else:
                    counts['tumor_dead' if dead else 'tumor_alive'] += 1

        counts['cart_total'] = counts['cd4'] + counts['cd8']
        counts['kills'] = self.total_kills
        counts['arrivals'] = self.arrivals
        counts['mean_energy'] = float(np.mean(energies)) if energies else 0.0
        return counts

    def run(self, t_max, verbose=True):
        records = []
        for t in range(1, t_max + 1):
            if verbose and t % 100 == 0:
                print(f"Time step {t}/{t_max}")
            self.schedule.run_until(t, self)
            row = self.count_state()
            row['t'] = t
            records.append(row)
        return records


def run_simulation(params, random_seed=42, random_stream_file=None, output_prefix=None,
                   verbose=True, return_simulation=False):
    """Run the main ABM simulation."""

    sim = Simulation(params, random_seed=random_seed, random_stream_file=random_stream_file,
                     output_prefix=output_prefix)
    sim.setup_agents()
    sim.schedule_environment()
    sim.schedule_treatment()
    sim.lysis_profiler.schedule_profiler(sim)
    sim.parameter_profiler.schedule_profiler(sim)

    if verbose:
        n_tumor = sum(1 for a in sim.agents.values() if a.code in TISSUE_CODES and a.code != CODE_H_CELL)
        n_healthy = sum(1 for a in sim.agents.values() if a.code == CODE_H_CELL)
        print(f"Starting simulation with {n_tumor} tumour cells and {n_healthy} healthy cells...")
        print(f"Treatment: {params['treat_dose']} CAR T-cells at t={params['treat_delay']} "
              f"({100 * params['cd4_fraction']:.0f}% CD4)")

    records = sim.run(params['t_max'], verbose=verbose)

    if verbose:
        print("Simulation complete!")

    results = create_results_dataframe(records, params)
    if return_simulation:
        return results, sim
    return results


def create_results_dataframe(records, params):
    """Create a pandas DataFrame with all simulation results."""
    df = pd.DataFrame(records)

    df['treat_dose'] = params['treat_dose']
    df['cd4_fraction'] = params['cd4_fraction']

    # Reorder columns
    first_cols = ['t', 'treat_dose', 'cd4_fraction']
    other_cols = [col for col in df.columns if col not in first_cols]
    df = df[first_cols + other_cols]

    return df


def plot_results(df, output_file='simulation_results.png'):
    """Create visualization plots for the simulation results."""

    fig, axes = plt.subplots(2, 2, figsize=(14, 10))
    days = df['t'] / 1440

    # Plot 1: Tumour dynamics
    ax = axes[0, 0]
    ax.plot(days, df['tumor_alive'], label='Alive', color='firebrick', linewidth=2)
    ax.plot(days, df['tumor_dead'], label='Dead', color='grey', linewidth=2)
    ax.set_xlabel('Time (days)')
    ax.set_ylabel('Count')
    ax.set_title('Tumour Cell Dynamics')
    ax.legend()
    ax.grid(True, alpha=0.3)

    # Plot 2: CAR T-cell subtypes
    ax = axes[0, 1]
    ax.plot(days, df['cd4'], label='CD4', color='turquoise', linewidth=2)
    ax.plot(days, df['cd8'], label='CD8', color='purple', linewidth=2)
    ax.set_xlabel('Time (days)')
    ax.set_ylabel('Count')
    ax.set_title('CAR T-cell Population')
    ax.legend()
    ax.grid(True, alpha=0.3)

    # Plot 3: CAR T-cell states
    ax = axes[1, 0]
    for name in CART_TYPES:
        col = f'cart_{name}'
        if df[col].max() > 0:
            ax.plot(days, df[col], label=name, linewidth=2)
    ax.set_xlabel('Time (days)')
    ax.set_ylabel('Count')
    ax.set_title('CAR T-cell States')
    ax.legend(bbox_to_anchor=(1.05, 1), loc='upper left')
    ax.grid(True, alpha=0.3)

    # Plot 4: Cumulative kills
    ax = axes[1, 1]
    ax.plot(days, df['kills'], label='Kills', color='black', linewidth=2)
    ax.set_xlabel('Time (days)')
    ax.set_ylabel('Count')
    ax.set_title('Cumulative Tumour Lysis')
    ax.legend()
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_file, dpi=150, bbox_inches='tight')
    plt.close(fig)

    print(f"Plots saved to {output_file}")


if __name__ == "__main__":
    # Start timer
    start_time = time()

    # Initialize parameters
    params = initialize_parameters()

    # Run simulation
    results_df = run_simulation(params)

    # Calculate runtime
    runtime = time() - start_time
    print(f"\nSimulation runtime: {runtime:.2f} seconds")

    # Save results
    results_df.to_csv('simulation_results.csv', index=False)
    print("Results saved to simulation_results.csv")

    # Create plots
    plot_results(results_df)

    # Display summary statistics
    print("\n=== Summary Statistics ===")
    print(f"Final tumour cells alive: {results_df['tumor_alive'].iloc[-1]}")
    print(f"Final CAR T-cells: {results_df['cart_total'].iloc[-1]}")
    print(f"Total tumour cells lysed: {results_df['kills'].iloc[-1]}")
