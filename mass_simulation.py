"""
Mass Parallel Simulation Framework

Samples CAR T-cell parameters using Latin Hypercube Sampling (LHS), crosses
them with treatment scenarios (dose and CD4:CD8 ratio), and runs replicates
per parameter-scenario combination using multiprocessing.

Usage:
    python mass_simulation.py --n_param_sets 100 --n_cores 10 --output_dir results/
"""

import numpy as np
import pandas as pd
from pathlib import Path
from multiprocessing import Pool, cpu_count
import argparse
import time
from scipy.stats import qmc

from main_simulation import initialize_parameters, run_simulation

# (name, lower, upper, log-scale)
PARAM_BOUNDS = [
    ('senes_frac', 0.0, 1.0, False),
    ('exhau_frac', 0.0, 1.0, False),
    ('anerg_frac', 0.0, 1.0, False),
    ('proli_frac', 0.3, 1.0, False),
    ('accuracy', 0.0, 1.0, False),
    ('contact_frac', 0.1, 1.0, False),
    ('car_affinity', 1e-9, 1e-6, True),
    ('self_receptor_affinity', 1e-9, 1e-6, True),
    ('car_alpha', 1.0, 5.0, False),
    ('car_beta', 0.001, 0.1, True),
    ('meta_pref', 0.1, 0.9, False),
    ('gluc_uptake_rate', 0.001, 0.1, True),
    ('cars', 5000, 100000, True),
    ('division_potential', 2, 15, False),
    ('max_antigen_binding', 2, 20, False),
]

INTEGER_PARAMS = {'cars', 'division_potential', 'max_antigen_binding'}


def sample_parameters(n_sets, random_seed=42):
    """
    Sample parameter sets using Latin Hypercube Sampling.
    Affinities, rates and receptor counts are sampled on a log scale.
    """
    sampler = qmc.LatinHypercube(d=len(PARAM_BOUNDS), seed=random_seed)
    sample = sampler.random(n=n_sets)

    lower = np.array([np.log10(lo) if log else lo for _, lo, _, log in PARAM_BOUNDS])
    upper = np.array([np.log10(hi) if log else hi for _, _, hi, log in PARAM_BOUNDS])
    scaled_sample = qmc.scale(sample, lower, upper)

    params_df = pd.DataFrame({'param_set_id': range(n_sets)})
    for idx, (name, _, _, log) in enumerate(PARAM_BOUNDS):
        values = scaled_sample[:, idx]
        if log:
            values = 10 ** values
        if name in INTEGER_PARAMS:
            values = np.round(values).astype(int)
        params_df[name] = values

    return params_df


def generate_scenarios(doses=(50, 100), cd4_fractions=(0.0, 0.25, 0.5, 0.75, 1.0)):
    """Generate all treatment scenario combinations."""
    scenarios = []

    for dose in doses:
        for cd4_fraction in cd4_fractions:
            scenarios.append({
                'scenario_id': len(scenarios),
                'treat_dose': dose,
                'cd4_fraction': cd4_fraction,
            })

    return pd.DataFrame(scenarios)


def update_params_with_sampled_and_scenario(base_params, sampled_row, scenario_row):
    """Update base parameters with sampled values and scenario settings."""
    params = base_params.copy()

    # Update with sampled parameters
    for key in sampled_row.index:
        if key != 'param_set_id' and key in params:
            value = sampled_row[key]
            params[key] = int(value) if key in INTEGER_PARAMS else float(value)

    # Update with scenario settings
    params['treat_dose'] = int(scenario_row['treat_dose'])
    params['cd4_fraction'] = float(scenario_row['cd4_fraction'])

    return params


def run_single_simulation(args):
    """
    Run a single simulation and return results.

    Args:
        args: tuple of (param_set_id, scenario_id, replicate_id, params, seed)

    Returns:
        DataFrame with results + identifiers
    """
    param_set_id, scenario_id, replicate_id, params, seed = args

    try:
        # Run simulation
        results = run_simulation(params, random_seed=seed, verbose=False)

        # Add identifiers
        results['param_set_id'] = param_set_id
        results['scenario_id'] = scenario_id
        results['replicate_id'] = replicate_id
        results['seed'] = seed

        return results

    except Exception as e:
        print(f"ERROR in param_set={param_set_id}, scenario={scenario_id}, replicate={replicate_id}: {e}")
        return None


def run_mass_simulations(n_param_sets, n_replicates=10, n_cores=10,
                         output_dir='mass_sim_results', base_seed=42, days=None):
    """
    Main function to run mass parallel simulations.

    Args:
        n_param_sets: Number of parameter sets to sample
        n_replicates: Number of replicate runs per parameter-scenario combo
        n_cores: Number of CPU cores to use
        output_dir: Directory to save results
        base_seed: Base random seed for reproducibility
        days: Simulated days per run (default: t_max from initialize_parameters)
    """

    print("="*70)
    print("MASS SIMULATION FRAMEWORK")
    print("="*70)

    # Create output directory
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    # Sample parameters
    print(f"\n1. Sampling {n_param_sets} parameter sets (LHS)...")
    params_df = sample_parameters(n_param_sets, random_seed=base_seed)
    params_file = output_path / 'sampled_parameters.csv'
    params_df.to_csv(params_file, index=False)
    print(f"   ✓ Saved to {params_file}")

    # Generate scenarios
    print(f"\n2. Generating scenarios...")
    scenarios_df = generate_scenarios()
    scenarios_file = output_path / 'scenarios.csv'
    scenarios_df.to_csv(scenarios_file, index=False)
    print(f"   ✓ Generated {len(scenarios_df)} scenarios")
    print(f"   ✓ Saved to {scenarios_file}")

    # Calculate total simulations
    total_sims = n_param_sets * len(scenarios_df) * n_replicates
    print(f"\n3. Setting up {total_sims:,} simulations:")
    print(f"   - {n_param_sets} parameter sets")
    print(f"   - {len(scenarios_df)} scenarios")
    print(f"   - {n_replicates} replicates each")
    print(f"   - Using {n_cores} CPU cores")

    # Build task list
    print(f"\n4. Building task list...")
    base_params = initialize_parameters()
    if days is not None:
        base_params['t_max'] = int(days * 1440)
    tasks = []

    for _, param_row in params_df.iterrows():
        param_set_id = int(param_row['param_set_id'])

        for _, scenario_row in scenarios_df.iterrows():
            scenario_id = int(scenario_row['scenario_id'])

            # Update parameters
            params = update_params_with_sampled_and_scenario(base_params, param_row, scenario_row)

            # Generate replicates with different seeds
            for replicate_id in range(n_replicates):
                # Create unique seed: base_seed + param_id*1000000 + scenario_id*1000 + replicate_id
                seed = base_seed + param_set_id * 1000000 + scenario_id * 1000 + replicate_id

                tasks.append((param_set_id, scenario_id, replicate_id, params, seed))

    print(f"   ✓ Created {len(tasks):,} tasks")

    # Run simulations in parallel
    print(f"\n5. Running simulations on {n_cores} cores...")
    print(f"   (This will take a while...)")

    start_time = time.time()

    with Pool(processes=n_cores) as pool:
        # Use imap for progress tracking
        results_list = []
        for i, result in enumerate(pool.imap_unordered(run_single_simulation, tasks), 1):
            if result is not None:
                results_list.append(result)

            # Progress update every 10 simulations
            if i % 10 == 0 or i == len(tasks):
                elapsed = time.time() - start_time
                rate = i / elapsed
                remaining = (len(tasks) - i) / rate if rate > 0 else 0
                print(f"   Progress: {i}/{len(tasks)} ({100*i/len(tasks):.1f}%) | "
                      f"Elapsed: {elapsed/60:.1f}min | "
                      f"ETA: {remaining/60:.1f}min | "
                      f"Rate: {rate:.1f} sim/s")

    elapsed_time = time.time() - start_time

    if not results_list:
        print("\nNo simulation finished successfully.")
        return None

    print(f"\n6. Combining results...")
    all_results = pd.concat(results_list, ignore_index=True)

    # Save combined results
    results_file = output_path / 'all_simulation_results.csv'
    all_results.to_csv(results_file, index=False)
    print(f"   ✓ Saved {len(all_results)} rows to {results_file}")

    # Summary
    print(f"\n{'='*70}")
    print("SIMULATION COMPLETE")
    print("="*70)
    print(f"Total time: {elapsed_time/60:.1f} minutes ({elapsed_time/3600:.2f} hours)")
    print(f"Average time per simulation: {elapsed_time/len(tasks):.2f} seconds")
    print(f"Throughput: {len(tasks)/elapsed_time:.2f} simulations/second")
    print(f"\nResults saved to: {output_dir}/")
    print(f"  - sampled_parameters.csv")
    print(f"  - scenarios.csv")
    print(f"  - all_simulation_results.csv")

    return all_results


def main():
    """Command-line interface for mass simulations."""
    parser = argparse.ArgumentParser(description='Run mass parallel simulations')
    parser.add_argument('--n_param_sets', type=int, default=10,
                       help='Number of parameter sets to sample (default: 10)')
    parser.add_argument('--n_replicates', type=int, default=10,
                       help='Number of replicates per parameter-scenario combo (default: 10)')
    parser.add_argument('--n_cores', type=int, default=min(10, cpu_count()),
                       help='Number of CPU cores to use (default: 10 or max available)')
    parser.add_argument('--output_dir', type=str, default='mass_sim_results',
                       help='Output directory (default: mass_sim_results)')
    parser.add_argument('--base_seed', type=int, default=42,
                       help='Base random seed (default: 42)')
    parser.add_argument('--days', type=float, default=None,
                       help='Simulated days per run (default: t_max from parameters)')

    args = parser.parse_args()

    # Run mass simulations
    run_mass_simulations(
        n_param_sets=args.n_param_sets,
        n_replicates=args.n_replicates,
        n_cores=args.n_cores,
        output_dir=args.output_dir,
        base_seed=args.base_seed,
        days=args.days
    )


if __name__ == "__main__":
    main()
