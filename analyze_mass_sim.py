"""
Analysis utilities for mass simulation results.

Functions to:
- Load and merge results with parameters
- Calculate summary statistics per parameter-scenario combo
- Extract key metrics (tumour clearance time, kills, CAR T-cell expansion)
- Export for downstream analysis in R or Python
"""

import argparse
from pathlib import Path

import pandas as pd


def load_mass_sim_results(results_dir='mass_sim_results'):
    """
    Load all mass simulation results and merge with parameters/scenarios.

    Returns:
        tuple: (results_df, params_df, scenarios_df)
    """
    results_dir = Path(results_dir)

    print(f"Loading results from {results_dir}...")

    results = pd.read_csv(results_dir / 'all_simulation_results.csv')
    params = pd.read_csv(results_dir / 'sampled_parameters.csv')
    scenarios = pd.read_csv(results_dir / 'scenarios.csv')

    print(f"  ✓ Loaded {len(results):,} result rows")
    print(f"  ✓ Loaded {len(params)} parameter sets")
    print(f"  ✓ Loaded {len(scenarios)} scenarios")

    return results, params, scenarios


def get_clearance_time(sim_data, column='tumor_alive'):
    """Get time when the count drops to zero (or -1 if never cleared)."""
    zero_times = sim_data[sim_data[column] == 0]['t']
    if len(zero_times) > 0:
        return zero_times.iloc[0]
    return -1


def get_expansion(sim_data):
    """Peak CAR T-cell count relative to the count just after seeding."""
    seeded = sim_data[sim_data['cart_total'] > 0]['cart_total']
    if len(seeded) == 0:
        return 0.0
    return seeded.max() / seeded.iloc[0]


def get_dysfunctional_fraction(sim_data):
    """Share of final CAR T-cells that are exhausted, anergic or senescent."""
    final = sim_data.iloc[-1]
    if final['cart_total'] == 0:
        return 0.0
    dysfunctional = final['cart_exhausted'] + final['cart_anergic'] + final['cart_senescent']
    return dysfunctional / final['cart_total']


def calculate_summary_statistics(results):
    """
    Calculate summary statistics per parameter-scenario-replicate combination.

    Returns:
        DataFrame with one row per simulation run
    """
    print("\nCalculating summary statistics...")

    summaries = []

    # Group by unique simulation
    grouped = results.groupby(['param_set_id', 'scenario_id', 'replicate_id'])

    for (param_id, scenario_id, rep_id), sim_data in grouped:
        sim_data = sim_data.sort_values('t')
        tumor_start = sim_data['tumor_alive'].iloc[0]

        summary = {
            'param_set_id': param_id,
            'scenario_id': scenario_id,
            'replicate_id': rep_id,

            # Tumour dynamics
            'tumor_clearance_time': get_clearance_time(sim_data, 'tumor_alive'),
            'tumor_final': sim_data['tumor_alive'].iloc[-1],
            'tumor_reduction': 1 - sim_data['tumor_alive'].iloc[-1] / tumor_start if tumor_start > 0 else 0.0,
            'total_kills': sim_data['kills'].iloc[-1],

            # Healthy tissue
            'healthy_final': sim_data['healthy_alive'].iloc[-1],
            'healthy_dead_final': sim_data['healthy_dead'].iloc[-1],

            # CAR T-cell dynamics
            'cart_peak': sim_data['cart_total'].max(),
            'cart_final': sim_data['cart_total'].iloc[-1],
            'cart_expansion': get_expansion(sim_data),
            'cd4_final': sim_data['cd4'].iloc[-1],
            'cd8_final': sim_data['cd8'].iloc[-1],
            'dysfunctional_fraction': get_dysfunctional_fraction(sim_data),
            'mean_energy_final': sim_data['mean_energy'].iloc[-1],
        }

        summaries.append(summary)

    summary_df = pd.DataFrame(summaries)
    print(f"  ✓ Created {len(summary_df)} summary rows")

    return summary_df


def merge_with_parameters(summary_df, params_df, scenarios_df):
    """Merge summary statistics with parameters and scenarios."""
    print("\nMerging with parameters and scenarios...")

    # Merge with parameters
    merged = summary_df.merge(params_df, on='param_set_id', how='left')

    # Merge with scenarios
    merged = merged.merge(scenarios_df, on='scenario_id', how='left')

    print(f"  ✓ Merged dataset has {len(merged)} rows and {len(merged.columns)} columns")

    return merged


METRIC_COLS = [
    'tumor_clearance_time', 'tumor_final', 'tumor_reduction', 'total_kills',
    'healthy_final', 'cart_peak', 'cart_final', 'cart_expansion',
    'dysfunctional_fraction',
]

RUN_ONLY_COLS = ['replicate_id', 'healthy_dead_final', 'cd4_final', 'cd8_final', 'mean_energy_final']
SCENARIO_COLS = ['scenario_id', 'treat_dose', 'cd4_fraction']


def aggregate_across_replicates(merged_df):
    """
    Aggregate metrics across replicates to get mean ± std per parameter-scenario combo.
    """
    print("\nAggregating across replicates...")

    agg = merged_df.groupby(['param_set_id', 'scenario_id'])[METRIC_COLS].agg(['mean', 'std'])
    agg.columns = [f'{metric}_{stat}' for metric, stat in agg.columns]
    agg = agg.reset_index()

    counts = merged_df.groupby(['param_set_id', 'scenario_id']).size().rename('n_replicates')
    agg = agg.merge(counts.reset_index(), on=['param_set_id', 'scenario_id'])

    # Cleared fraction: replicates where the tumour was eliminated
    cleared = (merged_df.assign(cleared=merged_df['tumor_clearance_time'] >= 0)
               .groupby(['param_set_id', 'scenario_id'])['cleared'].mean()
               .rename('cleared_fraction').reset_index())
    agg = agg.merge(cleared, on=['param_set_id', 'scenario_id'])

    # Merge back with parameter values and scenario settings
    run_cols = set(METRIC_COLS) | set(RUN_ONLY_COLS) | set(SCENARIO_COLS)
    param_cols = [col for col in merged_df.columns if col not in run_cols]
    params_df = merged_df[param_cols].drop_duplicates('param_set_id')
    scenarios_df = merged_df[SCENARIO_COLS].drop_duplicates('scenario_id')

    agg = agg.merge(params_df, on='param_set_id', how='left')
    agg = agg.merge(scenarios_df, on='scenario_id', how='left')

    print(f"  ✓ Aggregated to {len(agg)} rows (one per param-scenario combo)")

    return agg


def export_for_analysis(merged_df, agg_df, output_dir='mass_sim_results'):
    """Export processed data for downstream analysis."""
    output_dir = Path(output_dir)

    print(f"\nExporting processed data to {output_dir}...")

    # Full detailed results (all replicates)
    merged_file = output_dir / 'analysis_full_with_params.csv'
    merged_df.to_csv(merged_file, index=False)
    print(f"  ✓ Saved full results: {merged_file}")

    # Aggregated results (mean ± std across replicates)
    agg_file = output_dir / 'analysis_aggregated.csv'
    agg_df.to_csv(agg_file, index=False)
    print(f"  ✓ Saved aggregated results: {agg_file}")

    print("\n✓ Analysis complete! Ready for downstream processing.")


def main():
    """Run full analysis pipeline."""
    parser = argparse.ArgumentParser(description='Analyze mass simulation results')
    parser.add_argument('--results_dir', type=str, default='mass_sim_results',
                       help='Directory with simulation results')
    args = parser.parse_args()

    # Load results
    results, params, scenarios = load_mass_sim_results(args.results_dir)

    # Calculate summaries
    summary_df = calculate_summary_statistics(results)

    # Merge with parameters
    merged_df = merge_with_parameters(summary_df, params, scenarios)

    # Aggregate across replicates
    agg_df = aggregate_across_replicates(merged_df)

    # Export
    export_for_analysis(merged_df, agg_df, args.results_dir)


if __name__ == "__main__":
    main()
