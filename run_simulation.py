"""
Simple script to run the CAR T-cell ABM simulation.
This demonstrates how to use the simulation code and customize parameters.
"""

import argparse
import time

from main_simulation import initialize_parameters, run_simulation, plot_results


def main():
    """Run the simulation with custom parameters if desired."""

    parser = argparse.ArgumentParser(description='Run a single CAR T-cell simulation')
    parser.add_argument('--seed', type=int, default=42, help='Random seed')
    parser.add_argument('--days', type=float, default=None, help='Simulated days (overrides t_max)')
    parser.add_argument('--dose', type=int, default=None, help='Number of CAR T-cells to seed')
    parser.add_argument('--ratio', type=float, default=None, help='CD4 fraction of the dose')
    parser.add_argument('--stream', type=str, default=None, help='Pre-generated random stream file')
    parser.add_argument('--output', type=str, default='simulation_results', help='Output file prefix')
    parser.add_argument('--quiet', action='store_true', help='Suppress progress output')
    args = parser.parse_args()

    print("=" * 60)
    print("CAR T-CELL AGENT-BASED MODEL SIMULATION")
    print("Python implementation optimized with Numba")
    print("=" * 60)

    # Initialize default parameters
    params = initialize_parameters()

    # You can modify parameters here if needed
    # Examples:
    # params['grid_size'] = 9  # Smaller grid for faster testing
    # params['treat_delay'] = 1440  # Treat after one day
    if args.days is not None:
        params['t_max'] = int(args.days * 1440)
    if args.dose is not None:
        params['treat_dose'] = args.dose
    if args.ratio is not None:
        params['cd4_fraction'] = args.ratio

    print(f"\nSimulation parameters:")
    print(f"  Grid size: {params['grid_size']}x{params['grid_size']}x{params['grid_layers']}")
    print(f"  Time steps: {params['t_max']} ({params['t_max'] / 1440:.1f} days)")
    print(f"  Tumour cells: {params['n_tumor_cells']}")
    print(f"  Dose: {params['treat_dose']} (CD4 fraction {params['cd4_fraction']:.2f})")
    print(f"  Random seed: {args.seed}")
    print("-" * 60)

    # Start timer
    start_time = time.time()

    print("\nStarting simulation...")
    results, sim = run_simulation(params, random_seed=args.seed, random_stream_file=args.stream,
                                  output_prefix=args.output, verbose=not args.quiet,
                                  return_simulation=True)

    # Calculate runtime
    runtime = time.time() - start_time

    print(f"\n✓ Simulation completed in {runtime:.2f} seconds")
    print(f"  Average time per step: {runtime/params['t_max']*1000:.2f} ms")

    # Save results
    output_file = f"{args.output}.csv"
    results.to_csv(output_file, index=False)
    print(f"\n✓ Results saved to: {output_file}")

    # Generate plots
    print("\n✓ Generating visualization plots...")
    plot_results(results, output_file=f"{args.output}.png")

    treatment = sim.treatment

    # Print final state summary
    print("\n" + "=" * 60)
    print("SIMULATION SUMMARY")
    print("=" * 60)

    final_state = results.iloc[-1]

    print(f"\nTreatment:")
    print(f"  Placed: {sum(treatment.counts)} of {treatment.dose}")
    for pop, count in zip(treatment.treat_pops, treatment.counts):
        print(f"  {sim.populations[pop].name.upper()}: {count}")
    if treatment.shortfall > 0:
        print(f"  Shortfall: {treatment.shortfall} (no space next to sites)")

    print(f"\nFinal Tissue State:")
    print(f"  Tumour alive: {final_state['tumor_alive']:.0f}")
    print(f"  Tumour dead: {final_state['tumor_dead']:.0f}")
    print(f"  Healthy alive: {final_state['healthy_alive']:.0f}")
    print(f"  Healthy dead: {final_state['healthy_dead']:.0f}")

    print(f"\nFinal CAR T-cell State:")
    print(f"  CD4: {final_state['cd4']:.0f}")
    print(f"  CD8: {final_state['cd8']:.0f}")
    for col in results.columns:
        if col.startswith('cart_') and col != 'cart_total' and final_state[col] > 0:
            print(f"  {col[5:].capitalize()}: {final_state[col]:.0f}")
    print(f"  Mean energy: {final_state['mean_energy']:.3g}")

    print(f"\nLysis (cumulative):")
    print(f"  Tumour cells killed: {final_state['kills']:.0f}")

    print("\n" + "=" * 60)
    print("Simulation complete! Check the output files for detailed results.")
    print("=" * 60)


if __name__ == "__main__":
    main()
