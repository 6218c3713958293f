#!/usr/bin/env python3
"""
Benchmark script for the mass-spring simulator - reproducible step timing
==========================================================================

Runs a fixed number of steps on a cloth grid and reports:
- Steps per second
- Average step time (kernel + optional debug capture)
- Configuration used

Usage:
    python scripts/bench.py [--steps N] [--side N] [--arch cpu|gpu] [--explicit]

Example:
    python scripts/bench.py --steps 500 --side 64
"""

import sys
import os
import time
import argparse
import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import taichi as ti

from config import CLOTH_HEIGHT, SimulationParams
from particles import grid_positions
from simulation import Simulation
from springs import build_grid_springs


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Benchmark mass-spring simulator')
    parser.add_argument('--steps', type=int, default=200,
                        help='Number of steps to time (default: 200)')
    parser.add_argument('--side', type=int, default=64,
                        help='Cloth side length in particles (default: 64)')
    parser.add_argument('--arch', choices=['cpu', 'gpu'], default='gpu',
                        help='Taichi backend (default: gpu)')
    parser.add_argument('--explicit', action='store_true',
                        help='Benchmark the explicit spring table instead of the grid')
    parser.add_argument('--no-debug', action='store_true',
                        help='Skip the per-step debug capture')
    return parser.parse_args()


def build(args, params):
    if not args.explicit:
        return Simulation.cloth(args.side, params, record_debug=not args.no_debug)
    spacing = params.base_rest_length
    positions = grid_positions(args.side, args.side, spacing, CLOTH_HEIGHT)
    edges = build_grid_springs(args.side, spacing, params.structural_k,
                               params.shear_k, params.bend_k)
    return Simulation.from_edges(positions, edges, params, pinned=np.arange(args.side),
                                 record_debug=not args.no_debug)


def run_benchmark(args):
    """
    Run benchmark and collect timing statistics.

    Returns:
        Dictionary with benchmark results
    """
    print(f"\n{'='*70}")
    print(f"MASS-SPRING BENCHMARK")
    print(f"{'='*70}\n")

    print(f"Configuration:")
    print(f"  Particles:     {args.side * args.side} ({args.side}x{args.side})")
    print(f"  Steps:         {args.steps}")
    print(f"  Springs:       {'explicit' if args.explicit else 'grid'}")
    print(f"  Debug:         {'Disabled' if args.no_debug else 'Enabled'}")
    print(f"\n")

    ti.init(arch=ti.gpu if args.arch == 'gpu' else ti.cpu, default_fp=ti.f32)

    params = SimulationParams.preset("cloth")
    sim = build(args, params)

    # Warm-up (first steps include JIT compilation)
    warmup_steps = 5
    sim.run(warmup_steps)
    ti.sync()
    print(f"[Bench] Warm-up complete ({warmup_steps} steps)\n")

    times_step = []
    start_time_total = time.perf_counter()
    for step in range(args.steps):
        t0 = time.perf_counter()
        sim.step()
        ti.sync()
        times_step.append(time.perf_counter() - t0)

        if (step + 1) % 50 == 0 or step == args.steps - 1:
            print(f"  Step {step+1:5d}/{args.steps}: {1.0 / max(times_step[-1], 1e-9):8.1f} steps/s")
    total_time = time.perf_counter() - start_time_total

    avg_step = float(np.mean(times_step))

    print(f"\n{'='*70}")
    print(f"BENCHMARK RESULTS")
    print(f"{'='*70}\n")
    print(f"  Steps/s:       {args.steps / total_time:.2f}")
    print(f"  Total Time:    {total_time:.2f}s")
    print(f"  Avg Step:      {avg_step*1000:.3f}ms")
    print(f"\n")

    return {
        'steps_per_s': args.steps / total_time,
        'total_time': total_time,
        'avg_step_ms': avg_step * 1000,
        'config': {
            'side': args.side,
            'steps': args.steps,
            'explicit': args.explicit,
            'debug': not args.no_debug,
        }
    }


def main():
    """Main entry point."""
    args = parse_args()
    results = run_benchmark(args)
    cfg = results["config"]

    print(f"[Bench] side={cfg['side']} steps={cfg['steps']} explicit={cfg['explicit']} "
          f"debug={cfg['debug']}: {results['steps_per_s']:.2f} steps/s, "
          f"{results['avg_step_ms']:.3f} ms/step")
    print(f"Benchmark complete!")
    print(f"{'='*70}\n")

    return 0


if __name__ == '__main__':
    sys.exit(main())
