#!/usr/bin/env python3
"""
Command-line entrypoint for headless SPH fluid runs.

This script runs a complete fluid simulation without rendering:
1. Load a configuration file (or use defaults) and apply overrides
2. Spawn the fluid block
3. Advance a number of frames
4. Print per-frame statistics and a final summary

Usage:
    python scripts/run_simulation.py
    python scripts/run_simulation.py --config configs/dam_break_2d.yaml --frames 600
    python scripts/run_simulation.py --dim 3D --particles 4096 --frames 120
    python scripts/run_simulation.py --help
"""

import argparse
import sys
from pathlib import Path
import numpy as np

# Add src to path if running from repository root
src_path = Path(__file__).parent.parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from sph_fluid import FluidSimulation, SimulationConfig, SPHFluidError
from sph_fluid.config import load_config


def main():
    """Main entrypoint."""
    parser = argparse.ArgumentParser(
        description="Run a headless SPH fluid simulation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("--config", "-c", type=str, default=None,
                        help="YAML or JSON configuration file")
    parser.add_argument("--frames", "-f", type=int, default=300,
                        help="Number of frames to simulate")
    parser.add_argument("--dt", type=float, default=1.0 / 60.0,
                        help="Host frame time in seconds")

    # Overrides
    parser.add_argument("--particles", "-n", type=int, default=None,
                        help="Number of particles")
    parser.add_argument("--dim", choices=["2D", "3D"], default=None,
                        help="Dimensionality")
    parser.add_argument("--substeps", type=int, default=None,
                        help="Substeps per frame")
    parser.add_argument("--sort", choices=["stable", "bitonic"], default=None,
                        help="Neighbour sort method")
    parser.add_argument("--log-interval", type=int, default=60,
                        help="Frames between status lines (0 = off)")

    # Misc
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress verbose output")

    args = parser.parse_args()

    overrides = {
        "verbose": not args.quiet,
        "log_interval": args.log_interval,
    }
    if args.particles is not None:
        overrides["particle_count"] = args.particles
    if args.dim is not None:
        overrides["dimensionality"] = args.dim
    if args.substeps is not None:
        overrides["iterations_per_frame"] = args.substeps
    if args.sort is not None:
        overrides["sort_method"] = args.sort
    if args.seed is not None:
        overrides["random_seed"] = args.seed

    try:
        if args.config is not None:
            config = load_config(args.config, **overrides)
        else:
            config = SimulationConfig(**overrides)
    except SPHFluidError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    if not args.quiet:
        print("=" * 70)
        print("sph-fluid: headless SPH fluid simulation")
        print("=" * 70)
        print()

    sim = FluidSimulation()
    try:
        sim.init(config)
        sim.run(args.frames, delta_time=args.dt)
    except SPHFluidError as exc:
        print(f"Simulation failed: {exc}", file=sys.stderr)
        sim.shutdown()
        return 1

    positions = sim.positions()
    densities = sim.densities()
    print("\n" + "=" * 70)
    print("Simulation complete!")
    print(f"Frames: {sim.state.frame}  Substeps: {sim.state.substep}")
    print(f"Centre of mass: {np.round(positions.mean(axis=0), 4).tolist()}")
    print(f"Density range: [{float(densities.min()):.3e}, {float(densities.max()):.3e}]")
    print(f"Max speed: {float(np.linalg.norm(sim.velocities(), axis=1).max()):.3e}")
    print("=" * 70)

    sim.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
