"""
Initial conditions module: particle spawn generators.
"""

from sph_fluid.ICs.spawn import SpawnGenerator

__all__ = ["SpawnGenerator"]
