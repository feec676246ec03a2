"""
Geometry module: region shapes.
"""

from sph_fluid.geometry.shapes import Sphere, Box, Shape

__all__ = ["Sphere", "Box", "Shape"]
