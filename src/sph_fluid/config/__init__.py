"""
Configuration module: parameter management and run configuration.

Provides YAML/JSON configuration loading and validation for SPH fluid runs.
"""

from sph_fluid.config.loaders import (
    load_config,
    save_config,
    config_from_dict,
    flatten_config,
)

__all__ = [
    'load_config',
    'save_config',
    'config_from_dict',
    'flatten_config',
]
