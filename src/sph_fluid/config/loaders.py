"""
Configuration loaders for YAML and JSON files.

This module provides functions to load and validate simulation configurations
from YAML/JSON files. Files may group settings into nested sections
(particles, fluid, domain, spawn, time, interaction, misc); they are flattened
to SimulationConfig fields before validation.
"""

from typing import Dict, Any, Union
from pathlib import Path
import yaml
import json

from pydantic import ValidationError

from sph_fluid.core.errors import InvalidConfiguration
from sph_fluid.core.simulation import SimulationConfig


# Field mapping for nested sections
FIELD_MAPPINGS = {
    'particles': {
        'count': 'particle_count',
        'dimensionality': 'dimensionality',
        'mass': 'particle_mass',
    },
    'fluid': {
        'smoothing_radius': 'smoothing_radius',
        'gravity': 'gravity',
        'target_density': 'target_density',
        'pressure_multiplier': 'pressure_multiplier',
        'near_pressure_multiplier': 'near_pressure_multiplier',
        'viscosity_strength': 'viscosity_strength',
        'collision_dampening': 'collision_dampening',
    },
    'domain': {
        'bounds_size': 'bounds_size',
        'obstacle_size': 'obstacle_size',
        'obstacle_centre': 'obstacle_centre',
    },
    'spawn': {
        'center': 'spawn_center',
        'dimensions': 'spawn_dimensions',
        'initial_velocity': 'initial_velocity',
        'jitter': 'particle_jitter',
        'random_seed': 'random_seed',
    },
    'time': {
        'iterations_per_frame': 'iterations_per_frame',
        'use_fixed_timestep': 'use_fixed_timestep',
        'fixed_timestep': 'fixed_timestep',
        'time_scale': 'time_scale',
    },
    'interaction': {
        'radius': 'interaction_radius',
        'strength': 'interaction_strength',
    },
    'misc': {
        'sort_method': 'sort_method',
        'verbose': 'verbose',
        'log_interval': 'log_interval',
    },
}


def load_config(filename: Union[str, Path], **overrides) -> SimulationConfig:
    """
    Load simulation configuration from YAML or JSON file.

    Parameters
    ----------
    filename : str or Path
        Path to configuration file (.yaml, .yml, or .json)
    **overrides : keyword arguments
        Override specific config values (e.g., particle_count=1000)

    Returns
    -------
    config : SimulationConfig
        Validated simulation configuration

    Raises
    ------
    FileNotFoundError
        If configuration file does not exist
    InvalidConfiguration
        If file format is unsupported or config is invalid

    Examples
    --------
    >>> config = load_config("dam_break.yaml")
    >>> config = load_config("dam_break.yaml", dimensionality="3D", verbose=False)
    """
    filepath = Path(filename)

    if not filepath.exists():
        raise FileNotFoundError(f"Configuration file not found: {filepath}")

    # Determine file type and load
    suffix = filepath.suffix.lower()
    if suffix in ['.yaml', '.yml']:
        config_dict = load_yaml(filepath)
    elif suffix == '.json':
        config_dict = load_json(filepath)
    else:
        raise InvalidConfiguration(
            f"Unsupported config file format: {suffix}. "
            "Use .yaml, .yml, or .json"
        )

    if not isinstance(config_dict, dict):
        raise InvalidConfiguration(
            f"Configuration file {filepath} must contain a mapping at top level"
        )

    flat_config = flatten_config(config_dict)
    flat_config.update(overrides)

    try:
        config = SimulationConfig(**flat_config)
    except ValidationError as e:
        raise InvalidConfiguration(
            f"Configuration validation failed for {filepath}: {e}"
        ) from e

    return config


def load_yaml(filepath: Path) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Parameters
    ----------
    filepath : Path
        Path to YAML file

    Returns
    -------
    config_dict : Dict[str, Any]
        Configuration dictionary
    """
    with open(filepath, 'r') as f:
        try:
            config_dict = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfiguration(f"Could not parse {filepath}: {e}") from e

    if config_dict is None:
        config_dict = {}

    return config_dict


def load_json(filepath: Path) -> Dict[str, Any]:
    """Load JSON configuration file."""
    with open(filepath, 'r') as f:
        try:
            config_dict = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidConfiguration(f"Could not parse {filepath}: {e}") from e

    return config_dict


def flatten_config(config_dict: Dict[str, Any], parent_key: str = '') -> Dict[str, Any]:
    """
    Flatten nested configuration dictionary.

    Converts nested structures like:
        {'fluid': {'smoothing_radius': 0.35}, 'spawn': {'jitter': 0.02}}
    to:
        {'smoothing_radius': 0.35, 'particle_jitter': 0.02}

    Parameters
    ----------
    config_dict : Dict[str, Any]
        Nested configuration dictionary
    parent_key : str
        Parent key for recursion

    Returns
    -------
    flat_dict : Dict[str, Any]
        Flattened configuration dictionary
    """
    flat = {}

    for key, value in config_dict.items():
        if key in FIELD_MAPPINGS and isinstance(value, dict):
            for subkey, subvalue in value.items():
                if subkey in FIELD_MAPPINGS[key]:
                    flat[FIELD_MAPPINGS[key][subkey]] = subvalue
                else:
                    # Pass through unmapped keys
                    flat[subkey] = subvalue
        elif isinstance(value, dict):
            nested = flatten_config(value, parent_key=key)
            flat.update(nested)
        else:
            flat[key] = value

    return flat


def _plain(value: Any) -> Any:
    """Tuples become lists so safe YAML loaders can read the file back."""
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    return value


def save_config(config: SimulationConfig, filename: Union[str, Path]) -> None:
    """
    Save SimulationConfig to a YAML or JSON file in nested-section form.

    Parameters
    ----------
    config : SimulationConfig
        Configuration to save
    filename : str or Path
        Output file path (.yaml, .yml or .json)
    """
    filepath = Path(filename)
    config_dict = config.model_dump()

    organized = {
        section: {
            subkey: _plain(config_dict[field_name])
            for subkey, field_name in mapping.items()
        }
        for section, mapping in FIELD_MAPPINGS.items()
    }

    suffix = filepath.suffix.lower()
    if suffix in ['.yaml', '.yml']:
        with open(filepath, 'w') as f:
            yaml.safe_dump(organized, f, default_flow_style=False, sort_keys=False)
    elif suffix == '.json':
        with open(filepath, 'w') as f:
            json.dump(organized, f, indent=2)
    else:
        raise InvalidConfiguration(f"Unsupported output format: {suffix}. Use .yaml or .json")


def config_from_dict(config_dict: Dict[str, Any]) -> SimulationConfig:
    """
    Create SimulationConfig from dictionary (helper for programmatic use).

    Parameters
    ----------
    config_dict : Dict[str, Any]
        Configuration dictionary, nested or flat

    Returns
    -------
    config : SimulationConfig
        Validated configuration
    """
    flat = flatten_config(config_dict)
    try:
        return SimulationConfig(**flat)
    except ValidationError as e:
        raise InvalidConfiguration(f"Invalid configuration: {e}") from e
