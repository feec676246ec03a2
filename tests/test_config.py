"""
Tests for configuration system.

Validates:
- SimulationConfig Pydantic validation
- Per-dimension vector defaults and length checks
- YAML/JSON loading with nested sections and overrides
- Configuration consistency warnings
"""

import json
from pathlib import Path

import pytest
import warnings
import yaml

from sph_fluid.core.errors import InvalidConfiguration
from sph_fluid.core.simulation import SimulationConfig
from sph_fluid.config import load_config, save_config, config_from_dict, flatten_config


class TestSimulationConfigValidation:
    """Test Pydantic validation rules for SimulationConfig."""

    def test_default_config_is_2d(self):
        config = SimulationConfig()
        assert config.dimensionality == "2D"
        assert config.dim == 2
        assert len(config.bounds_size) == 2
        assert len(config.spawn_center) == 2
        assert config.fixed_timestep == pytest.approx(1.0 / 60.0)
        assert config.interaction_radius == 2.0
        assert config.interaction_strength == 90.0
        assert config.random_seed == 1

    def test_3d_defaults(self):
        config = SimulationConfig(dimensionality="3D")
        assert config.dim == 3
        for name in ("bounds_size", "spawn_center", "spawn_dimensions", "initial_velocity"):
            assert len(getattr(config, name)) == 3

    def test_dimensionality_validation(self):
        with pytest.raises(ValueError, match="dimensionality must be one of"):
            SimulationConfig(dimensionality="4D")

    def test_sort_method_validation(self):
        SimulationConfig(sort_method="bitonic")
        with pytest.raises(ValueError, match="sort_method must be one of"):
            SimulationConfig(sort_method="radix")

    @pytest.mark.parametrize("field,value", [
        ("particle_count", 0),
        ("smoothing_radius", 0.0),
        ("smoothing_radius", -0.1),
        ("collision_dampening", -0.1),
        ("collision_dampening", 1.5),
        ("iterations_per_frame", 0),
        ("particle_jitter", -0.01),
        ("fixed_timestep", 0.0),
    ])
    def test_scalar_bounds(self, field, value):
        with pytest.raises(ValueError):
            SimulationConfig(**{field: value})

    def test_vector_length_must_match_dimension(self):
        with pytest.raises(ValueError, match="bounds_size must have 2 components"):
            SimulationConfig(bounds_size=(10.0, 10.0, 10.0))
        with pytest.raises(ValueError, match="spawn_center must have 3 components"):
            SimulationConfig(dimensionality="3D", spawn_center=(0.0, 0.0))

    def test_non_positive_extents(self):
        with pytest.raises(ValueError, match="bounds_size must be positive"):
            SimulationConfig(bounds_size=(10.0, 0.0))
        with pytest.raises(ValueError, match="spawn_dimensions must be positive"):
            SimulationConfig(spawn_dimensions=(-1.0, 1.0))

    def test_non_finite_vector(self):
        with pytest.raises(ValueError, match="finite"):
            SimulationConfig(spawn_center=(float("nan"), 0.0))

    def test_obstacle_centre_defaults_to_origin(self):
        config = SimulationConfig(obstacle_size=(1.0, 2.0))
        assert config.obstacle_centre == (0.0, 0.0)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            SimulationConfig(not_a_field=1)

    def test_assignment_is_validated(self):
        config = SimulationConfig()
        with pytest.raises(ValueError):
            config.collision_dampening = 2.0


class TestConfigurationWarnings:
    """Settings that run but are probably unintended."""

    def test_negative_near_pressure_warns(self):
        with pytest.warns(UserWarning, match="near_pressure_multiplier"):
            SimulationConfig(near_pressure_multiplier=-1.0)

    def test_spawn_outside_bounds_warns(self):
        with pytest.warns(UserWarning, match="Spawn region"):
            SimulationConfig(bounds_size=(4.0, 4.0), spawn_dimensions=(6.0, 1.0))

    def test_large_radius_warns(self):
        with pytest.warns(UserWarning, match="smoothing_radius"):
            SimulationConfig(smoothing_radius=5.0)

    def test_default_config_is_quiet(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            SimulationConfig()
            SimulationConfig(dimensionality="3D")


class TestConfigLoading:
    """YAML/JSON loading."""

    NESTED = {
        'particles': {'count': 256, 'dimensionality': '3D'},
        'fluid': {'smoothing_radius': 0.5, 'gravity': -3.0, 'viscosity_strength': 0.1},
        'domain': {'bounds_size': [8.0, 8.0, 8.0]},
        'spawn': {'center': [0.0, 1.0, 0.0], 'dimensions': [2.0, 2.0, 2.0], 'jitter': 0.05},
        'time': {'iterations_per_frame': 4, 'use_fixed_timestep': True},
        'interaction': {'radius': 1.5},
        'misc': {'sort_method': 'bitonic', 'verbose': False},
    }

    def test_flatten_config(self):
        flat = flatten_config(self.NESTED)
        assert flat['particle_count'] == 256
        assert flat['particle_jitter'] == 0.05
        assert flat['spawn_center'] == [0.0, 1.0, 0.0]
        assert flat['interaction_radius'] == 1.5
        assert flat['sort_method'] == 'bitonic'

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(self.NESTED))
        config = load_config(path)
        assert config.particle_count == 256
        assert config.dim == 3
        assert config.bounds_size == (8.0, 8.0, 8.0)
        assert config.spawn_center == (0.0, 1.0, 0.0)
        assert config.iterations_per_frame == 4
        assert config.use_fixed_timestep is True
        assert config.sort_method == "bitonic"

    def test_load_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(self.NESTED))
        config = load_config(path)
        assert config.smoothing_radius == 0.5
        assert config.gravity == -3.0

    def test_flat_file(self, tmp_path):
        path = tmp_path / "flat.yml"
        path.write_text("particle_count: 64\nverbose: false\n")
        config = load_config(path)
        assert config.particle_count == 64
        assert config.verbose is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path).model_dump() == SimulationConfig().model_dump()

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(self.NESTED))
        config = load_config(path, particle_count=512, verbose=True)
        assert config.particle_count == 512
        assert config.verbose is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("particle_count = 10\n")
        with pytest.raises(InvalidConfiguration, match="Unsupported config file format"):
            load_config(path)

    def test_invalid_values_raise_invalid_configuration(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({'particles': {'count': -5}}))
        with pytest.raises(InvalidConfiguration, match="validation failed"):
            load_config(path)

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({'fluid': {'surface_tension': 1.0}}))
        with pytest.raises(InvalidConfiguration):
            load_config(path)

    def test_save_and_reload(self, tmp_path):
        config = SimulationConfig(
            dimensionality="3D",
            particle_count=1000,
            obstacle_size=(1.0, 1.0, 1.0),
            particle_jitter=0.1,
            verbose=False,
        )
        for suffix in (".yaml", ".json"):
            path = tmp_path / f"saved{suffix}"
            save_config(config, path)
            assert load_config(path).model_dump() == config.model_dump()

    def test_saved_yaml_is_nested(self, tmp_path):
        path = tmp_path / "saved.yaml"
        save_config(SimulationConfig(), path)
        data = yaml.safe_load(path.read_text())
        assert set(data) == {'particles', 'fluid', 'domain', 'spawn', 'time', 'interaction', 'misc'}
        assert data['particles']['count'] == SimulationConfig().particle_count

    @pytest.mark.parametrize("name,dim", [("dam_break_2d.yaml", 2), ("box_3d.yaml", 3)])
    def test_bundled_configs_load(self, name, dim):
        path = Path(__file__).parent.parent / "configs" / name
        config = load_config(path, verbose=False)
        assert config.dim == dim
        assert config.use_fixed_timestep is True

    def test_config_from_dict(self):
        config = config_from_dict(self.NESTED)
        assert config.particle_count == 256
        with pytest.raises(InvalidConfiguration):
            config_from_dict({'particles': {'dimensionality': '5D'}})
