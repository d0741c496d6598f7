"""Tests for AnalysisConfig."""

import dataclasses

import pytest

from evisynth import AnalysisConfig, ConfigurationError
from evisynth.core.config import DEFAULT_CONFIG, resolve_config


class TestAnalysisConfig:
    """Validation and helpers."""

    def test_defaults(self) -> None:
        config = AnalysisConfig()
        assert config.confidence_level == 0.95
        assert config.heterogeneity_threshold == 50.0
        assert config.tau_squared_method == "DL"
        assert config.z == pytest.approx(1.959964, rel=1e-6)
        assert config.tau_squared_method_name == "DerSimonian-Laird"

    def test_case_normalization(self) -> None:
        config = AnalysisConfig(tau_squared_method="pm", trim_fill_estimator="r0", trim_fill_side="LEFT")
        assert config.tau_squared_method == "PM"
        assert config.trim_fill_estimator == "R0"
        assert config.trim_fill_side == "left"

    @pytest.mark.parametrize(
        "changes",
        [
            {"confidence_level": 1.0},
            {"bias_alpha": 0.0},
            {"heterogeneity_threshold": 120.0},
            {"tau_squared_method": "REML"},
            {"min_studies_pooling": 1},
            {"min_studies_prediction": 2},
            {"continuity_correction": 0.0},
            {"trim_fill_estimator": "Q0"},
            {"trim_fill_side": "both"},
            {"max_loop_length": 2},
            {"max_loops": 0},
            {"n_simulations": 500},
            {"simulation_batch_size": 0},
            {"n_jobs": 0},
            {"large_effect_ratio": 1.0},
            {"very_large_effect_ratio": 1.5},
        ],
    )
    def test_invalid_values(self, changes) -> None:
        with pytest.raises(ConfigurationError):
            AnalysisConfig(**changes)

    def test_frozen(self) -> None:
        config = AnalysisConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.confidence_level = 0.9

    def test_replace(self) -> None:
        config = AnalysisConfig().replace(confidence_level=0.9)
        assert config.confidence_level == 0.9
        assert config.z == pytest.approx(1.644854, rel=1e-6)

    def test_replace_validates(self) -> None:
        with pytest.raises(ConfigurationError):
            AnalysisConfig().replace(n_jobs=0)

    def test_replace_unknown_field(self) -> None:
        with pytest.raises(ConfigurationError):
            AnalysisConfig().replace(alpha=0.05)

    def test_to_dict(self) -> None:
        d = AnalysisConfig(random_seed=7).to_dict()
        assert d["random_seed"] == 7
        assert d["higher_is_better"] is True


class TestResolveConfig:
    """resolve_config."""

    def test_none_gives_defaults(self) -> None:
        assert resolve_config(None) is DEFAULT_CONFIG

    def test_passes_through(self) -> None:
        config = AnalysisConfig(random_seed=1)
        assert resolve_config(config) is config

    def test_wrong_type(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve_config({"confidence_level": 0.9})
