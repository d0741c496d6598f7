"""
evisynth Test Configuration

Shared fixtures and test utilities.
"""

from typing import List

import pytest

from evisynth import AnalysisConfig, EffectSize, EffectSizeCalculator
from evisynth.network import NetworkStudy, PairwiseContrast


@pytest.fixture
def config() -> AnalysisConfig:
    """Default configuration with a fixed seed."""
    return AnalysisConfig(random_seed=2024)


@pytest.fixture
def calculator() -> EffectSizeCalculator:
    return EffectSizeCalculator()


@pytest.fixture
def two_odds_ratios() -> List[EffectSize]:
    """OR 2.0 (SE 0.3) and OR 3.0 (SE 0.4)."""
    return [
        EffectSize.from_estimate(2.0, "OR", study_id="S1", se=0.3),
        EffectSize.from_estimate(3.0, "OR", study_id="S2", se=0.4),
    ]


@pytest.fixture
def heterogeneous_mds() -> List[EffectSize]:
    """Five mean differences with clearly different true effects."""
    values = [(0.1, 0.1), (0.9, 0.12), (1.6, 0.1), (-0.4, 0.15), (2.2, 0.2)]
    return [
        EffectSize.from_estimate(y, "MD", study_id=f"H{i}", se=s)
        for i, (y, s) in enumerate(values, start=1)
    ]


@pytest.fixture
def homogeneous_mds() -> List[EffectSize]:
    """Four mean differences scattered well within their sampling error."""
    values = [(0.50, 0.2), (0.52, 0.25), (0.47, 0.3), (0.51, 0.22)]
    return [
        EffectSize.from_estimate(y, "MD", study_id=f"M{i}", se=s)
        for i, (y, s) in enumerate(values, start=1)
    ]


@pytest.fixture
def symmetric_funnel() -> List[EffectSize]:
    """Studies mirrored in pairs around 0.5, each pair sharing an SE."""
    pairs = [(0.05, 0.10), (0.15, 0.15), (0.25, 0.20), (0.35, 0.25), (0.45, 0.30), (0.60, 0.40)]
    effects = []
    for i, (d, s) in enumerate(pairs, start=1):
        effects.append(EffectSize.from_estimate(0.5 + d, "MD", study_id=f"P{i}a", se=s))
        effects.append(EffectSize.from_estimate(0.5 - d, "MD", study_id=f"P{i}b", se=s))
    return effects


@pytest.fixture
def asymmetric_funnel() -> List[EffectSize]:
    """Small studies show larger effects; small negative studies are absent."""
    values = [
        (0.10, 0.05), (0.12, 0.07), (0.08, 0.06), (0.30, 0.15), (0.45, 0.20),
        (0.60, 0.25), (0.75, 0.30), (0.90, 0.35), (1.05, 0.40), (1.20, 0.45),
        (0.50, 0.22), (0.70, 0.28),
    ]
    return [
        EffectSize.from_estimate(y, "MD", study_id=f"A{i}", se=s)
        for i, (y, s) in enumerate(values, start=1)
    ]


@pytest.fixture
def triangle_contrasts() -> List[PairwiseContrast]:
    """Consistent A-B-C loop: d_AB + d_BC = d_AC."""
    return [
        PairwiseContrast("A", "B", 0.5, 0.1),
        PairwiseContrast("B", "C", 0.3, 0.1),
        PairwiseContrast("A", "C", 0.8, 0.1),
    ]


@pytest.fixture
def network_studies() -> List[NetworkStudy]:
    """Four treatments, one loop, one three-arm trial."""
    return [
        NetworkStudy("N1", ("A", "B"), 120),
        NetworkStudy("N2", ("A", "B"), 80),
        NetworkStudy("N3", ("B", "C"), 100),
        NetworkStudy("N4", ("A", "C", "D"), 150),
    ]
