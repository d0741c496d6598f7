"""GRADE certainty-of-evidence rating for evisynth."""

from evisynth.grading.grade import (
    EvidenceGrader,
    GradeAssessment,
    GradeAdjustment,
    RecommendationStrength,
    Quality,
    StudyDesign,
    RiskOfBias,
    Severity,
    Direction,
    determine_recommendation_strength,
)

__all__ = [
    "EvidenceGrader",
    "GradeAssessment",
    "GradeAdjustment",
    "RecommendationStrength",
    "Quality",
    "StudyDesign",
    "RiskOfBias",
    "Severity",
    "Direction",
    "determine_recommendation_strength",
]
