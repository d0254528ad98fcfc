"""
Scoring models for the site engine.

Provides the gravity scorer, the cannibalization assessor and the
geometric pattern detector.
"""

from site_engine.ml.cannibalization import CannibalizationAssessor
from site_engine.ml.gravity_scorer import GravityScorer
from site_engine.ml.pattern_detector import PatternAnalysisError, PatternDetector

__all__ = [
    "CannibalizationAssessor",
    "GravityScorer",
    "PatternAnalysisError",
    "PatternDetector",
]
