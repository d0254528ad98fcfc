"""
Expansion API endpoints.

Scope-based suggestions, recompute and capacity estimates, plus direct
access to the cannibalization assessor and the pattern detector.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from site_engine.core.cache import get_cache
from site_engine.core.config import get_settings
from site_engine.core.database import get_db
from site_engine.geo.types import (
    BarrierAnalysis,
    CannibalizationResult,
    CapacityEstimate,
    DataMode,
    EnhancedSuggestion,
    ExistingOutlet,
    ExpansionSuggestion,
    Location,
    PatternAnalysis,
    ScopeSelection,
    SpacingVariation,
)
from site_engine.ml.cannibalization import CannibalizationAssessor
from site_engine.ml.gravity_scorer import GravityScorer
from site_engine.ml.pattern_detector import PatternAnalysisError, PatternDetector
from site_engine.services.expansion_service import ExpansionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/expansion", tags=["Expansion"])


# =============================================================================
# Request/Response Models
# =============================================================================


class SuggestionRequest(BaseModel):
    """Request for scope-based expansion suggestions."""

    scope: ScopeSelection
    data_mode: DataMode = Field(default=DataMode.LIVE, description="'live' or 'modelled'")
    limit: Optional[int] = Field(default=None, ge=1, le=1000, description="Maximum suggestions")
    min_distance_m: float = Field(
        default=0, ge=0, description="Anti-cannibalization distance to nearest store"
    )
    intensity: Optional[float] = Field(
        default=None, ge=0, le=100, description="Share of eligible areas to return (%)"
    )


class SuggestionResponse(BaseModel):
    count: int
    suggestions: List[ExpansionSuggestion]


class EnhancedSuggestionResponse(BaseModel):
    count: int
    suggestions: List[EnhancedSuggestion]


class RecomputeRequest(BaseModel):
    scope: Optional[ScopeSelection] = None
    data_mode: Optional[DataMode] = None


class RecomputeResponse(BaseModel):
    processed: int
    succeeded: List[str]
    failed: List[str]
    errors: Dict[str, str]
    is_partial: bool


class CannibalizationRequest(BaseModel):
    location: Location
    outlets: List[ExistingOutlet] = Field(default_factory=list)


class PatternRequest(BaseModel):
    proposed_location: Location
    nearby_locations: List[Location] = Field(default_factory=list)
    radius: Optional[float] = Field(default=None, gt=0, description="Analysis radius in meters")


class BarrierRequest(BaseModel):
    location: Location
    existing_locations: List[Location] = Field(default_factory=list)
    radius: float = Field(default=5000, gt=0)


class SpacingRequest(BaseModel):
    locations: List[Location] = Field(default_factory=list)
    target_density: float = Field(default=0.5, ge=0, le=1)


# =============================================================================
# Dependencies
# =============================================================================


def get_expansion_service(db: Session = Depends(get_db)) -> ExpansionService:
    return ExpansionService(db, cache=get_cache())


def get_pattern_detector() -> PatternDetector:
    return PatternDetector(cache=get_cache())


# =============================================================================
# Endpoints
# =============================================================================


@router.get(
    "/methodology",
    summary="Scoring and pattern methodology",
)
def get_methodology() -> Dict[str, Any]:
    """Return gravity weights and pattern thresholds."""
    return {
        "model_version": get_settings().model_version,
        "gravity": GravityScorer.get_methodology(),
        "patterns": PatternDetector.get_methodology(),
    }


@router.post("/suggestions", response_model=SuggestionResponse)
def get_suggestions(
    request: SuggestionRequest,
    service: ExpansionService = Depends(get_expansion_service),
):
    """Ranked suggestions for a scope with cannibalization and pattern checks."""
    try:
        suggestions = service.generate_suggestions(
            request.scope,
            request.data_mode,
            limit=request.limit,
            min_distance_m=request.min_distance_m,
            intensity=request.intensity,
        )
    except PatternAnalysisError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return SuggestionResponse(count=len(suggestions), suggestions=suggestions)


@router.post("/suggestions/enhanced", response_model=EnhancedSuggestionResponse)
def get_enhanced_suggestions(
    request: SuggestionRequest,
    service: ExpansionService = Depends(get_expansion_service),
):
    """Suggestions with enrichment, intelligence score and credibility rating."""
    try:
        suggestions = service.generate_suggestions(
            request.scope,
            request.data_mode,
            limit=request.limit,
            min_distance_m=request.min_distance_m,
            intensity=request.intensity,
        )
    except PatternAnalysisError as e:
        raise HTTPException(status_code=500, detail=str(e))

    enhanced = service.enhance(suggestions)
    return EnhancedSuggestionResponse(count=len(enhanced), suggestions=enhanced)


@router.post("/recompute", response_model=RecomputeResponse)
def recompute_scores(
    request: RecomputeRequest,
    service: ExpansionService = Depends(get_expansion_service),
):
    """Rescore trade areas in scope; failed rows are reported, not fatal."""
    report = service.recompute_scope(request.scope, request.data_mode)
    return RecomputeResponse(
        processed=report.processed,
        succeeded=report.succeeded,
        failed=report.failed,
        errors=report.errors,
        is_partial=report.is_partial,
    )


@router.post("/capacity", response_model=CapacityEstimate)
def estimate_capacity(
    scope: ScopeSelection,
    service: ExpansionService = Depends(get_expansion_service),
):
    return service.estimate_capacity(scope)


@router.post("/cannibalization", response_model=CannibalizationResult)
def assess_cannibalization(request: CannibalizationRequest):
    assessor = CannibalizationAssessor(cache=get_cache())
    return assessor.assess(request.location, request.outlets)


@router.post("/patterns", response_model=PatternAnalysis)
def analyze_patterns(
    request: PatternRequest,
    detector: PatternDetector = Depends(get_pattern_detector),
):
    """Detect grid, linear, radial and cluster patterns around a proposed site."""
    try:
        return detector.analyze(
            request.nearby_locations, request.proposed_location, radius=request.radius
        )
    except PatternAnalysisError as e:
        logger.error(f"Pattern analysis error: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/patterns/barriers", response_model=BarrierAnalysis)
def analyze_barriers(
    request: BarrierRequest,
    detector: PatternDetector = Depends(get_pattern_detector),
):
    return detector.consider_natural_barriers(
        request.location, request.existing_locations, radius=request.radius
    )


@router.post("/patterns/spacing", response_model=SpacingVariation)
def vary_spacing(
    request: SpacingRequest,
    detector: PatternDetector = Depends(get_pattern_detector),
):
    return detector.generate_natural_spacing_variation(
        request.locations, target_density=request.target_density
    )
