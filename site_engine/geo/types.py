"""
Site Engine - Types and Pydantic Models.

Defines enums, input records, and result schemas shared by the gravity
scorer, the cannibalization assessor, and the pattern detector.
"""
import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# ENUMS
# =============================================================================

class RiskLevel(str, Enum):
    """Cannibalization risk classes."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Severity(str, Enum):
    """How strongly a detected pattern undermines credibility."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class CredibilityRating(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class PatternType(str, Enum):
    """Geometric regularities the detector looks for."""
    GRID = "grid"
    LINEAR = "linear"
    RADIAL = "radial"
    CLUSTER = "cluster"


class ScopeType(str, Enum):
    COUNTRY = "country"
    REGION = "region"
    CUSTOM = "custom"


class DataMode(str, Enum):
    """Whether candidate inputs come from live feeds or modelled estimates."""
    LIVE = "live"
    MODELLED = "modelled"


class BarrierType(str, Enum):
    RIVER = "river"
    HIGHWAY = "highway"
    MOUNTAIN = "mountain"
    PARK = "park"
    INDUSTRIAL_ZONE = "industrial_zone"


class NetworkType(str, Enum):
    HIGHWAY = "highway"
    MAJOR_ROAD = "major_road"
    TRANSIT_LINE = "transit_line"
    PEDESTRIAN_CORRIDOR = "pedestrian_corridor"


# =============================================================================
# GEOGRAPHY
# =============================================================================

class Location(BaseModel):
    """Bare coordinate value; immutable."""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    country: Optional[str] = None
    region: Optional[str] = None


class BoundingBox(BaseModel):
    """Geographic bounding box."""
    min_lat: float = Field(..., ge=-90, le=90)
    max_lat: float = Field(..., ge=-90, le=90)
    min_lng: float = Field(..., ge=-180, le=180)
    max_lng: float = Field(..., ge=-180, le=180)

    def contains(self, lat: float, lng: float) -> bool:
        return (
            self.min_lat <= lat <= self.max_lat
            and self.min_lng <= lng <= self.max_lng
        )


class ScopeSelection(BaseModel):
    """Which candidate areas a batch operation covers."""
    type: ScopeType
    value: str
    area: Optional[float] = Field(default=None, gt=0, description="Scope area in km2")
    bbox: Optional[BoundingBox] = None

    @model_validator(mode="after")
    def custom_scope_needs_bbox(self) -> "ScopeSelection":
        if self.type == ScopeType.CUSTOM and self.bbox is None:
            raise ValueError("custom scopes require a bbox")
        return self


# =============================================================================
# INPUT RECORDS
# =============================================================================

RAW_INPUT_FIELDS = (
    "population",
    "footfall_index",
    "income_index",
    "competitor_index",
    "existing_store_distance",
)


class Candidate(BaseModel):
    """
    A candidate trade area.

    Raw inputs are optional; anything missing or non-numeric is stored as
    None and scored as 0. Derived fields are filled in by the gravity scorer.
    """
    id: str
    lat: float
    lng: float
    name: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None

    # Raw inputs
    population: Optional[float] = None
    footfall_index: Optional[float] = None
    income_index: Optional[float] = None
    competitor_index: Optional[float] = None
    existing_store_distance: Optional[float] = Field(
        default=None, description="Meters to the nearest existing outlet"
    )

    # Derived
    demand_score: Optional[float] = None
    supply_penalty: Optional[float] = None
    competition_penalty: Optional[float] = None
    final_score: Optional[float] = None
    confidence: Optional[float] = None

    is_live: bool = False
    model_version: Optional[str] = None

    @field_validator(*RAW_INPUT_FIELDS, mode="before")
    @classmethod
    def drop_malformed_inputs(cls, v: Any) -> Optional[float]:
        if v is None:
            return None
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) else None

    @property
    def location(self) -> Location:
        return Location(lat=self.lat, lng=self.lng, country=self.country, region=self.region)

    @property
    def is_scored(self) -> bool:
        return self.final_score is not None


class ExistingOutlet(BaseModel):
    """An operating outlet that a new site could cannibalize."""
    id: str
    lat: float
    lng: float
    performance: float = Field(default=0.5, ge=0, le=1)
    revenue: Optional[float] = None
    open_date: Optional[datetime] = None

    @classmethod
    def from_turnover(
        cls,
        id: str,
        lat: float,
        lng: float,
        annual_turnover: Optional[float] = None,
        open_date: Optional[datetime] = None,
    ) -> "ExistingOutlet":
        """Build an outlet whose performance is derived from reported turnover."""
        performance = 0.5
        if annual_turnover:
            normalized = min(float(annual_turnover) / 2_000_000, 1.0)
            performance = normalized * 0.7 + 0.3
        performance = max(0.1, min(1.0, performance))
        return cls(
            id=id,
            lat=lat,
            lng=lng,
            performance=performance,
            revenue=annual_turnover,
            open_date=open_date,
        )

    @property
    def location(self) -> Location:
        return Location(lat=self.lat, lng=self.lng)


# =============================================================================
# RESULT MODELS
# =============================================================================

class AffectedOutlet(BaseModel):
    outlet_id: str
    distance: float
    revenue_impact_percent: float
    current_performance: float


class CannibalizationResult(BaseModel):
    """Revenue impact of a new site on nearby outlets."""
    risk_level: RiskLevel
    estimated_impact: float = Field(..., ge=0, le=1)
    affected_outlets: List[AffectedOutlet] = Field(default_factory=list)
    mitigation_strategies: List[str] = Field(default_factory=list)
    is_fallback: bool = False


class GeometricPattern(BaseModel):
    type: PatternType
    confidence: float = Field(..., ge=0, le=1)
    locations: List[Location]
    severity: Severity
    description: str
    center: Optional[Location] = None


class AlternativeLocation(BaseModel):
    """A pattern-breaking coordinate proposed in place of a candidate."""
    lat: float
    lng: float
    distance_from_original: float
    improvement_score: float = Field(..., ge=0, le=1)
    reasons: List[str] = Field(default_factory=list)
    viability_score: float = Field(..., ge=0, le=1)
    pattern_type: Optional[PatternType] = None


class PatternAnalysis(BaseModel):
    detected_patterns: List[GeometricPattern] = Field(default_factory=list)
    overall_pattern_score: float = 0.0
    recommendations: List[str] = Field(default_factory=list)
    alternative_spacing: List[AlternativeLocation] = Field(default_factory=list)


class NaturalBarrier(BaseModel):
    type: BarrierType
    coordinates: List[Location]
    influence: float = Field(..., ge=0, le=1)


class TransportationNetwork(BaseModel):
    type: NetworkType
    coordinates: List[Location]
    importance: float = Field(..., ge=0, le=1)
    accessibility_bonus: float = Field(..., ge=0, le=1)


class BarrierAnalysis(BaseModel):
    barriers: List[NaturalBarrier] = Field(default_factory=list)
    networks: List[TransportationNetwork] = Field(default_factory=list)
    adjusted_location: Optional[Location] = None
    reasoning: List[str] = Field(default_factory=list)


class SpacingVariation(BaseModel):
    adjusted_locations: List[Location] = Field(default_factory=list)
    spacing_strategy: str
    naturalness: float = Field(..., ge=0, le=1)


class RecomputeReport(BaseModel):
    """Outcome of a batch recompute; succeeded rows stay written on failure."""
    succeeded: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)

    @property
    def processed(self) -> int:
        return len(self.succeeded)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed) and bool(self.succeeded)


class GeoValidation(BaseModel):
    """Verdict from the external boundary-checking collaborator."""
    is_valid: bool = True
    is_in_water: bool = False
    detected_country: Optional[str] = None
    issues: List[str] = Field(default_factory=list)


class ExpansionSuggestion(BaseModel):
    candidate: Candidate
    cannibalization: CannibalizationResult
    pattern_score: float = 0.0
    pattern_recommendations: List[str] = Field(default_factory=list)
    alternatives: List[AlternativeLocation] = Field(default_factory=list)
    predicted_auv: int
    payback_months: int
    validation_issues: List[str] = Field(default_factory=list)


class EnhancedSuggestion(ExpansionSuggestion):
    enrichment: Dict[str, Any] = Field(default_factory=dict)
    intelligence_score: float = 0.0
    credibility_rating: CredibilityRating = CredibilityRating.LOW
    executive_readiness: bool = False
    is_fallback: bool = False


class CapacityEstimate(BaseModel):
    total_sites: int
    available_sites: int
    scope_area: float
    density: float
