"""
Expansion pipeline: gravity scoring -> cannibalization -> pattern checks.

Loads candidate trade areas for a scope, drops the ones that fail
geographic validation, ranks the rest, and attaches cannibalization risk,
pattern analysis and simple financial projections to each survivor.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from site_engine.core.cache import InMemoryCache, generate_cache_key
from site_engine.core.config import Settings, get_settings
from site_engine.core.models import Store, TradeArea
from site_engine.geo.signals import GeoSignalProvider, SimulatedGeoSignalProvider
from site_engine.geo.types import (
    BoundingBox,
    Candidate,
    CapacityEstimate,
    CredibilityRating,
    DataMode,
    EnhancedSuggestion,
    ExistingOutlet,
    ExpansionSuggestion,
    RecomputeReport,
    ScopeSelection,
    ScopeType,
)
from site_engine.geo.utils import bounding_box, clamp, is_valid_coordinate, safe_float
from site_engine.ml.cannibalization import CannibalizationAssessor
from site_engine.ml.gravity_scorer import GravityScorer, apply_scope_filter, candidate_from_row
from site_engine.ml.pattern_detector import PatternDetector
from site_engine.services.collaborators import (
    CoordinateRangeValidator,
    EnrichmentProvider,
    GeographicValidator,
    NullEnrichmentProvider,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pipeline configuration
# ---------------------------------------------------------------------------
MAX_INTENSITY_SITES = 300
OUTLET_SEARCH_MARGIN_M = 5000

BASE_AUV = 1_000_000
BASE_PAYBACK_MONTHS = 36

CAPACITY_MIN_SCORE = 0.3
CAPACITY_MIN_STORE_DISTANCE_M = 1000

COUNTRY_AREAS_KM2: Dict[str, float] = {
    "US": 9833520,
    "CA": 9984670,
    "GB": 243610,
    "DE": 357022,
    "FR": 643801,
    "AU": 7692024,
    "JP": 377975,
    "SG": 719,
}
DEFAULT_COUNTRY_AREA_KM2 = 100000
DEFAULT_REGION_AREA_KM2 = 100000
FALLBACK_AREA_KM2 = 50000

SUGGESTION_CACHE_PREFIX = "suggestions"

FALLBACK_MARKET_FIT = 0.5
FALLBACK_VIABILITY = 0.5
FALLBACK_DATA_CONFIDENCE = 0.3
DEFAULT_DATA_CONFIDENCE = 0.5


class ExpansionService:
    """Orchestrates scoring, cannibalization and pattern analysis for a scope."""

    def __init__(
        self,
        db: Session,
        cache: Optional[InMemoryCache] = None,
        settings: Optional[Settings] = None,
        validator: Optional[GeographicValidator] = None,
        enrichment: Optional[EnrichmentProvider] = None,
        signal_provider: Optional[GeoSignalProvider] = None,
        scorer: Optional[GravityScorer] = None,
        assessor: Optional[CannibalizationAssessor] = None,
        detector: Optional[PatternDetector] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        if cache is None:
            cache = InMemoryCache(
                default_ttl=self.settings.cache_ttl_seconds,
                max_size=self.settings.cache_max_size,
            )
        self.cache = cache

        self.validator = validator or CoordinateRangeValidator()
        self.enrichment = enrichment or NullEnrichmentProvider()
        self.signal_provider = signal_provider or SimulatedGeoSignalProvider(
            seed=self.settings.random_seed
        )

        self.scorer = scorer or GravityScorer(db=db, cache=cache, settings=self.settings)
        self.assessor = assessor or CannibalizationAssessor(cache=cache, settings=self.settings)
        self.detector = detector or PatternDetector(
            signal_provider=self.signal_provider, cache=cache, settings=self.settings
        )

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def generate_suggestions(
        self,
        scope: ScopeSelection,
        data_mode: DataMode,
        limit: Optional[int] = None,
        min_distance_m: float = 0,
        intensity: Optional[float] = None,
    ) -> List[ExpansionSuggestion]:
        """
        Ranked, assessed suggestions for a scope.

        Results are cached per parameter set until the TTL expires or the
        scope is recomputed.

        Raises:
            PatternAnalysisError: If pattern analysis fails for a candidate
        """
        if limit is None:
            limit = self.settings.default_limit

        key = generate_cache_key(
            scope.model_dump_json(),
            data_mode.value,
            limit,
            min_distance_m,
            intensity,
            self.settings.model_version,
            prefix=SUGGESTION_CACHE_PREFIX,
        )
        cached = self.cache.get_or_compute(
            key,
            lambda: self._build_suggestions(scope, data_mode, limit, min_distance_m, intensity),
        )
        return [suggestion.model_copy(deep=True) for suggestion in cached]

    def _build_suggestions(
        self,
        scope: ScopeSelection,
        data_mode: DataMode,
        limit: int,
        min_distance_m: float,
        intensity: Optional[float],
    ) -> List[ExpansionSuggestion]:
        logger.info(
            f"Generating suggestions for {scope.type.value}={scope.value} "
            f"({data_mode.value}, limit={limit}, intensity={intensity})"
        )

        rows = apply_scope_filter(self.db.query(TradeArea), scope, data_mode).all()
        candidates = [candidate_from_row(row) for row in rows]

        expected_country = scope.value.upper() if scope.type == ScopeType.COUNTRY else None
        valid, issues_by_id = self._validate(candidates, expected_country)
        logger.info(f"{len(valid)} of {len(candidates)} trade areas passed geographic validation")

        ranked = self.scorer.rank(
            valid,
            limit=len(valid),
            filter_fn=lambda c: safe_float(c.existing_store_distance) >= min_distance_m,
        )

        if intensity is not None:
            target = min(MAX_INTENSITY_SITES, round(clamp(intensity, 0, 100) / 100 * len(ranked)))
            ranked = ranked[:target]
        ranked = ranked[:limit]

        if not ranked:
            return []

        outlets = self._load_outlets(
            bounding_box([c.location for c in ranked], margin_m=OUTLET_SEARCH_MARGIN_M)
        )
        candidate_locations = [c.location for c in ranked]
        outlet_locations = [o.location for o in outlets]

        suggestions = []
        for idx, candidate in enumerate(ranked):
            cannibalization = self.assessor.assess(candidate.location, outlets)

            others = candidate_locations[:idx] + candidate_locations[idx + 1:] + outlet_locations
            analysis = self.detector.analyze(others, candidate.location)

            final = candidate.final_score or 0.0
            suggestions.append(ExpansionSuggestion(
                candidate=candidate,
                cannibalization=cannibalization,
                pattern_score=analysis.overall_pattern_score,
                pattern_recommendations=analysis.recommendations,
                alternatives=analysis.alternative_spacing,
                predicted_auv=round(BASE_AUV * (0.5 + final * 1.5)),
                payback_months=round(BASE_PAYBACK_MONTHS * (2 - final)),
                validation_issues=issues_by_id.get(candidate.id, []),
            ))

        logger.info(f"Generated {len(suggestions)} suggestions")
        return suggestions

    def _validate(self, candidates: List[Candidate], expected_country: Optional[str]):
        """Split candidates into usable ones and collect validation notes by id."""
        valid: List[Candidate] = []
        issues_by_id: Dict[str, List[str]] = {}

        for candidate in candidates:
            try:
                verdict = self.validator.validate(candidate.lat, candidate.lng, expected_country)
            except Exception as e:
                logger.warning(f"Validation unavailable for {candidate.id}: {e}")
                if not is_valid_coordinate(candidate.lat, candidate.lng):
                    self.scorer.minimal_viability(
                        candidate, f"coordinates out of range: {candidate.lat}, {candidate.lng}"
                    )
                    continue
                issues_by_id[candidate.id] = ["Geographic validation unavailable"]
                valid.append(candidate)
                continue

            if not verdict.is_valid or verdict.is_in_water:
                reason = "; ".join(verdict.issues) or "failed geographic validation"
                self.scorer.minimal_viability(candidate, reason)
                continue

            if verdict.issues:
                issues_by_id[candidate.id] = list(verdict.issues)
            valid.append(candidate)

        return valid, issues_by_id

    def _load_outlets(self, bbox: Optional[BoundingBox]) -> List[ExistingOutlet]:
        if bbox is None:
            return []
        try:
            stores = (
                self.db.query(Store)
                .filter(
                    Store.status == "active",
                    Store.latitude.between(bbox.min_lat, bbox.max_lat),
                    Store.longitude.between(bbox.min_lng, bbox.max_lng),
                )
                .all()
            )
        except Exception as e:
            logger.error(f"Failed to load existing outlets: {e}")
            self.db.rollback()
            return []

        return [
            ExistingOutlet.from_turnover(
                id=str(store.id),
                lat=store.latitude,
                lng=store.longitude,
                annual_turnover=store.annual_turnover,
                open_date=store.opened_at,
            )
            for store in stores
        ]

    # ------------------------------------------------------------------
    # Enhancement
    # ------------------------------------------------------------------

    def enhance(self, suggestions: List[ExpansionSuggestion]) -> List[EnhancedSuggestion]:
        """Attach enrichment and intelligence scoring; never blocks on failure."""
        enhanced = []
        for suggestion in suggestions:
            try:
                enhanced.append(self._enhance_one(suggestion))
            except Exception as e:
                logger.warning(
                    f"Enrichment failed for {suggestion.candidate.id}, using fallback: {e}"
                )
                enhanced.append(self._fallback_enhanced(suggestion))
        return enhanced

    def _enhance_one(self, suggestion: ExpansionSuggestion) -> EnhancedSuggestion:
        enrichment = self.enrichment.enrich(suggestion)
        if not isinstance(enrichment, dict):
            raise TypeError(f"enrichment must be a dict, got {type(enrichment).__name__}")

        enrichment = dict(enrichment)
        enrichment.setdefault("urban_score", self.signal_provider.urban_score(suggestion.candidate.location))
        enrichment.setdefault("signals_simulated", self.signal_provider.is_simulated)

        market_fit = safe_float(enrichment.get("market_fit_score"))
        viability = safe_float(enrichment.get("viability_score"))
        data_confidence = safe_float(enrichment.get("data_confidence"), DEFAULT_DATA_CONFIDENCE)

        score = self.intelligence_score(suggestion.candidate, market_fit, viability)
        rating = self.credibility_rating(score, data_confidence)

        return EnhancedSuggestion(
            **suggestion.model_dump(),
            enrichment=enrichment,
            intelligence_score=score,
            credibility_rating=rating,
            executive_readiness=(
                rating == CredibilityRating.HIGH and score > 0.7 and market_fit > 0.6
            ),
        )

    def _fallback_enhanced(self, suggestion: ExpansionSuggestion) -> EnhancedSuggestion:
        score = self.intelligence_score(
            suggestion.candidate, FALLBACK_MARKET_FIT, FALLBACK_VIABILITY
        )
        return EnhancedSuggestion(
            **suggestion.model_dump(),
            enrichment={
                "data_confidence": FALLBACK_DATA_CONFIDENCE,
                "concerns": ["Intelligence enhancement unavailable - limited data"],
            },
            intelligence_score=score,
            credibility_rating=CredibilityRating.LOW,
            executive_readiness=False,
            is_fallback=True,
        )

    @staticmethod
    def intelligence_score(candidate: Candidate, market_fit: float, viability: float) -> float:
        score = (
            0.5
            + safe_float(candidate.final_score) * 0.3
            + safe_float(candidate.confidence) * 0.2
            + market_fit * 0.3
            + viability * 0.2
        )
        return clamp(score, 0.0, 1.0)

    @staticmethod
    def credibility_rating(intelligence_score: float, data_confidence: float) -> CredibilityRating:
        combined = (intelligence_score + data_confidence) / 2
        if combined >= 0.8:
            return CredibilityRating.HIGH
        if combined >= 0.6:
            return CredibilityRating.MEDIUM
        return CredibilityRating.LOW

    # ------------------------------------------------------------------
    # Recompute and capacity
    # ------------------------------------------------------------------

    def recompute_scope(
        self,
        scope: Optional[ScopeSelection] = None,
        data_mode: Optional[DataMode] = None,
    ) -> RecomputeReport:
        """Rescore a scope and drop every cached suggestion list."""
        report = self.scorer.recompute(scope, data_mode)
        cleared = self.cache.delete_prefix(f"{SUGGESTION_CACHE_PREFIX}:")
        logger.info(f"Cleared {cleared} cached suggestion sets after recompute")
        return report

    def estimate_capacity(self, scope: ScopeSelection) -> CapacityEstimate:
        """Count live trade areas in scope and how many are still open for a site."""
        query = apply_scope_filter(self.db.query(TradeArea), scope, DataMode.LIVE)
        total_sites = query.count()
        available_sites = query.filter(
            TradeArea.final_score >= CAPACITY_MIN_SCORE,
            TradeArea.existing_store_distance >= CAPACITY_MIN_STORE_DISTANCE_M,
        ).count()

        scope_area = scope.area or self.estimate_scope_area(scope)
        density = round(total_sites / scope_area, 4) if scope_area > 0 else 0.0

        return CapacityEstimate(
            total_sites=total_sites,
            available_sites=available_sites,
            scope_area=scope_area,
            density=density,
        )

    @staticmethod
    def estimate_scope_area(scope: ScopeSelection) -> float:
        """Rough area in km2 when the caller did not supply one."""
        if scope.type == ScopeType.COUNTRY:
            return COUNTRY_AREAS_KM2.get(scope.value.upper(), DEFAULT_COUNTRY_AREA_KM2)
        if scope.type == ScopeType.REGION:
            return DEFAULT_REGION_AREA_KM2
        if scope.area:
            return scope.area
        return FALLBACK_AREA_KM2
