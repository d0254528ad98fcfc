"""
Gravity-model scorer for candidate trade areas.

Blends population, footfall and income into a demand score, then subtracts
a supply penalty for proximity to the existing network and a competition
penalty. Confidence falls as the three demand signals disagree.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Query, Session

from site_engine.core.cache import InMemoryCache, generate_cache_key
from site_engine.core.config import Settings, get_settings
from site_engine.core.models import TradeArea
from site_engine.geo.types import (
    Candidate,
    DataMode,
    RecomputeReport,
    ScopeSelection,
    ScopeType,
)
from site_engine.geo.utils import clamp, normalize, safe_float, variance

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Model configuration
# ---------------------------------------------------------------------------
POPULATION_CAP = 200_000

DEMAND_WEIGHTS = {
    "population": 0.5,
    "footfall": 0.3,
    "income": 0.2,
}

SUPPLY_PENALTY_WEIGHT = 0.15
SUPPLY_MIN_DISTANCE_KM = 0.1
SUPPLY_INVERSE_DISTANCE_CAP = 10.0
COMPETITION_PENALTY_WEIGHT = 0.4

CONFIDENCE_MAX = 0.95
CONFIDENCE_MIN = 0.3
# Maximal variance of three [0, 1] signals (2/9) maps to CONFIDENCE_MIN
CONFIDENCE_VARIANCE_FACTOR = 2.925

FALLBACK_SCORE = 0.5
FALLBACK_CONFIDENCE = 0.5

DERIVED_FIELDS = (
    "demand_score",
    "supply_penalty",
    "competition_penalty",
    "final_score",
    "confidence",
)


# ---------------------------------------------------------------------------
# Storage helpers (shared with the expansion service)
# ---------------------------------------------------------------------------

def apply_scope_filter(
    query: Query,
    scope: Optional[ScopeSelection] = None,
    data_mode: Optional[DataMode] = None,
) -> Query:
    """Restrict a TradeArea query to a scope and data mode."""
    if data_mode is not None:
        query = query.filter(TradeArea.is_live.is_(data_mode == DataMode.LIVE))

    if scope is None:
        return query

    if scope.type == ScopeType.COUNTRY:
        query = query.filter(TradeArea.country == scope.value.upper())
    elif scope.type == ScopeType.REGION:
        query = query.filter(TradeArea.region == scope.value)
    elif scope.type == ScopeType.CUSTOM:
        bbox = scope.bbox
        query = query.filter(
            TradeArea.centroid_lat.between(bbox.min_lat, bbox.max_lat),
            TradeArea.centroid_lng.between(bbox.min_lng, bbox.max_lng),
        )
    return query


def candidate_from_row(row: TradeArea) -> Candidate:
    return Candidate(
        id=str(row.id),
        name=row.name,
        lat=row.centroid_lat,
        lng=row.centroid_lng,
        region=row.region,
        country=row.country,
        population=row.population,
        footfall_index=row.footfall_index,
        income_index=row.income_index,
        competitor_index=row.competitor_index,
        existing_store_distance=row.existing_store_distance,
        demand_score=row.demand_score,
        supply_penalty=row.supply_penalty,
        competition_penalty=row.competition_penalty,
        final_score=row.final_score,
        confidence=row.confidence,
        is_live=bool(row.is_live),
        model_version=row.model_version,
    )


class GravityScorer:
    """Compute gravity scores and confidence for candidate trade areas."""

    def __init__(
        self,
        db: Optional[Session] = None,
        cache: Optional[InMemoryCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        if cache is None:
            cache = InMemoryCache(
                default_ttl=self.settings.cache_ttl_seconds,
                max_size=self.settings.cache_max_size,
            )
        self.cache = cache

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(self, candidate: Candidate) -> Candidate:
        """
        Populate the derived fields of a candidate in place and return it.

        Never raises: an unexpected failure leaves the candidate with a
        neutral score and confidence.
        """
        try:
            key = self._cache_key(candidate)
            derived = self.cache.get_or_compute(key, lambda: self._compute(candidate))
        except Exception as e:
            logger.error(f"Scoring failed for candidate {candidate.id}, using fallback: {e}")
            candidate.final_score = FALLBACK_SCORE
            candidate.confidence = FALLBACK_CONFIDENCE
            return candidate

        for field, value in derived.items():
            setattr(candidate, field, value)
        candidate.model_version = self.settings.model_version
        return candidate

    def rank(
        self,
        candidates: Iterable[Candidate],
        limit: Optional[int] = None,
        filter_fn: Optional[Callable[[Candidate], bool]] = None,
    ) -> List[Candidate]:
        """
        Score unscored candidates and return the best ones first.

        Args:
            candidates: Candidates to rank
            limit: Maximum number returned (settings default when None)
            filter_fn: Optional predicate applied after scoring
        """
        if limit is None:
            limit = self.settings.default_limit

        scored = []
        for candidate in candidates:
            if not candidate.is_scored:
                self.score(candidate)
            if filter_fn is not None and not filter_fn(candidate):
                continue
            scored.append(candidate)

        scored.sort(key=lambda c: c.final_score, reverse=True)
        return scored[:limit]

    @staticmethod
    def minimal_viability(candidate: Candidate, reason: str) -> Candidate:
        """Zero out a candidate that failed geographic validation."""
        logger.info(f"Candidate {candidate.id} set to minimal viability: {reason}")
        candidate.demand_score = 0.0
        candidate.supply_penalty = 0.0
        candidate.competition_penalty = 0.0
        candidate.final_score = 0.0
        candidate.confidence = CONFIDENCE_MIN
        return candidate

    # ------------------------------------------------------------------
    # Batch recompute
    # ------------------------------------------------------------------

    def recompute(
        self,
        scope: Optional[ScopeSelection] = None,
        data_mode: Optional[DataMode] = None,
    ) -> RecomputeReport:
        """
        Rescore every trade area in scope and write the results back.

        Rows are committed one at a time; a failing row is rolled back,
        recorded in the report and the batch continues.
        """
        if self.db is None:
            raise ValueError("recompute requires a database session")

        rows = apply_scope_filter(self.db.query(TradeArea), scope, data_mode).all()
        logger.info(f"Recomputing gravity scores for {len(rows)} trade areas")

        report = RecomputeReport()
        snapshot = date.today()

        for row in rows:
            row_id = str(row.id)
            try:
                derived = self._compute(candidate_from_row(row))
                for field, value in derived.items():
                    setattr(row, field, value)
                row.model_version = self.settings.model_version
                row.data_snapshot_date = snapshot
                row.updated_at = datetime.utcnow()
                self.db.commit()
                report.succeeded.append(row_id)
            except Exception as e:
                logger.error(f"Recompute failed for trade area {row_id}: {e}")
                self.db.rollback()
                report.failed.append(row_id)
                report.errors[row_id] = str(e)

        self.cache.delete_prefix("gravity:")
        logger.info(
            f"Recompute complete: {len(report.succeeded)} succeeded, "
            f"{len(report.failed)} failed"
        )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(candidate: Candidate) -> str:
        return generate_cache_key(
            candidate.population,
            candidate.footfall_index,
            candidate.income_index,
            candidate.competitor_index,
            candidate.existing_store_distance,
            prefix="gravity",
        )

    @staticmethod
    def _compute(candidate: Candidate) -> Dict[str, float]:
        pop_norm = normalize(safe_float(candidate.population), 0, POPULATION_CAP)
        footfall = normalize(safe_float(candidate.footfall_index), 0, 1)
        income = normalize(safe_float(candidate.income_index), 0, 1)
        competitor = normalize(safe_float(candidate.competitor_index), 0, 1)
        distance_m = safe_float(candidate.existing_store_distance)

        demand = round(
            pop_norm * DEMAND_WEIGHTS["population"]
            + footfall * DEMAND_WEIGHTS["footfall"]
            + income * DEMAND_WEIGHTS["income"],
            3,
        )

        distance_km = max(distance_m / 1000.0, SUPPLY_MIN_DISTANCE_KM)
        supply = round(
            normalize(1.0 / distance_km, 0, SUPPLY_INVERSE_DISTANCE_CAP) * SUPPLY_PENALTY_WEIGHT, 3
        )

        competition = round(competitor * COMPETITION_PENALTY_WEIGHT, 3)

        # final is derived from the stored components so the three always reconcile
        final = clamp(demand - supply - competition, 0.0, 1.0)

        spread = variance([footfall, income, pop_norm])
        confidence = clamp(
            CONFIDENCE_MAX - CONFIDENCE_VARIANCE_FACTOR * spread,
            CONFIDENCE_MIN,
            CONFIDENCE_MAX,
        )

        return {
            "demand_score": demand,
            "supply_penalty": supply,
            "competition_penalty": competition,
            "final_score": round(final, 3),
            "confidence": round(confidence, 3),
        }

    # ------------------------------------------------------------------
    # Methodology
    # ------------------------------------------------------------------

    @staticmethod
    def get_methodology() -> Dict[str, Any]:
        """Return scoring methodology documentation."""
        return {
            "model": "gravity",
            "description": (
                "Final score = demand - supply penalty - competition penalty, "
                "clamped to [0, 1]. Confidence drops as the demand signals "
                "disagree with each other."
            ),
            "demand": {
                "weights": DEMAND_WEIGHTS,
                "population_cap": POPULATION_CAP,
            },
            "supply_penalty": {
                "weight": SUPPLY_PENALTY_WEIGHT,
                "formula": "normalize(1 / max(distance_km, 0.1), 0, 10) * 0.15",
            },
            "competition_penalty": {
                "weight": COMPETITION_PENALTY_WEIGHT,
                "formula": "competitor_index * 0.4",
            },
            "confidence": {
                "min": CONFIDENCE_MIN,
                "max": CONFIDENCE_MAX,
                "formula": "0.95 - 2.925 * variance(footfall, income, population_norm)",
            },
        }
