"""
Cannibalization risk for a proposed site.

Estimates how much revenue a new site would pull from existing outlets
nearby. Impact decays with the square of distance, is scaled up for
strong performers and capped at 30% per outlet.
"""

import logging
from typing import Dict, List, Optional, Sequence

from site_engine.core.cache import InMemoryCache, generate_cache_key
from site_engine.core.config import Settings, get_settings
from site_engine.geo.types import (
    AffectedOutlet,
    CannibalizationResult,
    ExistingOutlet,
    Location,
    RiskLevel,
)
from site_engine.geo.utils import haversine_distance, is_valid_coordinate

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Model configuration
# ---------------------------------------------------------------------------
MAX_IMPACT = 0.3
MIN_DISTANCE_DECAY = 0.1
AFFECTED_THRESHOLD = 0.05
HIGH_IMPACT_THRESHOLD = 0.15

HIGH_AGGREGATE_THRESHOLD = 0.3
MEDIUM_AGGREGATE_THRESHOLD = 0.15
MEDIUM_AFFECTED_COUNT = 2

FALLBACK_IMPACT = 0.1

MITIGATIONS: Dict[str, List[str]] = {
    "high": [
        "Consider alternative location with greater distance from existing outlets",
        "Differentiate the offering to reduce direct competition",
        "Focus on different customer segments (e.g. breakfast, catering)",
    ],
    "medium": [
        "Coordinate marketing efforts to avoid direct competition",
        "Consider a smaller format or specialized concept",
    ],
    "affected": [
        "Monitor affected outlet performance and adjust operations accordingly",
        "Implement loyalty programs to retain customers across locations",
    ],
    "none": [
        "Minimal cannibalization risk - proceed with standard operations",
    ],
    "fallback": [
        "Monitor market conditions and adjust strategy as needed",
    ],
}


class CannibalizationAssessor:
    """Assess revenue impact of a new site on existing outlets."""

    def __init__(
        self,
        cache: Optional[InMemoryCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.radius = self.settings.cannibalization_radius_m
        if cache is None:
            cache = InMemoryCache(
                default_ttl=self.settings.cache_ttl_seconds,
                max_size=self.settings.cache_max_size,
            )
        self.cache = cache

    def assess(
        self,
        new_location: Location,
        existing_outlets: Sequence[ExistingOutlet],
    ) -> CannibalizationResult:
        """
        Estimate cannibalization risk for a site at new_location.

        Never raises. An invalid location yields a LOW result; any other
        failure yields a MEDIUM fallback flagged with is_fallback.
        """
        if not is_valid_coordinate(
            getattr(new_location, "lat", None), getattr(new_location, "lng", None)
        ):
            logger.warning(f"Invalid location for cannibalization assessment: {new_location}")
            return CannibalizationResult(
                risk_level=RiskLevel.LOW,
                estimated_impact=0.0,
                mitigation_strategies=list(MITIGATIONS["none"]),
            )

        try:
            key = self._cache_key(new_location, existing_outlets)
            result = self.cache.get_or_compute(
                key, lambda: self._assess(new_location, existing_outlets)
            )
            return result.model_copy(deep=True)
        except Exception as e:
            logger.error(f"Cannibalization assessment failed: {e}")
            return CannibalizationResult(
                risk_level=RiskLevel.MEDIUM,
                estimated_impact=FALLBACK_IMPACT,
                mitigation_strategies=list(MITIGATIONS["fallback"]),
                is_fallback=True,
            )

    def revenue_impact(self, distance: float, performance: float) -> float:
        """Fractional revenue loss for one outlet; 0 beyond the radius."""
        if distance > self.radius:
            return 0.0
        decay = max(MIN_DISTANCE_DECAY, 1 - (distance / self.radius) ** 2)
        multiplier = 0.5 + performance * 0.5
        return decay * multiplier * MAX_IMPACT

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _assess(
        self,
        new_location: Location,
        existing_outlets: Sequence[ExistingOutlet],
    ) -> CannibalizationResult:
        affected: List[AffectedOutlet] = []
        total_impact = 0.0
        high_risk_count = 0

        for outlet in existing_outlets:
            try:
                if not is_valid_coordinate(outlet.lat, outlet.lng):
                    logger.warning(f"Skipping outlet {outlet.id} with invalid coordinates")
                    continue

                distance = haversine_distance(new_location, outlet.location)
                if distance > self.radius:
                    continue

                impact = self.revenue_impact(distance, outlet.performance)
            except Exception as e:
                logger.warning(f"Skipping outlet {getattr(outlet, 'id', '?')}: {e}")
                continue

            if impact > AFFECTED_THRESHOLD:
                affected.append(AffectedOutlet(
                    outlet_id=outlet.id,
                    distance=round(distance, 1),
                    revenue_impact_percent=round(impact * 100, 2),
                    current_performance=outlet.performance,
                ))
                total_impact += impact
                if impact > HIGH_IMPACT_THRESHOLD:
                    high_risk_count += 1

        if high_risk_count > 0 or total_impact > HIGH_AGGREGATE_THRESHOLD:
            risk_level = RiskLevel.HIGH
        elif len(affected) > MEDIUM_AFFECTED_COUNT or total_impact > MEDIUM_AGGREGATE_THRESHOLD:
            risk_level = RiskLevel.MEDIUM
        else:
            risk_level = RiskLevel.LOW

        logger.debug(
            f"Cannibalization at {new_location.lat},{new_location.lng}: "
            f"{risk_level.value}, {len(affected)} affected, impact {total_impact:.3f}"
        )

        return CannibalizationResult(
            risk_level=risk_level,
            estimated_impact=min(total_impact, 1.0),
            affected_outlets=affected,
            mitigation_strategies=self._mitigations(risk_level, affected),
        )

    @staticmethod
    def _mitigations(risk_level: RiskLevel, affected: List[AffectedOutlet]) -> List[str]:
        strategies: List[str] = []

        if risk_level == RiskLevel.HIGH:
            strategies.extend(MITIGATIONS["high"])

        if risk_level in (RiskLevel.MEDIUM, RiskLevel.HIGH):
            strategies.extend(MITIGATIONS["medium"])

        if affected:
            strategies.extend(MITIGATIONS["affected"])

        if not strategies:
            strategies.extend(MITIGATIONS["none"])

        return strategies

    @staticmethod
    def _cache_key(new_location: Location, outlets: Sequence[ExistingOutlet]) -> str:
        outlet_sig = sorted(
            (str(o.id), o.lat, o.lng, o.performance) for o in outlets
        )
        return generate_cache_key(
            new_location.lat, new_location.lng, outlet_sig, prefix="cannibalization"
        )
