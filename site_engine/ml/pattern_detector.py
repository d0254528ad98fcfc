"""
Geometric pattern detection for site networks.

A network whose outlets sit on a lattice, along one straight road, on a
ring around a single point, or in one tight knot looks planned rather than
market-driven. The detector looks for those four regularities around a
proposed site, scores how artificial the neighbourhood looks, and proposes
nearby coordinates that break the strongest patterns.

Two auxiliary helpers nudge locations using environmental signals
(barriers and transport corridors) and add jitter to a set of points.
"""

import logging
import math
import random
from typing import Dict, List, Optional, Sequence, Tuple

from site_engine.core.cache import InMemoryCache, generate_cache_key
from site_engine.core.config import Settings, get_settings
from site_engine.geo.signals import GeoSignalProvider, SimulatedGeoSignalProvider
from site_engine.geo.types import (
    AlternativeLocation,
    BarrierAnalysis,
    GeometricPattern,
    Location,
    NaturalBarrier,
    PatternAnalysis,
    PatternType,
    Severity,
    SpacingVariation,
    TransportationNetwork,
)
from site_engine.geo.utils import (
    METERS_PER_DEGREE,
    bearing,
    centroid,
    clamp,
    filter_by_radius,
    haversine_distance,
    is_valid_coordinate,
    linearity,
    mean,
    offset_location,
    regularity,
    spacings,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Detection thresholds
# ---------------------------------------------------------------------------
MIN_LOCATIONS_FOR_PATTERN = 3
MIN_LOCATIONS_FOR_GRID = 4
MIN_LOCATIONS_FOR_RADIAL = 4

GRID_REGULARITY = 0.7
GRID_HIGH_REGULARITY = 0.9
COORDINATE_EPSILON = 1e-7  # degrees; closer values share a row/column

LINEARITY_THRESHOLD = 0.8
LINEAR_HIGH_MEMBERS = 4

RADIAL_REGULARITY = 0.7
RADIAL_HIGH_REGULARITY = 0.9
RADIAL_MIN_OTHERS = 3

CLUSTER_RADIUS_DEG = 0.01
CLUSTER_MIN_SIZE = 3
CLUSTER_COMPACTNESS = 0.6
CLUSTER_HIGH_SIZE = 5

SEVERITY_WEIGHTS = {
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}

# ---------------------------------------------------------------------------
# Alternatives
# ---------------------------------------------------------------------------
MAX_ALTERNATIVES = 3
GRID_JITTER_DEG = 0.001
LINEAR_OFFSET_DEG = 0.001
RADIAL_VARIATION = 0.15
CLUSTER_OFFSET_DEG = 0.002
MAX_IMPROVEMENT = 0.9
IMPROVEMENT_FACTOR = 0.8
ALTERNATIVE_VIABILITY = 0.7

# ---------------------------------------------------------------------------
# Barriers and spacing
# ---------------------------------------------------------------------------
BARRIER_INFLUENCE_RADIUS_M = 5000
BARRIER_STRONG_INFLUENCE = 0.7
BARRIER_MODERATE_INFLUENCE = 0.3
BARRIER_OFFSET_DEG = 0.001
NETWORK_ALIGNMENT_RADIUS_M = 2000
NETWORK_ALIGNMENT_THRESHOLD = 0.6
SPACING_JITTER_DEG = 0.001

INSUFFICIENT_DATA_MESSAGE = "Insufficient nearby locations for pattern analysis"

PATTERN_MESSAGES = {
    PatternType.GRID: "Grid pattern detected - introduce irregular spacing to create a more organic appearance",
    PatternType.LINEAR: "Linear arrangement detected - consider staggered positioning to break straight lines",
    PatternType.RADIAL: "Radial pattern detected - vary distances from the center point to create natural variation",
    PatternType.CLUSTER: "Tight clustering detected - consider spreading locations to improve market coverage",
}


class PatternAnalysisError(Exception):
    """Raised when pattern analysis cannot be completed."""
    pass


class PatternDetector:
    """Detect artificial-looking arrangements and propose pattern-breaking sites."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        signal_provider: Optional[GeoSignalProvider] = None,
        cache: Optional[InMemoryCache] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.rng = rng if rng is not None else random.Random(self.settings.random_seed)
        self.signal_provider = signal_provider or SimulatedGeoSignalProvider(rng=self.rng)
        if cache is None:
            cache = InMemoryCache(
                default_ttl=self.settings.cache_ttl_seconds,
                max_size=self.settings.cache_max_size,
            )
        self.cache = cache

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(
        self,
        nearby_locations: Sequence[Location],
        proposed_location: Location,
        radius: Optional[float] = None,
    ) -> PatternAnalysis:
        """
        Analyze the arrangement of locations around a proposed site.

        Args:
            nearby_locations: Existing or planned sites
            proposed_location: The site being evaluated
            radius: Neighbourhood in meters (settings default when None)

        Raises:
            PatternAnalysisError: If the analysis fails for any reason
        """
        if radius is None:
            radius = self.settings.pattern_analysis_radius_m

        try:
            if not is_valid_coordinate(proposed_location.lat, proposed_location.lng):
                raise ValueError(f"invalid proposed location {proposed_location}")

            valid = [
                loc for loc in nearby_locations
                if is_valid_coordinate(loc.lat, loc.lng)
            ]
            nearby = filter_by_radius(valid, proposed_location, radius)
            logger.debug(
                f"Pattern analysis: {len(nearby)} of {len(nearby_locations)} "
                f"locations within {radius}m"
            )

            if len(nearby) < MIN_LOCATIONS_FOR_PATTERN:
                return PatternAnalysis(
                    detected_patterns=[],
                    overall_pattern_score=0.0,
                    recommendations=[INSUFFICIENT_DATA_MESSAGE],
                    alternative_spacing=[],
                )

            patterns = self.detect_patterns(nearby)
            score = self.overall_score(patterns)

            return PatternAnalysis(
                detected_patterns=patterns,
                overall_pattern_score=score,
                recommendations=self._recommendations(patterns, score),
                alternative_spacing=self._alternatives(proposed_location, patterns),
            )
        except PatternAnalysisError:
            raise
        except Exception as e:
            logger.error(f"Pattern analysis failed: {e}")
            raise PatternAnalysisError(f"Pattern analysis failed: {e}") from e

    def detect_patterns(self, locations: Sequence[Location]) -> List[GeometricPattern]:
        """Run every detector over the same set; results are cached per set."""
        key = generate_cache_key(
            [(loc.lat, loc.lng) for loc in locations], prefix="patterns"
        )

        def _detect() -> List[GeometricPattern]:
            return (
                self._detect_grid(locations)
                + self._detect_linear(locations)
                + self._detect_radial(locations)
                + self._detect_clusters(locations)
            )

        return list(self.cache.get_or_compute(key, _detect))

    @staticmethod
    def overall_score(patterns: Sequence[GeometricPattern]) -> float:
        """Severity-weighted mean confidence; 0 without patterns."""
        if not patterns:
            return 0.0

        total_score = 0.0
        total_weight = 0
        for pattern in patterns:
            weight = SEVERITY_WEIGHTS[pattern.severity]
            total_score += pattern.confidence * weight
            total_weight += weight

        return total_score / total_weight if total_weight > 0 else 0.0

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    @staticmethod
    def _distinct_values(values: Sequence[float]) -> List[float]:
        distinct: List[float] = []
        for value in sorted(values):
            if not distinct or value - distinct[-1] > COORDINATE_EPSILON:
                distinct.append(value)
        return distinct

    def _detect_grid(self, locations: Sequence[Location]) -> List[GeometricPattern]:
        if len(locations) < MIN_LOCATIONS_FOR_GRID:
            return []

        sorted_locs = sorted(locations, key=lambda l: (l.lat, l.lng))

        lat_regularity = regularity(spacings(self._distinct_values([l.lat for l in sorted_locs])))
        lng_regularity = regularity(spacings(self._distinct_values([l.lng for l in sorted_locs])))

        if lat_regularity <= GRID_REGULARITY or lng_regularity <= GRID_REGULARITY:
            return []

        if lat_regularity > GRID_HIGH_REGULARITY and lng_regularity > GRID_HIGH_REGULARITY:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM

        return [GeometricPattern(
            type=PatternType.GRID,
            confidence=clamp((lat_regularity + lng_regularity) / 2, 0.0, 1.0),
            locations=sorted_locs,
            severity=severity,
            description=(
                f"Regular grid pattern detected with {lat_regularity:.2f} lat "
                f"regularity and {lng_regularity:.2f} lng regularity"
            ),
        )]

    def _detect_linear(self, locations: Sequence[Location]) -> List[GeometricPattern]:
        patterns: List[GeometricPattern] = []
        seen_members = set()
        n = len(locations)

        for i in range(n - 2):
            for j in range(i + 1, n - 1):
                for k in range(j + 1, n):
                    seed_linearity = linearity(locations[i], locations[j], locations[k])
                    if seed_linearity <= LINEARITY_THRESHOLD:
                        continue

                    members = self._extend_line([i, j, k], locations)
                    member_key = frozenset(members)
                    if len(members) < 3 or member_key in seen_members:
                        continue
                    seen_members.add(member_key)

                    patterns.append(GeometricPattern(
                        type=PatternType.LINEAR,
                        confidence=clamp(seed_linearity, 0.0, 1.0),
                        locations=[locations[m] for m in members],
                        severity=Severity.HIGH if len(members) > LINEAR_HIGH_MEMBERS else Severity.MEDIUM,
                        description=f"Linear pattern detected with {len(members)} locations",
                    ))

        return patterns

    @staticmethod
    def _extend_line(seed: List[int], locations: Sequence[Location]) -> List[int]:
        """Add every other point that is collinear with a consecutive seed pair."""
        members = list(seed)
        for idx, loc in enumerate(locations):
            if idx in seed:
                continue
            for a, b in zip(seed, seed[1:]):
                if linearity(locations[a], locations[b], loc) > LINEARITY_THRESHOLD:
                    members.append(idx)
                    break
        return members

    def _detect_radial(self, locations: Sequence[Location]) -> List[GeometricPattern]:
        patterns: List[GeometricPattern] = []
        if len(locations) < MIN_LOCATIONS_FOR_RADIAL:
            return patterns

        for center_idx, center in enumerate(locations):
            others = [loc for idx, loc in enumerate(locations) if idx != center_idx]
            distances = [haversine_distance(center, loc) for loc in others]
            distance_regularity = regularity(distances)

            if distance_regularity > RADIAL_REGULARITY and len(distances) >= RADIAL_MIN_OTHERS:
                patterns.append(GeometricPattern(
                    type=PatternType.RADIAL,
                    confidence=clamp(distance_regularity, 0.0, 1.0),
                    locations=[center] + others,
                    severity=Severity.HIGH if distance_regularity > RADIAL_HIGH_REGULARITY else Severity.MEDIUM,
                    description=(
                        f"Radial pattern detected around center point with "
                        f"{distance_regularity:.2f} distance regularity"
                    ),
                    center=center,
                ))

        return patterns

    def _detect_clusters(self, locations: Sequence[Location]) -> List[GeometricPattern]:
        patterns: List[GeometricPattern] = []

        for cluster in self._group_by_anchor(locations, CLUSTER_RADIUS_DEG * METERS_PER_DEGREE):
            if len(cluster) < CLUSTER_MIN_SIZE:
                continue

            compactness = self._compactness(cluster)
            if compactness > CLUSTER_COMPACTNESS:
                patterns.append(GeometricPattern(
                    type=PatternType.CLUSTER,
                    confidence=clamp(compactness, 0.0, 1.0),
                    locations=cluster,
                    severity=Severity.HIGH if len(cluster) > CLUSTER_HIGH_SIZE else Severity.MEDIUM,
                    description=f"Tight cluster of {len(cluster)} locations detected",
                    center=centroid(cluster),
                ))

        return patterns

    @staticmethod
    def _group_by_anchor(locations: Sequence[Location], radius_m: float) -> List[List[Location]]:
        """Single pass: each unvisited point anchors a group of unvisited points within radius."""
        groups: List[List[Location]] = []
        visited = set()

        for i, anchor in enumerate(locations):
            if i in visited:
                continue
            group = [anchor]
            visited.add(i)
            for j in range(i + 1, len(locations)):
                if j in visited:
                    continue
                if haversine_distance(anchor, locations[j]) <= radius_m:
                    group.append(locations[j])
                    visited.add(j)
            groups.append(group)

        return groups

    @staticmethod
    def _compactness(cluster: Sequence[Location]) -> float:
        if len(cluster) < 2:
            return 1.0
        center = centroid(cluster)
        distances = [haversine_distance(center, loc) for loc in cluster]
        max_distance = max(distances)
        return 1 - mean(distances) / max_distance if max_distance > 0 else 1.0

    # ------------------------------------------------------------------
    # Recommendations and alternatives
    # ------------------------------------------------------------------

    @staticmethod
    def _recommendations(patterns: Sequence[GeometricPattern], score: float) -> List[str]:
        if score > 0.8:
            recommendations = [
                "Strong geometric patterns detected - consider significant location "
                "adjustment to create a more natural distribution"
            ]
        elif score > 0.6:
            recommendations = ["Moderate geometric patterns detected - minor location adjustments recommended"]
        elif score > 0.3:
            recommendations = ["Some geometric tendencies detected - consider natural spacing variation"]
        else:
            recommendations = ["No significant geometric patterns detected - current distribution appears natural"]

        recommendations.extend(PATTERN_MESSAGES[p.type] for p in patterns)
        return recommendations

    def _alternatives(
        self,
        proposed: Location,
        patterns: Sequence[GeometricPattern],
    ) -> List[AlternativeLocation]:
        """One alternative per pattern type, strongest patterns first."""
        ranked = sorted(
            patterns,
            key=lambda p: (SEVERITY_WEIGHTS[p.severity], p.confidence),
            reverse=True,
        )

        alternatives: List[AlternativeLocation] = []
        used_types = set()
        for pattern in ranked:
            if len(alternatives) >= MAX_ALTERNATIVES:
                break
            if pattern.type in used_types:
                continue
            used_types.add(pattern.type)
            alternatives.append(self._break_pattern(proposed, pattern))

        return alternatives

    def _break_pattern(self, proposed: Location, pattern: GeometricPattern) -> AlternativeLocation:
        if pattern.type == PatternType.GRID:
            adjusted = self._jitter(proposed)

        elif pattern.type == PatternType.LINEAR:
            d_lat, d_lng = self._unit_perpendicular(pattern.locations)
            adjusted = offset_location(proposed, d_lat * LINEAR_OFFSET_DEG, d_lng * LINEAR_OFFSET_DEG)

        elif pattern.type == PatternType.RADIAL:
            center = pattern.center or pattern.locations[0]
            distance = haversine_distance(proposed, center)
            if distance == 0:
                # no bearing from the center to itself
                adjusted = self._jitter(proposed)
            else:
                new_distance = distance * (1 + self.rng.uniform(-RADIAL_VARIATION, RADIAL_VARIATION))
                direction = bearing(center, proposed)
                cos_lat = max(math.cos(math.radians(center.lat)), 1e-6)
                adjusted = offset_location(
                    center,
                    math.cos(direction) * new_distance / METERS_PER_DEGREE,
                    math.sin(direction) * new_distance / (METERS_PER_DEGREE * cos_lat),
                )

        else:
            center = pattern.center or centroid(pattern.locations)
            direction = bearing(center, proposed)
            adjusted = offset_location(
                proposed,
                math.cos(direction) * CLUSTER_OFFSET_DEG,
                math.sin(direction) * CLUSTER_OFFSET_DEG,
            )

        return AlternativeLocation(
            lat=adjusted.lat,
            lng=adjusted.lng,
            distance_from_original=haversine_distance(proposed, adjusted),
            improvement_score=min(MAX_IMPROVEMENT, pattern.confidence * IMPROVEMENT_FACTOR),
            reasons=[f"Breaks {pattern.type.value} pattern", "Creates more natural distribution"],
            viability_score=ALTERNATIVE_VIABILITY,
            pattern_type=pattern.type,
        )

    def _jitter(self, location: Location) -> Location:
        return offset_location(
            location,
            self.rng.uniform(-GRID_JITTER_DEG, GRID_JITTER_DEG),
            self.rng.uniform(-GRID_JITTER_DEG, GRID_JITTER_DEG),
        )

    @staticmethod
    def _unit_perpendicular(locations: Sequence[Location]) -> Tuple[float, float]:
        """Unit vector (lat, lng) at right angles to the first-to-last direction."""
        first, last = locations[0], locations[-1]
        d_lat = last.lat - first.lat
        d_lng = last.lng - first.lng
        length = math.hypot(d_lat, d_lng)
        if length == 0:
            return 1.0, 0.0
        return -d_lng / length, d_lat / length

    # ------------------------------------------------------------------
    # Environmental adjustments
    # ------------------------------------------------------------------

    def consider_natural_barriers(
        self,
        location: Location,
        existing_locations: Sequence[Location],
        radius: float = 5000,
    ) -> BarrierAnalysis:
        """
        Explain and adjust a placement using barriers and transport corridors.

        Never raises; a failing signal provider yields an empty analysis with
        a fallback reasoning line.
        """
        logger.debug(
            f"Considering barriers around {location.lat},{location.lng} "
            f"({len(existing_locations)} existing, radius {radius}m)"
        )
        try:
            barriers = self.signal_provider.natural_barriers(location, radius)
            networks = self.signal_provider.transportation_networks(location, radius)
        except Exception as e:
            logger.warning(f"Signal provider {self.signal_provider.name} failed: {e}")
            return BarrierAnalysis(
                reasoning=["Unable to analyze natural barriers, proceed with standard spacing analysis"],
            )

        reasoning: List[str] = []
        adjusted: Optional[Location] = None

        if barriers:
            reasoning.append(
                f"Identified {len(barriers)} natural barriers that create organic location spacing"
            )
            influence = self.barrier_influence(location, barriers)

            if influence > BARRIER_STRONG_INFLUENCE:
                reasoning.append(
                    "Location naturally separated by geographic barriers, "
                    "reducing artificial pattern concerns"
                )
            else:
                if influence > BARRIER_MODERATE_INFLUENCE:
                    reasoning.append(
                        "Moderate natural separation exists, consider enhancing with strategic positioning"
                    )
                else:
                    reasoning.append(
                        "Limited natural separation, recommend strategic spacing to avoid geometric patterns"
                    )
                adjusted = self._move_away_from_barriers(location, barriers)

        if networks:
            reasoning.append("Transportation networks provide natural location justification")
            if self.network_alignment(location, networks) > NETWORK_ALIGNMENT_THRESHOLD:
                reasoning.append(
                    "Location aligns well with transportation infrastructure, justifying placement"
                )

        if not reasoning:
            reasoning.append("No natural barriers or transport corridors found within the search radius")

        return BarrierAnalysis(
            barriers=barriers,
            networks=networks,
            adjusted_location=adjusted,
            reasoning=reasoning,
        )

    @staticmethod
    def barrier_influence(location: Location, barriers: Sequence[NaturalBarrier]) -> float:
        total = 0.0
        for barrier in barriers:
            distance = haversine_distance(location, centroid(barrier.coordinates))
            total += barrier.influence * max(0.0, 1 - distance / BARRIER_INFLUENCE_RADIUS_M)
        return min(1.0, total)

    @staticmethod
    def network_alignment(location: Location, networks: Sequence[TransportationNetwork]) -> float:
        best = 0.0
        for network in networks:
            distance = haversine_distance(location, centroid(network.coordinates))
            best = max(best, max(0.0, 1 - distance / NETWORK_ALIGNMENT_RADIUS_M) * network.importance)
        return best

    @staticmethod
    def _move_away_from_barriers(location: Location, barriers: Sequence[NaturalBarrier]) -> Location:
        adjusted = location
        for barrier in barriers:
            direction = bearing(centroid(barrier.coordinates), location)
            step = BARRIER_OFFSET_DEG * barrier.influence
            adjusted = offset_location(adjusted, math.cos(direction) * step, math.sin(direction) * step)
        return adjusted

    def generate_natural_spacing_variation(
        self,
        locations: Sequence[Location],
        target_density: float = 0.5,
    ) -> SpacingVariation:
        """
        Jitter every location; lower target density means wider jitter.

        Naturalness rises above 0.5 when the jitter made pairwise spacing
        less regular than before.
        """
        if not locations:
            return SpacingVariation(
                adjusted_locations=[],
                spacing_strategy="Nothing to adjust: no locations supplied",
                naturalness=1.0,
            )

        density = clamp(target_density, 0.0, 1.0)
        try:
            amount = (1 - density) * SPACING_JITTER_DEG
            adjusted = [
                offset_location(
                    loc,
                    self.rng.uniform(-amount, amount),
                    self.rng.uniform(-amount, amount),
                )
                for loc in locations
            ]

            if density > 0.7:
                strategy = "High-density organic clustering with natural variation"
            elif density > 0.4:
                strategy = "Moderate spacing with transportation network alignment"
            else:
                strategy = "Wide spacing following natural geographic features"

            improvement = self._spacing_regularity(locations) - self._spacing_regularity(adjusted)
            naturalness = clamp(0.5 + improvement, 0.0, 1.0)
        except Exception as e:
            logger.warning(f"Spacing variation failed, returning input unchanged: {e}")
            return SpacingVariation(
                adjusted_locations=list(locations),
                spacing_strategy="Standard spacing (variation generation failed)",
                naturalness=0.5,
            )

        return SpacingVariation(
            adjusted_locations=adjusted,
            spacing_strategy=strategy,
            naturalness=naturalness,
        )

    @staticmethod
    def _spacing_regularity(locations: Sequence[Location]) -> float:
        if len(locations) < 3:
            return 0.0
        distances = [
            haversine_distance(locations[i], locations[j])
            for i in range(len(locations) - 1)
            for j in range(i + 1, len(locations))
        ]
        return regularity(distances)

    # ------------------------------------------------------------------
    # Methodology
    # ------------------------------------------------------------------

    @staticmethod
    def get_methodology() -> Dict[str, Dict[str, float]]:
        """Return detection thresholds."""
        return {
            "grid": {"min_locations": MIN_LOCATIONS_FOR_GRID, "regularity": GRID_REGULARITY},
            "linear": {"linearity": LINEARITY_THRESHOLD},
            "radial": {"min_locations": MIN_LOCATIONS_FOR_RADIAL, "regularity": RADIAL_REGULARITY},
            "cluster": {
                "radius_m": CLUSTER_RADIUS_DEG * METERS_PER_DEGREE,
                "compactness": CLUSTER_COMPACTNESS,
            },
        }
