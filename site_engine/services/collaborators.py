"""
External collaborators consumed by the expansion pipeline.

Boundary validation (land/water, country borders) and suggestion
enrichment (demographics, strategic rationale) live outside the engine.
The pipeline only sees these narrow interfaces; the defaults here do the
minimum so the engine runs without any external service.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from site_engine.geo.types import ExpansionSuggestion, GeoValidation
from site_engine.geo.utils import is_valid_coordinate

logger = logging.getLogger(__name__)


class GeographicValidator(ABC):
    """Decides whether a coordinate is a buildable on-land site."""

    @abstractmethod
    def validate(
        self,
        lat: float,
        lng: float,
        expected_country: Optional[str] = None,
    ) -> GeoValidation:
        """Return a verdict for the coordinate."""


class CoordinateRangeValidator(GeographicValidator):
    """Checks coordinate sanity only; knows nothing about water or borders."""

    def validate(
        self,
        lat: float,
        lng: float,
        expected_country: Optional[str] = None,
    ) -> GeoValidation:
        if not is_valid_coordinate(lat, lng):
            return GeoValidation(
                is_valid=False,
                issues=[f"Coordinates out of range: {lat}, {lng}"],
            )
        if float(lat) == 0.0 and float(lng) == 0.0:
            return GeoValidation(
                is_valid=False,
                is_in_water=True,
                issues=["Null Island (0, 0) is not a real site"],
            )
        return GeoValidation(is_valid=True, detected_country=expected_country)


class EnrichmentProvider(ABC):
    """Adds intelligence (demographics, viability, rationale) to a suggestion."""

    @abstractmethod
    def enrich(self, suggestion: ExpansionSuggestion) -> Dict[str, Any]:
        """
        Return enrichment data for the suggestion.

        Recognised keys: market_fit_score, viability_score, data_confidence.
        Anything else is passed through untouched.
        """


class NullEnrichmentProvider(EnrichmentProvider):
    """Enrichment disabled."""

    def enrich(self, suggestion: ExpansionSuggestion) -> Dict[str, Any]:
        return {}
