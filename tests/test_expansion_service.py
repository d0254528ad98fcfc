"""
Unit tests for site_engine/services/expansion_service.py

Runs the whole pipeline against the in-memory SQLite session.
"""
import random

import pytest

from site_engine.core.models import TradeArea
from site_engine.geo.types import (
    CredibilityRating,
    DataMode,
    GeoValidation,
    RiskLevel,
    ScopeSelection,
    ScopeType,
)
from site_engine.ml.pattern_detector import PatternAnalysisError, PatternDetector
from site_engine.services.collaborators import (
    CoordinateRangeValidator,
    EnrichmentProvider,
    GeographicValidator,
)
from site_engine.services.expansion_service import (
    COUNTRY_AREAS_KM2,
    DEFAULT_REGION_AREA_KM2,
    FALLBACK_AREA_KM2,
    ExpansionService,
)

US = ScopeSelection(type=ScopeType.COUNTRY, value="US")


class WaterValidator(GeographicValidator):
    """Marks the listed coordinates as open water."""

    def __init__(self, wet):
        self.wet = set(wet)

    def validate(self, lat, lng, expected_country=None):
        if (lat, lng) in self.wet:
            return GeoValidation(is_valid=True, is_in_water=True, issues=["Location is in water"])
        return GeoValidation(is_valid=True, detected_country=expected_country)


class NotingValidator(GeographicValidator):
    def validate(self, lat, lng, expected_country=None):
        return GeoValidation(is_valid=True, issues=["Close to border"])


class BrokenValidator(GeographicValidator):
    def validate(self, lat, lng, expected_country=None):
        raise TimeoutError("boundary service timed out")


class StaticEnrichment(EnrichmentProvider):
    def __init__(self, payload):
        self.payload = payload

    def enrich(self, suggestion):
        return self.payload


class BrokenEnrichment(EnrichmentProvider):
    def enrich(self, suggestion):
        raise RuntimeError("enrichment API down")


class FailingDetector(PatternDetector):
    def analyze(self, nearby_locations, proposed_location, radius=None):
        raise PatternAnalysisError("detector exploded")


@pytest.fixture
def make_service(test_db, settings, cache):
    def _make(**kwargs):
        kwargs.setdefault("cache", cache)
        kwargs.setdefault("settings", settings)
        return ExpansionService(test_db, **kwargs)
    return _make


@pytest.fixture
def service(make_service):
    return make_service()


def ids(suggestions):
    return [s.candidate.id for s in suggestions]


class TestGenerateSuggestions:

    @pytest.mark.unit
    def test_ranked_by_final_score(self, service, sample_trade_areas):
        suggestions = service.generate_suggestions(US, DataMode.LIVE)

        assert ids(suggestions) == ["ta-1", "ta-4", "ta-3", "ta-2", "ta-5"]
        scores = [s.candidate.final_score for s in suggestions]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.unit
    def test_scope_and_mode_filter(self, service, sample_trade_areas, trade_area_factory, test_db):
        test_db.add(trade_area_factory("ta-m", 40.70, -73.99, is_live=False))
        test_db.commit()

        live = service.generate_suggestions(US, DataMode.LIVE)
        modelled = service.generate_suggestions(US, DataMode.MODELLED)
        germany = service.generate_suggestions(
            ScopeSelection(type=ScopeType.COUNTRY, value="DE"), DataMode.LIVE
        )

        assert "ta-m" not in ids(live)
        assert ids(modelled) == ["ta-m"]
        assert ids(germany) == ["ta-de"]

    @pytest.mark.unit
    def test_limit(self, service, sample_trade_areas):
        suggestions = service.generate_suggestions(US, DataMode.LIVE, limit=2)
        assert ids(suggestions) == ["ta-1", "ta-4"]

    @pytest.mark.unit
    def test_min_distance_excludes_crowded_areas(self, service, sample_trade_areas):
        suggestions = service.generate_suggestions(US, DataMode.LIVE, min_distance_m=1000)
        assert "ta-4" not in ids(suggestions)
        assert len(suggestions) == 4

    @pytest.mark.unit
    @pytest.mark.parametrize("intensity,expected", [
        (100, 5),
        (40, 2),
        (0, 0),
    ])
    def test_intensity_share(self, service, sample_trade_areas, intensity, expected):
        suggestions = service.generate_suggestions(US, DataMode.LIVE, intensity=intensity)
        assert len(suggestions) == expected

    @pytest.mark.unit
    def test_empty_scope(self, service, sample_trade_areas):
        scope = ScopeSelection(type=ScopeType.REGION, value="nowhere")
        assert service.generate_suggestions(scope, DataMode.LIVE) == []

    @pytest.mark.unit
    def test_financial_projections(self, service, sample_trade_areas):
        top = service.generate_suggestions(US, DataMode.LIVE, limit=1)[0]
        final = top.candidate.final_score

        assert top.predicted_auv == round(1_000_000 * (0.5 + final * 1.5))
        assert top.payback_months == round(36 * (2 - final))

    @pytest.mark.unit
    def test_pattern_results_attached(self, service, sample_trade_areas):
        for suggestion in service.generate_suggestions(US, DataMode.LIVE):
            assert 0.0 <= suggestion.pattern_score <= 1.0
            assert suggestion.pattern_recommendations

    @pytest.mark.unit
    def test_nearby_active_stores_drive_cannibalization(self, service, sample_trade_areas, sample_stores):
        suggestions = service.generate_suggestions(US, DataMode.LIVE)
        top = next(s for s in suggestions if s.candidate.id == "ta-1")

        assert top.cannibalization.risk_level == RiskLevel.HIGH
        affected_ids = {a.outlet_id for a in top.cannibalization.affected_outlets}
        closed_id = str(sample_stores[2].id)
        assert str(sample_stores[0].id) in affected_ids
        assert closed_id not in affected_ids

    @pytest.mark.unit
    def test_without_stores_risk_is_low(self, service, sample_trade_areas):
        for suggestion in service.generate_suggestions(US, DataMode.LIVE):
            assert suggestion.cannibalization.risk_level == RiskLevel.LOW

    @pytest.mark.unit
    def test_pattern_failure_propagates(self, make_service, sample_trade_areas, settings, cache):
        service = make_service(detector=FailingDetector(rng=random.Random(1), cache=cache, settings=settings))
        with pytest.raises(PatternAnalysisError):
            service.generate_suggestions(US, DataMode.LIVE)


class TestValidationGate:

    @pytest.mark.unit
    def test_water_sites_are_dropped(self, make_service, sample_trade_areas):
        service = make_service(validator=WaterValidator({(40.7306, -73.9352)}))
        suggestions = service.generate_suggestions(US, DataMode.LIVE)
        assert "ta-2" not in ids(suggestions)
        assert len(suggestions) == 4

    @pytest.mark.unit
    def test_null_island_is_rejected(self, service, test_db, trade_area_factory):
        test_db.add(trade_area_factory("zero", 0.0, 0.0))
        test_db.add(trade_area_factory("real", 40.75, -73.99))
        test_db.commit()

        suggestions = service.generate_suggestions(US, DataMode.LIVE)
        assert ids(suggestions) == ["real"]

    @pytest.mark.unit
    def test_validator_issues_are_carried(self, make_service, sample_trade_areas):
        service = make_service(validator=NotingValidator())
        suggestion = service.generate_suggestions(US, DataMode.LIVE, limit=1)[0]
        assert suggestion.validation_issues == ["Close to border"]

    @pytest.mark.unit
    def test_validator_outage_keeps_candidates(self, make_service, sample_trade_areas):
        service = make_service(validator=BrokenValidator())
        suggestions = service.generate_suggestions(US, DataMode.LIVE)

        assert len(suggestions) == 5
        assert all(
            s.validation_issues == ["Geographic validation unavailable"] for s in suggestions
        )

    @pytest.mark.unit
    def test_validator_outage_drops_out_of_range_rows(self, make_service, test_db, trade_area_factory):
        test_db.add(trade_area_factory("polar", 95.0, -73.99))
        test_db.add(trade_area_factory("real", 40.75, -73.99))
        test_db.commit()

        service = make_service(validator=BrokenValidator())
        suggestions = service.generate_suggestions(US, DataMode.LIVE)

        assert ids(suggestions) == ["real"]
        assert suggestions[0].validation_issues == ["Geographic validation unavailable"]

    @pytest.mark.unit
    def test_range_validator(self):
        validator = CoordinateRangeValidator()
        assert validator.validate(40.0, -74.0, "US").detected_country == "US"
        assert validator.validate(95.0, 0.0).is_valid is False
        assert validator.validate(0.0, 0.0).is_in_water is True


class TestCaching:

    @pytest.mark.unit
    def test_repeat_requests_are_served_from_cache(self, service, sample_trade_areas, test_db):
        first = service.generate_suggestions(US, DataMode.LIVE)

        test_db.query(TradeArea).filter(TradeArea.id == "ta-1").delete()
        test_db.commit()

        second = service.generate_suggestions(US, DataMode.LIVE)
        assert ids(second) == ids(first)

    @pytest.mark.unit
    def test_cached_suggestions_are_isolated_copies(self, service, sample_trade_areas):
        first = service.generate_suggestions(US, DataMode.LIVE)
        original_score = first[0].candidate.final_score
        first[0].candidate.final_score = 0.0
        first[0].pattern_recommendations.clear()

        second = service.generate_suggestions(US, DataMode.LIVE)
        assert second[0].candidate.final_score == original_score
        assert second[0].pattern_recommendations

    @pytest.mark.unit
    def test_recompute_invalidates_suggestions(self, service, sample_trade_areas, test_db):
        service.generate_suggestions(US, DataMode.LIVE)

        test_db.query(TradeArea).filter(TradeArea.id == "ta-1").delete()
        test_db.commit()
        report = service.recompute_scope(US, DataMode.LIVE)

        assert report.processed == 4
        assert "ta-1" not in ids(service.generate_suggestions(US, DataMode.LIVE))

    @pytest.mark.unit
    def test_recompute_reports_failures(self, service, sample_trade_areas, monkeypatch):
        def boom(candidate):
            raise ValueError("bad row")

        monkeypatch.setattr(service.scorer, "_compute", boom)
        report = service.recompute_scope(US)

        assert report.processed == 0
        assert len(report.failed) == 5
        assert report.is_partial is False


class TestEnhance:

    @pytest.mark.unit
    def test_default_enrichment(self, service, sample_trade_areas):
        suggestions = service.generate_suggestions(US, DataMode.LIVE, limit=2)
        enhanced = service.enhance(suggestions)

        assert len(enhanced) == 2
        first = enhanced[0]
        assert first.candidate.id == "ta-1"
        assert first.is_fallback is False
        assert 0.0 <= first.enrichment["urban_score"] <= 1.0
        assert first.enrichment["signals_simulated"] is True
        assert first.credibility_rating == CredibilityRating.MEDIUM
        assert first.executive_readiness is False

    @pytest.mark.unit
    def test_strong_enrichment_is_executive_ready(self, make_service, sample_trade_areas):
        service = make_service(enrichment=StaticEnrichment({
            "market_fit_score": 0.9,
            "viability_score": 0.9,
            "data_confidence": 0.95,
            "rationale": "dense office catchment",
        }))
        enhanced = service.enhance(service.generate_suggestions(US, DataMode.LIVE, limit=1))[0]

        assert enhanced.intelligence_score == pytest.approx(1.0)
        assert enhanced.credibility_rating == CredibilityRating.HIGH
        assert enhanced.executive_readiness is True
        assert enhanced.enrichment["rationale"] == "dense office catchment"

    @pytest.mark.unit
    def test_enrichment_failure_falls_back(self, make_service, sample_trade_areas):
        service = make_service(enrichment=BrokenEnrichment())
        enhanced = service.enhance(service.generate_suggestions(US, DataMode.LIVE, limit=3))

        assert len(enhanced) == 3
        for item in enhanced:
            assert item.is_fallback is True
            assert item.credibility_rating == CredibilityRating.LOW
            assert item.executive_readiness is False
            assert item.enrichment["data_confidence"] == 0.3

    @pytest.mark.unit
    def test_non_dict_enrichment_falls_back(self, make_service, sample_trade_areas):
        service = make_service(enrichment=StaticEnrichment(["not", "a", "dict"]))
        enhanced = service.enhance(service.generate_suggestions(US, DataMode.LIVE, limit=1))
        assert enhanced[0].is_fallback is True

    @pytest.mark.unit
    @pytest.mark.parametrize("score,confidence,expected", [
        (0.9, 0.8, CredibilityRating.HIGH),
        (0.75, 0.5, CredibilityRating.MEDIUM),
        (0.5, 0.3, CredibilityRating.LOW),
    ])
    def test_credibility_rating(self, score, confidence, expected):
        assert ExpansionService.credibility_rating(score, confidence) == expected


class TestCapacity:

    @pytest.mark.unit
    def test_counts_before_and_after_recompute(self, service, sample_trade_areas):
        before = service.estimate_capacity(US)
        assert before.total_sites == 5
        assert before.available_sites == 0
        assert before.scope_area == COUNTRY_AREAS_KM2["US"]

        service.recompute_scope(US)
        after = service.estimate_capacity(US)
        assert after.available_sites == 3

    @pytest.mark.unit
    def test_density_uses_supplied_area(self, service, sample_trade_areas):
        scope = ScopeSelection(type=ScopeType.COUNTRY, value="US", area=100)
        estimate = service.estimate_capacity(scope)
        assert estimate.scope_area == 100
        assert estimate.density == pytest.approx(0.05)

    @pytest.mark.unit
    def test_scope_area_defaults(self):
        region = ScopeSelection(type=ScopeType.REGION, value="NY")
        custom = ScopeSelection(
            type=ScopeType.CUSTOM,
            value="box",
            bbox={"min_lat": 40, "max_lat": 41, "min_lng": -75, "max_lng": -73},
        )
        assert ExpansionService.estimate_scope_area(region) == DEFAULT_REGION_AREA_KM2
        assert ExpansionService.estimate_scope_area(custom) == FALLBACK_AREA_KM2
        assert ExpansionService.estimate_scope_area(
            ScopeSelection(type=ScopeType.COUNTRY, value="ZZ")
        ) == 100000
