"""
Pytest configuration and shared fixtures.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from site_engine.core.cache import InMemoryCache, reset_cache
from site_engine.core.config import Settings, reset_settings
from site_engine.core.database import reset_engine
from site_engine.core.models import Base, Store, TradeArea
from site_engine.geo.types import Location


@pytest.fixture(scope="function")
def clean_env(monkeypatch):
    """
    Clean environment for testing.

    Removes all engine-related env vars to ensure clean state.
    """
    env_vars = [
        "DATABASE_URL",
        "LOG_LEVEL",
        "CACHE_TTL_SECONDS",
        "CACHE_MAX_SIZE",
        "RANDOM_SEED",
        "CANNIBALIZATION_RADIUS_M",
        "PATTERN_ANALYSIS_RADIUS_M",
        "DEFAULT_LIMIT",
        "MODEL_VERSION",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)

    # Reset settings singleton
    reset_settings()

    yield

    # Reset again after test
    reset_settings()


@pytest.fixture(autouse=True)
def reset_singletons():
    """Shared cache and engine never leak between tests."""
    reset_cache()
    yield
    reset_cache()
    reset_engine()


@pytest.fixture
def settings():
    """Settings with a fixed seed, ignoring any .env file."""
    return Settings(_env_file=None, random_seed=42)


@pytest.fixture
def cache():
    return InMemoryCache(default_ttl=60, max_size=100)


@pytest.fixture(scope="function")
def test_db():
    """
    Create an in-memory SQLite database for testing.

    Fresh database for each test. StaticPool keeps one connection so
    FastAPI's worker threads see the same database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


# =============================================================================
# Geometry Fixtures
# =============================================================================

@pytest.fixture
def proposed_location():
    return Location(lat=40.7128, lng=-74.0060, country="US")


@pytest.fixture
def lattice_locations():
    """A 3x3 lattice with 0.001 degree spacing just south of the proposed site."""
    return [
        Location(lat=lat, lng=lng, country="US")
        for lat in (40.7100, 40.7110, 40.7120)
        for lng in (-74.0050, -74.0060, -74.0070)
    ]


@pytest.fixture
def scattered_locations():
    """Three sites kilometres apart in an irregular triangle."""
    return [
        Location(lat=40.70, lng=-74.00, country="US"),
        Location(lat=40.73, lng=-73.95, country="US"),
        Location(lat=40.76, lng=-74.01, country="US"),
    ]


# =============================================================================
# Storage Fixtures
# =============================================================================

def make_trade_area(id, lat, lng, **kwargs):
    defaults = dict(
        id=id,
        name=f"Area {id}",
        centroid_lat=lat,
        centroid_lng=lng,
        country="US",
        region="NY",
        scope_type="country",
        population=120000,
        footfall_index=0.7,
        income_index=0.6,
        competitor_index=0.2,
        existing_store_distance=3000,
        is_live=True,
    )
    defaults.update(kwargs)
    return TradeArea(**defaults)


@pytest.fixture
def trade_area_factory():
    return make_trade_area


@pytest.fixture
def sample_trade_areas(test_db):
    """Five live US areas spread across Manhattan and Brooklyn, one German area."""
    areas = [
        make_trade_area("ta-1", 40.7580, -73.9855, population=180000, footfall_index=0.9, income_index=0.8),
        make_trade_area("ta-2", 40.7306, -73.9352, population=90000, footfall_index=0.5, income_index=0.5),
        make_trade_area("ta-3", 40.6782, -73.9442, population=150000, competitor_index=0.6),
        make_trade_area("ta-4", 40.7831, -73.9712, existing_store_distance=400),
        make_trade_area("ta-5", 40.6501, -73.9496, population=40000, footfall_index=0.2, income_index=0.3),
        make_trade_area("ta-de", 52.5200, 13.4050, country="DE", region="BE"),
    ]
    test_db.add_all(areas)
    test_db.commit()
    return areas


@pytest.fixture
def sample_stores(test_db):
    """Two active stores in Manhattan and one closed store."""
    stores = [
        Store(name="Times Square", latitude=40.7575, longitude=-73.9860,
              country="US", status="active", annual_turnover=1800000),
        Store(name="Upper West", latitude=40.7870, longitude=-73.9754,
              country="US", status="active", annual_turnover=900000),
        Store(name="Closed Site", latitude=40.7585, longitude=-73.9850,
              country="US", status="closed", annual_turnover=500000),
    ]
    test_db.add_all(stores)
    test_db.commit()
    return stores
