"""
SQLAlchemy models for the engine's own tables.

trade_areas holds candidate areas with their raw inputs and the derived
scores written by recompute; stores holds the existing outlet network.
"""
from datetime import datetime
from sqlalchemy import Boolean, Column, Date, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class TradeArea(Base):
    """
    A candidate trade area.

    Raw inputs are nullable; derived columns stay NULL until the area is
    scored by a recompute.
    """
    __tablename__ = "trade_areas"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=True)
    centroid_lat = Column(Float, nullable=False)
    centroid_lng = Column(Float, nullable=False)
    region = Column(String(100), nullable=True, index=True)
    country = Column(String(10), nullable=True, index=True)
    scope_type = Column(String(20), nullable=True)

    # Raw inputs
    population = Column(Float, nullable=True)
    footfall_index = Column(Float, nullable=True)
    income_index = Column(Float, nullable=True)
    competitor_index = Column(Float, nullable=True)
    existing_store_distance = Column(Float, nullable=True)  # meters

    # Derived
    demand_score = Column(Float, nullable=True)
    supply_penalty = Column(Float, nullable=True)
    competition_penalty = Column(Float, nullable=True)
    final_score = Column(Float, nullable=True, index=True)
    confidence = Column(Float, nullable=True)

    is_live = Column(Boolean, nullable=False, default=False)
    model_version = Column(String(20), nullable=True)
    data_snapshot_date = Column(Date, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_trade_areas_country_region", "country", "region"),
    )

    def __repr__(self) -> str:
        return (
            f"<TradeArea(id={self.id}, country={self.country}, "
            f"region={self.region}, final_score={self.final_score})>"
        )


class Store(Base):
    """An existing outlet. Only active stores count for cannibalization."""
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    country = Column(String(10), nullable=True, index=True)
    region = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)
    annual_turnover = Column(Float, nullable=True)
    opened_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Store(id={self.id}, name={self.name}, status={self.status})>"
