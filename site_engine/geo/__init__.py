"""
Geographic primitives for the site engine.

Usage:
    from site_engine.geo import Location, haversine_distance

    meters = haversine_distance(Location(lat=40.71, lng=-74.0), other)
"""

from site_engine.geo.types import (
    Candidate,
    ExistingOutlet,
    Location,
    PatternType,
    RiskLevel,
    Severity,
)
from site_engine.geo.utils import haversine_distance, normalize
from site_engine.geo.signals import GeoSignalProvider, SimulatedGeoSignalProvider

__all__ = [
    'Candidate',
    'ExistingOutlet',
    'Location',
    'PatternType',
    'RiskLevel',
    'Severity',
    'haversine_distance',
    'normalize',
    'GeoSignalProvider',
    'SimulatedGeoSignalProvider',
]
