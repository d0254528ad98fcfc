"""
Environmental signal providers.

Urban density, natural barriers and transportation networks are not yet
backed by real geodata. Every consumer goes through GeoSignalProvider so a
real provider (OSM, Places, municipal GIS) can replace the simulation
without touching the scoring or pattern algorithms.

All providers must implement:
- urban_score(): 0-1 density estimate for a location
- natural_barriers(): obstacles that separate markets around a location
- transportation_networks(): roads and transit that justify a placement
"""
import logging
import random
from abc import ABC, abstractmethod
from typing import List, Optional

from site_engine.geo.types import (
    BarrierType,
    Location,
    NaturalBarrier,
    NetworkType,
    TransportationNetwork,
)

logger = logging.getLogger(__name__)


class GeoSignalProvider(ABC):
    """Capability interface for environmental signals around a location."""

    name: str = "base"
    is_simulated: bool = False

    @abstractmethod
    def urban_score(self, location: Location) -> float:
        """Return urban density for the location in [0, 1]."""

    @abstractmethod
    def natural_barriers(self, location: Location, radius: float) -> List[NaturalBarrier]:
        """Return barriers within radius meters of the location."""

    @abstractmethod
    def transportation_networks(
        self, location: Location, radius: float
    ) -> List[TransportationNetwork]:
        """Return transport corridors within radius meters of the location."""


class SimulatedGeoSignalProvider(GeoSignalProvider):
    """
    Placeholder signals drawn from a seedable random source.

    Coordinates only loosely influence the output. Results are NOT real
    geography and are flagged with is_simulated so callers can tell.
    """

    name = "simulated"
    is_simulated = True

    RIVER_PROBABILITY = 0.3
    HIGHWAY_PROBABILITY = 0.2
    TRANSIT_PROBABILITY = 0.4

    def __init__(self, rng: Optional[random.Random] = None, seed: Optional[int] = None):
        self.rng = rng if rng is not None else random.Random(seed)

    def urban_score(self, location: Location) -> float:
        base_score = self.rng.random() * 0.4 + 0.3
        coordinate_bonus = (abs(location.lat) + abs(location.lng)) % 1
        return min(1.0, base_score + coordinate_bonus * 0.3)

    def natural_barriers(self, location: Location, radius: float) -> List[NaturalBarrier]:
        barriers = []

        if self.rng.random() < self.RIVER_PROBABILITY:
            barriers.append(NaturalBarrier(
                type=BarrierType.RIVER,
                coordinates=self._barrier_coordinates(location, length=0.01),
                influence=0.8,
            ))

        if self.rng.random() < self.HIGHWAY_PROBABILITY:
            barriers.append(NaturalBarrier(
                type=BarrierType.HIGHWAY,
                coordinates=self._barrier_coordinates(location, length=0.005),
                influence=0.6,
            ))

        logger.debug(f"Simulated {len(barriers)} barriers near {location.lat},{location.lng}")
        return barriers

    def transportation_networks(
        self, location: Location, radius: float
    ) -> List[TransportationNetwork]:
        # Most locations have some road access
        networks = [
            TransportationNetwork(
                type=NetworkType.MAJOR_ROAD,
                coordinates=self._network_coordinates(location),
                importance=0.7,
                accessibility_bonus=0.3,
            )
        ]

        if self.rng.random() < self.TRANSIT_PROBABILITY:
            networks.append(TransportationNetwork(
                type=NetworkType.TRANSIT_LINE,
                coordinates=self._network_coordinates(location),
                importance=0.9,
                accessibility_bonus=0.5,
            ))

        return networks

    def _barrier_coordinates(self, center: Location, length: float) -> List[Location]:
        """Five points roughly north-south through the center, with lateral wobble."""
        coords = []
        for i in range(5):
            lat = center.lat + (i - 2) * length / 4
            lng = center.lng + (self.rng.random() - 0.5) * length / 2
            coords.append(Location(
                lat=max(-90.0, min(90.0, lat)),
                lng=max(-180.0, min(180.0, lng)),
                country=center.country,
            ))
        return coords

    @staticmethod
    def _network_coordinates(center: Location, length: float = 0.008) -> List[Location]:
        coords = []
        for i in range(3):
            lat = center.lat + (i - 1) * length / 2
            lng = center.lng + (i - 1) * length / 2
            coords.append(Location(
                lat=max(-90.0, min(90.0, lat)),
                lng=max(-180.0, min(180.0, lng)),
                country=center.country,
            ))
        return coords
