"""
Point samplers for picking a trip endpoint inside a zone.

Two strategies exist: uniform random points inside the zone polygon, and
weighted draws from the zone's subpoints. Both take the random generator as
an argument so a single seeded generator drives the whole run.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import shapely
from shapely.geometry.base import BaseGeometry

from .data import CandidatePoints
from .errors import DegenerateGeometry, NoCandidatePoints, SamplingExhausted

# Mean Earth radius (IUGG), meters
EARTH_RADIUS_M = 6371008.8

Point = tuple[float, float]


def haversine_m(a: Point, b: Point) -> float:
    """Great-circle distance in meters between two (lon, lat) points."""
    lon1, lat1 = a
    lon2, lat2 = b
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, h)))


class Subsampler(ABC):
    """Abstract base class for picking points within one zone."""

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> Point:
        """Draw one (x, y) point."""
        pass

    @abstractmethod
    def num_points(self) -> Optional[int]:
        """
        Number of distinct points this sampler can return.

        Returns:
            A count for finite pools, or None when unbounded
        """
        pass


class RandomInPolygon(Subsampler):
    """
    Uniform random points strictly inside a polygon.

    Uses rejection sampling over the polygon's bounding box, so thin or
    sparse multipolygons need more attempts per point.
    """

    def __init__(self, polygon: BaseGeometry, max_attempts: Optional[int] = None):
        """
        Args:
            polygon: Polygon or MultiPolygon to sample from
            max_attempts: Give up after this many rejected draws (None = never)

        Raises:
            DegenerateGeometry: If the polygon is empty or has no area
        """
        if polygon.is_empty or not polygon.area > 0:
            raise DegenerateGeometry(
                f"Can't sample inside a {polygon.geom_type} with no area: {polygon.wkt[:100]}"
            )
        self.polygon = polygon
        self.bounds = polygon.bounds
        self.max_attempts = max_attempts
        shapely.prepare(self.polygon)

    def sample(self, rng: np.random.Generator) -> Point:
        minx, miny, maxx, maxy = self.bounds
        attempts = 0
        while self.max_attempts is None or attempts < self.max_attempts:
            attempts += 1
            x = rng.uniform(minx, maxx)
            y = rng.uniform(miny, maxy)
            if shapely.contains_xy(self.polygon, x, y):
                return (float(x), float(y))
        raise SamplingExhausted(
            f"No point inside the polygon after {self.max_attempts} attempts"
        )

    def num_points(self) -> Optional[int]:
        return None


class WeightedPool(Subsampler):
    """
    Draw subpoints with probability proportional to their weight.

    Sampling is with replacement. An unweighted pool is just one where every
    weight is 1.0.
    """

    def __init__(self, points: CandidatePoints, zone_id: str = "?"):
        """
        Args:
            points: Subpoints inside the zone, all with positive weight
            zone_id: Zone name, used in error messages

        Raises:
            NoCandidatePoints: If the pool is empty
        """
        if len(points) == 0:
            raise NoCandidatePoints(zone_id)
        total = points.weights.sum()
        if not total > 0:
            raise NoCandidatePoints(zone_id)

        self.zone_id = zone_id
        self.coords = points.coords
        self._cumulative = np.cumsum(points.weights / total)
        self._n_unique = len(np.unique(points.coords, axis=0))

    def sample(self, rng: np.random.Generator) -> Point:
        # Inverse CDF lookup; clip guards the last bucket against rounding in cumsum
        idx = int(np.searchsorted(self._cumulative, rng.random(), side="right"))
        idx = min(idx, len(self.coords) - 1)
        x, y = self.coords[idx]
        return (float(x), float(y))

    def num_points(self) -> Optional[int]:
        return self._n_unique
