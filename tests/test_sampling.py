"""Tests for point samplers and distance computation."""

import numpy as np
import pytest
from shapely.geometry import MultiPolygon, Point, Polygon, box

from odjitter.data import CandidatePoints
from odjitter.errors import DegenerateGeometry, NoCandidatePoints, SamplingExhausted
from odjitter.sampling import RandomInPolygon, WeightedPool, haversine_m


class AlwaysHighRng:
    """Stand-in generator whose uniform draws always hit the upper bound."""

    def uniform(self, low, high):
        return high


class TestHaversine:
    """Tests for great-circle distance."""

    def test_zero_distance(self):
        """Identical points are 0 m apart."""
        assert haversine_m((-1.5, 53.8), (-1.5, 53.8)) == 0.0

    def test_one_degree_latitude(self):
        """One degree along a meridian is about 111.2 km."""
        d = haversine_m((0.0, 0.0), (0.0, 1.0))

        assert abs(d - 111195.08) < 1.0

    def test_symmetric(self):
        """Distance doesn't depend on direction."""
        a, b = (-1.55, 53.80), (-1.50, 53.82)

        assert haversine_m(a, b) == pytest.approx(haversine_m(b, a))

    def test_longitude_shrinks_with_latitude(self):
        """A degree of longitude is shorter away from the equator."""
        at_equator = haversine_m((0.0, 0.0), (1.0, 0.0))
        at_60 = haversine_m((0.0, 60.0), (1.0, 60.0))

        assert at_60 == pytest.approx(at_equator / 2, rel=1e-3)


class TestRandomInPolygon:
    """Tests for uniform sampling inside polygons."""

    def test_points_inside(self):
        """Every sample is strictly inside the polygon."""
        triangle = Polygon([(0, 0), (1, 0), (0, 1)])
        sampler = RandomInPolygon(triangle)
        rng = np.random.default_rng(42)

        for _ in range(500):
            x, y = sampler.sample(rng)
            assert triangle.contains(Point(x, y))

    def test_avoids_holes(self):
        """Samples never land in a hole."""
        hole = [(1, 1), (3, 1), (3, 3), (1, 3)]
        donut = Polygon([(0, 0), (4, 0), (4, 4), (0, 4)], holes=[hole])
        sampler = RandomInPolygon(donut)
        rng = np.random.default_rng(1)

        for _ in range(500):
            x, y = sampler.sample(rng)
            assert not (1 <= x <= 3 and 1 <= y <= 3)

    def test_multipolygon_parts_all_used(self):
        """Both parts of a multipolygon get samples."""
        multi = MultiPolygon([box(0, 0, 1, 1), box(9, 0, 10, 1)])
        sampler = RandomInPolygon(multi)
        rng = np.random.default_rng(7)

        xs = [sampler.sample(rng)[0] for _ in range(200)]

        assert any(x < 1 for x in xs)
        assert any(x > 9 for x in xs)

    def test_unbounded(self):
        """Random sampling has no finite point count."""
        assert RandomInPolygon(box(0, 0, 1, 1)).num_points() is None

    def test_degenerate_geometry(self):
        """Empty and zero-area polygons can't be sampled."""
        with pytest.raises(DegenerateGeometry):
            RandomInPolygon(Polygon())
        with pytest.raises(DegenerateGeometry):
            RandomInPolygon(Polygon([(0, 0), (1, 1), (2, 2)]))

    def test_attempt_cap(self):
        """Rejection sampling gives up after max_attempts."""
        # (1, 1) is the bounding box corner, outside the triangle
        sampler = RandomInPolygon(Polygon([(0, 0), (1, 0), (0, 1)]), max_attempts=5)

        with pytest.raises(SamplingExhausted):
            sampler.sample(AlwaysHighRng())

    def test_reproducible(self):
        """Same seed gives the same points."""
        sampler = RandomInPolygon(box(0, 0, 1, 1))
        rng1 = np.random.default_rng(3)
        rng2 = np.random.default_rng(3)

        pts1 = [sampler.sample(rng1) for _ in range(10)]
        pts2 = [sampler.sample(rng2) for _ in range(10)]

        assert pts1 == pts2


class TestWeightedPool:
    """Tests for weighted subpoint sampling."""

    def test_empty_pool(self):
        """An empty pool is a hard error, not a silent fallback."""
        with pytest.raises(NoCandidatePoints) as excinfo:
            WeightedPool(CandidatePoints.empty(), zone_id="E02002330")

        assert excinfo.value.zone_id == "E02002330"

    def test_samples_are_members(self):
        """Only pool points are ever returned."""
        coords = [(0.1, 0.1), (0.2, 0.3), (0.7, 0.9)]
        pool = WeightedPool(CandidatePoints(coords))
        rng = np.random.default_rng(42)

        for _ in range(200):
            assert pool.sample(rng) in coords

    def test_frequency_follows_weight(self):
        """A point with 9x the weight is picked about 9x as often."""
        pool = WeightedPool(CandidatePoints([(0.0, 0.0), (1.0, 1.0)], weights=[1, 9]))
        rng = np.random.default_rng(42)

        draws = [pool.sample(rng) for _ in range(10000)]
        heavy = sum(1 for p in draws if p == (1.0, 1.0))

        assert 0.87 < heavy / len(draws) < 0.93

    def test_zero_weight_never_picked(self):
        """Zero-weight points are skipped while positive ones exist."""
        pool = WeightedPool(CandidatePoints([(0.0, 0.0), (1.0, 1.0)], weights=[0, 1]))
        rng = np.random.default_rng(0)

        assert all(pool.sample(rng) == (1.0, 1.0) for _ in range(500))

    def test_all_zero_weights(self):
        """A pool with no positive weight has nothing to sample."""
        with pytest.raises(NoCandidatePoints):
            WeightedPool(CandidatePoints([(0.0, 0.0)], weights=[0]))

    def test_num_points_counts_distinct(self):
        """Duplicate coordinates count once towards unique pairs."""
        pool = WeightedPool(CandidatePoints([(0.0, 0.0), (0.0, 0.0), (1.0, 1.0)]))

        assert pool.num_points() == 2

    def test_returns_python_floats(self):
        """Samples are plain float tuples, usable as set keys and in JSON."""
        pool = WeightedPool(CandidatePoints([(0.5, 0.25)]))

        x, y = pool.sample(np.random.default_rng(0))

        assert type(x) is float and type(y) is float
