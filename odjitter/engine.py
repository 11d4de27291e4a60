"""
Disaggregation of zone-level OD rows into individual point-to-point trips.

Each aggregate row is repeated enough times that no output row carries more
than the configured number of trips. Every copy gets a concrete origin and
destination point sampled from within its zones, and its numeric columns are
divided by the number of copies so that column totals are preserved.

Assumes all input is WGS84 lon/lat; distances use the haversine formula.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional, Protocol

import numpy as np
from shapely.geometry import LineString
from shapely.geometry.base import BaseGeometry

from .data import CandidatePoints
from .errors import (
    InfeasibleUniqueness,
    MissingOrNonNumericColumn,
    SamplingExhausted,
    UnknownZone,
)
from .index import build_index
from .options import Options, Subsample, WeightedPoints
from .sampling import Point, RandomInPolygon, Subsampler, WeightedPool, haversine_m

logger = logging.getLogger(__name__)

ORIGIN = "origin"
DESTINATION = "destination"

# Property added to every trip in full disaggregation mode
MODE_KEY = "mode"

PROGRESS_EVERY_ROWS = 10_000

# Plain decimal or scientific notation. Anything else, e.g. "1_000" or " 12 ",
# is text and passes through untouched.
_NUMBER_RE = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


@dataclass
class Trip:
    """One disaggregated trip: a straight line from origin to destination."""

    origin: Point
    destination: Point
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def geometry(self) -> LineString:
        return LineString([self.origin, self.destination])

    def to_feature(self) -> dict:
        """Return the trip as a GeoJSON Feature dict."""
        return {
            "type": "Feature",
            "geometry": {
                "type": "LineString",
                "coordinates": [list(self.origin), list(self.destination)],
            },
            "properties": self.properties,
        }


@dataclass
class JitterStats:
    """Counters for one run, used to check that no demand was lost."""

    n_rows: int = 0
    n_trips: int = 0
    demand_in: float = 0.0
    demand_out: float = 0.0


class TripSink(Protocol):
    def write(self, trip: Trip) -> None: ...


class Jitterer:
    """
    Turns aggregate OD rows into trips.

    Subpoint indexes are built once on construction. Subsamplers are created
    the first time a zone is seen and reused afterwards. With
    ``dedup_scope="run"`` the set of emitted pairs lives as long as this
    object, so a Jitterer should be used for exactly one run.
    """

    def __init__(
        self,
        zones: dict[str, BaseGeometry],
        options: Options,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Args:
            zones: Dict mapping zone id -> polygon
            options: Run settings
            rng: Random generator; created from options.rng_seed if None
        """
        self.zones = zones
        self.options = options
        self.rng = rng if rng is not None else options.make_rng()

        origin_index = self._build_pool_index(options.subsample_origin)
        if _same_points(options.subsample_origin, options.subsample_destination):
            destination_index = origin_index
        else:
            destination_index = self._build_pool_index(options.subsample_destination)
        self.indexes = {ORIGIN: origin_index, DESTINATION: destination_index}

        self._subsamplers: dict[tuple[str, str], Subsampler] = {}
        # Exact float tuples: a pair only counts as a duplicate if every
        # coordinate is bit-for-bit identical
        self._seen_pairs: set[tuple[float, float, float, float]] = set()
        self._emitted_per_zone_pair: Counter = Counter()

    def _build_pool_index(self, subsample: Subsample) -> Optional[dict[str, CandidatePoints]]:
        if isinstance(subsample, WeightedPoints):
            return build_index(subsample.points, self.zones)
        return None

    # -------------------------------------------------------------------------
    # Row parsing
    # -------------------------------------------------------------------------

    def parse_demand(self, row: dict[str, Any]) -> float:
        """
        Read the total number of trips from a row.

        Raises:
            MissingOrNonNumericColumn: If the column is absent, not a finite
                number, or negative
        """
        key = self.options.disaggregation_key
        if key not in row:
            raise MissingOrNonNumericColumn(
                f"OD row doesn't have a {key!r} column; set disaggregation_key properly. "
                f"Columns: {list(row)}"
            )
        value = _parse_number(row[key])
        if value is None or value < 0:
            raise MissingOrNonNumericColumn(
                f"{key!r} must be a non-negative number, got {row[key]!r}"
            )
        return value

    def repeat_count(self, row: dict[str, Any]) -> int:
        """
        How many output trips a row turns into.

        A row with zero demand still produces one trip, carrying the zero.
        """
        demand = self.parse_demand(row)
        if demand == 0:
            return 1
        return math.ceil(demand / self.options.disaggregation_threshold)

    def scale_row(self, row: dict[str, Any], repeat: int) -> dict[str, Any]:
        """
        Divide every numeric column by repeat.

        Origin and destination columns are never treated as numbers, so zone
        ids like "007" survive untouched. Other non-numeric values pass through.
        """
        zone_keys = (self.options.origin_key, self.options.destination_key)
        properties = {}
        for key, value in row.items():
            if key in zone_keys:
                properties[key] = str(value)
                continue
            number = _parse_number(value)
            properties[key] = value if number is None else number / repeat
        return properties

    def _zone_ids(self, row: dict[str, Any]) -> tuple[str, str]:
        ids = []
        for key in (self.options.origin_key, self.options.destination_key):
            if key not in row:
                raise MissingOrNonNumericColumn(
                    f"OD row doesn't have a {key!r} column; set origin_key/destination_key "
                    f"properly. Columns: {list(row)}"
                )
            zone_id = str(row[key])
            if zone_id not in self.zones:
                raise UnknownZone(zone_id, key)
            ids.append(zone_id)
        return ids[0], ids[1]

    # -------------------------------------------------------------------------
    # Sampling
    # -------------------------------------------------------------------------

    def subsampler(self, role: str, zone_id: str) -> Subsampler:
        """Return the cached sampler for a zone as origin or destination."""
        key = (role, zone_id)
        sampler = self._subsamplers.get(key)
        if sampler is None:
            index = self.indexes[role]
            if index is None:
                sampler = RandomInPolygon(self.zones[zone_id], self.options.max_attempts)
            else:
                sampler = WeightedPool(index.get(zone_id, CandidatePoints.empty()), zone_id)
            self._subsamplers[key] = sampler
        return sampler

    def _samplers(self, origin_id: str, destination_id: str) -> tuple[Subsampler, Subsampler]:
        return self.subsampler(ORIGIN, origin_id), self.subsampler(DESTINATION, destination_id)

    def _pairs(
        self,
        origin_id: str,
        destination_id: str,
        n: int,
        origin_sampler: Subsampler,
        destination_sampler: Subsampler,
    ) -> Iterator[tuple[Point, Point]]:
        """
        Yield n (origin, destination) pairs satisfying the distance and
        uniqueness constraints.

        Uniqueness feasibility is checked before anything is drawn.
        """

        seen = None
        if self.options.deduplicate_pairs:
            run_scoped = self.options.dedup_scope == "run"
            self._check_uniqueness(
                origin_id, destination_id, n, origin_sampler, destination_sampler, run_scoped
            )
            seen = self._seen_pairs if run_scoped else set()

        for _ in range(n):
            yield self._sample_pair(
                origin_id, destination_id, origin_sampler, destination_sampler, seen
            )

    def _check_uniqueness(
        self,
        origin_id: str,
        destination_id: str,
        n: int,
        origin_sampler: Subsampler,
        destination_sampler: Subsampler,
        run_scoped: bool,
    ) -> None:
        n_origin = origin_sampler.num_points()
        n_destination = destination_sampler.num_points()
        if n_origin is None or n_destination is None:
            return

        already = self._emitted_per_zone_pair[(origin_id, destination_id)] if run_scoped else 0
        available = n_origin * n_destination
        if n + already > available:
            raise InfeasibleUniqueness(
                f"Need {n} unique pairs from {origin_id!r} to {destination_id!r} "
                f"({already} already used), but only {n_origin} x {n_destination} = "
                f"{available} exist"
            )

    def _sample_pair(
        self,
        origin_id: str,
        destination_id: str,
        origin_sampler: Subsampler,
        destination_sampler: Subsampler,
        seen: Optional[set],
    ) -> tuple[Point, Point]:
        min_distance = self.options.min_distance_meters
        max_attempts = self.options.max_attempts

        attempts = 0
        while max_attempts is None or attempts < max_attempts:
            attempts += 1
            o = origin_sampler.sample(self.rng)
            d = destination_sampler.sample(self.rng)
            if haversine_m(o, d) < min_distance:
                continue
            if seen is not None:
                key = (o[0], o[1], d[0], d[1])
                if key in seen:
                    continue
                seen.add(key)
            self._emitted_per_zone_pair[(origin_id, destination_id)] += 1
            return o, d

        raise SamplingExhausted(
            f"Couldn't find a valid pair from {origin_id!r} to {destination_id!r} after "
            f"{max_attempts} attempts (min_distance_meters={min_distance}, "
            f"deduplicate_pairs={self.options.deduplicate_pairs})"
        )

    # -------------------------------------------------------------------------
    # Per-row operations
    # -------------------------------------------------------------------------

    def jitter_row(self, row: dict[str, Any]) -> Iterator[Trip]:
        """
        Split one aggregate row into trips.

        Args:
            row: Dict mapping column -> raw value

        Yields:
            repeat_count(row) trips, each with numeric columns divided by
            the repeat count
        """
        repeat = self.repeat_count(row)
        properties = self.scale_row(row, repeat)
        origin_id, destination_id = self._zone_ids(row)
        samplers = self._samplers(origin_id, destination_id)

        for o, d in self._pairs(origin_id, destination_id, repeat, *samplers):
            yield Trip(o, d, dict(properties))

    def disaggregate_row(self, row: dict[str, Any]) -> Iterator[Trip]:
        """
        Turn every unit of every mode column into its own trip.

        Each trip gets a ``mode`` property naming its column. Non-numeric
        columns pass through; mode columns and the total column are dropped.
        Nothing is rescaled since each trip is exactly one unit.

        Args:
            row: Dict mapping column -> raw value

        Yields:
            One trip per unit, grouped by mode in column order
        """
        origin_id, destination_id = self._zone_ids(row)
        # Built even when every count is zero so bad zones still fail
        samplers = self._samplers(origin_id, destination_id)
        zone_keys = (self.options.origin_key, self.options.destination_key)
        mode_columns = self.options.mode_columns

        base: dict[str, Any] = {}
        counts: list[tuple[str, int]] = []
        for key, value in row.items():
            if key in zone_keys:
                base[key] = str(value)
                continue
            if mode_columns is not None and key in mode_columns:
                continue
            if key == self.options.disaggregation_key:
                continue
            number = _parse_number(value)
            if number is None:
                base[key] = value
            elif mode_columns is None:
                counts.append((key, self._unit_count(key, number)))
            else:
                base[key] = number

        if mode_columns is not None:
            for key in mode_columns:
                number = _parse_number(row.get(key))
                if number is None:
                    raise MissingOrNonNumericColumn(
                        f"Mode column {key!r} is missing or not numeric: {row.get(key)!r}"
                    )
                counts.append((key, self._unit_count(key, number)))

        modes = [mode for mode, n in counts for _ in range(n)]
        pairs = self._pairs(origin_id, destination_id, len(modes), *samplers)
        for mode, (o, d) in zip(modes, pairs):
            properties = dict(base)
            properties[MODE_KEY] = mode
            yield Trip(o, d, properties)

    def _unit_count(self, key: str, value: float) -> int:
        if value < 0:
            raise MissingOrNonNumericColumn(f"Mode column {key!r} is negative: {value}")
        n = int(round(value))
        if n != value:
            logger.warning(f"Rounding non-integer count {value} in {key!r} to {n}")
        return n

    # -------------------------------------------------------------------------
    # Whole runs
    # -------------------------------------------------------------------------

    def jitter(self, rows: Iterable[dict[str, Any]], sink: TripSink) -> JitterStats:
        """
        Jitter every row in order, writing each trip to sink as it's made.

        Returns:
            JitterStats; demand_in and demand_out sum the disaggregation key
            column before and after
        """
        key = self.options.disaggregation_key
        stats = JitterStats()
        for row in rows:
            for trip in self.jitter_row(row):
                sink.write(trip)
                stats.n_trips += 1
                stats.demand_out += trip.properties[key]
            stats.n_rows += 1
            stats.demand_in += self.parse_demand(row)
            if stats.n_rows % PROGRESS_EVERY_ROWS == 0:
                logger.debug(f"Jittered {stats.n_rows} rows into {stats.n_trips} trips")

        logger.info(f"Jittered {stats.n_rows} rows into {stats.n_trips} trips")
        return stats

    def disaggregate(self, rows: Iterable[dict[str, Any]], sink: TripSink) -> JitterStats:
        """
        Fully disaggregate every row in order, one trip per unit per mode.

        Returns:
            JitterStats; demand_in sums the (rounded) mode counts and
            demand_out counts trips
        """
        stats = JitterStats()
        for row in rows:
            n_before = stats.n_trips
            for trip in self.disaggregate_row(row):
                sink.write(trip)
                stats.n_trips += 1
            stats.n_rows += 1
            stats.demand_in += stats.n_trips - n_before
            if stats.n_rows % PROGRESS_EVERY_ROWS == 0:
                logger.debug(f"Disaggregated {stats.n_rows} rows into {stats.n_trips} trips")

        stats.demand_out = float(stats.n_trips)
        logger.info(f"Disaggregated {stats.n_rows} rows into {stats.n_trips} trips")
        return stats


def _parse_number(value: Any) -> Optional[float]:
    """Parse a finite float, or return None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.number)):
        number = float(value)
    elif isinstance(value, str) and _NUMBER_RE.fullmatch(value):
        number = float(value)
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _same_points(a: Subsample, b: Subsample) -> bool:
    return (
        isinstance(a, WeightedPoints)
        and isinstance(b, WeightedPoints)
        and a.points is b.points
    )
