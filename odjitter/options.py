"""
Configuration for a disaggregation run.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal, Optional, Union

import numpy as np

from .data import CandidatePoints

DEFAULT_DISAGGREGATION_KEY = "all"
DEFAULT_ORIGIN_KEY = "geo_code1"
DEFAULT_DESTINATION_KEY = "geo_code2"
DEFAULT_MIN_DISTANCE_M = 1.0

# Draws allowed per trip before giving up. High enough that only impossible
# constraints (tiny zones, exhausted unique pairs) ever hit it.
DEFAULT_MAX_ATTEMPTS = 1_000_000

DedupScope = Literal["run", "row"]
DEDUP_SCOPES = ("run", "row")


@dataclass(frozen=True)
class RandomPoints:
    """
    Pick points uniformly at random within the zone's shape.

    Points directly on the zone's boundary are never picked.
    """


@dataclass(frozen=True, eq=False)
class WeightedPoints:
    """
    Sample from these subpoints, proportionally to their weights.

    Only subpoints strictly inside a zone are used for it. A subpoint inside
    several overlapping zones can be picked for any of them.
    """

    points: CandidatePoints


Subsample = Union[RandomPoints, WeightedPoints]


@dataclass
class Options:
    """
    Settings for Jitterer.

    Attributes:
        disaggregation_threshold: Maximum trips per output row. A row with
            more is repeated until each copy is at or under the threshold.
        subsample_origin: How origin points are picked within a zone
        subsample_destination: How destination points are picked within a zone
        disaggregation_key: Column with the total number of trips
        origin_key: Column with the origin zone id
        destination_key: Column with the destination zone id
        min_distance_meters: Origin and destination of every trip are at
            least this far apart (great-circle distance)
        deduplicate_pairs: Never emit the same (origin, destination) pair twice
        dedup_scope: "run" remembers pairs across all rows, "row" only within
            one input row
        rng_seed: Seed for reproducible output; None seeds from OS entropy
        max_attempts: Draws per trip before raising SamplingExhausted;
            None retries forever
        mode_columns: Columns treated as per-mode trip counts when fully
            disaggregating; None means every other numeric column
    """

    disaggregation_threshold: int
    subsample_origin: Subsample = field(default_factory=RandomPoints)
    subsample_destination: Subsample = field(default_factory=RandomPoints)
    disaggregation_key: str = DEFAULT_DISAGGREGATION_KEY
    origin_key: str = DEFAULT_ORIGIN_KEY
    destination_key: str = DEFAULT_DESTINATION_KEY
    min_distance_meters: float = DEFAULT_MIN_DISTANCE_M
    deduplicate_pairs: bool = False
    dedup_scope: DedupScope = "run"
    rng_seed: Optional[int] = None
    max_attempts: Optional[int] = DEFAULT_MAX_ATTEMPTS
    mode_columns: Optional[list[str]] = None

    def __post_init__(self):
        if not _is_positive_int(self.disaggregation_threshold):
            raise ValueError(
                f"disaggregation_threshold must be a positive integer, "
                f"got {self.disaggregation_threshold!r}"
            )
        distance = self.min_distance_meters
        if (
            not isinstance(distance, (int, float, np.number))
            or isinstance(distance, bool)
            or not (math.isfinite(distance) and distance >= 0)
        ):
            raise ValueError(
                f"min_distance_meters must be a non-negative number, "
                f"got {self.min_distance_meters!r}"
            )
        if self.dedup_scope not in DEDUP_SCOPES:
            raise ValueError(f"dedup_scope must be one of {DEDUP_SCOPES}, got {self.dedup_scope!r}")
        if self.max_attempts is not None and not _is_positive_int(self.max_attempts):
            raise ValueError(
                f"max_attempts must be a positive integer or None, got {self.max_attempts!r}"
            )
        if self.rng_seed is not None and not _is_non_negative_int(self.rng_seed):
            raise ValueError(
                f"rng_seed must be a non-negative integer or None, got {self.rng_seed!r}"
            )
        for subsample in (self.subsample_origin, self.subsample_destination):
            if not isinstance(subsample, (RandomPoints, WeightedPoints)):
                raise ValueError(f"Unknown subsample strategy: {subsample!r}")
        if self.mode_columns is not None:
            self.mode_columns = list(self.mode_columns)

    def make_rng(self) -> np.random.Generator:
        """Create the run's random generator from rng_seed."""
        return np.random.default_rng(self.rng_seed)

    @classmethod
    def from_config(cls, config: dict[str, Any], **overrides) -> Options:
        """
        Build Options from a plain dict, e.g. a parsed JSON config file.

        Subsample strategies hold point data, so they can only be passed as
        keyword overrides, not through the config dict.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        allowed = {f.name for f in fields(cls)} - {"subsample_origin", "subsample_destination"}
        unknown = set(config) - allowed
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}. Allowed: {sorted(allowed)}")
        return cls(**{**config, **overrides})


def load_config(path: Path | str) -> dict[str, Any]:
    """
    Read a JSON config file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file isn't a JSON object
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path) as f:
        config = json.load(f)
    if not isinstance(config, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return config


def _is_positive_int(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool) and value > 0


def _is_non_negative_int(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool) and value >= 0
