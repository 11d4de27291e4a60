"""Tests for run configuration."""

import json

import pytest

from odjitter.data import CandidatePoints
from odjitter.options import (
    DEFAULT_MAX_ATTEMPTS,
    Options,
    RandomPoints,
    WeightedPoints,
    load_config,
)


class TestOptions:
    """Tests for Options defaults and validation."""

    def test_defaults(self):
        """Defaults match the usual census OD column names."""
        options = Options(disaggregation_threshold=10)

        assert options.disaggregation_key == "all"
        assert options.origin_key == "geo_code1"
        assert options.destination_key == "geo_code2"
        assert options.min_distance_meters == 1.0
        assert options.deduplicate_pairs is False
        assert options.dedup_scope == "run"
        assert options.max_attempts == DEFAULT_MAX_ATTEMPTS
        assert options.rng_seed is None
        assert isinstance(options.subsample_origin, RandomPoints)
        assert isinstance(options.subsample_destination, RandomPoints)

    @pytest.mark.parametrize("threshold", [0, -5, 2.5, True, "10"])
    def test_bad_threshold(self, threshold):
        """Threshold must be a positive integer."""
        with pytest.raises(ValueError):
            Options(disaggregation_threshold=threshold)

    @pytest.mark.parametrize("distance", [-1.0, float("nan"), float("inf")])
    def test_bad_min_distance(self, distance):
        with pytest.raises(ValueError):
            Options(disaggregation_threshold=1, min_distance_meters=distance)

    def test_zero_min_distance_allowed(self):
        """Zero disables the distance check."""
        assert Options(disaggregation_threshold=1, min_distance_meters=0).min_distance_meters == 0

    def test_bad_dedup_scope(self):
        with pytest.raises(ValueError):
            Options(disaggregation_threshold=1, dedup_scope="zone")

    def test_max_attempts(self):
        """None means unbounded; zero and negatives are rejected."""
        assert Options(disaggregation_threshold=1, max_attempts=None).max_attempts is None
        with pytest.raises(ValueError):
            Options(disaggregation_threshold=1, max_attempts=0)

    @pytest.mark.parametrize("seed", [1.5, "42", -1, True])
    def test_bad_rng_seed(self, seed):
        """Seeds must be non-negative integers."""
        with pytest.raises(ValueError):
            Options(disaggregation_threshold=1, rng_seed=seed)

    def test_zero_seed_allowed(self):
        assert Options(disaggregation_threshold=1, rng_seed=0).rng_seed == 0

    def test_non_numeric_min_distance(self):
        """A string distance from a config file is a ValueError, not a TypeError."""
        with pytest.raises(ValueError):
            Options(disaggregation_threshold=1, min_distance_meters="far")

    def test_bad_subsample(self):
        with pytest.raises(ValueError):
            Options(disaggregation_threshold=1, subsample_origin="random")

    def test_same_seed_same_rng(self):
        """A seed fully determines the generator."""
        a = Options(disaggregation_threshold=1, rng_seed=42).make_rng()
        b = Options(disaggregation_threshold=1, rng_seed=42).make_rng()

        assert a.random() == b.random()


class TestFromConfig:
    """Tests for building Options from dicts and files."""

    def test_from_dict(self):
        config = {
            "disaggregation_threshold": 5,
            "origin_key": "from",
            "deduplicate_pairs": True,
            "dedup_scope": "row",
        }

        options = Options.from_config(config)

        assert options.disaggregation_threshold == 5
        assert options.origin_key == "from"
        assert options.deduplicate_pairs is True
        assert options.dedup_scope == "row"

    def test_unknown_key(self):
        """Typos in config keys are reported, not ignored."""
        with pytest.raises(ValueError, match="disagregation_threshold"):
            Options.from_config({"disagregation_threshold": 5})

    def test_subsample_only_as_override(self):
        """Point data can't come from JSON but can be passed in."""
        points = WeightedPoints(CandidatePoints([(0.0, 0.0)]))

        with pytest.raises(ValueError):
            Options.from_config({"disaggregation_threshold": 1, "subsample_origin": "x"})

        options = Options.from_config({"disaggregation_threshold": 1}, subsample_origin=points)
        assert options.subsample_origin is points

    def test_load_config(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"disaggregation_threshold": 3, "rng_seed": 7}))

        assert load_config(path) == {"disaggregation_threshold": 3, "rng_seed": 7}

    def test_load_config_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.json")

    def test_load_config_not_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")

        with pytest.raises(ValueError):
            load_config(path)
