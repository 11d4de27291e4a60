#!/usr/bin/env python3
"""
Command-line interface for odjitter.

Usage:
    odjitter jitter --od-csv-path od.csv --zones-path zones.geojson \\
        --output-path trips.geojson --disaggregation-threshold 10
    odjitter jitter ... --subpoints-path road_network.geojson --rng-seed 42
    odjitter disaggregate --od-csv-path od.csv --zones-path zones.geojson \\
        --output-path trips.fgb --mode-columns car,foot,bicycle
"""

from __future__ import annotations

import argparse
import logging
from typing import Any, Optional, Sequence

from tqdm import tqdm

from .data import DEFAULT_ZONE_NAME_KEY, load_zones, read_od_rows, scrape_points
from .engine import Jitterer
from .index import get_index_stats
from .options import (
    DEDUP_SCOPES,
    Options,
    RandomPoints,
    Subsample,
    WeightedPoints,
    load_config,
)
from .output import open_sink

logger = logging.getLogger(__name__)

# CLI flag destinations that map straight onto Options fields
OPTION_ARGS = (
    "disaggregation_threshold",
    "disaggregation_key",
    "origin_key",
    "destination_key",
    "min_distance_meters",
    "deduplicate_pairs",
    "dedup_scope",
    "max_attempts",
    "mode_columns",
    "rng_seed",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="odjitter",
        description="Disaggregate zone-level origin/destination data into point-to-point trips.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    jitter = subparsers.add_parser(
        "jitter",
        help="Split each OD row into trips carrying at most --disaggregation-threshold trips each",
    )
    _add_common_arguments(jitter)
    jitter.add_argument(
        "--disaggregation-threshold",
        type=int,
        default=None,
        help="Maximum number of trips per output row. Rows with more are repeated "
        "until each copy is under the threshold.",
    )

    disaggregate = subparsers.add_parser(
        "disaggregate",
        help="Produce one trip per unit of every mode column, tagged with a 'mode' property",
    )
    _add_common_arguments(disaggregate)
    disaggregate.add_argument(
        "--mode-columns",
        type=lambda s: [c.strip() for c in s.split(",") if c.strip()],
        default=None,
        help="Comma-separated mode columns (default: every numeric column except "
        "the origin, destination and disaggregation key)",
    )

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--od-csv-path", type=str, required=True,
        help="CSV file with aggregated origin/destination data",
    )
    parser.add_argument(
        "--zones-path", type=str, required=True,
        help="GeoJSON (or other vector file) with named zones",
    )
    parser.add_argument(
        "--output-path", type=str, required=True,
        help="Where to write trips (.geojson is streamed; .fgb, .gpkg, .shp are buffered)",
    )
    parser.add_argument(
        "--subpoints-path", type=str, default=None,
        help="Vector file with subpoints used for both origins and destinations. "
        "Without any subpoints, random points within each zone are used.",
    )
    parser.add_argument(
        "--subpoints-origins-path", type=str, default=None,
        help="Subpoints used only for origins",
    )
    parser.add_argument(
        "--subpoints-destinations-path", type=str, default=None,
        help="Subpoints used only for destinations",
    )
    parser.add_argument(
        "--weight-key", type=str, default=None,
        help="Numeric subpoint property used as a sampling weight (default: unweighted)",
    )
    parser.add_argument(
        "--zone-name-key", type=str, default=DEFAULT_ZONE_NAME_KEY,
        help=f"Zone property holding the zone name (default: {DEFAULT_ZONE_NAME_KEY})",
    )
    parser.add_argument("--disaggregation-key", type=str, default=None,
                        help="Column with the total number of trips (default: all)")
    parser.add_argument("--origin-key", type=str, default=None,
                        help="Column with the origin zone (default: geo_code1)")
    parser.add_argument("--destination-key", type=str, default=None,
                        help="Column with the destination zone (default: geo_code2)")
    parser.add_argument("--min-distance-meters", type=float, default=None,
                        help="Minimum distance between a trip's origin and destination (default: 1.0)")
    parser.add_argument("--deduplicate-pairs", action="store_true", default=None,
                        help="Never output the same origin/destination point pair twice")
    parser.add_argument("--dedup-scope", choices=DEDUP_SCOPES, default=None,
                        help="Remember pairs for the whole run or only within each input row "
                        "(default: run)")
    parser.add_argument("--max-attempts", type=int, default=None,
                        help="Draws per trip before failing; 0 retries forever (default: 1000000)")
    parser.add_argument("--rng-seed", type=int, default=None,
                        help="Seed for deterministic output; random every run if unset")
    parser.add_argument("--config", type=str, default=None,
                        help="JSON file with option values; explicit flags take precedence")
    parser.add_argument("--quiet", action="store_true", help="Hide the progress bar")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")


def options_from_args(args: argparse.Namespace, **overrides) -> Options:
    """Merge the JSON config file (if any) with explicit CLI flags."""
    config: dict[str, Any] = load_config(args.config) if args.config else {}

    for name in OPTION_ARGS:
        value = getattr(args, name, None)
        if value is not None:
            config[name] = value

    if config.get("max_attempts") == 0:
        config["max_attempts"] = None

    if args.command == "disaggregate":
        # Every trip is one unit, so the threshold is never used
        config.setdefault("disaggregation_threshold", 1)
    elif "disaggregation_threshold" not in config:
        raise ValueError("--disaggregation-threshold is required (on the command line or in --config)")

    return Options.from_config(config, **overrides)


def load_subsamples(args: argparse.Namespace) -> tuple[Subsample, Subsample]:
    """Scrape subpoints and decide how origins and destinations are sampled."""
    if args.subpoints_path and (args.subpoints_origins_path or args.subpoints_destinations_path):
        raise ValueError(
            "--subpoints-path can't be combined with --subpoints-origins-path "
            "or --subpoints-destinations-path"
        )

    if args.subpoints_path:
        shared = WeightedPoints(scrape_points(args.subpoints_path, args.weight_key))
        return shared, shared

    origin: Subsample = RandomPoints()
    destination: Subsample = RandomPoints()
    if args.subpoints_origins_path:
        origin = WeightedPoints(scrape_points(args.subpoints_origins_path, args.weight_key))
    if args.subpoints_destinations_path:
        destination = WeightedPoints(scrape_points(args.subpoints_destinations_path, args.weight_key))
    return origin, destination


def run(args: argparse.Namespace) -> int:
    zones = load_zones(args.zones_path, args.zone_name_key)

    subsample_origin, subsample_destination = load_subsamples(args)
    options = options_from_args(
        args,
        subsample_origin=subsample_origin,
        subsample_destination=subsample_destination,
    )
    if options.rng_seed is None:
        logger.info("No --rng-seed given; output will differ between runs")

    jitterer = Jitterer(zones, options)
    for role, index in jitterer.indexes.items():
        if index is not None:
            logger.info(f"Subpoints per {role} zone: {get_index_stats(index)}")

    rows = tqdm(
        read_od_rows(args.od_csv_path),
        desc="Disaggregating OD data",
        unit=" rows",
        disable=args.quiet,
    )
    with open_sink(args.output_path) as sink:
        if args.command == "jitter":
            stats = jitterer.jitter(rows, sink)
        else:
            stats = jitterer.disaggregate(rows, sink)

    logger.info(
        f"Wrote {stats.n_trips} trips from {stats.n_rows} rows to {args.output_path} "
        f"(demand in {stats.demand_in:.6g}, out {stats.demand_out:.6g})"
    )
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )

    try:
        return run(args)
    except (ValueError, OSError) as e:
        logger.error(f"odjitter {args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
