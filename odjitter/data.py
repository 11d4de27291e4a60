"""
Input loading: zones, subpoints and aggregate OD tables.

Zones and subpoints are read with geopandas, so anything GDAL can open works
(GeoJSON, GeoPackage, shapefiles, FlatGeobuf). All coordinates are assumed to
be WGS84 longitude/latitude; nothing is reprojected.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry.base import BaseGeometry

from .errors import MalformedInput

logger = logging.getLogger(__name__)

DEFAULT_ZONE_NAME_KEY = "InterZone"

# Rows pulled from the OD table per pandas chunk
DEFAULT_CHUNKSIZE = 10_000

AREAL_GEOMETRY_TYPES = ("Polygon", "MultiPolygon")

GEOJSON_SUFFIXES = (".geojson", ".json")


@dataclass
class CandidatePoints:
    """
    A pool of subpoints with relative weights.

    Stored column-wise: ``coords`` is an (n, 2) array of (x, y) and
    ``weights`` an (n,) array. Unweighted pools get a weight of 1.0 per point.
    """

    coords: np.ndarray
    weights: Optional[np.ndarray] = None

    def __post_init__(self):
        self.coords = np.asarray(self.coords, dtype=float).reshape(-1, 2)
        if self.weights is None:
            self.weights = np.ones(len(self.coords))
        else:
            self.weights = np.asarray(self.weights, dtype=float).reshape(-1)
        if len(self.weights) != len(self.coords):
            raise ValueError(
                f"Got {len(self.coords)} points but {len(self.weights)} weights"
            )

    @classmethod
    def empty(cls) -> CandidatePoints:
        return cls(np.empty((0, 2)))

    def __len__(self) -> int:
        return len(self.coords)

    def subset(self, mask_or_indices) -> CandidatePoints:
        """Return the points selected by a boolean mask or index array."""
        return CandidatePoints(self.coords[mask_or_indices], self.weights[mask_or_indices])


def load_zones(
    path: Path | str,
    name_key: str = DEFAULT_ZONE_NAME_KEY,
) -> dict[str, BaseGeometry]:
    """
    Load named zone polygons.

    Zone names are kept exactly as written in the file. A name like "007"
    stays a string with its leading zeros.

    Args:
        path: Path to any vector file geopandas can read
        name_key: Feature property holding the zone name

    Returns:
        Dict mapping zone name -> Polygon or MultiPolygon

    Raises:
        FileNotFoundError: If the file doesn't exist
        MalformedInput: If a feature has no string name, has a non-areal
            geometry, or repeats another feature's name
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Zones file not found: {path}")

    gdf = gpd.read_file(path)
    _warn_if_not_wgs84(gdf, path)

    if name_key not in gdf.columns:
        raise MalformedInput(
            f"Zones in {path} don't have a {name_key!r} property. "
            f"Available properties: {[c for c in gdf.columns if c != 'geometry']}"
        )
    if path.suffix.lower() in GEOJSON_SUFFIXES:
        _check_geojson_names(path, name_key)

    zones: dict[str, BaseGeometry] = {}
    for name, geom in zip(gdf[name_key], gdf.geometry):
        if not isinstance(name, str):
            raise MalformedInput(
                f"Feature in {path} doesn't have a string zone name {name_key!r}: {name!r}"
            )
        if geom is None or geom.geom_type not in AREAL_GEOMETRY_TYPES:
            geom_type = None if geom is None else geom.geom_type
            raise MalformedInput(
                f"Zone {name!r} in {path} has geometry {geom_type}, "
                f"expected one of {AREAL_GEOMETRY_TYPES}"
            )
        if name in zones:
            raise MalformedInput(f"Zone {name!r} appears more than once in {path}")
        zones[name] = geom

    logger.info(f"Loaded {len(zones)} zones from {path}")
    return zones


def scrape_points(
    path: Path | str,
    weight_key: Optional[str] = None,
) -> CandidatePoints:
    """
    Extract every coordinate from every feature as a candidate subpoint.

    Points are not deduplicated, so a vertex shared by several road segments
    appears (and gets sampled) once per segment.

    Args:
        path: Path to any vector file geopandas can read
        weight_key: Optional numeric feature property used as the weight of
            all points scraped from that feature (default weight 1.0)

    Returns:
        CandidatePoints for the whole file

    Raises:
        FileNotFoundError: If the file doesn't exist
        MalformedInput: If weight_key is missing or non-numeric on a feature
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Subpoints file not found: {path}")

    gdf = gpd.read_file(path)
    _warn_if_not_wgs84(gdf, path)

    # Features without geometry contribute nothing
    gdf = gdf[gdf.geometry.notna() & ~gdf.geometry.is_empty]
    if gdf.empty:
        logger.warning(f"No geometries in {path}")
        return CandidatePoints.empty()

    xy = gdf.geometry.get_coordinates()

    weights = None
    if weight_key is not None:
        if weight_key not in gdf.columns:
            raise MalformedInput(f"Subpoints in {path} don't have a {weight_key!r} property")
        feature_weights = pd.to_numeric(gdf[weight_key], errors="coerce")
        bad = feature_weights.isna()
        if bad.any():
            raise MalformedInput(
                f"{int(bad.sum())} features in {path} have a missing or non-numeric "
                f"{weight_key!r}, e.g. {gdf.loc[bad, weight_key].iloc[0]!r}"
            )
        weights = feature_weights.loc[xy.index].to_numpy(dtype=float)

    points = CandidatePoints(xy[["x", "y"]].to_numpy(dtype=float), weights)
    logger.info(f"Scraped {len(points)} subpoints from {path}")
    return points


def read_od_rows(
    path: Path | str,
    chunksize: int = DEFAULT_CHUNKSIZE,
) -> Iterator[dict[str, str]]:
    """
    Stream rows of an OD table as raw strings.

    Every value is kept as text, so zone ids that look numeric keep their
    leading zeros. Only one chunk is held in memory at a time.

    Args:
        path: CSV file with a header row
        chunksize: Rows per pandas chunk

    Yields:
        Dict mapping column name -> raw string value, in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        MalformedInput: If the file has no header
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"OD file not found: {path}")

    try:
        reader = pd.read_csv(
            path,
            dtype=str,
            keep_default_na=False,
            chunksize=chunksize,
        )
    except pd.errors.EmptyDataError as e:
        raise MalformedInput(f"{path} is empty, expected a CSV header row") from e

    with reader:
        for chunk in reader:
            yield from chunk.to_dict(orient="records")


def _check_geojson_names(path: Path, name_key: str) -> None:
    """
    Reject GeoJSON zones whose name isn't a JSON string.

    OGR types a property with mixed JSON types as a string field, so a name
    like 7 next to "A" would otherwise come back as "7".
    """
    with open(path) as f:
        collection = json.load(f)

    for feature in collection.get("features", []):
        name = (feature.get("properties") or {}).get(name_key)
        if not isinstance(name, str):
            raise MalformedInput(
                f"Feature in {path} doesn't have a string zone name {name_key!r}: {name!r}"
            )


def _warn_if_not_wgs84(gdf: gpd.GeoDataFrame, path: Path) -> None:
    if gdf.crs is not None and gdf.crs.to_epsg() != 4326:
        logger.warning(
            f"{path} is in {gdf.crs}, not EPSG:4326; coordinates are used as-is "
            f"and distances will be wrong"
        )
