"""
Spatial index assigning candidate subpoints to zones.

All points go into one KD-tree. Each zone then does a coarse bounding-box
query against the tree followed by an exact containment test, instead of
testing every point against every zone.
"""

from __future__ import annotations

import logging

import numpy as np
import shapely
from scipy.spatial import cKDTree
from shapely.geometry.base import BaseGeometry

from .data import CandidatePoints

logger = logging.getLogger(__name__)

# Relative padding on the L-inf query radius so floating-point error in the
# box center can't drop points lying just inside the box
_RADIUS_PAD = 1e-9


def build_index(
    points: CandidatePoints,
    zones: dict[str, BaseGeometry],
) -> dict[str, CandidatePoints]:
    """
    Find the subpoints strictly inside each zone.

    Points on a zone's boundary are excluded. A point inside several
    overlapping zones is assigned to every one of them. Points with a
    non-positive weight can never be sampled and are dropped up front.

    Args:
        points: Global pool of candidate subpoints
        zones: Dict mapping zone id -> polygon

    Returns:
        Dict mapping every zone id -> CandidatePoints inside it (possibly empty),
        in the order the points were given
    """
    positive = points.weights > 0
    n_dropped = int((~positive).sum())
    if n_dropped:
        logger.warning(f"Ignoring {n_dropped} subpoints with a non-positive weight")
        points = points.subset(positive)

    if len(points) == 0:
        logger.warning("No usable subpoints; every zone gets an empty pool")
        return {zone_id: CandidatePoints.empty() for zone_id in zones}

    tree = cKDTree(points.coords)

    index = {}
    for zone_id, polygon in zones.items():
        inside = _points_in_polygon(tree, points.coords, polygon)
        index[zone_id] = points.subset(inside)

    n_empty = sum(1 for pool in index.values() if len(pool) == 0)
    logger.info(
        f"Matched {len(points)} subpoints to {len(index)} zones "
        f"({n_empty} zones have no subpoints)"
    )
    return index


def _points_in_polygon(
    tree: cKDTree,
    coords: np.ndarray,
    polygon: BaseGeometry,
) -> np.ndarray:
    """Return sorted indices of coords strictly inside polygon."""
    if polygon.is_empty:
        return np.empty(0, dtype=int)

    minx, miny, maxx, maxy = polygon.bounds
    center = ((minx + maxx) / 2.0, (miny + maxy) / 2.0)
    radius = max(maxx - minx, maxy - miny) / 2.0
    radius += radius * _RADIUS_PAD + _RADIUS_PAD

    # Chebyshev ball: the smallest square around the bounding box
    candidates = np.asarray(tree.query_ball_point(center, r=radius, p=np.inf), dtype=int)
    if candidates.size == 0:
        return candidates
    candidates.sort()

    x = coords[candidates, 0]
    y = coords[candidates, 1]
    in_box = (x >= minx) & (x <= maxx) & (y >= miny) & (y <= maxy)
    candidates, x, y = candidates[in_box], x[in_box], y[in_box]

    # contains_xy excludes points on the boundary
    shapely.prepare(polygon)
    inside = shapely.contains_xy(polygon, x, y)
    return candidates[inside]


def get_index_stats(index: dict[str, CandidatePoints]) -> dict:
    """
    Compute summary statistics for a zone -> subpoints index.

    Args:
        index: Output of build_index

    Returns:
        Dict with index statistics
    """
    if not index:
        return {
            "n_zones": 0,
            "n_zones_without_points": 0,
            "n_assignments": 0,
        }

    counts = np.array([len(pool) for pool in index.values()])

    return {
        "n_zones": len(index),
        "n_zones_without_points": int((counts == 0).sum()),
        "n_assignments": int(counts.sum()),
        "min_points_per_zone": int(counts.min()),
        "mean_points_per_zone": float(counts.mean()),
        "max_points_per_zone": int(counts.max()),
    }
