"""
Output writers for disaggregated trips.

GeoJSON is streamed one feature at a time, so memory stays flat no matter how
many trips are produced. Other formats go through geopandas and are buffered
until the writer is closed.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import IO, Optional, Union

import geopandas as gpd

from .data import GEOJSON_SUFFIXES
from .engine import Trip

logger = logging.getLogger(__name__)

# File extension -> GDAL driver for the buffered writer
GEO_FILE_DRIVERS = {
    ".fgb": "FlatGeobuf",
    ".gpkg": "GPKG",
    ".shp": "ESRI Shapefile",
}


class GeoJsonWriter:
    """
    Stream trips into a GeoJSON FeatureCollection.

    The closing brackets are only written on a clean close, so a run that
    fails halfway leaves a file that won't parse rather than one that looks
    complete.
    """

    def __init__(self, path_or_file: Union[Path, str, IO[str]]):
        if hasattr(path_or_file, "write"):
            self.path = None
            self._file = path_or_file
            self._owns_file = False
        else:
            self.path = Path(path_or_file)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "w")
            self._owns_file = True

        self._file.write('{"type":"FeatureCollection","features":[\n')
        self.n_written = 0
        self._closed = False

    def write(self, trip: Trip) -> None:
        if self.n_written:
            self._file.write(",\n")
        json.dump(trip.to_feature(), self._file, separators=(",", ":"))
        self.n_written += 1

    def close(self) -> None:
        if self._closed:
            return
        self._file.write("\n]}\n")
        self._finish()
        if self.path is not None:
            logger.info(f"Wrote {self.n_written} trips to {self.path}")

    def _finish(self) -> None:
        self._closed = True
        if self._owns_file:
            self._file.close()

    def __enter__(self) -> GeoJsonWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        elif not self._closed:
            self._finish()


class GeoFileWriter:
    """
    Collect trips and write them with GeoDataFrame.to_file on close.

    Holds every trip in memory; use GeoJsonWriter for very large outputs.
    """

    def __init__(self, path: Path | str, driver: Optional[str] = None):
        self.path = Path(path)
        self.driver = driver or GEO_FILE_DRIVERS.get(self.path.suffix.lower())
        self._records: list[dict] = []
        self._closed = False

    @property
    def n_written(self) -> int:
        return len(self._records)

    def write(self, trip: Trip) -> None:
        record = dict(trip.properties)
        record["geometry"] = trip.geometry
        self._records.append(record)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self._records:
            gdf = gpd.GeoDataFrame(self._records, geometry="geometry", crs="EPSG:4326")
        else:
            logger.warning(f"No trips to write to {self.path}")
            gdf = gpd.GeoDataFrame(columns=["geometry"], geometry="geometry", crs="EPSG:4326")
        gdf.to_file(self.path, driver=self.driver)
        logger.info(f"Wrote {len(self._records)} trips to {self.path}")

    def __enter__(self) -> GeoFileWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self._closed = True


def open_sink(path: Path | str) -> Union[GeoJsonWriter, GeoFileWriter]:
    """
    Pick a writer from the output file extension.

    Raises:
        ValueError: If the extension isn't a supported format
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in GEOJSON_SUFFIXES:
        return GeoJsonWriter(path)
    if suffix in GEO_FILE_DRIVERS:
        return GeoFileWriter(path)
    raise ValueError(
        f"Unsupported output format {suffix!r}; "
        f"use one of {sorted(GEOJSON_SUFFIXES + tuple(GEO_FILE_DRIVERS))}"
    )
