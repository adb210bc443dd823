# Copyright The Gridortho Contributors.
#
# This file is part of Gridortho.
#
# Gridortho is free software: you can redistribute it and/or modify it under the terms of the GNU
# Affero General Public License as published by the Free Software Foundation, either version 3 of
# the License, or (at your option) any later version.
#
# Gridortho is distributed in the hope that it will be useful, but WITHOUT ANY WARRANTY; without
# even the implied warranty of MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU
# Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License along with Gridortho.
# If not, see <https://www.gnu.org/licenses/>.

"""Footprint vector layers and their GeoJSON writer."""
from __future__ import annotations

import json
import logging
from contextlib import ExitStack
from os import PathLike
from typing import Any, IO, Sequence

from fsspec.core import OpenFile
from rasterio.crs import CRS
from rasterio.errors import CRSError

from gridortho import common
from gridortho.errors import DatasetIOError, GridOrthoError, ResourceError

logger = logging.getLogger(__name__)


class VectorLayer:
    """
    Layer of polygon features with typed attributes.

    :param name:
        Layer name.
    :param fields:
        Attribute field types by name e.g. ``dict(name=str)``.
    """

    def __init__(self, name: str, fields: dict[str, type]):
        self._name = name
        self._fields = dict(fields)
        self._features = []

    def __len__(self) -> int:
        return len(self._features)

    @property
    def name(self) -> str:
        """Layer name."""
        return self._name

    @property
    def fields(self) -> dict[str, type]:
        """Attribute field types by name."""
        return self._fields

    @property
    def features(self) -> list[tuple[list[list[float]], dict[str, Any]]]:
        """Ordered list of (polygon ring, attributes) features."""
        return self._features

    def add_feature(self, ring: Sequence[Sequence[float]], **attrs) -> None:
        """
        Append a polygon feature.

        :param ring:
            Closed exterior ring of (x, y) polygon vertices.
        :param attrs:
            Attribute values for each of the layer fields.
        """
        if set(attrs) != set(self._fields):
            raise GridOrthoError(
                f'Attributes {sorted(attrs)} do not match the layer fields {sorted(self._fields)}.'
            )
        for key, value in attrs.items():
            if not isinstance(value, self._fields[key]):
                raise GridOrthoError(
                    f"'{key}' attribute should be a {self._fields[key].__name__} value."
                )
        ring = [[float(x), float(y)] for x, y in ring]
        if len(ring) < 4 or ring[0] != ring[-1]:
            raise GridOrthoError('Polygon ring should be closed, with at least 4 vertices.')
        self._features.append((ring, attrs))

    def to_geojson(self, crs: CRS | None = None) -> dict:
        """Return the layer as a GeoJSON FeatureCollection dictionary."""
        feat_list = []
        for ring, attrs in self._features:
            geom_dict = dict(type='Polygon', coordinates=[ring])
            feat_dict = dict(type='Feature', properties=dict(attrs), geometry=geom_dict)
            feat_list.append(feat_dict)

        json_dict = dict(type='FeatureCollection', name=self._name)
        if crs:
            # legacy named crs member, read by GDAL / QGIS
            epsg = crs.to_epsg()
            crs_name = f'urn:ogc:def:crs:EPSG::{epsg}' if epsg else crs.to_string()
            json_dict['crs'] = dict(type='name', properties=dict(name=crs_name))
        json_dict['features'] = feat_list
        return json_dict


class GeoJsonWriter:
    """
    GeoJSON vector layer writer.

    The file is opened (and created) by :meth:`open` so that failures to create it are found
    before any processing.  Use as a context manager, or call :meth:`open` and :meth:`close`.

    :param file:
        File to write.  Can be a path or URI string, an :class:`~fsspec.core.OpenFile` object or
        a file object, opened in text mode (``'wt'``).
    :param crs:
        CRS of the polygon coordinates as an EPSG, WKT or proj4 string; or
        :class:`~rasterio.crs.CRS` object.
    :param overwrite:
        Whether to overwrite the file if it exists.
    """

    def __init__(
        self,
        file: str | PathLike | OpenFile | IO[str],
        crs: str | CRS | None = None,
        overwrite: bool = False,
    ):
        self._file = file
        self._overwrite = overwrite
        self._crs = None
        self._exit_stack = ExitStack()
        self._file_obj = None
        self._written = False
        self.crs = crs

    def __enter__(self) -> GeoJsonWriter:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def crs(self) -> CRS | None:
        """CRS of the polygon coordinates."""
        return self._crs

    @crs.setter
    def crs(self, value: str | CRS | None):
        try:
            self._crs = CRS.from_string(value) if isinstance(value, str) else value
        except CRSError as ex:
            raise GridOrthoError(f"Could not interpret 'crs': {str(ex)}") from ex

    @property
    def is_open(self) -> bool:
        """Whether the file is open."""
        return self._file_obj is not None

    def open(self) -> None:
        """Open the file for writing."""
        if self.is_open:
            return
        try:
            self._file_obj = self._exit_stack.enter_context(
                common.open_text(self._file, 'wt', overwrite=self._overwrite)
            )
        except (OSError, ValueError, TypeError) as ex:
            self.close()
            filename = common.get_filename(self._file)
            raise ResourceError(f"Could not create '{filename}': {str(ex)}") from ex

    # the file is created on opening
    create = open

    def write(self, layer: VectorLayer) -> None:
        """Write a layer.  A GeoJSON file holds a single layer, so this can be called once."""
        if not self.is_open:
            raise DatasetIOError('The vector file is not open.')
        if self._written:
            raise DatasetIOError('A layer has already been written to the vector file.')
        try:
            json.dump(layer.to_geojson(self._crs), self._file_obj, indent=4)
        except OSError as ex:
            raise DatasetIOError(f'Could not write vector layer: {str(ex)}') from ex
        self._written = True
        logger.debug(f"Wrote {len(layer)} feature(s) to layer '{layer.name}'.")

    def close(self) -> None:
        """Close the file."""
        self._exit_stack.close()
        self._file_obj = None
