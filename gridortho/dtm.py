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

"""Windowed elevation reads from a DTM raster."""
from __future__ import annotations

import logging
from contextlib import ExitStack
from os import PathLike
from typing import Sequence

import numpy as np
import rasterio as rio
from fsspec.core import OpenFile
from rasterio.crs import CRS
from rasterio.errors import RasterioIOError, WindowError
from rasterio.windows import Window

from gridortho import common
from gridortho.errors import DataError, DatasetIOError, ResourceError

logger = logging.getLogger(__name__)


class TerrainElevationSampler:
    """
    Elevation sampler for a DTM raster.

    Elevations are returned as float64 with nodata as NaN.  Nodata is taken from the DTM's mask
    (i.e. its nodata value or internal mask), and optionally from an explicit ``nodata`` value.

    Use as a context manager, or call :meth:`open` and :meth:`close`::

        with TerrainElevationSampler('dtm.tif') as sampler:
            z = sampler.elevation(x, y)

    :param dtm_file:
        DTM file.  Can be a path or URI string, an :class:`~fsspec.core.OpenFile` object in
        binary mode (``'rb'``), or a dataset reader.
    :param band:
        Index of the DTM band to use (1-based).
    :param nodata:
        Elevation value to treat as nodata, in addition to the DTM mask.  If set to ``None``
        (the default), only the DTM mask is used.
    """

    def __init__(
        self,
        dtm_file: str | PathLike | OpenFile | rio.DatasetReader,
        band: int = 1,
        nodata: float | None = None,
    ):
        self._dtm_file = dtm_file
        self._band = band
        self._nodata = nodata
        self._exit_stack = ExitStack()
        self._im = None

    def __enter__(self) -> TerrainElevationSampler:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def open(self) -> None:
        """Open the DTM."""
        if self.is_open:
            return
        dtm_name = common.get_filename(self._dtm_file)
        try:
            self._im = self._exit_stack.enter_context(common.open_raster(self._dtm_file, 'r'))
        except (OSError, RasterioIOError, TypeError) as ex:
            self.close()
            raise ResourceError(f"Could not open DTM '{dtm_name}': {str(ex)}") from ex

        if self._band <= 0 or self._band > self._im.count:
            count = self._im.count
            self.close()
            raise ResourceError(
                f"DTM band {self._band} is invalid for '{dtm_name}' with {count} band(s)."
            )
        logger.debug(f"Opened DTM '{dtm_name}' with shape {self._im.shape}.")

    def close(self) -> None:
        """Close the DTM."""
        self._exit_stack.close()
        self._im = None

    @property
    def is_open(self) -> bool:
        """Whether the DTM is open."""
        return self._im is not None and not self._im.closed

    def _get_im(self) -> rio.DatasetReader:
        if not self.is_open:
            raise DatasetIOError('The DTM is not open.')
        return self._im

    @property
    def transform(self) -> rio.Affine:
        """DTM pixel to terrain transform."""
        return self._get_im().transform

    @property
    def crs(self) -> CRS | None:
        """DTM CRS."""
        return self._get_im().crs

    @property
    def shape(self) -> tuple[int, int]:
        """DTM (height, width) in pixels."""
        return self._get_im().shape

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """DTM (left, bottom, right, top) bounds in terrain coordinates."""
        return tuple(self._get_im().bounds)

    def _to_nan(self, array: np.ma.MaskedArray) -> np.ndarray:
        """Convert a masked DTM array to float64 with nodata as NaN."""
        array = array.astype('float64', copy=False).filled(np.nan)
        if self._nodata is not None and not np.isnan(self._nodata):
            array[array == self._nodata] = np.nan
        return array

    def _read(self, window: Window) -> np.ma.MaskedArray:
        im = self._get_im()
        try:
            return im.read(self._band, window=window, masked=True)
        except RasterioIOError as ex:
            raise DatasetIOError(
                f"Could not read DTM '{common.get_filename(im)}': {str(ex)}"
            ) from ex

    def contains(self, x: float, y: float) -> bool:
        """Whether the terrain (x, y) point lies inside the DTM extent."""
        im = self._get_im()
        col, row = ~im.transform * (x, y)
        return bool((0 <= col < im.width) and (0 <= row < im.height))

    def elevation(self, x: float, y: float) -> float:
        """
        Return the elevation of the DTM pixel containing the terrain (x, y) point.

        Reads a single pixel window.  Returns NaN if the pixel is nodata.

        :raises DataError:
            If the point lies outside the DTM extent.
        """
        if not self.contains(x, y):
            raise DataError(f'Point ({x:.3f}, {y:.3f}) lies outside the DTM extent.')
        col, row = ~self._get_im().transform * (x, y)
        array = self._read(Window(int(np.floor(col)), int(np.floor(row)), 1, 1))
        return float(self._to_nan(array)[0, 0])

    def read_bounds(self, bounds: Sequence[float]) -> tuple[np.ndarray, rio.Affine]:
        """
        Read the DTM window containing the given terrain bounds.

        :param bounds:
            (left, bottom, right, top) bounds in terrain coordinates.

        :return:
            Elevation array (float64, nodata as NaN) and its pixel to terrain transform.  The
            window is expanded to whole pixels and clipped to the DTM extent.

        :raises DataError:
            If the bounds lie outside the DTM extent.
        """
        im = self._get_im()
        full_win = Window(0, 0, im.width, im.height)
        # expand to whole pixels
        win = im.window(*bounds)
        col0, row0 = np.floor((win.col_off, win.row_off)).astype('int')
        col1, row1 = np.ceil((win.col_off + win.width, win.row_off + win.height)).astype('int')
        win = Window(int(col0), int(row0), int(col1 - col0), int(row1 - row0))
        try:
            win = full_win.intersection(win)
        except WindowError as ex:
            raise DataError(f'Bounds {tuple(bounds)} lie outside the DTM extent.') from ex

        array = self._to_nan(self._read(win))
        return array, im.window_transform(win)
