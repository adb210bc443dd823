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

"""
Affine maps between pixel, photo, terrain and ortho coordinate frames.

Maps are :class:`~rasterio.Affine` transforms in the *direct* sense (e.g. pixel to photo, DEM
pixel to terrain, ortho pixel to terrain).  Callers apply the inverse explicitly with ``~``.
Pixel coordinates are continuous, with (0, 0) the top left corner of the top left pixel.
Point arrays have coordinates along the first dimension, e.g. 2-by-N (x, y) arrays.
"""
from __future__ import annotations

from typing import Sequence

import numpy as np
import rasterio as rio
from rasterio.transform import from_origin

from gridortho.errors import GeometryError


def pixel_to_photo_transform(principal_point: Sequence[float]) -> rio.Affine:
    """Return the pixel to photo transform for the given (x, y) principal point.  Photo
    coordinates are centered on the principal point with y pointing up.
    """
    cx, cy = principal_point
    return rio.Affine(1.0, 0.0, -cx, 0.0, -1.0, cy)


def ortho_transform(bounds: Sequence[float], resolution: float) -> rio.Affine:
    """Return the ortho pixel to terrain transform for the given (left, bottom, right, top)
    ``bounds`` and ``resolution``.
    """
    return from_origin(bounds[0], bounds[3], resolution, resolution)


def ortho_shape(bounds: Sequence[float], resolution: float) -> tuple[int, int]:
    """Return the ortho (height, width) in pixels for the given ``bounds`` and ``resolution``."""
    width = max(1, int(np.round((bounds[2] - bounds[0]) / resolution)))
    height = max(1, int(np.round((bounds[3] - bounds[1]) / resolution)))
    return height, width


def image_corners(im_size: Sequence[int]) -> np.ndarray:
    """Return the 2-by-4 array of (x, y) pixel coordinates of the top left, top right,
    bottom right and bottom left corners of an image with (width, height) ``im_size``.
    """
    w, h = im_size
    return np.array([[0.0, w, w, 0.0], [0.0, 0.0, h, h]])


def apply(tform: rio.Affine, xy: np.ndarray) -> np.ndarray:
    """Return the 2-by-N array of ``xy`` points transformed by ``tform``."""
    return np.array(tform * (xy[0], xy[1]))


def fit_affine(src_xy: np.ndarray, dst_xy: np.ndarray) -> rio.Affine:
    """
    Least squares fit of an affine transform between two sets of points.

    :param src_xy:
        Source (x, y) points as a 2-by-N array, with N >= 3.
    :param dst_xy:
        Destination (x, y) points as a 2-by-N array.

    :return:
        Affine transform from source to destination points.
    """
    src_xy = np.asarray(src_xy, dtype='float64')
    dst_xy = np.asarray(dst_xy, dtype='float64')
    if src_xy.shape != dst_xy.shape or src_xy.shape[0] != 2 or src_xy.shape[1] < 3:
        raise ValueError("'src_xy' and 'dst_xy' should be matching 2-by-N arrays with N >= 3.")

    A = np.column_stack((src_xy.T, np.ones(src_xy.shape[1])))
    coeffs, _, rank, _ = np.linalg.lstsq(A, dst_xy.T, rcond=None)
    if rank < 3:
        raise GeometryError('Cannot fit an affine transform to collinear points.')
    (a, d), (b, e), (c, f) = coeffs
    return rio.Affine(a, b, c, d, e, f)


def affine_gsd(tform: rio.Affine) -> float:
    """Return the mean of the x and y scales of an affine transform."""
    x_scale = np.sqrt(tform.a**2 + tform.d**2)
    y_scale = np.sqrt(tform.b**2 + tform.e**2)
    return float((x_scale + y_scale) / 2)
