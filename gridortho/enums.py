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

from __future__ import annotations

from enum import Enum

import cv2


class CameraModel(str, Enum):
    """
    Interior (calibration) models.

    Each model has a fixed set of active parameters (:attr:`params`).  Distortion coefficients
    are stored, but not applied when projecting.
    """

    radial1 = 'radial1'
    """Radial model with one distortion coefficient."""
    radial2 = 'radial2'
    """Radial model with two distortion coefficients (Bundler model)."""
    radial3 = 'radial3'
    """Radial model with three radial and two tangential distortion coefficients."""
    simple_radial_fisheye = 'simple_radial_fisheye'
    """Fisheye model with one distortion coefficient."""
    radial_fisheye = 'radial_fisheye'
    """Fisheye model with two distortion coefficients."""
    opencv = 'opencv'
    """OpenCV model with separate x & y focal lengths, and 4 distortion coefficients."""
    opencv_fisheye = 'opencv_fisheye'
    """OpenCV fisheye model."""
    opencv_full = 'opencv_full'
    """OpenCV model with 6 radial and 2 tangential distortion coefficients."""
    simple_pinhole = 'simple_pinhole'
    """Pinhole model with a single focal length."""
    pinhole = 'pinhole'
    """Pinhole model with separate x & y focal lengths."""

    def __repr__(self):
        return self._name_

    def __str__(self):
        return self._name_

    @property
    def params(self) -> tuple[str, ...]:
        """Names of the model's active parameters."""
        return _model_params[self._name_]

    @property
    def display_name(self) -> str:
        """Human readable model name."""
        return _model_display_names[self._name_]

    @classmethod
    def from_name(cls, name: str) -> CameraModel:
        """Return the model with the given enum or display name (case insensitive)."""
        key = name.strip().lower()
        for model in cls:
            if key == model.value or key == model.display_name.lower():
                return model
        raise ValueError(f"Unsupported camera model: '{name}'.")


_model_params = dict(
    radial1=('f', 'cx', 'cy', 'k1'),
    radial2=('f', 'cx', 'cy', 'k1', 'k2'),
    radial3=('f', 'cx', 'cy', 'k1', 'k2', 'k3', 'p1', 'p2'),
    simple_radial_fisheye=('f', 'cx', 'cy', 'k1'),
    radial_fisheye=('f', 'cx', 'cy', 'k1', 'k2'),
    opencv=('fx', 'fy', 'cx', 'cy', 'k1', 'k2', 'p1', 'p2'),
    opencv_fisheye=('fx', 'fy', 'cx', 'cy', 'k1', 'k2', 'k3', 'k4'),
    opencv_full=('fx', 'fy', 'cx', 'cy', 'k1', 'k2', 'k3', 'k4', 'k5', 'k6', 'p1', 'p2'),
    simple_pinhole=('f', 'cx', 'cy'),
    pinhole=('fx', 'fy', 'cx', 'cy'),
)

_model_display_names = dict(
    radial1='Radial1',
    radial2='Radial',
    radial3='Radial3',
    simple_radial_fisheye='Simple Radial Fisheye',
    radial_fisheye='Radial Fisheye',
    opencv='OpenCV',
    opencv_fisheye='OpenCV Fisheye',
    opencv_full='OpenCV Full',
    simple_pinhole='Simple Pinhole',
    pinhole='Pinhole',
)


class Interp(str, Enum):
    """Interpolation types."""

    nearest = 'nearest'
    """Nearest neighbor interpolation."""
    bilinear = 'bilinear'
    """Bilinear interpolation."""
    cubic = 'cubic'
    """Bicubic interpolation."""
    lanczos = 'lanczos'
    """Lanczos windowed sinc interpolation."""

    def __repr__(self):
        return self._name_

    def __str__(self):
        return self._name_

    def to_cv(self) -> int:
        """Convert to OpenCV interpolation type."""
        name_to_cv = dict(
            bilinear=cv2.INTER_LINEAR,
            cubic=cv2.INTER_CUBIC,
            lanczos=cv2.INTER_LANCZOS4,
            nearest=cv2.INTER_NEAREST,
        )
        return name_to_cv[self._name_]


class Compress(str, Enum):
    """Compression types."""

    jpeg = 'jpeg'
    """JPEG compression."""
    deflate = 'deflate'
    """Deflate compression."""
    lzw = 'lzw'
    """LZW compression."""

    def __repr__(self):
        return self._name_

    def __str__(self):
        return self._name_


class Driver(str, Enum):
    """Raster format drivers."""

    gtiff = 'gtiff'
    """GeoTIFF."""
    cog = 'cog'
    """Cloud Optimised GeoTIFF."""

    def __repr__(self):
        return self._name_

    def __str__(self):
        return self._name_


class PhotoState(str, Enum):
    """Processing state of a photo in a batch."""

    init = 'init'
    """Not yet processed."""
    footprint_computed = 'footprint_computed'
    """Ground footprint estimated."""
    ortho_allocated = 'ortho_allocated'
    """Ortho georeferencing and buffer created."""
    grid_processed = 'grid_processed'
    """All DTM cells rectified into the ortho buffer."""
    written = 'written'
    """Ortho image and footprint written."""
    failed = 'failed'
    """Processing failed, and was abandoned."""

    def __repr__(self):
        return self._name_

    def __str__(self):
        return self._name_
