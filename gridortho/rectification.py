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

"""Collinearity projection between photo and terrain coordinates."""
from __future__ import annotations

import numpy as np

from gridortho.camera import Photo
from gridortho.errors import GeometryError


class DifferentialRectification:
    """
    Forward and backward collinearity projection for a single photo.

    :param rotation:
        3-by-3 rotation matrix from terrain to camera axes.
    :param position:
        Camera (x, y, z) position in terrain coordinates.
    :param focal:
        Focal length in pixels.
    """

    def __init__(self, rotation: np.ndarray, position: np.ndarray, focal: float):
        self._R = np.array(rotation, dtype='float64')
        self._C = np.array(position, dtype='float64').reshape(3, 1)
        self._f = float(focal)
        if self._f <= 0:
            raise GeometryError(f'Focal length should be positive, not {self._f}.')

    @classmethod
    def from_photo(cls, photo: Photo) -> DifferentialRectification:
        """Create a projector from a photo's pose and calibration."""
        return cls(photo.pose.rotation, photo.pose.position, photo.camera.focal)

    @property
    def position(self) -> np.ndarray:
        """Camera (x, y, z) position in terrain coordinates."""
        return self._C[:, 0]

    @staticmethod
    def _check_denom(denom: np.ndarray, desc: str) -> None:
        if np.any(denom == 0):
            raise GeometryError(f'{desc} is parallel to the projection plane.')

    def forward_projection(self, xy: np.ndarray, z: float | np.ndarray) -> np.ndarray:
        """
        Project photo points onto horizontal terrain planes.

        :param xy:
            Photo (x, y) coordinates as a 2-by-N array.
        :param z:
            Terrain plane elevation(s) as a scalar or N element array.

        :return:
            Terrain (x, y, z) coordinates as a 3-by-N array.  z values are those passed in.
        """
        xy = np.asarray(xy, dtype='float64').reshape(2, -1)
        z = np.broadcast_to(np.asarray(z, dtype='float64').reshape(-1), (xy.shape[1],))
        R, C, f = self._R, self._C, self._f
        x, y = xy

        denom = R[0, 2] * x + R[1, 2] * y - R[2, 2] * f
        self._check_denom(denom, 'Camera ray')
        scale = (z - C[2]) / denom
        X = C[0] + scale * (R[0, 0] * x + R[1, 0] * y - R[2, 0] * f)
        Y = C[1] + scale * (R[0, 1] * x + R[1, 1] * y - R[2, 1] * f)
        return np.array((X, Y, z))

    def in_front(self, xyz: np.ndarray) -> np.ndarray:
        """Return a boolean mask of the 3-by-N terrain ``xyz`` points that lie in front of the
        camera.
        """
        xyz = np.asarray(xyz, dtype='float64').reshape(3, -1)
        return self._R[2].dot(xyz - self._C) < 0

    def backward_projection(self, xyz: np.ndarray) -> np.ndarray:
        """
        Project terrain points into the photo.

        :param xyz:
            Terrain (x, y, z) coordinates as a 3-by-N array.

        :return:
            Photo (x, y) coordinates as a 2-by-N array.
        """
        xyz = np.asarray(xyz, dtype='float64').reshape(3, -1)
        # camera axes coordinates of the terrain points
        xyz_ = self._R.dot(xyz - self._C)
        self._check_denom(xyz_[2], 'Terrain point')
        return -self._f * xyz_[:2] / xyz_[2]
