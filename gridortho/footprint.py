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

"""Iterative estimation of photo ground footprints."""
from __future__ import annotations

import logging
from typing import Protocol

import numpy as np

from gridortho.errors import DataError
from gridortho.rectification import DifferentialRectification

logger = logging.getLogger(__name__)


class ElevationSource(Protocol):
    """Interface required of a DTM by :class:`FootprintEstimator`."""

    def contains(self, x: float, y: float) -> bool:
        ...

    def elevation(self, x: float, y: float) -> float:
        ...


class Footprint:
    """
    Terrain footprint of a photo.

    :param xyz:
        Terrain (x, y, z) coordinates of the photo corners as a 3-by-4 array, in the order of
        the corners passed to :meth:`FootprintEstimator.estimate`.
    :param iterations:
        Number of refinement iterations used for each corner.
    """

    def __init__(self, xyz: np.ndarray, iterations: tuple[int, ...]):
        self._xyz = xyz
        self._iterations = iterations

    def __repr__(self) -> str:
        return f'{type(self).__name__}(bounds={self.bounds})'

    @property
    def xyz(self) -> np.ndarray:
        """Terrain (x, y, z) corner coordinates as a 3-by-4 array."""
        return self._xyz

    @property
    def iterations(self) -> tuple[int, ...]:
        """Number of refinement iterations used for each corner."""
        return self._iterations

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(left, bottom, right, top) bounds of the corners."""
        return (*self._xyz[:2].min(axis=1).tolist(), *self._xyz[:2].max(axis=1).tolist())

    def polygon(self) -> list[list[float]]:
        """Return the closed (x, y) polygon ring through the corners."""
        ring = self._xyz[:2].T.tolist()
        return ring + ring[:1]


class FootprintEstimator:
    """
    Photo footprint estimator.

    Each photo corner is projected onto a horizontal plane at the elevation of the DTM under the
    camera, and then repeatedly re-projected onto the plane at the DTM elevation under the last
    projected point.  Refinement of a corner stops when the elevation changes by no more than
    ``tolerance``, the elevation is nodata, the point leaves the DTM, or ``max_iter`` iterations
    have been used.  Convergence is not guaranteed.

    :param sampler:
        DTM elevation sampler e.g. an open
        :class:`~gridortho.dtm.TerrainElevationSampler`.
    :param max_iter:
        Maximum number of refinement iterations per corner.
    :param tolerance:
        Elevation change (in terrain units) below which a corner is considered converged.
    """

    def __init__(self, sampler: ElevationSource, max_iter: int = 10, tolerance: float = 0.1):
        if max_iter < 0:
            raise ValueError("'max_iter' should be zero or more.")
        self._sampler = sampler
        self._max_iter = max_iter
        self._tolerance = tolerance

    def nadir_elevation(self, rectification: DifferentialRectification) -> float:
        """Return the DTM elevation under the camera."""
        x, y, _ = rectification.position
        if not self._sampler.contains(x, y):
            raise DataError('The camera nadir lies outside the DTM.')
        z = self._sampler.elevation(x, y)
        if np.isnan(z):
            raise DataError('The DTM elevation under the camera is nodata.')
        return z

    def _refine_corner(
        self, rectification: DifferentialRectification, xy: np.ndarray, z: float
    ) -> tuple[np.ndarray, int]:
        """Return the refined terrain point for the photo ``xy`` point, starting at elevation
        ``z``, and the number of iterations used.
        """
        xyz = rectification.forward_projection(xy, z)[:, 0]
        for iteration in range(self._max_iter):
            if not self._sampler.contains(xyz[0], xyz[1]):
                return xyz, iteration
            z_next = self._sampler.elevation(xyz[0], xyz[1])
            if np.isnan(z_next) or abs(z_next - xyz[2]) <= self._tolerance:
                return xyz, iteration
            xyz = rectification.forward_projection(xy, z_next)[:, 0]
        return xyz, self._max_iter

    def estimate(
        self, rectification: DifferentialRectification, corners: np.ndarray
    ) -> Footprint:
        """
        Estimate the terrain footprint of a photo.

        :param rectification:
            Projector for the photo.
        :param corners:
            Photo (x, y) coordinates of the image corners as a 2-by-4 array, ordered top left,
            top right, bottom right, bottom left.

        :return:
            Footprint with terrain points in the same order as ``corners``.

        :raises DataError:
            If the DTM has no elevation under the camera.
        """
        corners = np.asarray(corners, dtype='float64')
        z0 = self.nadir_elevation(rectification)
        xyz = np.zeros((3, corners.shape[1]))
        iterations = []
        for ci in range(corners.shape[1]):
            xyz[:, ci], num_iter = self._refine_corner(rectification, corners[:, ci], z0)
            iterations.append(num_iter)

        logger.debug(f'Footprint refinement iterations: {iterations}.')
        return Footprint(xyz, tuple(iterations))
