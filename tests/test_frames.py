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

import numpy as np
import pytest
import rasterio as rio

from gridortho import frames
from gridortho.errors import GeometryError


def test_pixel_to_photo_transform():
    """Test pixel to photo coordinates are centred on the principal point with y up."""
    tform = frames.pixel_to_photo_transform((100, 75))
    assert tform * (100, 75) == pytest.approx((0, 0))
    assert tform * (0, 0) == pytest.approx((-100, 75))
    assert tform * (200, 150) == pytest.approx((100, -75))
    assert ~tform * (100, -75) == pytest.approx((200, 150))


def test_ortho_transform_shape():
    """Test the ortho transform and shape for bounds and a resolution."""
    bounds = (100.0, 200.0, 150.5, 230.0)
    tform = frames.ortho_transform(bounds, 0.5)
    assert tform * (0, 0) == pytest.approx((100, 230))
    assert (tform.a, tform.e) == (0.5, -0.5)
    assert frames.ortho_shape(bounds, 0.5) == (60, 101)


def test_ortho_shape_min():
    """Test the ortho shape is at least one pixel."""
    assert frames.ortho_shape((0, 0, 0.1, 0.1), 1) == (1, 1)


def test_image_corners():
    """Test image corners are top left, top right, bottom right, bottom left."""
    corners = frames.image_corners((200, 150))
    assert corners.shape == (2, 4)
    assert corners.T.tolist() == [[0, 0], [200, 0], [200, 150], [0, 150]]


def test_apply():
    """Test ``apply()`` transforms 2-by-N arrays."""
    tform = rio.Affine(2, 0, 10, 0, -3, 20)
    xy = np.array([[0, 1, 2], [0, 1, 2]])
    assert frames.apply(tform, xy) == pytest.approx(np.array([[10, 12, 14], [20, 17, 14]]))
    assert frames.apply(~tform, frames.apply(tform, xy)) == pytest.approx(xy)


def test_fit_affine():
    """Test fitting an affine transform to transformed points."""
    tform = rio.Affine(0.5, 0.2, 100, -0.1, -0.6, 200)
    src_xy = frames.image_corners((200, 150))
    fit_tform = frames.fit_affine(src_xy, frames.apply(tform, src_xy))
    assert fit_tform[:6] == pytest.approx(tform[:6])


def test_fit_affine_error():
    """Test ``fit_affine()`` errors for collinear points and mismatched arrays."""
    xy = np.array([[0, 1, 2, 3], [0, 1, 2, 3]])
    with pytest.raises(GeometryError):
        frames.fit_affine(xy, xy)
    with pytest.raises(ValueError):
        frames.fit_affine(xy, xy[:, :3])


@pytest.mark.parametrize(
    'tform, gsd',
    [
        (rio.Affine(1, 0, 0, 0, -1, 0), 1),
        (rio.Affine(2, 0, 0, 0, -4, 0), 3),
        (rio.Affine.rotation(30) * rio.Affine.scale(0.5), 0.5),
    ],
)
def test_affine_gsd(tform: rio.Affine, gsd: float):
    """Test ``affine_gsd()`` is the mean of the transform x and y scales."""
    assert frames.affine_gsd(tform) == pytest.approx(gsd)
