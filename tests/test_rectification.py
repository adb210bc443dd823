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

from gridortho.camera import CameraPose, Photo
from gridortho.errors import GeometryError
from gridortho.rectification import DifferentialRectification


@pytest.mark.parametrize(
    'opk, z',
    [
        ((0.0, 0.0, 0.0), 0.0),
        ((np.radians(5), np.radians(-3), np.radians(30)), 100.0),
        ((np.radians(-15), np.radians(10), np.radians(-120)), -20.0),
        ((np.radians(20), np.radians(20), np.radians(200)), 250.0),
    ],
)
def test_projection_round_trip(position: tuple, focal: float, opk: tuple, z: float):
    """Test backward_projection(forward_projection(xy, z)) reproduces xy."""
    pose = CameraPose.from_opk(position, opk)
    rect = DifferentialRectification(pose.rotation, pose.position, focal)
    xy = np.array(
        [[-100.0, 100.0, 100.0, -100.0, 0.0, 37.5], [75.0, 75.0, -75.0, -75.0, 0.0, -12.25]]
    )

    xyz = rect.forward_projection(xy, z)
    assert xyz.shape == (3, xy.shape[1])
    assert xyz[2] == pytest.approx(z)
    assert rect.backward_projection(xyz) == pytest.approx(xy, abs=1e-6)


@pytest.mark.parametrize('kappa', [0.0, np.radians(45), np.radians(-90), np.radians(180)])
@pytest.mark.parametrize('z', [-50.0, 0.0, 123.4])
def test_forward_projection_nadir(position: tuple, focal: float, kappa: float, z: float):
    """Test the principal point projects to the point below the camera with a nadir pose."""
    pose = CameraPose.from_opk(position, (0.0, 0.0, kappa))
    rect = DifferentialRectification(pose.rotation, pose.position, focal)
    xyz = rect.forward_projection(np.zeros((2, 1)), z)
    assert xyz[:, 0] == pytest.approx((position[0], position[1], z))


def test_forward_projection_scale(position: tuple, focal: float):
    """Test a nadir forward projection scales photo coordinates by height over focal length."""
    rect = DifferentialRectification(np.eye(3), position, focal)
    xy = np.array([[10.0, -20.0], [5.0, 40.0]])
    z = 100.0
    xyz = rect.forward_projection(xy, z)

    scale = (position[2] - z) / focal
    assert xyz[0] == pytest.approx(position[0] + scale * xy[0])
    assert xyz[1] == pytest.approx(position[1] + scale * xy[1])


def test_forward_projection_z_array(position: tuple, focal: float):
    """Test forward_projection accepts an elevation per point."""
    rect = DifferentialRectification(np.eye(3), position, focal)
    xy = np.array([[10.0, 10.0], [0.0, 0.0]])
    xyz = rect.forward_projection(xy, np.array([0.0, 250.0]))
    assert xyz[2] == pytest.approx([0.0, 250.0])
    # the higher point is closer to the camera, so closer to nadir
    assert abs(xyz[0, 1] - position[0]) < abs(xyz[0, 0] - position[0])


def test_forward_projection_zero_denom(position: tuple, focal: float):
    """Test forward_projection raises a GeometryError when a ray is parallel to the plane."""
    # camera viewing horizontally along the terrain y axis
    R = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0], [0.0, -1.0, 0.0]])
    rect = DifferentialRectification(R, position, focal)
    with pytest.raises(GeometryError) as ex:
        rect.forward_projection(np.zeros((2, 1)), 0.0)
    assert 'parallel' in str(ex.value)


def test_backward_projection_zero_denom(position: tuple, focal: float):
    """Test backward_projection raises a GeometryError for a point in the camera plane."""
    rect = DifferentialRectification(np.eye(3), position, focal)
    xyz = np.array([[position[0] + 10.0], [position[1]], [position[2]]])
    with pytest.raises(GeometryError):
        rect.backward_projection(xyz)


def test_in_front(position: tuple, focal: float):
    """Test in_front distinguishes points below and above a nadir camera."""
    rect = DifferentialRectification(np.eye(3), position, focal)
    xyz = np.array(
        [[position[0]] * 3, [position[1]] * 3, [position[2] - 100, position[2] + 100, np.nan]]
    )
    assert rect.in_front(xyz).tolist() == [True, False, False]


def test_focal_error(position: tuple):
    """Test a non-positive focal length raises a GeometryError."""
    with pytest.raises(GeometryError):
        DifferentialRectification(np.eye(3), position, 0.0)


def test_from_photo(nadir_photo: Photo):
    """Test creating a projector from a photo."""
    rect = DifferentialRectification.from_photo(nadir_photo)
    assert rect.position == pytest.approx(nadir_photo.pose.position)
    xyz = rect.forward_projection(np.array([[100.0], [0.0]]), 0.0)
    scale = nadir_photo.pose.position[2] / nadir_photo.camera.focal
    assert xyz[0, 0] == pytest.approx(nadir_photo.pose.position[0] + 100.0 * scale)
