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

"""Camera interior (calibration) and exterior (pose) parameters, and the photo they belong to."""
from __future__ import annotations

from os import PathLike
from pathlib import Path
from typing import Sequence

import numpy as np
from fsspec.core import OpenFile

from gridortho.enums import CameraModel
from gridortho.errors import ParamError


class Calibration:
    """
    Camera interior parameters for one of the :class:`~gridortho.enums.CameraModel` models.

    Only the model's active parameters can be supplied.  Active parameters that are not
    supplied, and all inactive parameters, read as 0.  Distortion coefficients are stored but
    not used for projection.

    :param model:
        Camera model name, display name or :class:`~gridortho.enums.CameraModel` member.
    :param kwargs:
        Parameter values by name e.g. ``f``, ``cx``, ``cy``, ``k1``.  Focal lengths and principal
        point coordinates are in pixels, with (0, 0) the top left corner of the top left pixel.
    """

    _all_params = (
        'f', 'fx', 'fy', 'cx', 'cy', 'k1', 'k2', 'k3', 'k4', 'k5', 'k6', 'p1', 'p2'
    )  # fmt: skip

    def __init__(self, model: str | CameraModel, **kwargs):
        if not isinstance(model, CameraModel):
            try:
                model = CameraModel.from_name(str(model))
            except ValueError as ex:
                raise ParamError(str(ex)) from ex

        unknown = set(kwargs).difference(model.params)
        if len(unknown) > 0:
            raise ParamError(
                f"Parameter(s) {sorted(unknown)} are not supported by the '{model}' model.  "
                f"Supported parameters are {list(model.params)}."
            )

        params = dict.fromkeys(self._all_params, 0.0)
        for key, value in kwargs.items():
            try:
                params[key] = float(value)
            except (TypeError, ValueError) as ex:
                raise ParamError(f"'{key}' value should be a number, not '{value}'.") from ex

        self._model = model
        self._params = params

    def __repr__(self) -> str:
        param_str = ', '.join(f'{k}={self._params[k]}' for k in self._model.params)
        return f'{type(self).__name__}({self._model!r}, {param_str})'

    def __eq__(self, other) -> bool:
        if not isinstance(other, Calibration):
            return NotImplemented
        return self._model == other._model and self._params == other._params

    def __getitem__(self, key: str) -> float:
        if key not in self._params:
            raise KeyError(f"Unknown parameter: '{key}'.")
        return self._params[key]

    @property
    def model(self) -> CameraModel:
        """Camera model."""
        return self._model

    @property
    def name(self) -> str:
        """Camera model display name."""
        return self._model.display_name

    @property
    def params(self) -> dict[str, float]:
        """Active parameter values by name."""
        return {k: self._params[k] for k in self._model.params}

    @property
    def focal(self) -> float:
        """Focal length in pixels.  The mean of ``fx`` and ``fy`` for models that have them."""
        if 'f' in self._model.params:
            return self._params['f']
        return (self._params['fx'] + self._params['fy']) / 2

    @property
    def principal_point(self) -> tuple[float, float]:
        """Principal point (x, y) coordinates in pixels."""
        return self._params['cx'], self._params['cy']

    def update(self, **kwargs) -> Calibration:
        """Return a copy of the calibration with the given parameters replaced."""
        return Calibration(self._model, **{**self.params, **kwargs})


class CameraPose:
    """
    Camera exterior orientation.

    :param position:
        Camera (x, y, z) position in terrain (world) coordinates.
    :param rotation:
        Orthonormal 3-by-3 rotation matrix from terrain to camera axes.  Camera axes are x to
        the right, y up, and z pointing away from the scene (i.e. the camera views along -z).
    """

    def __init__(self, position: Sequence[float], rotation: np.ndarray):
        position = np.array(position, dtype='float64').squeeze()
        rotation = np.array(rotation, dtype='float64')
        if position.shape != (3,):
            raise ValueError("'position' should have 3 elements.")
        if rotation.shape != (3, 3):
            raise ValueError("'rotation' should be a 3-by-3 matrix.")
        if not np.allclose(rotation.dot(rotation.T), np.eye(3), atol=1e-6):
            raise ValueError("'rotation' should be orthonormal.")

        position.setflags(write=False)
        rotation.setflags(write=False)
        self._position = position
        self._rotation = rotation

    def __repr__(self) -> str:
        return f'{type(self).__name__}(position={self._position.tolist()})'

    @classmethod
    def from_opk(cls, position: Sequence[float], opk: Sequence[float]) -> CameraPose:
        """
        Create a pose from position and (omega, phi, kappa) angles.

        :param position:
            Camera (x, y, z) position in terrain coordinates.
        :param opk:
            Camera (omega, phi, kappa) angles in radians, using the PATB convention for
            rotations from camera to terrain axes.
        """
        return cls(position, _opk_to_rotation(opk).T)

    @property
    def position(self) -> np.ndarray:
        """Camera (x, y, z) position in terrain coordinates."""
        return self._position

    @property
    def rotation(self) -> np.ndarray:
        """Rotation matrix from terrain to camera axes."""
        return self._rotation


class Photo:
    """
    An oriented photograph.

    :param path:
        Path / URI or :class:`~fsspec.core.OpenFile` instance of the image file.
    :param calibration:
        Camera interior parameters.
    :param pose:
        Camera exterior orientation.
    :param name:
        Photo name.  Defaults to the image file name.
    """

    def __init__(
        self,
        path: str | PathLike | OpenFile,
        calibration: Calibration,
        pose: CameraPose,
        name: str | None = None,
    ):
        self._path = path
        self._calibration = calibration
        self._pose = pose
        if name is None:
            name = Path(path.path if isinstance(path, OpenFile) else path).name
        self._name = name

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self._name!r})'

    @property
    def path(self) -> str | PathLike | OpenFile:
        """Image file path / URI."""
        return self._path

    @property
    def name(self) -> str:
        """Photo name."""
        return self._name

    @property
    def stem(self) -> str:
        """Photo name without its extension."""
        return Path(self._name).stem

    @property
    def camera(self) -> Calibration:
        """Camera interior parameters."""
        return self._calibration

    @property
    def pose(self) -> CameraPose:
        """Camera exterior orientation."""
        return self._pose


def _opk_to_rotation(opk: Sequence[float]) -> np.ndarray:
    """Convert the given (omega, phi, kappa) angles in radians to a camera to world rotation
    matrix.
    """
    # see https://s3.amazonaws.com/mics.pix4d.com/KB/documents/Pix4D_Yaw_Pitch_Roll_Omega_to_Phi_Kappa_angles_and_conversion.pdf
    omega, phi, kappa = opk
    R_x = np.array(
        [[1, 0, 0], [0, np.cos(omega), -np.sin(omega)], [0, np.sin(omega), np.cos(omega)]]
    )
    R_y = np.array([[np.cos(phi), 0, np.sin(phi)], [0, 1, 0], [-np.sin(phi), 0, np.cos(phi)]])
    R_z = np.array(
        [[np.cos(kappa), -np.sin(kappa), 0], [np.sin(kappa), np.cos(kappa), 0], [0, 0, 1]]
    )
    return R_x.dot(R_y).dot(R_z)
