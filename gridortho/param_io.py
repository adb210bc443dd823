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

"""Parameter file IO."""
from __future__ import annotations

import logging
import os
import posixpath
import warnings
from os import PathLike
from typing import IO, Sequence

import fsspec
import numpy as np
import yaml
from fsspec.core import OpenFile

from gridortho import common
from gridortho.camera import Calibration, CameraPose, Photo
from gridortho.enums import CameraModel
from gridortho.errors import GridOrthoWarning, ParamError

logger = logging.getLogger(__name__)


def _read_tokens(file: str | PathLike | OpenFile | IO[str]) -> list[str]:
    """Return the whitespace separated tokens of a text file, excluding ``#`` comments."""
    tokens = []
    with common.open_text(file, 'rt') as f:
        for line in f:
            tokens += line.split('#', 1)[0].split()
    return tokens


def read_image_list(
    file: str | PathLike | OpenFile | IO[str], image_dir: str | PathLike | OpenFile | None = None
) -> list[OpenFile]:
    """
    Read a Bundler style image list file.

    Each line holds an image name, optionally followed by other values (e.g. ``0 <focal>``)
    that are ignored.  Blank lines are skipped.

    :param file:
        File to read.  Can be a path or URI string, an :class:`~fsspec.core.OpenFile` object or a
        file object, opened in text mode (``'rt'``).
    :param image_dir:
        Directory that relative image names are relative to.  Defaults to the directory of the
        image list ``file`` if it is a path, URI or OpenFile.

    :return:
        Image files as binary mode (``'rb'``) OpenFile instances, in file order.
    """
    if image_dir is None:
        if isinstance(file, OpenFile):
            image_dir = OpenFile(file.fs, posixpath.dirname(file.path), mode='rb')
        elif isinstance(file, (str, PathLike)):
            image_dir = posixpath.dirname(os.fspath(file).replace('\\', '/')) or '.'

    image_files = []
    with common.open_text(file, 'rt') as f:
        for line in f:
            tokens = line.split()
            if len(tokens) == 0:
                continue
            name = tokens[0]
            if image_dir is None or '://' in name or posixpath.isabs(name):
                ofile = fsspec.open(name, 'rb')
            else:
                ofile = common.join_ofile(image_dir, name, mode='rb')
            image_files.append(ofile)

    if len(image_files) == 0:
        raise ParamError(f"No images found in '{common.get_filename(file)}'.")
    return image_files


def read_offset(file: str | PathLike | OpenFile | IO[str]) -> tuple[float, float, float]:
    """
    Read an (x, y, z) coordinate offset file.

    The file contains three numbers that are added to camera positions.

    :param file:
        File to read.  Can be a path or URI string, an :class:`~fsspec.core.OpenFile` object or a
        file object, opened in text mode (``'rt'``).
    """
    filename = common.get_filename(file)
    tokens = _read_tokens(file)
    if len(tokens) != 3:
        raise ParamError(f"'{filename}' should contain 3 values, not {len(tokens)}.")
    try:
        return tuple(float(token) for token in tokens)
    except ValueError as ex:
        raise ParamError(f"Could not parse '{filename}': {str(ex)}") from ex


def read_bundler(
    file: str | PathLike | OpenFile | IO[str],
    image_files: Sequence[str | PathLike | OpenFile],
    offset: Sequence[float] = (0.0, 0.0, 0.0),
    principal_point: Sequence[float] | None = None,
) -> list[Photo]:
    """
    Read photos from a Bundler v0.3 file.

    Each camera has a focal length & two radial distortion coefficients, and a world to camera
    rotation & translation.  Bundler camera axes match the photo axes (x right, y up, looking
    along -z), so the rotation is used as is, and the camera position is found as ``-R.T t``.
    Cameras with zero focal length were not reconstructed, and are skipped with a warning.

    :param file:
        Bundler file to read.  Can be a path or URI string, an :class:`~fsspec.core.OpenFile`
        object or a file object, opened in text mode (``'rt'``).
    :param image_files:
        Image files corresponding to the Bundler cameras, in camera order (see
        :func:`read_image_list`).
    :param offset:
        (x, y, z) offset to add to camera positions (see :func:`read_offset`).
    :param principal_point:
        (x, y) principal point in pixels.  Defaults to the image centre.

    :return:
        Photos for the reconstructed cameras, in camera order.
    """
    filename = common.get_filename(file)
    tokens = _read_tokens(file)

    try:
        values = np.array(tokens, dtype='float64')
        num_cams = int(values[0])
    except (ValueError, IndexError) as ex:
        raise ParamError(f"Could not parse '{filename}': {str(ex)}") from ex

    cam_values = values[2 : 2 + 15 * num_cams]
    if len(cam_values) != 15 * num_cams:
        raise ParamError(f"'{filename}' is missing parameters for some of its {num_cams} cameras.")
    if len(image_files) != num_cams:
        raise ParamError(
            f"Number of images ({len(image_files)}) does not match the number of cameras "
            f"({num_cams}) in '{filename}'."
        )

    offset = np.array(offset, dtype='float64')
    photos = []
    for image_file, cam_value in zip(image_files, cam_values.reshape(num_cams, 15)):
        image_name = common.get_filename(image_file)
        focal, k1, k2 = cam_value[:3]
        if focal == 0:
            warnings.warn(
                f"Skipping '{image_name}' as it has no reconstructed camera.",
                category=GridOrthoWarning,
            )
            continue

        R = cam_value[3:12].reshape(3, 3)
        t = cam_value[12:15]
        try:
            pose = CameraPose(-R.T.dot(t) + offset, R)
        except ValueError as ex:
            raise ParamError(f"Invalid camera for '{image_name}': {str(ex)}") from ex

        if principal_point is None:
            with common.suppress_no_georef(), common.open_raster(image_file, 'r') as im:
                cx, cy = im.width / 2, im.height / 2
        else:
            cx, cy = principal_point

        calib = Calibration(CameraModel.radial2, f=focal, cx=cx, cy=cy, k1=k1, k2=k2)
        photos.append(Photo(image_file, calib, pose, name=image_name))

    logger.debug(f"Read {len(photos)} of {num_cams} cameras from '{filename}'.")
    return photos


def read_calibration(file: str | PathLike | OpenFile | IO[str]) -> dict[str, Calibration]:
    """
    Read calibrations for one or more cameras from a YAML file.

    The file maps camera IDs to dictionaries of a ``model`` name and its parameters::

        camera_a:
            model: opencv
            fx: 1200.
            fy: 1210.
            cx: 640.
            cy: 480.
            k1: -0.1

    A single camera can also be given without an ID, in which case its ID is the file name.

    :param file:
        File to read.  Can be a path or URI string, an :class:`~fsspec.core.OpenFile` object or a
        file object, opened in text mode (``'rt'``).
    """
    filename = common.get_filename(file)
    with common.open_text(file, 'rt') as f:
        try:
            yaml_dict = yaml.safe_load(f)
        except yaml.YAMLError as ex:
            raise ParamError(f"Could not load '{filename}': {str(ex)}") from ex

    if isinstance(yaml_dict, dict) and 'model' in yaml_dict:
        yaml_dict = {filename: yaml_dict}

    if not isinstance(yaml_dict, dict) or not all(
        isinstance(cam_dict, dict) and isinstance(cam_dict.get('model', None), str)
        for cam_dict in yaml_dict.values()
    ):
        raise ParamError(
            f"Could not parse '{filename}': it should map camera IDs to dictionaries with a "
            "'model' name and parameters."
        )

    calibs = {}
    for cam_id, cam_dict in yaml_dict.items():
        params = dict(cam_dict)
        model = params.pop('model')
        try:
            calibs[str(cam_id)] = Calibration(model, **params)
        except ParamError as ex:
            raise ParamError(f"Invalid calibration for camera '{cam_id}': {str(ex)}") from ex
    return calibs
