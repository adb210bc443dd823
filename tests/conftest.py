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

from pathlib import Path

import numpy as np
import pytest
import rasterio as rio
from click.testing import CliRunner
from rasterio.transform import from_origin

from gridortho.camera import Calibration, CameraPose, Photo
from gridortho.enums import CameraModel

_dtm_resolution = 5.0
"""DTM resolution (m)."""
_dtm_bounds = (19800.0, 29800.0, 20200.0, 30200.0)
"""DTM (left, bottom, right, top) bounds (m)."""
_dtm_nodata = -9999.0
"""DTM nodata value."""


def checkerboard(shape: tuple[int, int], square: int = 25, vals: np.ndarray = None) -> np.ndarray:
    """Return a checkerboard image given an image ``shape``."""
    # adapted from https://stackoverflow.com/questions/2169478/how-to-make-a-checkerboard-in-numpy
    vals = np.array([127, 255], dtype=np.uint8) if vals is None else vals
    coords = np.ogrid[0 : shape[0], 0 : shape[1]]
    idx = (coords[0] // square + coords[1] // square) % 2
    return vals[idx]


def sinusoid(shape: tuple[int, int]) -> np.ndarray:
    """Return a sinusoidal surface with z vals -1..1, given an array ``shape``."""
    # adapted from https://docs.enthought.com/mayavi/mayavi/auto/mlab_helper_functions.html#surf
    x = np.linspace(-4 * np.pi, 4 * np.pi, shape[1])
    y = np.linspace(-4 * np.pi, 4 * np.pi, shape[0]) * shape[0] / shape[1]
    x, y = np.meshgrid(x, y)

    array = np.sin(x + y) + np.sin(2 * x - y) + np.cos(3 * x + 4 * y)
    array -= array.mean()
    array /= np.max(np.abs((array.min(), array.max())))
    return array


def create_profile(
    array: np.ndarray,
    transform: rio.Affine = None,
    crs: str | rio.CRS = None,
    nodata: int | float = None,
) -> dict:
    """Return a Rasterio profile for the given parameters."""
    if array.ndim != 2 and array.ndim != 3:
        raise ValueError("'array' should be 2D or 3D.")
    shape = (1, *array.shape) if array.ndim == 2 else array.shape
    return dict(
        driver='GTiff',
        crs=crs,
        transform=transform,
        dtype=array.dtype,
        width=shape[2],
        height=shape[1],
        count=shape[0],
        nodata=nodata,
    )


def create_dtm(file: Path, array: np.ndarray, crs: str, nodata: float = _dtm_nodata) -> Path:
    """Write a DTM ``array`` covering the default DTM bounds to ``file``."""
    transform = from_origin(_dtm_bounds[0], _dtm_bounds[3], _dtm_resolution, _dtm_resolution)
    profile = create_profile(array, transform=transform, crs=crs, nodata=nodata)
    with rio.open(file, 'w', **profile) as im:
        im.write(array, indexes=1)
    return file


def dtm_shape() -> tuple[int, int]:
    """Return the default DTM (height, width)."""
    width = int((_dtm_bounds[2] - _dtm_bounds[0]) / _dtm_resolution)
    height = int((_dtm_bounds[3] - _dtm_bounds[1]) / _dtm_resolution)
    return height, width


@pytest.fixture(scope='session')
def runner():
    """Click runner for command line execution."""
    return CliRunner()


@pytest.fixture(scope='session')
def utm34n_crs() -> str:
    """CRS string for UTM zone 34N with no vertical CRS."""
    return 'EPSG:32634'


@pytest.fixture(scope='session')
def position() -> tuple[float, float, float]:
    """Nadir camera (x, y, z) position (m)."""
    return 20000.0, 30000.0, 500.0


@pytest.fixture(scope='session')
def focal() -> float:
    """Focal length (pixels).  Gives a 1m GSD at 500m above a zero DTM."""
    return 500.0


@pytest.fixture(scope='session')
def im_size() -> tuple[int, int]:
    """Source image (width, height) (pixels)."""
    return 200, 150


@pytest.fixture(scope='session')
def calibration(focal: float, im_size: tuple[int, int]) -> Calibration:
    """Radial calibration with the principal point at the image centre."""
    return Calibration(
        CameraModel.radial2, f=focal, cx=im_size[0] / 2, cy=im_size[1] / 2, k1=-0.01, k2=0.001
    )


@pytest.fixture(scope='session')
def nadir_pose(position: tuple[float, float, float]) -> CameraPose:
    """Camera pose looking straight down, with image rows aligned east-west."""
    return CameraPose(position, np.eye(3))


@pytest.fixture(scope='session')
def src_array(im_size: tuple[int, int]) -> np.ndarray:
    """3 band uint8 source image array, with different checkerboards in each band."""
    shape = im_size[::-1]
    return np.stack(
        [checkerboard(shape, square=s, vals=np.array(v, dtype='uint8'))
         for s, v in zip([25, 10, 40], [[127, 255], [50, 200], [10, 100]])]
    )  # fmt: skip


@pytest.fixture(scope='session')
def src_file(tmp_path_factory: pytest.TempPathFactory, src_array: np.ndarray) -> Path:
    """Non-georeferenced source image file."""
    src_file = tmp_path_factory.mktemp('data').joinpath('src.tif')
    profile = create_profile(src_array)
    profile.pop('crs')
    profile.pop('transform')
    with rio.open(src_file, 'w', **profile) as im:
        im.write(src_array)
    return src_file


@pytest.fixture(scope='session')
def nadir_photo(src_file: Path, calibration: Calibration, nadir_pose: CameraPose) -> Photo:
    """Nadir photo of the source image."""
    return Photo(src_file, calibration, nadir_pose)


@pytest.fixture(scope='session')
def flat_dtm_file(tmp_path_factory: pytest.TempPathFactory, utm34n_crs: str) -> Path:
    """DTM file with zero elevation everywhere."""
    file = tmp_path_factory.mktemp('data').joinpath('flat_dtm.tif')
    return create_dtm(file, np.zeros(dtm_shape(), dtype='float32'), utm34n_crs)


@pytest.fixture(scope='session')
def sinusoid_dtm_file(tmp_path_factory: pytest.TempPathFactory, utm34n_crs: str) -> Path:
    """DTM file with a sinusoidal surface between -10 and 30m."""
    file = tmp_path_factory.mktemp('data').joinpath('sinusoid_dtm.tif')
    array = (10 + 20 * sinusoid(dtm_shape())).astype('float32')
    return create_dtm(file, array, utm34n_crs)


@pytest.fixture(scope='session')
def nodata_dtm_file(tmp_path_factory: pytest.TempPathFactory, utm34n_crs: str) -> Path:
    """Flat DTM file with a nodata hole under the nadir camera position, and a zero elevation
    region that is valid elevation.
    """
    file = tmp_path_factory.mktemp('data').joinpath('nodata_dtm.tif')
    array = np.full(dtm_shape(), fill_value=5, dtype='float32')
    array[35:45, 35:45] = _dtm_nodata
    array[:10, :10] = 0
    return create_dtm(file, array, utm34n_crs)


@pytest.fixture(scope='session')
def bundle_files(
    tmp_path_factory: pytest.TempPathFactory,
    src_array: np.ndarray,
    focal: float,
    position: tuple[float, float, float],
) -> tuple[Path, Path, Path]:
    """Bundler file, image list file and offset file for two photos of the source image, the
    second without a reconstructed camera.  Camera positions are relative to the offset.
    """
    data_dir = tmp_path_factory.mktemp('bundle')
    profile = create_profile(src_array)
    profile.pop('crs')
    profile.pop('transform')
    for name in ['im0.tif', 'im1.tif']:
        with rio.open(data_dir.joinpath(name), 'w', **profile) as im:
            im.write(src_array)

    offset = (position[0], position[1], 0.0)
    # t = -R C with R = I and C relative to the offset
    t = -(np.array(position) - offset)
    bundle_str = (
        '# Bundle file v0.3\n'
        '2 0\n'
        f'{focal} -0.01 0.001\n'
        '1 0 0\n0 1 0\n0 0 1\n'
        f'{t[0]} {t[1]} {t[2]}\n'
        '0 0 0\n'
        '0 0 0\n0 0 0\n0 0 0\n'
        '0 0 0\n'
    )
    bundle_file = data_dir.joinpath('bundle.out')
    bundle_file.write_text(bundle_str)

    list_file = data_dir.joinpath('list.txt')
    list_file.write_text(f'im0.tif 0 {focal}\nim1.tif\n')

    offset_file = data_dir.joinpath('offset.txt')
    offset_file.write_text(' '.join(str(v) for v in offset) + '\n')
    return bundle_file, list_file, offset_file


@pytest.fixture(scope='session')
def dtm_bounds() -> tuple[float, float, float, float]:
    """(left, bottom, right, top) bounds of the DTM files (m)."""
    return _dtm_bounds


@pytest.fixture(scope='session')
def dtm_resolution() -> float:
    """Resolution of the DTM files (m)."""
    return _dtm_resolution
