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

import io
import warnings
from pathlib import Path

import fsspec
import numpy as np
import pytest
import rasterio as rio
from rasterio.errors import NotGeoreferencedWarning

from gridortho import common


def test_suppress_no_georef(src_file: Path):
    """Test ``suppress_no_georef()`` hides rasterio's warning for ungeoreferenced photos."""
    with warnings.catch_warnings():
        warnings.simplefilter('error', category=NotGeoreferencedWarning)
        with common.suppress_no_georef(), rio.open(src_file, 'r') as im:
            assert im.crs is None


def test_get_filename(src_file: Path):
    """Test ``get_filename()`` with different ``file`` objects."""
    exp_val = src_file.name
    assert common.get_filename(src_file) == exp_val
    assert common.get_filename(str(src_file)) == exp_val
    assert common.get_filename(fsspec.open(str(src_file), 'rb')) == exp_val
    with open(src_file, 'rb') as f:
        assert common.get_filename(f) == exp_val
    with common.suppress_no_georef(), common.open_raster(src_file, 'r') as im:
        assert common.get_filename(im) == exp_val
    assert common.get_filename(io.StringIO()) == '<file object>'


@pytest.mark.parametrize('trailing_slash', [False, True])
def test_join_ofile(src_file: Path, trailing_slash: bool):
    """Test ``join_ofile()`` returns an OpenFile in the base directory, for different base
    directory types.
    """
    base = src_file.parent.as_posix() + ('/' if trailing_slash else '')
    ofile = fsspec.open(str(src_file))
    for base_dir in [base, Path(base), fsspec.open(base)]:
        join_ofile = common.join_ofile(base_dir, src_file.name, mode='rb')
        assert isinstance(join_ofile, fsspec.core.OpenFile)
        assert join_ofile.mode == 'rb'
        assert join_ofile.path == ofile.path
        assert join_ofile.fs.exists(join_ofile.path)


def test_open_raster_read(src_file: Path):
    """Test ``open_raster()`` in ``'r'`` mode with path, OpenFile and dataset objects."""
    for file in [src_file, str(src_file), fsspec.open(str(src_file), 'rb')]:
        with common.suppress_no_georef(), common.open_raster(file, 'r') as im:
            assert isinstance(im, rio.DatasetReader)
            assert im.filename == src_file.name
        assert im.closed

    with common.suppress_no_georef(), rio.open(src_file, 'r') as open_im:
        with common.open_raster(open_im, 'r') as im:
            assert im is open_im
        assert not open_im.closed


def test_open_raster_memory_fs(src_file: Path):
    """Test ``open_raster()`` reads a file on a non-GDAL fsspec file system."""
    ofile = fsspec.open('memory://gridortho/src.tif', 'wb')
    with ofile as f:
        f.write(src_file.read_bytes())

    with common.suppress_no_georef():
        with common.open_raster(fsspec.open('memory://gridortho/src.tif', 'rb'), 'r') as im:
            assert im.filename == 'src.tif'
            assert im.read().shape[0] == 3


def test_open_raster_write(tmp_path: Path):
    """Test ``open_raster()`` in ``'w'`` mode, and its ``overwrite`` argument."""
    raster_file = tmp_path.joinpath('ortho.tif')
    array = np.ones((1, 16, 16), dtype='uint8')
    profile = dict(driver='gtiff', width=16, height=16, count=1, dtype='uint8')

    with common.suppress_no_georef(), common.open_raster(raster_file, 'w', **profile) as im:
        im.write(array)
    with rio.open(raster_file, 'r') as im:
        assert np.all(im.read() == array)

    with pytest.raises(FileExistsError) as ex:
        with common.open_raster(raster_file, 'w', **profile):
            pass
    assert raster_file.name in str(ex.value)

    ofile = fsspec.open(str(raster_file), 'wb')
    with common.suppress_no_georef():
        with common.open_raster(ofile, 'w', overwrite=True, **profile) as im:
            im.write(array * 2)
    with rio.open(raster_file, 'r') as im:
        assert np.all(im.read() == 2)


def test_open_raster_errors(src_file: Path, tmp_path: Path):
    """Test ``open_raster()`` raises errors for missing files, and invalid modes and types."""
    with pytest.raises(FileNotFoundError):
        with common.open_raster(tmp_path.joinpath('unknown.tif'), 'r'):
            pass
    with pytest.raises(ValueError):
        with common.open_raster(src_file, 'a'):
            pass
    with pytest.raises(TypeError):
        with common.open_raster(1, 'r'):
            pass
    with common.suppress_no_georef(), rio.open(src_file, 'r') as im:
        with pytest.raises(IOError):
            with common.open_raster(im, 'w'):
                pass


def test_open_text(tmp_path: Path):
    """Test ``open_text()`` in ``'wt'`` and ``'rt'`` modes with path, OpenFile and file
    objects.
    """
    file = tmp_path.joinpath('footprints.geojson')
    with common.open_text(file, 'wt') as f:
        f.write('test')
    assert f.closed

    with common.open_text(fsspec.open(str(file), 'rt'), 'rt') as f:
        assert f.read() == 'test'

    string_io = io.StringIO('test')
    with common.open_text(string_io, 'rt') as f:
        assert f is string_io
    assert not string_io.closed


def test_open_text_errors(tmp_path: Path):
    """Test ``open_text()`` raises errors for existing, missing and closed files."""
    file = tmp_path.joinpath('footprints.geojson')
    file.write_text('existing')
    with pytest.raises(FileExistsError):
        with common.open_text(file, 'wt'):
            pass
    assert file.read_text() == 'existing'

    with common.open_text(file, 'wt', overwrite=True) as f:
        f.write('new')
    assert file.read_text() == 'new'

    with pytest.raises(FileNotFoundError):
        with common.open_text(tmp_path.joinpath('unknown.txt'), 'rt'):
            pass

    string_io = io.StringIO()
    string_io.close()
    with pytest.raises(IOError):
        with common.open_text(string_io, 'wt'):
            pass


def test_get_tqdm_kwargs():
    """Test ``get_tqdm_kwargs()`` adds a standard bar format to the given arguments."""
    kwargs = common.get_tqdm_kwargs(desc='Total', unit='files')
    assert kwargs['desc'] == 'Total'
    assert kwargs['unit'] == 'files'
    assert '{bar}' in kwargs['bar_format']
