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

"""File and raster IO helpers shared by the parameter readers, DTM sampler and pipeline."""
from __future__ import annotations

import logging
import os
import posixpath
import warnings
from contextlib import contextmanager, ExitStack
from io import IOBase
from os import PathLike
from pathlib import Path
from typing import IO, Iterator

import fsspec
import rasterio as rio
from fsspec.core import OpenFile
from rasterio.errors import NotGeoreferencedWarning
from rasterio.io import DatasetReaderBase, DatasetWriter

logger = logging.getLogger(__name__)

_gdal_protocols = ('file', 'local', 'http', 'https')
"""fsspec protocols whose paths are passed to GDAL as is."""


@contextmanager
def suppress_no_georef():
    """Context manager to suppress rasterio's NotGeoreferencedWarning for (ungeoreferenced)
    photos.
    """
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', category=NotGeoreferencedWarning)
        yield


def get_filename(file: str | PathLike | OpenFile | DatasetReaderBase | IO) -> str:
    """Return the file name of a path, URI, OpenFile, dataset or file object for use in
    messages.
    """
    filename = getattr(file, 'filename', None)
    if filename is not None:
        return filename
    if isinstance(file, OpenFile):
        return Path(file.path).name
    if isinstance(file, (DatasetReaderBase, IOBase)):
        return Path(getattr(file, 'name', None) or '<file object>').name
    return Path(os.fspath(file)).name


def join_ofile(base: str | PathLike | OpenFile, name: str, mode: str) -> OpenFile:
    """Return an OpenFile for the file ``name`` in the ``base`` directory, opened in ``mode``."""
    if not isinstance(base, OpenFile):
        base = fsspec.open(os.fspath(base))
    return OpenFile(base.fs, posixpath.join(base.path, name), mode=mode)


def _check_overwrite(ofile: OpenFile, mode: str, overwrite: bool) -> None:
    if 'w' in mode and not overwrite and ofile.fs.exists(ofile.path):
        raise FileExistsError(f"File exists: '{ofile.path}'")


@contextmanager
def open_raster(
    file: str | PathLike | OpenFile | DatasetReaderBase,
    mode: str = 'r',
    overwrite: bool = False,
    **kwargs,
) -> Iterator[rio.DatasetReader | DatasetWriter]:
    """
    Context manager that opens a DTM, photo or ortho raster.

    Local and HTTP(S) files are opened by GDAL from their path, and files on other fsspec file
    systems through an fsspec file object.  The dataset is given a ``filename`` attribute for
    messages.

    :param file:
        A path, URI, :class:`~fsspec.core.OpenFile` instance, or open dataset.  An open dataset
        is yielded as is and left open on exit.
    :param mode:
        ``'r'`` to read or ``'w'`` to create.
    :param overwrite:
        Whether to overwrite an existing file in ``'w'`` mode.
    :param kwargs:
        Profile keyword arguments to pass to :func:`rasterio.open` in ``'w'`` mode.
    """
    if mode not in ('r', 'w'):
        raise ValueError(f"The 'mode' argument should be either 'r' or 'w', not '{mode}'.")

    if isinstance(file, DatasetReaderBase):
        if file.closed or mode not in file.mode:
            raise IOError(f"Dataset '{get_filename(file)}' should be open in '{mode}' mode.")
        yield file
        return

    if not isinstance(file, (str, PathLike, OpenFile)):
        raise TypeError(f"Unsupported 'file' type: {type(file)}")

    ofile = file if isinstance(file, OpenFile) else fsspec.open(os.fspath(file), mode + 'b')
    _check_overwrite(ofile, mode, overwrite)
    if mode == 'r' and not ofile.fs.exists(ofile.path):
        raise FileNotFoundError(f"No such file: '{ofile.path}'")

    protocols = ofile.fs.protocol
    protocols = (protocols,) if isinstance(protocols, str) else protocols
    with ExitStack() as exit_stack:
        if any(protocol in _gdal_protocols for protocol in protocols):
            target = ofile.path
        else:
            target = exit_stack.enter_context(ofile)
        dataset = exit_stack.enter_context(rio.open(target, mode, **kwargs))
        dataset.filename = get_filename(file)
        yield dataset


@contextmanager
def open_text(
    file: str | PathLike | OpenFile | IO[str], mode: str = 'rt', overwrite: bool = False
) -> Iterator[IO[str]]:
    """
    Context manager that opens a parameter or footprint text file.

    :param file:
        A path, URI, :class:`~fsspec.core.OpenFile` instance, or file object.  A file object is
        yielded as is and left open on exit.
    :param mode:
        Text mode to open a path or URI in (``'rt'`` or ``'wt'``).
    :param overwrite:
        Whether to overwrite an existing file in ``'wt'`` mode.
    """
    if isinstance(file, IOBase):
        if file.closed:
            raise IOError('File object is closed.')
        yield file
        return

    if not isinstance(file, (str, PathLike, OpenFile)):
        raise TypeError(f"Unsupported 'file' type: {type(file)}")

    ofile = file if isinstance(file, OpenFile) else fsspec.open(os.fspath(file), mode)
    _check_overwrite(ofile, mode, overwrite)
    with ofile as file_obj:
        yield file_obj


def get_tqdm_kwargs(**kwargs) -> dict:
    """Return a dictionary of ``tqdm`` progress bar kwargs with a standard ``bar_format``."""
    return dict(
        bar_format='{l_bar}{bar}|{n_fmt}/{total_fmt} {unit} [{elapsed}<{remaining}]',
        dynamic_ncols=True,
        **kwargs,
    )
