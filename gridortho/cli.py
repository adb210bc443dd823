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

import logging
import os
import posixpath
import warnings
from pathlib import Path
from typing import Callable

import click
import fsspec
import rasterio as rio
from fsspec.core import OpenFile
from rasterio.errors import CRSError
from tqdm.auto import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from gridortho import common, param_io
from gridortho.camera import Calibration, Photo
from gridortho.enums import Compress, Driver, Interp
from gridortho.errors import GridOrthoError, GridOrthoWarning, ParamError, ResourceError
from gridortho.pipeline import OrthorectificationPipeline
from gridortho.version import __version__

logger = logging.getLogger(__name__)


def _configure_logging(verbosity: int):
    """Configure the package logger level and handler, and log package warnings through it."""
    # leave dependency loggers (e.g. rasterio) on their defaults
    pkg_logger = logging.getLogger(__package__)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('%(levelname)s:%(name)s: %(message)s'))
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(max(logging.DEBUG, logging.INFO - 10 * verbosity))

    show_warning = warnings.showwarning

    def log_warning(message, category, filename, lineno, file=None, line=None):
        if file is None and issubclass(category, GridOrthoWarning):
            pkg_logger.warning(str(message))
        else:
            show_warning(message, category, filename, lineno, file=file, line=line)

    warnings.showwarning = log_warning


def _read_crs(crs: str) -> rio.CRS:
    """Return the CRS of an EPSG, proj4 or WKT string, or read it from a text file or
    georeferenced image path / URI.
    """
    if not (os.path.isfile(crs) or '://' in crs):
        return rio.CRS.from_user_input(crs)

    ofile = fsspec.open(crs, 'rb')
    if posixpath.splitext(ofile.path)[1].lower() in ('.tif', '.tiff'):
        with common.suppress_no_georef(), common.open_raster(ofile, 'r') as im:
            if im.crs is None:
                raise ValueError(f"'{im.filename}' has no CRS.")
            return im.crs
    with ofile as f:
        return rio.CRS.from_user_input(f.read().decode().strip())


def _crs_cb(ctx: click.Context, param: click.Parameter, crs: str | None) -> rio.CRS | None:
    """Click callback to parse the CRS option."""
    if crs is None:
        return None
    try:
        return _read_crs(crs)
    except (OSError, ValueError, CRSError) as ex:
        raise click.BadParameter(str(ex), param=param)


def _ofile_cb(mode: str = 'rb', is_dir: bool = False) -> Callable:
    """Return a click callback that converts a file or directory path / URI option to an
    :class:`~fsspec.core.OpenFile` in ``mode``.
    """

    def callback(ctx: click.Context, param: click.Parameter, uri: str | None) -> OpenFile | None:
        if uri is None:
            return None
        try:
            # some file systems (e.g. gcs) don't accept directories with a trailing slash
            ofile = fsspec.open(uri.rstrip('/') if is_dir else uri, mode)
        except (ValueError, ImportError, OSError) as ex:
            raise click.BadParameter(str(ex), param=param)
        if is_dir and not ofile.fs.isdir(ofile.path):
            raise click.BadParameter(
                f"'{uri}' is not a directory or cannot be accessed.", param=param
            )
        return ofile

    return callback


def _positive_cb(ctx: click.Context, param: click.Parameter, value: float | None):
    """Click callback to validate optional positive values."""
    if value is not None and value <= 0:
        raise click.BadParameter('Value should be greater than 0.', param=param)
    return value


def _update_calibrations(photos: list[Photo], calibs: dict[str, Calibration]) -> list[Photo]:
    """Return ``photos`` with their calibrations replaced by those in ``calibs``.  A single
    calibration is used for all photos.  Otherwise, calibrations are matched to photos by name or
    stem.
    """
    updated = []
    for photo in photos:
        if len(calibs) == 1:
            calib = next(iter(calibs.values()))
        else:
            calib = calibs.get(photo.name, calibs.get(photo.stem, None))
            if calib is None:
                raise ParamError(f"No calibration found for '{photo.name}'.")
        updated.append(Photo(photo.path, calib, photo.pose, name=photo.name))
    return updated


def _read_photos(
    bundle_file: OpenFile,
    image_list_file: OpenFile,
    image_dir: OpenFile | None,
    offset_file: OpenFile | None,
    calib_file: OpenFile | None,
    principal_point: tuple[float, float] | None,
) -> list[Photo]:
    """Read photos from the parameter file options."""
    try:
        image_files = param_io.read_image_list(image_list_file, image_dir=image_dir)
        offset = param_io.read_offset(offset_file) if offset_file else (0.0, 0.0, 0.0)
        photos = param_io.read_bundler(
            bundle_file, image_files, offset=offset, principal_point=principal_point or None
        )
        if calib_file:
            photos = _update_calibrations(photos, param_io.read_calibration(calib_file))
    except (FileNotFoundError, GridOrthoError) as ex:
        raise click.UsageError(str(ex))

    if len(photos) == 0:
        raise click.UsageError('There are no reconstructed photos to process.')
    return photos


# Define click options that are common to more than one command
bundle_file_option = click.option(
    '-b',
    '--bundle',
    'bundle_file',
    type=click.Path(dir_okay=False),
    required=True,
    callback=_ofile_cb('rt'),
    help='Path / URI of a Bundler v0.3 file with the camera poses.',
)
image_list_file_option = click.option(
    '-il',
    '--image-list',
    'image_list_file',
    type=click.Path(dir_okay=False),
    required=True,
    callback=_ofile_cb('rt'),
    help='Path / URI of the image list file, with one image per line in Bundler camera order.',
)
image_dir_option = click.option(
    '-id',
    '--image-dir',
    type=click.Path(file_okay=False),
    default=None,
    show_default='image list directory',
    callback=_ofile_cb(is_dir=True),
    help='Path / URI of the directory that image list names are relative to.',
)
offset_file_option = click.option(
    '-of',
    '--offset',
    'offset_file',
    type=click.Path(dir_okay=False),
    default=None,
    callback=_ofile_cb('rt'),
    help='Path / URI of a text file with an (x, y, z) offset to add to camera positions.',
)
calib_file_option = click.option(
    '-ca',
    '--calib',
    'calib_file',
    type=click.Path(dir_okay=False),
    default=None,
    callback=_ofile_cb('rt'),
    help='Path / URI of a YAML calibration file overriding the Bundler camera calibrations.',
)
principal_point_option = click.option(
    '-pp',
    '--principal-point',
    type=click.FLOAT,
    nargs=2,
    default=None,
    show_default='image centre',
    help='Bundler camera principal point (x, y) in pixels.',
)
dtm_file_option = click.option(
    '-d',
    '--dtm',
    'dtm_file',
    type=click.Path(dir_okay=False),
    required=True,
    callback=_ofile_cb('rb'),
    help='Path / URI of a DTM file covering the photos.',
)
dtm_band_option = click.option(
    '-db',
    '--dtm-band',
    type=click.INT,
    default=OrthorectificationPipeline._default_alg_config['dtm_band'],
    show_default=True,
    help='Index of the DTM band to use (1 based).',
)
dtm_nodata_option = click.option(
    '-dn',
    '--dtm-nodata',
    type=click.FLOAT,
    default=OrthorectificationPipeline._default_alg_config['dtm_nodata'],
    show_default='DTM mask only',
    help='DTM elevation to treat as nodata, in addition to the DTM mask.  Zero is a valid '
    'elevation by default, so use 0 for DTMs that mark missing data with zero without declaring '
    'a nodata value.',
)
crs_option = click.option(
    '-c',
    '--crs',
    type=click.STRING,
    default=None,
    show_default='DTM CRS',
    callback=_crs_cb,
    help='CRS of camera positions and ortho image(s) as an EPSG, proj4, or WKT string; path / URI '
    'of a text file containing string; or path / URI of an image with metadata CRS.',
)
max_iter_option = click.option(
    '-mi',
    '--max-iter',
    type=click.IntRange(min=0),
    default=OrthorectificationPipeline._default_alg_config['max_iter'],
    show_default=True,
    help='Maximum number of footprint refinement iterations per image corner.',
)
tolerance_option = click.option(
    '-t',
    '--tolerance',
    type=click.FloatRange(min=0),
    default=OrthorectificationPipeline._default_alg_config['tolerance'],
    show_default=True,
    help='Elevation change at which footprint refinement stops.',
)
overwrite_option = click.option(
    '-o',
    '--overwrite',
    is_flag=True,
    type=click.BOOL,
    default=False,
    show_default=True,
    help='Overwrite existing output(s).',
)


@click.group()
@click.option('--verbose', '-v', count=True, help='Increase verbosity.')
@click.option('--quiet', '-q', count=True, help='Decrease verbosity.')
@click.version_option(version=__version__, message='%(version)s')
@click.pass_context
def cli(ctx: click.Context, verbose, quiet) -> None:
    """Orthorectification with a DTM and Bundler camera poses."""
    # configure logging
    verbosity = verbose - quiet
    _configure_logging(verbosity)

    # enter context managers for sub-command raster operations
    env = rio.Env(GDAL_NUM_THREADS='ALL_CPUS', GTIFF_FORCE_RGBA=False, GDAL_TIFF_INTERNAL_MASK=True)
    ctx.with_resource(common.suppress_no_georef())
    ctx.with_resource(env)

    # redirect logs through tqdm.write, so they do not interfere with progress bars
    ctx.with_resource(logging_redirect_tqdm([logging.getLogger(__package__)], tqdm_class=tqdm))


@cli.command(short_help='Orthorectify photos.')
@bundle_file_option
@image_list_file_option
@image_dir_option
@offset_file_option
@calib_file_option
@principal_point_option
@dtm_file_option
@dtm_band_option
@dtm_nodata_option
@crs_option
@max_iter_option
@tolerance_option
@click.option(
    '-r',
    '--res',
    'resolution',
    type=click.FLOAT,
    default=OrthorectificationPipeline._default_alg_config['resolution'],
    show_default='ground sampling distance',
    callback=_positive_cb,
    help='Ortho image resolution in units of the --crs.',
)
@click.option(
    '-i',
    '--interp',
    type=click.Choice(Interp, case_sensitive=True),
    default=OrthorectificationPipeline._default_alg_config['interp'],
    show_default=True,
    help='Interpolation method for resampling photos.',
)
@click.option(
    '-wm/-nwm',
    '--write-mask/--no-write-mask',
    type=click.BOOL,
    default=OrthorectificationPipeline._default_out_config['write_mask'],
    show_default='true for jpeg compression.',
    help='Mask valid pixels with an internal mask (--write-mask), or with a nodata value '
    'based on the photo data type (--no-write-mask).',
)
@click.option(
    '-cm',
    '--compress',
    type=click.Choice(Compress, case_sensitive=True),
    default=OrthorectificationPipeline._default_out_config['compress'],
    show_default='jpeg for uint8 photos, deflate otherwise',
    help='Ortho image compression.',
)
@click.option(
    '-dv',
    '--driver',
    type=click.Choice(Driver, case_sensitive=True),
    default=OrthorectificationPipeline._default_out_config['driver'],
    show_default=True,
    help='Ortho image driver.',
)
@click.option(
    '-od',
    '--out-dir',
    type=click.Path(file_okay=False),
    default=str(Path.cwd()),
    show_default='current working',
    callback=_ofile_cb(is_dir=True),
    help='Path / URI of the ortho image directory.',
)
@click.option(
    '-ff',
    '--footprint-file',
    type=click.Path(dir_okay=False),
    default=None,
    show_default='footprints.geojson in --out-dir',
    callback=_ofile_cb('wt'),
    help='Path / URI of the GeoJSON footprint file to create.',
)
@overwrite_option
def ortho(
    bundle_file: OpenFile,
    image_list_file: OpenFile,
    image_dir: OpenFile | None,
    offset_file: OpenFile | None,
    calib_file: OpenFile | None,
    principal_point: tuple[float, float] | None,
    dtm_file: OpenFile,
    dtm_band: int,
    dtm_nodata: float | None,
    crs: rio.CRS | None,
    max_iter: int,
    tolerance: float,
    out_dir: OpenFile,
    footprint_file: OpenFile | None,
    overwrite: bool,
    **kwargs,
) -> None:
    """
    Orthorectify photos with Bundler camera poses and a DTM.

    Photos are listed in the --image-list file, in the same order as the cameras in the
    --bundle file.  Ortho images are written to --out-dir as <photo>_ORTHO.tif, and photo
    footprints to --footprint-file:

        gridortho ortho --bundle bundle.out --image-list list.txt --dtm dtm.tif --crs EPSG:32634
    """
    photos = _read_photos(
        bundle_file, image_list_file, image_dir, offset_file, calib_file, principal_point
    )
    footprint_file = footprint_file or common.join_ofile(out_dir, 'footprints.geojson', mode='wt')

    pipeline = OrthorectificationPipeline(
        dtm_file,
        crs=crs,
        dtm_band=dtm_band,
        dtm_nodata=dtm_nodata,
        max_iter=max_iter,
        tolerance=tolerance,
    )
    try:
        pipeline.run(
            photos, out_dir, footprint_file, overwrite=overwrite, progress=True, **kwargs
        )
    except ResourceError as ex:
        raise click.UsageError(str(ex))


@cli.command(short_help='Find photo footprints.')
@bundle_file_option
@image_list_file_option
@image_dir_option
@offset_file_option
@calib_file_option
@principal_point_option
@dtm_file_option
@dtm_band_option
@dtm_nodata_option
@crs_option
@max_iter_option
@tolerance_option
@click.option(
    '-ff',
    '--footprint-file',
    type=click.Path(dir_okay=False),
    required=True,
    callback=_ofile_cb('wt'),
    help='Path / URI of the GeoJSON footprint file to create.',
)
@overwrite_option
def footprint(
    bundle_file: OpenFile,
    image_list_file: OpenFile,
    image_dir: OpenFile | None,
    offset_file: OpenFile | None,
    calib_file: OpenFile | None,
    principal_point: tuple[float, float] | None,
    dtm_file: OpenFile,
    footprint_file: OpenFile,
    overwrite: bool,
    **kwargs,
) -> None:
    """
    Find the ground footprints of photos with Bundler camera poses and a DTM, and write them to a
    GeoJSON file:

        gridortho footprint --bundle bundle.out --image-list list.txt --dtm dtm.tif -ff fp.geojson
    """
    photos = _read_photos(
        bundle_file, image_list_file, image_dir, offset_file, calib_file, principal_point
    )
    pipeline = OrthorectificationPipeline(dtm_file, **kwargs)
    try:
        pipeline.footprints(photos, footprint_file, overwrite=overwrite, progress=True)
    except ResourceError as ex:
        raise click.UsageError(str(ex))


if __name__ == '__main__':
    cli()
