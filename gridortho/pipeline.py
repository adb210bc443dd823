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

"""Batch orthorectification of photos."""
from __future__ import annotations

import logging
from contextlib import contextmanager, ExitStack
from os import PathLike
from typing import IO, Iterator, Sequence

import numpy as np
import rasterio as rio
from fsspec.core import OpenFile
from rasterio.crs import CRS
from rasterio.errors import RasterioIOError
from rasterio.io import DatasetWriter
from tqdm.auto import tqdm

from gridortho import common, frames
from gridortho.camera import Photo
from gridortho.dtm import TerrainElevationSampler
from gridortho.enums import Compress, Driver, Interp, PhotoState
from gridortho.errors import DataError, DatasetIOError, GridOrthoError, ParamError, ResourceError
from gridortho.footprint import Footprint, FootprintEstimator
from gridortho.ortho import OrthoGridRectifier
from gridortho.rectification import DifferentialRectification
from gridortho.vector import GeoJsonWriter, VectorLayer

logger = logging.getLogger(__name__)


_ortho_nodata = dict(
    uint8=0, uint16=0, int16=np.iinfo('int16').min, float32=float('nan'), float64=float('nan')
)
"""Ortho nodata values for the supported photo data types.  OpenCV warpPerspective doesn't
support int8 or uint32.
"""


@contextmanager
def _open_raster(
    file: str | PathLike | OpenFile, mode: str = 'r', **kwargs
) -> Iterator[rio.DatasetReader | DatasetWriter]:
    """Context manager that opens a photo or ortho raster, raising
    :class:`~gridortho.errors.ResourceError` if it cannot be opened or created.
    """
    exit_stack = ExitStack()
    try:
        im = exit_stack.enter_context(common.open_raster(file, mode, **kwargs))
    except (OSError, RasterioIOError) as ex:
        action = 'open' if mode == 'r' else 'create'
        raise ResourceError(f"Could not {action} '{common.get_filename(file)}': {str(ex)}") from ex
    with exit_stack:
        yield im


class OrthorectificationPipeline:
    """
    Batch orthorectifier.

    Photos are processed one at a time.  For each photo, the ground footprint is estimated,
    the ortho image is allocated over the footprint bounds, the photo is rectified into it
    cell by cell over the DTM, and the ortho image and footprint are written.  A photo that
    fails is logged and skipped, and processing continues with the next photo.

    :param dtm_file:
        DTM file covering the photos.  Can be a path or URI string, an
        :class:`~fsspec.core.OpenFile` object in binary mode (``'rb'``), or a dataset reader.
    :param crs:
        CRS of the camera positions, DTM and ortho images as an EPSG, proj4 or WKT string, or
        :class:`~rasterio.crs.CRS` object.  If set to ``None`` (the default), the DTM CRS is used.
    :param dtm_band:
        Index of the DTM band to use (1-based).
    :param dtm_nodata:
        DTM elevation value to treat as nodata, in addition to the DTM mask.  If set to ``None``
        (the default), only the DTM mask is used and zero is a valid elevation.  DTMs that mark
        missing data with zero, but do not declare a nodata value, need ``dtm_nodata=0``.
    :param max_iter:
        Maximum number of footprint refinement iterations per image corner.
    :param tolerance:
        Elevation change below which footprint refinement stops.
    """

    # default algorithm configuration values
    _default_alg_config = dict(
        dtm_band=1,
        dtm_nodata=None,
        max_iter=10,
        tolerance=0.1,
        resolution=None,
        interp=Interp.nearest,
    )

    # default ortho image configuration values
    _default_out_config = dict(driver=Driver.gtiff, write_mask=None, compress=None, overwrite=False)

    # footprint vector layer definition
    _layer_name = 'footprints'
    _layer_fields = dict(name=str)

    def __init__(
        self,
        dtm_file: str | PathLike | OpenFile | rio.DatasetReader,
        crs: str | CRS | None = None,
        dtm_band: int = _default_alg_config['dtm_band'],
        dtm_nodata: float | None = _default_alg_config['dtm_nodata'],
        max_iter: int = _default_alg_config['max_iter'],
        tolerance: float = _default_alg_config['tolerance'],
    ):
        self._dtm_file = dtm_file
        self._crs = CRS.from_string(crs) if isinstance(crs, str) else crs
        self._dtm_band = dtm_band
        self._dtm_nodata = dtm_nodata
        self._max_iter = max_iter
        self._tolerance = tolerance

    def _open_shared(
        self,
        exit_stack: ExitStack,
        footprint_file: str | PathLike | OpenFile | IO[str],
        overwrite: bool,
    ) -> tuple[TerrainElevationSampler, GeoJsonWriter, CRS | None]:
        """Open the DTM and footprint writer in ``exit_stack``, returning them with the resolved
        CRS.
        """
        sampler = exit_stack.enter_context(
            TerrainElevationSampler(self._dtm_file, band=self._dtm_band, nodata=self._dtm_nodata)
        )
        crs = self._crs or sampler.crs
        writer = exit_stack.enter_context(
            GeoJsonWriter(footprint_file, crs=crs, overwrite=overwrite)
        )
        return sampler, writer, crs

    @staticmethod
    def _get_photo_iter(photos: Sequence[Photo], progress: bool | dict):
        if progress is True:
            progress = common.get_tqdm_kwargs(desc='Total', unit='files')
        return tqdm(photos, **progress) if progress else photos

    @staticmethod
    def _log_failure(photo: Photo, ex: Exception) -> None:
        logger.error(
            f"Could not process '{photo.name}': {str(ex)}",
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )

    @staticmethod
    def _init_states(photos: Sequence[Photo]) -> dict[str, PhotoState]:
        """Return the initial state of each photo by name."""
        states = {photo.name: PhotoState.init for photo in photos}
        if len(states) != len(photos):
            raise GridOrthoError('Photo names should be unique.')
        return states

    @staticmethod
    def _ortho_profile(
        src_im: rio.DatasetReader,
        driver: Driver,
        compress: Compress | None,
        write_mask: bool | None,
    ) -> tuple[dict, bool]:
        """Return the ortho image profile for a photo dataset, without its size and
        georeferencing, and whether to write an internal mask.
        """
        dtype = src_im.dtypes[0]
        if dtype not in _ortho_nodata:
            raise DataError(f"Photo data type '{dtype}' is not supported.")

        compress = compress or (Compress.jpeg if dtype == 'uint8' else Compress.deflate)
        if compress is Compress.jpeg and dtype != 'uint8':
            raise ParamError(
                f"JPEG compression is supported for 'uint8' photos only, not '{dtype}'."
            )
        if write_mask is None:
            write_mask = compress is Compress.jpeg

        # internal masks replace nodata so that other tools use the mask
        profile = dict(
            driver=driver.value,
            dtype=dtype,
            count=src_im.count,
            compress=compress.value,
            nodata=None if write_mask else _ortho_nodata[dtype],
            bigtiff='if_safer',
        )
        if driver is Driver.cog:
            # GDAL tiles COG internally, and sets its photometric interpretation
            profile.update(blocksize=512)
        else:
            profile.update(tiled=True, blockxsize=512, blockysize=512)
            if compress is Compress.jpeg and src_im.count == 3:
                profile.update(photometric='ycbcr')
        return profile, write_mask

    def _estimate_footprint(
        self,
        photo: Photo,
        im_size: tuple[int, int],
        estimator: FootprintEstimator,
    ) -> tuple[DifferentialRectification, rio.Affine, Footprint]:
        """Return the projector, pixel to photo transform and footprint for a photo."""
        rectification = DifferentialRectification.from_photo(photo)
        src_transform = frames.pixel_to_photo_transform(photo.camera.principal_point)
        corners = frames.apply(src_transform, frames.image_corners(im_size))
        footprint = estimator.estimate(rectification, corners)
        return rectification, src_transform, footprint

    def _process_photo(
        self,
        photo: Photo,
        sampler: TerrainElevationSampler,
        estimator: FootprintEstimator,
        crs: CRS | None,
        out_dir: str | PathLike | OpenFile,
        layer: VectorLayer,
        states: dict[str, PhotoState],
        resolution: float | None,
        interp: Interp,
        write_mask: bool | None,
        compress: Compress | None,
        driver: Driver,
        overwrite: bool,
        progress: bool | dict,
    ) -> None:
        """Orthorectify a single photo, updating its state in ``states`` as it progresses."""
        name = photo.name
        with ExitStack() as exit_stack:
            exit_stack.enter_context(common.suppress_no_georef())
            src_im = exit_stack.enter_context(_open_raster(photo.path, 'r'))

            # footprint
            rectification, src_transform, footprint = self._estimate_footprint(
                photo, (src_im.width, src_im.height), estimator
            )
            states[name] = PhotoState.footprint_computed

            # ortho georeferencing and buffer
            bounds = footprint.bounds
            if not resolution:
                pixel_corners = frames.image_corners((src_im.width, src_im.height))
                resolution = frames.affine_gsd(
                    frames.fit_affine(pixel_corners, footprint.xyz[:2])
                )
                logger.debug(f"Using auto resolution for '{name}': {resolution:.4f}")
            ortho_transform = frames.ortho_transform(bounds, resolution)
            ortho_shape = (src_im.count, *frames.ortho_shape(bounds, resolution))

            profile, write_mask = self._ortho_profile(src_im, driver, compress, write_mask)
            profile.update(
                width=ortho_shape[2], height=ortho_shape[1], crs=crs, transform=ortho_transform
            )
            dtype = profile['dtype']
            ortho_array = np.full(ortho_shape, fill_value=_ortho_nodata[dtype], dtype=dtype)
            ortho_mask = np.zeros(ortho_shape[-2:], dtype=bool)

            ortho_ofile = common.join_ofile(out_dir, f'{photo.stem}_ORTHO.tif', mode='wb')
            ortho_im = exit_stack.enter_context(
                _open_raster(ortho_ofile, 'w', overwrite=overwrite, **profile)
            )
            states[name] = PhotoState.ortho_allocated

            try:
                # rectify over the DTM window covering the ortho
                try:
                    src_array = src_im.read()
                except RasterioIOError as ex:
                    raise DatasetIOError(f"Could not read '{name}': {str(ex)}") from ex
                dtm_array, dtm_transform = sampler.read_bounds(bounds)

                rectifier = OrthoGridRectifier(
                    rectification, src_transform, ortho_transform, interp=interp
                )
                if progress:
                    progress = common.get_tqdm_kwargs(desc=name, unit='rows', leave=False)
                rectifier.process(
                    src_array,
                    ortho_array,
                    dtm_array,
                    dtm_transform,
                    ortho_mask=ortho_mask,
                    progress=progress,
                )
                states[name] = PhotoState.grid_processed

                # write ortho
                try:
                    ortho_im.colorinterp = src_im.colorinterp
                    ortho_im.write(ortho_array)
                    if write_mask:
                        ortho_im.write_mask(ortho_mask)
                except RasterioIOError as ex:
                    raise DatasetIOError(
                        f"Could not write ortho for '{name}': {str(ex)}"
                    ) from ex
            except Exception:
                # remove the partially written ortho
                exit_stack.close()
                if ortho_ofile.fs.exists(ortho_ofile.path):
                    ortho_ofile.fs.rm(ortho_ofile.path)
                raise

        layer.add_feature(footprint.polygon(), name=name)
        states[name] = PhotoState.written

    def run(
        self,
        photos: Sequence[Photo],
        out_dir: str | PathLike | OpenFile,
        footprint_file: str | PathLike | OpenFile | IO[str],
        resolution: float | None = _default_alg_config['resolution'],
        interp: str | Interp = _default_alg_config['interp'],
        write_mask: bool | None = _default_out_config['write_mask'],
        compress: str | Compress | None = _default_out_config['compress'],
        driver: str | Driver = _default_out_config['driver'],
        overwrite: bool = _default_out_config['overwrite'],
        progress: bool | dict = False,
    ) -> dict[str, PhotoState]:
        """
        Orthorectify photos, and write their footprints.

        Ortho images are written to ``out_dir`` as ``<photo stem>_ORTHO.tif``, and footprints
        to a GeoJSON polygon layer with a ``name`` attribute.  Failure to open the DTM or to
        create the footprint file raises an exception.  Failure to process a photo is logged,
        and the photo skipped.

        :param photos:
            Photos to orthorectify.
        :param out_dir:
            Directory in which to place ortho images.  Can be a path or URI string, or an
            :class:`~fsspec.core.OpenFile` object.
        :param footprint_file:
            GeoJSON footprint file to create.  Can be a path or URI string, an
            :class:`~fsspec.core.OpenFile` object or a file object, opened in text mode
            (``'wt'``).
        :param resolution:
            Ortho pixel size in units of the CRS.  If set to ``None`` (the default), the
            resolution of each ortho is estimated from its photo footprint.
        :param interp:
            Interpolation method for resampling photos.
        :param write_mask:
            Mask valid ortho pixels with an internal mask (``True``), or with a nodata value
            based on the photo data type (``False``).  If set to ``None`` (the default), the mask
            is written when JPEG compression is used.
        :param compress:
            Ortho compression type (``jpeg``, ``deflate`` or ``lzw``).  If set to ``None`` (the
            default), ``jpeg`` is used for uint8 photos, and ``deflate`` otherwise.
        :param driver:
            Ortho image driver (``gtiff`` or ``cog``).
        :param overwrite:
            Whether to overwrite existing ortho images and footprint file.
        :param progress:
            Whether to display progress bars.  Can be set to a dictionary of arguments for a
            custom `tqdm <https://tqdm.github.io/docs/tqdm/>`_ bar monitoring photos.

        :return:
            Final processing state of each photo by name.
        """
        interp = Interp(interp)
        compress = Compress(compress) if compress else None
        driver = Driver(driver)
        states = self._init_states(photos)

        with ExitStack() as exit_stack:
            sampler, writer, crs = self._open_shared(exit_stack, footprint_file, overwrite)
            estimator = FootprintEstimator(
                sampler, max_iter=self._max_iter, tolerance=self._tolerance
            )
            layer = VectorLayer(self._layer_name, self._layer_fields)

            for photo in self._get_photo_iter(photos, progress):
                try:
                    self._process_photo(
                        photo,
                        sampler,
                        estimator,
                        crs,
                        out_dir,
                        layer,
                        states,
                        resolution=resolution,
                        interp=interp,
                        write_mask=write_mask,
                        compress=compress,
                        driver=driver,
                        overwrite=overwrite,
                        progress=bool(progress),
                    )
                except Exception as ex:
                    self._log_failure(photo, ex)
                    states[photo.name] = PhotoState.failed

            writer.write(layer)

        num_written = sum(state is PhotoState.written for state in states.values())
        logger.info(f'Orthorectified {num_written} of {len(states)} photo(s).')
        return states

    def footprints(
        self,
        photos: Sequence[Photo],
        footprint_file: str | PathLike | OpenFile | IO[str],
        overwrite: bool = _default_out_config['overwrite'],
        progress: bool | dict = False,
    ) -> dict[str, PhotoState]:
        """
        Write photo footprints without orthorectifying.

        :param photos:
            Photos to find footprints for.
        :param footprint_file:
            GeoJSON footprint file to create.  Can be a path or URI string, an
            :class:`~fsspec.core.OpenFile` object or a file object, opened in text mode
            (``'wt'``).
        :param overwrite:
            Whether to overwrite the footprint file if it exists.
        :param progress:
            Whether to display a progress bar.  Can be set to a dictionary of arguments for a
            custom `tqdm <https://tqdm.github.io/docs/tqdm/>`_ bar.

        :return:
            Final state of each photo by name: ``written`` when its footprint was written,
            otherwise ``failed``.
        """
        states = self._init_states(photos)
        with ExitStack() as exit_stack:
            sampler, writer, _ = self._open_shared(exit_stack, footprint_file, overwrite)
            estimator = FootprintEstimator(
                sampler, max_iter=self._max_iter, tolerance=self._tolerance
            )
            layer = VectorLayer(self._layer_name, self._layer_fields)

            for photo in self._get_photo_iter(photos, progress):
                try:
                    with common.suppress_no_georef(), _open_raster(photo.path, 'r') as src_im:
                        im_size = (src_im.width, src_im.height)
                    *_, footprint = self._estimate_footprint(photo, im_size, estimator)
                    states[photo.name] = PhotoState.footprint_computed
                    layer.add_feature(footprint.polygon(), name=photo.name)
                    states[photo.name] = PhotoState.written
                except Exception as ex:
                    self._log_failure(photo, ex)
                    states[photo.name] = PhotoState.failed

            writer.write(layer)

        num_written = sum(state is PhotoState.written for state in states.values())
        logger.info(f'Found {num_written} of {len(states)} footprint(s).')
        return states
