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

"""Per DTM cell rectification of a photo into an ortho image."""
from __future__ import annotations

import logging

import cv2
import numpy as np
import rasterio as rio
from rasterio.windows import Window
from tqdm.auto import tqdm

from gridortho import common
from gridortho.enums import Interp
from gridortho.errors import GeometryError
from gridortho.rectification import DifferentialRectification

logger = logging.getLogger(__name__)


class OrthoGridRectifier:
    """
    Ortho image rectifier.

    Each cell of four adjacent DTM pixel centres is projected into the ortho and source images.
    The homography between the ortho and source projections is then used to resample the
    source image into the ortho pixels covered by the cell.  Cells with nodata elevations, or
    that do not project fully inside both the ortho and source images, are skipped and leave
    the ortho unchanged.

    :param rectification:
        Projector for the photo.
    :param src_transform:
        Source pixel to photo transform (see :func:`~gridortho.frames.pixel_to_photo_transform`).
    :param ortho_transform:
        Ortho pixel to terrain transform (see :func:`~gridortho.frames.ortho_transform`).
    :param interp:
        Interpolation method for resampling the source image.
    """

    # homographies with determinants smaller than this are considered singular
    _min_det = 1e-12
    # source window expansion (pixels) to cover the interpolation kernel
    _src_expand = {Interp.nearest: 1, Interp.bilinear: 1, Interp.cubic: 2, Interp.lanczos: 4}

    def __init__(
        self,
        rectification: DifferentialRectification,
        src_transform: rio.Affine,
        ortho_transform: rio.Affine,
        interp: str | Interp = Interp.nearest,
    ):
        self._rectification = rectification
        self._src_transform = src_transform
        self._ortho_transform = ortho_transform
        self._interp = Interp(interp)

    def project_nodes(
        self, dtm_array: np.ndarray, dtm_transform: rio.Affine
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Project DTM pixel centres into the ortho and source images.

        :param dtm_array:
            DTM elevations with nodata as NaN.
        :param dtm_transform:
            DTM pixel to terrain transform.

        :return:
            Ortho and source (x, y) pixel coordinates as 2-by-rows-by-cols arrays.  Nodes that
            have nodata elevations, or lie behind the camera, have NaN source coordinates.
        """
        rows, cols = dtm_array.shape
        j_grid, i_grid = np.meshgrid(np.arange(cols), np.arange(rows), indexing='xy')
        center_transform = dtm_transform * rio.Affine.translation(0.5, 0.5)
        xy = np.array(center_transform * (j_grid.reshape(-1), i_grid.reshape(-1)))
        xyz = np.vstack((xy, dtm_array.reshape(1, -1)))

        ortho_ji = np.array(~self._ortho_transform * xy)

        src_ji = np.full((2, xyz.shape[1]), fill_value=np.nan)
        valid = np.isfinite(xyz[2]) & self._rectification.in_front(xyz)
        if np.any(valid):
            photo_xy = self._rectification.backward_projection(xyz[:, valid])
            src_ji[:, valid] = ~self._src_transform * photo_xy

        return ortho_ji.reshape(2, rows, cols), src_ji.reshape(2, rows, cols)

    @staticmethod
    def _quad_window(quad: np.ndarray, shape: tuple[int, int], expand: int = 0) -> Window:
        """Return the window of pixels whose centres bound the (x, y) pixel centre ``quad``
        points, expanded by ``expand`` pixels and clipped to an image of (height, width)
        ``shape``.
        """
        j0, i0 = np.floor(quad.min(axis=1)).astype('int') - expand
        j1, i1 = np.ceil(quad.max(axis=1)).astype('int') + expand
        j0, i0 = max(j0, 0), max(i0, 0)
        j1, i1 = min(j1, shape[1] - 1), min(i1, shape[0] - 1)
        return Window(j0, i0, j1 - j0 + 1, i1 - i0 + 1)

    @staticmethod
    def _inside(quad: np.ndarray, shape: tuple[int, int]) -> bool:
        """Whether the (x, y) pixel corner ``quad`` points lie inside an image of (height,
        width) ``shape``.
        """
        return bool(
            np.all(np.isfinite(quad))
            and np.all((quad[0] >= 0) & (quad[0] <= shape[1]))
            and np.all((quad[1] >= 0) & (quad[1] <= shape[0]))
        )

    def cell_windows(
        self,
        ortho_quad: np.ndarray,
        src_quad: np.ndarray,
        ortho_shape: tuple[int, int],
        src_shape: tuple[int, int],
    ) -> tuple[Window, Window]:
        """
        Return the ortho and source windows for a cell.

        :param ortho_quad:
            Ortho (x, y) pixel coordinates of the cell corners as a 2-by-4 array.
        :param src_quad:
            Source (x, y) pixel coordinates of the cell corners as a 2-by-4 array.
        :param ortho_shape:
            Ortho (height, width).
        :param src_shape:
            Source (height, width).

        :return:
            Ortho window, and source window expanded to cover the interpolation kernel (at
            least a pixel).
        """
        # convert from pixel corner to pixel centre coordinates
        ortho_win = self._quad_window(ortho_quad - 0.5, ortho_shape)
        src_win = self._quad_window(
            src_quad - 0.5, src_shape, expand=self._src_expand[self._interp]
        )
        return ortho_win, src_win

    def cell_homography(self, ortho_pts: np.ndarray, src_pts: np.ndarray) -> np.ndarray:
        """
        Return the 3-by-3 homography mapping 4 ortho points to 4 source points.

        :raises GeometryError:
            If the points are degenerate.
        """
        try:
            H = cv2.getPerspectiveTransform(
                ortho_pts.T.astype('float32'), src_pts.T.astype('float32')
            )
        except cv2.error as ex:
            raise GeometryError(f'Could not find cell homography: {str(ex)}') from ex
        if not np.all(np.isfinite(H)) or abs(np.linalg.det(H)) < self._min_det:
            raise GeometryError('Cell homography is singular.')
        return H

    def remap_cell(
        self,
        src_array: np.ndarray,
        ortho_array: np.ndarray,
        ortho_mask: np.ndarray,
        ortho_quad: np.ndarray,
        src_quad: np.ndarray,
    ) -> bool:
        """
        Resample the source image into the ortho pixels covered by a cell.

        :param src_array:
            Source image array, (bands, height, width).
        :param ortho_array:
            Ortho image array, (bands, height, width).  Updated in place.
        :param ortho_mask:
            Ortho valid pixel mask, (height, width).  Updated in place.
        :param ortho_quad:
            Ortho (x, y) pixel coordinates of the cell corners as a 2-by-4 array.
        :param src_quad:
            Source (x, y) pixel coordinates of the cell corners as a 2-by-4 array.

        :return:
            Whether the cell was resampled (``True``) or skipped (``False``).
        """
        ortho_shape, src_shape = ortho_array.shape[-2:], src_array.shape[-2:]
        if not self._inside(ortho_quad, ortho_shape) or not self._inside(src_quad, src_shape):
            return False

        ortho_win, src_win = self.cell_windows(ortho_quad, src_quad, ortho_shape, src_shape)
        ortho_slices = ortho_win.toslices()
        src_slices = src_win.toslices()

        # cell corners in window pixel centre coordinates
        ortho_pts = ortho_quad - 0.5 - np.array([[ortho_win.col_off], [ortho_win.row_off]])
        src_pts = src_quad - 0.5 - np.array([[src_win.col_off], [src_win.row_off]])
        H = self.cell_homography(ortho_pts, src_pts)

        # mask of ortho window pixels inside the cell (sub-pixel vertices with 4 fractional bits)
        shift = 4
        poly = np.round(ortho_pts.T * (1 << shift)).astype('int32')
        cell_mask = np.zeros((int(ortho_win.height), int(ortho_win.width)), dtype='uint8')
        cell_mask = cv2.fillPoly(cell_mask, [poly], color=(1,), shift=shift).view(bool)

        dsize = (int(ortho_win.width), int(ortho_win.height))
        flags = self._interp.to_cv() | cv2.WARP_INVERSE_MAP
        for bi in range(src_array.shape[0]):
            ortho_tile = ortho_array[bi][ortho_slices]
            # warp into a copy so that ortho pixels outside the cell are not written
            remap_tile = ortho_tile.copy()
            cv2.warpPerspective(
                np.ascontiguousarray(src_array[bi][src_slices]),
                H,
                dsize,
                dst=remap_tile,
                flags=flags,
                borderMode=cv2.BORDER_TRANSPARENT,
            )
            ortho_tile[cell_mask] = remap_tile[cell_mask]

        ortho_mask[ortho_slices] |= cell_mask
        return True

    def process(
        self,
        src_array: np.ndarray,
        ortho_array: np.ndarray,
        dtm_array: np.ndarray,
        dtm_transform: rio.Affine,
        ortho_mask: np.ndarray | None = None,
        progress: bool | dict = False,
    ) -> tuple[int, int]:
        """
        Rectify a source image into an ortho image over all cells of a DTM window.

        :param src_array:
            Source image array, (bands, height, width).
        :param ortho_array:
            Ortho image array, (bands, height, width) with the source dtype.  Updated in place.
        :param dtm_array:
            DTM elevations covering the ortho bounds, with nodata as NaN.
        :param dtm_transform:
            DTM pixel to terrain transform.
        :param ortho_mask:
            Ortho valid pixel mask, (height, width).  Updated in place if supplied.
        :param progress:
            Whether to display a progress bar monitoring DTM rows.  Can be set to a dictionary
            of arguments for a custom `tqdm <https://tqdm.github.io/docs/tqdm/>`_ bar.

        :return:
            Number of resampled and skipped cells.
        """
        if src_array.shape[0] != ortho_array.shape[0]:
            raise ValueError("'src_array' and 'ortho_array' should have the same number of bands.")
        if ortho_mask is None:
            ortho_mask = np.zeros(ortho_array.shape[-2:], dtype=bool)

        ortho_ji, src_ji = self.project_nodes(dtm_array, dtm_transform)
        rows, cols = dtm_array.shape
        written = skipped = 0

        if progress is True:
            progress = common.get_tqdm_kwargs(unit='rows', leave=False)
        row_iter = range(rows - 1)
        if progress:
            row_iter = tqdm(row_iter, **progress)

        for row in row_iter:
            for col in range(cols - 1):
                # TL, TR, BR, BL nodes of the cell
                cell_rows = [row, row, row + 1, row + 1]
                cell_cols = [col, col + 1, col + 1, col]
                src_quad = src_ji[:, cell_rows, cell_cols]
                if np.any(np.isnan(src_quad)):
                    skipped += 1
                    continue
                ortho_quad = ortho_ji[:, cell_rows, cell_cols]
                if self.remap_cell(src_array, ortho_array, ortho_mask, ortho_quad, src_quad):
                    written += 1
                else:
                    skipped += 1

        logger.debug(f'Resampled {written} and skipped {skipped} DTM cells.')
        return written, skipped
