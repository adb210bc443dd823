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


class GridOrthoError(Exception):
    """Base exception class."""


class GridOrthoWarning(UserWarning):
    """Base warning class."""


class ParamError(GridOrthoError):
    """Raised when there is a problem with an interior / exterior parameter file or value."""


class ResourceError(GridOrthoError):
    """Raised when a raster or vector dataset cannot be opened or created."""


class GeometryError(GridOrthoError):
    """Raised when a projection or homography is degenerate."""


class DataError(GridOrthoError):
    """Raised when there is no valid elevation data where it is required."""


class DatasetIOError(GridOrthoError, OSError):
    """Raised when reading from, or writing to, an open dataset fails."""
