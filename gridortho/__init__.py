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

"""Orthorectification of oriented photos with a DTM."""
import logging

from gridortho.camera import Calibration, CameraPose, Photo
from gridortho.dtm import TerrainElevationSampler
from gridortho.enums import CameraModel, Compress, Driver, Interp, PhotoState
from gridortho.footprint import FootprintEstimator
from gridortho.ortho import OrthoGridRectifier
from gridortho.pipeline import OrthorectificationPipeline
from gridortho.rectification import DifferentialRectification

# Add a NullHandler to the package logger to hide logs by default.  Applications can then add
# their own handler(s).
log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())
