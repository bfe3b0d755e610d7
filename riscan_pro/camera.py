"""
Camera projection for RiSCAN Pro camera calibrations.

Maps a point in a camera's own frame (CMCS, Z along the view direction) to
pixel coordinates and classifies the result.

Projection Model:
    1. Points with Z <= 0 are behind the camera
    2. Perspective projection: x = X/Z, y = Y/Z
    3. Distortion: radial polynomial in r² plus two-coefficient tangential terms
    4. Pixel mapping: u = fx*x' + cx, v = fy*y' + cy
    5. Pixels outside [0, width) x [0, height) are out of frame
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
import logging

import numpy as np

from .model import CameraCalibration

logger = logging.getLogger(__name__)


class ProjectionStatus(Enum):
    IN_FRAME = "in_frame"
    OUT_OF_FRAME = "out_of_frame"
    BEHIND_CAMERA = "behind_camera"


@dataclass(frozen=True)
class Projection:
    """
    Outcome of projecting one point.

    ``pixel`` is None only for BEHIND_CAMERA. OUT_OF_FRAME projections keep
    the computed (possibly negative) pixel for diagnostics.
    """
    status: ProjectionStatus
    pixel: Optional[Tuple[float, float]] = None

    @property
    def in_frame(self) -> bool:
        return self.status is ProjectionStatus.IN_FRAME


BEHIND_CAMERA = Projection(ProjectionStatus.BEHIND_CAMERA)


class CameraProjector:
    """
    Projects camera-frame points through one camera calibration.

    Distortion equations (applied to normalized coordinates x, y):
        r² = x² + y²
        R  = 1 + k1*r² + k2*r⁴ + k3*r⁶ + ...
        x' = x*R + 2*p1*x*y + p2*(r² + 2*x²)
        y' = y*R + p1*(r² + 2*y²) + 2*p2*x*y
    """

    def __init__(self, calibration: CameraCalibration):
        """
        Args:
            calibration: Camera calibration to project with

        Raises:
            InvalidCalibration: if the calibration is non-physical
        """
        calibration.validate()
        self.calibration = calibration
        self.fx = calibration.fx
        self.fy = calibration.fy
        self.cx, self.cy = calibration.principal_point
        self.radial = np.asarray(calibration.radial_distortion_coeffs, dtype=np.float64)
        p = tuple(calibration.tangential_distortion_coeffs) + (0.0, 0.0)
        self.p1, self.p2 = p[0], p[1]
        self.image_width = calibration.image_width
        self.image_height = calibration.image_height

    def _apply_distortion(self, x: float, y: float) -> Tuple[float, float]:
        r2 = x * x + y * y

        radial = 1.0
        r_power = 1.0
        for k in self.radial:
            r_power *= r2
            radial += k * r_power

        x_tangential = 2 * self.p1 * x * y + self.p2 * (r2 + 2 * x * x)
        y_tangential = self.p1 * (r2 + 2 * y * y) + 2 * self.p2 * x * y

        return x * radial + x_tangential, y * radial + y_tangential

    def project_point(self, point_camera) -> Projection:
        """
        Project a 3D point in the camera frame to pixel coordinates.

        Args:
            point_camera: (X, Y, Z) in the camera frame

        Returns:
            Projection with status and pixel (u, v)
        """
        X, Y, Z = (float(c) for c in np.asarray(point_camera, dtype=np.float64).reshape(3))

        if Z <= 0:
            logger.debug(f"Point behind camera: Z={Z}")
            return BEHIND_CAMERA

        x = X / Z
        y = Y / Z
        x_dist, y_dist = self._apply_distortion(x, y)

        u = self.fx * x_dist + self.cx
        v = self.fy * y_dist + self.cy

        extents = self.calibration.angle_extents
        if extents is not None and not extents.contains(x, y):
            return Projection(ProjectionStatus.OUT_OF_FRAME, (u, v))
        if not self.is_valid_pixel(u, v):
            return Projection(ProjectionStatus.OUT_OF_FRAME, (u, v))
        return Projection(ProjectionStatus.IN_FRAME, (u, v))

    def project_points_batch(self, points_camera) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Project multiple camera-frame points.

        Args:
            points_camera: Nx3 array of camera frame coordinates

        Returns:
            Tuple of:
                - u_coords: N-element array, NaN for points behind the camera
                - v_coords: N-element array, NaN for points behind the camera
                - in_frame: N-element boolean array
        """
        points = np.asarray(points_camera, dtype=np.float64).reshape(-1, 3)
        n_points = len(points)
        u_coords = np.full(n_points, np.nan)
        v_coords = np.full(n_points, np.nan)
        in_frame = np.zeros(n_points, dtype=bool)

        for i, point in enumerate(points):
            projection = self.project_point(point)
            if projection.pixel is not None:
                u_coords[i], v_coords[i] = projection.pixel
            in_frame[i] = projection.in_frame

        return u_coords, v_coords, in_frame

    def is_valid_pixel(self, u: float, v: float) -> bool:
        return self.calibration.is_valid_pixel(u, v)
