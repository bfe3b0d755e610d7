"""
Point colorization from calibrated scan-position cameras.

For each point the colorizer walks an ordered list of candidate cameras:
    1. Resolve the point into the candidate's camera frame
    2. Project it through the candidate's camera calibration
    3. If in frame, ask the image source for the value at that pixel
The first candidate that yields a value wins. A point no candidate can color
is reported as UNCOLORIZED, which is a normal outcome and not an error.

Image decoding is not done here: an ImageSource supplies samples and raises
Unavailable when it cannot (no image loaded, pixel without data, ...).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Protocol, Sequence, Tuple
import logging

import numpy as np

from .camera import CameraProjector, Projection
from .errors import Unavailable
from .model import Project
from .transforms import Frame, TransformResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CameraCandidate:
    """A camera identified by its scan position and mount."""
    scan_position: str
    mount: str

    @property
    def frame(self) -> Frame:
        return Frame.cmcs(self.scan_position, self.mount)

    def __str__(self) -> str:
        return f"{self.scan_position}/{self.mount}"


class ImageSource(Protocol):
    """Supplies image values for the colorizer."""

    def sample(self, candidate: CameraCandidate, pixel: Tuple[float, float]) -> float:
        """
        Return the image value at ``pixel`` (u, v) of the candidate's image.

        Raises:
            Unavailable: if no value can be supplied
        """
        ...


class ColorStatus(Enum):
    COLORIZED = "colorized"
    UNCOLORIZED = "uncolorized"


@dataclass(frozen=True)
class ColorResult:
    """Color of a point and the camera/pixel it was sampled from."""
    status: ColorStatus
    color: Optional[float] = None
    candidate: Optional[CameraCandidate] = None
    pixel: Optional[Tuple[float, float]] = None

    @property
    def colorized(self) -> bool:
        return self.status is ColorStatus.COLORIZED


UNCOLORIZED = ColorResult(ColorStatus.UNCOLORIZED)


class Colorizer:
    """
    Colors points from the images of a project's mounted cameras.

    The colorizer only reads the project, so one instance may color
    independent points from several threads provided the image source is
    thread-safe.

    Example usage:
        colorizer = Colorizer(project, InfratecImageSource(project))
        candidates = colorizer.candidates_for("SP01")
        result = colorizer.colorize(point_glcs, candidates)
        if result.colorized:
            print(result.color)
    """

    def __init__(self, project: Project, image_source: ImageSource):
        self.project = project
        self.image_source = image_source
        self.resolver = TransformResolver(project)

    def candidates_for(self, scan_position: Optional[str] = None) -> List[CameraCandidate]:
        """
        Candidates for every mount in model order.

        Args:
            scan_position: Restrict to this scan position's mounts
        """
        if scan_position is not None:
            mounts = self.project.scan_position(scan_position).mount_calibrations
            return [CameraCandidate(scan_position, name) for name in mounts]
        return [
            CameraCandidate(sp.name, mount.name)
            for sp, mount in self.project.mount_calibrations()
        ]

    def projector(self, candidate: CameraCandidate) -> CameraProjector:
        """
        Projector for the candidate's camera calibration.

        Raises:
            NotFound: if the scan position or mount does not exist
            InvalidCalibration: if the camera calibration is non-physical
        """
        mount = self.project.scan_position(candidate.scan_position).mount_calibration(candidate.mount)
        return CameraProjector(self.project.camera_calibration(mount.camera_name))

    def pixel(
        self,
        point,
        candidate: CameraCandidate,
        from_frame: Optional[Frame] = None,
    ) -> Projection:
        """Project a point, given in ``from_frame`` (GLCS by default), into a candidate's image."""
        if from_frame is None:
            from_frame = Frame.glcs()
        point_camera = self.resolver.resolve(point, from_frame, candidate.frame)
        return self.projector(candidate).project_point(point_camera)

    def _sample(self, candidate: CameraCandidate, projection: Projection) -> Optional[ColorResult]:
        if not projection.in_frame:
            logger.debug(f"{candidate}: {projection.status.value}")
            return None
        try:
            color = self.image_source.sample(candidate, projection.pixel)
        except Unavailable as e:
            logger.debug(f"{candidate}: sample unavailable ({e})")
            return None
        return ColorResult(ColorStatus.COLORIZED, color, candidate, projection.pixel)

    def colorize(
        self,
        point,
        candidates: Iterable[CameraCandidate],
        from_frame: Optional[Frame] = None,
    ) -> ColorResult:
        """
        Color a single point.

        Args:
            point: (x, y, z) in ``from_frame``
            candidates: Cameras to try, in priority order
            from_frame: Frame of the point (GLCS by default)

        Returns:
            The first successful ColorResult, or UNCOLORIZED
        """
        for candidate in candidates:
            result = self._sample(candidate, self.pixel(point, candidate, from_frame))
            if result is not None:
                return result
        return UNCOLORIZED

    def colorize_points(
        self,
        points,
        candidates: Sequence[CameraCandidate],
        from_frame: Optional[Frame] = None,
    ) -> Iterator[ColorResult]:
        """
        Color an Nx3 array of points, yielding one ColorResult per point.

        Chains and projectors are built once per call, so lookup errors are
        raised before the first point is processed.
        """
        if from_frame is None:
            from_frame = Frame.glcs()
        prepared = [
            (candidate,
             self.resolver.chain(from_frame, candidate.frame),
             self.projector(candidate))
            for candidate in candidates
        ]
        xyz = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        logger.info(f"Colorizing {len(xyz)} points from {len(prepared)} candidate cameras")

        for point in xyz:
            homogeneous = np.append(point, 1.0)
            result = UNCOLORIZED
            for candidate, chain, projector in prepared:
                projection = projector.project_point((chain @ homogeneous)[:3])
                sampled = self._sample(candidate, projection)
                if sampled is not None:
                    result = sampled
                    break
            yield result
