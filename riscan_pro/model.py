"""
Calibration model for a RiSCAN Pro project.

Typed, read-only representation of the calibration data stored in a
project file:

    Project
      pop                  project (PRCS) -> global (GLCS)
      scan_positions       name -> ScanPosition
        sop                scanner own (SOCS) -> project (PRCS)
        mount_calibrations name -> MountCalibration
          mount_transform  scanner own (SOCS) -> camera (CMCS)
      camera_calibrations  name -> CameraCalibration

All matrices are 4x4 homogeneous float64 arrays, flagged read-only once the
model is built. Mappings are exposed through read-only proxies. The model is
built once (see rsp.read_project) and shared without locking.
"""

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Tuple
import logging

import numpy as np

from .errors import IntegrityError, InvalidCalibration, NotFound

logger = logging.getLogger(__name__)


def as_matrix(matrix) -> np.ndarray:
    """
    Return a read-only 4x4 float64 copy of ``matrix``.

    Raises:
        ValueError: if the input cannot be shaped into 4x4
    """
    array = np.array(matrix, dtype=np.float64)
    if array.size != 16:
        raise ValueError(f"Expected 16 matrix values, got {array.size}")
    array = array.reshape(4, 4)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class AngleExtents:
    """Field-of-view limits expressed as tangents of the view angles."""
    tan_min_horz: float
    tan_max_horz: float
    tan_min_vert: float
    tan_max_vert: float

    def contains(self, tan_horz: float, tan_vert: float) -> bool:
        return (self.tan_min_horz <= tan_horz <= self.tan_max_horz
                and self.tan_min_vert <= tan_vert <= self.tan_max_vert)


@dataclass(frozen=True)
class CameraCalibration:
    """
    Intrinsic and distortion model for one physical camera.

    Attributes:
        name: Calibration name, unique within the project
        focal_length: Principal-axis focal length in pixels
        principal_point: (x, y) principal point in pixels
        radial_distortion_coeffs: k1, k2, ... applied to r², r⁴, ...
        tangential_distortion_coeffs: p1, p2
        image_width: Image width in pixels
        image_height: Image height in pixels
        focal_length_y: Vertical focal length if it differs from focal_length
        angle_extents: Optional field-of-view limits
        pixel_size: Optional (dx, dy) sensor pixel size in meters
        model: Camera model description
        version: Calibration format version
    """
    name: str
    focal_length: float
    principal_point: Tuple[float, float]
    radial_distortion_coeffs: Tuple[float, ...] = ()
    tangential_distortion_coeffs: Tuple[float, ...] = ()
    image_width: int = 0
    image_height: int = 0
    focal_length_y: Optional[float] = None
    angle_extents: Optional[AngleExtents] = None
    pixel_size: Optional[Tuple[float, float]] = None
    model: str = ""
    version: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "principal_point",
                           (float(self.principal_point[0]), float(self.principal_point[1])))
        object.__setattr__(self, "radial_distortion_coeffs",
                           tuple(float(k) for k in self.radial_distortion_coeffs))
        object.__setattr__(self, "tangential_distortion_coeffs",
                           tuple(float(p) for p in self.tangential_distortion_coeffs))

    @property
    def fx(self) -> float:
        return float(self.focal_length)

    @property
    def fy(self) -> float:
        if self.focal_length_y is None:
            return float(self.focal_length)
        return float(self.focal_length_y)

    @property
    def cx(self) -> float:
        return self.principal_point[0]

    @property
    def cy(self) -> float:
        return self.principal_point[1]

    def validate(self) -> None:
        """
        Check that the calibration is physically meaningful.

        Raises:
            InvalidCalibration: on non-positive focal length or image size,
                or more than two tangential coefficients
        """
        if not self.fx > 0 or not self.fy > 0:
            raise InvalidCalibration(
                f"Camera calibration '{self.name}' has non-positive focal length "
                f"({self.fx}, {self.fy})"
            )
        if self.image_width <= 0 or self.image_height <= 0:
            raise InvalidCalibration(
                f"Camera calibration '{self.name}' has invalid image size "
                f"{self.image_width}x{self.image_height}"
            )
        if len(self.tangential_distortion_coeffs) > 2:
            raise InvalidCalibration(
                f"Camera calibration '{self.name}' has "
                f"{len(self.tangential_distortion_coeffs)} tangential coefficients, expected at most 2"
            )

    def is_valid_pixel(self, u: float, v: float) -> bool:
        """True if (u, v) lies in [0, width) x [0, height)."""
        return 0 <= u < self.image_width and 0 <= v < self.image_height


@dataclass(frozen=True, eq=False)
class MountCalibration:
    """
    A camera mounted on a scan position.

    Attributes:
        name: Mount name, unique within its scan position (the image name
            in RiSCAN projects)
        camera_name: Name of the CameraCalibration used by this camera
        mount_transform: Scanner own (SOCS) -> camera (CMCS) transform
        image_file: File name of the image taken from this mount, if any
    """
    name: str
    camera_name: str
    mount_transform: np.ndarray
    image_file: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "mount_transform", as_matrix(self.mount_transform))


@dataclass(frozen=True, eq=False)
class ScanPosition:
    """
    One scanner setup and its local coordinate frame.

    Attributes:
        name: Scan position name, unique within the project
        sop: Scanner own position, SOCS -> PRCS
        is_frozen: True if the SOP is locked against further registration
        mount_calibrations: Cameras mounted at this position, by name
        scans: Names of the single scans recorded here
    """
    name: str
    sop: np.ndarray
    is_frozen: bool = False
    mount_calibrations: Mapping[str, MountCalibration] = field(default_factory=dict)
    scans: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "sop", as_matrix(self.sop))
        object.__setattr__(self, "scans", tuple(self.scans))
        mounts = self.mount_calibrations
        if not isinstance(mounts, Mapping):
            mounts = _index_by_name(mounts, "mount calibration", self.name)
        for key, mount in mounts.items():
            if key != mount.name:
                raise IntegrityError(
                    f"Mount calibration keyed '{key}' is named '{mount.name}' "
                    f"in scan position '{self.name}'"
                )
        object.__setattr__(self, "mount_calibrations", MappingProxyType(dict(mounts)))

    def mount_calibration(self, name: str) -> MountCalibration:
        """
        Look up a mount calibration by name.

        Raises:
            NotFound: if this scan position has no such mount
        """
        try:
            return self.mount_calibrations[name]
        except KeyError:
            raise NotFound("mount calibration", f"{self.name}/{name}") from None

    def mount_from_path(self, path) -> MountCalibration:
        """
        Look up the mount calibration of an image file.

        The file stem is the image name, e.g. ``.../SP01 - Image001.csv``
        belongs to mount ``SP01 - Image001``.

        Raises:
            NotFound: if no mount of this scan position has that name
        """
        return self.mount_calibration(Path(path).stem)

    def contains_scan(self, name: str) -> bool:
        return name in self.scans


@dataclass(frozen=True, eq=False)
class Project:
    """
    Root aggregate of the calibration model.

    Attributes:
        pop: Project own position, PRCS -> GLCS
        scan_positions: Scan positions by name, in document order
        camera_calibrations: Camera calibrations by name
        path: Source file the project was read from, if any
    """
    pop: np.ndarray
    scan_positions: Mapping[str, ScanPosition] = field(default_factory=dict)
    camera_calibrations: Mapping[str, CameraCalibration] = field(default_factory=dict)
    path: Optional[Path] = None

    def __post_init__(self):
        object.__setattr__(self, "pop", as_matrix(self.pop))

        scan_positions = self.scan_positions
        if not isinstance(scan_positions, Mapping):
            scan_positions = _index_by_name(scan_positions, "scan position", "project")
        cameras = self.camera_calibrations
        if not isinstance(cameras, Mapping):
            cameras = _index_by_name(cameras, "camera calibration", "project")

        for key, scan_position in scan_positions.items():
            if key != scan_position.name:
                raise IntegrityError(f"Scan position keyed '{key}' is named '{scan_position.name}'")
        for key, camera in cameras.items():
            if key != camera.name:
                raise IntegrityError(f"Camera calibration keyed '{key}' is named '{camera.name}'")

        for scan_position in scan_positions.values():
            for mount in scan_position.mount_calibrations.values():
                if mount.camera_name not in cameras:
                    raise IntegrityError(
                        f"Mount '{mount.name}' in scan position '{scan_position.name}' "
                        f"references unknown camera calibration '{mount.camera_name}'"
                    )

        object.__setattr__(self, "scan_positions", MappingProxyType(dict(scan_positions)))
        object.__setattr__(self, "camera_calibrations", MappingProxyType(dict(cameras)))
        logger.debug(
            f"Project built with {len(self.scan_positions)} scan positions "
            f"and {len(self.camera_calibrations)} camera calibrations"
        )

    def scan_position(self, name: str) -> ScanPosition:
        """
        Look up a scan position by name.

        Raises:
            NotFound: if the project has no such scan position
        """
        try:
            return self.scan_positions[name]
        except KeyError:
            raise NotFound("scan position", name) from None

    def camera_calibration(self, name: str) -> CameraCalibration:
        """
        Look up a camera calibration by name and check that it is usable.

        Raises:
            NotFound: if the project has no such calibration
            InvalidCalibration: if the calibration is non-physical
        """
        try:
            camera = self.camera_calibrations[name]
        except KeyError:
            raise NotFound("camera calibration", name) from None
        camera.validate()
        return camera

    def scan_position_with_scan(self, scan_name: str) -> ScanPosition:
        """
        Find the scan position that recorded the named single scan.

        Scans are named by timestamp, so a name identifies one position.

        Raises:
            NotFound: if no scan position contains the scan
        """
        for scan_position in self.scan_positions.values():
            if scan_position.contains_scan(scan_name):
                return scan_position
        raise NotFound("scan", scan_name)

    def mount_calibrations(self) -> Iterator[Tuple[ScanPosition, MountCalibration]]:
        """Yield (scan position, mount) pairs in model order."""
        for scan_position in self.scan_positions.values():
            for mount in scan_position.mount_calibrations.values():
                yield scan_position, mount


def _index_by_name(items: Iterable, kind: str, owner: str) -> dict:
    indexed = {}
    for item in items:
        if item.name in indexed:
            raise IntegrityError(f"Duplicate {kind} name '{item.name}' in {owner}")
        indexed[item.name] = item
    return indexed
