"""
RiSCAN Pro project file reader.

Builds a calibration model (model.Project) from the project.rsp XML file
found inside every ``*.RiSCAN`` project directory.

Elements read:
    /project/pop/matrix
    /project/calibrations/mountcalibs/*              name, matrix
    /project/calibrations/camcalibs/camcalib_opencv  name, internal_opencv, intrinsic_opencv, ...
    /project/scanpositions/scanposition              name, sop, singlescans, scanposimages

Matrices are stored as 16 whitespace-separated numbers in row-major order.
References between elements are ``noderef`` attributes whose last path
component is the referenced element's name.

Each scan position image becomes a MountCalibration on its scan position.
The image's camera own position (COP) and the referenced mount calibration
(MOUNT) combine into the SOCS -> CMCS transform MOUNT @ inv(COP).
"""

import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

import numpy as np

from .colorizer import CameraCandidate
from .errors import IntegrityError, NotFound, ParseError, ProjectPathError
from .model import (
    AngleExtents,
    CameraCalibration,
    MountCalibration,
    Project,
    ScanPosition,
    as_matrix,
)
from .transforms import invert

logger = logging.getLogger(__name__)

PROJECT_RSP = "project.rsp"
PROJECT_DIR_SUFFIX = ".RiSCAN"

# Some RiSCAN versions write a DOCTYPE pointing at ./project.dtd with a
# comment-only internal subset.
_DOCTYPE = re.compile(rb"<!DOCTYPE[^\[>]*(\[.*?\])?\s*>", re.DOTALL)

_TRUE = {"1", "true", "yes"}


def rsp_path(path: Union[str, Path]) -> Path:
    """
    Return the project.rsp path for a project directory or rsp file.

    Args:
        path: A ``*.RiSCAN`` directory or a ``*.rsp`` file

    Raises:
        FileNotFoundError: if the path does not exist
        ProjectPathError: if the path is neither kind
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Project path not found: {path}")
    path = path.resolve()
    if path.is_dir() and path.suffix == PROJECT_DIR_SUFFIX:
        return path / PROJECT_RSP
    if path.is_file() and path.suffix == ".rsp":
        return path
    raise ProjectPathError(f"Not a RiSCAN Pro project path: {path}")


def parse_matrix(text: Optional[str]) -> np.ndarray:
    """
    Parse a 4x4 matrix from whitespace-separated row-major text.

    Raises:
        ParseError: if the text does not hold exactly 16 numbers
    """
    if text is None:
        raise ParseError("Missing matrix text")
    try:
        values = [float(word) for word in text.split()]
    except ValueError as e:
        raise ParseError(f"Invalid matrix text {text!r}: {e}") from None
    if len(values) != 16:
        raise ParseError(f"Expected 16 matrix values, got {len(values)}: {text!r}")
    return as_matrix(values)


def _child(element: ET.Element, path: str) -> ET.Element:
    child = element.find(path)
    if child is None:
        raise ParseError(f"Element <{element.tag}> has no child '{path}'")
    return child


def _text(element: ET.Element, path: str) -> str:
    text = _child(element, path).text
    if text is None:
        raise ParseError(f"Element '{path}' in <{element.tag}> has no text")
    return text.strip()


def _float(element: ET.Element, path: str) -> float:
    text = _text(element, path)
    try:
        return float(text)
    except ValueError:
        raise ParseError(f"Element '{path}' is not a number: {text!r}") from None


def _int(element: ET.Element, path: str) -> int:
    text = _text(element, path)
    try:
        return int(text)
    except ValueError:
        raise ParseError(f"Element '{path}' is not an integer: {text!r}") from None


def _noderef(element: ET.Element, path: str) -> str:
    noderef = _child(element, path).get("noderef")
    if not noderef:
        raise ParseError(f"Element '{path}' in <{element.tag}> has no noderef attribute")
    return noderef.rstrip("/").split("/")[-1]


def _children(element: ET.Element, path: str) -> List[ET.Element]:
    parent = element.find(path)
    return [] if parent is None else list(parent)


class ProjectReader:
    """
    Reader for RiSCAN Pro project.rsp files.

    Example usage:
        project = ProjectReader().read("data/project.RiSCAN")
        sop = project.scan_position("SP01").sop
    """

    def read(self, path: Union[str, Path]) -> Project:
        """
        Read a project from a ``*.RiSCAN`` directory or ``project.rsp`` file.

        Raises:
            FileNotFoundError: if the path does not exist
            ProjectPathError: if the path is not a project path
            ParseError: if the XML is malformed or misses required elements
            IntegrityError: if references between elements do not resolve
        """
        path = rsp_path(path)
        logger.info(f"Reading RiSCAN Pro project from {path}")
        project = self.parse(path.read_bytes(), path)
        logger.info(
            f"Loaded {len(project.scan_positions)} scan positions, "
            f"{len(project.camera_calibrations)} camera calibrations"
        )
        return project

    def parse(self, xml: bytes, path: Optional[Path] = None) -> Project:
        """Build a project from the bytes of a project.rsp document."""
        try:
            root = ET.fromstring(_DOCTYPE.sub(b"", xml, count=1))
        except ET.ParseError as e:
            raise ParseError(f"Invalid project XML: {e}") from None

        mount_matrices = self._mount_matrices(root)
        cameras = [self._camera_calibration(element)
                   for element in _children(root, "calibrations/camcalibs")]
        scan_positions = [self._scan_position(element, mount_matrices)
                          for element in _children(root, "scanpositions")]

        return Project(
            pop=parse_matrix(_text(root, "pop/matrix")),
            scan_positions=scan_positions,
            camera_calibrations=cameras,
            path=path,
        )

    def _mount_matrices(self, root: ET.Element) -> Dict[str, np.ndarray]:
        matrices = {}
        for element in _children(root, "calibrations/mountcalibs"):
            matrices[_text(element, "name")] = parse_matrix(_text(element, "matrix"))
        return matrices

    def _camera_calibration(self, element: ET.Element) -> CameraCalibration:
        if element.tag != "camcalib_opencv":
            raise ParseError(f"Unsupported camera calibration type: <{element.tag}>")

        angle_extents = None
        if element.find("angle_extents") is not None:
            angle_extents = AngleExtents(
                tan_min_horz=_float(element, "angle_extents/tan_min_horz"),
                tan_max_horz=_float(element, "angle_extents/tan_max_horz"),
                tan_min_vert=_float(element, "angle_extents/tan_min_vert"),
                tan_max_vert=_float(element, "angle_extents/tan_max_vert"),
            )

        version = None
        if element.find("version") is not None:
            version = _int(element, "version")

        cameramodel = element.find("cameramodel")
        return CameraCalibration(
            name=_text(element, "name"),
            focal_length=_float(element, "internal_opencv/fx"),
            focal_length_y=_float(element, "internal_opencv/fy"),
            principal_point=(
                _float(element, "internal_opencv/cx"),
                _float(element, "internal_opencv/cy"),
            ),
            radial_distortion_coeffs=tuple(
                _float(element, f"internal_opencv/k{i}") for i in range(1, 5)
            ),
            tangential_distortion_coeffs=(
                _float(element, "internal_opencv/p1"),
                _float(element, "internal_opencv/p2"),
            ),
            image_width=_int(element, "intrinsic_opencv/nx"),
            image_height=_int(element, "intrinsic_opencv/ny"),
            pixel_size=(
                _float(element, "intrinsic_opencv/dx"),
                _float(element, "intrinsic_opencv/dy"),
            ),
            angle_extents=angle_extents,
            model=(cameramodel.text or "").strip() if cameramodel is not None else "",
            version=version,
        )

    def _scan_position(
        self,
        element: ET.Element,
        mount_matrices: Dict[str, np.ndarray],
    ) -> ScanPosition:
        name = _text(element, "name")
        freeze = element.find("sop/freeze")
        is_frozen = freeze is not None and (freeze.text or "").strip().lower() in _TRUE

        scans = [_text(scan, "name") for scan in _children(element, "singlescans")]
        mounts = [self._image_mount(image, name, mount_matrices)
                  for image in _children(element, "scanposimages")]

        return ScanPosition(
            name=name,
            sop=parse_matrix(_text(element, "sop/matrix")),
            is_frozen=is_frozen,
            mount_calibrations=mounts,
            scans=scans,
        )

    def _image_mount(
        self,
        element: ET.Element,
        scan_position: str,
        mount_matrices: Dict[str, np.ndarray],
    ) -> MountCalibration:
        name = _text(element, "name")
        mount_name = _noderef(element, "mountcalib_ref")
        if mount_name not in mount_matrices:
            raise IntegrityError(
                f"Image '{name}' in scan position '{scan_position}' references "
                f"unknown mount calibration '{mount_name}'"
            )
        cop = parse_matrix(_text(element, "cop/matrix"))
        file_name = None
        image_file = element.find("file")
        if image_file is not None and image_file.text:
            file_name = image_file.text.strip() or None

        return MountCalibration(
            name=name,
            camera_name=_noderef(element, "camcalib_ref"),
            mount_transform=mount_matrices[mount_name] @ invert(cop, f"COP of image '{name}'"),
            image_file=file_name,
        )


def read_project(path: Union[str, Path]) -> Project:
    """
    Convenience function to read a project.

    Args:
        path: A ``*.RiSCAN`` directory or ``project.rsp`` file

    Returns:
        The project's calibration model
    """
    return ProjectReader().read(path)


_CAM_KEYS = ("fx", "fy", "cx", "cy", "k1", "k2", "k3", "k4", "p1", "p2", "nx", "ny", "dx", "dy")


def read_cam_file(path: Union[str, Path], name: Optional[str] = None) -> CameraCalibration:
    """
    Read a standalone OpenCV camera calibration (``.cam``) file.

    The file holds ``key=value`` lines; keys are case-insensitive and lines
    that are not numeric assignments are ignored.

    Args:
        path: Path to the .cam file
        name: Calibration name (defaults to the file stem)

    Raises:
        FileNotFoundError: if the file does not exist
        ParseError: if a required key is missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Camera file not found: {path}")

    settings: Dict[str, float] = {}
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            words = line.strip().split("=")
            if len(words) != 2:
                continue
            try:
                settings[words[0].strip().lower()] = float(words[1])
            except ValueError:
                continue

    missing = [key for key in _CAM_KEYS if key not in settings]
    if missing:
        raise ParseError(f"Camera file {path} is missing settings: {', '.join(missing)}")

    return CameraCalibration(
        name=name or path.stem,
        focal_length=settings["fx"],
        focal_length_y=settings["fy"],
        principal_point=(settings["cx"], settings["cy"]),
        radial_distortion_coeffs=tuple(settings[f"k{i}"] for i in range(1, 5)),
        tangential_distortion_coeffs=(settings["p1"], settings["p2"]),
        image_width=int(settings["nx"]),
        image_height=int(settings["ny"]),
        pixel_size=(settings["dx"], settings["dy"]),
    )


def image_path(project: Project, scan_position: str, mount: str) -> Optional[Path]:
    """
    Location of a mount's image inside the project directory.

    Images live at ``<project>/SCANS/<scan position>/SCANPOSIMAGES/<file>``.
    Returns None if the project was not read from disk or the mount has no
    image file.

    Raises:
        NotFound: if the scan position or mount does not exist
    """
    mount_calibration = project.scan_position(scan_position).mount_calibration(mount)
    if project.path is None or mount_calibration.image_file is None:
        return None
    return project.path.parent / "SCANS" / scan_position / "SCANPOSIMAGES" / mount_calibration.image_file


def candidate_from_image_path(project: Project, path: Union[str, Path]) -> CameraCandidate:
    """
    Find the scan position and mount an image file belongs to.

    For ``<project>/SCANS/<sp>/SCANPOSIMAGES/<image>.<ext>`` paths the scan
    position is taken from the path; otherwise every scan position is searched
    for a mount named after the file stem. The file does not have to exist.

    Raises:
        NotFound: if no scan position holds an image with that name
    """
    path = Path(path)
    if path.parent.name == "SCANPOSIMAGES" and path.parent.parent.name:
        scan_position = project.scan_position(path.parent.parent.name)
        mount = scan_position.mount_from_path(path)
        return CameraCandidate(scan_position.name, mount.name)

    matches = [
        CameraCandidate(scan_position.name, mount.name)
        for scan_position, mount in project.mount_calibrations()
        if mount.name == path.stem
    ]
    if len(matches) != 1:
        # zero or ambiguous
        raise NotFound("scan position image", str(path))
    return matches[0]
