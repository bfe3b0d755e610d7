"""
RiSCAN Pro Project Package

Reads the calibration data of RiSCAN Pro terrestrial laser scanning projects,
moves points between the project's coordinate frames, projects them into the
mounted cameras and colors them from the camera images.

Coordinate System Chain:
    GLCS (global) ← POP ← PRCS (project) ← SOP ← SOCS (scan position) → mount → CMCS (camera)

Conventions:
    - Matrices are 4x4 homogeneous, row major, applied to column vectors
    - Camera frame: Z along the viewing direction, pixels with origin top-left

Supported Formats:
    - project.rsp XML files (inside *.RiSCAN project directories)
    - OpenCV .cam camera calibration files
    - Infratec thermal CSV image exports
"""

from .errors import (
    RiscanProError,
    NotFound,
    IntegrityError,
    NoPath,
    InvalidCalibration,
    Unavailable,
    ProjectPathError,
    ParseError,
)
from .model import Project, ScanPosition, MountCalibration, CameraCalibration, AngleExtents
from .transforms import Frame, FrameKind, TransformResolver
from .camera import CameraProjector, Projection, ProjectionStatus
from .colorizer import Colorizer, CameraCandidate, ColorResult, ColorStatus, ImageSource
from .rsp import candidate_from_image_path, read_project, read_cam_file, rsp_path
from .infratec import InfratecImage, InfratecImageSource
from .config import Config

__version__ = "0.1.0"
__all__ = [
    "RiscanProError",
    "NotFound",
    "IntegrityError",
    "NoPath",
    "InvalidCalibration",
    "Unavailable",
    "ProjectPathError",
    "ParseError",
    "Project",
    "ScanPosition",
    "MountCalibration",
    "CameraCalibration",
    "AngleExtents",
    "Frame",
    "FrameKind",
    "TransformResolver",
    "CameraProjector",
    "Projection",
    "ProjectionStatus",
    "Colorizer",
    "CameraCandidate",
    "ColorResult",
    "ColorStatus",
    "ImageSource",
    "read_project",
    "read_cam_file",
    "rsp_path",
    "candidate_from_image_path",
    "InfratecImage",
    "InfratecImageSource",
    "Config",
]
