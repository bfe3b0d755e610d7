"""
Export of project transforms and structured project reports.

Matrix Text Format:
    4 lines of 4 space-separated values, row major, e.g.

    1 0 0 10.5
    0 1 0 -3.2
    0 0 1 0.8
    0 0 0 1

Reports are nested dicts/lists of numbers and strings, written as JSON or YAML.
Scan position entries include the SOP translation and its rotation as
roll/pitch/yaw degrees for quick inspection; the pose is null when the SOP
rotation block is not a proper rotation (e.g. a mirroring matrix).
"""

import json
from pathlib import Path
from typing import Any, Dict, IO, List, Optional, Union
import logging

import numpy as np
import yaml
from scipy.spatial.transform import Rotation

from .model import CameraCalibration, Project, ScanPosition

logger = logging.getLogger(__name__)

REPORT_FORMATS = ("json", "yaml")


def matrix_to_list(matrix: np.ndarray) -> List[List[float]]:
    """4x4 matrix as nested lists of floats."""
    return [[float(value) for value in row] for row in np.asarray(matrix).reshape(4, 4)]


def format_matrix(matrix: np.ndarray) -> str:
    return "\n".join(
        " ".join(repr(float(value)) for value in row)
        for row in np.asarray(matrix).reshape(4, 4)
    ) + "\n"


def write_matrix(target: Union[str, Path, IO[str]], matrix: np.ndarray) -> None:
    """
    Write a 4x4 matrix as four lines of space-separated values.

    Args:
        target: Path or open text stream
        matrix: 4x4 matrix
    """
    text = format_matrix(matrix)
    if hasattr(target, "write"):
        target.write(text)
        return
    with open(target, "w") as f:
        f.write(text)


def sop_matrices(project: Project, frozen_only: bool = False) -> Dict[str, np.ndarray]:
    """
    SOP matrices by scan position name, in model order.

    Args:
        project: Project to export from
        frozen_only: Only include scan positions whose SOP is frozen
    """
    return {
        name: scan_position.sop
        for name, scan_position in project.scan_positions.items()
        if scan_position.is_frozen or not frozen_only
    }


def pop_matrix(project: Project) -> np.ndarray:
    return project.pop


def export_sops(project: Project, out_dir: Union[str, Path], frozen_only: bool = False) -> List[Path]:
    """
    Write one ``<scan position>.txt`` matrix file per scan position.

    Returns:
        Paths of the written files
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    written = []
    for name, sop in sop_matrices(project, frozen_only).items():
        path = out_dir / f"{name}.txt"
        write_matrix(path, sop)
        written.append(path)

    skipped = len(project.scan_positions) - len(written)
    if skipped:
        logger.info(f"Skipped {skipped} scan positions that are not frozen")
    logger.info(f"Wrote {len(written)} SOP matrices to {out_dir}")
    return written


def _pose(matrix: np.ndarray) -> Optional[Dict[str, Any]]:
    """Translation and roll/pitch/yaw of a transform, or None if its rotation block is improper."""
    try:
        rotation = Rotation.from_matrix(matrix[:3, :3])
    except ValueError as e:
        logger.debug(f"No pose for matrix: {e}")
        return None
    roll, pitch, yaw = rotation.as_euler("xyz", degrees=True)
    return {
        "translation": [float(value) for value in matrix[:3, 3]],
        "roll": float(roll),
        "pitch": float(pitch),
        "yaw": float(yaw),
    }


def _scan_position_to_dict(scan_position: ScanPosition) -> Dict[str, Any]:
    return {
        "name": scan_position.name,
        "frozen": scan_position.is_frozen,
        "sop": matrix_to_list(scan_position.sop),
        "pose": _pose(scan_position.sop),
        "scans": list(scan_position.scans),
        "mount_calibrations": [
            {
                "name": mount.name,
                "camera": mount.camera_name,
                "image_file": mount.image_file,
                "matrix": matrix_to_list(mount.mount_transform),
            }
            for mount in scan_position.mount_calibrations.values()
        ],
    }


def _camera_to_dict(camera: CameraCalibration) -> Dict[str, Any]:
    data = {
        "name": camera.name,
        "model": camera.model,
        "version": camera.version,
        "fx": camera.fx,
        "fy": camera.fy,
        "cx": camera.cx,
        "cy": camera.cy,
        "radial_distortion": list(camera.radial_distortion_coeffs),
        "tangential_distortion": list(camera.tangential_distortion_coeffs),
        "image_width": camera.image_width,
        "image_height": camera.image_height,
    }
    if camera.pixel_size is not None:
        data["pixel_size"] = list(camera.pixel_size)
    if camera.angle_extents is not None:
        extents = camera.angle_extents
        data["angle_extents"] = {
            "tan_min_horz": extents.tan_min_horz,
            "tan_max_horz": extents.tan_max_horz,
            "tan_min_vert": extents.tan_min_vert,
            "tan_max_vert": extents.tan_max_vert,
        }
    return data


def project_to_dict(project: Project) -> Dict[str, Any]:
    """
    Structured description of a project.

    Returns:
        Dictionary with ``path``, ``pop``, ``scan_positions`` and
        ``camera_calibrations`` entries
    """
    return {
        "path": str(project.path) if project.path is not None else None,
        "pop": matrix_to_list(project.pop),
        "scan_positions": [
            _scan_position_to_dict(scan_position)
            for scan_position in project.scan_positions.values()
        ],
        "camera_calibrations": [
            _camera_to_dict(camera) for camera in project.camera_calibrations.values()
        ],
    }


def dump_report(project: Project, fmt: str = "json") -> str:
    """
    Project report as JSON or YAML text.

    Raises:
        ValueError: on an unknown format
    """
    data = project_to_dict(project)
    if fmt == "json":
        return json.dumps(data, indent=2) + "\n"
    if fmt == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    raise ValueError(f"Unknown report format '{fmt}', expected one of {REPORT_FORMATS}")


def save_report(project: Project, output_path: Union[str, Path], fmt: str = "json") -> None:
    """
    Save a project report.

    Args:
        project: Project to describe
        output_path: Path for the report file
        fmt: ``json`` or ``yaml``
    """
    text = dump_report(project, fmt)
    with open(output_path, "w") as f:
        f.write(text)

    logger.info(f"Report saved to {output_path}")
