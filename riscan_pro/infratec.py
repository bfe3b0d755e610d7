"""
Infratec thermal camera images.

Infratec cameras are mounted on the scanner but their images are not fully
integrated with RiSCAN Pro, so the CSV exports are read here directly.

CSV Export Format:
    [Settings]
    ImageWidth=1024
    ImageHeight=768
    Version=3
    ...
    [Data]
    -38.64;-38.51;...      one row per image line, ';'-separated temperatures

The export contains a degree sign that is not valid UTF-8, so the file is
decoded leniently.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
import logging

import numpy as np

from .colorizer import CameraCandidate
from .errors import ParseError, Unavailable
from .model import Project
from .rsp import image_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InfratecImage:
    """A decoded Infratec CSV image."""
    path: Path
    width: int
    height: int
    version: int
    data: np.ndarray  # (height, width) temperatures

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "InfratecImage":
        """
        Read an Infratec CSV export.

        Raises:
            FileNotFoundError: if the file does not exist
            ParseError: if the header or data is malformed
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Infratec image not found: {path}")

        lines = path.read_bytes().decode("utf-8", errors="replace").splitlines()
        if not lines or lines[0].strip() != "[Settings]":
            first = lines[0] if lines else "<empty>"
            raise ParseError(f"{path}: invalid first line: {first}")

        header: Dict[str, int] = {"ImageWidth": 0, "ImageHeight": 0, "Version": 0}
        data_start = None
        for i, line in enumerate(lines[1:], start=1):
            line = line.strip()
            if line == "[Data]":
                data_start = i + 1
                break
            if not line:
                continue
            words = line.split("=")
            if len(words) != 2:
                raise ParseError(f"{path}: invalid header line: {line}")
            if words[0] in header:
                try:
                    header[words[0]] = int(words[1])
                except ValueError:
                    raise ParseError(f"{path}: invalid header value: {line}") from None
        if data_start is None:
            raise ParseError(f"{path}: unexpected end of file before [Data]")

        rows = []
        for line in lines[data_start:]:
            line = line.strip().rstrip(";")
            if not line:
                continue
            try:
                rows.append([float(value) for value in line.split(";")])
            except ValueError as e:
                raise ParseError(f"{path}: invalid data row: {e}") from None

        width, height = header["ImageWidth"], header["ImageHeight"]
        if len(rows) != height or any(len(row) != width for row in rows):
            raise ParseError(
                f"{path}: data does not match header size {width}x{height}"
            )

        data = np.array(rows, dtype=np.float64).reshape(height, width)
        data.setflags(write=False)
        logger.debug(f"Read {width}x{height} Infratec image {path.name}")
        return cls(path=path, width=width, height=height, version=header["Version"], data=data)

    def get(self, u: float, v: float) -> Optional[float]:
        """Temperature at pixel (u, v), or None outside the image."""
        if 0 <= u < self.width and 0 <= v < self.height:
            return float(self.data[int(v), int(u)])
        return None


class InfratecImageSource:
    """
    Image source reading Infratec CSV exports from a project directory.

    Images are loaded on first use and kept for the lifetime of the source.
    Images that cannot be loaded are remembered, so each failure is logged
    once and the file is not read again.
    """

    def __init__(self, project: Project):
        self.project = project
        self._images: Dict[Tuple[str, str], InfratecImage] = {}
        self._failures: Dict[Tuple[str, str], str] = {}

    def image(self, candidate: CameraCandidate) -> InfratecImage:
        """
        The image for a candidate camera.

        Raises:
            Unavailable: if the camera has no readable image on disk
        """
        key = (candidate.scan_position, candidate.mount)
        if key in self._failures:
            raise Unavailable(self._failures[key])
        if key not in self._images:
            path = image_path(self.project, candidate.scan_position, candidate.mount)
            if path is None:
                self._failures[key] = f"No image file for {candidate}"
                logger.debug(self._failures[key])
                raise Unavailable(self._failures[key])
            try:
                self._images[key] = InfratecImage.from_path(path)
            except FileNotFoundError:
                self._failures[key] = f"Image file missing for {candidate}: {path}"
                logger.warning(f"Image for {candidate} not found at {path}")
                raise Unavailable(self._failures[key]) from None
            except ParseError as e:
                self._failures[key] = f"Unreadable image for {candidate}: {e}"
                logger.warning(f"Skipping unreadable image for {candidate}: {e}")
                raise Unavailable(self._failures[key]) from None
        return self._images[key]

    def sample(self, candidate: CameraCandidate, pixel: Tuple[float, float]) -> float:
        value = self.image(candidate).get(*pixel)
        if value is None:
            raise Unavailable(f"Pixel {pixel} outside image of {candidate}")
        return value
