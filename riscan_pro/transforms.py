"""
Coordinate frame resolution for RiSCAN Pro projects.

Frames form a fixed tree rooted at the global frame:

    GLCS  global coordinate system
     └─ PRCS  project coordinate system        (child -> parent: POP)
         └─ SOCS  scanner's own, per scan position   (child -> parent: SOP)
             └─ CMCS  camera, per mount                (parent -> child: mount transform)

A transform between two frames walks up from the source to the lowest common
ancestor and down to the target. Camera frames are leaves: a chain may start
or end at one but never passes through one, so a chain between two different
camera frames does not exist.

Conventions:
    - Points are column vectors [x, y, z, 1]ᵗ
    - Composition is father-to-child left multiplication: A then B is B @ A
    - Matrices are trusted as supplied; rotation blocks are not renormalized
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import logging

import numpy as np

from .errors import IntegrityError, NoPath
from .model import Project

logger = logging.getLogger(__name__)


class FrameKind(Enum):
    """The closed set of frame kinds in a project."""
    SOCS = "socs"  # scanner's own coordinate system
    PRCS = "prcs"  # project coordinate system
    GLCS = "glcs"  # global coordinate system
    CMCS = "cmcs"  # camera coordinate system


@dataclass(frozen=True)
class Frame:
    """
    A named coordinate frame.

    SOCS frames name a scan position; CMCS frames name a scan position and a
    mount on it; PRCS and GLCS are unique and name nothing.
    """
    kind: FrameKind
    scan_position: Optional[str] = None
    mount: Optional[str] = None

    def __post_init__(self):
        needs_scan_position = self.kind in (FrameKind.SOCS, FrameKind.CMCS)
        needs_mount = self.kind is FrameKind.CMCS
        if needs_scan_position != (self.scan_position is not None):
            raise ValueError(f"{self.kind.value} frame scan_position mismatch: {self.scan_position!r}")
        if needs_mount != (self.mount is not None):
            raise ValueError(f"{self.kind.value} frame mount mismatch: {self.mount!r}")

    @classmethod
    def glcs(cls) -> "Frame":
        return cls(FrameKind.GLCS)

    @classmethod
    def prcs(cls) -> "Frame":
        return cls(FrameKind.PRCS)

    @classmethod
    def socs(cls, scan_position: str) -> "Frame":
        return cls(FrameKind.SOCS, scan_position)

    @classmethod
    def cmcs(cls, scan_position: str, mount: str) -> "Frame":
        return cls(FrameKind.CMCS, scan_position, mount)

    @classmethod
    def parse(cls, text: str) -> "Frame":
        """
        Parse a frame from its string form.

        Accepted forms: ``glcs``, ``prcs``, ``socs:<scan position>`` and
        ``cmcs:<scan position>/<mount>``.

        Raises:
            ValueError: if the text is not a frame
        """
        kind_text, _, rest = text.strip().partition(":")
        try:
            kind = FrameKind(kind_text.lower())
        except ValueError:
            raise ValueError(f"Unknown frame kind: {kind_text!r}") from None
        if kind in (FrameKind.GLCS, FrameKind.PRCS):
            if rest:
                raise ValueError(f"{kind.value} frame takes no name: {text!r}")
            return cls(kind)
        if kind is FrameKind.SOCS:
            if not rest:
                raise ValueError(f"socs frame needs a scan position: {text!r}")
            return cls.socs(rest)
        scan_position, _, mount = rest.partition("/")
        if not scan_position or not mount:
            raise ValueError(f"cmcs frame needs <scan position>/<mount>: {text!r}")
        return cls.cmcs(scan_position, mount)

    @property
    def parent(self) -> Optional["Frame"]:
        if self.kind is FrameKind.CMCS:
            return Frame.socs(self.scan_position)
        if self.kind is FrameKind.SOCS:
            return Frame.prcs()
        if self.kind is FrameKind.PRCS:
            return Frame.glcs()
        return None

    def lineage(self) -> List["Frame"]:
        """This frame followed by its ancestors up to GLCS."""
        frames = [self]
        while frames[-1].parent is not None:
            frames.append(frames[-1].parent)
        return frames

    def __str__(self) -> str:
        if self.kind is FrameKind.SOCS:
            return f"socs:{self.scan_position}"
        if self.kind is FrameKind.CMCS:
            return f"cmcs:{self.scan_position}/{self.mount}"
        return self.kind.value


def to_homogeneous(points: np.ndarray) -> np.ndarray:
    """Append a column of ones to an Nx3 array."""
    return np.hstack([points, np.ones((points.shape[0], 1), dtype=np.float64)])


def invert(matrix: np.ndarray, what: str) -> np.ndarray:
    """
    Invert a 4x4 transform.

    Raises:
        IntegrityError: if the matrix is singular
    """
    try:
        return np.linalg.inv(matrix)
    except np.linalg.LinAlgError:
        raise IntegrityError(f"{what} is singular and cannot be inverted") from None


class TransformResolver:
    """
    Composes the transforms recorded in a project between any two frames.

    Holds only a reference to the (immutable) project, so a single resolver
    can be shared between threads.

    Example usage:
        resolver = TransformResolver(project)
        glcs = resolver.resolve(point, Frame.socs("SP01"), Frame.glcs())
    """

    def __init__(self, project: Project):
        self.project = project

    def _check(self, frame: Frame) -> None:
        if frame.kind is FrameKind.SOCS:
            self.project.scan_position(frame.scan_position)
        elif frame.kind is FrameKind.CMCS:
            self.project.scan_position(frame.scan_position).mount_calibration(frame.mount)

    def _to_parent(self, frame: Frame) -> np.ndarray:
        """Matrix taking points from ``frame`` to its parent."""
        if frame.kind is FrameKind.PRCS:
            return self.project.pop
        scan_position = self.project.scan_position(frame.scan_position)
        if frame.kind is FrameKind.SOCS:
            return scan_position.sop
        mount = scan_position.mount_calibration(frame.mount)
        return invert(mount.mount_transform, f"Mount transform of {frame}")

    def _from_parent(self, frame: Frame) -> np.ndarray:
        """Matrix taking points from the parent of ``frame`` into it."""
        if frame.kind is FrameKind.PRCS:
            return invert(self.project.pop, "POP")
        scan_position = self.project.scan_position(frame.scan_position)
        if frame.kind is FrameKind.SOCS:
            return invert(scan_position.sop, f"SOP of {scan_position.name}")
        return scan_position.mount_calibration(frame.mount).mount_transform

    def chain(self, from_frame: Frame, to_frame: Frame) -> np.ndarray:
        """
        Compose the 4x4 matrix taking points from one frame to another.

        Raises:
            NotFound: if a frame names an unknown scan position or mount
            NoPath: if the frames are two different camera frames
        """
        self._check(from_frame)
        self._check(to_frame)

        if (from_frame.kind is FrameKind.CMCS and to_frame.kind is FrameKind.CMCS
                and from_frame != to_frame):
            raise NoPath(f"No transform chain from {from_frame} to {to_frame}")

        up = from_frame.lineage()
        down = to_frame.lineage()
        common = next(frame for frame in up if frame in down)

        matrix = np.eye(4)
        for frame in up[:up.index(common)]:
            matrix = self._to_parent(frame) @ matrix
        for frame in reversed(down[:down.index(common)]):
            matrix = self._from_parent(frame) @ matrix

        logger.debug(f"Resolved chain {from_frame} -> {to_frame} via {common}")
        return matrix

    def resolve(self, point, from_frame: Frame, to_frame: Frame) -> np.ndarray:
        """
        Transform a single point between frames.

        Args:
            point: (x, y, z) in ``from_frame``
            from_frame: Frame the point is expressed in
            to_frame: Frame to express the point in

        Returns:
            (x, y, z) in ``to_frame``
        """
        xyz = np.asarray(point, dtype=np.float64).reshape(3)
        matrix = self.chain(from_frame, to_frame)
        return (matrix @ np.append(xyz, 1.0))[:3]

    def resolve_points(self, points, from_frame: Frame, to_frame: Frame) -> np.ndarray:
        """
        Transform an Nx3 array of points between frames.

        The chain is composed once for the whole batch.
        """
        xyz = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        matrix = self.chain(from_frame, to_frame)
        return (matrix @ to_homogeneous(xyz).T).T[:, :3]

    def resolve_transform(self, matrix, from_frame: Frame, to_frame: Frame) -> np.ndarray:
        """
        Apply the chain to another transform whose output is in ``from_frame``.

        Returns ``chain(from_frame, to_frame) @ matrix``.
        """
        inner = np.asarray(matrix, dtype=np.float64).reshape(4, 4)
        return self.chain(from_frame, to_frame) @ inner
