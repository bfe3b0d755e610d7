"""
Exceptions raised by riscan_pro.

Lookup, integrity and path failures are exceptions. Projection outcomes
that are expected during normal operation (behind camera, out of frame)
are not; see camera.ProjectionStatus. ``Unavailable`` is raised by image
sources and handled by the colorizer.
"""


class RiscanProError(Exception):
    """Base class for all riscan_pro errors."""


class NotFound(RiscanProError, LookupError):
    """An unknown scan position, mount or camera calibration name was requested."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"No {kind} named '{name}'")


class IntegrityError(RiscanProError):
    """The calibration model references something that does not exist."""


class NoPath(RiscanProError):
    """There is no transform chain between two frames."""


class InvalidCalibration(RiscanProError):
    """A camera calibration carries non-physical parameters."""


class Unavailable(RiscanProError):
    """An image source could not supply a sample for a pixel."""


class ProjectPathError(RiscanProError):
    """The path is neither a .RiSCAN project directory nor a .rsp file."""


class ParseError(RiscanProError):
    """A project, camera or image file could not be parsed."""
