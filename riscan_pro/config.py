"""
Configuration module for point colorization runs.

Handles loading and validation of configuration from YAML files.
"""

import yaml
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional, Union
import logging

from .colorizer import CameraCandidate
from .model import Project
from .rsp import candidate_from_image_path
from .transforms import Frame, FrameKind

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """
    Colorization run configuration.

    Attributes:
        project: Path to the ``*.RiSCAN`` directory or ``project.rsp`` file
        points: Path to the XYZ point file (CSV or whitespace separated)
        output: Path for the colored ``x y z value`` output file
        frame: Frame the points are expressed in (``glcs``, ``prcs`` or ``socs:<sp>``)
        candidates: Cameras to try, in priority order; empty means every mount.
            Entries are CameraCandidates or image file paths
        fill_value: Value written for uncolored points; None drops them
    """
    project: str
    points: str
    output: str
    frame: str = "glcs"
    candidates: List[Union[CameraCandidate, str]] = field(default_factory=list)
    fill_value: Optional[float] = None

    def __post_init__(self):
        if self.point_frame.kind is FrameKind.CMCS:
            raise ValueError(f"Points cannot be given in a camera frame: {self.frame}")

    @property
    def point_frame(self) -> Frame:
        return Frame.parse(self.frame)

    def resolve_candidates(self, project: Project) -> List[CameraCandidate]:
        """
        Configured candidates with image paths looked up in the project.

        Raises:
            NotFound: if an image path matches no scan position image
        """
        return [
            entry if isinstance(entry, CameraCandidate)
            else candidate_from_image_path(project, entry)
            for entry in self.candidates
        ]

    @classmethod
    def from_yaml(cls, config_path: str) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Config object with loaded parameters

        Example YAML structure:
            project: "data/project.RiSCAN"
            points: "points.xyz"
            output: "colored.xyz"
            frame: glcs
            candidates:
              - scan_position: SP01
                mount: SP01 - Image001
              - image: "data/project.RiSCAN/SCANS/SP02/SCANPOSIMAGES/SP02 - Image001.csv"
            fill_value: -9999.0
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loading configuration from {config_path}")

        missing = [key for key in ('project', 'points', 'output') if key not in data]
        if missing:
            raise ValueError(f"Missing required configuration keys: {', '.join(missing)}")

        # Resolve paths relative to config file location
        config_dir = path.parent

        candidates = []
        for entry in data.get('candidates') or []:
            if isinstance(entry, dict) and 'image' in entry:
                candidates.append(str(config_dir / str(entry['image'])))
                continue
            try:
                candidates.append(CameraCandidate(
                    scan_position=str(entry['scan_position']),
                    mount=str(entry['mount']),
                ))
            except (KeyError, TypeError):
                raise ValueError(
                    f"Candidate entries need scan_position and mount, or image, got: {entry!r}"
                ) from None

        fill_value = data.get('fill_value')
        if fill_value is not None:
            fill_value = float(fill_value)

        return cls(
            project=str(config_dir / data['project']),
            points=str(config_dir / data['points']),
            output=str(config_dir / data['output']),
            frame=str(data.get('frame', 'glcs')),
            candidates=candidates,
            fill_value=fill_value,
        )

    def to_yaml(self, config_path: str) -> None:
        """Save configuration to a YAML file."""
        data = {
            'project': self.project,
            'points': self.points,
            'output': self.output,
            'frame': self.frame,
            'candidates': [
                {'scan_position': c.scan_position, 'mount': c.mount}
                if isinstance(c, CameraCandidate) else {'image': c}
                for c in self.candidates
            ],
            'fill_value': self.fill_value,
        }

        with open(config_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {config_path}")
