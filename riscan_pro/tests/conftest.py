"""
Shared fixtures: a synthetic calibration model and an on-disk RiSCAN project.
"""

from pathlib import Path

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from riscan_pro.errors import Unavailable
from riscan_pro.model import CameraCalibration, MountCalibration, Project, ScanPosition

# SOCS -> CMCS rotation for a camera looking along the scanner's +X axis
# (camera X = -Y, camera Y = -Z, camera Z = +X).
LOOK_ALONG_X = np.array([
    [0.0, -1.0, 0.0],
    [0.0, 0.0, -1.0],
    [1.0, 0.0, 0.0],
])


def transform(rotation=None, translation=(0.0, 0.0, 0.0)) -> np.ndarray:
    matrix = np.eye(4)
    if rotation is not None:
        matrix[:3, :3] = rotation
    matrix[:3, 3] = translation
    return matrix


def euler(seq: str, angles) -> np.ndarray:
    return Rotation.from_euler(seq, angles, degrees=True).as_matrix()


class FakeImageSource:
    """Image source returning fixed values per camera and recording calls."""

    def __init__(self, values):
        self.values = dict(values)
        self.calls = []

    def sample(self, candidate, pixel):
        self.calls.append((str(candidate), pixel))
        key = str(candidate)
        if key not in self.values:
            raise Unavailable(f"No image for {key}")
        return self.values[key]


@pytest.fixture
def fake_source():
    """Factory for FakeImageSource instances."""
    return FakeImageSource


@pytest.fixture
def camera():
    """Distortion-free 1024x768 camera with f = 1000 px."""
    return CameraCalibration(
        name="Infratec",
        focal_length=1000.0,
        principal_point=(512.0, 384.0),
        image_width=1024,
        image_height=768,
    )


@pytest.fixture
def distorted_camera():
    return CameraCalibration(
        name="Nikon",
        focal_length=2400.0,
        focal_length_y=2410.0,
        principal_point=(1500.0, 1000.0),
        radial_distortion_coeffs=(-0.12, 0.03, -0.001),
        tangential_distortion_coeffs=(0.0005, -0.0003),
        image_width=3000,
        image_height=2000,
    )


@pytest.fixture
def project(camera, distorted_camera):
    """
    Two scan positions under a rotated, translated project frame.

    SP01 (frozen) carries three cameras: Image001 and Image003 look along
    +X and overlap, Image002 looks along -X. SP02 carries one distorted
    camera.
    """
    sp01 = ScanPosition(
        name="SP01",
        sop=transform(euler("z", 90), (10.0, 0.0, 1.0)),
        is_frozen=True,
        mount_calibrations=[
            MountCalibration("SP01 - Image001", "Infratec",
                             transform(LOOK_ALONG_X, (0.0, 0.0, -0.1))),
            MountCalibration("SP01 - Image002", "Infratec",
                             transform(LOOK_ALONG_X @ euler("z", 180), (0.0, 0.0, -0.1))),
            MountCalibration("SP01 - Image003", "Infratec",
                             transform(LOOK_ALONG_X, (0.2, 0.0, -0.1))),
        ],
        scans=["151120_150227", "151120_150404"],
    )
    sp02 = ScanPosition(
        name="SP02",
        sop=transform(euler("xyz", [10, -5, 45]), (-5.0, 3.0, 0.0)),
        mount_calibrations=[
            MountCalibration("SP02 - Image001", "Nikon",
                             transform(LOOK_ALONG_X @ euler("z", -90), (0.05, 0.0, -0.1))),
        ],
        scans=["151120_155528"],
    )
    return Project(
        pop=transform(euler("z", 30), (1000.0, 2000.0, 50.0)),
        scan_positions=[sp01, sp02],
        camera_calibrations=[camera, distorted_camera],
    )


RSP_XML = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE project SYSTEM "./project.dtd" [
<!-- PUT INTERNAL DTD HERE -->
]>
<project>
  <name>Test project</name>
  <pop>
    <matrix>0 -1 0 100 1 0 0 200 0 0 1 10 0 0 0 1</matrix>
  </pop>
  <calibrations>
    <mountcalibs>
      <mountcalib_matrix>
        <name>Infratec</name>
        <matrix>0 -1 0 0
                0 0 -1 0
                1 0 0 -0.1
                0 0 0 1</matrix>
      </mountcalib_matrix>
    </mountcalibs>
    <camcalibs>
      <camcalib_opencv>
        <name>Infratec_VarioCAM_HD_15mm_11-16-2015_Preston</name>
        <cameramodel>Infratec VarioCAM HD head 800</cameramodel>
        <version>2</version>
        <angle_extents>
          <tan_max_horz>0.5</tan_max_horz>
          <tan_max_vert>0.4</tan_max_vert>
          <tan_min_horz>-0.5</tan_min_horz>
          <tan_min_vert>-0.4</tan_min_vert>
        </angle_extents>
        <internal_opencv>
          <cx>4</cx>
          <cy>3</cy>
          <fx>10</fx>
          <fy>10.5</fy>
          <k1>-0.25</k1>
          <k2>0.1</k2>
          <k3>0</k3>
          <k4>0</k4>
          <p1>0.001</p1>
          <p2>-0.002</p2>
        </internal_opencv>
        <intrinsic_opencv>
          <dx>0.017</dx>
          <dy>0.017</dy>
          <nx>8</nx>
          <ny>6</ny>
        </intrinsic_opencv>
      </camcalib_opencv>
    </camcalibs>
  </calibrations>
  <scanpositions>
    <scanposition>
      <name>SP01</name>
      <singlescans>
        <scan>
          <name>151120_150227</name>
        </scan>
        <scan>
          <name>151120_150404</name>
        </scan>
      </singlescans>
      <scanposimages>
        <scanposimage>
          <name>SP01 - Image001</name>
          <file>SP01 - Image001.csv</file>
          <cop>
            <matrix>0 -1 0 0 1 0 0 0 0 0 1 0.2 0 0 0 1</matrix>
          </cop>
          <camcalib_ref noderef="/calibrations/camcalibs/Infratec_VarioCAM_HD_15mm_11-16-2015_Preston"/>
          <mountcalib_ref noderef="/calibrations/mountcalibs/Infratec"/>
        </scanposimage>
      </scanposimages>
      <sop>
        <freeze>1</freeze>
        <matrix>1 0 0 1 0 1 0 2 0 0 1 0.5 0 0 0 1</matrix>
      </sop>
    </scanposition>
    <scanposition>
      <name>SP02</name>
      <singlescans>
        <scan>
          <name>151120_155528</name>
        </scan>
      </singlescans>
      <scanposimages>
        <scanposimage>
          <name>SP02 - Image001</name>
          <file>SP02 - Image001.csv</file>
          <cop>
            <matrix>1 0 0 0 0 1 0 0 0 0 1 0 0 0 0 1</matrix>
          </cop>
          <camcalib_ref noderef="/calibrations/camcalibs/Infratec_VarioCAM_HD_15mm_11-16-2015_Preston"/>
          <mountcalib_ref noderef="/calibrations/mountcalibs/Infratec"/>
        </scanposimage>
      </scanposimages>
      <sop>
        <freeze>0</freeze>
        <matrix>-1 0 0 -4 0 -1 0 0 0 0 1 0.2 0 0 0 1</matrix>
      </sop>
    </scanposition>
  </scanpositions>
</project>
"""


def infratec_csv(width: int = 8, height: int = 6) -> bytes:
    """Infratec export whose value at row r, column c is r * 10 + c + 0.5."""
    header = (
        b"[Settings]\r\n"
        b"Version=3\r\n"
        b"ImageWidth=" + str(width).encode() + b"\r\n"
        b"ImageHeight=" + str(height).encode() + b"\r\n"
        b"TempUnit=\xb0C\r\n"
        b"\r\n"
        b"[Data]\r\n"
    )
    rows = [
        ";".join(f"{r * 10 + c + 0.5}" for c in range(width))
        for r in range(height)
    ]
    return header + "\r\n".join(rows).encode() + b"\r\n"


@pytest.fixture
def rsp_xml():
    return RSP_XML


@pytest.fixture
def project_dir(tmp_path) -> Path:
    """A project.RiSCAN directory with project.rsp and the SP01 image only."""
    project_dir = tmp_path / "project.RiSCAN"
    project_dir.mkdir()
    (project_dir / "project.rsp").write_text(RSP_XML, encoding="utf-8")

    images = project_dir / "SCANS" / "SP01" / "SCANPOSIMAGES"
    images.mkdir(parents=True)
    (images / "SP01 - Image001.csv").write_bytes(infratec_csv())
    return project_dir
