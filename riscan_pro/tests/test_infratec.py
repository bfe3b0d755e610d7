"""
Tests for Infratec thermal images.
"""

import logging

import numpy as np
import pytest

from riscan_pro.colorizer import CameraCandidate, Colorizer
from riscan_pro.errors import ParseError, Unavailable
from riscan_pro.infratec import InfratecImage, InfratecImageSource
from riscan_pro.model import CameraCalibration, MountCalibration, Project, ScanPosition
from riscan_pro.rsp import read_project

IMAGE_PATH = ("SCANS", "SP01", "SCANPOSIMAGES", "SP01 - Image001.csv")


class TestInfratecImage:
    """Tests for reading Infratec CSV exports."""

    @pytest.fixture
    def image(self, project_dir):
        return InfratecImage.from_path(project_dir.joinpath(*IMAGE_PATH))

    def test_header(self, image):
        assert image.version == 3
        assert image.width == 8
        assert image.height == 6

    def test_data(self, image):
        assert image.data.shape == (6, 8)
        assert image.data[0, 0] == 0.5
        assert image.data[-1, -1] == 57.5

    def test_get_rows_are_v(self, image):
        """Values are indexed by row v and column u, truncated to integers."""
        assert image.get(4, 3) == 34.5
        assert image.get(4.9, 3.2) == 34.5
        assert image.get(0, 0) == 0.5
        assert image.get(7.99, 5.99) == 57.5

    @pytest.mark.parametrize("u, v", [(-0.1, 0), (8, 0), (0, 6), (100, 100)])
    def test_get_outside(self, image, u, v):
        assert image.get(u, v) is None

    def test_trailing_separator(self, tmp_path):
        path = tmp_path / "image.csv"
        path.write_text("[Settings]\nImageWidth=2\nImageHeight=1\n[Data]\n1.5;2.5;\n")
        image = InfratecImage.from_path(path)
        assert image.get(1, 0) == 2.5

    def test_invalid_first_line(self, tmp_path):
        path = tmp_path / "image.csv"
        path.write_text("[Data]\n1;2\n")
        with pytest.raises(ParseError, match="first line"):
            InfratecImage.from_path(path)

    def test_invalid_header_line(self, tmp_path):
        path = tmp_path / "image.csv"
        path.write_text("[Settings]\nImageWidth\n[Data]\n")
        with pytest.raises(ParseError, match="header"):
            InfratecImage.from_path(path)

    def test_missing_data_marker(self, tmp_path):
        path = tmp_path / "image.csv"
        path.write_text("[Settings]\nImageWidth=2\nImageHeight=1\n")
        with pytest.raises(ParseError):
            InfratecImage.from_path(path)

    def test_size_mismatch(self, tmp_path):
        path = tmp_path / "image.csv"
        path.write_text("[Settings]\nImageWidth=3\nImageHeight=1\n[Data]\n1;2\n")
        with pytest.raises(ParseError, match="size"):
            InfratecImage.from_path(path)

    def test_bad_value(self, tmp_path):
        path = tmp_path / "image.csv"
        path.write_text("[Settings]\nImageWidth=2\nImageHeight=1\n[Data]\n1;warm\n")
        with pytest.raises(ParseError):
            InfratecImage.from_path(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            InfratecImage.from_path(tmp_path / "missing.csv")


class TestInfratecImageSource:
    """Tests for the project image source."""

    @pytest.fixture
    def source(self, project_dir):
        return InfratecImageSource(read_project(project_dir))

    def test_sample(self, source):
        assert source.sample(CameraCandidate("SP01", "SP01 - Image001"), (4.5, 3.5)) == 34.5

    def test_image_cached(self, source):
        candidate = CameraCandidate("SP01", "SP01 - Image001")
        assert source.image(candidate) is source.image(candidate)

    def test_outside_image(self, source):
        with pytest.raises(Unavailable):
            source.sample(CameraCandidate("SP01", "SP01 - Image001"), (8.0, 0.0))

    def test_missing_image_file(self, source):
        """SP02's image is referenced by the project but not on disk."""
        with pytest.raises(Unavailable):
            source.sample(CameraCandidate("SP02", "SP02 - Image001"), (1.0, 1.0))

    def test_project_without_path(self, project):
        source = InfratecImageSource(project)
        with pytest.raises(Unavailable):
            source.sample(CameraCandidate("SP01", "SP01 - Image001"), (1.0, 1.0))


def _constant_csv(value: float, width: int = 8, height: int = 6) -> str:
    row = ";".join([str(value)] * width)
    return f"[Settings]\nImageWidth={width}\nImageHeight={height}\n[Data]\n" + f"{row}\n" * height


class TestUnreadableImages:
    """
    Two identity-mounted 8x6 cameras at one scan position. The point
    (0, 0, 5) lands in pixel (4, 3) of both.
    """

    FIRST = CameraCandidate("SP01", "SP01 - Image001")
    SECOND = CameraCandidate("SP01", "SP01 - Image002")

    @pytest.fixture
    def images_dir(self, tmp_path):
        images = tmp_path / "project.RiSCAN" / "SCANS" / "SP01" / "SCANPOSIMAGES"
        images.mkdir(parents=True)
        (images / "SP01 - Image002.csv").write_text(_constant_csv(21.5))
        return images

    @pytest.fixture
    def colorizer(self, tmp_path, images_dir):
        camera = CameraCalibration(
            name="Infratec",
            focal_length=10.0,
            principal_point=(4.0, 3.0),
            image_width=8,
            image_height=6,
        )
        mounts = [
            MountCalibration(name, "Infratec", np.eye(4), image_file=f"{name}.csv")
            for name in ("SP01 - Image001", "SP01 - Image002")
        ]
        project = Project(
            pop=np.eye(4),
            scan_positions=[ScanPosition("SP01", np.eye(4), mount_calibrations=mounts)],
            camera_calibrations=[camera],
            path=tmp_path / "project.RiSCAN" / "project.rsp",
        )
        return Colorizer(project, InfratecImageSource(project))

    def test_corrupt_image_is_unavailable(self, colorizer, images_dir):
        (images_dir / "SP01 - Image001.csv").write_text("garbage\n")
        with pytest.raises(Unavailable, match="first line"):
            colorizer.image_source.image(self.FIRST)

    def test_corrupt_image_falls_through(self, colorizer, images_dir):
        """A corrupt image is skipped and the next candidate colors the point."""
        (images_dir / "SP01 - Image001.csv").write_text("garbage\n")

        result = colorizer.colorize([0.0, 0.0, 5.0], [self.FIRST, self.SECOND])

        assert result.colorized
        assert result.candidate == self.SECOND
        assert result.color == 21.5

    def test_corrupt_image_in_batch(self, colorizer, images_dir):
        (images_dir / "SP01 - Image001.csv").write_text("[Settings]\nImageWidth=8\n")
        points = np.tile([0.0, 0.0, 5.0], (5, 1))

        results = list(colorizer.colorize_points(points, [self.FIRST, self.SECOND]))

        assert [r.color for r in results] == [21.5] * 5

    def test_missing_image_warns_once(self, colorizer, caplog):
        """SP01 - Image001.csv was never written."""
        points = np.tile([0.0, 0.0, 5.0], (100, 1))

        with caplog.at_level(logging.WARNING, logger="riscan_pro.infratec"):
            results = list(colorizer.colorize_points(points, [self.FIRST]))

        assert not any(r.colorized for r in results)
        warnings = [r for r in caplog.records
                    if r.name == "riscan_pro.infratec" and r.levelno == logging.WARNING]
        assert len(warnings) == 1

    def test_failure_remembered(self, colorizer, images_dir):
        """A failed image is not read again, even once the file appears."""
        source = colorizer.image_source
        with pytest.raises(Unavailable):
            source.image(self.FIRST)

        (images_dir / "SP01 - Image001.csv").write_text(_constant_csv(3.5))
        with pytest.raises(Unavailable, match="missing"):
            source.image(self.FIRST)
