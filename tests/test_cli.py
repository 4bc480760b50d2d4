import cv2
import pytest

from bubblescope.capture_params import CaptureMode
from bubblescope.cli import (EXIT_INVALID_PARAMETERS, EXIT_OK, EXIT_SOURCE_ERROR,
                             EXIT_TRANSFORMATION_ERROR, build_capture_params, main,
                             parse_arguments)

from conftest import make_frame


def test_flags_override_defaults():
  args = parse_arguments(["--device", "2", "--size", "1280", "720", "--radius", "0.05", "0.25",
                          "--centre", "0.4", "0.6", "--angle", "45", "--video", "out.avi",
                          "--show-original", "--no-show-unwrap", "--props"])

  params = build_capture_params(args)

  assert params.capture_device == 2
  assert (params.original_width, params.original_height) == (1280, 720)
  assert (params.radius_min, params.radius_max) == (0.05, 0.25)
  assert (params.u_centre, params.v_centre) == (0.4, 0.6)
  assert params.offset_angle == 45
  assert params.modes == {CaptureMode.VIDEO, CaptureMode.SHOW_ORIGINAL}
  assert params.output_filenames[CaptureMode.VIDEO] == "out.avi"
  assert params.show_capture_props


def test_flags_override_config_file(tmp_path):
  config = tmp_path / "bubblescope.yaml"
  config.write_text("unwrap_width: 1200\nradius_max: 0.3\n")

  params = build_capture_params(parse_arguments(["--config", str(config), "--unwrap-width", "600"]))

  assert params.unwrap_width == 600
  assert params.radius_max == 0.3


def test_single_still_writes_to_given_file():
  params = build_capture_params(parse_arguments(["--single-still", "one.jpg"]))

  assert CaptureMode.SINGLE_STILL in params.modes
  assert params.output_filenames[CaptureMode.MJPG] == "one.jpg"


@pytest.mark.parametrize("argv", [
  ["--radius", "0.3", "0.2"],
  ["--unwrap-width", "0"],
  ["--angle", "361"],
  ["--config", "does-not-exist.yaml"],
])
def test_invalid_parameters_exit_code(argv):
  assert main(argv) == EXIT_INVALID_PARAMETERS


def test_bad_timelapse_pattern_exit_code(tmp_path):
  assert main(["--timelapse", str(tmp_path / "img.png")]) == EXIT_SOURCE_ERROR


def test_infeasible_geometry_exit_code(tmp_path):
  cv2.imwrite(str(tmp_path / "img_0.png"), make_frame(640, 200))

  argv = ["--timelapse", str(tmp_path / "img_%d.png"), "--radius", "0.1", "0.3",
          "--no-show-unwrap"]
  assert main(argv) == EXIT_TRANSFORMATION_ERROR


def test_timelapse_single_still(tmp_path):
  cv2.imwrite(str(tmp_path / "img_0.png"), make_frame())
  output = tmp_path / "unwrap.jpg"

  argv = ["--timelapse", str(tmp_path / "img_%d.png"), "--unwrap-width", "900",
          "--radius", "0.1", "0.3", "--single-still", str(output), "--no-show-unwrap"]

  assert main(argv) == EXIT_OK
  assert cv2.imread(str(output)).shape == (286, 900, 3)
