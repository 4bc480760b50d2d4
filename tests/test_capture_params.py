import pytest
import yaml

from bubblescope.capture_params import (CaptureMode, CaptureParams, parse_capture_params,
                                        parse_capture_params_dict)
from bubblescope.unwrapper import BubbleScopeUnwrapper


def test_defaults_are_valid():
  params = CaptureParams()
  params.validate()

  assert params.modes == {CaptureMode.SHOW_UNWRAP}
  assert params.shows_window
  assert params.output_filenames[CaptureMode.MJPG] == 'unwrap.jpg'


@pytest.mark.parametrize("overrides", [
  {'original_width': 0},
  {'unwrap_width': -5},
  {'radius_min': 0.3, 'radius_max': 0.2},
  {'radius_max': 0.7},
  {'u_centre': 1.5},
  {'offset_angle': 400},
  {'fps': 0},
])
def test_validate_rejects_out_of_range(overrides):
  with pytest.raises(ValueError):
    CaptureParams(**overrides).validate()


def test_stills_pattern_needs_placeholder():
  params = CaptureParams(modes={CaptureMode.STILLS},
                         output_filenames={CaptureMode.STILLS: 'still.jpg'})
  with pytest.raises(ValueError):
    params.validate()

  params.output_filenames[CaptureMode.STILLS] = 'still_%03d.jpg'
  params.validate()
  assert params.still_filename(7) == 'still_007.jpg'


def test_configure_applies_calibration():
  params = CaptureParams(unwrap_width=900, radius_min=0.1, radius_max=0.3,
                         u_centre=0.45, v_centre=0.55, offset_angle=180)
  unwrapper = BubbleScopeUnwrapper()

  assert params.configure(unwrapper) == []
  assert unwrapper.unwrap_height == 286
  assert unwrapper.radius == (0.1, 0.3)
  assert unwrapper.centre == (0.45, 0.55)
  assert unwrapper.offset_angle == pytest.approx(3.141592653589793)


def test_configure_reports_rejected_settings():
  params = CaptureParams(unwrap_width=0, radius_min=0.3, radius_max=0.2)

  assert params.configure(BubbleScopeUnwrapper()) == ['unwrap_width', 'radius']


def test_dict_layout_loads_back():
  params = CaptureParams(capture_device=2, unwrap_width=1200,
                         modes={CaptureMode.VIDEO, CaptureMode.SHOW_ORIGINAL},
                         output_filenames={CaptureMode.VIDEO: 'out.avi'})

  loaded = parse_capture_params_dict(params.to_dict())

  assert loaded.to_dict() == params.to_dict()


def test_partial_dict_uses_defaults():
  params = parse_capture_params_dict({'unwrap_width': 600})

  assert params.unwrap_width == 600
  assert params.radius_max == CaptureParams().radius_max


@pytest.mark.parametrize("data", [
  {'radius_min': 0.4, 'radius_max': 0.3},
  {'unwrap_width': 'wide'},
  {'modes': ['hologram']},
  {'output_filenames': {'teleport': 'x'}},
  {'exposure': 10},
  ['not', 'a', 'mapping'],
])
def test_dict_rejects_bad_values(data):
  with pytest.raises(ValueError):
    parse_capture_params_dict(data)


def test_parse_yaml_file(tmp_path):
  config = tmp_path / 'bubblescope.yaml'
  config.write_text(yaml.safe_dump({
    'capture_device': 1,
    'original_width': 1280,
    'original_height': 720,
    'radius_min': 0.05,
    'radius_max': 0.25,
    'offset_angle': 90,
    'modes': ['mjpg'],
    'output_filenames': {'mjpg': 'latest.jpg'},
  }))

  params = parse_capture_params(str(config))

  assert params.capture_device == 1
  assert (params.original_width, params.original_height) == (1280, 720)
  assert params.modes == {CaptureMode.MJPG}
  assert params.output_filenames[CaptureMode.MJPG] == 'latest.jpg'
  assert params.output_filenames[CaptureMode.VIDEO] == 'unwrap.avi'


def test_parse_empty_yaml_file_gives_defaults(tmp_path):
  config = tmp_path / 'empty.yaml'
  config.write_text('')

  assert parse_capture_params(str(config)).to_dict() == CaptureParams().to_dict()


def test_parse_missing_file(tmp_path):
  with pytest.raises(FileNotFoundError):
    parse_capture_params(str(tmp_path / 'missing.yaml'))


def test_parse_invalid_yaml(tmp_path):
  config = tmp_path / 'broken.yaml'
  config.write_text('radius_min: [0.1\n')

  with pytest.raises(ValueError):
    parse_capture_params(str(config))


def test_parse_out_of_range_yaml(tmp_path):
  config = tmp_path / 'bad.yaml'
  config.write_text('u_centre: 2.0\n')

  with pytest.raises(ValueError, match='bad.yaml'):
    parse_capture_params(str(config))
