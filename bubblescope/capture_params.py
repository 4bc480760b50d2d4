"""
MIT License

Copyright (c) 2025 Pan Yu

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.

Author: Pan Yu
"""

from enum import Enum

import yaml


class CaptureMode(Enum):
  """Outputs a capture session can produce."""
  STILLS = 'stills'
  VIDEO = 'video'
  MJPG = 'mjpg'
  SHOW_ORIGINAL = 'show_original'
  SHOW_UNWRAP = 'show_unwrap'
  SINGLE_STILL = 'single_still'


DEFAULT_OUTPUT_FILENAMES = {
  CaptureMode.STILLS: 'still_%d.jpg',
  CaptureMode.VIDEO: 'unwrap.avi',
  CaptureMode.MJPG: 'unwrap.jpg',
}


class CaptureParams:
  """
  User options defining how frames are captured and unwrapped.

  Holds the BubbleScope calibration (centre, radius band, offset angle), the
  requested capture and unwrap sizes, and which outputs the capture loop
  should produce.
  """

  def __init__(self, capture_device=0, original_width=640, original_height=480,
               unwrap_width=1800, radius_min=0.1, radius_max=0.35,
               u_centre=0.5, v_centre=0.5, offset_angle=0.0,
               modes=None, output_filenames=None, fps=25.0,
               show_capture_props=False, timelapse_pattern=None):
    """
    Initialize capture parameters.

    Parameters:
    - capture_device: index of the video capture device
    - original_width, original_height: requested capture size in pixels
    - unwrap_width: width of the unwrapped image in pixels
    - radius_min, radius_max: radii of the sampled annulus, relative to frame width
    - u_centre, v_centre: optical centre relative to the frame dimensions
    - offset_angle: rotation of the BubbleScope on the camera in degrees
    - modes: iterable of CaptureMode, defaults to showing the unwrapped image
    - output_filenames: mapping of CaptureMode to output filename
    - fps: capture and video frame rate
    - show_capture_props: periodically report measured FPS and frame size
    - timelapse_pattern: printf-style filename pattern; when set, frames are
      read from numbered still images instead of a capture device
    """
    self.capture_device = capture_device
    self.original_width = original_width
    self.original_height = original_height
    self.unwrap_width = unwrap_width
    self.radius_min = radius_min
    self.radius_max = radius_max
    self.u_centre = u_centre
    self.v_centre = v_centre
    self.offset_angle = offset_angle
    self.modes = set(modes) if modes is not None else {CaptureMode.SHOW_UNWRAP}
    self.output_filenames = dict(DEFAULT_OUTPUT_FILENAMES)
    if output_filenames:
      self.output_filenames.update(output_filenames)
    self.fps = fps
    self.show_capture_props = show_capture_props
    self.timelapse_pattern = timelapse_pattern

  def has_mode(self, mode: CaptureMode) -> bool:
    return mode in self.modes

  @property
  def shows_window(self) -> bool:
    """True if any display window is requested."""
    return bool(self.modes & {CaptureMode.SHOW_ORIGINAL, CaptureMode.SHOW_UNWRAP})

  def still_filename(self, frame_number: int) -> str:
    """Format the stills filename pattern with a frame number."""
    return self.output_filenames[CaptureMode.STILLS] % frame_number

  def to_dict(self):
    """
    Convert capture parameters to dictionary format.

    Returns:
    Dictionary in the layout accepted by the YAML loader.
    """
    return {
      'capture_device': self.capture_device,
      'original_width': self.original_width,
      'original_height': self.original_height,
      'unwrap_width': self.unwrap_width,
      'radius_min': self.radius_min,
      'radius_max': self.radius_max,
      'u_centre': self.u_centre,
      'v_centre': self.v_centre,
      'offset_angle': self.offset_angle,
      'modes': sorted(mode.value for mode in self.modes),
      'output_filenames': {mode.value: name for mode, name in self.output_filenames.items()},
      'fps': self.fps,
      'show_capture_props': self.show_capture_props,
      'timelapse_pattern': self.timelapse_pattern
    }

  def configure(self, unwrapper):
    """
    Apply the calibration to an unwrapper.

    The original frame size is not applied here; it comes from the first
    captured frame.

    Parameters:
    - unwrapper: BubbleScopeUnwrapper to configure

    Returns:
    List of setting names the unwrapper rejected (empty on success).
    """
    rejected = []
    if not unwrapper.set_unwrap_width(self.unwrap_width):
      rejected.append('unwrap_width')
    if not unwrapper.set_original_centre(self.u_centre, self.v_centre):
      rejected.append('centre')
    if not unwrapper.set_image_radius(self.radius_min, self.radius_max):
      rejected.append('radius')
    if not unwrapper.set_offset_angle(self.offset_angle):
      rejected.append('offset_angle')
    return rejected

  def validate(self):
    """
    Validate capture parameters against their documented ranges.

    Raises:
    ValueError if any parameter is invalid or out of range.
    """
    if self.original_width <= 0 or self.original_height <= 0:
      raise ValueError(f"Invalid capture size: {self.original_width}x{self.original_height}")

    if self.unwrap_width <= 0:
      raise ValueError(f"Invalid unwrap width: {self.unwrap_width}")

    if not (0.0 <= self.radius_min <= 0.5) or not (0.0 <= self.radius_max <= 0.5):
      raise ValueError(f"Radii outside [0, 0.5]: min={self.radius_min}, max={self.radius_max}")

    if self.radius_min >= self.radius_max:
      raise ValueError(f"Minimum radius must be below maximum: min={self.radius_min}, max={self.radius_max}")

    if not (0.0 <= self.u_centre <= 1.0) or not (0.0 <= self.v_centre <= 1.0):
      raise ValueError(f"Centre outside [0, 1]: u={self.u_centre}, v={self.v_centre}")

    if not (0.0 <= self.offset_angle <= 360.0):
      raise ValueError(f"Offset angle outside [0, 360]: {self.offset_angle}")

    if self.fps <= 0:
      raise ValueError(f"Invalid frame rate: {self.fps}")

    if CaptureMode.STILLS in self.modes:
      try:
        self.still_filename(0)
      except (TypeError, ValueError):
        raise ValueError(f"Stills filename needs one integer placeholder: "
                         f"{self.output_filenames[CaptureMode.STILLS]}")

  def __str__(self):
    """String representation of capture parameters."""
    modes = ', '.join(sorted(mode.value for mode in self.modes)) or 'none'
    source = (f"timelapse '{self.timelapse_pattern}'" if self.timelapse_pattern
              else f"device {self.capture_device}")
    return (f"CaptureParams(source={source}, "
            f"size={self.original_width}x{self.original_height}, fps={self.fps:.1f}, "
            f"unwrap_width={self.unwrap_width}, "
            f"radius=({self.radius_min:.3f}, {self.radius_max:.3f}), "
            f"centre=({self.u_centre:.3f}, {self.v_centre:.3f}), "
            f"offset={self.offset_angle:.1f}, modes=[{modes}])")

  def __repr__(self):
    """Detailed representation of capture parameters."""
    return self.__str__()


def _parse_mode(name):
  try:
    return CaptureMode(name)
  except ValueError:
    raise ValueError(f"Unknown capture mode: {name!r}")


def parse_capture_params_dict(data):
  """
  Build CaptureParams from a dictionary, filling missing keys with defaults.

  Parameters:
  - data: mapping in the layout produced by CaptureParams.to_dict()

  Returns:
  Validated CaptureParams object.

  Raises:
  ValueError if a key is unknown or a value is invalid.
  """
  if not isinstance(data, dict):
    raise ValueError("Capture parameters must be a mapping")

  defaults = CaptureParams().to_dict()
  unknown = set(data) - set(defaults)
  if unknown:
    raise ValueError(f"Unknown capture parameters: {', '.join(sorted(unknown))}")

  try:
    kwargs = {
      'capture_device': int(data.get('capture_device', defaults['capture_device'])),
      'original_width': int(data.get('original_width', defaults['original_width'])),
      'original_height': int(data.get('original_height', defaults['original_height'])),
      'unwrap_width': int(data.get('unwrap_width', defaults['unwrap_width'])),
      'radius_min': float(data.get('radius_min', defaults['radius_min'])),
      'radius_max': float(data.get('radius_max', defaults['radius_max'])),
      'u_centre': float(data.get('u_centre', defaults['u_centre'])),
      'v_centre': float(data.get('v_centre', defaults['v_centre'])),
      'offset_angle': float(data.get('offset_angle', defaults['offset_angle'])),
      'fps': float(data.get('fps', defaults['fps'])),
      'show_capture_props': bool(data.get('show_capture_props', defaults['show_capture_props'])),
      'timelapse_pattern': data.get('timelapse_pattern'),
    }
  except (TypeError, ValueError) as e:
    raise ValueError(f"Invalid parameter format: {e}")

  if 'modes' in data:
    kwargs['modes'] = {_parse_mode(name) for name in data['modes'] or []}

  output_filenames = data.get('output_filenames') or {}
  if not isinstance(output_filenames, dict):
    raise ValueError("output_filenames must be a mapping of mode to filename")
  kwargs['output_filenames'] = {
    _parse_mode(mode): str(name) for mode, name in output_filenames.items()
  }

  capture_params = CaptureParams(**kwargs)
  capture_params.validate()
  return capture_params


def parse_capture_params(filename):
  """
  Parse capture parameters from a YAML file and return a CaptureParams object.

  Parameters:
  - filename: path to YAML capture parameters file

  Returns:
  CaptureParams object with loaded parameters.

  Raises:
  ValueError if file format is invalid or parameters are out of range.
  FileNotFoundError if the file doesn't exist.
  """
  try:
    with open(filename, 'r') as f:
      data = yaml.safe_load(f)
  except FileNotFoundError:
    raise FileNotFoundError(f"Capture parameters file not found: {filename}")
  except yaml.YAMLError as e:
    raise ValueError(f"Invalid YAML format in file '{filename}': {e}")

  if data is None:
    data = {}

  try:
    return parse_capture_params_dict(data)
  except ValueError as e:
    raise ValueError(f"Invalid capture parameters in '{filename}': {e}")
