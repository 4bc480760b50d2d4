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

import os
from typing import Optional, Protocol, Union

import cv2
import numpy as np

from .capture_params import CaptureParams
from .logger import get_logger

logger = get_logger(__name__)


class FrameSourceError(Exception):
  """Raised when a frame source cannot be opened."""
  pass


class FrameSource(Protocol):
  """
  Anything that yields raw BGR frames of a fixed size.

  grab() returns an (H, W, 3) uint8 frame, or None when no frame is currently
  available or the source is closed.
  """

  def open(self, target) -> None: ...

  def close(self) -> None: ...

  def is_open(self) -> bool: ...

  def grab(self) -> Optional[np.ndarray]: ...

  @property
  def width(self) -> int: ...

  @property
  def height(self) -> int: ...


class CameraSource:
  """Live frames from a video capture device through OpenCV."""

  def __init__(self):
    self._capture: Optional[cv2.VideoCapture] = None

  def open(self, target: Union[int, str]) -> None:
    """Open a capture device index (or a video file / stream URL)."""
    self.close()
    self._capture = cv2.VideoCapture(target)
    if self._capture.isOpened():
      logger.info("Opened capture device %s", target)
    else:
      logger.error("Can't open video capture source %s", target)

  def close(self) -> None:
    if self._capture is not None:
      self._capture.release()
      self._capture = None

  def is_open(self) -> bool:
    return self._capture is not None and self._capture.isOpened()

  def grab(self) -> Optional[np.ndarray]:
    if not self.is_open():
      return None
    ok, frame = self._capture.read()
    if not ok:
      return None
    return frame

  def set_capture_size(self, width: int, height: int) -> None:
    """Request a capture size; the device may choose a different one."""
    if self.is_open():
      self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
      self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

  def set_frame_rate(self, fps: float) -> None:
    if self.is_open():
      self._capture.set(cv2.CAP_PROP_FPS, fps)

  def frame_rate(self) -> float:
    if not self.is_open():
      return 0.0
    return float(self._capture.get(cv2.CAP_PROP_FPS))

  @property
  def width(self) -> int:
    if not self.is_open():
      return 0
    return int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH))

  @property
  def height(self) -> int:
    if not self.is_open():
      return 0
    return int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT))


class TimelapseSource:
  """
  Still frames read from files named with an incrementing number.

  The target is a printf-style pattern such as ``frames/img_%04d.jpg``.
  Numbering starts at 0. If the next file does not exist yet (or cannot be
  decoded), grab() returns None and tries the same number again next time,
  so a timelapse can be unwrapped while it is still being written.
  """

  def __init__(self, start_number: int = 0):
    self._pattern: Optional[str] = None
    self._frame_number = start_number
    self._start_number = start_number
    self._frame: Optional[np.ndarray] = None

  def open(self, target: str) -> None:
    try:
      target % 0
    except (TypeError, ValueError):
      raise FrameSourceError(f"Timelapse pattern needs one integer placeholder: {target}")

    self._pattern = target
    self._frame_number = self._start_number
    self._frame = None
    logger.info("Reading timelapse frames from %s", target)

  def close(self) -> None:
    self._pattern = None
    self._frame = None

  def is_open(self) -> bool:
    return self._pattern is not None

  @property
  def frame_number(self) -> int:
    """Number of the next file grab() will read."""
    return self._frame_number

  def grab(self) -> Optional[np.ndarray]:
    if not self.is_open():
      return None

    filename = self._pattern % self._frame_number
    if not os.path.exists(filename):
      return None

    frame = cv2.imread(filename, cv2.IMREAD_COLOR)
    if frame is None:
      logger.warning("Could not read timelapse frame: %s", filename)
      return None

    logger.debug("Read timelapse frame %s", filename)
    self._frame = frame
    self._frame_number += 1
    return frame

  @property
  def width(self) -> int:
    return 0 if self._frame is None else int(self._frame.shape[1])

  @property
  def height(self) -> int:
    return 0 if self._frame is None else int(self._frame.shape[0])


def open_frame_source(params: CaptureParams) -> FrameSource:
  """
  Create and open the frame source selected by the capture parameters.

  A timelapse pattern selects TimelapseSource; otherwise the capture device is
  opened with the requested size and frame rate.

  Raises:
  FrameSourceError if the source cannot be opened.
  """
  if params.timelapse_pattern:
    source = TimelapseSource()
    source.open(params.timelapse_pattern)
    return source

  source = CameraSource()
  source.open(params.capture_device)
  if not source.is_open():
    raise FrameSourceError(f"Can't open video capture source {params.capture_device}")

  source.set_frame_rate(params.fps)
  source.set_capture_size(params.original_width, params.original_height)
  return source
