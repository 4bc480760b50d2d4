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

import threading
import time
from typing import Optional

import cv2
import numpy as np

from .capture_params import CaptureMode, CaptureParams
from .frame_source import FrameSource
from .logger import get_logger
from .unwrapper import BubbleScopeUnwrapper

logger = get_logger(__name__)

LOOP_DELAY_MS = 10
CAPTURE_PROPS_INTERVAL = 10

ORIGINAL_WINDOW = "BubbleScope Original Image"
UNWRAP_WINDOW = "BubbleScope Unwrapped Image"

KEY_ESCAPE = 27


class TransformationError(Exception):
  """Raised when the unwrap transformation cannot be generated."""
  pass


class FpsMeter:
  """Rolling average of the capture loop frame rate."""

  def __init__(self, smoothing: float = 0.7):
    self.smoothing = smoothing
    self.fps = 0.0
    self._start: Optional[float] = None

  def start(self) -> None:
    self._start = time.perf_counter()

  def stop(self) -> float:
    """Stop timing one frame and fold it into the average."""
    if self._start is None:
      return self.fps
    elapsed = time.perf_counter() - self._start
    self._start = None
    if elapsed > 0:
      self.fps = self.smoothing * (1.0 / elapsed) + (1.0 - self.smoothing) * self.fps
    return self.fps


class CaptureSession:
  """
  Drives a frame source through the unwrapper into the requested outputs.

  The loop runs until stop_event is set, the user quits from a display
  window, the source closes, or a single still has been written.
  """

  def __init__(self, params: CaptureParams, source: FrameSource,
               unwrapper: Optional[BubbleScopeUnwrapper] = None,
               stop_event: Optional[threading.Event] = None):
    self.params = params
    self.source = source
    self.unwrapper = unwrapper if unwrapper is not None else BubbleScopeUnwrapper()
    self.stop_event = stop_event if stop_event is not None else threading.Event()

    self.frame_count = 0
    self.still_count = 0
    self.fps_meter = FpsMeter()

    self._video_writer: Optional[cv2.VideoWriter] = None
    self._pending_frame: Optional[np.ndarray] = None
    self._unwrap_buffer: Optional[np.ndarray] = None
    self._windows_open = False

  def _wait_for_frame(self) -> Optional[np.ndarray]:
    while not self.stop_event.is_set():
      frame = self.source.grab()
      if frame is not None:
        return frame
      if not self.source.is_open():
        return None
      self.stop_event.wait(LOOP_DELAY_MS / 1000.0)
    return None

  def start(self) -> bool:
    """
    Size the transformation from the first frame and prepare outputs.

    Returns:
    - True when ready to run, False if stopped before a frame arrived

    Raises:
    - TransformationError if the calibration does not fit the frame
    """
    rejected = self.params.configure(self.unwrapper)
    if rejected:
      raise TransformationError(f"Calibration rejected: {', '.join(rejected)}")

    frame = self._wait_for_frame()
    if frame is None:
      logger.warning("No frame received before capture stopped")
      return False

    height, width = frame.shape[:2]
    self.unwrapper.set_original_size(width, height)
    if not self.unwrapper.generate_transformation():
      raise TransformationError(
        f"Can't unwrap {width}x{height} frames with radius {self.params.radius_max}")

    self._pending_frame = frame
    self._unwrap_buffer = np.empty(
      (self.unwrapper.unwrap_height, self.unwrapper.unwrap_width, 3), dtype=np.uint8)

    if self.params.has_mode(CaptureMode.VIDEO):
      self._open_video_writer()

    return True

  def _open_video_writer(self) -> None:
    filename = self.params.output_filenames[CaptureMode.VIDEO]
    size = (self.unwrapper.unwrap_width, self.unwrapper.unwrap_height)
    writer = cv2.VideoWriter(filename, cv2.VideoWriter_fourcc(*'MJPG'),
                             self.params.fps, size, True)
    if writer.isOpened():
      logger.info("Recording %dx%d video to %s", size[0], size[1], filename)
      self._video_writer = writer
    else:
      logger.error("Can't open video output file %s (will continue with capture)", filename)

  def run(self, max_frames: Optional[int] = None) -> int:
    """
    Run the capture loop.

    Parameters:
    - max_frames: optional limit on the number of frames to process

    Returns:
    - number of frames processed
    """
    if self._unwrap_buffer is None and not self.start():
      return self.frame_count

    logger.info("Starting capture")
    while not self.stop_event.is_set():
      if max_frames is not None and self.frame_count >= max_frames:
        break

      if self.params.show_capture_props:
        self.fps_meter.start()

      frame = self._next_frame()
      if frame is None:
        if not self.source.is_open():
          logger.info("Frame source closed")
          break
        self.stop_event.wait(LOOP_DELAY_MS / 1000.0)
        continue

      unwrapped = self.process_frame(frame)
      if unwrapped is not None:
        self._emit(frame, unwrapped)

      if self.params.shows_window:
        self._handle_key(cv2.waitKey(LOOP_DELAY_MS), unwrapped)
      else:
        self.stop_event.wait(LOOP_DELAY_MS / 1000.0)

      if self.params.show_capture_props:
        self._report_capture_props(frame)

      # Done a single capture, can now exit
      if self.params.has_mode(CaptureMode.SINGLE_STILL):
        self.stop_event.set()

    logger.info("Capture finished after %d frames", self.frame_count)
    return self.frame_count

  def _next_frame(self) -> Optional[np.ndarray]:
    if self._pending_frame is not None:
      frame, self._pending_frame = self._pending_frame, None
      return frame
    return self.source.grab()

  def process_frame(self, frame: np.ndarray) -> Optional[np.ndarray]:
    """Unwrap one frame into the session buffer, skipping frames of the wrong size."""
    height, width = frame.shape[:2]
    if (width, height) != (self.unwrapper.original_width, self.unwrapper.original_height):
      logger.warning("Skipping %dx%d frame, transformation expects %dx%d", width, height,
                     self.unwrapper.original_width, self.unwrapper.original_height)
      return None

    unwrapped = self.unwrapper.unwrap(frame, out=self._unwrap_buffer)
    self.frame_count += 1
    return unwrapped

  def _emit(self, frame: np.ndarray, unwrapped: np.ndarray) -> None:
    if self.params.has_mode(CaptureMode.SHOW_ORIGINAL):
      cv2.imshow(ORIGINAL_WINDOW, frame)
      self._windows_open = True

    if self.params.has_mode(CaptureMode.SHOW_UNWRAP):
      cv2.imshow(UNWRAP_WINDOW, unwrapped)
      self._windows_open = True

    if self._video_writer is not None:
      self._video_writer.write(unwrapped)

    if self.params.has_mode(CaptureMode.MJPG) or self.params.has_mode(CaptureMode.SINGLE_STILL):
      cv2.imwrite(self.params.output_filenames[CaptureMode.MJPG], unwrapped)

  def _handle_key(self, key: int, unwrapped: Optional[np.ndarray]) -> None:
    key &= 0xFF
    if key in (ord('q'), KEY_ESCAPE):
      logger.info("Exiting")
      self.stop_event.set()
    elif key == ord(' ') and unwrapped is not None and self.params.has_mode(CaptureMode.STILLS):
      self.save_still(unwrapped)

  def save_still(self, unwrapped: np.ndarray) -> str:
    """Save an unwrapped frame under the next numbered stills filename."""
    filename = self.params.still_filename(self.still_count)
    logger.info("Saving still image: %s", filename)
    cv2.imwrite(filename, unwrapped)
    self.still_count += 1
    return filename

  def _report_capture_props(self, frame: np.ndarray) -> None:
    fps = self.fps_meter.stop()
    if self.frame_count % CAPTURE_PROPS_INTERVAL == 0:
      logger.info("Average FPS: %.2f", fps)
      logger.info("Input image size: %dx%d", frame.shape[1], frame.shape[0])

  def close(self) -> None:
    """Release the video writer, display windows and frame source."""
    if self._video_writer is not None:
      self._video_writer.release()
      self._video_writer = None
    if self._windows_open:
      cv2.destroyAllWindows()
      self._windows_open = False
    self.source.close()

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc_value, traceback):
    self.close()
    return False
