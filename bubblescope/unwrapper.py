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

import multiprocessing
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import numpy as np

from .logger import get_logger

logger = get_logger(__name__)

CHANNELS = 3


def apply_transformation(img: np.ndarray, transformation: np.ndarray,
                         unwrap_width: int, unwrap_height: int,
                         out: Optional[np.ndarray] = None,
                         source_size: Optional[int] = None) -> np.ndarray:
  """
  Unwrap a raw frame using a pre-generated transformation table.

  Every destination byte k receives source byte transformation[k]. No
  interpolation is performed.

  Parameters:
  - img: source frame, either flat or (H, W, 3), uint8, channel-interleaved
  - transformation: flat array of source byte offsets, one per destination byte
  - unwrap_width, unwrap_height: dimensions of the unwrapped image
  - out: optional (unwrap_height, unwrap_width, 3) uint8 array to write into
  - source_size: byte size of the frame the table was built for; derived from
    the largest table entry when omitted

  Returns:
  - unwrapped image as a (unwrap_height, unwrap_width, 3) uint8 array
  """
  if img is None:
    raise ValueError("Input image is None")

  source = np.ascontiguousarray(img, dtype=np.uint8).reshape(-1)
  output_size = unwrap_width * unwrap_height * CHANNELS
  if transformation.size != output_size:
    raise ValueError(f"Transformation has {transformation.size} entries, "
                     f"expected {output_size} for {unwrap_width}x{unwrap_height}")

  if source_size is None:
    source_size = int(transformation.max()) + 1 if transformation.size else 0
  if source.size < source_size:
    raise ValueError(f"Input image of {source.size} bytes is smaller than the "
                     f"frame the transformation was generated for")

  if out is None:
    out = np.empty((unwrap_height, unwrap_width, CHANNELS), dtype=np.uint8)
  elif out.dtype != np.uint8 or out.size != output_size or not out.flags.c_contiguous:
    raise ValueError(f"Output buffer must be a contiguous uint8 array of {output_size} bytes")

  start_time = time.time()
  np.take(source, transformation, out=out.reshape(-1))
  logger.debug("Remap of %dx%d frame took %.4f seconds",
               unwrap_width, unwrap_height, time.time() - start_time)

  return out


class BubbleScopeUnwrapper:
  """
  Unwraps annular BubbleScope frames into rectilinear panoramas.

  Holds the capture and unwrap geometry, builds the pixel transformation table
  from it once, and applies that table to every captured frame. All setters
  validate their input and return False, leaving the state unchanged, when
  the value is out of range. Changing any geometry discards an existing
  transformation; generate_transformation() must be called again before the
  next unwrap().
  """

  def __init__(self, use_vectorized: bool = True):
    """
    Parameters:
    - use_vectorized: if True, use fast vectorized table generation; if False, use reference implementation
    """
    self.use_vectorized = use_vectorized

    self._transformation: Optional[np.ndarray] = None

    self._original_width = 0
    self._original_height = 0
    self._unwrap_width = 0
    self._unwrap_height = 0
    self._output_size = 0
    self._centre_u = 0.0
    self._centre_v = 0.0
    self._radius_min = 0.0
    self._radius_max = 0.0
    self._offset_angle = 0.0

  @property
  def original_width(self) -> int:
    return self._original_width

  @property
  def original_height(self) -> int:
    return self._original_height

  @property
  def unwrap_width(self) -> int:
    return self._unwrap_width

  @property
  def unwrap_height(self) -> int:
    """Height of the unwrapped image, derived from the unwrap width."""
    return self._unwrap_height

  @property
  def output_size(self) -> int:
    """Number of bytes in one unwrapped frame."""
    return self._output_size

  @property
  def centre(self):
    return (self._centre_u, self._centre_v)

  @property
  def radius(self):
    return (self._radius_min, self._radius_max)

  @property
  def offset_angle(self) -> float:
    """Offset angle in radians."""
    return self._offset_angle

  @property
  def has_transformation(self) -> bool:
    return self._transformation is not None

  @property
  def transformation(self) -> Optional[np.ndarray]:
    """Read-only view of the current transformation table, or None."""
    if self._transformation is None:
      return None
    view = self._transformation.view()
    view.flags.writeable = False
    return view

  def set_unwrap_width(self, width: int) -> bool:
    """
    Set the width of the unwrapped image. The height is width / pi so the
    unwrapped image keeps the aspect ratio of the angular sweep.
    """
    if width <= 0:
      logger.warning("Rejected unwrap width %s: must be positive", width)
      return False

    self._unwrap_width = int(width)
    self._unwrap_height = int(self._unwrap_width / np.pi)
    self._output_size = self._unwrap_width * self._unwrap_height * CHANNELS
    self._release_transformation()
    return True

  def set_original_size(self, width: int, height: int) -> bool:
    """Set the dimensions of the raw frames that will be unwrapped."""
    if width < 0 or height < 0:
      logger.warning("Rejected original size %sx%s: dimensions must not be negative", width, height)
      return False

    self._original_width = int(width)
    self._original_height = int(height)
    self._release_transformation()
    return True

  def set_original_centre(self, u: float, v: float) -> bool:
    """Set the optical centre relative to the frame dimensions."""
    if not 0.0 <= u <= 1.0 or not 0.0 <= v <= 1.0:
      logger.warning("Rejected centre (%s, %s): coordinates must be in [0, 1]", u, v)
      return False

    self._centre_u = float(u)
    self._centre_v = float(v)
    self._release_transformation()
    return True

  def set_image_radius(self, radius_min: float, radius_max: float) -> bool:
    """Set the radii bounding the annulus of the original image to unwrap."""
    if not 0.0 <= radius_min <= 0.5 or not 0.0 <= radius_max <= 0.5:
      logger.warning("Rejected radius band (%s, %s): radii must be in [0, 0.5]", radius_min, radius_max)
      return False
    if radius_min >= radius_max:
      logger.warning("Rejected radius band (%s, %s): minimum must be below maximum", radius_min, radius_max)
      return False

    self._radius_min = float(radius_min)
    self._radius_max = float(radius_max)
    self._release_transformation()
    return True

  def set_offset_angle(self, angle: float) -> bool:
    """
    Set the offset angle in degrees, the equivalent of rotating the
    BubbleScope on the camera.
    """
    if not 0.0 <= angle <= 360.0:
      logger.warning("Rejected offset angle %s: must be in [0, 360] degrees", angle)
      return False

    self._offset_angle = float(np.radians(angle))
    self._release_transformation()
    return True

  def _release_transformation(self) -> None:
    self._transformation = None

  def _is_feasible(self) -> bool:
    if self._unwrap_width <= 0 or self._unwrap_height <= 0:
      logger.error("Cannot generate transformation: unwrap width not set")
      return False
    if self._original_width <= 0 or self._original_height <= 0:
      logger.error("Cannot generate transformation: original size %dx%d is empty",
                   self._original_width, self._original_height)
      return False

    # The annulus must fit within the vertical extent of the frame
    pixel_span = int(self._original_width * self._radius_max * 2)
    if pixel_span > self._original_height:
      logger.error("Cannot generate transformation: radius %.3f spans %d pixels, "
                   "frame height is %d", self._radius_max, pixel_span, self._original_height)
      return False
    return True

  def generate_transformation(self) -> bool:
    """
    Compute the pixel transformation table.

    All geometry must be set beforehand. Any previous table is released first,
    so a failed generation never leaves a table reachable by unwrap().

    Returns:
    - True if the transformation was computed, False if the geometry is infeasible
    """
    self._release_transformation()

    if not self._is_feasible():
      return False

    start_time = time.time()
    if self.use_vectorized:
      transformation = self._generate_transformation_vectorized()
    else:
      transformation = self._generate_transformation_reference()

    self._transformation = transformation
    logger.info("Generated %dx%d unwrap transformation from %dx%d frames in %.4f seconds",
                self._unwrap_width, self._unwrap_height,
                self._original_width, self._original_height, time.time() - start_time)
    return True

  def _generate_transformation_reference(self) -> np.ndarray:
    """
    Reference implementation: build the table with nested loops.

    Slow, but mirrors the per-pixel maths directly. Kept for debugging and for
    checking the vectorized implementation.
    """
    width, height = self._original_width, self._original_height
    aspect = width / height
    radius_delta = self._radius_max - self._radius_min

    transformation = np.empty(self._output_size, dtype=np.intp)
    index = 0

    # Destination rows run from the outer edge of the annulus inwards
    for i in range(self._unwrap_height - 1, -1, -1):
      amplitude = radius_delta * (i / self._unwrap_height) + self._radius_min

      for j in range(self._unwrap_width):
        longitude = np.pi * (j / self._unwrap_width) + self._offset_angle

        u = aspect * np.sin(longitude) * amplitude + self._centre_u
        v = np.cos(longitude) * amplitude + (1.0 - self._centre_v)

        u = min(max(u, 0.0), 1.0)
        v = min(max(v, 0.0), 1.0)

        x_pixel = min(int((1.0 - v) * width), width - 1)
        y_pixel = min(int((1.0 - u) * height), height - 1)

        pixel_index = (y_pixel * width + x_pixel) * CHANNELS
        transformation[index] = pixel_index
        transformation[index + 1] = pixel_index + 1
        transformation[index + 2] = pixel_index + 2

        index += CHANNELS

    return transformation

  def _process_row_chunk(self, row_start: int, row_end: int) -> np.ndarray:
    """
    Compute the table entries for destination rows [row_start, row_end).

    Returns:
    - flat array of (row_end - row_start) * unwrap_width * 3 offsets
    """
    width, height = self._original_width, self._original_height
    aspect = width / height
    radius_delta = self._radius_max - self._radius_min

    # Destination row r samples radial step i = unwrap_height - 1 - r
    radial_step = (self._unwrap_height - 1) - np.arange(row_start, row_end, dtype=np.float64)
    amplitude = radius_delta * (radial_step / self._unwrap_height) + self._radius_min

    columns = np.arange(self._unwrap_width, dtype=np.float64)
    longitude = np.pi * (columns / self._unwrap_width) + self._offset_angle

    sin_long = np.sin(longitude)
    cos_long = np.cos(longitude)

    u = aspect * sin_long[np.newaxis, :] * amplitude[:, np.newaxis] + self._centre_u
    v = cos_long[np.newaxis, :] * amplitude[:, np.newaxis] + (1.0 - self._centre_v)

    np.clip(u, 0.0, 1.0, out=u)
    np.clip(v, 0.0, 1.0, out=v)

    x_pixel = np.minimum(((1.0 - v) * width).astype(np.intp), width - 1)
    y_pixel = np.minimum(((1.0 - u) * height).astype(np.intp), height - 1)

    pixel_index = (y_pixel * width + x_pixel) * CHANNELS
    channels = np.arange(CHANNELS, dtype=np.intp)
    return (pixel_index[:, :, np.newaxis] + channels).reshape(-1)

  def _generate_transformation_vectorized(self) -> np.ndarray:
    """
    Parallel vectorized implementation: build the table in row chunks with
    NumPy array operations spread over a thread pool.
    """
    output_height = self._unwrap_height
    row_size = self._unwrap_width * CHANNELS

    num_cores = min(multiprocessing.cpu_count(), 8)
    min_chunk_size = 32
    chunk_size = max(min_chunk_size, output_height // (num_cores * 2))

    transformation = np.empty(self._output_size, dtype=np.intp)

    # Small tables are not worth the thread start-up cost
    if output_height < 128 or self._unwrap_width < 128:
      transformation[:] = self._process_row_chunk(0, output_height)
      return transformation

    logger.debug("Using %d threads with chunk size %d rows", num_cores, chunk_size)
    with ThreadPoolExecutor(max_workers=num_cores) as executor:
      futures = []
      row_ranges = []

      for row_start in range(0, output_height, chunk_size):
        row_end = min(row_start + chunk_size, output_height)
        row_ranges.append((row_start, row_end))
        futures.append(executor.submit(self._process_row_chunk, row_start, row_end))

      for future, (row_start, row_end) in zip(futures, row_ranges):
        transformation[row_start * row_size:row_end * row_size] = future.result()

    return transformation

  def unwrap(self, img: np.ndarray, out: Optional[np.ndarray] = None) -> Optional[np.ndarray]:
    """
    Create a 360 degree unwrap of a frame using the pre-computed table.

    Parameters:
    - img: raw frame with the dimensions the transformation was generated for
    - out: optional output array of the unwrapped size to reuse

    Returns:
    - unwrapped image, or None if no transformation has been generated
    """
    if self._transformation is None:
      return None

    return apply_transformation(img, self._transformation,
                                self._unwrap_width, self._unwrap_height, out=out,
                                source_size=self._original_width * self._original_height * CHANNELS)

  def __str__(self):
    return (f"BubbleScopeUnwrapper(original={self._original_width}x{self._original_height}, "
            f"unwrap={self._unwrap_width}x{self._unwrap_height}, "
            f"centre=({self._centre_u:.3f}, {self._centre_v:.3f}), "
            f"radius=({self._radius_min:.3f}, {self._radius_max:.3f}), "
            f"offset={np.degrees(self._offset_angle):.1f}deg)")

  def __repr__(self):
    return self.__str__()
