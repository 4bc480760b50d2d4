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

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from .capture import CaptureSession, TransformationError
from .capture_params import CaptureMode, CaptureParams, parse_capture_params
from .frame_source import FrameSourceError, open_frame_source
from .logger import get_logger, setup_logger

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_INVALID_PARAMETERS = 1
EXIT_SOURCE_ERROR = 2
EXIT_TRANSFORMATION_ERROR = 3

EXAMPLES = """
examples:
  bubblescope-capture --show-original
  bubblescope-capture --device 1 --size 1280 720 --radius 0.1 0.25 --video out.avi
  bubblescope-capture --config bubblescope.yaml --single-still unwrap.jpg
  bubblescope-capture --timelapse frames/img_%04d.jpg --mjpg latest.jpg --no-show-unwrap
"""


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
  """Parse command line arguments. Options left unset keep the config/default value."""
  parser = argparse.ArgumentParser(
    prog="bubblescope-capture",
    description="Capture and unwrap BubbleScope panoramas",
    epilog=EXAMPLES,
    formatter_class=argparse.RawDescriptionHelpFormatter
  )

  parser.add_argument("--config", help="YAML file with capture parameters")

  source = parser.add_argument_group("source")
  source.add_argument("-d", "--device", type=int, help="Capture device index")
  source.add_argument("-s", "--size", type=int, nargs=2, metavar=("WIDTH", "HEIGHT"),
                      help="Requested capture size")
  source.add_argument("-f", "--fps", type=float, help="Capture and video frame rate")
  source.add_argument("-t", "--timelapse", metavar="PATTERN",
                      help="Read numbered still images (e.g. img_%%04d.jpg) instead of a device")

  unwrap = parser.add_argument_group("unwrap")
  unwrap.add_argument("-w", "--unwrap-width", type=int, help="Width of the unwrapped image")
  unwrap.add_argument("-r", "--radius", type=float, nargs=2, metavar=("MIN", "MAX"),
                      help="Radii of the unwrapped annulus, 0 to 0.5")
  unwrap.add_argument("-c", "--centre", type=float, nargs=2, metavar=("U", "V"),
                      help="Centre of the BubbleScope image, 0 to 1")
  unwrap.add_argument("-a", "--angle", type=float, help="Offset angle in degrees, 0 to 360")

  output = parser.add_argument_group("output")
  output.add_argument("--stills", metavar="PATTERN",
                      help="Save a numbered still on SPACE (e.g. still_%%d.jpg)")
  output.add_argument("--video", metavar="FILE", help="Record MJPG video")
  output.add_argument("--mjpg", metavar="FILE", help="Overwrite FILE with every unwrapped frame")
  output.add_argument("--single-still", metavar="FILE", help="Save one unwrapped frame and exit")
  output.add_argument("--show-original", action="store_true", help="Show the captured image")
  output.add_argument("--no-show-unwrap", action="store_true", help="Hide the unwrapped image")
  output.add_argument("-p", "--props", action="store_true", help="Report FPS and capture size")

  parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

  return parser.parse_args(argv)


def build_capture_params(args: argparse.Namespace) -> CaptureParams:
  """
  Combine the optional config file with command line overrides.

  Raises:
  ValueError if the resulting parameters are invalid.
  FileNotFoundError if the config file doesn't exist.
  """
  params = parse_capture_params(args.config) if args.config else CaptureParams()

  if args.device is not None:
    params.capture_device = args.device
  if args.size is not None:
    params.original_width, params.original_height = args.size
  if args.fps is not None:
    params.fps = args.fps
  if args.timelapse is not None:
    params.timelapse_pattern = args.timelapse
  if args.unwrap_width is not None:
    params.unwrap_width = args.unwrap_width
  if args.radius is not None:
    params.radius_min, params.radius_max = args.radius
  if args.centre is not None:
    params.u_centre, params.v_centre = args.centre
  if args.angle is not None:
    params.offset_angle = args.angle

  if args.stills is not None:
    params.modes.add(CaptureMode.STILLS)
    params.output_filenames[CaptureMode.STILLS] = args.stills
  if args.video is not None:
    params.modes.add(CaptureMode.VIDEO)
    params.output_filenames[CaptureMode.VIDEO] = args.video
  if args.mjpg is not None:
    params.modes.add(CaptureMode.MJPG)
    params.output_filenames[CaptureMode.MJPG] = args.mjpg
  if args.single_still is not None:
    params.modes.add(CaptureMode.SINGLE_STILL)
    params.output_filenames[CaptureMode.MJPG] = args.single_still
  if args.show_original:
    params.modes.add(CaptureMode.SHOW_ORIGINAL)
  if args.no_show_unwrap:
    params.modes.discard(CaptureMode.SHOW_UNWRAP)
  if args.props:
    params.show_capture_props = True

  params.validate()
  return params


def main(argv: Optional[List[str]] = None) -> int:
  """Main entry point."""
  args = parse_arguments(argv)
  setup_logger(logging.DEBUG if args.verbose else logging.INFO, use_color=sys.stdout.isatty())

  try:
    params = build_capture_params(args)
  except (ValueError, FileNotFoundError) as e:
    logger.error("Invalid parameters: %s", e)
    return EXIT_INVALID_PARAMETERS

  logger.info("%s", params)

  try:
    source = open_frame_source(params)
  except FrameSourceError as e:
    logger.error("%s", e)
    return EXIT_SOURCE_ERROR

  stop_event = threading.Event()

  def handle_sigint(signum, frame):
    logger.info("Caught signal %d, will exit", signum)
    stop_event.set()

  previous_handler = signal.signal(signal.SIGINT, handle_sigint)
  try:
    with CaptureSession(params, source, stop_event=stop_event) as session:
      session.run()
  except TransformationError as e:
    logger.error("%s", e)
    return EXIT_TRANSFORMATION_ERROR
  finally:
    signal.signal(signal.SIGINT, previous_handler)

  return EXIT_OK


if __name__ == "__main__":
  sys.exit(main())
