import cv2
import numpy as np
import pytest

from bubblescope.capture_params import CaptureParams
from bubblescope.frame_source import (CameraSource, FrameSourceError, TimelapseSource,
                                      open_frame_source)

from conftest import make_frame


def write_frames(directory, count, width=64, height=48):
  frames = []
  for number in range(count):
    frame = make_frame(width, height, seed=number)
    assert cv2.imwrite(str(directory / f"img_{number:03d}.png"), frame)
    frames.append(frame)
  return frames


def test_timelapse_reads_numbered_frames_in_order(tmp_path):
  frames = write_frames(tmp_path, 3)
  source = TimelapseSource()
  source.open(str(tmp_path / "img_%03d.png"))

  assert source.is_open()
  for expected in frames:
    assert np.array_equal(source.grab(), expected)
  assert source.width == 64
  assert source.height == 48


def test_timelapse_waits_for_next_file(tmp_path):
  write_frames(tmp_path, 2)
  source = TimelapseSource()
  source.open(str(tmp_path / "img_%03d.png"))
  source.grab()
  source.grab()

  assert source.grab() is None
  assert source.frame_number == 2
  assert source.is_open()

  late_frame = make_frame(64, 48, seed=99)
  cv2.imwrite(str(tmp_path / "img_002.png"), late_frame)
  assert np.array_equal(source.grab(), late_frame)
  assert source.frame_number == 3


def test_timelapse_skips_unreadable_file(tmp_path):
  (tmp_path / "img_000.png").write_bytes(b"not an image")
  source = TimelapseSource()
  source.open(str(tmp_path / "img_%03d.png"))

  assert source.grab() is None
  assert source.frame_number == 0


def test_timelapse_pattern_needs_placeholder(tmp_path):
  with pytest.raises(FrameSourceError):
    TimelapseSource().open(str(tmp_path / "img.png"))


def test_closed_timelapse_yields_nothing(tmp_path):
  write_frames(tmp_path, 1)
  source = TimelapseSource()
  source.open(str(tmp_path / "img_%03d.png"))
  source.close()

  assert not source.is_open()
  assert source.grab() is None
  assert source.width == 0


def test_unopened_camera_source_yields_nothing():
  source = CameraSource()

  assert not source.is_open()
  assert source.grab() is None
  assert (source.width, source.height) == (0, 0)
  assert source.frame_rate() == 0.0
  source.close()


def test_open_frame_source_selects_timelapse(tmp_path):
  params = CaptureParams(timelapse_pattern=str(tmp_path / "img_%03d.png"))

  source = open_frame_source(params)

  assert isinstance(source, TimelapseSource)
  assert source.is_open()
