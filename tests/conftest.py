import numpy as np
import pytest

from bubblescope.unwrapper import BubbleScopeUnwrapper


def make_unwrapper(original_size=(640, 480), unwrap_width=900, radius=(0.1, 0.3),
                   centre=(0.5, 0.5), angle=0.0, use_vectorized=True):
  unwrapper = BubbleScopeUnwrapper(use_vectorized=use_vectorized)
  assert unwrapper.set_original_size(*original_size)
  assert unwrapper.set_unwrap_width(unwrap_width)
  assert unwrapper.set_original_centre(*centre)
  assert unwrapper.set_image_radius(*radius)
  assert unwrapper.set_offset_angle(angle)
  return unwrapper


def make_frame(width=640, height=480, seed=0):
  rng = np.random.default_rng(seed)
  return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


@pytest.fixture
def unwrapper():
  return make_unwrapper()


@pytest.fixture
def frame():
  return make_frame()
