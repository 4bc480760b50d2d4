"""
BubbleScope Unwrap Core Modules

This package contains the BubbleScope capture and unwrapping code:
- Capture parameter handling and validation
- Unwrap transformation table generation and frame remapping
- Frame sources and the capture loop
"""

from .capture_params import CaptureMode, CaptureParams, parse_capture_params, parse_capture_params_dict
from .unwrapper import BubbleScopeUnwrapper, apply_transformation
from .frame_source import CameraSource, FrameSource, FrameSourceError, TimelapseSource, open_frame_source
from .capture import CaptureSession, TransformationError

__all__ = [
  'CaptureMode',
  'CaptureParams',
  'parse_capture_params',
  'parse_capture_params_dict',
  'BubbleScopeUnwrapper',
  'apply_transformation',
  'CameraSource',
  'FrameSource',
  'FrameSourceError',
  'TimelapseSource',
  'open_frame_source',
  'CaptureSession',
  'TransformationError'
]
