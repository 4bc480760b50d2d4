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

import logging
import sys

ROOT_LOGGER_NAME = 'bubblescope'

_LOG_FORMAT = '%(levelname)s | %(asctime)s | %(name)s | %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
  """Formatter that colours the level name for terminal output."""

  COLORS = {
    'DEBUG': '\033[36m',
    'INFO': '\033[32m',
    'WARNING': '\033[33m',
    'ERROR': '\033[31m',
    'CRITICAL': '\033[35m',
  }
  RESET = '\033[0m'

  def format(self, record):
    record = logging.makeLogRecord(record.__dict__)
    color = self.COLORS.get(record.levelname, self.RESET)
    record.levelname = f"{color}{record.levelname}{self.RESET}"
    return super().format(record)


def setup_logger(level=logging.INFO, use_color=True, stream=None) -> logging.Logger:
  """
  Configure the package root logger. Safe to call more than once; later calls
  only update the level.

  Parameters:
  - level: logging level for the console handler
  - use_color: colour the level name (disable when output is not a terminal)
  - stream: output stream, defaults to stdout

  Returns:
  - the configured root logger of the package
  """
  logger = logging.getLogger(ROOT_LOGGER_NAME)
  logger.setLevel(level)

  if logger.handlers:
    for handler in logger.handlers:
      handler.setLevel(level)
    return logger

  # Avoid duplicate output through the interpreter root logger
  logger.propagate = False

  formatter_cls = ColoredFormatter if use_color else logging.Formatter
  handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
  handler.setLevel(level)
  handler.setFormatter(formatter_cls(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT))
  logger.addHandler(handler)

  return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
  """
  Get a module logger below the package root logger.

  Module names that already live in the package (``bubblescope.unwrapper``)
  are used unchanged; anything else is nested under the root.
  """
  if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + '.'):
    return logging.getLogger(name)
  return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')
