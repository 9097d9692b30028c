"""
conftest.py
~~~~~~~~~~~

Shared fixtures: synthetic glyph images drawn in numpy.
"""

import os
import sys

import numpy as np
import pytest

# Make the package importable without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


def blank_tile(width: int = 40, height: int = 40) -> np.ndarray:
    """Return a white RGB tile."""
    return np.full((height, width, 3), 255, dtype=np.uint8)


def draw_a(width: int = 40, height: int = 40) -> np.ndarray:
    """Return a white RGB tile with a blocky black 'A' in the middle."""
    img = blank_tile(width, height)
    top, bottom = height // 5, height - height // 5
    left, right = width // 4, width - width // 4
    stroke = max(2, width // 10)

    img[top:top + stroke, left:right] = 0                  # crossbar on top
    img[(top + bottom) // 2:(top + bottom) // 2 + stroke, left:right] = 0
    img[top:bottom, left:left + stroke] = 0                # left leg
    img[top:bottom, right - stroke:right] = 0              # right leg
    return img


def draw_i(width: int = 40, height: int = 40) -> np.ndarray:
    """Return a white RGB tile with a thin black 'I'."""
    img = blank_tile(width, height)
    middle = width // 2
    img[height // 5:height - height // 5, middle - 1:middle + 1] = 0
    return img


@pytest.fixture
def glyph_a():
    """A 40x40 RGB tile showing an 'A'."""
    return draw_a()


@pytest.fixture
def glyph_i():
    """A 40x40 RGB tile showing an 'I'."""
    return draw_i()
