"""
image.py
~~~~~~~~

Geometry helpers for binarized tile images: bounding boxes, nearest
neighbor scaling and a text rendering for debugging.
"""

from typing import NamedTuple

import numpy as np

from tilenet.bw_image import BLACK, is_black


class Rect(NamedTuple):
    """Rectangle with inclusive min and exclusive max edges."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x

    @property
    def height(self) -> int:
        return self.max_y - self.min_y

    def intersect(self, other: 'Rect') -> 'Rect':
        """Return the largest rectangle contained by both rectangles."""
        min_x = max(self.min_x, other.min_x)
        min_y = max(self.min_y, other.min_y)
        max_x = min(self.max_x, other.max_x)
        max_y = min(self.max_y, other.max_y)
        if min_x >= max_x or min_y >= max_y:
            return Rect(0, 0, 0, 0)
        return Rect(min_x, min_y, max_x, max_y)


def bounds(bw: np.ndarray) -> Rect:
    """Return the full bounds of an image."""
    height, width = bw.shape[:2]
    return Rect(0, 0, width, height)


def bounding_box(bw: np.ndarray, border: int = 0) -> Rect:
    """
    Return the minimum rectangle containing all black pixels.

    Each edge is found independently by scanning inward from its side,
    then pushed outward by ``border`` pixels. The result is not clipped
    to the image, so a border can extend past it. An image without any
    black pixels yields its full bounds.

    Args:
        bw: Binarized image (see ``bw_image.black_white``)
        border: Margin added on every side of the ink

    Returns:
        Rect: The bounding box
    """
    full = bounds(bw)
    ink = bw == BLACK

    columns = np.flatnonzero(ink.any(axis=0))
    rows = np.flatnonzero(ink.any(axis=1))

    if columns.size == 0 or rows.size == 0:
        return full

    return Rect(
        int(columns[0]) - border,
        int(rows[0]) - border,
        int(columns[-1]) + border + 1,
        int(rows[-1]) + border + 1,
    )


def crop(bw: np.ndarray, rect: Rect) -> np.ndarray:
    """Return the part of the image inside ``rect``, clipped to the image."""
    clipped = rect.intersect(bounds(bw))
    return bw[clipped.min_y:clipped.max_y, clipped.min_x:clipped.max_x]


def scale(src: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Scale an image to ``width`` x ``height`` using nearest neighbor.

    Destination pixel (x, y) copies source pixel
    ``(floor(x * src_w / width), floor(y * src_h / height))``.
    """
    src_height, src_width = src.shape[:2]

    src_x = (np.arange(width) * src_width) // width
    src_y = (np.arange(height) * src_height) // height

    return src[np.ix_(src_y, src_x)]


def image_to_string(bw: np.ndarray) -> str:
    """
    Return a textual approximation of a binarized image.

    Black pixels are drawn as ``.`` and white pixels as ``O``.
    """
    height, width = bw.shape[:2]
    lines = []
    for y in range(height):
        lines.append(''.join(
            '.' if is_black(bw, x, y) else 'O' for x in range(width)
        ))
    return '\n'.join(lines) + '\n'
