"""
tile.py
~~~~~~~

A tile is a single lettered square, e.g. from a word game board.

Building a tile reduces its image to the fixed size bitmap the network
consumes: the image is converted to black & white, cropped to the
bounding box of its ink when that box is large enough, and scaled to the
target resolution.
"""

import logging
from typing import Any, Optional

import numpy as np
from PIL import Image

from tilenet import config
from tilenet.bw_image import black_white, to_rgba
from tilenet.image import bounding_box, crop, image_to_string, scale

logger = logging.getLogger(__name__)


class Tile:
    """
    A tile image together with the letter it shows, if known.

    Attributes:
        letter: The character on the tile, or None when unknown
        image: The original image as an RGBA array
        bounded: The black & white image after optional cropping
        reduced: The black & white image scaled to the target size
    """

    def __init__(
        self,
        letter: Optional[str],
        image: Any,
        border: int = 0,
        width: int = config.TILE_TARGET_WIDTH,
        height: int = config.TILE_TARGET_HEIGHT,
        min_bbox_percent: float = config.MIN_BOUNDING_BOX_PERCENT
    ):
        self.letter = letter
        self.image = to_rgba(image)
        self.width = width
        self.height = height
        self.min_bbox_percent = min_bbox_percent
        self.bounded: np.ndarray
        self.reduced: np.ndarray
        self._reduce(border)

    @classmethod
    def from_file(cls, path: str, letter: Optional[str] = None, **kwargs) -> 'Tile':
        """Load a tile from an image file."""
        with Image.open(path) as img:
            return cls(letter, img.convert('RGBA'), **kwargs)

    def __repr__(self) -> str:
        return (
            f"Tile(letter={self.letter!r}, "
            f"original={self.image.shape[1]}x{self.image.shape[0]}, "
            f"bounded={self.bounded.shape[1]}x{self.bounded.shape[0]})"
        )

    def _reduce(self, border: int) -> None:
        src = black_white(self.image)
        orig_height, orig_width = src.shape

        bbox = bounding_box(src, border)

        # Only apply the bounding box if it's above some % of the
        # width/height of the original tile. Skinny letters like "I"
        # would otherwise be stretched into a solid block.
        if (bbox.width >= int(self.min_bbox_percent * orig_width) and
                bbox.height >= int(self.min_bbox_percent * orig_height)):
            src = crop(src, bbox)
        else:
            logger.debug(
                f"Skipping bounding box for {self.letter!r}: "
                f"tile {orig_width}x{orig_height}, "
                f"box {bbox.width}x{bbox.height}"
            )

        self.bounded = src
        self.reduced = scale(src, self.width, self.height)

        if self.reduced.shape != (self.height, self.width):
            raise AssertionError(
                f"expected reduced tile of {self.width}x{self.height}, "
                f"got {self.reduced.shape[1]}x{self.reduced.shape[0]}"
            )

    @property
    def pixels(self) -> np.ndarray:
        """The reduced tile as a flat, row-major vector of 0/1 bits."""
        return self.reduced.reshape(-1).astype(np.uint8)

    def to_string(self) -> str:
        """Textual rendering of the reduced tile, for debugging."""
        return image_to_string(self.reduced)


def normalize(image: Any, border: int = 0, **kwargs) -> np.ndarray:
    """
    Reduce an image to the network's input vector.

    Args:
        image: Pillow image or array-like pixel grid
        border: Margin kept around the ink when cropping
        **kwargs: ``width``, ``height`` and ``min_bbox_percent`` overrides

    Returns:
        np.ndarray: uint8 vector of length width * height
    """
    return Tile(None, image, border=border, **kwargs).pixels
