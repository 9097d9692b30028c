"""
bw_image.py
~~~~~~~~~~~

Black & white quantization of tile images.

Images are handled as numpy arrays. Anything ``np.asarray`` understands
works as input, as do Pillow images: a 2-D array is read as grayscale
(0-255, or bool where True is white), a 3-D array as RGB or RGBA.
Float arrays are taken to hold intensities in 0.0-1.0.

A binarized image is a 2-D ``uint8`` array holding 0 for black and 1 for
white, which is also the bit each pixel contributes to the network input.
"""

from typing import Any

import numpy as np
from PIL import Image

from tilenet.errors import ContractViolation

BLACK = 0
WHITE = 1

# Two-entry palette, in index order; ties resolve to the first entry
PALETTE = np.array([
    [0, 0, 0],        # black
    [255, 255, 255],  # white
], dtype=np.float64)


def to_rgba(image: Any) -> np.ndarray:
    """
    Convert an image to an ``H x W x 4`` uint8 RGBA array.

    Args:
        image: Pillow image or array-like pixel grid

    Returns:
        np.ndarray: Non-premultiplied RGBA pixels

    Raises:
        ContractViolation: If the image is empty or has an unsupported shape
    """
    if isinstance(image, Image.Image):
        image = image.convert('RGBA')

    pixels = np.asarray(image)
    if np.issubdtype(pixels.dtype, np.floating):
        pixels = np.rint(pixels * 255)

    if pixels.ndim == 2:
        if pixels.dtype == bool:
            gray = pixels.astype(np.uint8) * 255
        else:
            gray = np.clip(pixels, 0, 255).astype(np.uint8)
        alpha = np.full(gray.shape, 255, dtype=np.uint8)
        pixels = np.stack([gray, gray, gray, alpha], axis=-1)
    elif pixels.ndim == 3 and pixels.shape[2] == 3:
        alpha = np.full(pixels.shape[:2] + (1,), 255, dtype=np.uint8)
        pixels = np.concatenate(
            [np.clip(pixels, 0, 255).astype(np.uint8), alpha], axis=-1
        )
    elif pixels.ndim == 3 and pixels.shape[2] == 4:
        pixels = np.clip(pixels, 0, 255).astype(np.uint8)
    else:
        raise ContractViolation(
            f"Unsupported image array shape {pixels.shape}; expected "
            f"H x W, H x W x 3 or H x W x 4"
        )

    if pixels.shape[0] == 0 or pixels.shape[1] == 0:
        raise ContractViolation(f"Image is empty: shape {pixels.shape}")

    return pixels


def black_white(image: Any) -> np.ndarray:
    """
    Quantize an image to black & white.

    Each pixel is matched to the nearest palette color by squared
    distance of its alpha-premultiplied RGB value, so fully transparent
    pixels become black.

    Args:
        image: Pillow image or array-like pixel grid

    Returns:
        np.ndarray: 2-D uint8 array of BLACK (0) / WHITE (1)
    """
    rgba = to_rgba(image).astype(np.float64)
    rgb = rgba[..., :3] * (rgba[..., 3:] / 255.0)

    to_black = np.sum((rgb - PALETTE[BLACK]) ** 2, axis=-1)
    to_white = np.sum((rgb - PALETTE[WHITE]) ** 2, axis=-1)

    return np.where(to_white < to_black, WHITE, BLACK).astype(np.uint8)


def is_black(bw: np.ndarray, x: int, y: int) -> bool:
    """Return True if pixel (x, y) of a binarized image is black."""
    return bool(bw[y, x] == BLACK)
