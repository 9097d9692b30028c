"""
config.py
~~~~~~~~~

Runtime settings for tilenet, read from the environment once at import.
"""

import os

# Number of output bits. This constrains the range of recognizable chars.
NUM_OUTPUTS = int(os.getenv('TILENET_NUM_OUTPUTS', '8'))

# Tiles get scaled down to these dimensions before reaching the network
TILE_TARGET_WIDTH = int(os.getenv('TILENET_TILE_WIDTH', '12'))
TILE_TARGET_HEIGHT = int(os.getenv('TILENET_TILE_HEIGHT', '12'))

# Threshold width/height for imposing a bounding box on a tile
MIN_BOUNDING_BOX_PERCENT = float(
    os.getenv('TILENET_MIN_BBOX_PERCENT', '0.25')
)

# Directory holding the SQLite model store
MODEL_DIR = os.getenv('TILENET_MODEL_DIR', 'models')
