"""
tilenet package
~~~~~~~~~~~~~~~

Neural network letter recognition for small bitmap tiles.
Contains the tile normalization pipeline, the network implementation,
model persistence, and a REST API server.
"""

from tilenet.errors import (
    ContractViolation,
    DecodeError,
    SnapshotShapeError,
    TilenetError
)
from tilenet.network import Network
from tilenet.tile import Tile, normalize

__version__ = "1.0.0"

__all__ = [
    "ContractViolation",
    "DecodeError",
    "Network",
    "SnapshotShapeError",
    "Tile",
    "TilenetError",
    "normalize",
]
