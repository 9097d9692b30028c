"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Persistence for tile recognition networks.

Networks are stored as JSON snapshots (see ``Network.to_snapshot``),
either as standalone files or as rows in a SQLite model store. Snapshots
are validated against their declared dimensions when restored.
"""

import sqlite3
import json
import os
import logging
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager
import numpy as np

from tilenet import config
from tilenet.errors import SnapshotShapeError
from tilenet.network import Network

# Configure module logger
logger = logging.getLogger(__name__)


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy arrays."""

    def default(self, obj: Any) -> Any:
        """
        Convert numpy arrays to lists for JSON serialization.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation
        """
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        return super().default(obj)


def dumps_network(network: Network) -> str:
    """Serialize a network snapshot to a JSON string."""
    return json.dumps(network.to_snapshot(), cls=NetworkEncoder)


def loads_network(data: str) -> Network:
    """
    Restore a network from a JSON snapshot string.

    Raises:
        SnapshotShapeError: If the snapshot is not valid JSON or its
            shapes are inconsistent
    """
    try:
        snapshot = json.loads(data)
    except json.JSONDecodeError as e:
        raise SnapshotShapeError(f"Snapshot is not valid JSON: {e}") from e
    if not isinstance(snapshot, dict):
        raise SnapshotShapeError(
            f"Snapshot must be a JSON object, got {type(snapshot).__name__}"
        )
    return Network.from_snapshot(snapshot)


def save_network_file(network: Network, file_path: str) -> None:
    """
    Write a network snapshot to a file.

    Args:
        network: The network to save
        file_path: Destination path; parent directories are created
    """
    directory = os.path.dirname(file_path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)

    with open(file_path, 'w', encoding='utf-8') as f:
        f.write(dumps_network(network))

    logger.info(f"Saved {network} to {file_path}")


def restore_network_file(file_path: str) -> Network:
    """
    Read a network snapshot from a file.

    Raises:
        OSError: If the file cannot be read
        SnapshotShapeError: If the snapshot is malformed
    """
    with open(file_path, 'r', encoding='utf-8') as f:
        network = loads_network(f.read())

    logger.info(f"Restored {network} from {file_path}")
    return network


class ModelDatabase:
    """
    Manages a SQLite database of trained networks.

    The database stores:
    - Network metadata (architecture, tile size, training status, accuracy)
    - JSON network snapshots
    """

    def __init__(self, db_path: str = f'{config.MODEL_DIR}/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    tile_width INTEGER NOT NULL,
                    tile_height INTEGER NOT NULL,
                    snapshot TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        trained: bool = True,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Save a network to the database, replacing any with the same id.

        Args:
            network: Network to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            accuracy: Share of training tiles recognized (0.0 to 1.0)

        Returns:
            bool: True if successful

        Raises:
            ValueError: If accuracy is out of valid range
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        with self._get_connection() as conn:
            cursor = conn.cursor()
            # Keep created_at of an existing row
            cursor.execute('''
                INSERT INTO networks
                (network_id, architecture, tile_width, tile_height,
                 snapshot, trained, accuracy)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    tile_width = excluded.tile_width,
                    tile_height = excluded.tile_height,
                    snapshot = excluded.snapshot,
                    trained = excluded.trained,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                json.dumps(network.sizes),
                network.tile_width,
                network.tile_height,
                dumps_network(network),
                1 if trained else 0,
                accuracy
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.sizes}, trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[Network]:
        """
        Load a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Network object or None if not found

        Raises:
            SnapshotShapeError: If the stored snapshot is malformed
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT snapshot FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        network = loads_network(row['snapshot'])
        logger.info(f"Loaded network '{network_id}'")
        return network

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        architecture = json.loads(row['architecture'])
        return {
            'network_id': row['network_id'],
            'architecture': architecture,
            'tile_width': row['tile_width'],
            'tile_height': row['tile_height'],
            'weights_shape': [
                [architecture[i], architecture[i+1]]
                for i in range(len(architecture) - 1)
            ],
            'trained': bool(row['trained']),
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata, newest first.

        Returns:
            List of network metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    tile_width,
                    tile_height,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')
            networks = [self._row_to_metadata(row) for row in cursor.fetchall()]

        logger.debug(f"Listed {len(networks)} networks")
        return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network from the database.

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted network '{network_id}'")
        else:
            logger.warning(
                f"Could not delete network '{network_id}': not found"
            )
        return deleted

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without restoring the network.

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    tile_width,
                    tile_height,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Metadata for network '{network_id}' not found")
            return None

        return self._row_to_metadata(row)


# Global database instance for the default model directory
_db = None


def _get_db(model_dir: str) -> ModelDatabase:
    """
    Return the database for a model directory.

    The default directory shares one global instance.
    """
    global _db
    db_path = f'{model_dir}/networks.db'
    if model_dir != config.MODEL_DIR:
        return ModelDatabase(db_path=db_path)
    if _db is None or _db.db_path != db_path:
        _db = ModelDatabase(db_path=db_path)
    return _db


def _valid_id(network_id: Any) -> bool:
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False
    return True


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = config.MODEL_DIR,
    trained: bool = True,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a network to the model store.

    Args:
        network: The network to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        trained: Whether the network has been trained
        accuracy: Share of training tiles recognized (0.0 to 1.0)

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network(12, 12)
        >>> save_network(net, "letters", trained=False)
        True
    """
    if not _valid_id(network_id):
        return False

    try:
        return _get_db(model_dir).save_network_to_db(
            network, network_id, trained, accuracy
        )
    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False


def load_network(
    network_id: str,
    model_dir: str = config.MODEL_DIR
) -> Optional[Network]:
    """
    Load a network from the model store.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory where the database is stored

    Returns:
        The restored network, or None if it is not found

    Raises:
        SnapshotShapeError: If the stored snapshot is malformed
    """
    if not _valid_id(network_id):
        return None

    try:
        return _get_db(model_dir).load_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error loading network '{network_id}': {e}")
        return None


def list_saved_networks(
    model_dir: str = config.MODEL_DIR
) -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Example:
        >>> for net in list_saved_networks():
        ...     print(f"{net['network_id']}: {net['architecture']}")
    """
    try:
        return _get_db(model_dir).list_networks_from_db()
    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = config.MODEL_DIR) -> bool:
    """
    Delete a saved network.

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not _valid_id(network_id):
        return False

    try:
        return _get_db(model_dir).delete_network_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False


def get_network_metadata(
    network_id: str,
    model_dir: str = config.MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a saved network without restoring it.

    Example:
        >>> metadata = get_network_metadata("letters")
        >>> if metadata:
        ...     print(f"Accuracy: {metadata['accuracy']}")
    """
    if not _valid_id(network_id):
        return None

    try:
        return _get_db(model_dir).get_network_metadata_from_db(network_id)
    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{network_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{network_id}': {e}"
        )
        return None
