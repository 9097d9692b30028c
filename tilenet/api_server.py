"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API for training and querying tile recognition networks.

This module provides endpoints for:
- Creating and managing networks
- Training networks on labelled tile images
- Recognizing the letter on a tile image
- Persisting networks to/from the SQLite model store

Training runs synchronously inside the request. Each network has its own
lock, so requests touching the same network are serialized.
"""

import os
import sys
import uuid
import base64
import binascii
import logging
import threading
from io import BytesIO
from typing import Dict, Any, List

import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from PIL import Image

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from tilenet import config
from tilenet.errors import ContractViolation, SnapshotShapeError
from tilenet.network import Network, char_to_bits, round_half_away
from tilenet.tile import Tile
from tilenet.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    get_network_metadata
)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: quiet third-party logs, keep ours at INFO
    - In development: use LOG_LEVEL for everything
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if is_production:
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('tilenet').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Guards active_networks itself; each entry carries its own lock
_registry_lock = threading.Lock()


def _register(network_id: str, net: Network, trained: bool = False,
              accuracy: Any = None) -> Dict[str, Any]:
    info = {
        'network': net,
        'architecture': net.sizes,
        'trained': trained,
        'accuracy': accuracy,
        'lock': threading.Lock()
    }
    with _registry_lock:
        active_networks[network_id] = info
    return info


def reload_saved_networks(model_dir: str = config.MODEL_DIR) -> None:
    """
    Reload all saved networks from the model store into memory.

    Called at startup to restore networks saved before a restart.
    """
    saved_networks = list_saved_networks(model_dir)

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        try:
            net = load_network(network_id, model_dir)
        except SnapshotShapeError as e:
            logger.error(f"Skipping malformed network {network_id}: {e}")
            continue
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue
        _register(network_id, net, net_info['trained'], net_info['accuracy'])
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def decode_image(encoded: Any) -> Image.Image:
    """
    Decode a base64-encoded image file (PNG, GIF, ...).

    Raises:
        ContractViolation: If the payload is not a readable image
    """
    if not isinstance(encoded, str) or not encoded:
        raise ContractViolation('image must be a base64-encoded string')

    # Accept data URLs as sent by browsers
    if encoded.startswith('data:') and ',' in encoded:
        encoded = encoded.split(',', 1)[1]

    try:
        raw = base64.b64decode(encoded, validate=True)
        with Image.open(BytesIO(raw)) as img:
            return img.convert('RGBA')
    # UnidentifiedImageError and truncated files are both OSErrors
    except (binascii.Error, OSError, Image.DecompressionBombError) as e:
        raise ContractViolation(f'Could not decode image: {e}') from e


def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in array.flatten()]


def create_tile_image(reduced: np.ndarray, predicted: str) -> str:
    """
    Render a reduced tile as a base64-encoded PNG.

    Args:
        reduced: Black & white tile of 0/1 pixels
        predicted: The letter the network recognized

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(reduced, cmap='gray', vmin=0, vmax=1)
    plt.title(f"Recognized: {predicted!r}")
    plt.axis('off')

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _tile_for(net: Network, letter: Any, encoded: Any) -> Tile:
    return Tile(
        letter,
        decode_image(encoded),
        width=net.tile_width,
        height=net.tile_height
    )


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and statistics."""
    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks)
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network.

    Request body (all optional):
        {
            'tile_width': 12,
            'tile_height': 12,
            'hidden_count': 152,
            'seed': 42
        }

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    tile_width = data.get('tile_width', config.TILE_TARGET_WIDTH)
    tile_height = data.get('tile_height', config.TILE_TARGET_HEIGHT)
    hidden_count = data.get('hidden_count')
    seed = data.get('seed')

    if not _positive_int(tile_width) or not _positive_int(tile_height):
        return jsonify({
            'error': 'tile_width and tile_height must be positive integers'
        }), 400
    if hidden_count is not None and not _positive_int(hidden_count):
        return jsonify({'error': 'hidden_count must be a positive integer'}), 400
    if seed is not None and (not isinstance(seed, int) or seed < 0):
        return jsonify({'error': 'seed must be a non-negative integer'}), 400

    network_id = str(uuid.uuid4())

    try:
        net = Network(
            tile_width, tile_height, hidden_count=hidden_count, seed=seed
        )
        _register(network_id, net)

        logger.info(f"Created network {network_id}: {net}")

        return jsonify({
            'network_id': network_id,
            'architecture': net.sizes,
            'status': 'created'
        }), 201

    except Exception as e:
        logger.exception(f"Error creating network: {e}")
        return jsonify({'error': f'Failed to create network: {str(e)}'}), 500


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Train a network on labelled tiles.

    Request body:
        {
            'samples': [{'letter': 'A', 'image': '<base64 png>'}, ...],
            'epochs': 100,
            'seed': 7
        }

    Returns:
        JSON with the number and share of samples recognized afterwards
    """
    info = active_networks.get(network_id)
    if info is None:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    samples = data.get('samples')
    epochs = data.get('epochs', 100)
    seed = data.get('seed')

    if not isinstance(samples, list) or not samples:
        return jsonify({'error': 'samples must be a non-empty list'}), 400
    if not all(isinstance(sample, dict) for sample in samples):
        return jsonify({
            'error': 'each sample must be an object with letter and image'
        }), 400
    if not _positive_int(epochs):
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if seed is not None and (not isinstance(seed, int) or seed < 0):
        return jsonify({'error': 'seed must be a non-negative integer'}), 400

    net = info['network']
    try:
        tiles = [
            _tile_for(net, sample.get('letter'), sample.get('image'))
            for sample in samples
        ]
        training_data = [(tile.pixels, tile.letter) for tile in tiles]
        for tile in tiles:
            char_to_bits(tile.letter, net.num_outputs)

        with info['lock']:
            net.train_epochs(
                training_data, epochs, rng=np.random.default_rng(seed)
            )
            correct = net.evaluate(training_data)

    except ContractViolation as e:
        logger.warning(f"Rejected training data for {network_id}: {e}")
        return jsonify({'error': f'Invalid training data: {e}'}), 400
    except Exception as e:
        logger.exception(f"Error training network {network_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    accuracy = correct / len(training_data)
    info['trained'] = True
    info['accuracy'] = accuracy

    logger.info(
        f"Network {network_id} recognizes {correct}/{len(training_data)} "
        f"training tiles after {epochs} epoch(s)"
    )

    return jsonify({
        'network_id': network_id,
        'epochs': epochs,
        'correct': correct,
        'total': len(training_data),
        'accuracy': accuracy,
        'status': 'trained'
    }), 200


@app.route('/api/networks/<network_id>/recognize', methods=['POST'])
def recognize_tile(network_id: str):
    """
    Recognize the letter on a tile.

    Request body:
        {'image': '<base64 png>'}

    Returns JSON with the letter, its output bits and a preview of the
    reduced tile.
    """
    info = active_networks.get(network_id)
    if info is None:
        logger.warning(f"Recognition requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    net = info['network']

    try:
        tile = _tile_for(net, None, data.get('image'))
        with info['lock']:
            output = net.forward(tile.pixels)
            letter = net.recognize(tile.pixels)

        return jsonify({
            'network_id': network_id,
            'letter': letter,
            'code_point': ord(letter),
            'bits': ''.join(str(round_half_away(v)) for v in output),
            'network_output': array_to_float_list(output),
            'tile': tile.to_string(),
            'image_data': create_tile_image(tile.reduced, letter)
        }), 200

    except ContractViolation as e:
        logger.warning(f"Rejected tile for {network_id}: {e}")
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception(f"Error recognizing tile with {network_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List networks in memory and in the model store."""
    try:
        networks = [
            {
                'network_id': network_id,
                'architecture': info['architecture'],
                'trained': info['trained'],
                'accuracy': info['accuracy']
            }
            for network_id, info in active_networks.items()
        ]
        return jsonify({
            'networks': networks,
            'saved': list_saved_networks(config.MODEL_DIR)
        }), 200

    except Exception as e:
        logger.exception(f"Error listing networks: {e}")
        return jsonify({'error': 'Internal server error'}), 500


@app.route('/api/networks/<network_id>/save', methods=['POST'])
def save_network_endpoint(network_id: str):
    """Persist an in-memory network to the model store."""
    info = active_networks.get(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404

    try:
        with info['lock']:
            saved = save_network(
                info['network'],
                network_id,
                model_dir=config.MODEL_DIR,
                trained=info['trained'],
                accuracy=info['accuracy']
            )
    except Exception as e:
        logger.exception(f"Error saving network {network_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    if not saved:
        return jsonify({'error': 'Failed to save network'}), 500

    return jsonify({'network_id': network_id, 'status': 'saved'}), 200


@app.route('/api/networks/<network_id>/load', methods=['POST'])
def load_network_endpoint(network_id: str):
    """Load a network from the model store into memory."""
    try:
        net = load_network(network_id, config.MODEL_DIR)
        metadata = get_network_metadata(network_id, config.MODEL_DIR)
    except SnapshotShapeError as e:
        logger.error(f"Stored network {network_id} is malformed: {e}")
        return jsonify({'error': f'Stored network is malformed: {e}'}), 500
    except Exception as e:
        logger.exception(f"Error loading network {network_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    if net is None or metadata is None:
        return jsonify({'error': 'Network not found'}), 404

    _register(network_id, net, metadata['trained'], metadata['accuracy'])
    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'trained': metadata['trained'],
        'accuracy': metadata['accuracy'],
        'status': 'loaded'
    }), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory and from the model store."""
    try:
        with _registry_lock:
            in_memory = active_networks.pop(network_id, None) is not None
        in_store = delete_network(network_id, config.MODEL_DIR)
    except Exception as e:
        logger.exception(f"Error deleting network {network_id}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    if not in_memory and not in_store:
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Deleted network {network_id}")
    return jsonify({'network_id': network_id, 'status': 'deleted'}), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    reload_saved_networks()

    port = int(os.environ.get('PORT', 8000))
    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        app.run(host='0.0.0.0', port=port, use_reloader=False)
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise
