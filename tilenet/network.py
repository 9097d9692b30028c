"""
network.py
~~~~~~~~~~

A feed-forward neural network for recognizing the letter on a tile.

The network has one hidden layer and no biases. Its output layer encodes
a character code point in binary, one output node per bit, so with the
default 8 outputs the recognizable characters are code points 0-255.

Training uses a plain delta rule: each call to ``train`` is one step on
one example, with no learning rate, batching or momentum.
"""

import logging
import math
from typing import (
    Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence,
    Tuple
)

import numpy as np

from tilenet import config
from tilenet.errors import ContractViolation, DecodeError, SnapshotShapeError

logger = logging.getLogger(__name__)

Sample = Tuple[Any, str]


class ForwardPass(NamedTuple):
    """Values produced by one pass through the network."""

    inputs: np.ndarray
    hidden: np.ndarray
    outputs: np.ndarray


def sigmoid(z):
    """The sigmoid function, mapping reals into (0, 1)."""
    return 1.0 / (1.0 + np.exp(-z))


def round_half_away(value: float) -> int:
    """Round to the nearest integer, with halves rounded away from zero."""
    if abs(value) < 0.5:
        return 0
    return int(value + math.copysign(0.5, value))


def char_to_bits(letter: str, width: int = config.NUM_OUTPUTS) -> np.ndarray:
    """
    Encode a character's code point as ``width`` bits, most significant first.

    'A' => 65 => [0, 1, 0, 0, 0, 0, 0, 1]

    Bits above ``width`` are dropped.
    """
    if not isinstance(letter, str) or len(letter) != 1:
        raise ContractViolation(
            f"Expected a single character, got {letter!r}"
        )

    code = ord(letter) & ((1 << width) - 1)
    return np.array(
        [int(bit) for bit in format(code, f'0{width}b')], dtype=np.float64
    )


def bits_to_char(bits: Iterable[int]) -> str:
    """
    Decode a sequence of 0/1 bits, most significant first, into a character.

    Raises:
        DecodeError: If the bits do not form a binary number
    """
    bitstring = ''.join(str(int(bit)) for bit in bits)
    try:
        code = int(bitstring, 2)
    except ValueError as e:
        raise DecodeError(
            f"Could not decode output bits {bitstring!r}"
        ) from e
    return chr(code)


class Network:
    """
    Fully connected network with a single hidden layer.

    Attributes:
        tile_width, tile_height: Dimensions of the tiles fed to the network
        num_inputs: Number of input nodes, one per tile pixel
        hidden_count: Number of hidden nodes
        num_outputs: Number of output bits
        input_weights: ``num_inputs x hidden_count`` weights
        output_weights: ``hidden_count x num_outputs`` weights
    """

    def __init__(
        self,
        tile_width: int = config.TILE_TARGET_WIDTH,
        tile_height: int = config.TILE_TARGET_HEIGHT,
        num_outputs: int = config.NUM_OUTPUTS,
        hidden_count: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None
    ):
        """
        Create a network with small random weights.

        Args:
            tile_width: Width of input tiles in pixels
            tile_height: Height of input tiles in pixels
            num_outputs: Number of output bits
            hidden_count: Hidden nodes; defaults to inputs + outputs
            rng: Random source for the initial weights
            seed: Seed for a new random source, used when rng is None
        """
        if tile_width < 1 or tile_height < 1 or num_outputs < 1:
            raise ContractViolation(
                f"Invalid network dimensions: tile {tile_width}x{tile_height}, "
                f"{num_outputs} outputs"
            )

        self.tile_width = tile_width
        self.tile_height = tile_height
        self.num_inputs = tile_width * tile_height
        self.num_outputs = num_outputs
        # somewhat arbitrary; worth experimenting with
        self.hidden_count = (
            hidden_count if hidden_count is not None
            else self.num_inputs + num_outputs
        )
        if self.hidden_count < 1:
            raise ContractViolation(
                f"hidden_count must be positive, got {self.hidden_count}"
            )

        if rng is None:
            rng = np.random.default_rng(seed)

        # Each layer's weights sum to less than 1
        self.input_weights = rng.random(
            (self.num_inputs, self.hidden_count)
        ) / (self.num_inputs * self.hidden_count)
        self.output_weights = rng.random(
            (self.hidden_count, self.num_outputs)
        ) / (self.hidden_count * self.num_outputs)

    def __repr__(self) -> str:
        return (
            f"Network(num_inputs={self.num_inputs}, "
            f"num_outputs={self.num_outputs}, "
            f"hidden_count={self.hidden_count})"
        )

    @property
    def sizes(self) -> List[int]:
        """Number of nodes in each layer."""
        return [self.num_inputs, self.hidden_count, self.num_outputs]

    def assign_inputs(self, pixels: Any) -> np.ndarray:
        """
        Turn a tile into the network's input vector.

        Accepts either a flat vector of ``num_inputs`` bits or a 2-D
        black & white image no larger than the tile. Smaller images are
        padded with black (0) on the right and bottom.

        Raises:
            ContractViolation: If the input does not fit the network
        """
        values = np.asarray(pixels)

        if values.ndim == 2:
            height, width = values.shape
            if width > self.tile_width or height > self.tile_height:
                raise ContractViolation(
                    f"expected {self.tile_width} {self.tile_height} inputs, "
                    f"got {width} {height}"
                )
            padded = np.zeros((self.tile_height, self.tile_width))
            padded[:height, :width] = values
            values = padded.reshape(-1)
        elif values.ndim != 1 or values.shape[0] != self.num_inputs:
            raise ContractViolation(
                f"expected {self.num_inputs} inputs, got shape {values.shape}"
            )

        return (values != 0).astype(np.float64)

    def activations(self, pixels: Any) -> ForwardPass:
        """Feed a tile forward and return every layer's values."""
        inputs = self.assign_inputs(pixels)
        hidden = sigmoid(inputs @ self.input_weights)
        outputs = sigmoid(hidden @ self.output_weights)
        return ForwardPass(inputs, hidden, outputs)

    def forward(self, pixels: Any) -> np.ndarray:
        """Return the output activations for a tile."""
        return self.activations(pixels).outputs

    def train(self, pixels: Any, letter: str) -> None:
        """
        Adjust the weights so the tile is recognized as ``letter``.

        Args:
            pixels: Pixel vector or reduced tile image
            letter: The character shown on the tile
        """
        target = char_to_bits(letter, self.num_outputs)
        inputs, hidden, outputs = self.activations(pixels)

        output_errors = (target - outputs) * outputs * (1.0 - outputs)

        # Uses the output weights as they were before this step
        hidden_errors = (
            hidden * (1.0 - hidden) * (self.output_weights @ output_errors)
        )

        self.output_weights += np.outer(hidden, output_errors)
        self.input_weights += np.outer(inputs, hidden_errors)

        logger.debug(
            f"Trained on {letter!r}: squared error "
            f"{float(np.sum(output_errors ** 2)):.10f}"
        )

    def recognize(self, pixels: Any) -> str:
        """
        Return the character the network sees on a tile.

        Raises:
            DecodeError: If the output bits cannot be decoded
        """
        bits = [round_half_away(v) for v in self.forward(pixels)]
        letter = bits_to_char(bits)
        logger.debug(
            f"Recognized bitstring {''.join(map(str, bits))} as {letter!r}"
        )
        return letter

    def train_epochs(
        self,
        samples: Sequence[Sample],
        epochs: int,
        rng: Optional[np.random.Generator] = None,
        on_epoch_complete: Optional[Callable[[Dict[str, Any]], None]] = None
    ) -> None:
        """
        Train over a set of samples repeatedly.

        Args:
            samples: ``(pixels, letter)`` pairs
            epochs: Number of passes over the samples
            rng: Random source used to shuffle each epoch
            on_epoch_complete: Called after every epoch with progress data
        """
        if epochs < 1:
            raise ContractViolation(f"epochs must be positive, got {epochs}")

        if rng is None:
            rng = np.random.default_rng()

        samples = list(samples)
        for epoch in range(epochs):
            for index in rng.permutation(len(samples)):
                pixels, letter = samples[index]
                self.train(pixels, letter)

            if on_epoch_complete is not None:
                on_epoch_complete({
                    'epoch': epoch + 1,
                    'total_epochs': epochs,
                    'correct': self.evaluate(samples),
                    'total': len(samples)
                })

        logger.info(
            f"Trained {self} for {epochs} epoch(s) on {len(samples)} sample(s)"
        )

    def evaluate(self, samples: Iterable[Sample]) -> int:
        """Return the number of samples whose letter is recognized."""
        return sum(
            int(self.recognize(pixels) == letter) for pixels, letter in samples
        )

    def to_snapshot(self) -> Dict[str, Any]:
        """
        Return the network's state: its dimensions and copies of both
        weight matrices. ``model_persistence.NetworkEncoder`` turns the
        arrays into nested lists when writing JSON.
        """
        return {
            'num_inputs': self.num_inputs,
            'num_outputs': self.num_outputs,
            'hidden_count': self.hidden_count,
            'tile_width': self.tile_width,
            'tile_height': self.tile_height,
            'input_weights': self.input_weights.copy(),
            'output_weights': self.output_weights.copy()
        }

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any]) -> 'Network':
        """
        Rebuild a network from ``to_snapshot`` output.

        Raises:
            SnapshotShapeError: If fields are missing or shapes disagree
                with the declared dimensions
        """
        try:
            num_inputs = int(snapshot['num_inputs'])
            num_outputs = int(snapshot['num_outputs'])
            hidden_count = int(snapshot['hidden_count'])
            tile_width = int(snapshot['tile_width'])
            tile_height = int(snapshot['tile_height'])
            input_weights = np.array(
                snapshot['input_weights'], dtype=np.float64
            )
            output_weights = np.array(
                snapshot['output_weights'], dtype=np.float64
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SnapshotShapeError(f"Malformed network snapshot: {e}") from e

        if tile_width * tile_height != num_inputs:
            raise SnapshotShapeError(
                f"Tile {tile_width}x{tile_height} does not match "
                f"{num_inputs} inputs"
            )
        if input_weights.shape != (num_inputs, hidden_count):
            raise SnapshotShapeError(
                f"input_weights shape {input_weights.shape} does not match "
                f"({num_inputs}, {hidden_count})"
            )
        if output_weights.shape != (hidden_count, num_outputs):
            raise SnapshotShapeError(
                f"output_weights shape {output_weights.shape} does not match "
                f"({hidden_count}, {num_outputs})"
            )

        net = cls.__new__(cls)
        net.tile_width = tile_width
        net.tile_height = tile_height
        net.num_inputs = num_inputs
        net.num_outputs = num_outputs
        net.hidden_count = hidden_count
        net.input_weights = input_weights
        net.output_weights = output_weights
        return net
