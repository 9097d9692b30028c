"""
test_network.py
~~~~~~~~~~~~~~~

Unit tests for the feed-forward network.
"""

import numpy as np
import pytest

from conftest import draw_a
from tilenet.errors import ContractViolation, DecodeError, SnapshotShapeError
from tilenet.network import (
    Network,
    bits_to_char,
    char_to_bits,
    round_half_away,
    sigmoid
)
from tilenet.tile import Tile


@pytest.fixture
def small_network():
    """A 3x2 tile network with deterministic weights."""
    return Network(3, 2, seed=3)


@pytest.fixture
def tile_a():
    return Tile('A', draw_a())


@pytest.mark.unit
class TestActivation:
    """Test sigmoid and output quantization."""

    def test_sigmoid_midpoint(self):
        assert sigmoid(0) == 0.5

    def test_sigmoid_is_increasing_and_bounded(self):
        values = sigmoid(np.linspace(-20, 20, 401))

        assert np.all(np.diff(values) > 0)
        assert np.all(values > 0)
        assert np.all(values < 1)

    @pytest.mark.parametrize("value,expected", [
        (0.0, 0),
        (0.49, 0),
        (0.5, 1),
        (0.99, 1),
        (1.0, 1),
        (-0.49, 0),
        (-0.5, -1),
    ])
    def test_round_half_away(self, value, expected):
        assert round_half_away(value) == expected


@pytest.mark.unit
class TestBitCodes:
    """Test the binary output code."""

    def test_char_to_bits(self):
        assert char_to_bits('A').tolist() == [0, 1, 0, 0, 0, 0, 0, 1]

    def test_round_trip_all_code_points(self):
        for code in range(256):
            assert bits_to_char(char_to_bits(chr(code))) == chr(code)

    def test_high_bits_are_dropped(self):
        assert char_to_bits(chr(256 + 65)).tolist() == char_to_bits('A').tolist()

    def test_custom_width(self):
        assert char_to_bits('A', width=4).tolist() == [0, 0, 0, 1]

    @pytest.mark.parametrize("letter", ['', 'AB', None, 65])
    def test_rejects_non_characters(self, letter):
        with pytest.raises(ContractViolation):
            char_to_bits(letter)

    def test_bad_bits_raise_decode_error(self):
        with pytest.raises(DecodeError):
            bits_to_char([0, 2, 1])

    def test_empty_bits_raise_decode_error(self):
        with pytest.raises(DecodeError):
            bits_to_char([])


@pytest.mark.unit
class TestConstruction:
    """Test network shapes and initial weights."""

    def test_default_shapes(self):
        net = Network()

        assert net.sizes == [144, 152, 8]
        assert net.input_weights.shape == (144, 152)
        assert net.output_weights.shape == (152, 8)

    def test_custom_hidden_count(self):
        net = Network(4, 4, hidden_count=10)

        assert net.sizes == [16, 10, 8]

    def test_initial_weights_are_small(self):
        net = Network(seed=0)

        assert np.all(net.input_weights >= 0)
        assert np.all(net.output_weights >= 0)
        assert net.input_weights.sum() < 1
        assert net.output_weights.sum() < 1

    def test_seed_makes_weights_reproducible(self):
        a = Network(3, 3, seed=42)
        b = Network(3, 3, seed=42)
        c = Network(3, 3, seed=43)

        assert np.array_equal(a.input_weights, b.input_weights)
        assert np.array_equal(a.output_weights, b.output_weights)
        assert not np.array_equal(a.input_weights, c.input_weights)

    def test_injected_rng(self):
        a = Network(3, 3, rng=np.random.default_rng(5))
        b = Network(3, 3, rng=np.random.default_rng(5))

        assert np.array_equal(a.input_weights, b.input_weights)

    def test_rejects_bad_dimensions(self):
        with pytest.raises(ContractViolation):
            Network(0, 12)


@pytest.mark.unit
class TestInputs:
    """Test how tiles are fed into the network."""

    def test_accepts_flat_vector(self, small_network):
        inputs = small_network.assign_inputs([1, 0, 1, 0, 1, 0])
        assert inputs.tolist() == [1, 0, 1, 0, 1, 0]

    def test_accepts_tile_sized_image(self, small_network):
        inputs = small_network.assign_inputs(np.array([[1, 0, 1], [0, 1, 0]]))
        assert inputs.tolist() == [1, 0, 1, 0, 1, 0]

    def test_pads_smaller_image_with_black(self, small_network):
        inputs = small_network.assign_inputs(np.array([[1, 1]]))
        assert inputs.tolist() == [1, 1, 0, 0, 0, 0]

    def test_rejects_oversized_image(self, small_network):
        with pytest.raises(ContractViolation):
            small_network.assign_inputs(np.ones((2, 4)))

    def test_rejects_wrong_vector_length(self, small_network):
        with pytest.raises(ContractViolation):
            small_network.assign_inputs([1, 0, 1])

    def test_rejects_color_image(self, small_network):
        with pytest.raises(ContractViolation):
            small_network.assign_inputs(np.ones((2, 3, 3)))


@pytest.mark.unit
class TestForward:
    """Test the forward pass."""

    def test_forward_matches_formula(self, small_network):
        x = np.array([1, 0, 1, 1, 0, 1], dtype=np.float64)

        hidden = sigmoid(x @ small_network.input_weights)
        expected = sigmoid(hidden @ small_network.output_weights)

        assert np.allclose(small_network.forward(x), expected)

    def test_activations_shapes(self, small_network):
        fp = small_network.activations([1] * 6)

        assert fp.inputs.shape == (6,)
        assert fp.hidden.shape == (14,)
        assert fp.outputs.shape == (8,)

    def test_recognize_does_not_change_weights(self, small_network):
        input_weights = small_network.input_weights.copy()
        output_weights = small_network.output_weights.copy()

        small_network.recognize([1, 1, 0, 0, 1, 1])

        assert np.array_equal(small_network.input_weights, input_weights)
        assert np.array_equal(small_network.output_weights, output_weights)

    def test_recognize_returns_single_character(self, small_network):
        letter = small_network.recognize([0] * 6)

        assert isinstance(letter, str)
        assert len(letter) == 1
        assert ord(letter) < 256


@pytest.mark.unit
class TestTraining:
    """Test backpropagation."""

    def test_train_applies_delta_rule(self, small_network):
        x = np.array([1, 0, 1, 1, 0, 1], dtype=np.float64)
        w_in = small_network.input_weights.copy()
        w_out = small_network.output_weights.copy()

        hidden = sigmoid(x @ w_in)
        out = sigmoid(hidden @ w_out)
        target = char_to_bits('A')
        output_errors = (target - out) * out * (1 - out)
        hidden_errors = hidden * (1 - hidden) * (w_out @ output_errors)

        result = small_network.train(x, 'A')

        assert result is None
        assert np.allclose(
            small_network.output_weights,
            w_out + np.outer(hidden, output_errors)
        )
        assert np.allclose(
            small_network.input_weights,
            w_in + np.outer(x, hidden_errors)
        )

    def test_train_leaves_weights_of_black_inputs(self, small_network):
        w_in = small_network.input_weights.copy()

        small_network.train([1, 0, 1, 1, 0, 1], 'A')

        assert np.array_equal(small_network.input_weights[1], w_in[1])
        assert np.array_equal(small_network.input_weights[4], w_in[4])

    def test_train_moves_outputs_toward_target(self, small_network):
        x = [1, 1, 0, 1, 0, 1]
        target = char_to_bits('Z')

        before = np.abs(target - small_network.forward(x)).sum()
        small_network.train(x, 'Z')
        after = np.abs(target - small_network.forward(x)).sum()

        assert after < before

    def test_converges_on_single_example(self, tile_a):
        net = Network(seed=1)

        for _ in range(500):
            net.train(tile_a.pixels, 'A')

        assert net.recognize(tile_a.pixels) == 'A'

    def test_train_epochs_reports_progress(self):
        net = Network(seed=2)
        samples = [(Tile('A', draw_a()).pixels, 'A')]
        progress = []

        net.train_epochs(
            samples, 3,
            rng=np.random.default_rng(0),
            on_epoch_complete=progress.append
        )

        assert [p['epoch'] for p in progress] == [1, 2, 3]
        assert all(p['total'] == 1 for p in progress)

    def test_train_epochs_rejects_zero_epochs(self, small_network):
        with pytest.raises(ContractViolation):
            small_network.train_epochs([([0] * 6, 'A')], 0)

    def test_evaluate_counts_correct(self, tile_a):
        net = Network(seed=4)
        samples = [(tile_a.pixels, 'A')]

        net.train_epochs(samples, 300, rng=np.random.default_rng(0))

        assert net.evaluate(samples) == 1
        assert net.evaluate([(tile_a.pixels, 'B')]) == 0

    def test_train_rejects_bad_letter(self, small_network):
        with pytest.raises(ContractViolation):
            small_network.train([0] * 6, 'AB')


@pytest.mark.unit
class TestSnapshot:
    """Test snapshot serialization of the network."""

    def test_round_trip_preserves_outputs(self, tile_a):
        net = Network(seed=5)
        for _ in range(20):
            net.train(tile_a.pixels, 'A')

        restored = Network.from_snapshot(net.to_snapshot())

        assert restored.sizes == net.sizes
        assert (restored.tile_width, restored.tile_height) == (12, 12)
        assert np.allclose(
            restored.forward(tile_a.pixels), net.forward(tile_a.pixels),
            rtol=0, atol=1e-9
        )

    def test_restored_network_keeps_training(self, small_network):
        restored = Network.from_snapshot(small_network.to_snapshot())

        restored.train([1] * 6, 'A')

        assert not np.array_equal(
            restored.output_weights, small_network.output_weights
        )

    def test_rejects_wrong_input_shape(self, small_network):
        snapshot = small_network.to_snapshot()
        snapshot['input_weights'] = snapshot['input_weights'][:-1]

        with pytest.raises(SnapshotShapeError):
            Network.from_snapshot(snapshot)

    def test_rejects_wrong_output_shape(self, small_network):
        snapshot = small_network.to_snapshot()
        snapshot['num_outputs'] = 7

        with pytest.raises(SnapshotShapeError):
            Network.from_snapshot(snapshot)

    def test_rejects_inconsistent_tile_size(self, small_network):
        snapshot = small_network.to_snapshot()
        snapshot['tile_width'] = 4

        with pytest.raises(SnapshotShapeError):
            Network.from_snapshot(snapshot)

    def test_rejects_missing_field(self, small_network):
        snapshot = small_network.to_snapshot()
        del snapshot['hidden_count']

        with pytest.raises(SnapshotShapeError):
            Network.from_snapshot(snapshot)

    def test_rejects_ragged_weights(self, small_network):
        snapshot = small_network.to_snapshot()
        output_weights = snapshot['output_weights'].tolist()
        output_weights[0] = [0.1]
        snapshot['output_weights'] = output_weights

        with pytest.raises(SnapshotShapeError):
            Network.from_snapshot(snapshot)

    def test_snapshot_holds_weight_copies(self, small_network):
        snapshot = small_network.to_snapshot()

        assert isinstance(snapshot['input_weights'], np.ndarray)
        assert isinstance(snapshot['output_weights'], np.ndarray)

        snapshot['input_weights'][0, 0] = 99.0

        assert small_network.input_weights[0, 0] != 99.0


@pytest.mark.integration
def test_tiles_feed_the_network(glyph_i):
    net = Network(seed=6)
    tile = Tile('I', glyph_i)

    assert net.forward(tile.pixels).shape == (8,)
    assert net.forward(tile.reduced).shape == (8,)
