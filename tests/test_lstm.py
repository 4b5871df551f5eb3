"""
Tests for the LSTM cell.

Tests cover:
- A single step with fixed literal parameters (4 -> 5), forward and backward
- The memory reads the pre-activation of the previous memory
- Gradients of an isolated cell against finite differences
- Zero-state equivalence
- Initial hidden errors without a next state
"""

import numpy as np
import pytest

from gatedcells.activations import sigmoid

INPUT = np.array([-0.8, -0.9, -0.9, 1.0])
GOLD = np.array([0.57, 0.75, -0.15, 1.64, 0.45])

WEIGHTS = {
    "input_gate": [
        [0.5, 0.6, -0.8, -0.6],
        [0.7, -0.4, 0.1, -0.8],
        [0.7, -0.7, 0.3, 0.5],
        [0.8, -0.9, 0.0, -0.1],
        [0.4, 1.0, -0.7, 0.8],
    ],
    "output_gate": [
        [0.1, 0.4, -1.0, 0.4],
        [0.7, -0.2, 0.1, 0.0],
        [0.7, 0.8, -0.5, -0.3],
        [-0.9, 0.9, -0.3, -0.3],
        [-0.7, 0.6, -0.6, -0.8],
    ],
    "forget_gate": [
        [-1.0, 0.2, 0.0, 0.2],
        [-0.7, 0.7, -0.3, -0.3],
        [0.3, -0.6, 0.0, 0.7],
        [-1.0, -0.6, 0.9, 0.8],
        [0.5, 0.8, -0.9, -0.8],
    ],
    "candidate": [
        [0.2, 0.6, 0.0, 0.1],
        [0.1, -0.3, -0.8, -0.5],
        [-0.1, 0.0, 0.4, -0.4],
        [-0.8, -0.3, -0.7, 0.3],
        [-0.4, 0.9, 0.8, -0.3],
    ],
}

BIASES = {
    "input_gate": [0.4, 0.0, -0.3, 0.8, -0.4],
    "output_gate": [0.9, 0.2, -0.9, 0.2, -0.9],
    "forget_gate": [0.9, 0.2, -0.9, 0.2, -0.9],
    "candidate": [0.5, -0.5, 1.0, 0.4, 0.9],
}

RECURRENT_WEIGHTS = [
    [0.0, 0.8, 0.8, -1.0, -0.7],
    [0.1, 0.1, 0.3, 0.9, 0.9],
    [-0.4, -1.0, 0.0, 0.0, 0.1],
    [-1.0, 0.0, 0.6, -0.9, 0.3],
    [-0.6, 0.6, -0.8, 0.8, -0.8],
]


def build_literal_params():
    from gatedcells.params import build_params_group

    params = build_params_group("lstm", input_size=4, output_size=5)
    for role, gate in params.gates.items():
        gate.weights.assign_values(np.array(WEIGHTS[role]))
        gate.biases.assign_values(np.array(BIASES[role]))
        gate.recurrent_weights.assign_values(np.array(RECURRENT_WEIGHTS))
    return params


def reference_step(params, x, y_prev=None, memory_prev=None):
    """Plain NumPy LSTM step, written independently of the cell."""

    def affine(role, activation):
        gate = params[role]
        z = gate.weights.values @ x + gate.biases.values
        if y_prev is not None:
            z = z + gate.recurrent_weights.values @ y_prev
        return activation(z)

    i = affine("input_gate", sigmoid)
    o = affine("output_gate", sigmoid)
    f = affine("forget_gate", sigmoid)
    g = affine("candidate", np.tanh)

    memory = i * g
    if memory_prev is not None:
        memory = memory + f * memory_prev

    return o * np.tanh(memory), memory, (i, o, f, g)


class TestLSTMSingleStep:
    """
    One step, no previous and no next state, fixed literal parameters.

    With no recurrent context the bias gradient of each gate is exactly the
    errors of that gate.
    """

    @pytest.fixture
    def cell(self):
        from gatedcells.lstm import LSTMCell

        cell = LSTMCell(build_literal_params())
        cell.set_input(INPUT)
        return cell

    def test_forward(self, cell):
        expected, _, _ = reference_step(cell.params, INPUT)

        output = cell.forward()

        assert output.shape == (5,)
        assert np.allclose(output, expected, atol=1e-5), (
            f"Expected {expected}, got {output}"
        )

    def test_memory_and_gates(self, cell):
        _, memory, (i, o, f, g) = reference_step(cell.params, INPUT)

        cell.forward()

        assert np.allclose(cell.cell.pre_activation, memory)
        assert np.allclose(cell.cell.values, np.tanh(memory))
        assert np.allclose(cell.input_gate.values, i)
        assert np.allclose(cell.output_gate.values, o)
        assert np.allclose(cell.forget_gate.values, f)
        assert np.allclose(cell.candidate.values, g)

    def test_backward_bias_gradients_equal_gate_errors(self, cell):
        output = cell.forward()
        cell.output_array.assign_errors(output - GOLD)

        gradients = cell.backward()

        for role, gate in cell.gates.items():
            assert np.array_equal(gradients[role].biases.values, gate.errors), (
                f"Bias gradient of {role} should equal its errors"
            )

    def test_backward_gate_errors(self, cell):
        output = cell.forward()
        gy = output - GOLD
        cell.output_array.assign_errors(gy)
        cell.backward()

        _, memory, (i, o, f, g) = reference_step(cell.params, INPUT)
        gc = gy * o * (1.0 - np.tanh(memory) ** 2)

        assert np.allclose(cell.output_gate.errors, gy * np.tanh(memory) * o * (1.0 - o))
        assert np.allclose(cell.cell.errors, gc)
        assert np.allclose(cell.input_gate.errors, gc * g * i * (1.0 - i))
        assert np.allclose(cell.candidate.errors, gc * i * (1.0 - g ** 2))
        assert np.array_equal(cell.forget_gate.errors, np.zeros(5))

    def test_recurrent_gradients_are_zero(self, cell):
        output = cell.forward()
        cell.output_array.assign_errors(output - GOLD)

        gradients = cell.backward()

        for role in cell.gates:
            assert np.all(gradients[role].recurrent_weights.values == 0.0)

    def test_input_errors(self, cell):
        output = cell.forward()
        cell.output_array.assign_errors(output - GOLD)
        cell.backward(propagate_to_input=True)

        expected = sum(
            gate.errors @ cell.params[role].weights.values for role, gate in cell.gates.items()
        )
        assert np.allclose(cell.input_array.errors, expected)

    def test_get_params_gradients_before_backward_raises(self, cell):
        from gatedcells.errors import UninitializedStateError

        cell.forward()

        with pytest.raises(UninitializedStateError):
            cell.get_params_gradients()

    def test_backward_into_given_buffer(self, cell):
        output = cell.forward()
        cell.output_array.assign_errors(output - GOLD)
        buffer = cell.params.zeros_like()

        returned = cell.backward(params_errors=buffer)

        assert returned is buffer
        assert cell.get_params_gradients() is buffer

    def test_initial_hidden_errors_without_next_state_raises(self, cell):
        from gatedcells.errors import UnsupportedOperationError

        output = cell.forward()
        cell.output_array.assign_errors(output - GOLD)
        cell.backward()

        with pytest.raises(UnsupportedOperationError):
            cell.initial_hidden_errors()


class TestLSTMRecurrence:
    """Test suite for the link with the previous state."""

    def test_memory_uses_previous_pre_activation(self):
        from gatedcells.context import StaticContextWindow
        from gatedcells.lstm import LSTMCell

        params = build_literal_params()
        x_next = np.array([0.8, -0.1, 0.4, 0.2])

        first = LSTMCell(params)
        second = LSTMCell(params, context_window=StaticContextWindow(previous=first))
        first.context_window = StaticContextWindow(next=second)

        first.set_input(INPUT)
        y_first = first.forward()
        second.set_input(x_next)
        y_second = second.forward()

        _, memory_first, _ = reference_step(params, INPUT)
        expected, _, _ = reference_step(params, x_next, y_first, memory_first)

        assert np.allclose(y_second, expected)

    def test_zero_state_equivalence(self):
        """A zero previous output and memory is the same as no previous state."""
        from gatedcells.context import StaticContextWindow
        from gatedcells.lstm import LSTMCell

        params = build_literal_params()

        isolated = LSTMCell(params)
        isolated.set_input(INPUT)

        seed = LSTMCell(params)
        seed.set_initial_state(np.zeros(5))
        seeded = LSTMCell(params, context_window=StaticContextWindow(previous=seed))
        seeded.set_input(INPUT)

        assert np.allclose(isolated.forward(), seeded.forward(), atol=1e-12)

    def test_neighbor_of_another_variant_raises(self):
        from gatedcells.context import StaticContextWindow
        from gatedcells.gru import GRUCell
        from gatedcells.lstm import LSTMCell
        from gatedcells.params import build_params_group

        other = GRUCell(build_params_group("gru", 4, 5))
        cell = LSTMCell(build_literal_params(), context_window=StaticContextWindow(previous=other))
        cell.set_input(INPUT)

        with pytest.raises(TypeError):
            cell.forward()

    def test_wrong_params_type_raises(self):
        from gatedcells.errors import UnsupportedOperationError
        from gatedcells.lstm import LSTMCell
        from gatedcells.params import build_params_group

        with pytest.raises(UnsupportedOperationError):
            LSTMCell(build_params_group("gru", 4, 5))


class TestLSTMGradients:
    """Isolated cell gradients against central finite differences."""

    def test_isolated_gradients(self, isolated_cell_check):
        analytic, numerical = isolated_cell_check("lstm")

        for name in numerical:
            assert np.allclose(analytic[name], numerical[name], atol=1e-5), (
                f"Gradient mismatch for {name}:\n"
                f"analytic {analytic[name]}\nnumerical {numerical[name]}"
            )

    def test_isolated_gradients_elu(self, isolated_cell_check):
        from gatedcells.activations import ELU

        analytic, numerical = isolated_cell_check("lstm", activation=ELU())

        for name in numerical:
            assert np.allclose(analytic[name], numerical[name], atol=1e-5), (
                f"Gradient mismatch for {name}"
            )
