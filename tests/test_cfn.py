"""
Tests for the CFN cell.

Tests cover:
- Forward: y = i * c + f * act(y_prev), with act(y_prev) retained
- Candidate without bias and without recurrence
- Gradients of an isolated cell against finite differences
"""

import numpy as np

from gatedcells.activations import sigmoid


class TestCFNForward:
    """Test suite for the CFN forward pass."""

    def test_forward_with_previous_state(self, random_params):
        from gatedcells.cfn import CFNCell
        from gatedcells.context import StaticContextWindow

        params = random_params("cfn", 3, 4, seed=2)
        first = CFNCell(params)
        second = CFNCell(params, context_window=StaticContextWindow(previous=first))

        first.set_input(np.array([0.5, -0.5, 1.0]))
        y_prev = first.forward().copy()
        x = np.array([-0.2, 0.8, 0.3])
        second.set_input(x)
        y = second.forward()

        def gate(role):
            gate_params = params[role]
            return sigmoid(
                gate_params.weights.values @ x
                + gate_params.biases.values
                + gate_params.recurrent_weights.values @ y_prev
            )

        c = np.tanh(params.candidate.weights.values @ x)
        expected = gate("input_gate") * c + gate("forget_gate") * np.tanh(y_prev)

        assert np.allclose(y, expected)
        assert np.allclose(second.activated_prev_output, np.tanh(y_prev))

    def test_no_activated_previous_output_without_previous_state(self, random_params):
        from gatedcells.cfn import CFNCell

        cell = CFNCell(random_params("cfn", 3, 4))
        cell.set_input(np.ones(3))
        cell.forward()

        assert cell.activated_prev_output is None

    def test_zero_state_equivalence(self, random_params):
        """tanh(0) == 0: a zero previous output is the same as no previous state."""
        from gatedcells.cfn import CFNCell
        from gatedcells.context import StaticContextWindow

        params = random_params("cfn", 3, 4)
        x = np.array([0.3, -0.3, 0.6])

        isolated = CFNCell(params)
        isolated.set_input(x)

        seed = CFNCell(params)
        seed.set_initial_state(np.zeros(4))
        seeded = CFNCell(params, context_window=StaticContextWindow(previous=seed))
        seeded.set_input(x)

        assert np.allclose(isolated.forward(), seeded.forward(), atol=1e-12)


class TestCFNBackward:
    """Test suite for the CFN backward pass."""

    def test_candidate_gradients_have_weights_only(self, random_params):
        from gatedcells.cfn import CFNCell

        cell = CFNCell(random_params("cfn", 3, 4))
        x = np.array([0.1, 0.2, 0.3])
        cell.set_input(x)
        cell.forward()
        cell.output_array.assign_errors(np.ones(4))

        gradients = cell.backward()

        assert gradients.candidate.biases is None
        assert gradients.candidate.recurrent_weights is None
        assert np.allclose(gradients.candidate.weights.values, np.outer(cell.candidate.errors, x))

    def test_isolated_gradients(self, isolated_cell_check):
        analytic, numerical = isolated_cell_check("cfn")

        for name in numerical:
            assert np.allclose(analytic[name], numerical[name], atol=1e-5), (
                f"Gradient mismatch for {name}:\n"
                f"analytic {analytic[name]}\nnumerical {numerical[name]}"
            )
