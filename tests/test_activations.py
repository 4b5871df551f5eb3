"""
Tests for activation functions module.

Tests cover:
- Element-wise functions: sigmoid, relu, elu, softmax
- Derivatives expressed in terms of the activated output
- Lookup by name
"""

import numpy as np
import pytest


class TestSigmoid:
    """Test suite for the logistic sigmoid."""

    def test_sigmoid_known_values(self):
        """sigmoid(0) = 0.5 and sigmoid is symmetric around it."""
        from gatedcells.activations import sigmoid

        x = np.array([-2.0, 0.0, 2.0])
        result = sigmoid(x)

        assert np.isclose(result[1], 0.5)
        assert np.isclose(result[0] + result[2], 1.0), (
            "sigmoid(-x) + sigmoid(x) should be 1"
        )
        assert np.allclose(result, 1.0 / (1.0 + np.exp(-x)))

    def test_sigmoid_extreme_inputs(self):
        """Large inputs should saturate without overflow warnings."""
        from gatedcells.activations import sigmoid

        with np.errstate(over="raise"):
            result = sigmoid(np.array([-1000.0, 1000.0]))

        assert np.allclose(result, [0.0, 1.0])


class TestSoftmax:
    """Test suite for softmax."""

    def test_softmax_sums_to_one(self):
        from gatedcells.activations import softmax

        logits = np.random.randn(3, 7)
        probabilities = softmax(logits)

        assert np.allclose(probabilities.sum(axis=-1), 1.0)
        assert np.all(probabilities > 0)

    def test_softmax_large_logits(self):
        """Subtracting the max keeps large logits finite."""
        from gatedcells.activations import softmax

        probabilities = softmax(np.array([1000.0, 1000.0]))

        assert np.allclose(probabilities, [0.5, 0.5])


class TestReluElu:
    """Test suite for ReLU and ELU."""

    def test_relu(self):
        from gatedcells.activations import relu

        assert np.array_equal(relu(np.array([-1.0, 0.0, 2.0])), [0.0, 0.0, 2.0])

    def test_elu(self):
        from gatedcells.activations import elu

        x = np.array([-1.0, 0.0, 2.0])
        result = elu(x, alpha=0.5)

        assert np.allclose(result, [0.5 * (np.exp(-1.0) - 1.0), 0.0, 2.0])


class TestDerivatives:
    """
    Every activation expresses its derivative in terms of its output.

    derivative(apply(x)) must match the numerical derivative of apply at x.
    """

    @pytest.fixture
    def points(self):
        # Away from the ReLU/ELU kink at 0
        return np.array([-2.1, -0.7, -0.2, 0.3, 0.9, 1.8])

    def _check(self, activation, points):
        epsilon = 1e-6
        numerical = (activation.apply(points + epsilon) - activation.apply(points - epsilon)) / (
            2 * epsilon
        )
        analytical = activation.derivative(activation.apply(points))

        assert np.allclose(analytical, numerical, atol=1e-6), (
            f"{activation!r}: analytical {analytical} != numerical {numerical}"
        )

    def test_sigmoid_derivative(self, points):
        from gatedcells.activations import Sigmoid

        self._check(Sigmoid(), points)

    def test_tanh_derivative(self, points):
        from gatedcells.activations import Tanh

        self._check(Tanh(), points)

    def test_relu_derivative(self, points):
        from gatedcells.activations import ReLU

        self._check(ReLU(), points)

    def test_elu_derivative(self, points):
        from gatedcells.activations import ELU

        self._check(ELU(alpha=0.7), points)

    def test_softmax_derivative_is_jacobian_diagonal(self):
        """softmax'(x) returns y * (1 - y), the diagonal of the Jacobian."""
        from gatedcells.activations import Softmax

        activation = Softmax()
        x = np.array([0.2, -0.4, 1.1])
        y = activation.apply(x)

        epsilon = 1e-6
        diagonal = np.zeros(3)
        for i in range(3):
            x_plus, x_minus = x.copy(), x.copy()
            x_plus[i] += epsilon
            x_minus[i] -= epsilon
            diagonal[i] = (activation.apply(x_plus)[i] - activation.apply(x_minus)[i]) / (
                2 * epsilon
            )

        assert np.allclose(activation.derivative(y), diagonal, atol=1e-6)


class TestGetActivation:
    """Test suite for the lookup by name."""

    def test_known_names(self):
        from gatedcells.activations import ELU, ReLU, Sigmoid, Softmax, Tanh, get_activation

        assert isinstance(get_activation("sigmoid"), Sigmoid)
        assert isinstance(get_activation("tanh"), Tanh)
        assert isinstance(get_activation("ReLU"), ReLU)
        assert isinstance(get_activation("elu"), ELU)
        assert isinstance(get_activation("softmax"), Softmax)
        assert get_activation(None) is None

    def test_unknown_name_raises(self):
        from gatedcells.activations import get_activation
        from gatedcells.errors import UnsupportedOperationError

        with pytest.raises(UnsupportedOperationError, match="Unknown activation"):
            get_activation("swish")

    def test_equality_by_type_and_parameters(self):
        from gatedcells.activations import ELU, Tanh

        assert Tanh() == Tanh()
        assert ELU(alpha=0.5) == ELU(alpha=0.5)
        assert ELU(alpha=0.5) != ELU(alpha=1.0)
        assert Tanh() != ELU()

    def test_base_class_is_abstract(self):
        from gatedcells.activations import ActivationFunction

        with pytest.raises(TypeError):
            ActivationFunction()

        class Identity(ActivationFunction):
            def apply(self, x):
                return x

        with pytest.raises(TypeError):
            Identity()
