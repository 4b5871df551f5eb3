"""
Activation Functions for Recurrent Cells

This module implements the activation functions used by the gates and the
outputs of recurrent cells. Each function provides both the forward mapping
and its derivative.

All implementations are in pure NumPy.

Derivatives are expressed in terms of the *activated* output, not of the
pre-activation. Every supported function has this property:

    sigmoid'(x) = y * (1 - y)
    tanh'(x)    = 1 - y^2
    relu'(x)    = 1 if y > 0 else 0
    elu'(x)     = 1 if y > 0 else y + alpha
    softmax'(x) = y * (1 - y)        (diagonal of the Jacobian)

so a cell that already holds its activated values never has to recompute
the function from the pre-activation during the backward pass.

Functions:
    sigmoid: Logistic function
    softmax: Converts logits to probability distribution
    relu: Rectified Linear Unit
    elu: Exponential Linear Unit
    get_activation: Build an activation function by name

Classes:
    ActivationFunction: Base class (apply + derivative)
    Sigmoid, Tanh, ReLU, ELU, Softmax: Concrete activation functions
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from gatedcells.errors import UnsupportedOperationError


def sigmoid(x: np.ndarray) -> np.ndarray:
    """
    Compute the logistic sigmoid.

    Mathematical Formula:
        sigmoid(x) = 1 / (1 + exp(-x))

    Numerical Stability:
        The identity sigmoid(x) = 0.5 * (1 + tanh(x / 2)) never overflows,
        while exp(-x) does for large negative x.

    Args:
        x: Input array of any shape.

    Returns:
        Array of the same shape with values in (0, 1).
    """
    return 0.5 * (1.0 + np.tanh(0.5 * x))


def softmax(logits: np.ndarray, axis: int = -1) -> np.ndarray:
    """
    Compute softmax activation function.

    Converts a vector of arbitrary real values (logits) into a probability
    distribution where all values are positive and sum to 1.

    Mathematical Formula:
        softmax(x)_i = exp(x_i) / sum_j(exp(x_j))

    Numerical Stability:
        We subtract max(x) from all values before exponentiation to prevent
        overflow. This doesn't change the result because:
        exp(x_i - max) / sum(exp(x_j - max)) = exp(x_i) / sum(exp(x_j))

    Args:
        logits: Input array of any shape.
        axis: The axis along which to compute softmax. Default is -1.

    Returns:
        probabilities: Array of same shape as input, summing to 1 along axis.
    """
    max_logit = np.max(logits, axis=axis, keepdims=True)
    exponentials = np.exp(logits - max_logit)
    return exponentials / np.sum(exponentials, axis=axis, keepdims=True)


def relu(x: np.ndarray) -> np.ndarray:
    """ReLU(x) = max(0, x)."""
    return np.maximum(0.0, x)


def elu(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    """
    Compute ELU (Exponential Linear Unit) activation.

    Mathematical Formula:
        ELU(x) = x                      if x > 0
        ELU(x) = alpha * (exp(x) - 1)   otherwise

    Args:
        x: Input array of any shape.
        alpha: Saturation value for negative inputs.

    Returns:
        Output array of same shape with ELU applied element-wise.
    """
    # np.minimum keeps exp() from overflowing on the branch that is discarded
    return np.where(x > 0, x, alpha * (np.exp(np.minimum(x, 0.0)) - 1.0))


class ActivationFunction(ABC):
    """
    Base class of the activation functions.

    Subclasses implement apply() and derivative(). The derivative receives the
    already-activated values, which all the supported functions can use to
    express their gradient.
    """

    name = ""

    @abstractmethod
    def apply(self, x: np.ndarray) -> np.ndarray:
        """Map pre-activation values to activated values."""

    @abstractmethod
    def derivative(self, activated: np.ndarray) -> np.ndarray:
        """Return d(activation)/d(pre-activation) given the activated values."""

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return self.apply(x)

    def __eq__(self, other) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self) -> int:
        return hash((type(self), tuple(sorted(vars(self).items()))))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Sigmoid(ActivationFunction):
    """Logistic sigmoid, used by every gate."""

    name = "sigmoid"

    def apply(self, x: np.ndarray) -> np.ndarray:
        return sigmoid(x)

    def derivative(self, activated: np.ndarray) -> np.ndarray:
        return activated * (1.0 - activated)


class Tanh(ActivationFunction):
    """Hyperbolic tangent, the usual candidate and cell activation."""

    name = "tanh"

    def apply(self, x: np.ndarray) -> np.ndarray:
        return np.tanh(x)

    def derivative(self, activated: np.ndarray) -> np.ndarray:
        return 1.0 - activated * activated


class ReLU(ActivationFunction):
    """
    Rectified Linear Unit.

    At x=0 the derivative is undefined; 0 is used as subgradient. Since
    relu(x) > 0 iff x > 0, the activated output is enough to build the mask.
    """

    name = "relu"

    def apply(self, x: np.ndarray) -> np.ndarray:
        return relu(x)

    def derivative(self, activated: np.ndarray) -> np.ndarray:
        return (activated > 0).astype(np.float64)


class ELU(ActivationFunction):
    """
    Exponential Linear Unit.

    For x <= 0: y = alpha * (exp(x) - 1), hence dy/dx = alpha * exp(x) = y + alpha.
    """

    name = "elu"

    def __init__(self, alpha: float = 1.0):
        self.alpha = alpha

    def apply(self, x: np.ndarray) -> np.ndarray:
        return elu(x, self.alpha)

    def derivative(self, activated: np.ndarray) -> np.ndarray:
        return np.where(activated > 0, 1.0, activated + self.alpha)

    def __repr__(self) -> str:
        return f"ELU(alpha={self.alpha})"


class Softmax(ActivationFunction):
    """
    Softmax over the whole vector.

    The full Jacobian is y_i * (delta_ij - y_j). Like the other functions,
    only its diagonal y * (1 - y) is returned, so that it can be applied
    element-wise to the errors.
    """

    name = "softmax"

    def apply(self, x: np.ndarray) -> np.ndarray:
        return softmax(x)

    def derivative(self, activated: np.ndarray) -> np.ndarray:
        return activated * (1.0 - activated)


_ACTIVATIONS = {
    "sigmoid": Sigmoid,
    "tanh": Tanh,
    "relu": ReLU,
    "elu": ELU,
    "softmax": Softmax,
}


def get_activation(name: Optional[str]) -> Optional[ActivationFunction]:
    """
    Build an activation function by name.

    Args:
        name: One of 'sigmoid', 'tanh', 'relu', 'elu', 'softmax', or None

    Returns:
        A new ActivationFunction instance, or None when name is None

    Raises:
        UnsupportedOperationError: If the name is unknown
    """
    if name is None:
        return None

    try:
        return _ACTIVATIONS[name.lower()]()
    except KeyError:
        raise UnsupportedOperationError(
            f"Unknown activation '{name}'. Available: {sorted(_ACTIVATIONS)}"
        ) from None
