"""
Shared fixtures: numerical gradients and small sequence problems.

Gradients are checked against central finite differences:

    dL/dw ~= (L(w + eps) - L(w - eps)) / (2 * eps)
"""

import numpy as np
import pytest

from gatedcells.params import GlorotInitializer, build_params_group
from gatedcells.processor import RecurrentProcessor

EPSILON = 1e-6
GRADIENT_TOLERANCE = 1e-5


def compute_numerical_gradient(loss_fn, array: np.ndarray, epsilon: float = EPSILON) -> np.ndarray:
    """Perturb every entry of `array` in place (restoring it) and differentiate loss_fn."""
    gradient = np.zeros_like(array)

    for index in np.ndindex(array.shape):
        original = array[index]

        array[index] = original + epsilon
        loss_plus = loss_fn()

        array[index] = original - epsilon
        loss_minus = loss_fn()

        array[index] = original
        gradient[index] = (loss_plus - loss_minus) / (2 * epsilon)

    return gradient


def build_random_params(cell_type: str, input_size: int, output_size: int, seed: int = 0):
    """Glorot weights and non-zero random biases, so that every term is exercised."""
    params = build_params_group(
        cell_type, input_size, output_size, initializer=GlorotInitializer(seed=seed)
    )
    rng = np.random.default_rng(seed + 1)
    for gate in params.gates.values():
        if gate.biases is not None:
            gate.biases.values[...] = rng.normal(0.0, 0.5, size=gate.biases.shape)
    return params


class SequenceProblem:
    """
    A recurrent processor with fixed inputs, targets and initial hidden state.

    Loss: L = sum_t 0.5 * ||y_t - target_t||^2, so dL/dy_t = y_t - target_t.
    """

    def __init__(
        self,
        cell_type: str,
        input_size: int = 3,
        output_size: int = 4,
        length: int = 3,
        seed: int = 0,
        with_init_hidden: bool = True,
        activation=None,
    ):
        rng = np.random.default_rng(seed + 2)

        self.params = build_random_params(cell_type, input_size, output_size, seed=seed)
        self.processor = RecurrentProcessor(self.params, activation=activation)

        self.inputs = [rng.normal(size=input_size) for _ in range(length)]
        self.targets = [rng.normal(size=output_size) for _ in range(length)]
        self.init_hidden = rng.normal(0.0, 0.5, size=output_size) if with_init_hidden else None

    def forward(self):
        return self.processor.forward(self.inputs, init_hidden=self.init_hidden)

    def loss(self) -> float:
        outputs = self.forward()
        return sum(
            0.5 * np.sum((y - target) ** 2) for y, target in zip(outputs, self.targets)
        )

    def backward(self) -> RecurrentProcessor:
        outputs = self.forward()
        self.processor.backward([y - target for y, target in zip(outputs, self.targets)])
        return self.processor


@pytest.fixture
def numerical_gradient():
    return compute_numerical_gradient


@pytest.fixture
def random_params():
    return build_random_params


@pytest.fixture
def sequence_problem():
    return SequenceProblem


@pytest.fixture
def isolated_cell_check():
    """
    Analytic and numerical gradients of a single cell without neighbors.

    Returns a function (cell_type, activation=None) -> (analytic, numerical),
    both dictionaries 'role.kind' -> gradient, plus 'input' for the input errors.
    """

    def check(cell_type: str, activation=None, input_size: int = 3, output_size: int = 4):
        from gatedcells.cells import build_cell

        params = build_random_params(cell_type, input_size, output_size, seed=7)
        cell = build_cell(params, activation=activation)

        rng = np.random.default_rng(11)
        x = rng.normal(size=input_size)
        target = rng.normal(size=output_size)

        def loss():
            cell.set_input(x)
            y = cell.forward()
            return 0.5 * np.sum((y - target) ** 2)

        cell.set_input(x)
        y = cell.forward()
        cell.output_array.assign_errors(y - target)
        cell.backward(propagate_to_input=True)

        analytic = {
            name: values.copy()
            for name, values in cell.get_params_gradients().named_arrays().items()
        }
        analytic["input"] = cell.input_array.errors.copy()

        numerical = {
            name: compute_numerical_gradient(loss, values)
            for name, values in params.named_arrays().items()
        }
        numerical["input"] = compute_numerical_gradient(loss, x)

        return analytic, numerical

    return check
