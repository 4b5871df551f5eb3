"""
Value and Gradient Containers

Every vector a recurrent cell reads or writes lives in one of these containers:

    ValueCell:    values + optional activation + cached pre-activation
    GradientCell: a ValueCell that also carries errors and relevance buffers

The pre-activation is cached when activate() is called, so that the backward
pass can compute the activation derivative from the activated values it
already holds (see gatedcells.activations).

Buffers that are produced lazily (errors, relevance) are stored as Optional
arrays and allocated on first write. Reading one before it is written raises
UninitializedStateError instead of silently returning zeros.

Vectors are stored with shape (size,). Column (size, 1) and row (1, size)
vectors are accepted everywhere and reshaped, so gradient flow does not
depend on the orientation of the incoming arrays.

The input of a cell may also be a scipy.sparse row or column (e.g. a one-hot
or bag-of-words vector). It is kept as a (1, size) CSR row for the affine
products; gate values, errors and parameters are always dense.
"""

from typing import Optional, Union

import numpy as np
import scipy.sparse

from gatedcells.activations import ActivationFunction
from gatedcells.errors import ShapeMismatchError, UninitializedStateError

InputVector = Union[np.ndarray, scipy.sparse.csr_matrix]


def as_vector(array, size: int, what: str = "array") -> np.ndarray:
    """
    Convert an array-like to a float64 vector of shape (size,).

    Args:
        array: Array-like with `size` elements, as (size,), (size, 1) or (1, size)
        size: Expected number of elements
        what: Name used in the error message

    Returns:
        A float64 array of shape (size,), sharing memory with the input when possible

    Raises:
        ShapeMismatchError: If the number of elements or the layout is wrong
    """
    if scipy.sparse.issparse(array):
        array = array.toarray()

    vector = np.asarray(array, dtype=np.float64)

    is_vector_layout = vector.ndim == 1 or (vector.ndim == 2 and 1 in vector.shape)
    if vector.size != size or not is_vector_layout:
        raise ShapeMismatchError(what, (size,), vector.shape)

    return vector.reshape(size)


def as_input_vector(array, size: int, what: str = "input") -> InputVector:
    """
    Like as_vector(), but a scipy.sparse input stays sparse.

    Returns:
        A dense float64 vector of shape (size,), or a float64 CSR row of
        shape (1, size) with sorted, summed indices

    Raises:
        ShapeMismatchError: If the sparse matrix is not a (1, size) row or a
                            (size, 1) column
    """
    if not scipy.sparse.issparse(array):
        return as_vector(array, size, what)

    if array.shape == (size, 1):
        array = array.T

    if array.shape != (1, size):
        raise ShapeMismatchError(what, (1, size), array.shape)

    row = scipy.sparse.csr_matrix(array, dtype=np.float64)
    row.sum_duplicates()
    return row


def dense_values(x: InputVector) -> np.ndarray:
    """The values of an input vector as a dense (size,) array."""
    if scipy.sparse.issparse(x):
        return x.toarray().reshape(-1)
    return x


def affine_product(weights: np.ndarray, x: InputVector) -> np.ndarray:
    """W x for a dense or sparse input, as a dense (out,) vector."""
    if scipy.sparse.issparse(x):
        return np.asarray(x @ weights.T).reshape(-1)
    return weights @ x


def outer_product(errors: np.ndarray, x: InputVector, out: np.ndarray) -> np.ndarray:
    """
    Write errors (outer) x into out, a dense (out, in) buffer.

    With a sparse x only the columns of its non-zero entries are written, the
    others are zeroed.
    """
    if scipy.sparse.issparse(x):
        out.fill(0.0)
        out[:, x.indices] = np.outer(errors, x.data)
    else:
        out[...] = np.outer(errors, x)
    return out


class ValueCell:
    """
    A vector of values with an optional activation function.

    Attributes:
        size: Number of elements (fixed for the lifetime of the cell)
        activation: Activation applied by activate(), or None
    """

    def __init__(self, size: int, activation: Optional[ActivationFunction] = None):
        """
        Args:
            size: Number of elements of the values
            activation: Optional activation function
        """
        if size <= 0:
            raise ValueError(f"Size must be positive, got {size}")

        self.size = size
        self.activation = activation

        self._values: Optional[np.ndarray] = None
        self._pre_activation: Optional[np.ndarray] = None

    @classmethod
    def from_values(cls, values, activation: Optional[ActivationFunction] = None):
        """Build a cell already holding a copy of the given values."""
        values = np.asarray(values, dtype=np.float64)
        cell = cls(size=values.size, activation=activation)
        cell.assign_values(values)
        return cell

    @property
    def values(self) -> np.ndarray:
        """The current values (activated if activate() has been called)."""
        if self._values is None:
            raise UninitializedStateError(
                f"{type(self).__name__} of size {self.size} has no values yet"
            )
        return self._values

    @property
    def has_values(self) -> bool:
        return self._values is not None

    @property
    def pre_activation(self) -> np.ndarray:
        """
        The values before the last activate() call.

        When no activation has been applied since the last assignment, the
        values themselves are the pre-activation.
        """
        if self._pre_activation is not None:
            return self._pre_activation
        return self.values

    @property
    def has_activation(self) -> bool:
        return self.activation is not None

    def assign_values(self, values) -> np.ndarray:
        """
        Copy new values into the cell.

        The cached pre-activation is discarded: it referred to the old values.

        Raises:
            ShapeMismatchError: If values do not have `size` elements
        """
        vector = as_vector(values, self.size, "values")

        if self._values is None:
            self._values = vector.copy()
        else:
            self._values[:] = vector

        self._pre_activation = None

        return self._values

    def set_activation(self, activation: Optional[ActivationFunction]) -> None:
        self.activation = activation

    def activate(self) -> np.ndarray:
        """
        Apply the activation in place, caching the pre-activation.

        No-op when there is no activation function.
        """
        values = self.values

        if self.activation is not None:
            if self._pre_activation is None:
                self._pre_activation = values.copy()
            else:
                self._pre_activation[:] = values
            values[:] = self.activation.apply(self._pre_activation)

        return values

    def activated_values(self) -> np.ndarray:
        """Return activation(pre_activation) without modifying the cell."""
        if self.activation is None:
            return self.pre_activation.copy()
        return self.activation.apply(self.pre_activation)

    def activation_derivative(self) -> np.ndarray:
        """
        Derivative of the activation at the current point.

        Computed from the activated values (no recomputation from the
        pre-activation). All ones when there is no activation.
        """
        if self.activation is None:
            return np.ones(self.size)
        return self.activation.derivative(self.values)

    def copy(self) -> "ValueCell":
        cloned = type(self)(size=self.size, activation=self.activation)
        self._copy_state_into(cloned)
        return cloned

    def _copy_state_into(self, cloned: "ValueCell") -> None:
        if self._values is not None:
            cloned._values = self._values.copy()
        if self._pre_activation is not None:
            cloned._pre_activation = self._pre_activation.copy()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(size={self.size}, activation={self.activation!r})"


class GradientCell(ValueCell):
    """
    A ValueCell with an errors buffer and two relevance buffers.

    Attributes:
        errors: Gradient of the loss with respect to the values
        relevance: Relevance of the values (layer-wise relevance propagation)
        recurrent_relevance: Relevance of the values coming from the next state
    """

    def __init__(self, size: int, activation: Optional[ActivationFunction] = None):
        super().__init__(size=size, activation=activation)

        self._errors: Optional[np.ndarray] = None
        self._relevance: Optional[np.ndarray] = None
        self._recurrent_relevance: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def assign_values(self, values) -> np.ndarray:
        """
        Copy new values into the cell.

        Already allocated errors are zeroed: they referred to the old values.
        """
        assigned = super().assign_values(values)

        if self._errors is not None:
            self._errors.fill(0.0)

        return assigned

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    @property
    def errors(self) -> np.ndarray:
        if self._errors is None:
            raise UninitializedStateError(
                f"{type(self).__name__} of size {self.size} has no errors yet"
            )
        return self._errors

    @property
    def has_errors(self) -> bool:
        return self._errors is not None

    def assign_errors(self, errors) -> np.ndarray:
        """
        Copy errors into the buffer, allocating it on first use.

        Row and column vectors are both accepted.

        Raises:
            ShapeMismatchError: If errors do not have `size` elements
        """
        vector = as_vector(errors, self.size, "errors")

        if self._errors is None:
            self._errors = vector.copy()
        else:
            self._errors[:] = vector

        return self._errors

    def assign_zero_errors(self) -> np.ndarray:
        """Zero the errors, reusing the buffer when it already exists."""
        if self._errors is None:
            self._errors = np.zeros(self.size)
        else:
            self._errors.fill(0.0)

        return self._errors

    def assign_errors_by_product(self, *factors) -> np.ndarray:
        """Set errors = product of the given arrays, element-wise."""
        product = factors[0]
        for factor in factors[1:]:
            product = product * factor

        return self.assign_errors(product)

    def add_errors(self, errors) -> np.ndarray:
        """errors += the given array (the buffer must already exist)."""
        self.errors[:] += as_vector(errors, self.size, "errors")
        return self._errors

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    @property
    def relevance(self) -> np.ndarray:
        if self._relevance is None:
            raise UninitializedStateError(
                f"{type(self).__name__} of size {self.size} has no relevance yet"
            )
        return self._relevance

    @property
    def has_relevance(self) -> bool:
        return self._relevance is not None

    def assign_relevance(self, relevance) -> np.ndarray:
        vector = as_vector(relevance, self.size, "relevance")

        if self._relevance is None:
            self._relevance = vector.copy()
        else:
            self._relevance[:] = vector

        return self._relevance

    @property
    def recurrent_relevance(self) -> np.ndarray:
        if self._recurrent_relevance is None:
            raise UninitializedStateError(
                f"{type(self).__name__} of size {self.size} has no recurrent relevance yet"
            )
        return self._recurrent_relevance

    @property
    def has_recurrent_relevance(self) -> bool:
        return self._recurrent_relevance is not None

    def assign_recurrent_relevance(self, relevance) -> np.ndarray:
        vector = as_vector(relevance, self.size, "recurrent relevance")

        if self._recurrent_relevance is None:
            self._recurrent_relevance = vector.copy()
        else:
            self._recurrent_relevance[:] = vector

        return self._recurrent_relevance

    def _copy_state_into(self, cloned: "ValueCell") -> None:
        super()._copy_state_into(cloned)
        if self._errors is not None:
            cloned._errors = self._errors.copy()
        if self._relevance is not None:
            cloned._relevance = self._relevance.copy()
        if self._recurrent_relevance is not None:
            cloned._recurrent_relevance = self._recurrent_relevance.copy()
