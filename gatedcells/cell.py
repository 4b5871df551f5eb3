"""
Recurrent Cell Interface

A recurrent cell is one timestep of a recurrent unit. It composes some gates
and one output array into a state-update equation:

    y_t = f(x_t, y_{t-1})

and the exact analytic gradient of that equation (back-propagation through
time). Every variant (LSTM, GRU, RAN, CFN) implements the same capability set:

    set_input(x)        bind the input of this timestep
    forward()           compute the output, reading the previous cell's output
    backward(...)       compute gate errors and parameter gradients, reading
                        the output errors and the next cell's errors
    get_params_gradients()

The neighbors are never owned: they are resolved through a context window
(see gatedcells.context). Forward information flows strictly t-1 -> t,
backward information strictly t+1 -> t.

Classes:
    RecurrentCell: Abstract base class of the cell variants
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

import numpy as np
import scipy.sparse

from gatedcells.activations import ActivationFunction, Sigmoid, Tanh
from gatedcells.arrays import GradientCell, InputVector, as_input_vector, as_vector, dense_values
from gatedcells.context import EmptyContextWindow
from gatedcells.errors import (
    ShapeMismatchError,
    UninitializedStateError,
    UnsupportedOperationError,
)
from gatedcells.gate import Gate
from gatedcells.params import ParamsGroup


class RecurrentCell(ABC):
    """
    Abstract base class of the recurrent cell variants.

    Subclasses declare their `cell_type` and build their gates in
    _build_gates(). Parameters are shared by reference and only read.

    Attributes:
        params: The shared ParamsGroup of the cell type
        activation: The cell activation (candidate and/or output, per variant)
        context_window: Resolves the previous and next cells
        input_array: GradientCell holding the input (None until set_input())
        output_array: GradientCell holding the output
        gates: Ordered mapping role -> Gate
    """

    cell_type: str = ""

    def __init__(
        self,
        params: ParamsGroup,
        activation: Optional[ActivationFunction] = None,
        context_window=None,
    ):
        """
        Args:
            params: Parameters of this cell type (shared by every timestep)
            activation: Cell activation, tanh when None
            context_window: Neighbors lookup, an EmptyContextWindow when None
        """
        if params.cell_type != self.cell_type:
            raise UnsupportedOperationError(
                f"{type(self).__name__} cannot use '{params.cell_type}' parameters"
            )

        self.params = params
        self.activation = activation if activation is not None else Tanh()
        self.context_window = (
            context_window if context_window is not None else EmptyContextWindow()
        )

        self.input_array: Optional[GradientCell] = None
        self.output_array = GradientCell(
            size=params.output_size, activation=self._output_activation()
        )
        self.gates: Dict[str, Gate] = self._build_gates()

        self._sparse_input = None
        self._params_gradients: Optional[ParamsGroup] = None
        self._has_gradients = False
        self._meprop_k: Optional[float] = None

    @abstractmethod
    def _build_gates(self) -> Dict[str, Gate]:
        """Build the gates of this variant, in the order of the params roles."""

    def _output_activation(self) -> Optional[ActivationFunction]:
        """Activation of the output array. None: the output is not activated."""
        return None

    def _gate(self, role: str, activation: Optional[ActivationFunction]) -> Gate:
        return Gate(self.params[role], activation=activation)

    def _sigmoid_gate(self, role: str) -> Gate:
        return self._gate(role, Sigmoid())

    @property
    def input_size(self) -> int:
        return self.params.input_size

    @property
    def output_size(self) -> int:
        return self.params.output_size

    # ------------------------------------------------------------------
    # Neighbors
    # ------------------------------------------------------------------

    def _check_neighbor(self, cell):
        if cell is not None and type(cell) is not type(self):
            raise TypeError(
                f"{type(self).__name__} cannot be linked to a {type(cell).__name__}"
            )
        return cell

    def previous_cell(self) -> Optional["RecurrentCell"]:
        """The cell of the previous timestep, or None."""
        return self._check_neighbor(self.context_window.previous())

    def next_cell(self) -> Optional["RecurrentCell"]:
        """The cell of the next timestep, or None."""
        return self._check_neighbor(self.context_window.next())

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def set_input(self, x) -> None:
        """
        Bind the input of this timestep (copied).

        x may be dense or a scipy.sparse row or column. A sparse input is kept
        sparse for the gate products; input_array holds its dense values.

        Raises:
            ShapeMismatchError: If x does not have input_size elements
        """
        x = as_input_vector(x, self.input_size, "cell input")

        if scipy.sparse.issparse(x):
            self._sparse_input = x.copy()
        else:
            self._sparse_input = None

        if self.input_array is None:
            self.input_array = GradientCell.from_values(dense_values(x))
        else:
            self.input_array.assign_values(dense_values(x))

        self._has_gradients = False

    @property
    def input_is_sparse(self) -> bool:
        return self._sparse_input is not None

    def _input_values(self) -> InputVector:
        if self.input_array is None:
            raise UninitializedStateError("set_input() must be called before forward()")
        if self._sparse_input is not None:
            return self._sparse_input
        return self.input_array.values

    def forward(self) -> np.ndarray:
        """
        Compute the output of this timestep.

        Returns:
            The output values
        """
        self._has_gradients = False
        return self._forward(self._input_values(), self.previous_cell())

    @abstractmethod
    def _forward(self, x: np.ndarray, prev: Optional["RecurrentCell"]) -> np.ndarray:
        pass

    def set_initial_state(self, y) -> None:
        """
        Make this cell hold a given output, as the seed of a sequence.

        The values are not activated: the next cell reads them as they are.
        """
        self.output_array.assign_values(as_vector(y, self.output_size, "initial hidden"))

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def backward(
        self,
        params_errors: Optional[ParamsGroup] = None,
        propagate_to_input: bool = False,
        meprop_k: Optional[float] = None,
    ) -> ParamsGroup:
        """
        Back-propagate the errors of the output.

        The output errors must be assigned beforehand. If a next cell exists,
        its errors must already be computed (backward runs from the last
        timestep to the first).

        Args:
            params_errors: Buffer receiving the parameters gradients, with the
                           structure of params. A private buffer when None.
            propagate_to_input: Whether to compute input_array.errors
            meprop_k: Fraction in (0, 1] of the errors of each gate that is
                      propagated (meProp). None propagates all of them. The
                      next cell must have been back-propagated with the same k.

        Returns:
            The parameters gradients of this timestep
        """
        if not self.output_array.has_errors:
            raise UninitializedStateError(
                "The output errors must be assigned before backward()"
            )
        if meprop_k is not None and not 0.0 < meprop_k <= 1.0:
            raise ValueError(f"meProp k must be in (0, 1], got {meprop_k}")

        if params_errors is None:
            if self._params_gradients is None:
                self._params_gradients = self.params.zeros_like()
            params_errors = self._params_gradients
        else:
            self._check_params_errors(params_errors)
            self._params_gradients = params_errors

        x = self._input_values()
        prev = self.previous_cell()
        next_cell = self.next_cell()

        self._meprop_k = meprop_k
        for gate in self.gates.values():
            gate.meprop_mask = None

        self._backward(x, prev, next_cell, params_errors)
        self._has_gradients = True

        if propagate_to_input:
            self.input_array.assign_errors(self._input_errors())

        return params_errors

    def _check_params_errors(self, params_errors: ParamsGroup) -> None:
        if params_errors.roles != self.params.roles:
            raise ShapeMismatchError(
                "params errors roles", self.params.roles, params_errors.roles
            )
        for mine, theirs in zip(self.params, params_errors):
            if mine.shape != theirs.shape:
                raise ShapeMismatchError("params errors", mine.shape, theirs.shape)

    @abstractmethod
    def _backward(self, x, prev, next_cell, params_errors: ParamsGroup) -> None:
        pass

    def _apply_meprop(self) -> None:
        """
        Set the meProp mask of every gate, from its current errors.

        Called by the variants once all the gate errors are assigned and
        before the parameters gradients.
        """
        if self._meprop_k is None:
            return
        for gate in self.gates.values():
            gate.meprop_mask = gate.get_meprop_mask(self._meprop_k)

    def _input_errors(self) -> np.ndarray:
        """sum over the gates of errors^T W."""
        errors = np.zeros(self.input_size)
        for gate in self.gates.values():
            errors += gate.get_input_errors()
        return errors

    def get_params_gradients(self) -> ParamsGroup:
        """
        The parameters gradients computed by the last backward().

        Raises:
            UninitializedStateError: If backward() has not been called since
                                     the last forward()
        """
        if not self._has_gradients:
            raise UninitializedStateError("backward() has not been called yet")
        return self._params_gradients

    @abstractmethod
    def _recurrent_output_errors(self, next_cell: "RecurrentCell") -> np.ndarray:
        """The errors that the next cell pushes back onto this cell's output."""

    def initial_hidden_errors(self) -> np.ndarray:
        """
        The errors of this cell's output due to the next cell only.

        This is the gradient of the initial hidden state when this cell is the
        seed of a sequence.

        Raises:
            UnsupportedOperationError: If there is no next cell
        """
        next_cell = self.next_cell()
        if next_cell is None:
            raise UnsupportedOperationError(
                "The initial hidden errors are defined only when a next state exists"
            )
        return self._recurrent_output_errors(next_cell)

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    def forward_with_contributions(self) -> np.ndarray:
        raise UnsupportedOperationError(
            f"Relevance propagation is not available for {type(self).__name__}"
        )

    def propagate_relevance(self) -> np.ndarray:
        raise UnsupportedOperationError(
            f"Relevance propagation is not available for {type(self).__name__}"
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.input_size} -> {self.output_size}, "
            f"activation={self.activation!r})"
        )
