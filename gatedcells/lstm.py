"""
Long Short-Term Memory Cell

The LSTM keeps a memory (the "cell" state) separate from its output. Four
gates read the input x and the previous output y_prev:

    i = sigmoid(W_i x + b_i + U_i y_prev)       input gate
    o = sigmoid(W_o x + b_o + U_o y_prev)       output gate
    f = sigmoid(W_f x + b_f + U_f y_prev)       forget gate
    g = act(W_g x + b_g + U_g y_prev)           candidate

    c = i * g + f * c_prev                       memory (pre-activation)
    y = o * act(c)

where c_prev is the *pre-activation* memory of the previous timestep. Without
a previous state the recurrent terms and f * c_prev vanish.

Backward, given gy = dL/dy (plus the errors pushed back by the next cell):

    gc = o * act'(c) * gy (+ gc_next * f_next)
    go = act(c) * sigmoid'(o) * gy
    gi = gc * g * sigmoid'(i)
    gf = gc * c_prev * sigmoid'(f)               (zeros without previous state)
    gg = gc * i * act'(g)

Reference:
    "Long Short-Term Memory" (Hochreiter & Schmidhuber, 1997)
"""

from typing import Dict, Optional

import numpy as np

from gatedcells.arrays import GradientCell, as_vector
from gatedcells.cell import RecurrentCell
from gatedcells.gate import Gate
from gatedcells.params import ParamsGroup


class LSTMCell(RecurrentCell):
    """
    One timestep of an LSTM.

    Attributes:
        cell: GradientCell holding the memory (activated with the cell activation)
    """

    cell_type = "lstm"

    def __init__(self, params: ParamsGroup, activation=None, context_window=None):
        super().__init__(params, activation=activation, context_window=context_window)
        self.cell = GradientCell(size=params.output_size, activation=self.activation)

    def _build_gates(self) -> Dict[str, Gate]:
        return {
            "input_gate": self._sigmoid_gate("input_gate"),
            "output_gate": self._sigmoid_gate("output_gate"),
            "forget_gate": self._sigmoid_gate("forget_gate"),
            "candidate": self._gate("candidate", self.activation),
        }

    @property
    def input_gate(self) -> Gate:
        return self.gates["input_gate"]

    @property
    def output_gate(self) -> Gate:
        return self.gates["output_gate"]

    @property
    def forget_gate(self) -> Gate:
        return self.gates["forget_gate"]

    @property
    def candidate(self) -> Gate:
        return self.gates["candidate"]

    def set_initial_state(self, y, cell_state=None) -> None:
        """
        Seed a sequence with an initial output and an initial memory (zeros by default).
        """
        super().set_initial_state(y)
        if cell_state is None:
            cell_state = np.zeros(self.output_size)
        self.cell.assign_values(as_vector(cell_state, self.output_size, "initial cell state"))

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def _forward(self, x: np.ndarray, prev: Optional["LSTMCell"]) -> np.ndarray:
        y_prev = prev.output_array.values if prev is not None else None

        for gate in self.gates.values():
            gate.forward(x, y_prev)
            gate.activate()

        memory = self.input_gate.values * self.candidate.values
        if prev is not None:
            memory = memory + self.forget_gate.values * prev.cell.pre_activation

        self.cell.assign_values(memory)
        self.cell.activate()

        return self.output_array.assign_values(self.output_gate.values * self.cell.values)

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def _backward(self, x, prev, next_cell, params_errors: ParamsGroup) -> None:
        if next_cell is not None:
            self.output_array.add_errors(self._recurrent_output_errors(next_cell))

        gy = self.output_array.errors

        self._assign_cell_errors(gy, next_cell)
        self._assign_gates_errors(gy, prev)
        self._apply_meprop()

        y_prev = prev.output_array.values if prev is not None else None
        for role, gate in self.gates.items():
            gate.assign_params_gradients(params_errors[role], x, y_prev)

    def _assign_cell_errors(self, gy: np.ndarray, next_cell: Optional["LSTMCell"]) -> None:
        self.cell.assign_errors_by_product(
            self.output_gate.values, self.cell.activation_derivative(), gy
        )

        if next_cell is not None:
            self.cell.add_errors(next_cell.cell.errors * next_cell.forget_gate.values)

    def _assign_gates_errors(self, gy: np.ndarray, prev: Optional["LSTMCell"]) -> None:
        gc = self.cell.errors

        self.output_gate.assign_errors_by_product(
            self.cell.values, self.output_gate.activation_derivative(), gy
        )
        self.input_gate.assign_errors_by_product(
            gc, self.candidate.values, self.input_gate.activation_derivative()
        )

        if prev is not None:
            self.forget_gate.assign_errors_by_product(
                gc, prev.cell.pre_activation, self.forget_gate.activation_derivative()
            )
        else:
            self.forget_gate.assign_zero_errors()

        self.candidate.assign_errors_by_product(
            gc, self.input_gate.values, self.candidate.activation_derivative()
        )

    def _recurrent_output_errors(self, next_cell: "LSTMCell") -> np.ndarray:
        errors = np.zeros(self.output_size)
        for gate in next_cell.gates.values():
            errors += gate.get_recurrent_errors()
        return errors
