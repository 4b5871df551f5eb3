"""
Chaos-Free Network Cell

    i = sigmoid(W_i x + b_i + U_i y_prev)       input gate
    f = sigmoid(W_f x + b_f + U_f y_prev)       forget gate
    c = act(W_c x)                              candidate (no bias, no recurrence)

    y = i * c + f * act(y_prev)

The previous output is re-activated, not looked up: the CFN treats it as a
not-yet-activated state. act(y_prev) is kept in `activated_prev_output` for
the backward pass.

Backward, given gy = dL/dy (plus the errors pushed back by the next cell):

    gi = c * sigmoid'(i) * gy
    gc = i * gy * act'(c)
    gf = act(y_prev) * sigmoid'(f) * gy         (zeros without previous state)

Reference:
    "A Recurrent Neural Network Without Chaos" (Laurent & von Brecht, 2016)
"""

from typing import Dict, Optional

import numpy as np

from gatedcells.cell import RecurrentCell
from gatedcells.gate import Gate
from gatedcells.params import ParamsGroup


class CFNCell(RecurrentCell):
    """
    One timestep of a CFN.

    Attributes:
        activated_prev_output: act(y_prev) of the last forward, None without
                               previous state
    """

    cell_type = "cfn"

    def __init__(self, params: ParamsGroup, activation=None, context_window=None):
        super().__init__(params, activation=activation, context_window=context_window)
        self.activated_prev_output: Optional[np.ndarray] = None

    def _build_gates(self) -> Dict[str, Gate]:
        return {
            "input_gate": self._sigmoid_gate("input_gate"),
            "forget_gate": self._sigmoid_gate("forget_gate"),
            "candidate": self._gate("candidate", self.activation),
        }

    @property
    def input_gate(self) -> Gate:
        return self.gates["input_gate"]

    @property
    def forget_gate(self) -> Gate:
        return self.gates["forget_gate"]

    @property
    def candidate(self) -> Gate:
        return self.gates["candidate"]

    def _forward(self, x: np.ndarray, prev: Optional["CFNCell"]) -> np.ndarray:
        y_prev = prev.output_array.values if prev is not None else None

        self.input_gate.forward(x, y_prev)
        self.input_gate.activate()

        self.forget_gate.forward(x, y_prev)
        self.forget_gate.activate()

        self.candidate.forward(x)
        self.candidate.activate()

        y = self.input_gate.values * self.candidate.values

        if prev is not None:
            self.activated_prev_output = self.activation.apply(y_prev)
            y = y + self.forget_gate.values * self.activated_prev_output
        else:
            self.activated_prev_output = None

        return self.output_array.assign_values(y)

    def _backward(self, x, prev, next_cell, params_errors: ParamsGroup) -> None:
        if next_cell is not None:
            self.output_array.add_errors(self._recurrent_output_errors(next_cell))

        gy = self.output_array.errors

        self.input_gate.assign_errors_by_product(
            self.candidate.values, self.input_gate.activation_derivative(), gy
        )
        self.candidate.assign_errors_by_product(
            self.input_gate.values, gy, self.candidate.activation_derivative()
        )

        if prev is not None:
            self.forget_gate.assign_errors_by_product(
                self.activated_prev_output, self.forget_gate.activation_derivative(), gy
            )
        else:
            self.forget_gate.assign_zero_errors()

        self._apply_meprop()
        y_prev = prev.output_array.values if prev is not None else None

        self.input_gate.assign_params_gradients(params_errors["input_gate"], x, y_prev)
        self.forget_gate.assign_params_gradients(params_errors["forget_gate"], x, y_prev)
        self.candidate.assign_params_gradients(params_errors["candidate"], x)

    def _recurrent_output_errors(self, next_cell: "CFNCell") -> np.ndarray:
        a_prev = next_cell.activated_prev_output
        errors = (
            next_cell.forget_gate.values
            * self.activation.derivative(a_prev)
            * next_cell.output_array.errors
        )
        errors = errors + next_cell.input_gate.get_recurrent_errors()
        errors = errors + next_cell.forget_gate.get_recurrent_errors()
        return errors
