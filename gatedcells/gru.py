"""
Gated Recurrent Unit Cell

    r = sigmoid(W_r x + b_r + U_r y_prev)          reset gate
    p = sigmoid(W_p x + b_p + U_p y_prev)          partition (update) gate
    c = act(W_c x + b_c + U_c (r * y_prev))        candidate

    y = p * c + (1 - p) * y_prev

The reset gate scales y_prev *before* it enters the candidate recurrent term,
so r is activated before the candidate receives its recurrent contribution.
Without a previous state: r does not take part, c = act(W_c x + b_c) and
y = p * c.

Backward, given gy = dL/dy (plus the errors pushed back by the next cell):

    gc = p * gy * act'(c)
    gr = (gc^T U_c) * sigmoid'(r) * y_prev         (zeros without previous state)
    gp = (c - y_prev) * sigmoid'(p) * gy           (c * sigmoid'(p) * gy without)

Reference:
    "Learning Phrase Representations using RNN Encoder-Decoder for Statistical
    Machine Translation" (Cho et al., 2014)
"""

from typing import Dict, Optional

import numpy as np

from gatedcells.cell import RecurrentCell
from gatedcells.gate import Gate
from gatedcells.params import ParamsGroup


class GRUCell(RecurrentCell):
    """One timestep of a GRU."""

    cell_type = "gru"

    def _build_gates(self) -> Dict[str, Gate]:
        return {
            "reset_gate": self._sigmoid_gate("reset_gate"),
            "partition_gate": self._sigmoid_gate("partition_gate"),
            "candidate": self._gate("candidate", self.activation),
        }

    @property
    def reset_gate(self) -> Gate:
        return self.gates["reset_gate"]

    @property
    def partition_gate(self) -> Gate:
        return self.gates["partition_gate"]

    @property
    def candidate(self) -> Gate:
        return self.gates["candidate"]

    def _forward(self, x: np.ndarray, prev: Optional["GRUCell"]) -> np.ndarray:
        y_prev = prev.output_array.values if prev is not None else None

        self.reset_gate.forward(x, y_prev)
        self.reset_gate.activate()

        self.partition_gate.forward(x, y_prev)
        self.partition_gate.activate()

        self.candidate.forward(x)
        if prev is not None:
            self.candidate.add_recurrent_contribution(self.reset_gate.values * y_prev)
        self.candidate.activate()

        p = self.partition_gate.values
        y = p * self.candidate.values
        if prev is not None:
            y = y + (1.0 - p) * y_prev

        return self.output_array.assign_values(y)

    def _backward(self, x, prev, next_cell, params_errors: ParamsGroup) -> None:
        if next_cell is not None:
            self.output_array.add_errors(self._recurrent_output_errors(next_cell))

        gy = self.output_array.errors
        c = self.candidate.values

        self.candidate.assign_errors_by_product(
            self.partition_gate.values, gy, self.candidate.activation_derivative()
        )

        if prev is None:
            self.reset_gate.assign_zero_errors()
            self.partition_gate.assign_errors_by_product(
                c, self.partition_gate.activation_derivative(), gy
            )
            self._apply_meprop()

            for role, gate in self.gates.items():
                gate.assign_params_gradients(params_errors[role], x)
            return

        y_prev = prev.output_array.values

        self.reset_gate.assign_errors_by_product(
            self.candidate.get_recurrent_errors(),
            self.reset_gate.activation_derivative(),
            y_prev,
        )
        self.partition_gate.assign_errors_by_product(
            c - y_prev, self.partition_gate.activation_derivative(), gy
        )
        self._apply_meprop()

        self.reset_gate.assign_params_gradients(params_errors["reset_gate"], x, y_prev)
        self.partition_gate.assign_params_gradients(params_errors["partition_gate"], x, y_prev)
        self.candidate.assign_params_gradients(
            params_errors["candidate"], x, self.reset_gate.values * y_prev
        )

    def _recurrent_output_errors(self, next_cell: "GRUCell") -> np.ndarray:
        # y_prev enters the next cell through r, p, the candidate (scaled by r)
        # and the (1 - p) * y_prev term of the output
        errors = next_cell.reset_gate.get_recurrent_errors()
        errors = errors + next_cell.partition_gate.get_recurrent_errors()
        errors = errors + next_cell.candidate.get_recurrent_errors() * next_cell.reset_gate.values
        errors = errors + (1.0 - next_cell.partition_gate.values) * next_cell.output_array.errors
        return errors
