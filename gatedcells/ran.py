"""
Recurrent Additive Network Cell

The RAN drops the non-linearity from the recurrence: the candidate is a plain
affine content layer and the state is a gated sum of the candidate and of the
previous state.

    i = sigmoid(W_i x + b_i + U_i h_prev)       input gate
    f = sigmoid(W_f x + b_f + U_f h_prev)       forget gate
    c = W_c x + b_c                             candidate (no activation)

    h = i * c + f * h_prev                      (pre-activation of the output)
    y = act(h)

The recurrence reads the *pre-activation* h_prev of the previous output, so
after backward() the output errors are the errors of h, not of y.

Backward, given gy = dL/dy:

    gh = act'(h) * gy (+ the errors pushed back by the next cell)
    gi = c * sigmoid'(i) * gh
    gc = i * gh
    gf = h_prev * sigmoid'(f) * gh              (zeros without previous state)

The activation derivative is applied before the next-cell contribution is
added: that contribution is already an error of h.

The RAN also supports layer-wise relevance propagation (epsilon rule, see
gatedcells.relevance).

Reference:
    "Recurrent Additive Networks" (Lee, Levy & Zettlemoyer, 2017)
"""

from typing import Dict, Optional

import numpy as np

from gatedcells.activations import ActivationFunction
from gatedcells.cell import RecurrentCell
from gatedcells.errors import UninitializedStateError
from gatedcells.gate import Gate
from gatedcells.params import ParamsGroup
from gatedcells.relevance import relevance_partition_input, relevance_partition_recurrent


class RANCell(RecurrentCell):
    """
    One timestep of a RAN.

    Attributes:
        recurrent_output_part: f * h_prev saved by forward_with_contributions(),
                               None without previous state
    """

    cell_type = "ran"

    def __init__(self, params: ParamsGroup, activation=None, context_window=None):
        super().__init__(params, activation=activation, context_window=context_window)
        self.recurrent_output_part: Optional[np.ndarray] = None
        self._has_contributions = False

    def _build_gates(self) -> Dict[str, Gate]:
        return {
            "input_gate": self._sigmoid_gate("input_gate"),
            "forget_gate": self._sigmoid_gate("forget_gate"),
            "candidate": self._gate("candidate", None),
        }

    def _output_activation(self) -> Optional[ActivationFunction]:
        return self.activation

    @property
    def input_gate(self) -> Gate:
        return self.gates["input_gate"]

    @property
    def forget_gate(self) -> Gate:
        return self.gates["forget_gate"]

    @property
    def candidate(self) -> Gate:
        return self.gates["candidate"]

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def _forward(self, x: np.ndarray, prev: Optional["RANCell"]) -> np.ndarray:
        self._has_contributions = False
        h_prev = prev.output_array.pre_activation if prev is not None else None

        self.input_gate.forward(x, h_prev)
        self.input_gate.activate()

        self.forget_gate.forward(x, h_prev)
        self.forget_gate.activate()

        self.candidate.forward(x)

        h = self.input_gate.values * self.candidate.values
        if prev is not None:
            h = h + self.forget_gate.values * h_prev

        self.output_array.assign_values(h)
        return self.output_array.activate()

    def forward_with_contributions(self) -> np.ndarray:
        """
        Forward saving the contributions of every input, for relevance propagation.

        With a previous state, the biases of the gates are split in halves
        between the input and the recurrent part.
        """
        x = self._input_values()
        prev = self.previous_cell()
        self._has_gradients = False

        bias_factor = 0.5 if prev is not None else 1.0
        h_prev = prev.output_array.pre_activation if prev is not None else None

        for gate in (self.input_gate, self.forget_gate):
            gate.forward_with_contributions(x, bias_factor=bias_factor)
            if prev is not None:
                gate.add_recurrent_contribution_with_contributions(h_prev, bias_factor=0.5)
            gate.activate()

        self.candidate.forward_with_contributions(x)

        h = self.input_gate.values * self.candidate.values
        if prev is not None:
            self.recurrent_output_part = self.forget_gate.values * h_prev
            h = h + self.recurrent_output_part
        else:
            self.recurrent_output_part = None

        self.output_array.assign_values(h)
        self._has_contributions = True

        return self.output_array.activate()

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def _backward(self, x, prev, next_cell, params_errors: ParamsGroup) -> None:
        self.output_array.assign_errors_by_product(
            self.output_array.errors, self.output_array.activation_derivative()
        )
        if next_cell is not None:
            self.output_array.add_errors(self._recurrent_output_errors(next_cell))

        gh = self.output_array.errors
        h_prev = prev.output_array.pre_activation if prev is not None else None

        self.input_gate.assign_errors_by_product(
            self.candidate.values, self.input_gate.activation_derivative(), gh
        )
        self.candidate.assign_errors_by_product(self.input_gate.values, gh)

        if prev is not None:
            self.forget_gate.assign_errors_by_product(
                h_prev, self.forget_gate.activation_derivative(), gh
            )
        else:
            self.forget_gate.assign_zero_errors()

        self._apply_meprop()
        self.input_gate.assign_params_gradients(params_errors["input_gate"], x, h_prev)
        self.forget_gate.assign_params_gradients(params_errors["forget_gate"], x, h_prev)
        self.candidate.assign_params_gradients(params_errors["candidate"], x)

    def _recurrent_output_errors(self, next_cell: "RANCell") -> np.ndarray:
        errors = next_cell.forget_gate.values * next_cell.output_array.errors
        errors = errors + next_cell.input_gate.get_recurrent_errors()
        errors = errors + next_cell.forget_gate.get_recurrent_errors()
        return errors

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    def _relevance_partitions(self, prev_state_exists: bool):
        """
        Split the output relevance between the input part (i * c) and the
        recurrent part (f * h_prev) of h.
        """
        relevance = self.output_array.relevance

        if not prev_state_exists:
            return relevance, None

        h = self.output_array.pre_activation
        h_recurrent = self.recurrent_output_part
        h_input = h - h_recurrent

        input_relevance = relevance_partition_input(
            y_relevance=relevance, y=h, y_input=h_input, y_recurrent=h_recurrent
        )
        recurrent_relevance = relevance_partition_recurrent(
            y_relevance=relevance, y=h, y_recurrent=h_recurrent
        )

        return input_relevance, recurrent_relevance

    def propagate_relevance(self) -> np.ndarray:
        """
        Propagate the relevance of the output to the gates, the input and the
        previous output.

        The output relevance must be assigned beforehand. The relevance owed
        to the previous state is written into the recurrent_relevance of the
        previous output array.

        Returns:
            The relevance of the input
        """
        if not self._has_contributions:
            raise UninitializedStateError(
                "forward_with_contributions() must be called before propagate_relevance()"
            )

        x = self._input_values()
        prev = self.previous_cell()
        prev_state_exists = prev is not None

        input_partition, recurrent_partition = self._relevance_partitions(prev_state_exists)

        half_input_partition = input_partition / 2.0
        self.candidate.assign_relevance(half_input_partition)
        self.input_gate.assign_relevance(half_input_partition)

        if prev_state_exists:
            half_recurrent_partition = recurrent_partition / 2.0
            self.forget_gate.assign_relevance(half_recurrent_partition)

        input_relevance = self.input_gate.get_input_relevance(x, prev_state_exists)
        input_relevance = input_relevance + self.candidate.get_input_relevance(x, False)

        if prev_state_exists:
            input_relevance = input_relevance + self.forget_gate.get_input_relevance(x, True)

            h_prev = prev.output_array.pre_activation
            prev.output_array.assign_recurrent_relevance(
                half_recurrent_partition
                + self.input_gate.get_recurrent_relevance(h_prev)
                + self.forget_gate.get_recurrent_relevance(h_prev)
            )

        return self.input_array.assign_relevance(input_relevance)
