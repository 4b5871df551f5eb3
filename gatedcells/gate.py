"""
Gate: the Affine Unit of a Recurrent Cell

A gate is a GradientCell whose values are computed by an affine transform of
the cell input, optionally plus a recurrent transform of the previous output:

    z = W x + b (+ W_rec y_prev)

The gate does NOT activate itself: the owning cell decides when to call
activate(), because some cells must add a recurrent term between the affine
step and the activation (e.g. the GRU candidate only receives W_rec (r * y_prev)
once the reset gate r is known).

Backward (given the gate errors g = dL/dz):
    dL/dW     = g (outer) x
    dL/db     = g
    dL/dW_rec = g (outer) y_prev
    dL/dx     = g^T W
    dL/dy_prev = g^T W_rec

With meProp (sparsified back-propagation), only the k fraction of g with the
largest absolute values flows into the parameters, the input and y_prev. The
gate errors themselves are left untouched.

Parameters are shared by all the timesteps: a gate only holds a reference to
its GateParams and never modifies them.
"""

from typing import Optional

import numpy as np

from gatedcells.activations import ActivationFunction
from gatedcells.arrays import (
    GradientCell,
    InputVector,
    affine_product,
    as_input_vector,
    as_vector,
    dense_values,
    outer_product,
)
from gatedcells.errors import ShapeMismatchError, UninitializedStateError
from gatedcells.params import GateParams
from gatedcells.relevance import (
    relevance_of_array,
    relevance_partition_input,
    relevance_partition_recurrent,
)


class GateContributions:
    """
    Contributions saved by a contribution-aware forward, for relevance propagation.

    Attributes:
        input_contributions: (out, in) matrix, contribution of x_i to z_j
        recurrent_contributions: (out, out) matrix, contribution of y_prev_i to z_j
        recurrent_values: the recurrent part of z (row sums of recurrent_contributions)
    """

    def __init__(self):
        self.input_contributions: Optional[np.ndarray] = None
        self.recurrent_contributions: Optional[np.ndarray] = None
        self.recurrent_values: Optional[np.ndarray] = None

    @property
    def has_recurrent(self) -> bool:
        return self.recurrent_values is not None


def affine_contributions(
    x: np.ndarray, weights: np.ndarray, biases: Optional[np.ndarray]
) -> np.ndarray:
    """
    Contribution matrix of W x + b: c_ji = w_ji * x_i + b_j / n.

    The bias is spread evenly over the n inputs, so that the row sums equal
    the affine output.
    """
    contributions = weights * x[np.newaxis, :]
    if biases is not None:
        contributions = contributions + (biases / x.size)[:, np.newaxis]
    return contributions


class Gate(GradientCell):
    """
    Affine unit bound to shared gate parameters.

    Attributes:
        params: The shared GateParams
        contributions: Contributions of the last contribution-aware forward, or None
        meprop_mask: Boolean mask of the errors kept by meProp in the last
                     backward, or None (all the errors are propagated)
    """

    def __init__(self, params: GateParams, activation: Optional[ActivationFunction] = None):
        """
        Args:
            params: The gate parameters (shared, read only)
            activation: Activation applied when the owning cell calls activate()
        """
        super().__init__(size=params.output_size, activation=activation)
        self.params = params
        self.contributions: Optional[GateContributions] = None
        self.meprop_mask: Optional[np.ndarray] = None

    def copy(self) -> "Gate":
        cloned = Gate(params=self.params, activation=self.activation)
        self._copy_state_into(cloned)
        return cloned

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def _check_input(self, x) -> InputVector:
        return as_input_vector(x, self.params.input_size, "gate input")

    def _check_previous(self, y_prev) -> np.ndarray:
        if not self.params.is_recurrent:
            raise ShapeMismatchError("recurrent weights", (self.size, self.size), None)
        return as_vector(y_prev, self.size, "previous output")

    def forward(self, x, y_prev=None) -> np.ndarray:
        """
        Compute the pre-activation z = W x + b (+ W_rec y_prev).

        Args:
            x: Input vector of size params.input_size
            y_prev: Optional previous output of size params.output_size

        Returns:
            The gate values (not activated)
        """
        x = self._check_input(x)
        if y_prev is not None:
            y_prev = self._check_previous(y_prev)

        self.contributions = None
        self.meprop_mask = None

        z = affine_product(self.params.weights.values, x)
        if self.params.biases is not None:
            z = z + self.params.biases.values

        if y_prev is not None:
            z = z + self.params.recurrent_weights.values @ y_prev

        return self.assign_values(z)

    def add_recurrent_contribution(self, y_prev) -> np.ndarray:
        """z += W_rec y_prev, on the already computed pre-activation."""
        y_prev = self._check_previous(y_prev)
        self.values[:] += self.params.recurrent_weights.values @ y_prev
        return self.values

    def forward_with_contributions(self, x, bias_factor: float = 1.0) -> np.ndarray:
        """
        Compute z = W x + b saving the contribution of each input value.

        Args:
            x: Input vector
            bias_factor: Fraction of the biases assigned to the input part
                         (0.5 when a recurrent part will share them)
        """
        x = dense_values(self._check_input(x))
        self.meprop_mask = None

        biases = None
        if self.params.biases is not None:
            biases = self.params.biases.values * bias_factor

        self.contributions = GateContributions()
        self.contributions.input_contributions = affine_contributions(
            x, self.params.weights.values, biases
        )

        return self.assign_values(self.contributions.input_contributions.sum(axis=1))

    def add_recurrent_contribution_with_contributions(
        self, y_prev, bias_factor: float = 0.5
    ) -> np.ndarray:
        """
        z += W_rec y_prev + bias_factor * b, saving the recurrent contributions.

        Must follow forward_with_contributions().
        """
        if self.contributions is None:
            raise UninitializedStateError(
                "forward_with_contributions() must be called before adding the recurrent part"
            )

        y_prev = self._check_previous(y_prev)

        biases = None
        if self.params.biases is not None:
            biases = self.params.biases.values * bias_factor

        recurrent_contributions = affine_contributions(
            y_prev, self.params.recurrent_weights.values, biases
        )
        self.contributions.recurrent_contributions = recurrent_contributions
        self.contributions.recurrent_values = recurrent_contributions.sum(axis=1)

        self.values[:] += self.contributions.recurrent_values
        return self.values

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def get_meprop_mask(self, k: float) -> np.ndarray:
        """
        Mask of the errors with the top k absolute values (meProp).

        Args:
            k: Fraction of the gate units to keep, in (0, 1]. At least one
               unit is always kept.

        Returns:
            Boolean array of shape (size,)

        Reference:
            "meProp: Sparsified Back Propagation for Accelerated Deep
            Learning with Reduced Overfitting" (Sun et al., 2017)
        """
        if not 0.0 < k <= 1.0:
            raise ValueError(f"meProp k must be in (0, 1], got {k}")

        # 0.3 * 10 must keep 3, not 4
        n_kept = max(1, int(np.ceil(k * self.size - 1e-9)))
        top = np.argsort(-np.abs(self.errors), kind="stable")[:n_kept]

        mask = np.zeros(self.size, dtype=bool)
        mask[top] = True
        return mask

    def propagated_errors(self) -> np.ndarray:
        """The errors propagated to parameters and inputs: masked by meProp if a mask is set."""
        if self.meprop_mask is None:
            return self.errors
        return np.where(self.meprop_mask, self.errors, 0.0)

    def assign_params_gradients(self, gradients: GateParams, x, y_prev=None) -> None:
        """
        Write the gradients of the parameters, given the gate errors.

            gw = errors (outer) x
            gb = errors
            gw_rec = errors (outer) y_prev    (zeros when y_prev is None)

        With a meProp mask set, only the masked-in rows are non-zero.

        Args:
            gradients: GateParams-shaped buffer to fill (overwritten)
            x: The input used in the forward (dense or sparse)
            y_prev: The previous output used in the forward, or None
        """
        errors = self.propagated_errors()
        x = self._check_input(x)

        outer_product(errors, x, out=gradients.weights.values)

        if gradients.biases is not None:
            gradients.biases.values[...] = errors

        if gradients.recurrent_weights is not None:
            if y_prev is not None:
                y_prev = as_vector(y_prev, self.size, "previous output")
                gradients.recurrent_weights.values[...] = np.outer(errors, y_prev)
            else:
                gradients.recurrent_weights.values.fill(0.0)

    def get_input_errors(self, weights: Optional[np.ndarray] = None) -> np.ndarray:
        """errors^T W: the contribution of this gate to the errors of the input."""
        if weights is None:
            weights = self.params.weights.values
        return self.propagated_errors() @ weights

    def get_recurrent_errors(self, recurrent_weights: Optional[np.ndarray] = None) -> np.ndarray:
        """errors^T W_rec: the contribution of this gate to the errors of y_prev."""
        if recurrent_weights is None:
            recurrent_weights = self.params.recurrent_weights.values
        return self.propagated_errors() @ recurrent_weights

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    def _saved_contributions(self) -> GateContributions:
        if self.contributions is None:
            raise UninitializedStateError(
                "No contributions saved: call forward_with_contributions() first"
            )
        return self.contributions

    def get_input_relevance(self, x, prev_state_exists: bool) -> np.ndarray:
        """
        Relevance of the input x, given the relevance of this gate.

        When a previous state exists, only the share of the relevance owed to
        the input part of the pre-activation is distributed onto x.
        """
        contributions = self._saved_contributions()
        x = dense_values(self._check_input(x))
        z = self.pre_activation

        if not prev_state_exists:
            return relevance_of_array(
                x=x,
                y=z,
                y_relevance=self.relevance,
                contributions=contributions.input_contributions,
            )

        z_recurrent = contributions.recurrent_values
        z_input = z - z_recurrent
        input_relevance = relevance_partition_input(
            y_relevance=self.relevance,
            y=z,
            y_input=z_input,
            y_recurrent=z_recurrent,
        )

        return relevance_of_array(
            x=x,
            y=z_input,
            y_relevance=input_relevance,
            contributions=contributions.input_contributions,
        )

    def get_recurrent_relevance(self, y_prev) -> np.ndarray:
        """Relevance of the previous output, given the relevance of this gate."""
        contributions = self._saved_contributions()
        if not contributions.has_recurrent:
            raise UninitializedStateError("No recurrent contributions saved")

        y_prev = as_vector(y_prev, self.size, "previous output")
        z_recurrent = contributions.recurrent_values

        recurrent_relevance = relevance_partition_recurrent(
            y_relevance=self.relevance,
            y=self.pre_activation,
            y_recurrent=z_recurrent,
        )

        return relevance_of_array(
            x=y_prev,
            y=z_recurrent,
            y_relevance=recurrent_relevance,
            contributions=contributions.recurrent_contributions,
        )
