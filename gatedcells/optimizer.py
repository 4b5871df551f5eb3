"""
Gradient Accumulation and Parameter Updates

The cells never modify their parameters. Training goes through three steps:

    1. Accumulate: the gradients of every example (one ParamsGroup each) are
       summed into a ParamsErrorsAccumulator
    2. Average: the sum is divided by the number of examples
    3. Update: an update method mutates each ParamsArray in place, given its
       averaged gradient

Examples can be processed in parallel, each worker with its own processor and
its own accumulator: the per-worker accumulators are then merged by a single
writer (see ParamsErrorsAccumulator.merge) before averaging. The accumulators
themselves are not thread-safe.

The concrete update rules (plain learning rate, ADAM, AdaGrad, ...) are not
part of this module: they implement the ParamsUpdateMethod contract.

Classes:
    ParamsUpdateMethod: Contract of the update rules
    ParamsErrorsAccumulator: Sum and average of parameters gradients
    ParamsOptimizer: Accumulates gradients and applies an update method

Functions:
    clip_gradient_norm: Clip gradients by global norm
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from gatedcells.errors import UninitializedStateError
from gatedcells.params import ParamsArray, ParamsGroup

logger = logging.getLogger(__name__)


class ParamsUpdateMethod(ABC):
    """
    An update rule for parameter tensors.

    Implementations may keep per-parameter state (e.g. first and second moment
    estimates). That state must be attached to the ParamsArray with
    ParamsArray.get_or_set_support_structure(), so that its lifecycle follows
    the parameters and not any cell instance.
    """

    @abstractmethod
    def update(self, params: ParamsArray, gradients: np.ndarray) -> None:
        """
        Mutate params.values in place.

        Args:
            params: The parameter tensor
            gradients: Its accumulated, already averaged gradient (same shape)
        """


def clip_gradient_norm(params_errors: ParamsGroup, max_norm: float) -> ParamsGroup:
    """
    Clip gradients by global norm.

    If the total norm of all gradients exceeds max_norm, scale them down
    proportionally so the total norm equals max_norm.

    Algorithm:
        total_norm = sqrt(sum(norm(g)^2 for g in gradients))
        if total_norm > max_norm:
            gradients = gradients * (max_norm / total_norm)

    Args:
        params_errors: The gradients of a parameters group
        max_norm: Maximum allowed gradient norm

    Returns:
        Clipped gradients (new group, original unchanged)
    """
    if max_norm <= 0:
        raise ValueError(f"max_norm must be positive, got {max_norm}")

    total_norm_squared = 0.0
    for array in params_errors:
        total_norm_squared += np.sum(np.square(array.values))
    total_norm = np.sqrt(total_norm_squared)

    clipped = params_errors.copy()
    if total_norm > max_norm:
        clipped.scale(max_norm / total_norm)

    return clipped


class ParamsErrorsAccumulator:
    """
    Sum of the parameters gradients of many examples.

    Attributes:
        count: Number of accumulated examples
    """

    def __init__(self):
        self._params_errors: Optional[ParamsGroup] = None
        self.count = 0

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    def accumulate(self, params_errors: ParamsGroup) -> None:
        """Add the gradients of one example (copied, never referenced)."""
        if self._params_errors is None:
            self._params_errors = params_errors.copy()
        else:
            self._params_errors.add(params_errors)

        self.count += 1

    def merge(self, other: "ParamsErrorsAccumulator") -> None:
        """
        Add the sums of another accumulator (e.g. the one of another worker).

        The result is the same as accumulating every example of both
        accumulators into this one.
        """
        if other.is_empty:
            return

        if self._params_errors is None:
            self._params_errors = other._params_errors.copy()
        else:
            self._params_errors.add(other._params_errors)

        self.count += other.count

    def average(self) -> ParamsGroup:
        """
        Divide the sum by the number of examples, in place.

        The accumulator then holds one averaged example (count == 1).
        """
        if self.is_empty:
            raise UninitializedStateError("No gradients have been accumulated")

        if self.count > 1:
            self._params_errors.scale(1.0 / self.count)
            self.count = 1

        return self._params_errors

    def get_params_errors(self) -> ParamsGroup:
        if self._params_errors is None:
            raise UninitializedStateError("No gradients have been accumulated")
        return self._params_errors

    def clear(self) -> None:
        """Forget the accumulated gradients, keeping the buffers."""
        if self._params_errors is not None:
            self._params_errors.assign_zeros()
        self.count = 0

    def __repr__(self) -> str:
        return f"ParamsErrorsAccumulator(count={self.count})"


class ParamsOptimizer:
    """
    Accumulates the gradients of a parameters group and applies an update method.

    Example:
        >>> optimizer = ParamsOptimizer(params, update_method)
        >>> for sequence in batch:
        ...     processor.forward(sequence.inputs)
        ...     processor.backward(sequence.errors)
        ...     optimizer.accumulate(processor.get_params_errors(copy=False))
        >>> optimizer.update()

    Attributes:
        params: The parameters to update
        update_method: The update rule
        max_gradient_norm: Global norm clipping threshold, None to disable
        step_count: Number of updates applied
    """

    def __init__(
        self,
        params: ParamsGroup,
        update_method: ParamsUpdateMethod,
        max_gradient_norm: Optional[float] = None,
    ):
        self.params = params
        self.update_method = update_method
        self.max_gradient_norm = max_gradient_norm
        self.accumulator = ParamsErrorsAccumulator()
        self.step_count = 0

    def accumulate(self, params_errors: ParamsGroup) -> None:
        self.accumulator.accumulate(params_errors)

    def update(self) -> None:
        """
        Average the accumulated gradients, clip them and update the parameters.

        Does nothing when no gradients have been accumulated.
        """
        if self.accumulator.is_empty:
            logger.debug("Update skipped: no gradients accumulated")
            return

        examples = self.accumulator.count
        params_errors = self.accumulator.average()

        if self.max_gradient_norm is not None:
            params_errors = clip_gradient_norm(params_errors, self.max_gradient_norm)

        for params_array, errors_array in zip(self.params, params_errors):
            self.update_method.update(params_array, errors_array.values)

        self.accumulator.clear()
        self.step_count += 1

        logger.debug(
            "Update %d applied to %s params (%d examples)",
            self.step_count,
            self.params.cell_type,
            examples,
        )
