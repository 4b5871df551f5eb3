"""
Recurrent Sequence Processor

Runs a whole sequence through a chain of recurrent cells sharing one group of
parameters:

    forward:   x_0 -> cell_0 -> y_0
                        |
               x_1 -> cell_1 -> y_1
                        |
                       ...

    backward:  from the last timestep to the first, each cell reading the
               errors of its successor; the parameters gradients are the sum
               of the gradients of every timestep.

The processor owns the cells: they live in a CellSequence (the arena the
context windows resolve neighbors against) and are drawn from a CellPool, so
processing many sequences does not allocate a new cell per timestep.

A processor is not thread-safe. To process sequences in parallel, give each
worker its own processor (they can share the same ParamsGroup, which is only
read) and merge their gradients with a ParamsErrorsAccumulator.

Classes:
    RecurrentProcessor: Forward, backward and relevance over a sequence
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
import scipy.sparse

from gatedcells.activations import ActivationFunction
from gatedcells.cell import RecurrentCell
from gatedcells.cells import build_cell
from gatedcells.context import CellPool, CellSequence
from gatedcells.errors import UninitializedStateError
from gatedcells.params import ParamsGroup

logger = logging.getLogger(__name__)


class RecurrentProcessor:
    """
    Sequence owner for one recurrent cell type.

    Attributes:
        params: The shared parameters of the cells
        activation: The activation of the cells (tanh when None)
    """

    def __init__(self, params: ParamsGroup, activation: Optional[ActivationFunction] = None):
        """
        Args:
            params: Parameters shared by every timestep
            activation: Cell activation
        """
        self.params = params
        self.activation = activation

        self._pool: CellPool[RecurrentCell] = CellPool(self._build_cell)
        self._sequence: CellSequence[RecurrentCell] = CellSequence()
        self._seed: Optional[RecurrentCell] = None

        self._params_errors = params.zeros_like()
        self._saved_contributions = False
        self._backward_done = False
        self._propagated_to_input = False

    def _build_cell(self) -> RecurrentCell:
        return build_cell(self.params, activation=self.activation)

    @property
    def cells(self) -> List[RecurrentCell]:
        """The cells of the current sequence, in time order."""
        return list(self._sequence.cells)

    @property
    def has_init_hidden(self) -> bool:
        return self._sequence.seed is not None

    def __len__(self) -> int:
        return len(self._sequence)

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self._pool.release_all()
        self._sequence = CellSequence()
        self._saved_contributions = False
        self._backward_done = False
        self._propagated_to_input = False

    def _set_init_hidden(self, init_hidden) -> None:
        if self._seed is None:
            self._seed = self._build_cell()

        self._seed.set_initial_state(init_hidden)
        self._sequence.set_seed(self._seed)

    def forward(
        self,
        inputs: Sequence,
        init_hidden=None,
        save_contributions: bool = False,
    ) -> List[np.ndarray]:
        """
        Forward a whole sequence, discarding the previous one.

        Args:
            inputs: One input vector per timestep (a list, or a dense or
                    scipy.sparse matrix of shape (seq_len, input_size))
            init_hidden: Optional initial hidden state (output of a virtual
                         timestep -1). For an LSTM the initial memory is zeros.
            save_contributions: Save the contributions needed by
                                propagate_relevance()

        Returns:
            One output vector per timestep (copies)

        Raises:
            ValueError: If the sequence is empty
            ShapeMismatchError: If an input or init_hidden has the wrong size
            UnsupportedOperationError: If save_contributions is requested for a
                                       cell type without relevance support
        """
        if scipy.sparse.issparse(inputs):
            rows = scipy.sparse.csr_matrix(inputs)
            inputs = [rows.getrow(t) for t in range(rows.shape[0])]

        if len(inputs) == 0:
            raise ValueError("Cannot process an empty sequence")

        self._reset()

        if init_hidden is not None:
            self._set_init_hidden(init_hidden)

        outputs = []
        for x in inputs:
            cell = self._pool.acquire()
            self._sequence.append(cell)
            cell.set_input(x)

            if save_contributions:
                y = cell.forward_with_contributions()
            else:
                y = cell.forward()

            outputs.append(y.copy())

        self._saved_contributions = save_contributions

        logger.debug(
            "Forward of %d steps (%s, pool size %d, generation %d)",
            len(outputs),
            self.params.cell_type,
            self._pool.size,
            self._pool.generation,
        )

        return outputs

    # ------------------------------------------------------------------
    # Backward
    # ------------------------------------------------------------------

    def backward(
        self,
        outputs_errors: Sequence,
        propagate_to_input: bool = True,
        meprop_k: Optional[float] = None,
    ) -> None:
        """
        Back-propagate the errors of the outputs through the whole sequence.

        Args:
            outputs_errors: One errors vector per timestep, aligned with the
                            outputs of forward(). None means zero errors.
            propagate_to_input: Whether to compute the errors of the inputs
            meprop_k: Optional meProp factor: the fraction in (0, 1] of the
                      errors of each gate propagated at every timestep

        Raises:
            UninitializedStateError: If no sequence has been forwarded
            ValueError: If the number of errors does not match the sequence
        """
        if len(self._sequence) == 0:
            raise UninitializedStateError("forward() must be called before backward()")

        if len(outputs_errors) != len(self._sequence):
            raise ValueError(
                f"Expected {len(self._sequence)} output errors, got {len(outputs_errors)}"
            )

        self._params_errors.assign_zeros()

        for t in reversed(range(len(self._sequence))):
            cell = self._sequence[t]
            errors = outputs_errors[t]

            if errors is None:
                cell.output_array.assign_zero_errors()
            else:
                cell.output_array.assign_errors(errors)

            cell.backward(propagate_to_input=propagate_to_input, meprop_k=meprop_k)
            self._params_errors.add(cell.get_params_gradients())

        self._backward_done = True
        self._propagated_to_input = propagate_to_input

        logger.debug("Backward of %d steps", len(self._sequence))

    def _check_backward(self) -> None:
        if not self._backward_done:
            raise UninitializedStateError("backward() has not been called yet")

    def get_params_errors(self, copy: bool = True) -> ParamsGroup:
        """
        The gradients of the parameters, summed over the timesteps.

        Args:
            copy: Return a copy instead of the internal buffer (which is
                  overwritten by the next backward())
        """
        self._check_backward()
        return self._params_errors.copy() if copy else self._params_errors

    def get_inputs_errors(self) -> List[np.ndarray]:
        """The errors of the inputs, one vector per timestep."""
        self._check_backward()
        if not self._propagated_to_input:
            raise UninitializedStateError(
                "The errors were not propagated to the input in the last backward()"
            )
        return [cell.input_array.errors.copy() for cell in self._sequence]

    def get_init_hidden_errors(self) -> np.ndarray:
        """
        The errors of the initial hidden state given to forward().

        Raises:
            UninitializedStateError: If no initial hidden state was given or
                                     backward() has not been called
        """
        self._check_backward()
        if self._sequence.seed is None:
            raise UninitializedStateError("No initial hidden state was given to forward()")
        return self._sequence.seed.initial_hidden_errors()

    # ------------------------------------------------------------------
    # Relevance
    # ------------------------------------------------------------------

    def propagate_relevance(self, output_relevance, step: Optional[int] = None) -> List[np.ndarray]:
        """
        Propagate the relevance of one output back to the inputs that produced it.

        Args:
            output_relevance: Relevance of the output of `step`
            step: Timestep whose output is explained (the last one when None)

        Returns:
            The relevance of the inputs of timesteps 0..step

        Raises:
            UninitializedStateError: If forward() did not save the contributions
            IndexError: If step is out of the sequence
        """
        if not self._saved_contributions:
            raise UninitializedStateError(
                "forward() must be called with save_contributions=True"
            )

        last = len(self._sequence) - 1 if step is None else step
        if not 0 <= last < len(self._sequence):
            raise IndexError(f"Step {step} out of a sequence of {len(self._sequence)}")

        relevances: List[Optional[np.ndarray]] = [None] * (last + 1)

        self._sequence[last].output_array.assign_relevance(output_relevance)

        for t in range(last, -1, -1):
            cell = self._sequence[t]
            if t < last:
                cell.output_array.assign_relevance(cell.output_array.recurrent_relevance)
            relevances[t] = cell.propagate_relevance().copy()

        return relevances


if __name__ == "__main__":
    from gatedcells.params import GlorotInitializer, build_params_group

    print("=" * 70)
    print("RECURRENT PROCESSOR DEMO")
    print("=" * 70)
    print()

    rng = np.random.default_rng(0)
    inputs = [rng.normal(size=4) for _ in range(5)]
    targets = [rng.normal(size=3) for _ in range(5)]

    for cell_type in ("lstm", "gru", "ran", "cfn"):
        params = build_params_group(cell_type, 4, 3, initializer=GlorotInitializer(seed=0))
        processor = RecurrentProcessor(params)

        outputs = processor.forward(inputs)
        loss = sum(0.5 * np.sum((y - target) ** 2) for y, target in zip(outputs, targets))
        processor.backward([y - target for y, target in zip(outputs, targets)])

        gradients = processor.get_params_errors()
        norm = np.sqrt(sum(np.sum(array.values ** 2) for array in gradients))

        print(f"{cell_type.upper():5s} loss: {loss:.4f}  gradient norm: {norm:.4f}")

    print()
    print("RAN relevance of the inputs for the last output:")
    params = build_params_group("ran", 4, 3, initializer=GlorotInitializer(seed=0))
    processor = RecurrentProcessor(params)
    outputs = processor.forward(inputs, save_contributions=True)
    for t, relevance in enumerate(processor.propagate_relevance(outputs[-1])):
        print(f"  step {t}: {np.round(relevance, 4)}")
