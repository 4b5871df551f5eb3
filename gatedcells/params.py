"""
Parameters of the Recurrent Cells

The parameters of a cell type are shared by every timestep of every sequence:
cells only read them. They are organized in three levels:

    ParamsArray: one dense tensor (weights, biases or recurrent weights)
    GateParams:  the tensors of one gate
    ParamsGroup: the ordered gates of one cell type (e.g. the 4 gates of an LSTM)

A ParamsGroup with the same structure is also used to hold gradients
(see ParamsGroup.zeros_like), so that gradients and parameters can be zipped
tensor by tensor.

Classes:
    GlorotInitializer: Random normal initialization scaled by fan-in and fan-out
    ConstantInitializer: Deterministic initialization (mostly for tests)
    ParamsArray: A parameter tensor plus the optimizer support structure
    GateParams: Weights, biases and recurrent weights of a gate
    ParamsGroup: All the gate parameters of one cell type

Functions:
    build_params_group: Build the ParamsGroup of a cell type
"""

from typing import Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np

from gatedcells.errors import ShapeMismatchError, UnsupportedOperationError


class GlorotInitializer:
    """
    Xavier/Glorot initialization: W ~ N(0, sqrt(2 / (fan_in + fan_out))).

    This helps maintain the variance of activations across layers. Vectors
    (fan_in == 1) are initialized with the same rule.

    Attributes:
        rng: NumPy random generator (seeded for reproducibility)
    """

    def __init__(self, seed: Optional[int] = None):
        self.rng = np.random.default_rng(seed)

    def __call__(self, array: np.ndarray) -> None:
        fan_out = array.shape[0]
        fan_in = array.shape[1] if array.ndim > 1 else 1
        std = np.sqrt(2.0 / (fan_in + fan_out))
        array[...] = self.rng.normal(0.0, std, size=array.shape)


class ConstantInitializer:
    """Fill every value with the same constant."""

    def __init__(self, value: float = 0.0):
        self.value = value

    def __call__(self, array: np.ndarray) -> None:
        array.fill(self.value)


class ParamsArray:
    """
    One dense parameter tensor.

    The support structure belongs to the update method (e.g. first and second
    moment estimates). It follows the identity of this object, so it survives
    any number of cells reading the values, and it is never copied.

    Attributes:
        values: The parameter values
        support_structure: Optimizer state bound to these parameters, or None
    """

    def __init__(self, values: np.ndarray):
        self.values = np.asarray(values, dtype=np.float64)
        self.support_structure = None

    @classmethod
    def zeros(cls, shape: Tuple[int, ...]) -> "ParamsArray":
        return cls(np.zeros(shape))

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.values.shape

    def get_or_set_support_structure(self, factory: Callable[[Tuple[int, ...]], object]):
        """
        Return the support structure, building it with factory(shape) the first time.

        Raises:
            TypeError: If an incompatible structure is already attached
        """
        if self.support_structure is None:
            self.support_structure = factory(self.shape)
        elif isinstance(factory, type) and not isinstance(self.support_structure, factory):
            raise TypeError(
                f"Incompatible support structure: {type(self.support_structure).__name__}"
            )

        return self.support_structure

    def assign_values(self, values: np.ndarray) -> None:
        values = np.asarray(values, dtype=np.float64)
        if values.shape != self.shape:
            raise ShapeMismatchError("params values", self.shape, values.shape)
        self.values[...] = values

    def copy(self) -> "ParamsArray":
        return ParamsArray(self.values.copy())

    def __repr__(self) -> str:
        return f"ParamsArray(shape={self.shape})"


class GateParams:
    """
    Parameters of one gate: y = W x + b (+ W_rec y_prev).

    Attributes:
        input_size: Size of the input x
        output_size: Size of the gate (and of y_prev)
        weights: ParamsArray of shape (output_size, input_size)
        biases: ParamsArray of shape (output_size,), or None without bias
        recurrent_weights: ParamsArray of shape (output_size, output_size), or None
    """

    def __init__(
        self,
        input_size: int,
        output_size: int,
        recurrent: bool = True,
        use_bias: bool = True,
        initializer: Optional[Callable[[np.ndarray], None]] = None,
    ):
        """
        Args:
            input_size: Size of the input
            output_size: Size of the output
            recurrent: Whether the gate has recurrent weights
            use_bias: Whether the gate has biases
            initializer: Fills weights and recurrent weights. None leaves zeros.
                         Biases always start at zero.
        """
        self.input_size = input_size
        self.output_size = output_size

        self.weights = ParamsArray.zeros((output_size, input_size))
        self.biases = ParamsArray.zeros((output_size,)) if use_bias else None
        self.recurrent_weights = (
            ParamsArray.zeros((output_size, output_size)) if recurrent else None
        )

        if initializer is not None:
            initializer(self.weights.values)
            if self.recurrent_weights is not None:
                initializer(self.recurrent_weights.values)

    @property
    def is_recurrent(self) -> bool:
        return self.recurrent_weights is not None

    @property
    def use_bias(self) -> bool:
        return self.biases is not None

    def arrays(self) -> List[ParamsArray]:
        """The tensors of this gate, in order: weights, biases, recurrent weights."""
        return [
            array
            for array in (self.weights, self.biases, self.recurrent_weights)
            if array is not None
        ]

    def zeros_like(self) -> "GateParams":
        return GateParams(
            input_size=self.input_size,
            output_size=self.output_size,
            recurrent=self.is_recurrent,
            use_bias=self.use_bias,
        )

    def copy(self) -> "GateParams":
        copied = self.zeros_like()
        for target, source in zip(copied.arrays(), self.arrays()):
            target.values[...] = source.values
        return copied

    def __repr__(self) -> str:
        return (
            f"GateParams({self.input_size} -> {self.output_size}, "
            f"recurrent={self.is_recurrent}, bias={self.use_bias})"
        )


class ParamsGroup:
    """
    The ordered gate parameters of one cell type.

    The same group is shared by reference by every cell instance of every
    timestep. Cells only read it; parameters change exclusively through an
    update method (see gatedcells.optimizer).

    Gates are reachable by role, both as items and as attributes:
        params["forget_gate"] is params.forget_gate

    Attributes:
        cell_type: 'lstm', 'gru', 'ran' or 'cfn'
        input_size: Size of the cell input
        output_size: Size of the cell output
        gates: Ordered mapping role -> GateParams
    """

    def __init__(
        self,
        cell_type: str,
        input_size: int,
        output_size: int,
        gates: Dict[str, GateParams],
    ):
        self.cell_type = cell_type
        self.input_size = input_size
        self.output_size = output_size
        self.gates = dict(gates)

    def __getitem__(self, role: str) -> GateParams:
        return self.gates[role]

    def __getattr__(self, role: str) -> GateParams:
        # Only called when normal lookup fails
        gates = self.__dict__.get("gates")
        if gates is not None and role in gates:
            return gates[role]
        raise AttributeError(f"{type(self).__name__} has no gate '{role}'")

    def __iter__(self) -> Iterator[ParamsArray]:
        """Iterate over every ParamsArray, gate by gate."""
        for gate in self.gates.values():
            yield from gate.arrays()

    def __len__(self) -> int:
        return sum(len(gate.arrays()) for gate in self.gates.values())

    def arrays(self) -> List[ParamsArray]:
        """Flat ordered list of every ParamsArray, gate by gate."""
        return [array for gate in self.gates.values() for array in gate.arrays()]

    @property
    def roles(self) -> List[str]:
        return list(self.gates)

    def named_arrays(self) -> Dict[str, np.ndarray]:
        """Flat dictionary 'role.kind' -> values (e.g. 'candidate.biases')."""
        named = {}
        for role, gate in self.gates.items():
            named[f"{role}.weights"] = gate.weights.values
            if gate.biases is not None:
                named[f"{role}.biases"] = gate.biases.values
            if gate.recurrent_weights is not None:
                named[f"{role}.recurrent_weights"] = gate.recurrent_weights.values
        return named

    def zeros_like(self) -> "ParamsGroup":
        """A group with the same structure, filled with zeros (a gradients buffer)."""
        return ParamsGroup(
            cell_type=self.cell_type,
            input_size=self.input_size,
            output_size=self.output_size,
            gates={role: gate.zeros_like() for role, gate in self.gates.items()},
        )

    def copy(self) -> "ParamsGroup":
        """
        Structurally equal and referentially distinct copy.

        Support structures are not copied: they belong to the original tensors.
        """
        return ParamsGroup(
            cell_type=self.cell_type,
            input_size=self.input_size,
            output_size=self.output_size,
            gates={role: gate.copy() for role, gate in self.gates.items()},
        )

    def _check_compatible(self, other: "ParamsGroup") -> None:
        if self.cell_type != other.cell_type or self.roles != other.roles:
            raise ShapeMismatchError(
                "params group structure",
                (self.cell_type, self.roles),
                (other.cell_type, other.roles),
            )
        for mine, theirs in zip(self, other):
            if mine.shape != theirs.shape:
                raise ShapeMismatchError("params array", mine.shape, theirs.shape)

    def assign_values(self, other: "ParamsGroup") -> None:
        """Copy the values of another group with the same structure."""
        self._check_compatible(other)
        for mine, theirs in zip(self, other):
            mine.values[...] = theirs.values

    def assign_zeros(self) -> None:
        for array in self:
            array.values.fill(0.0)

    def add(self, other: "ParamsGroup") -> "ParamsGroup":
        """self += other, tensor by tensor. Returns self."""
        self._check_compatible(other)
        for mine, theirs in zip(self, other):
            mine.values += theirs.values
        return self

    def scale(self, factor: float) -> "ParamsGroup":
        """self *= factor. Returns self."""
        for array in self:
            array.values *= factor
        return self

    def equals(self, other: "ParamsGroup", tolerance: float = 1e-8) -> bool:
        try:
            self._check_compatible(other)
        except ShapeMismatchError:
            return False
        return all(
            np.allclose(mine.values, theirs.values, rtol=0.0, atol=tolerance)
            for mine, theirs in zip(self, other)
        )

    def __repr__(self) -> str:
        return (
            f"ParamsGroup({self.cell_type}, {self.input_size} -> {self.output_size}, "
            f"gates={self.roles})"
        )


# role -> (recurrent, use_bias)
_GATE_LAYOUTS: Dict[str, Dict[str, Tuple[bool, bool]]] = {
    "lstm": {
        "input_gate": (True, True),
        "output_gate": (True, True),
        "forget_gate": (True, True),
        "candidate": (True, True),
    },
    "gru": {
        "reset_gate": (True, True),
        "partition_gate": (True, True),
        "candidate": (True, True),
    },
    "ran": {
        "input_gate": (True, True),
        "forget_gate": (True, True),
        "candidate": (False, True),
    },
    "cfn": {
        "input_gate": (True, True),
        "forget_gate": (True, True),
        "candidate": (False, False),
    },
}

CELL_TYPES = tuple(_GATE_LAYOUTS)


def build_params_group(
    cell_type: str,
    input_size: int,
    output_size: int,
    initializer: Optional[Callable[[np.ndarray], None]] = None,
) -> ParamsGroup:
    """
    Build the parameters of a cell type.

    Args:
        cell_type: 'lstm', 'gru', 'ran' or 'cfn'
        input_size: Size of the input of the cell
        output_size: Size of the output of the cell
        initializer: Initializer of weights and recurrent weights (biases start at 0).
                     None leaves every tensor at zero.

    Returns:
        The ParamsGroup with the gate roles of the cell type

    Raises:
        UnsupportedOperationError: If the cell type is unknown
    """
    if cell_type not in _GATE_LAYOUTS:
        raise UnsupportedOperationError(
            f"Unknown cell type '{cell_type}'. Available: {list(CELL_TYPES)}"
        )
    if input_size <= 0 or output_size <= 0:
        raise ValueError(
            f"Sizes must be positive, got input={input_size}, output={output_size}"
        )

    gates = {
        role: GateParams(
            input_size=input_size,
            output_size=output_size,
            recurrent=recurrent,
            use_bias=use_bias,
            initializer=initializer,
        )
        for role, (recurrent, use_bias) in _GATE_LAYOUTS[cell_type].items()
    }

    return ParamsGroup(
        cell_type=cell_type,
        input_size=input_size,
        output_size=output_size,
        gates=gates,
    )
