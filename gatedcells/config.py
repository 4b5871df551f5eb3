"""
Configuration of a Recurrent Cell Type

All the hyperparameters that define the parameters of a recurrent unit are
stored in one dataclass, so that a configuration can be saved, loaded and
turned into parameters and processors.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from gatedcells.activations import ActivationFunction, get_activation
from gatedcells.errors import UnsupportedOperationError
from gatedcells.params import (
    CELL_TYPES,
    ConstantInitializer,
    GlorotInitializer,
    ParamsGroup,
    build_params_group,
)

INITIALIZERS = ("glorot", "constant", "zeros")


@dataclass
class RecurrentConfig:
    """
    Configuration of a recurrent unit.

    Attributes:
        cell_type: 'lstm', 'gru', 'ran' or 'cfn'
        input_size: Size of the input of each timestep
        output_size: Size of the output (and hidden state)
        activation: Name of the cell activation (see get_activation)
        initializer: 'glorot' (random normal), 'constant' or 'zeros'
        seed: Seed of the random initializer (None for a random seed)
        init_value: Value used by the 'constant' initializer
    """

    cell_type: str = "lstm"
    input_size: int = 10
    output_size: int = 10
    activation: str = "tanh"
    initializer: str = "glorot"
    seed: Optional[int] = None
    init_value: float = 0.0

    def validate(self) -> None:
        """
        Raises:
            UnsupportedOperationError: Unknown cell type, activation or initializer
            ValueError: Non-positive sizes
        """
        if self.cell_type not in CELL_TYPES:
            raise UnsupportedOperationError(
                f"Unknown cell type '{self.cell_type}'. Available: {list(CELL_TYPES)}"
            )
        if self.initializer not in INITIALIZERS:
            raise UnsupportedOperationError(
                f"Unknown initializer '{self.initializer}'. Available: {list(INITIALIZERS)}"
            )
        if self.input_size <= 0 or self.output_size <= 0:
            raise ValueError(
                f"Sizes must be positive, got input={self.input_size}, output={self.output_size}"
            )
        get_activation(self.activation)

    def build_activation(self) -> ActivationFunction:
        return get_activation(self.activation)

    def build_params(self) -> ParamsGroup:
        """Validate the configuration and build freshly initialized parameters."""
        self.validate()

        if self.initializer == "glorot":
            initializer = GlorotInitializer(seed=self.seed)
        elif self.initializer == "constant":
            initializer = ConstantInitializer(self.init_value)
        else:
            initializer = None

        return build_params_group(
            cell_type=self.cell_type,
            input_size=self.input_size,
            output_size=self.output_size,
            initializer=initializer,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecurrentConfig":
        """Build a configuration from a dictionary, rejecting unknown keys."""
        known = {field.name for field in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**data)
