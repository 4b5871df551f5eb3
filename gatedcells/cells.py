"""
Cell Variant Registry

Maps the cell type names used by ParamsGroup and RecurrentConfig to the cell
classes, so that a cell can be built from its parameters alone.
"""

from typing import Dict, Optional, Type

from gatedcells.activations import ActivationFunction
from gatedcells.cell import RecurrentCell
from gatedcells.cfn import CFNCell
from gatedcells.errors import UnsupportedOperationError
from gatedcells.gru import GRUCell
from gatedcells.lstm import LSTMCell
from gatedcells.params import ParamsGroup
from gatedcells.ran import RANCell

CELL_CLASSES: Dict[str, Type[RecurrentCell]] = {
    "lstm": LSTMCell,
    "gru": GRUCell,
    "ran": RANCell,
    "cfn": CFNCell,
}


def build_cell(
    params: ParamsGroup,
    activation: Optional[ActivationFunction] = None,
    context_window=None,
) -> RecurrentCell:
    """
    Build a cell of the type of the given parameters.

    Args:
        params: The shared parameters (their cell_type selects the variant)
        activation: Cell activation, tanh when None
        context_window: Neighbors lookup of the cell

    Returns:
        A new cell bound to params

    Raises:
        UnsupportedOperationError: If no variant matches params.cell_type
    """
    if params.cell_type not in CELL_CLASSES:
        raise UnsupportedOperationError(
            f"Unknown cell type '{params.cell_type}'. Available: {list(CELL_CLASSES)}"
        )

    cell_class = CELL_CLASSES[params.cell_type]
    return cell_class(params, activation=activation, context_window=context_window)
