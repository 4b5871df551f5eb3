"""
Temporal Linkage of the Cells of a Sequence

A cell at time t needs the cell at t-1 (forward) and the cell at t+1
(backward), but it must not own them: that would create reference cycles
between neighbors. Instead, all the cells of a sequence live in one arena
owned by the sequence processor, and each cell receives a ContextWindow that
resolves its neighbors by index arithmetic against that arena.

    forward:  cell[t] reads cell[t-1].output values     (t-1 -> t)
    backward: cell[t] reads cell[t+1] errors            (t+1 -> t)

An optional seed cell holds the initial hidden state. It sits at index -1:
its next cell is cell[0] and it is the previous cell of cell[0].

Classes:
    ContextWindow: Resolves previous/next cells of one index of a CellSequence
    EmptyContextWindow: No previous and no next cell (isolated cell)
    StaticContextWindow: Fixed neighbors (hand-built fixtures)
    CellSequence: Arena of the cells of one sequence
    CellPool: Reuse pool of cell instances
"""

import logging
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

CellType = TypeVar("CellType")

SEED_INDEX = -1


class ContextWindow:
    """
    Neighbors of the cell at `index` of a CellSequence.

    Nothing but the arena and the index is stored: neighbors are looked up
    every time, so the window never holds a stale reference.
    """

    def __init__(self, sequence: "CellSequence", index: int):
        self.sequence = sequence
        self.index = index

    def previous(self):
        """The cell at index - 1 (the seed for index 0), or None."""
        if self.index == SEED_INDEX:
            return None
        if self.index == 0:
            return self.sequence.seed
        return self.sequence[self.index - 1]

    def next(self):
        """The cell at index + 1, or None at the end of the sequence."""
        following = self.index + 1
        if following < len(self.sequence):
            return self.sequence[following]
        return None

    def __repr__(self) -> str:
        return f"ContextWindow(index={self.index}, length={len(self.sequence)})"


class EmptyContextWindow:
    """Context of an isolated cell: no previous and no next state."""

    def previous(self):
        return None

    def next(self):
        return None


class StaticContextWindow:
    """Context with fixed neighbors, for cells built by hand."""

    def __init__(self, previous=None, next=None):
        self._previous = previous
        self._next = next

    def previous(self):
        return self._previous

    def next(self):
        return self._next


class CellSequence(Generic[CellType]):
    """
    Arena holding the cells of one sequence, in time order.

    Attributes:
        cells: The cells, cells[t] being the cell of timestep t
        seed: Optional cell holding the initial hidden state (index -1)
    """

    def __init__(self):
        self.cells: List[CellType] = []
        self.seed: Optional[CellType] = None

    def __len__(self) -> int:
        return len(self.cells)

    def __getitem__(self, index: int) -> CellType:
        return self.cells[index]

    def __iter__(self):
        return iter(self.cells)

    def append(self, cell: CellType) -> int:
        """Add a cell at the end of the sequence and bind its context window."""
        index = len(self.cells)
        self.cells.append(cell)
        cell.context_window = self.window(index)
        return index

    def set_seed(self, cell: CellType) -> None:
        """Set the cell holding the initial hidden state."""
        self.seed = cell
        cell.context_window = self.window(SEED_INDEX)

    def window(self, index: int) -> ContextWindow:
        return ContextWindow(self, index)

    @property
    def last(self) -> CellType:
        if not self.cells:
            raise IndexError("The sequence is empty")
        return self.cells[-1]


class CellPool(Generic[CellType]):
    """
    Reuse pool of cell instances.

    Cells are expensive to build (one buffer per gate), so the processor
    reuses them across sequences: release_all() makes every cell available
    again and starts a new generation.

    Not thread-safe: a pool belongs to a single sequence processor.

    Attributes:
        generation: Incremented at every release_all()
    """

    def __init__(self, factory: Callable[[], CellType]):
        self._factory = factory
        self._cells: List[CellType] = []
        self._in_use = 0
        self.generation = 0

    @property
    def size(self) -> int:
        """Number of cells ever built by this pool."""
        return len(self._cells)

    @property
    def in_use(self) -> int:
        return self._in_use

    def acquire(self) -> CellType:
        """Return a free cell, building a new one only when none is available."""
        if self._in_use == len(self._cells):
            self._cells.append(self._factory())
            logger.debug("Pool grown to %d cells", len(self._cells))

        cell = self._cells[self._in_use]
        self._in_use += 1

        return cell

    def release_all(self) -> None:
        """Make every cell available again."""
        self._in_use = 0
        self.generation += 1
