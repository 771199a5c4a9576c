# ===============================
# Non-dominated solution archive
# Rows of stacked numpy arrays: one assignment vector and one objective
# vector per archived allocation. Every objective is minimized.
# ===============================

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .models import Allocation


@dataclass
class ArchiveEntry:
    """A feasible allocation with its objective values."""
    assignment: np.ndarray       # Shape: [num_vms] - PM index per VM
    objectives: np.ndarray       # Shape: [n_objectives]
    allocation: Optional[Allocation] = None

    def __post_init__(self):
        self.assignment = np.asarray(self.assignment, dtype=np.int64)
        self.objectives = np.asarray(self.objectives, dtype=np.float64)


class ParetoArchive:
    """
    Set of mutually non-dominated allocations.
    """

    def __init__(self):
        self._points: Optional[np.ndarray] = None       # Shape: [size, n_objectives]
        self._vectors: Optional[np.ndarray] = None      # Shape: [size, num_vms]
        self._allocations: List[Optional[Allocation]] = []

    @property
    def size(self) -> int:
        return 0 if self._points is None else len(self._points)

    @property
    def is_empty(self) -> bool:
        return self.size == 0

    def __len__(self) -> int:
        return self.size

    def _dominance(self, point: np.ndarray) -> Tuple[bool, np.ndarray]:
        """(some archived point dominates `point`, mask of archived points `point` dominates)"""
        no_worse = np.all(self._points <= point, axis=1)
        no_better = np.all(self._points >= point, axis=1)
        differs = np.any(self._points != point, axis=1)
        return bool(np.any(no_worse & differs)), no_better & differs

    def _keep(self, rows: np.ndarray):
        if rows.dtype == bool:
            rows = np.flatnonzero(rows)
        self._points = self._points[rows]
        self._vectors = self._vectors[rows]
        self._allocations = [self._allocations[i] for i in rows]

    def add(self, entry: ArchiveEntry) -> bool:
        """
        Insert an entry unless an archived point dominates or equals it;
        archived points it dominates are evicted.

        Returns:
            True if the entry was inserted
        """
        point = entry.objectives.reshape(-1)
        if self._points is None:
            self._points = np.empty((0, point.size), dtype=np.float64)
            self._vectors = np.empty((0, entry.assignment.size), dtype=np.int64)
        elif point.size != self._points.shape[1]:
            raise ValueError(f"expected {self._points.shape[1]} objectives, got {point.size}")

        if self.size:
            if np.any(np.all(np.isclose(self._points, point, rtol=1e-10, atol=1e-10), axis=1)):
                return False
            dominated, evicted = self._dominance(point)
            if dominated:
                return False
            if np.any(evicted):
                self._keep(~evicted)

        self._points = np.vstack([self._points, point])
        self._vectors = np.vstack([self._vectors, entry.assignment.reshape(1, -1)])
        self._allocations.append(entry.allocation)
        return True

    def add_batch(self, entries: List[ArchiveEntry]) -> int:
        """Returns the number of entries inserted."""
        return sum(self.add(entry) for entry in entries)

    def merge(self, other: ParetoArchive) -> int:
        return self.add_batch(other.get_all_solutions())

    def get_all_solutions(self) -> List[ArchiveEntry]:
        return [ArchiveEntry(self._vectors[i].copy(), self._points[i].copy(), self._allocations[i])
                for i in range(self.size)]

    def get_all_objectives(self) -> np.ndarray:
        if self._points is None:
            return np.zeros((0, 0), dtype=np.float64)
        return self._points.copy()

    def get_allocations(self) -> List[Allocation]:
        return [a for a in self._allocations if a is not None]

    def clear(self):
        self._points = None
        self._vectors = None
        self._allocations = []
