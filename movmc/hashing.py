"""
Random parity (XOR) hash functions that split the solution space into
cells of roughly equal size.
"""

from __future__ import annotations
import logging
import math
from typing import List, Sequence

import numpy as np

from . import config
from .errors import Contradiction
from .solver import ConstraintID, ConstraintSolver

logger = logging.getLogger(__name__)


def enumeration_threshold(epsilon: float = config.HASH_EPSILON) -> int:
    """Number of solutions to enumerate inside a cell before moving to another one."""
    return int(1 + 9.84 * (1 + epsilon / (1 + epsilon)) * math.pow(1 + 1 / epsilon, 2))


class HashPartitioner:
    """
    Adds KEY_SIZE random XOR constraints over `lits`, each gated by a fresh
    activator literal returned as a solve-time assumption.

    Args:
        solver: Solver receiving the constraints
        lits: Literals the parities range over
        rng: Random generator
        key_size: Number of parity constraints
    """

    def __init__(self,
                 solver: ConstraintSolver,
                 lits: Sequence[int],
                 rng: np.random.Generator,
                 key_size: int = config.HASH_KEY_SIZE):
        self.solver = solver
        self.lits = np.asarray(list(lits), dtype=np.int64)
        self.rng = rng
        self.key_size = key_size
        self.ids: List[ConstraintID] = []
        self.activators: List[int] = []

    @property
    def assumptions(self) -> List[int]:
        return list(self.activators)

    def _add_parities(self):
        for _ in range(self.key_size):
            key_bit, alpha_0 = self.rng.random(2) < 0.5
            bit_lits = self.lits[self.rng.random(len(self.lits)) < 0.5]
            activator = self.solver.new_var()
            self.ids.append(self.solver.add_removable_xor([int(l) for l in bit_lits],
                                                          bool(alpha_0 != key_bit), activator))
            self.activators.append(activator)

    def generate(self) -> List[int]:
        """Add a new hash function and return its activators as assumptions."""
        while True:
            try:
                self._add_parities()
                logger.debug("hash function over %d literals, activators %s", len(self.lits), self.activators)
                return self.assumptions
            except Contradiction:
                logger.debug("hash function led to an empty cell, generating another one")
                self.remove()

    def remove(self):
        self.solver.remove_constraints(self.ids)
        self.ids = []
        self.activators = []

    def regenerate(self) -> List[int]:
        self.remove()
        return self.generate()
