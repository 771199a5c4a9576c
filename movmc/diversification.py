"""
Diversification paths.

A path is a sequence of decisions over a small set of high-impact literals.
Paths are generated depth-first with an explicit stack of frames
``[lit, both_generated]``: the leaf decision is flipped before backtracking,
so consecutive searches start in different regions of the objective space.
Once every path has been generated, the stored ones are revisited round-robin.
"""

from __future__ import annotations
from typing import List, Optional, Sequence

from . import config
from .objectives import ObjectiveFunction


def select_diversification_lits(objectives: Sequence[Sequence[ObjectiveFunction]],
                                vars_per_objective: int = config.VARS_PER_OBJECTIVE) -> List[int]:
    """
    Pick, per objective, the literals with the largest coefficients (no variable
    used twice) and interleave them across objectives, lightest pick first.
    """
    used_vars = set()
    per_objective = []
    for functions in objectives:
        terms = sorted(((l, c) for f in functions for l, c in zip(f.lits, f.coeffs)),
                       key=lambda term: term[1], reverse=True)
        chosen = []
        for lit, _ in terms:
            if len(chosen) == vars_per_objective:
                break
            if abs(lit) not in used_vars:
                used_vars.add(abs(lit))
                chosen.append(lit)
        per_objective.append(chosen)
    div_lits = []
    while any(per_objective):
        for chosen in per_objective:
            if chosen:
                div_lits.append(chosen.pop())
    return div_lits


class DiversificationPaths:
    def __init__(self, div_lits: Sequence[int]):
        if not div_lits:
            raise ValueError("diversification needs at least one literal")
        self.div_lits = list(div_lits)
        self._stack: List[list] = []           # Frames [lit, both_generated]
        self._paths: List[List[int]] = []
        self._all_generated = False
        self._idx = -1

    @property
    def all_generated(self) -> bool:
        return self._all_generated

    @property
    def n_paths(self) -> int:
        return len(self._paths)

    def _backtrack(self):
        while self._stack and self._stack[-1][1]:
            self._stack.pop()
        if not self._stack:
            self._all_generated = True

    def next_path(self) -> Optional[List[int]]:
        """Next path as a list of assumption literals, or None when none are left."""
        if not self._all_generated and self._stack:
            self._backtrack()
        if self._all_generated:
            if not self._paths:
                return None
            self._idx = (self._idx + 1) % len(self._paths)
            return list(self._paths[self._idx])
        if not self._stack:
            self._stack.append([-self.div_lits[0], False])
        else:
            frame = self._stack[-1]
            frame[0] = -frame[0]
            frame[1] = True
        while len(self._stack) < len(self.div_lits):
            self._stack.append([-self.div_lits[len(self._stack)], False])
        path = [frame[0] for frame in self._stack]
        self._paths.append(path)
        return list(path)

    def discard_last(self):
        """Forget the path most recently returned (its region holds no solutions)."""
        if not self._paths:
            return
        if self._all_generated:
            self._paths[self._idx] = self._paths[-1]
            self._paths.pop()
            self._idx = 0 if self._idx >= len(self._paths) else self._idx - 1
        else:
            self._paths.pop()
