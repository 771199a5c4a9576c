"""
Incremental constraint solver over python-sat.

Pseudo-Boolean and cardinality constraints are encoded to CNF with
``pysat.pb.PBEnc`` / ``pysat.card.CardEnc``. Removable constraints are
guarded by a fresh selector literal that is assumed on every solve call;
removing the constraint permanently falsifies its selector.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pysat.card import CardEnc
from pysat.formula import IDPool
from pysat.pb import PBEnc
from pysat.solvers import Solver

from . import config
from .errors import Contradiction

logger = logging.getLogger(__name__)

Clause = List[int]


class SolveStatus(Enum):
    SAT = "sat"
    UNSAT = "unsat"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConstraintID:
    """Handle of a removable constraint."""
    selector: int


def _normalize_leq(lits: Sequence[int], coeffs: Sequence[int], rhs: int) -> Tuple[List[int], List[int], int]:
    """
    Rewrite sum(coeffs * lits) <= rhs so that every weight is a positive
    integer and every variable occurs once.

    A negative term c*l becomes -c*(-l) with rhs - c, and a pair w1*l + w2*(-l)
    becomes w2 + (w1 - w2)*l.
    """
    if len(lits) != len(coeffs):
        raise ValueError("literal and coefficient vectors differ in length")
    weights: Dict[int, int] = {}
    for lit, c in zip(lits, coeffs):
        c = int(c)
        if c == 0:
            continue
        if c < 0:
            lit, c, rhs = -lit, -c, rhs - c
        weights[lit] = weights.get(lit, 0) + c
    for lit in list(weights):
        if lit > 0 and -lit in weights:
            common = min(weights[lit], weights[-lit])
            rhs -= common
            for l in (lit, -lit):
                weights[l] -= common
                if weights[l] == 0:
                    del weights[l]
    return list(weights), list(weights.values()), rhs


class ConstraintSolver:
    """
    Thin stateful wrapper around a python-sat solver.

    Hard constraints raise Contradiction when they are trivially
    unsatisfiable: an empty clause, an unreachable PB/cardinality bound, or a
    unit clause opposite to a known unit.
    """

    def __init__(self, name: str = config.SOLVER_NAME):
        self._solver = Solver(name=name)
        self._pool = IDPool()
        self._units = set()
        self._selectors = set()
        self._active: Dict[int, None] = {}      # Ordered set of active selectors
        self._max_conflicts: Optional[int] = None
        self._timeout: Optional[float] = None
        self._status: Optional[SolveStatus] = None
        self._model: List[int] = []
        self._core: List[int] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.delete()

    def delete(self):
        if self._solver is not None:
            self._solver.delete()
            self._solver = None

    # -------------------------------------------------
    # Variables
    # -------------------------------------------------

    def new_var(self) -> int:
        return self._pool.id()

    def new_vars(self, n: int) -> List[int]:
        return [self._pool.id() for _ in range(n)]

    @property
    def n_vars(self) -> int:
        return self._pool.top

    # -------------------------------------------------
    # CNF builders (return clauses, add nothing)
    # -------------------------------------------------

    def _at_most_clauses(self, lits: Sequence[int], k: int) -> List[Clause]:
        lits = list(lits)
        if k < 0:
            raise Contradiction(f"at-most-{k} constraint")
        if k >= len(lits):
            return []
        if k == 0:
            return [[-l] for l in lits]
        return CardEnc.atmost(lits=lits, bound=k, vpool=self._pool,
                              encoding=config.CARD_ENCODING).clauses

    def _at_least_clauses(self, lits: Sequence[int], k: int) -> List[Clause]:
        lits = list(lits)
        if k <= 0:
            return []
        if k > len(lits):
            raise Contradiction(f"at-least-{k} constraint over {len(lits)} literals")
        if k == 1:
            return [lits]
        if k == len(lits):
            return [[l] for l in lits]
        return CardEnc.atleast(lits=lits, bound=k, vpool=self._pool,
                               encoding=config.CARD_ENCODING).clauses

    def _exactly_clauses(self, lits: Sequence[int], k: int) -> List[Clause]:
        return self._at_least_clauses(lits, k) + self._at_most_clauses(lits, k)

    def _leq_clauses(self, lits: Sequence[int], coeffs: Sequence[int], rhs: int) -> List[Clause]:
        lits, weights, rhs = _normalize_leq(lits, coeffs, int(rhs))
        if rhs < 0:
            raise Contradiction("PB constraint bound is unreachable")
        if sum(weights) <= rhs:
            return []
        # Literals heavier than the bound are forced false
        clauses = [[-l] for l, w in zip(lits, weights) if w > rhs]
        kept = [(l, w) for l, w in zip(lits, weights) if w <= rhs]
        kept_lits = [l for l, _ in kept]
        kept_weights = [w for _, w in kept]
        if sum(kept_weights) <= rhs:
            return clauses
        if all(w == 1 for w in kept_weights):
            return clauses + self._at_most_clauses(kept_lits, rhs)
        return clauses + PBEnc.leq(lits=kept_lits, weights=kept_weights, bound=rhs,
                                   vpool=self._pool, encoding=config.PB_ENCODING).clauses

    def _geq_clauses(self, lits: Sequence[int], coeffs: Sequence[int], rhs: int) -> List[Clause]:
        return self._leq_clauses(lits, [-int(c) for c in coeffs], -int(rhs))

    def _xor_output(self, lits: List[int], clauses: List[Clause]) -> int:
        """Tseitin output variable equivalent to the parity of lits (balanced split)."""
        if len(lits) == 1:
            return lits[0]
        mid = len(lits) // 2
        left = self._xor_output(lits[:mid], clauses)
        right = self._xor_output(lits[mid:], clauses)
        out = self.new_var()
        clauses.append([-left, right, out])
        clauses.append([left, -right, out])
        clauses.append([left, right, -out])
        clauses.append([-left, -right, -out])
        return out

    def _xor_clauses(self, lits: Sequence[int], rhs: bool, activator: Optional[int] = None) -> List[Clause]:
        lits = list(lits)
        clauses: List[Clause] = []
        if not lits:
            if not rhs:
                return clauses
            activation: Clause = []
        else:
            out = self._xor_output(lits, clauses)
            activation = [out if rhs else -out]
        if activator is not None:
            activation.append(-activator)
        clauses.append(activation)
        return clauses

    # -------------------------------------------------
    # Hard constraints
    # -------------------------------------------------

    def add_clause(self, lits: Iterable[int]):
        clause = list(lits)
        if not clause:
            raise Contradiction("empty clause")
        if len(clause) == 1:
            lit = clause[0]
            if -lit in self._units:
                raise Contradiction(f"unit clause {lit} conflicts with {-lit}")
            self._units.add(lit)
        self._solver.add_clause(clause)

    def _add_clauses(self, clauses: List[Clause]):
        for clause in clauses:
            self.add_clause(clause)

    def add_at_most(self, lits: Sequence[int], k: int):
        self._add_clauses(self._at_most_clauses(lits, k))

    def add_at_least(self, lits: Sequence[int], k: int):
        self._add_clauses(self._at_least_clauses(lits, k))

    def add_exactly(self, lits: Sequence[int], k: int):
        self._add_clauses(self._exactly_clauses(lits, k))

    def add_less_or_equal(self, lits: Sequence[int], coeffs: Sequence[int], rhs: int):
        self._add_clauses(self._leq_clauses(lits, coeffs, rhs))

    def add_greater_or_equal(self, lits: Sequence[int], coeffs: Sequence[int], rhs: int):
        self._add_clauses(self._geq_clauses(lits, coeffs, rhs))

    def add_less(self, lits: Sequence[int], coeffs: Sequence[int], rhs: int):
        self._add_clauses(self._leq_clauses(lits, coeffs, int(rhs) - 1))

    def add_xor(self, lits: Sequence[int], rhs: bool):
        self._add_clauses(self._xor_clauses(lits, rhs))

    # -------------------------------------------------
    # Removable constraints
    # -------------------------------------------------

    def _add_guarded(self, clauses: List[Clause]) -> ConstraintID:
        for clause in clauses:
            if not clause:
                raise Contradiction("empty clause")
            if len(clause) == 1 and -clause[0] in self._units:
                raise Contradiction(f"unit clause {clause[0]} conflicts with {-clause[0]}")
        selector = self.new_var()
        self._selectors.add(selector)
        for clause in clauses:
            self._solver.add_clause(clause + [-selector])
        self._active[selector] = None
        return ConstraintID(selector)

    def add_removable_clause(self, lits: Iterable[int]) -> ConstraintID:
        return self._add_guarded([list(lits)])

    def add_removable_conjunction(self, lits: Iterable[int]) -> List[ConstraintID]:
        return [self.add_removable_clause([l]) for l in lits]

    def add_removable_at_most(self, lits: Sequence[int], k: int) -> ConstraintID:
        return self._add_guarded(self._at_most_clauses(lits, k))

    def add_removable_at_least(self, lits: Sequence[int], k: int) -> ConstraintID:
        return self._add_guarded(self._at_least_clauses(lits, k))

    def add_removable_exactly(self, lits: Sequence[int], k: int) -> ConstraintID:
        return self._add_guarded(self._exactly_clauses(lits, k))

    def add_removable_less_or_equal(self, lits: Sequence[int], coeffs: Sequence[int], rhs: int) -> ConstraintID:
        return self._add_guarded(self._leq_clauses(lits, coeffs, rhs))

    def add_removable_greater_or_equal(self, lits: Sequence[int], coeffs: Sequence[int], rhs: int) -> ConstraintID:
        return self._add_guarded(self._geq_clauses(lits, coeffs, rhs))

    def add_removable_less(self, lits: Sequence[int], coeffs: Sequence[int], rhs: int) -> ConstraintID:
        return self._add_guarded(self._leq_clauses(lits, coeffs, int(rhs) - 1))

    def add_removable_xor(self, lits: Sequence[int], rhs: bool, activator: Optional[int] = None) -> ConstraintID:
        return self._add_guarded(self._xor_clauses(lits, rhs, activator))

    def remove_constraint(self, cid: Optional[ConstraintID]):
        if cid is None or cid.selector not in self._active:
            return
        del self._active[cid.selector]
        self._solver.add_clause([-cid.selector])

    def remove_constraints(self, cids: Iterable[Optional[ConstraintID]]):
        for cid in cids:
            self.remove_constraint(cid)

    # -------------------------------------------------
    # Solving
    # -------------------------------------------------

    def set_max_conflicts(self, n: int):
        self._max_conflicts = int(n)

    def reset_max_conflicts(self):
        self._max_conflicts = None

    def set_timeout(self, seconds: Optional[float]):
        """Interrupt subsequent solve calls after `seconds` (None disables)."""
        self._timeout = seconds

    @property
    def conflicts(self) -> int:
        stats = self._solver.accum_stats() or {}
        return int(stats.get('conflicts', 0))

    def solve(self, assumptions: Iterable[int] = ()) -> SolveStatus:
        asms = list(self._active) + list(assumptions)
        self._solver.conf_budget(self._max_conflicts if self._max_conflicts is not None else -1)
        timer = None
        if self._timeout is not None:
            timer = threading.Timer(max(self._timeout, 0.0), self._solver.interrupt)
            timer.start()
        try:
            result = self._solver.solve_limited(assumptions=asms, expect_interrupt=timer is not None)
        finally:
            if timer is not None:
                timer.cancel()
                self._solver.clear_interrupt()

        self._model = []
        self._core = []
        if result is None:
            self._status = SolveStatus.UNKNOWN
        elif result:
            self._status = SolveStatus.SAT
            self._model = self._solver.get_model() or []
        else:
            self._status = SolveStatus.UNSAT
            core = self._solver.get_core() or []
            self._core = [l for l in core if abs(l) not in self._selectors]
        logger.debug("solve: %d assumptions -> %s", len(asms), self._status.value)
        return self._status

    @property
    def status(self) -> Optional[SolveStatus]:
        return self._status

    @property
    def is_solved(self) -> bool:
        return self._status in (SolveStatus.SAT, SolveStatus.UNSAT)

    @property
    def is_satisfiable(self) -> bool:
        return self._status is SolveStatus.SAT

    def model_value(self, lit: int) -> bool:
        """Truth value of a literal in the last model; unassigned variables are false."""
        var = abs(lit)
        value = var <= len(self._model) and self._model[var - 1] > 0
        return value if lit > 0 else not value

    @property
    def model(self) -> List[int]:
        return list(self._model)

    @property
    def unsat_core(self) -> List[int]:
        """Assumption literals (selectors excluded) responsible for the last UNSAT answer."""
        return list(self._core)
