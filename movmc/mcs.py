# ===============================
# Pareto-MCS enumeration
# CLD and LBX over the undecided objective literals, with stratified
# partitions, hash-cell partitioning and diversification paths.
# ===============================

from __future__ import annotations
import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

import numpy as np

from .config import AlgorithmOptions
from .diversification import DiversificationPaths, select_diversification_lits
from .errors import Contradiction, UnexpectedSolverState
from .hashing import HashPartitioner
from .objectives import ObjectiveFunction, WeightedLit
from .solver import ConstraintID, SolveStatus

if TYPE_CHECKING:
    from .encoding import SolverContext
    from .framework import SearchRun

logger = logging.getLogger(__name__)


# -------------------------------------------------
# Stratification
# -------------------------------------------------

def partition_weighted_lits(weighted_lits: Sequence[WeightedLit],
                            npartitions: int = 0,
                            lit_weight_ratio: float = 2.0) -> List[List[int]]:
    """
    Bucket soft literals by decreasing weight.

    A new partition starts, at a change of weight, once the current one is
    large enough: npartitions * size >= total when a partition count is fixed,
    size / distinct weights > lit_weight_ratio otherwise.

    Returns:
        Partitions of undecided literals (negated weighted literals), heaviest first
    """
    ordered = sorted((wl for wl in weighted_lits if wl.weight != 0),
                     key=lambda wl: wl.weight, reverse=True)
    n = len(ordered)
    partitions: List[List[int]] = []
    part: List[int] = []
    nweights = 0
    for i, wl in enumerate(ordered):
        weight_changed = i > 0 and wl.weight != ordered[i - 1].weight
        if npartitions > 0:
            full = npartitions * len(part) >= n
        else:
            full = nweights > 0 and len(part) / nweights > lit_weight_ratio
        if full and weight_changed:
            partitions.append(part)
            part = []
            nweights = 0
        part.append(-wl.lit)
        if nweights == 0 or weight_changed:
            nweights += 1
    if part:
        partitions.append(part)
    return partitions


def roulette_wheel(rng: np.random.Generator, probs: Sequence[float]) -> int:
    total = float(sum(probs))
    r = rng.random() * total
    acc = 0.0
    for idx, p in enumerate(probs):
        acc += p
        if r < acc:
            return idx
    return len(probs) - 1


class UndefFormulaBuilder:
    """
    Builds the list of partitions of undecided soft literals.

    Without stratification a single partition holds, for every objective
    literal, the polarity that lowers the objective. With stratification each
    objective (merged) or sub-function (split) is partitioned once; every build
    interleaves those partition lists by roulette-wheel selection.
    """

    def __init__(self,
                 objectives: Sequence[Sequence[ObjectiveFunction]],
                 options: AlgorithmOptions,
                 rng: np.random.Generator,
                 lit_weight_ratio: Optional[float] = None):
        self.objectives = objectives
        self.options = options
        self.rng = rng
        self.lit_weight_ratio = options.lit_weight_ratio if lit_weight_ratio is None else lit_weight_ratio
        self._partitions: Optional[List[List[List[int]]]] = None
        self._probs: Optional[List[float]] = None

    def _init_stratified(self):
        self._partitions = []
        self._probs = []
        n_obj = len(self.objectives)
        for functions in self.objectives:
            if self.options.merged_stratification:
                weighted = [wl for f in functions for wl in f.as_weighted_lits()]
                self._partitions.append(self._partition(weighted))
                self._probs.append(1.0 / n_obj)
            else:
                for f in functions:
                    self._partitions.append(self._partition(f.as_weighted_lits()))
                    self._probs.append(1.0 / (n_obj * len(functions)))
        for i, parts in enumerate(self._partitions):
            logger.debug("partition list %d: sizes %s", i, [len(p) for p in parts])

    def _partition(self, weighted: Sequence[WeightedLit]) -> List[List[int]]:
        return partition_weighted_lits(weighted, self.options.npartitions, self.lit_weight_ratio)

    def build(self) -> List[List[int]]:
        if not self.options.stratify:
            return [[l for functions in self.objectives for f in functions for l in f.undef_lits()]]
        if self._partitions is None:
            self._init_stratified()
        stacks = [list(reversed(parts)) for parts in self._partitions if parts]
        probs = [p for parts, p in zip(self._partitions, self._probs) if parts]
        undef = []
        while stacks:
            idx = roulette_wheel(self.rng, probs)
            undef.append(list(stacks[idx].pop()))
            if not stacks[idx]:
                del stacks[idx]
                del probs[idx]
        logger.debug("stratification produced %d partitions", len(undef))
        return undef


# -------------------------------------------------
# CLD
# -------------------------------------------------

def run_cld(run: SearchRun,
            ctx: SolverContext,
            asms: List[int],
            undef_fmls: List[List[int]],
            to_remove: List[Optional[ConstraintID]]) -> bool:
    """
    One CLD pass over the partitions in undef_fmls. Literals satisfied by each
    model are moved out of their partition, so on return the union of
    undef_fmls is the MCS.

    Returns:
        True if some model was found (an MCS exists)
    """
    solver = ctx.solver
    options = ctx.options
    mcs_exists = False
    idx = 0
    while idx < len(undef_fmls):
        part = undef_fmls[idx]
        try:
            to_remove.append(solver.add_removable_clause(part))
            if idx < len(undef_fmls) - 1:
                solver.set_max_conflicts(options.part_max_conflicts)
            done = False
            while not done:
                if run.remaining_time() <= 0:
                    return mcs_exists
                status = run.check_sat(solver, asms)
                if status is SolveStatus.UNKNOWN:
                    if run.remaining_time() <= 0 or idx + 1 >= len(undef_fmls):
                        return mcs_exists
                    # Conflict budget exhausted: merge the next partition into this one
                    idx += 1
                    part.extend(undef_fmls[idx])
                    undef_fmls[idx] = []
                    solver.remove_constraint(to_remove.pop())
                    to_remove.append(solver.add_removable_clause(part))
                    if idx == len(undef_fmls) - 1:
                        solver.reset_max_conflicts()
                    logger.debug("partition merged, %d literals", len(part))
                elif status is SolveStatus.SAT:
                    mcs_exists = True
                    run.save_solution(ctx.model_to_allocation())
                    satisfied = ctx.extract_satisfied(part)
                    to_remove.extend(solver.add_removable_conjunction(satisfied))
                    to_remove.append(solver.add_removable_clause(part))
                else:
                    done = True
        except Contradiction:
            to_remove.append(None)
        logger.debug("partition %d done, %d literals left", idx, len(part))
        solver.remove_constraint(to_remove.pop())
        solver.reset_max_conflicts()
        if not options.path_diversification and not options.hash_functions:
            try:
                for lit in part:
                    to_remove.append(solver.add_removable_clause([-lit]))
            except Contradiction:
                break
        idx += 1
    return mcs_exists


def pareto_cld(run: SearchRun, ctx: SolverContext):
    """Enumerate Pareto-MCSes with CLD until optimality is proven or time runs out."""
    solver = ctx.solver
    options = ctx.options
    builder = UndefFormulaBuilder(ctx.objectives, options, ctx.rng)
    undef_fmls = builder.build()
    to_remove: List[Optional[ConstraintID]] = []
    asms: List[int] = []
    hasher = None
    paths = None
    if options.hash_functions:
        hasher = HashPartitioner(solver, ctx.placement_lits(), ctx.rng)
        asms = hasher.generate()
    elif options.path_diversification:
        paths = DiversificationPaths(select_diversification_lits(ctx.objectives))
        asms = paths.next_path()
        run.log(f"c Generating MCS for path {asms}")

    while True:
        run.log("c Computing MCS")
        mcs_exists = run_cld(run, ctx, asms, undef_fmls, to_remove)
        if run.remaining_time() <= 0:
            run.print_timeout()
            return
        if mcs_exists:
            mcs = [l for part in undef_fmls for l in part]
            if (hasher is not None or paths is not None) and set(asms) & set(solver.unsat_core):
                # The cell or path restricted the search: validate the MCS without it
                run.log("c Validating MCS")
                negated = [-a for a in asms]
                asms = []
                try:
                    to_remove.append(solver.add_removable_clause(negated))
                except Contradiction as e:
                    raise UnexpectedSolverState("assumptions cannot be blocked") from e
                run_cld(run, ctx, asms, [mcs], to_remove)
                if run.remaining_time() <= 0:
                    run.print_timeout()
                    return
            solver.remove_constraints(to_remove)
            to_remove.clear()
            try:
                solver.add_clause(mcs)
                undef_fmls = builder.build()
            except Contradiction:
                run.print_optimum()
                return
        elif paths is not None:
            run.log(f"c No MCS for path {asms}, discarding path")
            paths.discard_last()
        elif hasher is None or not set(asms) & set(solver.unsat_core):
            # No MCS even outside the current cell
            run.print_optimum()
            return
        if hasher is not None:
            asms = hasher.regenerate()
        if paths is not None:
            path = paths.next_path()
            if path is None:
                run.print_optimum()
                return
            asms = path
            run.log(f"c Generating MCS for path {asms}")
        solver.remove_constraints(to_remove)
        to_remove.clear()


# -------------------------------------------------
# LBX
# -------------------------------------------------

def pareto_lbx(run: SearchRun, ctx: SolverContext):
    """
    Enumerate Pareto-MCSes with LBX: undecided literals are tested one at a
    time as assumptions.
    """
    solver = ctx.solver
    if ctx.options.stratify:
        raise ValueError("LBX does not support stratification")
    builder = UndefFormulaBuilder(ctx.objectives, ctx.options, ctx.rng)
    undef = builder.build()[0]
    mcs: List[int] = []
    asms: List[int] = []
    to_remove: List[Optional[ConstraintID]] = []
    while True:
        run.log("c Computing mapping")
        status = run.check_sat(solver, asms)
        if status is SolveStatus.UNKNOWN:
            run.print_timeout()
            return
        if status is SolveStatus.SAT:
            run.save_solution(ctx.model_to_allocation())
            satisfied = ctx.extract_satisfied(undef) + asms
            to_remove.extend(solver.add_removable_conjunction(satisfied))
        elif not asms:
            run.print_optimum()
            return
        else:
            to_remove.append(solver.add_removable_clause([-asms[0]]))
            mcs.append(asms[0])
        if undef:
            asms = [undef.pop()]
        else:
            run.log("c MCS computed, generating another one")
            solver.remove_constraints(to_remove)
            to_remove.clear()
            asms = []
            try:
                solver.add_clause(mcs)
            except Contradiction:
                run.print_optimum()
                return
            undef = builder.build()[0]
            mcs = []
