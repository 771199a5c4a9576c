# ===============================
# Repair and seeding operators
# Constraint-based fix/improve of assignment vectors and bin-packing
# seeds for population-based search.
# ===============================

from __future__ import annotations
import logging
from typing import List, Optional, Sequence, Set

import numpy as np

from . import config
from .archive import ParetoArchive
from .binpacking import BinPacker, PackingPolicy
from .clock import Clock
from .config import AlgorithmOptions
from .encoding import build_context
from .errors import Contradiction
from .evaluation import violating_vm_indexes
from .framework import SearchRun
from .mcs import UndefFormulaBuilder, run_cld
from .models import Instance
from .solver import ConstraintID, SolveStatus

logger = logging.getLogger(__name__)


def default_repair_options() -> AlgorithmOptions:
    return AlgorithmOptions(stratify=True,
                            merged_stratification=True,
                            lit_weight_ratio=config.IMPROVE_LIT_WEIGHT_RATIO,
                            verbose=False)


class MCSRepairer:
    """
    Fix and improve operator over VM assignment vectors.

    The instance is encoded once; every assignment the operator returns from
    the solver is blocked, so later calls never produce it again.

    Args:
        instance: Problem instance
        options: Algorithm switches (stratified merged CLD by default)
        seed: Seed of the random generator
        timeout: Seconds on `clock` after which the operator returns its input unchanged
        clock: Clock measuring elapsed time
        max_conflicts: Conflict budget of a fix() call (None for no budget)
        relax_rate: Probability that a PM's VMs are unfixed by improve()

    Raises:
        Contradiction: The instance is trivially unsatisfiable
    """

    def __init__(self,
                 instance: Instance,
                 options: Optional[AlgorithmOptions] = None,
                 seed: Optional[int] = None,
                 timeout: float = config.NO_TIMEOUT,
                 clock: Optional[Clock] = None,
                 max_conflicts: Optional[int] = config.REPAIR_MAX_CONFLICTS,
                 relax_rate: float = config.RELAX_RATE):
        if not 0.0 <= relax_rate <= 1.0:
            raise ValueError(f"relax_rate must be in [0, 1], got {relax_rate}")
        self.instance = instance
        self.options = options if options is not None else default_repair_options()
        self.rng = np.random.default_rng(seed)
        self.max_conflicts = max_conflicts
        self.relax_rate = relax_rate
        self.ctx = build_context(instance, self.options, self.rng)
        self.run = SearchRun(instance, self.options, self.rng,
                             clock if clock is not None else Clock(), timeout,
                             ParetoArchive(), np.full(instance.n_objectives, np.inf))

    def close(self):
        self.ctx.solver.delete()

    # -------------------------------------------------
    # Assumptions
    # -------------------------------------------------

    def _assumptions(self, assignment: np.ndarray, relaxed: Set[int]) -> List[int]:
        """
        Fix the placement of every VM not in `relaxed`. Only falsified
        placements also fix their plus/minus literals, the others depend on
        the wastage of the hosting PM.
        """
        ctx = self.ctx
        asms = []
        for i, row in enumerate(ctx.vm_vars):
            if i in relaxed:
                continue
            for j, var in enumerate(row):
                if assignment[i] == j:
                    asms.append(var)
                else:
                    asms.extend((-var, -ctx.plus_vars[i][j], -ctx.minus_vars[i][j]))
        return asms

    def _drop_core(self, asms: List[int]) -> bool:
        """
        Remove the unsat-core literals from asms. False if none of them was
        an assumption: the blocked assignments and MCSes leave nothing to find.
        """
        core = set(self.ctx.solver.unsat_core)
        kept = [l for l in asms if l not in core]
        dropped = len(kept) < len(asms)
        asms[:] = kept
        return dropped

    def _as_assignment(self, assignment: Sequence[int]) -> np.ndarray:
        x = np.asarray(assignment, dtype=np.int64)
        if x.shape != (self.instance.n_vms,):
            raise ValueError(f"assignment must have shape ({self.instance.n_vms},), got {x.shape}")
        return x

    # -------------------------------------------------
    # Operators
    # -------------------------------------------------

    def fix(self, assignment: Sequence[int], unfix_violating: bool = True) -> np.ndarray:
        """
        Find a feasible assignment close to `assignment`.

        Every non-violating VM keeps its PM through assumptions; core literals
        are dropped until the solver finds a model.

        Args:
            assignment: PM index per VM
            unfix_violating: Leave violating VMs free from the start

        Returns:
            The repaired assignment, or a copy of the input when the conflict
            budget or the time runs out
        """
        x = self._as_assignment(assignment)
        solver = self.ctx.solver
        relaxed = set(violating_vm_indexes(self.instance, x)) if unfix_violating else set()
        asms = self._assumptions(x, relaxed)
        base_conflicts = solver.conflicts
        while True:
            if self.run.remaining_time() <= 0:
                return x.copy()
            if self.max_conflicts is not None:
                left = self.max_conflicts - (solver.conflicts - base_conflicts)
                if left <= 0:
                    return x.copy()
                solver.set_max_conflicts(left)
            status = self.run.check_sat(solver, asms)
            solver.reset_max_conflicts()
            if status is SolveStatus.UNKNOWN:
                logger.debug("fix stopped after %d conflicts", solver.conflicts - base_conflicts)
                return x.copy()
            if status is SolveStatus.SAT:
                fixed = self.ctx.model_to_assignment()
                try:
                    self.ctx.block_assignment(fixed)
                except Contradiction:
                    logger.debug("every feasible assignment has been produced")
                return fixed
            if not self._drop_core(asms):
                return x.copy()

    def _relaxed_vms(self, x: np.ndarray) -> Set[int]:
        relaxed_pms = np.flatnonzero(self.rng.random(self.instance.n_pms) < self.relax_rate)
        return {int(i) for i in np.flatnonzero(np.isin(x, relaxed_pms))}

    def _undef_formulas(self, asms: Sequence[int]) -> List[List[int]]:
        """Stratified undecided literals over the objective literals not fixed by asms."""
        fixed_vars = {abs(l) for l in asms}
        objectives = [[f.restricted(fixed_vars) for f in functions] for functions in self.ctx.objectives]
        return UndefFormulaBuilder(objectives, self.options, self.rng).build()

    def improve(self, assignment: Sequence[int]) -> List[np.ndarray]:
        """
        Unfix the VMs of randomly chosen PMs and run one stratified CLD pass
        over them; the MCS found is blocked.

        Returns:
            Improved assignments, the last one found first, or a copy of the
            input when no MCS is found
        """
        x = self._as_assignment(assignment)
        solver = self.ctx.solver
        self.run.archive.clear()
        asms = self._assumptions(x, self._relaxed_vms(x))
        to_remove: List[Optional[ConstraintID]] = []
        while True:
            if self.run.remaining_time() <= 0:
                return [x.copy()]
            undef_fmls = self._undef_formulas(asms)
            if not any(undef_fmls):
                return [x.copy()]
            mcs_exists = run_cld(self.run, self.ctx, asms, undef_fmls, to_remove)
            solver.remove_constraints(to_remove)
            to_remove.clear()
            if mcs_exists:
                break
            if solver.status is not SolveStatus.UNSAT or not self._drop_core(asms):
                return [x.copy()]

        mcs = [l for part in undef_fmls for l in part]
        try:
            solver.add_clause(mcs)
        except Contradiction:
            logger.debug("no further improvement exists")
        improved = [entry.assignment.copy() for entry in self.run.archive.get_all_solutions()]
        if not improved:
            return [x.copy()]
        return improved[::-1]

    def mutate(self, assignment: Sequence[int], unfix_violating: bool = True) -> List[np.ndarray]:
        """fix() an infeasible assignment, improve() a feasible one."""
        x = self._as_assignment(assignment)
        if violating_vm_indexes(self.instance, x):
            return [self.fix(x, unfix_violating)]
        return self.improve(x)


# -------------------------------------------------
# Seeding
# -------------------------------------------------

def _fill_leftovers(instance: Instance, x: np.ndarray, leftover_idxs: Sequence[int],
                    rng: np.random.Generator):
    """Place leftover VMs on random allowed PMs, avoiding anti-colocation clashes when possible."""
    vms = instance.vm_array
    placed = x >= 0
    for i in leftover_idxs:
        candidates = np.flatnonzero(vms.allowed[i])
        if vms.anti_colocatable[i]:
            same_job = placed & vms.anti_colocatable & (vms.job == vms.job[i])
            clear = candidates[~np.isin(candidates, x[same_job])]
            if len(clear) > 0:
                candidates = clear
        if len(candidates) == 0:
            candidates = np.arange(instance.n_pms)
        x[i] = int(rng.choice(candidates))
        placed[i] = True


def bin_packing_seeds(instance: Instance,
                      n: int,
                      policy: PackingPolicy = PackingPolicy.FIRST_FIT,
                      rng: Optional[np.random.Generator] = None) -> List[np.ndarray]:
    """
    Initial assignments from bin packing: the first one in decreasing size
    order, the others with shuffled VMs. VMs a packing could not place go to
    random PMs.

    Returns:
        n assignment vectors, shape [num_vms] each
    """
    if n < 0:
        raise ValueError(f"n must be non-negative, got {n}")
    rng = rng if rng is not None else np.random.default_rng()
    packer = BinPacker(instance, policy)
    seeds = []
    for k in range(n):
        result = packer.pack(shuffle_rng=None if k == 0 else rng)
        x = result.allocation.to_assignment(instance)
        leftover = [instance.vm_index[vm.vm_id] for vm in result.leftover_vms]
        _fill_leftovers(instance, x, leftover, rng)
        seeds.append(x)
    return seeds
