"""
Strategy functions.

Each function receives the shared SearchRun, saves every solution it finds
through it and returns on optimality, exhaustion or timeout.
"""

from __future__ import annotations
import logging
from typing import TYPE_CHECKING, List, Optional

from .binpacking import BinPacker, PackingPolicy
from .errors import Contradiction
from .hashing import HashPartitioner, enumeration_threshold
from .mcs import pareto_cld, pareto_lbx
from .objectives import ObjectiveFunction
from .solver import ConstraintID, SolveStatus

if TYPE_CHECKING:
    from .framework import SearchRun

logger = logging.getLogger(__name__)


# -------------------------------------------------
# Bin packing
# -------------------------------------------------

def _run_bin_packing(run: SearchRun, policy: PackingPolicy):
    result = BinPacker(run.instance, policy).pack(remaining_time=run.remaining_time)
    if result.is_partial:
        run.log(f"c {policy.value} failed to place {len(result.leftover_vms)} VMs")
        return
    if not run.save_solution(result.allocation):
        run.log(f"c {policy.value} produced an infeasible allocation")
        return
    run.log(f"c Used PMs: {result.n_used_pms}")


def run_best_fit(run: SearchRun):
    _run_bin_packing(run, PackingPolicy.BEST_FIT)


def run_first_fit(run: SearchRun):
    _run_bin_packing(run, PackingPolicy.FIRST_FIT)


# -------------------------------------------------
# Linear search on the number of PMs
# -------------------------------------------------

def run_linear_search(run: SearchRun):
    """Minimize the number of PMs switched on, tightening an at-most bound after each solution."""
    ctx = run.build_context(with_objectives=False)
    if ctx is None:
        return
    solver = ctx.solver
    while True:
        run.log("c Computing mapping")
        status = run.check_sat(solver)
        if status is SolveStatus.UNKNOWN:
            run.print_timeout()
            return
        if status is SolveStatus.UNSAT:
            run.print_optimum()
            return
        ub = len(ctx.used_pm_indexes())
        run.log(f"c Used PMs: {ub}")
        run.save_solution(ctx.model_to_allocation())
        try:
            solver.add_at_most(ctx.pm_vars, ub - 1)
        except Contradiction:
            run.print_optimum()
            return


# -------------------------------------------------
# Guided improvement
# -------------------------------------------------

def _add_improvement_constraints(ctx, functions: List[ObjectiveFunction],
                                 values: List[int], to_remove: List[Optional[ConstraintID]]):
    """
    Removable f <= value for each function, plus a hard requirement that some
    function strictly improves on its value.
    """
    solver = ctx.solver
    for f, value in zip(functions, values):
        to_remove.append(solver.add_removable_less_or_equal(f.lits, f.scaled_coeffs(), value))
    or_lits = []
    for f, value in zip(functions, values):
        relax = solver.new_var()
        solver.add_less(f.lits + [relax], f.scaled_coeffs() + [-(f.scaled_codomain_size + 1)], value)
        or_lits.append(-relax)
    solver.add_clause(or_lits)


def run_gia(run: SearchRun):
    """
    Guided improvement: after each solution, search for one dominating it;
    when none exists the last solution is Pareto optimal and the dominance
    constraints are dropped.
    """
    ctx = run.build_context()
    if ctx is None:
        return
    solver = ctx.solver
    functions = [f for obj in ctx.objectives for f in obj]
    threshold = enumeration_threshold()
    to_remove: List[Optional[ConstraintID]] = []
    hasher = None
    asms: List[int] = []
    if run.options.hash_functions:
        hasher = HashPartitioner(solver, ctx.placement_lits(), ctx.rng)
        asms = hasher.generate()
    nsols_in_cell = 0
    run.log("c Searching for a Pareto optimal solution")
    while True:
        status = run.check_sat(solver, asms)
        if status is SolveStatus.UNKNOWN:
            run.print_timeout()
            return
        if status is SolveStatus.SAT:
            nsols_in_cell += 1
            run.save_solution(ctx.model_to_allocation())
            values = [f.scaled_value(solver.model_value) for f in functions]
            try:
                _add_improvement_constraints(ctx, functions, values, to_remove)
            except Contradiction:
                solver.remove_constraints(to_remove)
                to_remove.clear()
                run.log("c Searching for another Pareto optimal solution")
        elif to_remove:
            solver.remove_constraints(to_remove)
            to_remove.clear()
            run.print_elapsed_time()
            run.log("c Searching for another Pareto optimal solution")
        elif hasher is None or not set(asms) & set(solver.unsat_core):
            run.print_optimum()
            return
        else:
            nsols_in_cell = threshold
        if hasher is not None and nsols_in_cell >= threshold:
            asms = hasher.regenerate()
            nsols_in_cell = 0


# -------------------------------------------------
# Enumeration inside hash cells
# -------------------------------------------------

def run_hash_enumeration(run: SearchRun):
    """Enumerate solutions cell by cell, blocking each one found."""
    ctx = run.build_context(with_objectives=False)
    if ctx is None:
        return
    solver = ctx.solver
    threshold = enumeration_threshold()
    hasher = HashPartitioner(solver, ctx.placement_lits(), ctx.rng)
    asms = hasher.generate()
    nsols_in_cell = 0
    while True:
        status = run.check_sat(solver, asms)
        if status is SolveStatus.UNKNOWN:
            run.print_timeout()
            return
        if status is SolveStatus.SAT:
            nsols_in_cell += 1
            run.save_solution(ctx.model_to_allocation())
            try:
                ctx.block_assignment(ctx.model_to_assignment())
            except Contradiction:
                run.log("c All solutions enumerated")
                return
        elif not set(asms) & set(solver.unsat_core):
            run.log("c All solutions enumerated")
            return
        if status is SolveStatus.UNSAT or nsols_in_cell >= threshold:
            asms = hasher.regenerate()
            nsols_in_cell = 0


# -------------------------------------------------
# MCS enumeration on the number of PMs
# -------------------------------------------------

def run_mcs(run: SearchRun):
    """
    Enumerate MCSes over the soft literals ¬pm, keeping allocations that use
    fewer PMs than the best so far.
    """
    ctx = run.build_context(with_objectives=False)
    if ctx is None:
        return
    solver = ctx.solver
    ub = ctx.instance.n_pms + 1
    undef = [-v for v in ctx.pm_vars]
    to_remove: List[Optional[ConstraintID]] = []
    hasher = None
    hash_asms: List[int] = []
    if run.options.hash_functions:
        hasher = HashPartitioner(solver, ctx.placement_lits(), ctx.rng)
        hash_asms = hasher.generate()
    mcs_exists = False
    while True:
        next_mcs = False
        run.log("c Computing mapping")
        status = run.check_sat(solver, hash_asms)
        if status is SolveStatus.UNKNOWN:
            run.print_timeout()
            return
        if status is SolveStatus.SAT:
            mcs_exists = True
            used = len(ctx.used_pm_indexes())
            if used < ub:
                ub = used
                run.log(f"c Used PMs: {ub}")
                run.save_solution(ctx.model_to_allocation())
            satisfied = ctx.extract_satisfied(undef)
            try:
                to_remove.extend(solver.add_removable_conjunction(satisfied))
                to_remove.append(solver.add_removable_clause(undef))
            except Contradiction:
                next_mcs = True
        elif not mcs_exists:
            run.print_optimum()
            return
        elif hash_asms and set(hash_asms) & set(solver.unsat_core):
            run.log("c Removing hash function")
            hasher.remove()
            hash_asms = []
        else:
            hash_asms = []
            next_mcs = True
        if mcs_exists and next_mcs:
            run.log("c MCS computed, generating another one")
            mcs_exists = False
            solver.remove_constraints(to_remove)
            to_remove.clear()
            try:
                solver.add_clause(undef)
            except Contradiction:
                run.print_optimum()
                return
            undef = [-v for v in ctx.pm_vars]
            if hasher is not None:
                hash_asms = hasher.regenerate()


# -------------------------------------------------
# Pareto-MCS enumeration
# -------------------------------------------------

def run_pareto_cld(run: SearchRun):
    ctx = run.build_context()
    if ctx is not None:
        pareto_cld(run, ctx)


def run_pareto_lbx(run: SearchRun):
    ctx = run.build_context()
    if ctx is not None:
        pareto_lbx(run, ctx)
