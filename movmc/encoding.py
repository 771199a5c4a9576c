# ===============================
# Constraint encoder
# Turns an Instance into Boolean decision variables and
# pseudo-Boolean constraints inside a ConstraintSolver.
# ===============================

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from .config import AlgorithmOptions
from .errors import Contradiction
from .models import Allocation, Instance, Mapping, VirtualMachine
from .objectives import (ObjectiveFunction, WastageCoefficients,
                         add_wastage_auxiliary_constraints, build_objective_functions)
from .solver import ConstraintID, ConstraintSolver

logger = logging.getLogger(__name__)


@dataclass
class SolverContext:
    """Solver plus the variables and objective functions of one encoded instance."""
    instance: Instance
    solver: ConstraintSolver
    options: AlgorithmOptions
    rng: np.random.Generator
    pm_vars: List[int] = field(default_factory=list)                 # Shape: [num_pms]
    vm_vars: List[List[int]] = field(default_factory=list)           # Shape: [num_vms][num_pms]
    aux_pm_vars: List[int] = field(default_factory=list)             # Shape: [num_pms]
    plus_vars: List[List[int]] = field(default_factory=list)         # Shape: [num_vms][num_pms]
    minus_vars: List[List[int]] = field(default_factory=list)        # Shape: [num_vms][num_pms]
    objectives: List[List[ObjectiveFunction]] = field(default_factory=list)
    wastage_coefficients: Optional[WastageCoefficients] = None

    def placement_lits(self) -> List[int]:
        return [v for row in self.vm_vars for v in row]

    def model_to_assignment(self) -> np.ndarray:
        value = self.solver.model_value
        x = np.full(self.instance.n_vms, -1, dtype=np.int64)
        for i, row in enumerate(self.vm_vars):
            for j, var in enumerate(row):
                if value(var):
                    x[i] = j
                    break
        return x

    def model_to_allocation(self) -> Allocation:
        value = self.solver.model_value
        instance = self.instance
        return Allocation(Mapping(instance.vms[i], instance.pms[j])
                          for i, row in enumerate(self.vm_vars)
                          for j, var in enumerate(row) if value(var))

    def used_pm_indexes(self) -> Set[int]:
        value = self.solver.model_value
        return {j for j in range(self.instance.n_pms)
                if any(value(row[j]) for row in self.vm_vars)}

    def extract_satisfied(self, undef: List[int]) -> List[int]:
        """Remove the literals satisfied by the current model from undef and return them."""
        value = self.solver.model_value
        satisfied = [l for l in undef if value(l)]
        undef[:] = [l for l in undef if not value(l)]
        return satisfied

    def block_assignment(self, assignment, removable: bool = False) -> Optional[ConstraintID]:
        """Forbid an assignment vector: at least one VM must move."""
        clause = [-self.vm_vars[i][int(j)] for i, j in enumerate(assignment)]
        if removable:
            return self.solver.add_removable_clause(clause)
        self.solver.add_clause(clause)
        return None

    def block_allocation(self, allocation: Allocation, removable: bool = False) -> Optional[ConstraintID]:
        return self.block_assignment(allocation.to_assignment(self.instance), removable)


# -------------------------------------------------
# Base constraints
# -------------------------------------------------

def add_lower_bound_constraints(ctx: SolverContext):
    """Enough PMs must be on to hold the total CPU and memory requirements."""
    instance = ctx.instance
    ctx.solver.add_greater_or_equal(ctx.pm_vars, [pm.cpu for pm in instance.pms],
                                    instance.total_cpu_requirement)
    ctx.solver.add_greater_or_equal(ctx.pm_vars, [pm.memory for pm in instance.pms],
                                    instance.total_mem_requirement)


def add_exactly_one_pm_constraints(ctx: SolverContext):
    instance = ctx.instance
    for i, vm in enumerate(instance.vms):
        allowed = instance.allowed_pm_indexes(vm)
        if not allowed:
            raise Contradiction(f"VM {vm.vm_id} cannot run on any PM")
        ctx.solver.add_exactly([ctx.vm_vars[i][j] for j in allowed], 1)


def add_capacity_constraints(ctx: SolverContext):
    instance = ctx.instance
    cpus = [vm.cpu for vm in instance.vms]
    mems = [vm.memory for vm in instance.vms]
    for j, pm in enumerate(instance.pms):
        lits = [ctx.vm_vars[i][j] for i in range(instance.n_vms)]
        ctx.solver.add_less_or_equal(lits, cpus, pm.cpu)
        ctx.solver.add_less_or_equal(lits, mems, pm.memory)


def add_var_link_constraints(ctx: SolverContext):
    """A PM hosting a VM is on."""
    for j, pm_var in enumerate(ctx.pm_vars):
        for row in ctx.vm_vars:
            ctx.solver.add_clause([-row[j], pm_var])


def add_anti_colocation_constraints(ctx: SolverContext):
    instance = ctx.instance
    for job in instance.jobs:
        anti_coloc = job.anti_colocatable_vms
        if len(anti_coloc) < 2:
            continue
        allowed = set()
        for vm in anti_coloc:
            allowed.update(instance.allowed_pm_indexes(vm))
        if len(anti_coloc) > len(allowed):
            raise Contradiction(f"job {job.job_id} has {len(anti_coloc)} anti-colocatable VMs "
                                f"but only {len(allowed)} PMs allowed to them")
        rows = [ctx.vm_vars[instance.vm_index[vm.vm_id]] for vm in anti_coloc]
        for j in range(instance.n_pms):
            ctx.solver.add_at_most([row[j] for row in rows], 1)


def add_platform_constraints(ctx: SolverContext):
    instance = ctx.instance
    for i, vm in enumerate(instance.vms):
        for pm_id in sorted(vm.forbidden_pms):
            if pm_id in instance.pm_index:
                ctx.solver.add_clause([-ctx.vm_vars[i][instance.pm_index[pm_id]]])


def add_migration_constraint(ctx: SolverContext):
    """Memory of VMs leaving their pre-existing PM stays within the budget."""
    instance = ctx.instance
    if not instance.has_mappings:
        return
    lits, coeffs = [], []
    for mapping in instance.mappings:
        i = instance.vm_index[mapping.vm.vm_id]
        j = instance.pm_index[mapping.pm.pm_id]
        lits.append(-ctx.vm_vars[i][j])
        coeffs.append(mapping.vm.memory)
    ctx.solver.add_less_or_equal(lits, coeffs, instance.max_mig_memory)


# -------------------------------------------------
# Symmetry breaking
# -------------------------------------------------

def _interchangeable(rep: VirtualMachine, vm: VirtualMachine, premapped: Dict[str, int]) -> bool:
    same_constraints = ((rep.job_id == vm.job_id and rep.anti_colocatable == vm.anti_colocatable) or
                        (not rep.anti_colocatable and not vm.anti_colocatable))
    return (same_constraints and
            rep.cpu == vm.cpu and rep.memory == vm.memory and
            premapped.get(rep.vm_id) == premapped.get(vm.vm_id))


def symmetric_groups(instance: Instance) -> List[List[int]]:
    """VM indexes partitioned into groups of interchangeable VMs (compared to the group's first VM)."""
    premapped = instance.premapped_pm_index()
    groups: List[List[int]] = []
    for i, vm in enumerate(instance.vms):
        for group in groups:
            if _interchangeable(instance.vms[group[0]], vm, premapped):
                group.append(i)
                break
        else:
            groups.append([i])
    return groups


def add_symmetry_breaking_constraints(ctx: SolverContext):
    """
    Order interchangeable VMs over the PMs they may both use: the later VM of a
    consecutive pair never takes a PM with a smaller index (nor the same one
    when anti-colocatable).
    """
    instance = ctx.instance
    n_pms = instance.n_pms
    for group in symmetric_groups(instance):
        anti_coloc = instance.vms[group[0]].anti_colocatable
        simplify = anti_coloc
        for a, b in zip(group, group[1:]):
            vm1, vm2 = instance.vms[a], instance.vms[b]
            shared = sorted(set(instance.allowed_pm_indexes(vm1)) & set(instance.allowed_pm_indexes(vm2)))
            simplify = simplify and len(shared) == n_pms
            for k1 in range(len(shared)):
                for k2 in range(k1 + 1):
                    if k2 < k1 or anti_coloc:
                        ctx.solver.add_clause([-ctx.vm_vars[a][shared[k1]], -ctx.vm_vars[b][shared[k2]]])
        if simplify:
            size = len(group)
            for j, i in enumerate(group):
                for k in range(j):
                    ctx.solver.add_clause([-ctx.vm_vars[i][k]])
                for k in range(size - j - 1):
                    ctx.solver.add_clause([-ctx.vm_vars[i][n_pms - k - 1]])


def encode(ctx: SolverContext):
    """Create the decision variables and add the base formula to ctx.solver."""
    instance = ctx.instance
    solver = ctx.solver
    ctx.pm_vars = solver.new_vars(instance.n_pms)
    ctx.vm_vars = [solver.new_vars(instance.n_pms) for _ in range(instance.n_vms)]
    add_lower_bound_constraints(ctx)
    add_exactly_one_pm_constraints(ctx)
    add_capacity_constraints(ctx)
    add_var_link_constraints(ctx)
    add_anti_colocation_constraints(ctx)
    add_platform_constraints(ctx)
    add_migration_constraint(ctx)
    if ctx.options.break_symmetries:
        add_symmetry_breaking_constraints(ctx)
    add_wastage_auxiliary_constraints(ctx)
    logger.debug("encoded %r with %d variables", instance, solver.n_vars)


def build_context(instance: Instance,
                  options: Optional[AlgorithmOptions] = None,
                  rng: Optional[np.random.Generator] = None,
                  solver: Optional[ConstraintSolver] = None,
                  with_objectives: bool = True) -> SolverContext:
    """
    Encode an instance into a fresh solver.

    Raises:
        Contradiction: The base formula is trivially unsatisfiable
    """
    vms = instance.vm_array
    ctx = SolverContext(instance=instance,
                        solver=solver if solver is not None else ConstraintSolver(),
                        options=options if options is not None else AlgorithmOptions(),
                        rng=rng if rng is not None else np.random.default_rng(),
                        wastage_coefficients=WastageCoefficients(vms.cpu, vms.memory))
    encode(ctx)
    if with_objectives:
        ctx.objectives = build_objective_functions(ctx)
    return ctx
