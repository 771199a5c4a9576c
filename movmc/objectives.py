# ===============================
# Objective model
# Energy, wastage and migration as linear functions over solver
# literals. Wastage's absolute value is linearized through a sign
# auxiliary per PM and plus/minus auxiliaries per (VM, PM).
# ===============================

from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Sequence, Tuple

import numpy as np

from . import config

if TYPE_CHECKING:
    from .encoding import SolverContext


@dataclass(frozen=True)
class WeightedLit:
    lit: int
    weight: float


class ObjectiveFunction:
    """
    Linear function sum(coeffs[i] * lits[i]) over solver literals.

    min_value/max_value are the sums of the negative/positive coefficients.
    """

    def __init__(self, lits: Sequence[int], coeffs: Sequence[float]):
        if len(lits) != len(coeffs):
            raise ValueError("literal and coefficient vectors differ in length")
        self.lits: List[int] = [int(l) for l in lits]
        self.coeffs = np.asarray(coeffs, dtype=np.float64)
        self.min_value = float(np.sum(self.coeffs[self.coeffs < 0]))
        self.max_value = float(np.sum(self.coeffs[self.coeffs > 0]))

    def __len__(self) -> int:
        return len(self.lits)

    def __repr__(self) -> str:
        return f"ObjectiveFunction(n={len(self)}, min={self.min_value:.5f}, max={self.max_value:.5f})"

    @property
    def codomain_size(self) -> float:
        return self.max_value - self.min_value

    def as_weighted_lits(self) -> List[WeightedLit]:
        """Positive-weight view: a negative coefficient flips the literal."""
        return [WeightedLit(l, c) if c >= 0 else WeightedLit(-l, -c)
                for l, c in zip(self.lits, self.coeffs)]

    def undef_lits(self) -> List[int]:
        """Literals whose truth makes the function smaller."""
        return [-l if c > 0 else l for l, c in zip(self.lits, self.coeffs) if c != 0]

    def scaled_coeffs(self) -> List[int]:
        return [int(round(c * config.COEFF_PRECISION)) for c in self.coeffs]

    @property
    def scaled_codomain_size(self) -> int:
        scaled = self.scaled_coeffs()
        return sum(abs(c) for c in scaled)

    def value(self, model_value: Callable[[int], bool]) -> float:
        return float(sum(c for l, c in zip(self.lits, self.coeffs) if model_value(l)))

    def scaled_value(self, model_value: Callable[[int], bool]) -> int:
        return sum(c for l, c in zip(self.lits, self.scaled_coeffs()) if model_value(l))

    def restricted(self, excluded_vars: Iterable[int]) -> ObjectiveFunction:
        """Copy without the literals over the given variables (either polarity)."""
        excluded = {abs(v) for v in excluded_vars}
        keep = [i for i, l in enumerate(self.lits) if abs(l) not in excluded]
        return ObjectiveFunction([self.lits[i] for i in keep], self.coeffs[keep])


class WastageCoefficients:
    """Normalized (mem - cpu) and (cpu - mem) requirements per VM, cached per PM type."""

    def __init__(self, vm_cpu: np.ndarray, vm_mem: np.ndarray):
        self._vm_cpu = vm_cpu
        self._vm_mem = vm_mem
        self._cache: Dict[Tuple[int, int], Tuple[np.ndarray, np.ndarray, np.ndarray]] = {}

    def get(self, cpu_cap: int, mem_cap: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Returns (m̂ - ĉ, ĉ - m̂, ĉ + m̂) for every VM."""
        key = (cpu_cap, mem_cap)
        if key not in self._cache:
            norm_cpu = self._vm_cpu / cpu_cap
            norm_mem = self._vm_mem / mem_cap
            self._cache[key] = (norm_mem - norm_cpu, norm_cpu - norm_mem, norm_cpu + norm_mem)
        return self._cache[key]


def add_wastage_auxiliary_constraints(ctx: SolverContext):
    """
    Create aux/plus/minus variables and the constraints tying them to the
    placement variables:

        ¬aux => normalized used memory >= normalized used CPU on the PM
        aux  => normalized used CPU >= normalized used memory
        plus => ¬aux,  minus => aux
        x <=> plus XOR minus
    """
    solver = ctx.solver
    instance = ctx.instance
    vm_cpu = [vm.cpu for vm in instance.vms]
    vm_mem = [vm.memory for vm in instance.vms]
    ctx.aux_pm_vars = solver.new_vars(instance.n_pms)
    ctx.plus_vars = [solver.new_vars(instance.n_pms) for _ in range(instance.n_vms)]
    ctx.minus_vars = [solver.new_vars(instance.n_pms) for _ in range(instance.n_vms)]
    for j, pm in enumerate(instance.pms):
        xs = [ctx.vm_vars[i][j] for i in range(instance.n_vms)]
        aux = ctx.aux_pm_vars[j]
        # (m̂ - ĉ) scaled by cpu_cap * mem_cap is exact over integers
        diff = [m * pm.cpu - c * pm.memory for c, m in zip(vm_cpu, vm_mem)]
        scale = pm.cpu * pm.memory
        solver.add_greater_or_equal(xs + [aux], diff + [scale], 0)
        solver.add_greater_or_equal(xs + [-aux], [-d for d in diff] + [scale], 0)
        for i in range(instance.n_vms):
            x = xs[i]
            plus = ctx.plus_vars[i][j]
            minus = ctx.minus_vars[i][j]
            solver.add_clause([-aux, -plus])
            solver.add_clause([aux, -minus])
            solver.add_clause([-x, -plus, -minus])
            solver.add_clause([-x, plus, minus])
            solver.add_clause([x, -plus])
            solver.add_clause([x, -minus])
            solver.add_clause([-plus, -minus])


def energy_functions(ctx: SolverContext) -> List[ObjectiveFunction]:
    instance = ctx.instance
    lits, coeffs = [], []
    for j, pm in enumerate(instance.pms):
        lits.append(ctx.pm_vars[j])
        coeffs.append(float(pm.idle_power))
        dynamic = pm.max_power - pm.idle_power
        for i, vm in enumerate(instance.vms):
            lits.append(ctx.vm_vars[i][j])
            coeffs.append(dynamic * vm.cpu / pm.cpu)
    return [ObjectiveFunction(lits, coeffs)]


def wastage_functions(ctx: SolverContext) -> List[ObjectiveFunction]:
    """
    Per PM, a numerator function over plus/minus literals and a denominator
    function over placement literals. When denominators are ignored, a single
    function sums the numerators of every PM.
    """
    instance = ctx.instance
    functions = []
    all_lits, all_coeffs = [], []
    for j, pm in enumerate(instance.pms):
        mem_minus_cpu, cpu_minus_mem, cpu_plus_mem = ctx.wastage_coefficients.get(pm.cpu, pm.memory)
        lits, coeffs = [], []
        for i in range(instance.n_vms):
            lits.append(ctx.plus_vars[i][j])
            coeffs.append(mem_minus_cpu[i])
            lits.append(ctx.minus_vars[i][j])
            coeffs.append(cpu_minus_mem[i])
        if ctx.options.ignore_denominators:
            all_lits.extend(lits)
            all_coeffs.extend(coeffs)
        else:
            xs = [ctx.vm_vars[i][j] for i in range(instance.n_vms)]
            functions.append(ObjectiveFunction(lits, coeffs))
            functions.append(ObjectiveFunction(xs, -2.0 * cpu_plus_mem))
    if ctx.options.ignore_denominators:
        functions.append(ObjectiveFunction(all_lits, all_coeffs))
    return functions


def migration_functions(ctx: SolverContext) -> List[ObjectiveFunction]:
    instance = ctx.instance
    lits, coeffs = [], []
    for mapping in instance.mappings:
        i = instance.vm_index[mapping.vm.vm_id]
        j = instance.pm_index[mapping.pm.pm_id]
        lits.append(-ctx.vm_vars[i][j])
        coeffs.append(float(mapping.vm.memory))
    return [ObjectiveFunction(lits, coeffs)]


def build_objective_functions(ctx: SolverContext) -> List[List[ObjectiveFunction]]:
    """Sub-functions per objective: energy, wastage and, with mappings, migration."""
    objectives = [energy_functions(ctx), wastage_functions(ctx)]
    if ctx.instance.has_mappings:
        objectives.append(migration_functions(ctx))
    return objectives
