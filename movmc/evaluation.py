# -------------------------------------------------
# Vectorized evaluation of assignment vectors
# -------------------------------------------------

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from . import config
from .models import Allocation, Instance


@dataclass
class Evaluation:
    energy: float
    wastage: float
    migration: float
    violation: float
    objectives: np.ndarray          # Shape: [n_objectives]

    @property
    def feasible(self) -> bool:
        return self.violation == 0


def _usage(instance: Instance, x: np.ndarray):
    """Used CPU and memory per PM, shape [num_pms] each."""
    vms = instance.vm_array
    used_cpu = np.bincount(x, weights=vms.cpu, minlength=instance.n_pms)
    used_mem = np.bincount(x, weights=vms.memory, minlength=instance.n_pms)
    return used_cpu, used_mem


def _as_assignment(instance: Instance, assignment) -> np.ndarray:
    if isinstance(assignment, Allocation):
        x = assignment.to_assignment(instance)
    else:
        x = np.asarray(assignment, dtype=np.int64)
    if x.shape != (instance.n_vms,):
        raise ValueError(f"assignment must have shape ({instance.n_vms},), got {x.shape}")
    if np.any(x < 0) or np.any(x >= instance.n_pms):
        raise ValueError("assignment must place every VM on a PM of the instance")
    return x


def compute_energy(instance: Instance, used_cpu: np.ndarray) -> float:
    """
    Energy = sum over active PMs of idle + (max - idle) * cpu utilization.
    PMs with no CPU usage are switched off.
    """
    pms = instance.pm_array
    active = used_cpu > 0
    powers = pms.idle_power + (pms.max_power - pms.idle_power) * used_cpu / pms.cpu
    return float(np.sum(powers[active]))


def compute_wastage(instance: Instance,
                    used_cpu: np.ndarray,
                    used_mem: np.ndarray,
                    include_denominators: bool = True) -> float:
    """
    Wastage = sum over used PMs of |leftover cpu - leftover mem| (normalized),
    optionally divided by 2 * (normalized used cpu + normalized used mem).
    """
    pms = instance.pm_array
    active = (used_cpu > 0) | (used_mem > 0)
    norm_cpu = used_cpu[active] / pms.cpu[active]
    norm_mem = used_mem[active] / pms.memory[active]
    diff = np.abs((1.0 - norm_cpu) - (1.0 - norm_mem))
    if include_denominators:
        return float(np.sum((diff + config.WASTAGE_EPSILON) / (2.0 * (norm_cpu + norm_mem))))
    return float(np.sum(diff))


def compute_migration(instance: Instance, x: np.ndarray) -> float:
    """Memory of pre-mapped VMs that left their original PM."""
    vms = instance.vm_array
    moved = (vms.premapped >= 0) & (x != vms.premapped)
    return float(np.sum(vms.memory[moved]))


def _anti_colocation_clashes(instance: Instance, x: np.ndarray) -> np.ndarray:
    """Boolean mask of anti-colocatable VMs sharing a PM with an earlier VM of their job."""
    vms = instance.vm_array
    clash = np.zeros(instance.n_vms, dtype=bool)
    seen = set()
    for i in np.flatnonzero(vms.anti_colocatable):
        key = (int(vms.job[i]), int(x[i]))
        if key in seen:
            clash[i] = True
        seen.add(key)
    return clash


def compute_violation(instance: Instance, x: np.ndarray, used_cpu: np.ndarray,
                      used_mem: np.ndarray, migration: float) -> float:
    pms = instance.pm_array
    vms = instance.vm_array
    violation = float(np.sum(np.maximum(used_cpu - pms.cpu, 0.0)))
    violation += float(np.sum(np.maximum(used_mem - pms.memory, 0.0)))
    violation += float(np.count_nonzero(_anti_colocation_clashes(instance, x)))
    violation += float(np.count_nonzero(~vms.allowed[np.arange(instance.n_vms), x]))
    if instance.has_mappings:
        violation += max(migration - instance.max_mig_memory, 0.0)
    return violation


def evaluate(instance: Instance, assignment, include_denominators: bool = True) -> Evaluation:
    """
    Evaluate an assignment vector (or a complete Allocation).

    Args:
        instance: Problem instance
        assignment: PM index per VM, shape [num_vms]
        include_denominators: Use the ratio form of the wastage objective

    Returns:
        Evaluation with objective values and total constraint violation
    """
    x = _as_assignment(instance, assignment)
    used_cpu, used_mem = _usage(instance, x)
    energy = compute_energy(instance, used_cpu)
    wastage = compute_wastage(instance, used_cpu, used_mem, include_denominators)
    migration = compute_migration(instance, x)
    violation = compute_violation(instance, x, used_cpu, used_mem, migration)
    values = [energy, wastage]
    if instance.has_mappings:
        values.append(migration)
    return Evaluation(energy=energy,
                      wastage=wastage,
                      migration=migration,
                      violation=violation,
                      objectives=np.array(values, dtype=np.float64))


def violating_vm_indexes(instance: Instance, assignment: Sequence[int]) -> List[int]:
    """
    Indexes of VMs involved in some violation: every VM on an over-committed
    PM, every VM of an anti-colocation clash, forbidden placements and, when the migration
    budget is exceeded, every migrated VM.
    """
    x = _as_assignment(instance, assignment)
    pms = instance.pm_array
    vms = instance.vm_array
    used_cpu, used_mem = _usage(instance, x)
    overloaded = (used_cpu > pms.cpu) | (used_mem > pms.memory)
    violating = overloaded[x]
    clash = _anti_colocation_clashes(instance, x)
    if np.any(clash):
        # Every anti-colocatable VM of the job on a shared PM
        keys = vms.job * instance.n_pms + x
        violating |= vms.anti_colocatable & np.isin(keys, keys[clash])
    violating |= ~vms.allowed[np.arange(instance.n_vms), x]
    if instance.has_mappings and compute_migration(instance, x) > instance.max_mig_memory:
        violating |= (vms.premapped >= 0) & (x != vms.premapped)
    return [int(i) for i in np.flatnonzero(violating)]
