# ===============================
# Domain model
# Physical/virtual machines, jobs, mappings and problem instances,
# plus the vectorized views used by evaluation.
# ===============================

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence

import numpy as np


def make_vm_id(job_id: int, index: int) -> str:
    return f"{job_id}-{index}"


@dataclass(frozen=True)
class PhysicalMachine:
    """Individual physical machine"""
    pm_id: int
    cpu: int                   # CPU capacity
    memory: int                # Memory capacity
    idle_power: int            # Power consumption when idle (watts)
    max_power: int             # Power consumption at 100% CPU load (watts)

    def __post_init__(self):
        if self.cpu <= 0 or self.memory <= 0:
            raise ValueError(f"PM {self.pm_id} must have positive capacities")
        if self.idle_power > self.max_power:
            raise ValueError(f"PM {self.pm_id} has idle power above max power")


@dataclass(frozen=True)
class VirtualMachine:
    """Individual VM representation"""
    vm_id: str
    job_id: int
    index: int                 # Position inside the job
    cpu: int                   # CPU requirement
    memory: int                # Memory requirement
    anti_colocatable: bool = False
    forbidden_pms: FrozenSet[int] = frozenset()

    def __post_init__(self):
        if self.cpu <= 0 or self.memory <= 0:
            raise ValueError(f"VM {self.vm_id} must have positive requirements")
        if not isinstance(self.forbidden_pms, frozenset):
            object.__setattr__(self, "forbidden_pms", frozenset(self.forbidden_pms))

    def can_run_on(self, pm: PhysicalMachine) -> bool:
        return pm.pm_id not in self.forbidden_pms


@dataclass
class Job:
    """Ordered group of VMs sharing anti-colocation constraints"""
    job_id: int
    vms: List[VirtualMachine] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.vms)

    def __iter__(self) -> Iterator[VirtualMachine]:
        return iter(self.vms)

    def __getitem__(self, index: int) -> VirtualMachine:
        return self.vms[index]

    @property
    def anti_colocatable_vms(self) -> List[VirtualMachine]:
        return [vm for vm in self.vms if vm.anti_colocatable]


@dataclass(frozen=True)
class Mapping:
    vm: VirtualMachine
    pm: PhysicalMachine


class Allocation:
    """
    Set of VM → PM mappings where every VM appears at most once.

    Iteration order follows insertion order.
    """

    def __init__(self, mappings: Iterable[Mapping] = ()):
        self._by_vm: Dict[str, Mapping] = {}
        for mapping in mappings:
            self.add(mapping)

    def add(self, mapping: Mapping):
        if mapping.vm.vm_id in self._by_vm:
            raise ValueError(f"VM {mapping.vm.vm_id} is mapped more than once")
        self._by_vm[mapping.vm.vm_id] = mapping

    def __len__(self) -> int:
        return len(self._by_vm)

    def __iter__(self) -> Iterator[Mapping]:
        return iter(self._by_vm.values())

    def __contains__(self, vm_id: str) -> bool:
        return vm_id in self._by_vm

    def __eq__(self, other) -> bool:
        if not isinstance(other, Allocation):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def __repr__(self) -> str:
        pairs = ", ".join(f"{vm_id}->{pm_id}" for vm_id, pm_id in self.as_dict().items())
        return f"Allocation({pairs})"

    def pm_of(self, vm_id: str) -> Optional[PhysicalMachine]:
        mapping = self._by_vm.get(vm_id)
        return mapping.pm if mapping is not None else None

    def as_dict(self) -> Dict[str, int]:
        """VM ID → PM ID."""
        return {vm_id: m.pm.pm_id for vm_id, m in self._by_vm.items()}

    def used_pm_ids(self) -> FrozenSet[int]:
        return frozenset(m.pm.pm_id for m in self._by_vm.values())

    def to_assignment(self, instance: Instance) -> np.ndarray:
        """
        Convert to an assignment vector indexed by VM position.

        Unmapped VMs get -1.
        """
        x = np.full(instance.n_vms, -1, dtype=np.int64)
        for vm_id, mapping in self._by_vm.items():
            x[instance.vm_index[vm_id]] = instance.pm_index[mapping.pm.pm_id]
        return x

    @classmethod
    def from_assignment(cls, instance: Instance, assignment: Sequence[int]) -> Allocation:
        return cls(Mapping(instance.vms[i], instance.pms[int(p)])
                   for i, p in enumerate(assignment) if p >= 0)


@dataclass
class MachineArray:
    """Vectorized PM representation"""
    cpu: np.ndarray                 # Shape: [num_pms]
    memory: np.ndarray              # Shape: [num_pms]
    idle_power: np.ndarray          # Shape: [num_pms]
    max_power: np.ndarray           # Shape: [num_pms]


@dataclass
class VMArray:
    """Vectorized VM representation"""
    cpu: np.ndarray                 # Shape: [num_vms]
    memory: np.ndarray              # Shape: [num_vms]
    job: np.ndarray                 # Shape: [num_vms] - job position
    anti_colocatable: np.ndarray    # Shape: [num_vms], dtype=bool
    premapped: np.ndarray           # Shape: [num_vms] - PM index or -1
    allowed: np.ndarray             # Shape: [num_vms, num_pms], dtype=bool


class Instance:
    """
    A VM consolidation problem: machines, jobs, pre-existing mappings and the
    maximum fraction of the total memory capacity that may be migrated.

    Instances are never mutated after construction.
    """

    def __init__(self,
                 pms: Sequence[PhysicalMachine],
                 jobs: Sequence[Job],
                 mappings: Sequence[Mapping] = (),
                 max_mig_percentile: float = 0.0):
        if not 0.0 <= max_mig_percentile <= 1.0:
            raise ValueError(f"max_mig_percentile must be in [0, 1], got {max_mig_percentile}")
        self.pms: List[PhysicalMachine] = list(pms)
        self.jobs: List[Job] = list(jobs)
        self.mappings: List[Mapping] = list(mappings)
        self.max_mig_percentile = float(max_mig_percentile)

        self.vms: List[VirtualMachine] = [vm for job in self.jobs for vm in job]
        self.pm_index: Dict[int, int] = {pm.pm_id: i for i, pm in enumerate(self.pms)}
        self.vm_index: Dict[str, int] = {vm.vm_id: i for i, vm in enumerate(self.vms)}
        if len(self.pm_index) != len(self.pms):
            raise ValueError("duplicate PM IDs")
        if len(self.vm_index) != len(self.vms):
            raise ValueError("duplicate VM IDs")

        seen = set()
        for mapping in self.mappings:
            if mapping.vm.vm_id not in self.vm_index or mapping.pm.pm_id not in self.pm_index:
                raise ValueError(f"mapping {mapping.vm.vm_id}->{mapping.pm.pm_id} is outside the instance")
            if mapping.vm.vm_id in seen:
                raise ValueError(f"VM {mapping.vm.vm_id} has more than one pre-existing mapping")
            seen.add(mapping.vm.vm_id)

        self.total_cpu_requirement = sum(vm.cpu for vm in self.vms)
        self.total_mem_requirement = sum(vm.memory for vm in self.vms)
        self.total_cpu_capacity = sum(pm.cpu for pm in self.pms)
        self.total_mem_capacity = sum(pm.memory for pm in self.pms)
        self.max_mig_memory = int(math.floor(self.total_mem_capacity * self.max_mig_percentile))

        self._pm_array: Optional[MachineArray] = None
        self._vm_array: Optional[VMArray] = None

    def __repr__(self) -> str:
        return (f"Instance(pms={self.n_pms}, jobs={len(self.jobs)}, vms={self.n_vms}, "
                f"mappings={len(self.mappings)}, max_mig={self.max_mig_percentile})")

    @property
    def n_pms(self) -> int:
        return len(self.pms)

    @property
    def n_vms(self) -> int:
        return len(self.vms)

    @property
    def has_mappings(self) -> bool:
        return len(self.mappings) > 0

    @property
    def n_objectives(self) -> int:
        return 3 if self.has_mappings else 2

    def allowed_pm_indexes(self, vm: VirtualMachine) -> List[int]:
        return [i for i, pm in enumerate(self.pms) if vm.can_run_on(pm)]

    def premapped_pm_index(self) -> Dict[str, int]:
        """VM ID → index of its pre-existing PM."""
        return {m.vm.vm_id: self.pm_index[m.pm.pm_id] for m in self.mappings}

    @property
    def pm_array(self) -> MachineArray:
        if self._pm_array is None:
            self._pm_array = MachineArray(
                cpu=np.array([pm.cpu for pm in self.pms], dtype=np.float64),
                memory=np.array([pm.memory for pm in self.pms], dtype=np.float64),
                idle_power=np.array([pm.idle_power for pm in self.pms], dtype=np.float64),
                max_power=np.array([pm.max_power for pm in self.pms], dtype=np.float64),
            )
        return self._pm_array

    @property
    def vm_array(self) -> VMArray:
        if self._vm_array is None:
            premapped = np.full(self.n_vms, -1, dtype=np.int64)
            for vm_id, pm_idx in self.premapped_pm_index().items():
                premapped[self.vm_index[vm_id]] = pm_idx
            allowed = np.ones((self.n_vms, self.n_pms), dtype=bool)
            for i, vm in enumerate(self.vms):
                for pm_id in vm.forbidden_pms:
                    if pm_id in self.pm_index:
                        allowed[i, self.pm_index[pm_id]] = False
            job_pos = {job.job_id: j for j, job in enumerate(self.jobs)}
            self._vm_array = VMArray(
                cpu=np.array([vm.cpu for vm in self.vms], dtype=np.float64),
                memory=np.array([vm.memory for vm in self.vms], dtype=np.float64),
                job=np.array([job_pos[vm.job_id] for vm in self.vms], dtype=np.int64),
                anti_colocatable=np.array([vm.anti_colocatable for vm in self.vms], dtype=bool),
                premapped=premapped,
                allowed=allowed,
            )
        return self._vm_array
