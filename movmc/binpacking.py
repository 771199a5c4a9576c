# ===============================
# Bin-packing heuristics
# Best-fit / first-fit decreasing placement with a greedy migration
# phase that empties lightly used PMs.
# ===============================

from __future__ import annotations
import heapq
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .models import Allocation, Instance, Mapping, PhysicalMachine, VirtualMachine

logger = logging.getLogger(__name__)


class PackingPolicy(Enum):
    BEST_FIT = "best-fit"
    FIRST_FIT = "first-fit"


def capacity_key(machine) -> Tuple[int, int]:
    """Decreasing CPU, then decreasing memory."""
    return (-machine.cpu, -machine.memory)


def vm_order_key(vm: VirtualMachine) -> tuple:
    return capacity_key(vm) + (vm.job_id, vm.index)


class UsageInfo:
    """Resources used on a PM by the VMs placed on it."""

    __slots__ = ("pm", "vms", "used_cpu", "used_mem", "anti_coloc_jobs", "valid")

    def __init__(self, pm: PhysicalMachine):
        self.pm = pm
        self.vms: List[VirtualMachine] = []
        self.used_cpu = 0
        self.used_mem = 0
        self.anti_coloc_jobs: Set[int] = set()
        self.valid = True

    def copy(self) -> UsageInfo:
        other = UsageInfo(self.pm)
        other.vms = list(self.vms)
        other.used_cpu = self.used_cpu
        other.used_mem = self.used_mem
        other.anti_coloc_jobs = set(self.anti_coloc_jobs)
        other.valid = self.valid
        return other

    @property
    def is_empty(self) -> bool:
        return not self.vms

    @property
    def leftover_cpu_percentile(self) -> float:
        return (self.pm.cpu - self.used_cpu) / self.pm.cpu

    @property
    def leftover_mem_percentile(self) -> float:
        return (self.pm.memory - self.used_mem) / self.pm.memory

    def can_host(self, vm: VirtualMachine) -> bool:
        return (self.used_cpu + vm.cpu <= self.pm.cpu and
                self.used_mem + vm.memory <= self.pm.memory and
                vm.can_run_on(self.pm) and
                not (vm.anti_colocatable and vm.job_id in self.anti_coloc_jobs))

    def place(self, vm: VirtualMachine):
        """Place without checks; `valid` records whether every placement was legal."""
        self.valid = self.valid and self.can_host(vm)
        self.vms.append(vm)
        self.used_cpu += vm.cpu
        self.used_mem += vm.memory
        if vm.anti_colocatable:
            self.anti_coloc_jobs.add(vm.job_id)


def usage_key(policy: PackingPolicy, info: UsageInfo) -> tuple:
    pm = info.pm
    key = capacity_key(pm) + (pm.pm_id,)
    if policy is PackingPolicy.BEST_FIT:
        return (info.leftover_cpu_percentile, info.leftover_mem_percentile) + key
    return key


class MachineHeap:
    """
    Priority structure over PMs.

    Usage records live in a stable list (the arena); the heap only holds
    (key, slot) pairs, so duplicating the structure copies the records and the
    pair list.
    """

    def __init__(self, infos: List[UsageInfo], policy: PackingPolicy):
        self.policy = policy
        self.infos = infos
        self._heap = [(usage_key(policy, info), slot) for slot, info in enumerate(infos)]
        heapq.heapify(self._heap)

    def copy(self) -> MachineHeap:
        other = MachineHeap.__new__(MachineHeap)
        other.policy = self.policy
        other.infos = [info.copy() for info in self.infos]
        other._heap = list(self._heap)
        return other

    def __len__(self) -> int:
        return len(self._heap)

    def place(self, vm: VirtualMachine) -> Optional[PhysicalMachine]:
        """Place vm on the first PM in priority order able to host it."""
        popped = []
        chosen = None
        while chosen is None and self._heap:
            key, slot = heapq.heappop(self._heap)
            info = self.infos[slot]
            if info.can_host(vm):
                info.place(vm)
                chosen = info.pm
                key = usage_key(self.policy, info)
            popped.append((key, slot))
        for entry in popped:
            heapq.heappush(self._heap, entry)
        return chosen

    def remove(self, slot: int):
        self._heap = [entry for entry in self._heap if entry[1] != slot]
        heapq.heapify(self._heap)

    def ordered_slots(self) -> List[int]:
        """Slots in priority order (fullest PM first under best-fit)."""
        return [slot for _, slot in sorted(self._heap)]

    def mappings(self) -> List[Mapping]:
        return [Mapping(vm, self.infos[slot].pm)
                for slot in self.ordered_slots()
                for vm in self.infos[slot].vms]

    def is_valid(self) -> bool:
        return all(self.infos[slot].valid for _, slot in self._heap)


@dataclass
class PackingResult:
    allocation: Allocation
    leftover_vms: List[VirtualMachine] = field(default_factory=list)
    feasible: bool = True

    @property
    def is_partial(self) -> bool:
        return not self.feasible

    @property
    def n_used_pms(self) -> int:
        return len(self.allocation.used_pm_ids())


class BinPacker:
    """
    Greedy VM placement.

    Args:
        instance: Problem instance
        policy: PM ordering (best-fit or first-fit decreasing)
        mappings: Pre-existing mappings (defaults to the instance's)
        max_mig_percentile: Migration budget as a fraction of the total memory
            capacity (defaults to the instance's)
    """

    def __init__(self,
                 instance: Instance,
                 policy: PackingPolicy = PackingPolicy.BEST_FIT,
                 mappings: Optional[Sequence[Mapping]] = None,
                 max_mig_percentile: Optional[float] = None):
        self.instance = instance
        self.policy = policy
        self.mappings = list(instance.mappings if mappings is None else mappings)
        self.max_mig_percentile = (instance.max_mig_percentile
                                   if max_mig_percentile is None else float(max_mig_percentile))

    def set_mappings(self, mappings: Sequence[Mapping]):
        self.mappings = list(mappings)

    def set_max_mig_percentile(self, max_mig_percentile: float):
        self.max_mig_percentile = float(max_mig_percentile)

    def _vm_order(self, shuffle_rng: Optional[np.random.Generator]) -> List[VirtualMachine]:
        if shuffle_rng is None:
            return sorted(self.instance.vms, key=vm_order_key)
        return [self.instance.vms[i] for i in shuffle_rng.permutation(self.instance.n_vms)]

    def _build_heap(self, pms: Sequence[PhysicalMachine], mappings: Sequence[Mapping]) -> MachineHeap:
        infos = [UsageInfo(pm) for pm in pms]
        slot_of = {pm.pm_id: slot for slot, pm in enumerate(pms)}
        for mapping in mappings:
            infos[slot_of[mapping.pm.pm_id]].place(mapping.vm)
        return MachineHeap(infos, self.policy)

    def pack(self,
             shuffle_rng: Optional[np.random.Generator] = None,
             remaining_time: Optional[Callable[[], float]] = None) -> PackingResult:
        """
        Place every VM, then greedily empty PMs within the migration budget.

        Args:
            shuffle_rng: Visit VMs in a random order instead of decreasing size
            remaining_time: Polled before each migration attempt; the phase
                stops once it returns a non-positive value

        Returns:
            PackingResult; a partial result lists the VMs left unplaced
        """
        order = self._vm_order(shuffle_rng)
        heap = self._build_heap(self.instance.pms, self.mappings)
        premapped = {m.vm.vm_id for m in self.mappings}

        for i, vm in enumerate(order):
            if vm.vm_id in premapped:
                continue
            if heap.place(vm) is None:
                leftover = [v for v in order[i:] if v.vm_id not in premapped]
                logger.debug("bin packing failed to place %s (%d VMs left)", vm.vm_id, len(leftover))
                return PackingResult(Allocation(heap.mappings()), leftover, feasible=False)

        if self.max_mig_percentile > 0.0:
            heap = self._migrate(heap, premapped, shuffle_rng, remaining_time)

        allocation = Allocation(heap.mappings())
        return PackingResult(allocation, [], feasible=heap.is_valid())

    def _migrate(self,
                 heap: MachineHeap,
                 premapped: Set[str],
                 shuffle_rng: Optional[np.random.Generator],
                 remaining_time: Optional[Callable[[], float]]) -> MachineHeap:
        used = [heap.infos[slot] for slot in heap.ordered_slots() if not heap.infos[slot].is_empty]
        reduced_mem_cap = sum(info.pm.memory for info in used)
        # Budget as a fraction of the reduced capacity, computed once, kept in memory units
        budget = min(self.instance.total_mem_capacity * self.max_mig_percentile, reduced_mem_cap)
        budget = int(np.floor(budget))
        heap = MachineHeap(used, self.policy)
        to_migrate = set(premapped)
        logger.debug("migration phase: %d used PMs, budget %d", len(used), budget)

        restart = True
        while restart:
            restart = False
            for slot in reversed(heap.ordered_slots()):
                if remaining_time is not None and remaining_time() <= 0:
                    return heap
                residents = list(heap.infos[slot].vms)
                if shuffle_rng is None:
                    residents.sort(key=vm_order_key)
                else:
                    residents = [residents[i] for i in shuffle_rng.permutation(len(residents))]
                moved_mem = sum(vm.memory for vm in residents if vm.vm_id in to_migrate)
                if moved_mem > budget:
                    continue
                candidate = heap.copy()
                candidate.remove(slot)
                if all(candidate.place(vm) is not None for vm in residents):
                    to_migrate.difference_update(vm.vm_id for vm in residents)
                    budget -= moved_mem
                    heap = candidate
                    restart = True
                    break
        return heap


def pack(instance: Instance,
         policy: PackingPolicy = PackingPolicy.BEST_FIT,
         shuffle_rng: Optional[np.random.Generator] = None) -> PackingResult:
    return BinPacker(instance, policy).pack(shuffle_rng)
