"""
Heuristic instance reduction: keep only the PMs a bin-packing solution uses.
"""

from __future__ import annotations
import logging

from .binpacking import BinPacker, PackingPolicy
from .errors import HeuristicReductionFailed
from .models import Instance

logger = logging.getLogger(__name__)


def reduce_instance(instance: Instance, policy: PackingPolicy = PackingPolicy.BEST_FIT) -> Instance:
    """
    Restrict an instance to the PMs used by a bin-packing allocation.

    Pre-existing mappings the allocation keeps in place survive; the memory
    of the others is charged to the migration budget, which is then rescaled
    to the reduced memory capacity and clamped to [0, 1].

    Raises:
        HeuristicReductionFailed: Bin packing found no feasible allocation
    """
    result = BinPacker(instance, policy).pack()
    if result.is_partial:
        raise HeuristicReductionFailed(f"{policy.value} could not place {len(result.leftover_vms)} VMs")

    placement = result.allocation.as_dict()
    used = result.allocation.used_pm_ids()
    total_mem_cap = instance.total_mem_capacity

    budget = instance.max_mig_percentile
    kept_mappings = []
    for mapping in instance.mappings:
        if placement[mapping.vm.vm_id] == mapping.pm.pm_id:
            kept_mappings.append(mapping)
        else:
            budget -= mapping.vm.memory / total_mem_cap

    pms = [pm for pm in instance.pms if pm.pm_id in used]
    reduced_mem_cap = sum(pm.memory for pm in pms)
    if reduced_mem_cap > 0:
        budget = min(max(budget * total_mem_cap / reduced_mem_cap, 0.0), 1.0)
    else:
        budget = 0.0
    logger.debug("reduced %d PMs to %d, migration budget %.5f", instance.n_pms, len(pms), budget)
    return Instance(pms, instance.jobs, kept_mappings, budget)
