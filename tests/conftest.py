"""
Shared fixtures: small instances that every solver strategy handles in
well under a second.
"""

import pytest

from movmc import (AlgorithmOptions, Instance, Job, Mapping, PhysicalMachine,
                   VirtualMachine, make_vm_id)

IDLE_POWER = 100
MAX_POWER = 200


def build_instance(pm_specs, job_specs, mappings=(), max_mig_percentile=0.0):
    """
    Args:
        pm_specs: (cpu, memory) per PM; PM IDs are the list positions
        job_specs: per job, a dict with "vms" as a list of (cpu, memory),
            optional "anti_colocatable" (bool) and optional "forbidden"
            ({vm index: PM IDs})
        mappings: (vm_id, pm_id) pairs
    """
    pms = [PhysicalMachine(i, cpu, mem, IDLE_POWER, MAX_POWER) for i, (cpu, mem) in enumerate(pm_specs)]
    jobs = []
    for job_id, spec in enumerate(job_specs):
        forbidden = spec.get("forbidden", {})
        vms = [VirtualMachine(make_vm_id(job_id, k), job_id, k, cpu, mem,
                              anti_colocatable=spec.get("anti_colocatable", False),
                              forbidden_pms=frozenset(forbidden.get(k, ())))
               for k, (cpu, mem) in enumerate(spec["vms"])]
        jobs.append(Job(job_id, vms))
    vms_by_id = {vm.vm_id: vm for job in jobs for vm in job}
    maps = [Mapping(vms_by_id[vm_id], pms[pm_id]) for vm_id, pm_id in mappings]
    return Instance(pms, jobs, maps, max_mig_percentile)


@pytest.fixture
def instance_factory():
    return build_instance


@pytest.fixture
def two_pm_instance():
    """Two (4, 4) PMs and three (2, 2) VMs: both PMs must be on."""
    return build_instance([(4, 4), (4, 4)], [{"vms": [(2, 2)] * 3}])


@pytest.fixture
def three_pm_instance():
    """Three (4, 4) PMs and three (2, 2) VMs: two PMs suffice."""
    return build_instance([(4, 4), (4, 4), (4, 4)], [{"vms": [(2, 2)] * 3}])


@pytest.fixture
def mixed_instance():
    """Heterogeneous PMs, an anti-colocated job and a platform restriction."""
    return build_instance(
        [(8, 4), (4, 8), (6, 6)],
        [{"vms": [(2, 1), (2, 1)], "anti_colocatable": True},
         {"vms": [(1, 3), (3, 2), (1, 1)], "forbidden": {1: {1}}}],
    )


@pytest.fixture
def pinned_instance():
    """Two pre-mapped VMs on different PMs with no migration budget."""
    return build_instance([(4, 4), (4, 4)], [{"vms": [(1, 1), (1, 1)]}],
                          mappings=[("0-0", 0), ("0-1", 1)], max_mig_percentile=0.0)


@pytest.fixture
def quiet_options():
    return AlgorithmOptions(verbose=False)
