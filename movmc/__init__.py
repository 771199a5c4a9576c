"""
movmc: constraint-based multi-objective virtual machine consolidation.

Energy, resource wastage and migration cost are minimized jointly by
driving an incremental SAT solver (python-sat) through linear search,
guided improvement and Pareto-MCS enumeration, with bin-packing
heuristics for fast placements, repair and seeding.
"""

from .archive import ArchiveEntry, ParetoArchive
from .binpacking import BinPacker, PackingPolicy, PackingResult
from .clock import Clock
from .config import NO_TIMEOUT, AlgorithmOptions
from .encoding import SolverContext, build_context
from .errors import Contradiction, HeuristicReductionFailed, MovmcError, UnexpectedSolverState
from .evaluation import Evaluation, evaluate, violating_vm_indexes
from .framework import AllocAlgorithm, SearchRun, Strategy
from .models import (Allocation, Instance, Job, Mapping, PhysicalMachine,
                     VirtualMachine, make_vm_id)
from .reduction import reduce_instance
from .repair import MCSRepairer, bin_packing_seeds
from .solver import ConstraintID, ConstraintSolver, SolveStatus

__version__ = "0.1.0"

__all__ = [
    "AlgorithmOptions",
    "AllocAlgorithm",
    "Allocation",
    "ArchiveEntry",
    "BinPacker",
    "Clock",
    "ConstraintID",
    "ConstraintSolver",
    "Contradiction",
    "Evaluation",
    "HeuristicReductionFailed",
    "Instance",
    "Job",
    "MCSRepairer",
    "Mapping",
    "MovmcError",
    "NO_TIMEOUT",
    "PackingPolicy",
    "PackingResult",
    "ParetoArchive",
    "PhysicalMachine",
    "SearchRun",
    "SolveStatus",
    "SolverContext",
    "Strategy",
    "UnexpectedSolverState",
    "VirtualMachine",
    "bin_packing_seeds",
    "build_context",
    "evaluate",
    "make_vm_id",
    "reduce_instance",
    "violating_vm_indexes",
]
