# ===============================
# Algorithm framework
# Deadline tracking, best-cost tracking, the non-dominated archive,
# multi-seed execution, progress logging and strategy dispatch.
# ===============================

from __future__ import annotations
import logging
import math
from enum import Enum
from typing import IO, Callable, Dict, List, Optional, Union

import numpy as np

from . import config
from . import search
from .archive import ArchiveEntry, ParetoArchive
from .clock import Clock
from .config import AlgorithmOptions
from .encoding import SolverContext, build_context
from .errors import Contradiction
from .evaluation import evaluate
from .models import Allocation, Instance
from .solver import ConstraintSolver, SolveStatus

logger = logging.getLogger(__name__)


class Strategy(Enum):
    BEST_FIT = "bfd"
    FIRST_FIT = "ffd"
    LINEAR_SEARCH = "ls"
    GIA = "gia"
    HASH_ENUMERATION = "hash-enum"
    MCS = "mcs"
    PARETO_CLD = "pareto-cld"
    PARETO_LBX = "pareto-lbx"


class SearchRun:
    """
    State shared by the strategy functions during one allocate() call.

    Args:
        instance: Problem instance
        options: Algorithm switches
        rng: Random generator
        clock: Clock the deadline refers to
        deadline: Seconds on `clock` at which the run stops (NO_TIMEOUT disables)
        archive: Receives every feasible solution
        progress: Text stream receiving the archive after each saved solution
    """

    def __init__(self,
                 instance: Instance,
                 options: AlgorithmOptions,
                 rng: np.random.Generator,
                 clock: Clock,
                 deadline: float,
                 archive: ParetoArchive,
                 best_costs: np.ndarray,
                 progress: Optional[IO[str]] = None):
        self.instance = instance
        self.options = options
        self.rng = rng
        self.clock = clock
        self.deadline = deadline
        self.archive = archive
        self.best_costs = best_costs
        self.progress = progress
        self._contexts: List[SolverContext] = []

    # -------------------------------------------------
    # Time
    # -------------------------------------------------

    def remaining_time(self) -> float:
        if self.deadline == config.NO_TIMEOUT:
            return math.inf
        return max(0.0, self.deadline - self.clock.elapsed)

    def check_sat(self, solver: ConstraintSolver, assumptions=()) -> SolveStatus:
        """Solve with the solver interrupted at the deadline."""
        remaining = self.remaining_time()
        if remaining <= 0:
            return SolveStatus.UNKNOWN
        solver.set_timeout(None if math.isinf(remaining) else remaining)
        return solver.solve(assumptions)

    # -------------------------------------------------
    # Solver contexts
    # -------------------------------------------------

    def build_context(self, with_objectives: bool = True) -> Optional[SolverContext]:
        """Encode the instance; None if the base formula is trivially unsatisfiable."""
        self.log("c Initializing")
        try:
            ctx = build_context(self.instance, self.options, self.rng, with_objectives=with_objectives)
        except Contradiction as e:
            logger.debug("base formula contradiction: %s", e)
            self.print_unsatisfiable()
            return None
        self._contexts.append(ctx)
        self.print_elapsed_time()
        return ctx

    def close(self):
        for ctx in self._contexts:
            ctx.solver.delete()
        self._contexts = []

    # -------------------------------------------------
    # Solutions
    # -------------------------------------------------

    def save_solution(self, allocation: Allocation, print_new_best: bool = True) -> bool:
        """
        Evaluate an allocation and archive it if it violates no constraint.

        Returns:
            True if the allocation was feasible
        """
        if len(allocation) != self.instance.n_vms:
            return False
        assignment = allocation.to_assignment(self.instance)
        result = evaluate(self.instance, assignment,
                          include_denominators=not self.options.ignore_denominators)
        if not result.feasible:
            logger.debug("discarding allocation with violation %.5f", result.violation)
            return False
        self.archive.add(ArchiveEntry(assignment=assignment,
                                      objectives=result.objectives,
                                      allocation=allocation))
        self._update_best_costs(result.objectives, print_new_best)
        self.log_progress()
        return True

    def _update_best_costs(self, objectives: np.ndarray, print_new_best: bool):
        improved = objectives < self.best_costs
        if not np.any(improved):
            return
        self.best_costs[improved] = objectives[improved]
        if print_new_best:
            self.log(format_costs(self.best_costs))
            self.print_elapsed_time()

    def log_progress(self):
        if self.progress is None:
            return
        for objectives in self.archive.get_all_objectives():
            self.progress.write(format_point(objectives) + "\n")
        self.progress.write(config.POPULATION_SEPARATOR + "\n")
        self.progress.flush()

    # -------------------------------------------------
    # Output
    # -------------------------------------------------

    def log(self, message: str):
        if self.options.verbose:
            print(message)

    def print_elapsed_time(self):
        self.log(f"c Elapsed time: {self.clock.elapsed:.3f} seconds")

    def print_timeout(self):
        self.log("c Timeout")
        self.print_elapsed_time()

    def print_optimum(self):
        self.log("c Optimum found")
        self.print_elapsed_time()

    def print_unsatisfiable(self):
        self.log("c Unsatisfiable")
        self.print_elapsed_time()


def format_costs(objectives: np.ndarray) -> str:
    line = f"e {objectives[0]:.5f} \tw {objectives[1]:.5f}"
    if len(objectives) == 3:
        line += f" \tm {int(objectives[2])}"
    return line


def format_point(objectives: np.ndarray) -> str:
    line = f"{objectives[0]:.5f} {objectives[1]:.5f}"
    if len(objectives) == 3:
        line += f" {int(objectives[2])}"
    return line


StrategyFunction = Callable[[SearchRun], None]


STRATEGIES: Dict[Strategy, StrategyFunction] = {
    Strategy.BEST_FIT: search.run_best_fit,
    Strategy.FIRST_FIT: search.run_first_fit,
    Strategy.LINEAR_SEARCH: search.run_linear_search,
    Strategy.GIA: search.run_gia,
    Strategy.HASH_ENUMERATION: search.run_hash_enumeration,
    Strategy.MCS: search.run_mcs,
    Strategy.PARETO_CLD: search.run_pareto_cld,
    Strategy.PARETO_LBX: search.run_pareto_lbx,
}


class AllocAlgorithm:
    """
    Runs one allocation strategy on an instance.

    Args:
        instance: Problem instance
        strategy: Strategy to run
        options: Algorithm switches (defaults to AlgorithmOptions())
        seed: Seed of the random generator
        timeout: Seconds on `clock` after which allocate() returns (NO_TIMEOUT disables)
        clock: Clock measuring elapsed time (a new one by default)
    """

    def __init__(self,
                 instance: Instance,
                 strategy: Strategy,
                 options: Optional[AlgorithmOptions] = None,
                 seed: Optional[int] = None,
                 timeout: float = config.NO_TIMEOUT,
                 clock: Optional[Clock] = None):
        if timeout != config.NO_TIMEOUT and timeout < 0:
            raise ValueError(f"timeout must be non-negative or NO_TIMEOUT, got {timeout}")
        self.instance = instance
        self.strategy = Strategy(strategy)
        self.options = options if options is not None else AlgorithmOptions()
        self.rng = np.random.default_rng(seed)
        self.timeout = timeout
        self.clock = clock if clock is not None else Clock()
        self.archive = ParetoArchive()
        self.results: List[ParetoArchive] = []
        self.best_costs = np.full(instance.n_objectives, np.inf)
        self._progress: Optional[IO[str]] = None
        self._owns_progress = False

    def enable_progress_log(self, target: Union[str, IO[str]]):
        """Write the archive after each saved solution to a path or text stream."""
        self.disable_progress_log()
        if isinstance(target, str):
            self._progress = open(target, "w")
            self._owns_progress = True
        else:
            self._progress = target
            self._owns_progress = False

    def disable_progress_log(self):
        if self._progress is not None and self._owns_progress:
            self._progress.close()
        self._progress = None
        self._owns_progress = False

    def _run(self, deadline: float):
        run = SearchRun(self.instance, self.options, self.rng, self.clock, deadline,
                        self.archive, self.best_costs, self._progress)
        try:
            STRATEGIES[self.strategy](run)
        finally:
            run.close()

    def allocate(self):
        self._run(self.timeout)

    def allocate_multiple_seeds(self, nseeds: int):
        """
        Run the strategy nseeds times, each with `timeout` seconds counted from
        its own start, and merge the resulting archives.
        """
        if nseeds <= 0:
            raise ValueError(f"nseeds must be positive, got {nseeds}")
        if self.options.verbose:
            print(f"c Running with {nseeds} different seeds")
        self.results = []
        for _ in range(nseeds):
            deadline = self.timeout
            if self.timeout != config.NO_TIMEOUT:
                deadline = self.clock.elapsed + self.timeout
            self._run(deadline)
            self.results.append(self.archive)
            self.archive = ParetoArchive()
        for seed_idx, population in enumerate(self.results, start=1):
            if self.options.verbose:
                print(f"c Population obtained with seed {seed_idx}")
            for entry in population.get_all_solutions():
                self.archive.add(entry)
                if self.options.verbose:
                    print(format_costs(entry.objectives))
        if self.options.verbose:
            print("c Done")

    def found_solution(self) -> bool:
        return not self.archive.is_empty

    def get_solutions(self) -> ParetoArchive:
        return self.archive

    def get_allocations(self) -> List[Allocation]:
        return self.archive.get_allocations()

    def get_populations(self) -> List[ParetoArchive]:
        if not self.results:
            return [self.archive]
        return list(self.results)
