"""Exceptions raised by movmc."""


class MovmcError(Exception):
    """Base class for all movmc errors."""


class Contradiction(MovmcError):
    """A constraint made the formula trivially unsatisfiable."""


class UnexpectedSolverState(MovmcError):
    """The solver reached a state the calling algorithm cannot handle."""


class HeuristicReductionFailed(MovmcError):
    """Bin packing could not place every VM, so the instance cannot be reduced."""
