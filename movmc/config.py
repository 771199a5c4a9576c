# ===============================
# movmc configuration
# Module-level constants plus per-run algorithm switches.
# ===============================

from __future__ import annotations
from dataclasses import dataclass

from pysat.card import EncType as CardEncType
from pysat.pb import EncType as PBEncType


# -------------------------------------------------
# Timeouts
# -------------------------------------------------

NO_TIMEOUT = -1.0                # Disables deadline checks


# -------------------------------------------------
# Constraint solver
# -------------------------------------------------

SOLVER_NAME = "g4"               # Glucose 4.1 (assumptions, cores, conflict budgets)
CARD_ENCODING = CardEncType.seqcounter
PB_ENCODING = PBEncType.best
COEFF_PRECISION = 1000           # Real objective coefficients are scaled by this before PB encoding


# -------------------------------------------------
# MCS enumeration
# -------------------------------------------------

PART_MAX_CONFLICTS = 200000      # Conflict budget for every stratified partition but the last
LIT_WEIGHT_RATIO = 2.0           # Literal-to-weight ratio that closes a partition
VARS_PER_OBJECTIVE = 4           # Literals per objective used for diversification paths


# -------------------------------------------------
# Hash functions
# -------------------------------------------------

HASH_EPSILON = 0.8
HASH_KEY_SIZE = 1                # Number of parity constraints per hash function


# -------------------------------------------------
# Evaluation
# -------------------------------------------------

WASTAGE_EPSILON = 0.0001


# -------------------------------------------------
# Repair operator
# -------------------------------------------------

RELAX_RATE = 0.5                 # Probability that a machine's VMs are relaxed by improve()
IMPROVE_LIT_WEIGHT_RATIO = 15.0
REPAIR_MAX_CONFLICTS = 200000


# -------------------------------------------------
# Progress log
# -------------------------------------------------

POPULATION_SEPARATOR = "#"


@dataclass
class AlgorithmOptions:
    """Switches shared by the constraint-based strategies."""
    break_symmetries: bool = False
    hash_functions: bool = False
    path_diversification: bool = False
    stratify: bool = False
    merged_stratification: bool = False   # One partition list per objective instead of per sub-function
    lit_weight_ratio: float = LIT_WEIGHT_RATIO
    npartitions: int = 0                  # Fixed partition count (0 = use lit_weight_ratio)
    part_max_conflicts: int = PART_MAX_CONFLICTS
    ignore_denominators: bool = False     # Wastage as a plain sum of |leftover cpu - leftover mem|
    verbose: bool = True

    def __post_init__(self):
        if self.lit_weight_ratio <= 0.0:
            raise ValueError(f"lit_weight_ratio must be positive, got {self.lit_weight_ratio}")
        if self.npartitions < 0:
            raise ValueError(f"npartitions must be non-negative, got {self.npartitions}")
        if self.part_max_conflicts <= 0:
            raise ValueError(f"part_max_conflicts must be positive, got {self.part_max_conflicts}")
        if self.hash_functions and self.path_diversification:
            raise ValueError("hash functions and path diversification cannot be combined")
