import numpy as np
import pytest

from movmc import AlgorithmOptions, ParetoArchive, build_context, evaluate
from movmc.clock import Clock
from movmc.config import NO_TIMEOUT
from movmc.framework import SearchRun
from movmc.mcs import UndefFormulaBuilder, partition_weighted_lits, roulette_wheel, run_cld
from movmc.objectives import ObjectiveFunction, WeightedLit


def make_run(instance, options, seed=0):
    return SearchRun(instance, options, np.random.default_rng(seed), Clock(), NO_TIMEOUT,
                     ParetoArchive(), np.full(instance.n_objectives, np.inf))


class TestStratification:
    weighted = [WeightedLit(l, w) for l, w in zip(range(1, 7), [4, 4, 2, 2, 1, 1])]

    def test_single_partition_with_large_ratio(self):
        assert partition_weighted_lits(self.weighted, 0, 2.0) == [[-1, -2, -3, -4, -5, -6]]

    def test_splits_by_ratio(self):
        assert partition_weighted_lits(self.weighted, 0, 1.0) == [[-1, -2], [-3, -4], [-5, -6]]

    def test_splits_by_count(self):
        assert partition_weighted_lits(self.weighted, 3) == [[-1, -2], [-3, -4], [-5, -6]]

    def test_never_splits_equal_weights(self):
        same = [WeightedLit(l, 1.0) for l in range(1, 5)]
        assert partition_weighted_lits(same, 4) == [[-1, -2, -3, -4]]

    def test_zero_weights_are_dropped(self):
        weighted = [WeightedLit(1, 0.0), WeightedLit(2, 3.0)]
        assert partition_weighted_lits(weighted) == [[-2]]

    def test_roulette_wheel(self):
        rng = np.random.default_rng(0)
        assert all(roulette_wheel(rng, [0.0, 1.0]) == 1 for _ in range(20))


class TestUndefFormulaBuilder:
    objectives = [[ObjectiveFunction([1, 2, 3], [4.0, 2.0, 1.0])],
                  [ObjectiveFunction([4, 5], [-3.0, 0.5]), ObjectiveFunction([6], [2.0])]]

    def test_unstratified(self):
        builder = UndefFormulaBuilder(self.objectives, AlgorithmOptions(), np.random.default_rng(0))
        assert builder.build() == [[-1, -2, -3, 4, -5, -6]]

    @pytest.mark.parametrize("merged", [False, True])
    def test_stratified_partitions_cover_every_literal(self, merged):
        options = AlgorithmOptions(stratify=True, merged_stratification=merged, lit_weight_ratio=0.5)
        builder = UndefFormulaBuilder(self.objectives, options, np.random.default_rng(0))
        for _ in range(3):
            undef = builder.build()
            flat = [l for part in undef for l in part]
            assert sorted(flat) == sorted([-1, -2, -3, 4, -5, -6])
            assert len(undef) > 1

    def test_stratified_keeps_weight_order_per_function(self):
        options = AlgorithmOptions(stratify=True, lit_weight_ratio=0.5)
        builder = UndefFormulaBuilder(self.objectives[:1], options, np.random.default_rng(0))
        assert builder.build() == [[-1], [-2], [-3]]


class TestCLD:
    def test_mcs_blocking_yields_new_correction_sets(self, two_pm_instance):
        options = AlgorithmOptions(verbose=False)
        run = make_run(two_pm_instance, options)
        ctx = build_context(two_pm_instance, options, run.rng)
        builder = UndefFormulaBuilder(ctx.objectives, options, ctx.rng)
        previous = []
        for _ in range(2):
            undef = builder.build()
            to_remove = []
            assert run_cld(run, ctx, [], undef, to_remove)
            ctx.solver.remove_constraints(to_remove)
            mcs = [l for part in undef for l in part]
            for earlier in previous:
                assert not set(earlier) <= set(mcs)
            previous.append(mcs)
            ctx.solver.add_clause(mcs)
        assert not run.archive.is_empty
        for entry in run.archive.get_all_solutions():
            assert evaluate(two_pm_instance, entry.assignment).feasible
