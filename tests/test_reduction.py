import pytest

from movmc import AlgorithmOptions, AllocAlgorithm, HeuristicReductionFailed, Strategy, reduce_instance
from movmc.binpacking import PackingPolicy


class TestReduceInstance:
    def test_keeps_used_pms(self, three_pm_instance):
        reduced = reduce_instance(three_pm_instance)
        assert [pm.pm_id for pm in reduced.pms] == [0, 1]
        assert reduced.n_vms == three_pm_instance.n_vms
        assert not reduced.has_mappings

    def test_first_fit_policy(self, mixed_instance):
        reduced = reduce_instance(mixed_instance, PackingPolicy.FIRST_FIT)
        assert 0 < reduced.n_pms <= mixed_instance.n_pms
        assert reduced.n_vms == mixed_instance.n_vms

    def test_packing_failure(self, instance_factory):
        instance = instance_factory([(4, 4)], [{"vms": [(2, 2)] * 3}])
        with pytest.raises(HeuristicReductionFailed):
            reduce_instance(instance)

    def test_migration_budget_is_rescaled(self, instance_factory):
        # VM 0-1 moves next to 0-0 and spends 2 of the 3 memory units allowed
        instance = instance_factory([(4, 4)] * 3, [{"vms": [(2, 2), (2, 2)]}],
                                    mappings=[("0-0", 0), ("0-1", 2)], max_mig_percentile=0.25)
        reduced = reduce_instance(instance)
        assert [pm.pm_id for pm in reduced.pms] == [0]
        assert [m.vm.vm_id for m in reduced.mappings] == ["0-0"]
        assert reduced.max_mig_percentile == pytest.approx(0.25)

    def test_budget_is_clamped(self, instance_factory):
        instance = instance_factory([(4, 4)] * 3, [{"vms": [(2, 2), (2, 2)]}],
                                    mappings=[("0-0", 0), ("0-1", 2)], max_mig_percentile=0.5)
        assert reduce_instance(instance).max_mig_percentile == pytest.approx(1.0)

    def test_reduced_instance_is_solvable(self, three_pm_instance):
        algorithm = AllocAlgorithm(reduce_instance(three_pm_instance), Strategy.PARETO_CLD,
                                   AlgorithmOptions(verbose=False), timeout=5.0)
        algorithm.allocate()
        assert algorithm.found_solution()
