import numpy as np
import pytest

from movmc import Allocation, evaluate, violating_vm_indexes


class TestEvaluate:
    def test_feasible_assignment(self, two_pm_instance):
        result = evaluate(two_pm_instance, [0, 0, 1])
        # PM 0 at full load, PM 1 at half load
        assert result.energy == pytest.approx(200.0 + 150.0)
        assert result.wastage == pytest.approx(0.0001 / 4 + 0.0001 / 2)
        assert result.migration == 0.0
        assert result.violation == 0.0
        assert result.feasible
        assert result.objectives.shape == (2,)

    def test_wastage_without_denominators(self, instance_factory):
        instance = instance_factory([(4, 4)], [{"vms": [(2, 1)]}])
        assert evaluate(instance, [0], include_denominators=False).wastage == pytest.approx(0.25)
        assert evaluate(instance, [0]).wastage == pytest.approx((0.25 + 0.0001) / (2 * 0.75))

    def test_unused_pms_are_off(self, three_pm_instance):
        result = evaluate(three_pm_instance, [0, 0, 1])
        assert result.energy == pytest.approx(350.0)

    def test_capacity_excess(self, two_pm_instance):
        result = evaluate(two_pm_instance, [0, 0, 0])
        assert result.violation == pytest.approx(4.0)
        assert not result.feasible

    def test_anti_colocation_clash(self, mixed_instance):
        result = evaluate(mixed_instance, [0, 0, 2, 0, 2])
        assert result.violation == pytest.approx(1.0)

    def test_forbidden_placement(self, mixed_instance):
        result = evaluate(mixed_instance, [0, 2, 2, 1, 0])
        assert result.violation == pytest.approx(1.0)

    def test_migration_objective_and_budget(self, pinned_instance):
        stay = evaluate(pinned_instance, [0, 1])
        assert stay.objectives.shape == (3,)
        assert stay.migration == 0.0
        assert stay.feasible
        moved = evaluate(pinned_instance, [0, 0])
        assert moved.migration == 1.0
        assert moved.violation == pytest.approx(1.0)

    def test_accepts_allocation(self, two_pm_instance):
        allocation = Allocation.from_assignment(two_pm_instance, [1, 0, 1])
        np.testing.assert_allclose(evaluate(two_pm_instance, allocation).objectives,
                                   evaluate(two_pm_instance, [1, 0, 1]).objectives)

    def test_rejects_bad_shape(self, two_pm_instance):
        with pytest.raises(ValueError):
            evaluate(two_pm_instance, [0, 1])

    def test_rejects_unplaced_vm(self, two_pm_instance):
        with pytest.raises(ValueError):
            evaluate(two_pm_instance, [0, -1, 1])


class TestViolatingVMs:
    def test_feasible_has_none(self, two_pm_instance):
        assert violating_vm_indexes(two_pm_instance, [0, 1, 1]) == []

    def test_overloaded_pm(self, three_pm_instance):
        assert violating_vm_indexes(three_pm_instance, [2, 2, 2]) == [0, 1, 2]

    def test_anti_colocation_flags_both_vms(self, mixed_instance):
        assert violating_vm_indexes(mixed_instance, [0, 0, 2, 0, 2]) == [0, 1]

    def test_forbidden_placement(self, mixed_instance):
        assert violating_vm_indexes(mixed_instance, [0, 2, 2, 1, 0]) == [3]

    def test_migration_excess_flags_moved_vms(self, pinned_instance):
        assert violating_vm_indexes(pinned_instance, [1, 1]) == [0]
