import numpy as np
import pytest

from movmc import AlgorithmOptions, SolveStatus, build_context, evaluate
from movmc.objectives import ObjectiveFunction, WastageCoefficients, WeightedLit


class TestObjectiveFunction:
    def test_bounds(self):
        f = ObjectiveFunction([1, 2, 3], [2.0, -1.5, 0.5])
        assert f.min_value == pytest.approx(-1.5)
        assert f.max_value == pytest.approx(2.5)
        assert f.codomain_size == pytest.approx(4.0)
        assert len(f) == 3

    def test_weighted_view_flips_negative_terms(self):
        f = ObjectiveFunction([1, 2], [2.0, -1.5])
        assert f.as_weighted_lits() == [WeightedLit(1, 2.0), WeightedLit(-2, 1.5)]

    def test_undef_lits(self):
        f = ObjectiveFunction([1, 2, 3], [2.0, -1.5, 0.0])
        assert f.undef_lits() == [-1, 2]

    def test_scaling(self):
        f = ObjectiveFunction([1, 2], [0.0015, -2.0])
        assert f.scaled_coeffs() == [2, -2000]
        assert f.scaled_codomain_size == 2002

    def test_value_under_model(self):
        f = ObjectiveFunction([1, -2, 3], [1.0, 2.0, 4.0])
        model = {1: True, 2: False, 3: False}

        def value(lit):
            return model[abs(lit)] if lit > 0 else not model[abs(lit)]

        assert f.value(value) == pytest.approx(3.0)
        assert f.scaled_value(value) == 3000

    def test_restricted(self):
        f = ObjectiveFunction([1, -2, 3], [1.0, 2.0, 4.0])
        g = f.restricted([2])
        assert g.lits == [1, 3]
        np.testing.assert_allclose(g.coeffs, [1.0, 4.0])

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            ObjectiveFunction([1, 2], [1.0])


class TestWastageCoefficients:
    def test_normalized_requirements(self):
        coeffs = WastageCoefficients(np.array([2.0, 1.0]), np.array([1.0, 4.0]))
        mem_minus_cpu, cpu_minus_mem, cpu_plus_mem = coeffs.get(4, 8)
        np.testing.assert_allclose(mem_minus_cpu, [0.125 - 0.5, 0.5 - 0.25])
        np.testing.assert_allclose(cpu_minus_mem, [0.5 - 0.125, 0.25 - 0.5])
        np.testing.assert_allclose(cpu_plus_mem, [0.625, 0.75])
        assert coeffs.get(4, 8)[0] is mem_minus_cpu


class TestObjectiveModel:
    def test_function_counts(self, mixed_instance, pinned_instance):
        ctx = build_context(mixed_instance)
        energy, wastage = ctx.objectives
        assert len(energy) == 1
        assert len(wastage) == 2 * mixed_instance.n_pms
        ctx = build_context(mixed_instance, AlgorithmOptions(ignore_denominators=True))
        assert len(ctx.objectives[1]) == 1
        assert len(build_context(pinned_instance).objectives) == 3

    def test_wastage_numerator_matches_evaluation(self, mixed_instance):
        ctx = build_context(mixed_instance, AlgorithmOptions(ignore_denominators=True))
        assert ctx.solver.solve() is SolveStatus.SAT
        x = ctx.model_to_assignment()
        (wastage,) = ctx.objectives[1]
        expected = evaluate(mixed_instance, x, include_denominators=False).wastage
        assert wastage.value(ctx.solver.model_value) == pytest.approx(expected)

    def test_migration_function(self, pinned_instance):
        ctx = build_context(pinned_instance)
        (migration,) = ctx.objectives[2]
        assert ctx.solver.solve() is SolveStatus.SAT
        assert migration.value(ctx.solver.model_value) == 0.0
        assert migration.max_value == pytest.approx(2.0)

    def test_energy_function_counts_powered_pms(self, two_pm_instance):
        ctx = build_context(two_pm_instance)
        (energy,) = ctx.objectives[0]
        assert ctx.solver.solve() is SolveStatus.SAT
        x = ctx.model_to_assignment()
        # Both PMs must be on for three (2, 2) VMs
        assert energy.value(ctx.solver.model_value) == pytest.approx(evaluate(two_pm_instance, x).energy)
