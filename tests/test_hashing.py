import numpy as np

from movmc import SolveStatus, build_context, evaluate
from movmc.hashing import HashPartitioner, enumeration_threshold


def test_enumeration_threshold():
    assert enumeration_threshold(0.8) == 72
    assert enumeration_threshold(2.0) == 37


class TestHashPartitioner:
    def test_generate_returns_activators(self, mixed_instance):
        ctx = build_context(mixed_instance)
        hasher = HashPartitioner(ctx.solver, ctx.placement_lits(), np.random.default_rng(1), key_size=2)
        asms = hasher.generate()
        assert len(asms) == 2
        assert asms == hasher.activators
        assert len(hasher.ids) == 2

    def test_cells_only_restrict_the_base_formula(self, mixed_instance):
        ctx = build_context(mixed_instance)
        hasher = HashPartitioner(ctx.solver, ctx.placement_lits(), np.random.default_rng(3))
        asms = hasher.generate()
        for _ in range(10):
            status = ctx.solver.solve(asms)
            assert status in (SolveStatus.SAT, SolveStatus.UNSAT)
            if status is SolveStatus.SAT:
                assert evaluate(mixed_instance, ctx.model_to_assignment()).feasible
            asms = hasher.regenerate()
        hasher.remove()
        assert hasher.activators == []
        assert ctx.solver.solve() is SolveStatus.SAT

    def test_regeneration_preserves_solutions(self, two_pm_instance):
        ctx = build_context(two_pm_instance)
        hasher = HashPartitioner(ctx.solver, ctx.placement_lits(), np.random.default_rng(5))
        for _ in range(5):
            hasher.generate()
            hasher.remove()
        # Every assignment of the base formula is still reachable
        seen = set()
        while ctx.solver.solve() is SolveStatus.SAT:
            x = ctx.model_to_assignment()
            seen.add(tuple(x))
            ctx.block_assignment(x)
        assert len(seen) == 6

    def test_regenerate_replaces_activators(self, two_pm_instance):
        ctx = build_context(two_pm_instance)
        hasher = HashPartitioner(ctx.solver, ctx.placement_lits(), np.random.default_rng(11))
        first = hasher.generate()
        second = hasher.regenerate()
        assert len(second) == len(first)
        assert not set(first) & set(second)
        assert hasher.activators == second

    def test_exhausted_formula_core_has_no_activator(self, two_pm_instance):
        ctx = build_context(two_pm_instance)
        for i, j in enumerate([0, 0, 1]):
            ctx.solver.add_clause([ctx.vm_vars[i][j]])
        ctx.block_assignment([0, 0, 1])
        hasher = HashPartitioner(ctx.solver, ctx.placement_lits(), np.random.default_rng(13))
        asms = hasher.generate()
        assert ctx.solver.solve(asms) is SolveStatus.UNSAT
        assert not set(asms) & set(ctx.solver.unsat_core)
