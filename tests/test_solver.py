import pytest

from movmc import ConstraintSolver, Contradiction, SolveStatus
from movmc.solver import _normalize_leq


@pytest.fixture
def solver():
    with ConstraintSolver() as s:
        yield s


def true_count(solver, lits):
    return sum(1 for l in lits if solver.model_value(l))


class TestNormalization:
    def test_negative_coefficient_flips_literal(self):
        assert _normalize_leq([1, 2], [-3, 2], 1) == ([-1, 2], [3, 2], 4)

    def test_opposite_literals_cancel(self):
        assert _normalize_leq([1, -1], [1, 1], 0) == ([], [], -1)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            _normalize_leq([1, 2], [1], 0)


class TestHardConstraints:
    def test_variables(self, solver):
        a = solver.new_var()
        rest = solver.new_vars(3)
        assert rest == [a + 1, a + 2, a + 3]
        assert solver.n_vars >= 4

    def test_empty_clause(self, solver):
        with pytest.raises(Contradiction):
            solver.add_clause([])

    def test_opposite_unit(self, solver):
        a = solver.new_var()
        solver.add_clause([a])
        with pytest.raises(Contradiction):
            solver.add_clause([-a])

    def test_exactly(self, solver):
        lits = solver.new_vars(4)
        solver.add_exactly(lits, 2)
        assert solver.solve() is SolveStatus.SAT
        assert true_count(solver, lits) == 2

    def test_at_least_more_than_available(self, solver):
        with pytest.raises(Contradiction):
            solver.add_at_least(solver.new_vars(3), 4)

    def test_less_or_equal(self, solver):
        a, b, c = solver.new_vars(3)
        solver.add_less_or_equal([a, b, c], [2, 3, 4], 5)
        assert solver.solve([c]) is SolveStatus.SAT
        assert not solver.model_value(a) and not solver.model_value(b)
        assert solver.solve([a, b]) is SolveStatus.SAT
        assert not solver.model_value(c)
        assert solver.solve([a, c]) is SolveStatus.UNSAT

    def test_unreachable_bound(self, solver):
        a = solver.new_var()
        with pytest.raises(Contradiction):
            solver.add_less_or_equal([a], [2], -1)

    def test_greater_or_equal_with_negative_coefficients(self, solver):
        a, b = solver.new_vars(2)
        # a - b >= 1 forces a and not b
        solver.add_greater_or_equal([a, b], [1, -1], 1)
        assert solver.solve() is SolveStatus.SAT
        assert solver.model_value(a) and not solver.model_value(b)

    def test_less(self, solver):
        lits = solver.new_vars(3)
        solver.add_less(lits, [1, 1, 1], 2)
        solver.add_at_least(lits, 1)
        assert solver.solve() is SolveStatus.SAT
        assert true_count(solver, lits) == 1

    def test_xor(self, solver):
        a, b, c = solver.new_vars(3)
        solver.add_xor([a, b, c], True)
        assert solver.solve([a, b]) is SolveStatus.SAT
        assert solver.model_value(c)
        assert solver.solve([a, -b, c]) is SolveStatus.UNSAT

    def test_empty_xor(self, solver):
        solver.add_xor([], False)
        with pytest.raises(Contradiction):
            solver.add_xor([], True)


class TestRemovableConstraints:
    def test_remove_restores_satisfiability(self, solver):
        a = solver.new_var()
        solver.add_clause([a])
        cid = solver.add_removable_clause([-a, -a])
        assert solver.solve() is SolveStatus.UNSAT
        solver.remove_constraint(cid)
        assert solver.solve() is SolveStatus.SAT

    def test_removable_unit_opposite_to_hard_unit(self, solver):
        a = solver.new_var()
        solver.add_clause([a])
        with pytest.raises(Contradiction):
            solver.add_removable_clause([-a])

    def test_conjunction(self, solver):
        lits = solver.new_vars(3)
        ids = solver.add_removable_conjunction(lits)
        assert len(ids) == 3
        assert solver.solve() is SolveStatus.SAT
        assert true_count(solver, lits) == 3
        solver.remove_constraints(ids)
        solver.add_clause([-lits[0]])
        assert solver.solve() is SolveStatus.SAT

    def test_removable_at_most(self, solver):
        lits = solver.new_vars(3)
        cid = solver.add_removable_at_most(lits, 1)
        assert solver.solve(lits[:2]) is SolveStatus.UNSAT
        solver.remove_constraint(cid)
        assert solver.solve(lits[:2]) is SolveStatus.SAT

    @pytest.mark.parametrize("add, args, asms", [
        ("add_removable_at_least", (2,), [-1, -2]),
        ("add_removable_exactly", (1,), [1, 2]),
        ("add_removable_greater_or_equal", ([2, 1, 1], 3), [-1]),
        ("add_removable_less", ([1, 1, 1], 1), [1]),
    ])
    def test_removable_cardinality_and_pb(self, solver, add, args, asms):
        lits = solver.new_vars(3)
        assert lits == [1, 2, 3]
        cid = getattr(solver, add)(lits, *args)
        assert solver.solve(asms) is SolveStatus.UNSAT
        solver.remove_constraint(cid)
        assert solver.solve(asms) is SolveStatus.SAT

    def test_removable_xor_with_activator(self, solver):
        a, b, act = solver.new_vars(3)
        solver.add_removable_xor([a, b], True, act)
        assert solver.solve([act, a, b]) is SolveStatus.UNSAT
        assert solver.solve([a, b]) is SolveStatus.SAT
        assert not solver.model_value(act)

    def test_removing_none_is_a_no_op(self, solver):
        solver.remove_constraint(None)
        solver.remove_constraints([None, None])
        assert solver.solve() is SolveStatus.SAT

    def test_removing_twice(self, solver):
        a = solver.new_var()
        cid = solver.add_removable_clause([a])
        solver.remove_constraint(cid)
        solver.remove_constraint(cid)
        assert solver.solve([-a]) is SolveStatus.SAT


class TestSolving:
    def test_core_holds_assumptions_only(self, solver):
        a, b = solver.new_vars(2)
        solver.add_clause([a])
        solver.add_removable_clause([b])
        assert solver.solve([-a]) is SolveStatus.UNSAT
        assert solver.unsat_core == [-a]

    def test_status_flags(self, solver):
        a = solver.new_var()
        assert solver.status is None
        solver.solve([a])
        assert solver.is_solved and solver.is_satisfiable
        assert solver.model_value(a) and not solver.model_value(-a)
        solver.add_clause([-a])
        solver.solve([a])
        assert solver.is_solved and not solver.is_satisfiable
        assert solver.model == []

    def test_unknown_variable_is_false(self, solver):
        a = solver.new_var()
        solver.solve()
        assert not solver.model_value(a + 100)

    def test_timeout_and_conflict_budget_still_solve_easy_formulas(self, solver):
        lits = solver.new_vars(5)
        solver.add_exactly(lits, 2)
        solver.set_timeout(5.0)
        solver.set_max_conflicts(1000)
        assert solver.solve() is SolveStatus.SAT
        solver.reset_max_conflicts()
        solver.set_timeout(None)
        assert solver.solve() is SolveStatus.SAT
        assert solver.conflicts >= 0
