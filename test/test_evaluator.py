"""
Evaluator tests on hand-built trees
"""

import math

import pytest

from interpreter import (
  create_interpreter,
  eval_program,
  evaluate,
  make_global_env,
  make_local_env,
  run_source,
)
from error_handling import (
  ArityMismatch,
  DivisionByZero,
  IndexOutOfRange,
  MinRubyRuntimeError,
  TypeMismatch,
  UndefinedFunction,
  UndefinedVariable,
  UnrecognizedNodeTag,
)
from utilities import make_value, unwrap_value


def lit(raw):
  return ["lit", raw]


def var(name):
  return ["var_ref", name]


def call(name, *args):
  return ["func_call", name] + list(args)


FACT = ["func_def", "fact", ["n"],
        ["if", ["<=", var("n"), lit(1)],
         lit(1),
         ["*", var("n"), call("fact", ["-", var("n"), lit(1)])]]]


class TestLiteralsAndStatements:
  """lit, stmts and local variables"""

  def test_literal_values(self, genv, lenv):
    assert evaluate(lit(42), genv, lenv) == make_value(42, "Int")
    assert evaluate(lit(1.5), genv, lenv) == make_value(1.5, "Float")
    assert evaluate(lit("hi"), genv, lenv) == make_value("hi", "String")
    assert evaluate(lit(True), genv, lenv) == make_value(True, "Bool")
    assert evaluate(lit(None), genv, lenv)['type'] == "Nil"

  def test_addition(self, genv, lenv):
    assert evaluate(["+", lit(1), lit(2)], genv, lenv) == make_value(3, "Int")

  def test_stmts_returns_last_value(self, genv, lenv):
    tree = ["stmts", lit(1), lit(2), lit(3)]
    assert unwrap_value(evaluate(tree, genv, lenv)) == 3

  def test_empty_stmts_is_nil(self, genv, lenv):
    assert evaluate(["stmts"], genv, lenv)['type'] == "Nil"

  def test_assign_then_reference(self, genv, lenv):
    result = evaluate(["stmts", ["var_assign", "x", lit(7)], var("x")], genv, lenv)
    assert unwrap_value(result) == 7
    assert unwrap_value(lenv["x"]) == 7

  def test_assignment_returns_value(self, genv, lenv):
    assert unwrap_value(evaluate(["var_assign", "x", lit(5)], genv, lenv)) == 5

  def test_undefined_variable(self, genv, lenv):
    with pytest.raises(UndefinedVariable):
      evaluate(var("missing"), genv, lenv)

  def test_unknown_tag(self, genv, lenv):
    with pytest.raises(UnrecognizedNodeTag) as exc_info:
      evaluate(["unless", lit(True), lit(1), lit(2)], genv, lenv)
    assert exc_info.value.tag == "unless"

  def test_empty_tree_is_rejected(self, genv, lenv):
    with pytest.raises(UnrecognizedNodeTag):
      evaluate([], genv, lenv)


class TestArithmetic:
  """Numeric operators and their Int/Float rules"""

  def eval_op(self, genv, lenv, op, left, right):
    return evaluate([op, lit(left), lit(right)], genv, lenv)

  @pytest.mark.parametrize("op,left,right,expected", [
      ("-", 10, 4, 6),
      ("*", 6, 7, 42),
      ("/", 7, 2, 3),
      ("/", -7, 2, -4),
      ("%", 7, 3, 1),
      ("%", -7, 3, 2),
      ("**", 2, 10, 1024),
  ])
  def test_integer_operations(self, genv, lenv, op, left, right, expected):
    result = self.eval_op(genv, lenv, op, left, right)
    assert result == make_value(expected, "Int")

  def test_mixed_operands_promote_to_float(self, genv, lenv):
    assert self.eval_op(genv, lenv, "+", 1, 0.5) == make_value(1.5, "Float")
    assert self.eval_op(genv, lenv, "/", 7.0, 2) == make_value(3.5, "Float")

  def test_integer_division_by_zero(self, genv, lenv):
    with pytest.raises(DivisionByZero):
      self.eval_op(genv, lenv, "/", 1, 0)
    with pytest.raises(DivisionByZero):
      self.eval_op(genv, lenv, "%", 1, 0)

  def test_float_division_by_zero(self, genv, lenv):
    assert math.isinf(self.eval_op(genv, lenv, "/", 1.0, 0)['value'])
    assert math.isnan(self.eval_op(genv, lenv, "/", 0.0, 0.0)['value'])

  def test_negative_exponent_gives_float(self, genv, lenv):
    assert self.eval_op(genv, lenv, "**", 2, -1) == make_value(0.5, "Float")

  def test_zero_to_negative_power(self, genv, lenv):
    with pytest.raises(DivisionByZero):
      self.eval_op(genv, lenv, "**", 0, -1)

  def test_huge_int_with_float_overflows_to_infinity(self, genv, lenv):
    big = 10 ** 400
    assert self.eval_op(genv, lenv, "*", big, 1.0) == make_value(math.inf, "Float")
    assert self.eval_op(genv, lenv, "+", -big, 0.5) == make_value(-math.inf, "Float")
    assert self.eval_op(genv, lenv, "/", big, 2.0) == make_value(math.inf, "Float")

  def test_float_power_overflow_keeps_sign(self, genv, lenv):
    assert self.eval_op(genv, lenv, "**", -10.0, 401) == make_value(-math.inf, "Float")
    assert self.eval_op(genv, lenv, "**", -10.0, 400) == make_value(math.inf, "Float")
    assert self.eval_op(genv, lenv, "**", 10.0, 401) == make_value(math.inf, "Float")

  def test_sequences(self, genv, lenv):
    assert unwrap_value(self.eval_op(genv, lenv, "+", "ab", "cd")) == "abcd"
    assert unwrap_value(self.eval_op(genv, lenv, "*", "ab", 3)) == "ababab"
    tree = ["+", ["ary_new", lit(1)], ["ary_new", lit(2)]]
    assert unwrap_value(evaluate(tree, genv, lenv)) == [1, 2]

  def test_type_mismatch(self, genv, lenv):
    with pytest.raises(TypeMismatch):
      self.eval_op(genv, lenv, "+", 1, "a")
    with pytest.raises(TypeMismatch):
      self.eval_op(genv, lenv, "-", "a", "b")

  def test_left_operand_first(self, genv, lenv, out):
    evaluate(["+", call("p", lit(1)), call("p", lit(2))], genv, lenv)
    assert out.getvalue() == "1\n2\n"


class TestComparison:
  """Ordering and equality"""

  @pytest.mark.parametrize("op,left,right,expected", [
      ("<", 1, 2, True),
      ("<=", 2, 2, True),
      (">=", 1, 2, False),
      (">", 3, 2.5, True),
      ("<", "abc", "abd", True),
      ("==", 1, 1.0, True),
      ("==", "a", "a", True),
      ("==", True, 1, False),
      ("==", None, False, False),
  ])
  def test_comparisons(self, genv, lenv, op, left, right, expected):
    result = evaluate([op, lit(left), lit(right)], genv, lenv)
    assert result == make_value(expected, "Bool")

  def test_structural_equality(self, genv, lenv):
    tree = ["==", ["ary_new", lit(1), lit("x")], ["ary_new", lit(1), lit("x")]]
    assert unwrap_value(evaluate(tree, genv, lenv)) is True

  def test_ordering_across_types_fails(self, genv, lenv):
    with pytest.raises(TypeMismatch):
      evaluate(["<", lit(1), lit("a")], genv, lenv)

  def test_greater_than_reads_current_frame(self, genv, lenv):
    evaluate(["var_assign", "y", lit(100)], genv, lenv)
    evaluate(["func_def", "gt", ["x", "y"], [">", var("x"), var("y")]], genv, lenv)
    assert unwrap_value(evaluate(call("gt", lit(2), lit(1)), genv, lenv)) is True


class TestControlFlow:
  """if, while and while2"""

  @pytest.mark.parametrize("cond,expected", [
      (lit(0), "then"),
      (lit(""), "then"),
      (["ary_new"], "then"),
      (lit(False), "else"),
      (lit(None), "else"),
  ])
  def test_truthiness(self, genv, lenv, cond, expected):
    tree = ["if", cond, lit("then"), lit("else")]
    assert unwrap_value(evaluate(tree, genv, lenv)) == expected

  def test_while_loop(self, genv, lenv):
    tree = ["stmts",
            ["var_assign", "i", lit(0)],
            ["while", ["<", var("i"), lit(5)],
             ["var_assign", "i", ["+", var("i"), lit(1)]]],
            var("i")]
    assert unwrap_value(evaluate(tree, genv, lenv)) == 5

  def test_while_returns_nil(self, genv, lenv):
    assert evaluate(["while", lit(False), lit(1)], genv, lenv)['type'] == "Nil"

  def test_while2_runs_body_once(self, genv, lenv):
    tree = ["stmts",
            ["var_assign", "x", lit(0)],
            ["while2", lit(False), ["var_assign", "x", ["+", var("x"), lit(1)]]],
            var("x")]
    assert unwrap_value(evaluate(tree, genv, lenv)) == 1

  def test_while2_returns_nil(self, genv, lenv):
    assert evaluate(["while2", lit(False), lit(1)], genv, lenv)['type'] == "Nil"


class TestFunctions:
  """func_def and func_call"""

  def test_factorial(self, genv, lenv):
    evaluate(FACT, genv, lenv)
    assert evaluate(call("fact", lit(5)), genv, lenv) == make_value(120, "Int")

  def test_func_def_returns_definition(self, genv, lenv):
    definition = evaluate(FACT, genv, lenv)
    assert definition['type'] == "UserDefined"
    assert definition['value']['params'] == ["n"]
    assert genv['functions']['fact'] is definition

  def test_last_definition_wins(self, genv, lenv):
    evaluate(["func_def", "f", [], lit(1)], genv, lenv)
    evaluate(["func_def", "f", [], lit(2)], genv, lenv)
    assert unwrap_value(evaluate(call("f"), genv, lenv)) == 2

  def test_callee_cannot_see_caller_locals(self, genv, lenv):
    evaluate(["var_assign", "x", lit(1)], genv, lenv)
    evaluate(["func_def", "f", [], var("x")], genv, lenv)
    with pytest.raises(UndefinedVariable):
      evaluate(call("f"), genv, lenv)

  def test_callee_assignments_stay_local(self, genv, lenv):
    evaluate(["var_assign", "x", lit(1)], genv, lenv)
    evaluate(["func_def", "f", ["x"], ["var_assign", "x", lit(99)]], genv, lenv)
    evaluate(call("f", lit(5)), genv, lenv)
    assert unwrap_value(lenv["x"]) == 1

  def test_undefined_function(self, genv, lenv):
    with pytest.raises(UndefinedFunction):
      evaluate(call("nope"), genv, lenv)

  def test_wrong_argument_count(self, genv, lenv):
    evaluate(FACT, genv, lenv)
    with pytest.raises(ArityMismatch):
      evaluate(call("fact"), genv, lenv)
    with pytest.raises(ArityMismatch):
      evaluate(call("fact", lit(1), lit(2)), genv, lenv)

  def test_arguments_evaluated_left_to_right(self, genv, lenv, out):
    evaluate(call("p", call("p", lit(1)), call("p", lit(2))), genv, lenv)
    assert out.getvalue() == "1\n2\n1\n2\n"

  def test_arrays_are_shared_with_callee(self, genv, lenv):
    evaluate(["func_def", "set_first", ["a"], ["ary_assign", var("a"), lit(0), lit("x")]],
             genv, lenv)
    evaluate(["var_assign", "arr", ["ary_new", lit(1)]], genv, lenv)
    evaluate(call("set_first", var("arr")), genv, lenv)
    assert unwrap_value(lenv["arr"]) == ["x"]


class TestCollections:
  """ary_new, ary_ref, ary_assign and hash_new"""

  def test_array_literal(self, genv, lenv):
    tree = ["ary_new", lit(1), ["+", lit(1), lit(1)], lit("three")]
    assert unwrap_value(evaluate(tree, genv, lenv)) == [1, 2, "three"]

  def test_array_reference(self, genv, lenv):
    tree = ["ary_ref", ["ary_new", lit(10), lit(20)], lit(1)]
    assert unwrap_value(evaluate(tree, genv, lenv)) == 20

  def test_aliasing(self, genv, lenv):
    tree = ["stmts",
            ["var_assign", "a", ["ary_new", lit(1), lit(2)]],
            ["var_assign", "b", var("a")],
            ["ary_assign", var("b"), lit(0), lit(9)],
            ["ary_ref", var("a"), lit(0)]]
    assert unwrap_value(evaluate(tree, genv, lenv)) == 9

  def test_ary_assign_returns_value(self, genv, lenv):
    tree = ["ary_assign", ["ary_new", lit(1)], lit(0), lit("v")]
    assert unwrap_value(evaluate(tree, genv, lenv)) == "v"

  def test_ary_assign_evaluation_order(self, genv, lenv, out):
    tree = ["ary_assign", call("p", ["ary_new"]), call("p", lit(0)), call("p", lit("v"))]
    evaluate(tree, genv, lenv)
    assert out.getvalue() == '[]\n0\n"v"\n'

  def test_ary_assign_grows_with_nil(self, genv, lenv):
    evaluate(["var_assign", "a", ["ary_new"]], genv, lenv)
    evaluate(["ary_assign", var("a"), lit(2), lit(1)], genv, lenv)
    assert unwrap_value(lenv["a"]) == [None, None, 1]

  @pytest.mark.parametrize("index", [2, 5, -1])
  def test_index_out_of_range(self, genv, lenv, index):
    tree = ["ary_ref", ["ary_new", lit(1), lit(2)], lit(index)]
    with pytest.raises(IndexOutOfRange):
      evaluate(tree, genv, lenv)

  def test_negative_assignment_index(self, genv, lenv):
    with pytest.raises(IndexOutOfRange):
      evaluate(["ary_assign", ["ary_new", lit(1)], lit(-1), lit(0)], genv, lenv)

  def test_non_integer_index(self, genv, lenv):
    with pytest.raises(TypeMismatch) as exc_info:
      evaluate(["ary_ref", ["ary_new", lit(1)], lit("0")], genv, lenv)
    assert exc_info.value.tag == "ary_ref"

  def test_non_integer_assignment_index(self, genv, lenv):
    with pytest.raises(TypeMismatch) as exc_info:
      evaluate(["ary_assign", ["ary_new", lit(1)], lit(0.5), lit(0)], genv, lenv)
    assert exc_info.value.tag == "ary_assign"

  def test_indexing_a_scalar(self, genv, lenv):
    with pytest.raises(TypeMismatch):
      evaluate(["ary_ref", lit(1), lit(0)], genv, lenv)

  def test_hash_new_later_keys_win(self, genv, lenv):
    tree = ["hash_new", lit(1), lit("a"), lit(2), lit("b"), lit(1), lit("c")]
    assert unwrap_value(evaluate(tree, genv, lenv)) == {1: "c", 2: "b"}

  def test_hash_reference_and_update(self, genv, lenv):
    tree = ["stmts",
            ["var_assign", "h", ["hash_new", lit("k"), lit(1)]],
            ["ary_assign", var("h"), lit("k"), lit(2)],
            ["ary_assign", var("h"), lit("new"), lit(3)],
            var("h")]
    assert unwrap_value(evaluate(tree, genv, lenv)) == {"k": 2, "new": 3}

  def test_missing_hash_key(self, genv, lenv):
    with pytest.raises(IndexOutOfRange):
      evaluate(["ary_ref", ["hash_new", lit(1), lit(2)], lit(3)], genv, lenv)

  def test_int_and_float_keys_differ(self, genv, lenv):
    tree = ["ary_ref", ["hash_new", lit(1), lit("int")], lit(1.0)]
    with pytest.raises(IndexOutOfRange):
      evaluate(tree, genv, lenv)


class TestProgramApi:
  """eval_program, run_source and the interpreter object"""

  def test_eval_program(self):
    assert unwrap_value(eval_program(["stmts", FACT, call("fact", lit(4))])) == 24

  def test_each_run_gets_a_fresh_table(self):
    first = make_global_env()
    eval_program(["stmts", FACT], first)
    second = make_global_env()
    assert "fact" in first['functions']
    assert "fact" not in second['functions']
    assert "p" in second['functions']

  def test_run_source(self, out):
    result = run_source("x = 6\np(x * 7)", out=out)
    assert out.getvalue() == "42\n"
    assert unwrap_value(result) == 42

  def test_interpreter_keeps_state_between_runs(self, out):
    interpreter = create_interpreter(out=out)
    interpreter.run("def double(n)\n  n * 2\nend\nx = 21")
    assert unwrap_value(interpreter.run("double(x)")) == 42

  def test_errors_share_a_base_class(self):
    with pytest.raises(MinRubyRuntimeError) as exc_info:
      eval_program(["stmts", ["/", lit(1), lit(0)]])
    assert str(exc_info.value).startswith("DivisionByZero:")

  def test_local_env_starts_empty(self):
    assert make_local_env() == {}
