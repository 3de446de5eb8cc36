"""
Integration tests running the sample programs through the command line entry point
"""

import io

import pytest

from main import main
from interpreter import run_source
from error_handling import IndexOutOfRange


class TestExamplePrograms:
  """Run every program in examples/ and compare its output"""

  @pytest.mark.parametrize("name,expected", [
      ("factorial.rb", "120\n3628800\n"),
      ("fib.rb", "0 1 1 2 3 5 8 13 21 34 \n"),
      ("aliasing.rb", '99\n{"one" => 1, "two" => 2}\n'),
      ("loops.rb", "55\n3\n11\n0\n"),
      ("case.rb", "zero\nsmall\nlarge\n"),
      ("calc.rb", "5\n"),
  ])
  def test_example(self, examples_dir, capsys, name, expected):
    assert main([str(examples_dir / name)]) == 0
    assert capsys.readouterr().out == expected

  def test_program_reads_the_next_argument(self, examples_dir, capsys):
    status = main([str(examples_dir / "show_tree.rb"), str(examples_dir / "factorial.rb")])
    assert status == 0
    output = capsys.readouterr().out
    assert output.startswith(
        '["stmts", ["func_def", "fact", ["n"], ["stmts", ["if", ["<=", ["var_ref", "n"], ["lit", 1]]')

  def test_examples_parse(self, examples_dir, capsys):
    for path in sorted(examples_dir.glob("*.rb")):
      assert main(["--parse", str(path)]) == 0
    assert capsys.readouterr().out.startswith("stmts\n")


class TestCommandLine:
  """Inline code, tree printing and error exits"""

  def test_inline_code(self, capsys):
    assert main(["-e", "p(1 + 2)"]) == 0
    assert capsys.readouterr().out == "3\n"

  def test_inline_code_with_arguments(self, tmp_path, capsys):
    data = tmp_path / "data.txt"
    data.write_text("hello")
    assert main(["-e", "puts minruby_load()", str(data)]) == 0
    assert capsys.readouterr().out == "hello\n"

  def test_parse_flag(self, capsys):
    assert main(["--parse", "-e", "x = 1"]) == 0
    assert capsys.readouterr().out == "stmts\n  var_assign 'x'\n    lit 1\n"

  def test_runtime_error_exit(self, capsys):
    assert main(["-e", "1 / 0"]) == 1
    assert "DivisionByZero: divided by 0" in capsys.readouterr().err

  def test_undefined_function_exit(self, capsys):
    assert main(["-e", "nope(1)"]) == 1
    assert "UndefinedFunction" in capsys.readouterr().err

  def test_parse_error_exit(self, capsys):
    assert main(["-e", "p(1 +"]) == 1
    assert "Parse error at line 1" in capsys.readouterr().err

  def test_missing_script(self, tmp_path, capsys):
    assert main([str(tmp_path / "missing.rb")]) == 1
    assert "ProgramLoadError" in capsys.readouterr().err

  def test_huge_int_times_float(self, capsys):
    assert main(["-e", "p(10 ** 400 * 1.0)"]) == 0
    assert capsys.readouterr().out == "Infinity\n"

  def test_output_before_error_is_kept(self, capsys):
    assert main(["-e", "p 1\nx = [1]\np x[3]"]) == 1
    captured = capsys.readouterr()
    assert captured.out == "1\n"
    assert "IndexOutOfRange" in captured.err

  def test_version(self, capsys):
    with pytest.raises(SystemExit):
      main(["--version"])
    assert "MinRuby v" in capsys.readouterr().out


class TestLanguageFeatures:
  """Whole programs exercising the parser and evaluator together"""

  def run(self, source):
    out = io.StringIO()
    run_source(source, out=out)
    return out.getvalue()

  def test_logical_operators_short_circuit(self):
    source = (
        "def loud(x)\n"
        "  p x\n"
        "  x\n"
        "end\n"
        "p(false && loud(1))\n"
        "p(nil || loud(2))\n"
        "p(1 && 2)\n"
    )
    assert self.run(source) == "false\n2\n2\n2\n"

  def test_string_building(self):
    assert self.run('s = "ab"\ns += "c" * 2\nputs s') == "abcc\n"

  def test_nested_functions_and_arrays(self):
    source = (
        "def fill(arr, n)\n"
        "  i = 0\n"
        "  while i < n\n"
        "    arr[i] = i * i\n"
        "    i += 1\n"
        "  end\n"
        "  arr\n"
        "end\n"
        "p fill([], 4)\n"
    )
    assert self.run(source) == "[0, 1, 4, 9]\n"

  def test_hash_counting(self):
    source = (
        'words = ["a", "b", "a"]\n'
        'counts = {"a" => 0, "b" => 0}\n'
        "i = 0\n"
        "while i < 3\n"
        "  counts[words[i]] += 1\n"
        "  i += 1\n"
        "end\n"
        "p counts\n"
    )
    assert self.run(source) == '{"a" => 2, "b" => 1}\n'

  def test_missing_hash_key_is_an_error(self):
    with pytest.raises(IndexOutOfRange):
      self.run('h = {}\np h["x"]')

  def test_unless_and_ternary(self):
    assert self.run('x = 3\nputs(x > 2 ? "big" : "small")\nputs "odd" unless x % 2 == 0') == "big\nodd\n"

  @pytest.mark.parametrize("source,expected", [
      ("p(1 + 2 * 3)", "7\n"),
      ("p(2 ** 3 * 4)", "32\n"),
      ("p(2 * 3 < 7)", "true\n"),
      ("p(1 < 2 && 2 < 3)", "true\n"),
      ("p(10 - 2 * 3 - 1)", "3\n"),
      ("p(-2 * 3)", "-6\n"),
      ("p(-2 ** 2)", "-4\n"),
      ("x = 3\np(-x ** 2)", "-9\n"),
      ("p(2 ** -1)", "0.5\n"),
      ("p(!true || 1 > 0)", "true\n"),
  ])
  def test_operator_precedence(self, source, expected):
    assert self.run(source) == expected

  @pytest.mark.parametrize("source,expected", [
      ("p(10 ** 400 + 0.5)", "Infinity\n"),
      ("p(-(10 ** 400) * 1.0)", "-Infinity\n"),
      ("p((-10.0) ** 401)", "-Infinity\n"),
      ("p(1e20)", "1.0e+20\n"),
      ("p(0.00001)", "1.0e-05\n"),
  ])
  def test_float_edges(self, source, expected):
    assert self.run(source) == expected
