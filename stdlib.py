"""
MinRuby Standard Library
Host-native functions reachable through the builtin bridge
"""

from typing import Any, Callable, Dict, List, Optional, TextIO
import sys

from error_handling import ArityMismatch, ProgramLoadError, TypeMismatch, UndefinedFunction
from utilities import make_array, make_bool, make_nil, make_value, inspect_value, to_s_value, to_value
from parsing import parse


# ============================================================================
# BRIDGE DATA STRUCTURE
# ============================================================================

def create_builtin_bridge(argv: Optional[List[str]] = None, out: Optional[TextIO] = None,
                          debug: bool = False) -> Dict:
  """
  Create the state shared by all native functions of one program run

  Args:
    argv: Paths consumed, in order, by minruby_load
    out: Stream written by p/print/puts (defaults to sys.stdout at call time)
    debug: Trace every native call
  """
  return {
      'natives': NATIVE_FUNCTIONS,
      'argv': list(argv or []),
      'out': out,
      'debug': debug
  }


def _output(bridge: Dict) -> TextIO:
  return bridge['out'] if bridge['out'] is not None else sys.stdout


def call_builtin(bridge: Dict, native_name: str, args: List[Dict]) -> Dict:
  """Forward a native name and evaluated arguments to the host function"""
  native = bridge['natives'].get(native_name)
  if native is None:
    raise UndefinedFunction(f"Undefined builtin: {native_name}", "func_call")

  arity = native['arity']
  if arity is not None and len(args) != arity:
    raise ArityMismatch(
        f"{native_name} requires {arity} arguments, got {len(args)}", "func_call")

  if bridge['debug']:
    print(f"Calling builtin {native_name} with {len(args)} arguments")

  return native['func'](bridge, args)


# ============================================================================
# PRINT FUNCTIONS
# ============================================================================

def minruby_p(bridge: Dict, args: List[Dict]) -> Dict:
  """Print each argument's inspect form on its own line"""
  out = _output(bridge)
  for arg in args:
    out.write(inspect_value(arg) + "\n")

  if not args:
    return make_nil()
  if len(args) == 1:
    return args[0]
  return make_array(list(args))


def minruby_print(bridge: Dict, args: List[Dict]) -> Dict:
  """Print arguments with no separator and no newline"""
  _output(bridge).write("".join(to_s_value(arg) for arg in args))
  return make_nil()


def _puts_lines(val: Dict) -> List[str]:
  if val['type'] == "Array":
    lines = []
    for elem in val['value']:
      lines.extend(_puts_lines(elem))
    return lines
  return [to_s_value(val)]


def minruby_puts(bridge: Dict, args: List[Dict]) -> Dict:
  """Print each argument on its own line, flattening arrays"""
  out = _output(bridge)
  if not args:
    out.write("\n")
    return make_nil()

  for arg in args:
    for line in _puts_lines(arg):
      out.write(line if line.endswith("\n") else line + "\n")
  return make_nil()


# ============================================================================
# PROGRAM LOADING
# ============================================================================

KNOWN_LIBRARIES = ("minruby",)


def minruby_require(bridge: Dict, args: List[Dict]) -> Dict:
  """Accept the libraries the interpreter provides natively"""
  name = args[0]
  if name['type'] != "String":
    raise TypeMismatch(f"require expects a String, got {name['type']}", "func_call")
  if name['value'] not in KNOWN_LIBRARIES:
    raise ProgramLoadError(f"cannot load such file -- {name['value']}", "func_call")
  return make_bool(True)


def minruby_load(bridge: Dict, args: List[Dict]) -> Dict:
  """Read the next program file named on the command line"""
  if not bridge['argv']:
    raise ProgramLoadError("No program file left to load", "func_call")

  path = bridge['argv'].pop(0)
  try:
    with open(path, 'r', encoding='utf-8') as f:
      return make_value(f.read(), "String")
  except (OSError, UnicodeDecodeError) as e:
    raise ProgramLoadError(f"Cannot read {path}: {e}", "func_call") from e


def minruby_parse(bridge: Dict, args: List[Dict]) -> Dict:
  """Parse source text into a tree the program can walk itself"""
  source = args[0]
  if source['type'] != "String":
    raise TypeMismatch(f"minruby_parse expects a String, got {source['type']}", "func_call")
  return to_value(parse(source['value'], debug=bridge['debug']))


def minruby_call(bridge: Dict, args: List[Dict]) -> Dict:
  """Call a native function by name with an array of arguments"""
  name, call_args = args
  if name['type'] != "String":
    raise TypeMismatch(f"minruby_call expects a String name, got {name['type']}", "func_call")
  if call_args['type'] != "Array":
    raise TypeMismatch(f"minruby_call expects an Array of arguments, got {call_args['type']}",
                       "func_call")
  return call_builtin(bridge, name['value'], list(call_args['value']))


# ============================================================================
# NATIVE FUNCTION TABLE
# ============================================================================

def _native(name: str, func: Callable[[Dict, List[Dict]], Dict], arity: Optional[int]) -> Dict:
  return {
      'name': name,
      'func': func,
      'arity': arity  # None accepts any number of arguments
  }


NATIVE_FUNCTIONS: Dict[str, Dict[str, Any]] = {
    'p': _native('p', minruby_p, None),
    'print': _native('print', minruby_print, None),
    'puts': _native('puts', minruby_puts, None),
    'require': _native('require', minruby_require, 1),
    'minruby_load': _native('minruby_load', minruby_load, 0),
    'minruby_parse': _native('minruby_parse', minruby_parse, 1),
    'minruby_call': _native('minruby_call', minruby_call, 2),
}

# Functions every program sees in its global table, mapped to their native names
BUILTIN_REGISTRY: Dict[str, str] = {
    'p': 'p',
    'print': 'print',
    'puts': 'puts',
    'require': 'require',
    'minruby_parse': 'minruby_parse',
    'minruby_load': 'minruby_load',
    'minruby_call': 'minruby_call',
}
