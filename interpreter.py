"""
MinRuby Interpreter - Tree-Walking Evaluator
Functions and plain dictionaries; side effects happen only through the builtin bridge
"""

from typing import Any, Dict, List, Optional, TextIO

from error_handling import (
  ArityMismatch,
  IndexOutOfRange,
  TypeMismatch,
  UndefinedFunction,
  UndefinedVariable,
  UnrecognizedNodeTag,
)
from utilities import (
  BINARY_OPERATORS,
  hash_fetch,
  hash_store,
  inspect_value,
  is_truthy,
  make_array,
  make_hash,
  make_nil,
  make_value,
  to_value,
)
from stdlib import BUILTIN_REGISTRY, call_builtin, create_builtin_bridge
from parsing import parse


# ============================================================================
# DATA STRUCTURES (Plain Dictionaries)
# ============================================================================

def make_builtin(name: str, native_name: str) -> Dict:
  """Create a function definition forwarded to the builtin bridge"""
  return make_value({
      'name': name,
      'native_name': native_name
  }, "Builtin")


def make_user_function(name: str, params: List[str], body: Any) -> Dict:
  """Create a user-defined function: parameter names plus an AST body"""
  return make_value({
      'name': name,
      'params': list(params),
      'body': body
  }, "UserDefined")


def make_global_env(bridge: Optional[Dict] = None) -> Dict:
  """
  Create the function table for one program run, seeded with the builtins

  The table is shared by every frame and only grows through func_def.
  """
  functions = {name: make_builtin(name, native_name)
               for name, native_name in BUILTIN_REGISTRY.items()}
  return {
      'functions': functions,
      'bridge': bridge if bridge is not None else create_builtin_bridge()
  }


def make_local_env(bindings: Optional[Dict] = None) -> Dict:
  """Create a flat variable table for one call frame (no parent frame)"""
  return dict(bindings or {})


# ============================================================================
# ENVIRONMENT OPERATIONS
# ============================================================================

def genv_define(genv: Dict, name: str, definition: Dict) -> Dict:
  genv['functions'][name] = definition
  return definition


def genv_lookup(genv: Dict, name: str) -> Dict:
  definition = genv['functions'].get(name)
  if definition is None:
    raise UndefinedFunction(f"undefined method '{name}'", "func_call")
  return definition


def lenv_lookup(lenv: Dict, name: str) -> Dict:
  if name not in lenv:
    raise UndefinedVariable(f"undefined local variable '{name}'", "var_ref")
  return lenv[name]


# ============================================================================
# EVALUATION FUNCTIONS
# ============================================================================

def evaluate(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  """
  Evaluate an AST node in the given environments and return its value.
  genv and lenv are mutated in place: func_def writes genv, var_assign writes lenv.
  """
  tag = tree[0] if tree else None

  if debug:
    print(f"Evaluating: {tag}")

  if tag == "lit":
    return to_value(tree[1])
  elif isinstance(tag, str) and tag in BINARY_OPERATORS:
    return eval_binary(tree, genv, lenv, debug)
  elif tag == "stmts":
    return eval_stmts(tree, genv, lenv, debug)
  elif tag == "var_assign":
    return eval_var_assign(tree, genv, lenv, debug)
  elif tag == "var_ref":
    return lenv_lookup(lenv, tree[1])
  elif tag == "if":
    return eval_if(tree, genv, lenv, debug)
  elif tag == "while":
    return eval_while(tree, genv, lenv, debug)
  elif tag == "while2":
    return eval_while2(tree, genv, lenv, debug)
  elif tag == "func_def":
    return genv_define(genv, tree[1], make_user_function(tree[1], tree[2], tree[3]))
  elif tag == "func_call":
    return eval_func_call(tree, genv, lenv, debug)
  elif tag == "ary_new":
    return make_array([evaluate(elem, genv, lenv, debug) for elem in tree[1:]])
  elif tag == "ary_ref":
    return eval_ary_ref(tree, genv, lenv, debug)
  elif tag == "ary_assign":
    return eval_ary_assign(tree, genv, lenv, debug)
  elif tag == "hash_new":
    return eval_hash_new(tree, genv, lenv, debug)
  else:
    raise UnrecognizedNodeTag(f"Unknown node tag: {tag!r}", str(tag))


def eval_binary(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  """Evaluate left operand fully, then right, then apply the operator"""
  left = evaluate(tree[1], genv, lenv, debug)
  right = evaluate(tree[2], genv, lenv, debug)
  return BINARY_OPERATORS[tree[0]](left, right)


def eval_stmts(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  """Value of the last statement; nil for an empty sequence"""
  last = make_nil()
  for stmt in tree[1:]:
    last = evaluate(stmt, genv, lenv, debug)
  return last


def eval_var_assign(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  value = evaluate(tree[2], genv, lenv, debug)
  lenv[tree[1]] = value
  return value


def eval_if(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  if is_truthy(evaluate(tree[1], genv, lenv, debug)):
    return evaluate(tree[2], genv, lenv, debug)
  return evaluate(tree[3], genv, lenv, debug)


def eval_while(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  while is_truthy(evaluate(tree[1], genv, lenv, debug)):
    evaluate(tree[2], genv, lenv, debug)
  return make_nil()


def eval_while2(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  """do-while: the body runs once before the first condition check"""
  evaluate(tree[2], genv, lenv, debug)
  return eval_while(tree, genv, lenv, debug)


def eval_func_call(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  """Evaluate arguments left to right, then dispatch on the definition kind"""
  name = tree[1]
  args = [evaluate(arg, genv, lenv, debug) for arg in tree[2:]]
  definition = genv_lookup(genv, name)

  if definition['type'] == "Builtin":
    return call_builtin(genv['bridge'], definition['value']['native_name'], args)

  func = definition['value']
  params = func['params']
  if len(args) != len(params):
    raise ArityMismatch(
        f"wrong number of arguments for '{name}' (given {len(args)}, expected {len(params)})",
        "func_call")

  if debug:
    print(f"Entering frame for {name}")

  # The callee sees only its parameters, never the caller's locals
  new_lenv = make_local_env(dict(zip(params, args)))
  return evaluate(func['body'], genv, new_lenv, debug)


def eval_ary_ref(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  container = evaluate(tree[1], genv, lenv, debug)
  index = evaluate(tree[2], genv, lenv, debug)

  if container['type'] == "Array":
    elements = container['value']
    _check_array_index(index, tree[0])
    if not 0 <= index['value'] < len(elements):
      raise IndexOutOfRange(
          f"index {index['value']} outside of array of size {len(elements)}", "ary_ref")
    return elements[index['value']]

  if container['type'] == "Hash":
    value = hash_fetch(container, index)
    if value is None:
      raise IndexOutOfRange(f"key not found: {inspect_value(index)}", "ary_ref")
    return value

  raise TypeMismatch(f"Cannot index into {container['type']}", "ary_ref")


def eval_ary_assign(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  """Write into the shared container in place and return the written value"""
  container = evaluate(tree[1], genv, lenv, debug)
  index = evaluate(tree[2], genv, lenv, debug)
  value = evaluate(tree[3], genv, lenv, debug)

  if container['type'] == "Array":
    elements = container['value']
    _check_array_index(index, tree[0])
    position = index['value']
    if position < 0:
      raise IndexOutOfRange(f"index {position} too small for array", "ary_assign")
    while len(elements) <= position:
      elements.append(make_nil())
    elements[position] = value
    return value

  if container['type'] == "Hash":
    hash_store(container, index, value)
    return value

  raise TypeMismatch(f"Cannot assign into {container['type']}", "ary_assign")


def _check_array_index(index: Dict, tag: str) -> None:
  if index['type'] != "Int":
    raise TypeMismatch(f"Array index must be an Int, got {index['type']}", tag)


def eval_hash_new(tree: List, genv: Dict, lenv: Dict, debug: bool = False) -> Dict:
  hsh = make_hash()
  for i in range(1, len(tree) - 1, 2):
    key = evaluate(tree[i], genv, lenv, debug)
    value = evaluate(tree[i + 1], genv, lenv, debug)
    hash_store(hsh, key, value)
  return hsh


# ============================================================================
# PROGRAM EVALUATION
# ============================================================================

def eval_program(tree: List, genv: Optional[Dict] = None, debug: bool = False) -> Dict:
  """Evaluate a whole program tree at top level with an empty local frame"""
  if genv is None:
    genv = make_global_env()
  return evaluate(tree, genv, make_local_env(), debug)


def run_source(source: str, argv: Optional[List[str]] = None, out: Optional[TextIO] = None,
               debug: bool = False, filename: str = "<input>") -> Dict:
  """Parse and run source text; returns the program's final value"""
  bridge = create_builtin_bridge(argv, out, debug)
  tree = parse(source, debug=debug, filename=filename)
  return eval_program(tree, make_global_env(bridge), debug)


# ============================================================================
# FACTORY FUNCTIONS (for main.py)
# ============================================================================

class Interpreter:
  """One program run: a live global table and a top-level frame"""

  def __init__(self, debug: bool = False, argv: Optional[List[str]] = None,
               out: Optional[TextIO] = None):
    self.debug = debug
    self.global_env = make_global_env(create_builtin_bridge(argv, out, debug))
    self.local_env = make_local_env()

  def evaluate(self, tree: List) -> Dict:
    return evaluate(tree, self.global_env, self.local_env, self.debug)

  def run(self, source: str, filename: str = "<input>") -> Dict:
    """Run source in the live frame; names bound by earlier runs stay variables"""
    tree = parse(source, debug=self.debug, filename=filename, known_locals=set(self.local_env))
    return self.evaluate(tree)


def create_interpreter(debug: bool = False, argv: Optional[List[str]] = None,
                       out: Optional[TextIO] = None) -> Interpreter:
  """Factory function returning an interpreter"""
  return Interpreter(debug, argv, out)


def create_debug_interpreter(argv: Optional[List[str]] = None) -> Interpreter:
  """Factory function returning a debug interpreter"""
  return create_interpreter(debug=True, argv=argv)
