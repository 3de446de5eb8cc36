"""
Utilities module for the MinRuby interpreter
Runtime value model and the operator helpers shared by evaluator and builtins
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
import math
import operator

from error_handling import DivisionByZero, TypeMismatch


VALUE_TYPES = ("Int", "Float", "Bool", "Nil", "String", "Array", "Hash")
NUMERIC_TYPES = ("Int", "Float")


# ==================== VALUE CONSTRUCTION ====================

def make_value(value: Any, type_name: str) -> Dict:
  """Create a runtime value"""
  return {
      'value': value,
      'type': type_name
  }


def make_nil() -> Dict:
  return make_value(None, "Nil")


def make_bool(flag: bool) -> Dict:
  return make_value(bool(flag), "Bool")


def make_array(elements: Optional[List[Dict]] = None) -> Dict:
  """Create an array value; the list is owned by the value, not copied"""
  return make_value(elements if elements is not None else [], "Array")


def make_hash() -> Dict:
  """Create an empty hash value (fingerprint -> (key, value), insertion ordered)"""
  return make_value({}, "Hash")


def to_value(raw: Any) -> Dict:
  """
  Convert a raw Python object into a runtime value

  Args:
    raw: int, float, bool, None, str, list/tuple or dict (recursively)

  Returns:
    Value dict

  Examples:
    to_value(1) -> {'value': 1, 'type': 'Int'}
    to_value(["lit", 1]) -> Array of [String "lit", Int 1]
  """
  if raw is None:
    return make_nil()
  if isinstance(raw, bool):
    return make_bool(raw)
  if isinstance(raw, int):
    return make_value(raw, "Int")
  if isinstance(raw, float):
    return make_value(raw, "Float")
  if isinstance(raw, str):
    return make_value(raw, "String")
  if isinstance(raw, (list, tuple)):
    return make_array([to_value(elem) for elem in raw])
  if isinstance(raw, dict):
    hsh = make_hash()
    for key, val in raw.items():
      hash_store(hsh, to_value(key), to_value(val))
    return hsh
  raise TypeMismatch(f"Cannot convert {type(raw).__name__} to a value")


def unwrap_value(val: Dict) -> Any:
  """Recursively unwrap a runtime value into plain Python data"""
  if val['type'] == "Array":
    return [unwrap_value(elem) for elem in val['value']]
  if val['type'] == "Hash":
    return {_unwrap_key(k): unwrap_value(v) for k, v in val['value'].values()}
  if val['type'] in VALUE_TYPES:
    return val['value']
  # Function definitions have no plain-data form
  return val


def _unwrap_key(key: Dict) -> Any:
  raw = unwrap_value(key)
  if isinstance(raw, list):
    return tuple(_freeze(item) for item in raw)
  return raw


def _freeze(raw: Any) -> Any:
  if isinstance(raw, list):
    return tuple(_freeze(item) for item in raw)
  return raw


# ==================== TYPE CHECKING UTILITIES ====================

def is_truthy(val: Dict) -> bool:
  """Only false and nil are falsy; 0, "" and [] are truthy"""
  if val['type'] == "Nil":
    return False
  if val['type'] == "Bool":
    return val['value']
  return True


def is_numeric(val: Dict) -> bool:
  return val['type'] in NUMERIC_TYPES


# ==================== HASH SUPPORT ====================

def hash_key(key: Dict) -> Tuple:
  """
  Hashable fingerprint of a value used as a hash key

  Integers and floats stay distinct keys (1 and 1.0 differ, as with Ruby's eql?).
  """
  key_type = key['type']
  if key_type == "Array":
    return ("Array", tuple(hash_key(elem) for elem in key['value']))
  if key_type == "Hash":
    return ("Hash", tuple((fp, hash_key(v)) for fp, (_, v) in key['value'].items()))
  if key_type in VALUE_TYPES:
    return (key_type, key['value'])
  raise TypeMismatch(f"{key_type} cannot be used as a hash key")


def hash_store(hsh: Dict, key: Dict, val: Dict) -> None:
  """Insert or overwrite key in place"""
  hsh['value'][hash_key(key)] = (key, val)


def hash_fetch(hsh: Dict, key: Dict) -> Optional[Dict]:
  """Value stored under key, or None when the key is absent"""
  entry = hsh['value'].get(hash_key(key))
  return entry[1] if entry is not None else None


# ==================== EQUALITY ====================

def values_equal(x: Dict, y: Dict) -> bool:
  """Structural equality; numbers compare across Int and Float"""
  if is_numeric(x) and is_numeric(y):
    return x['value'] == y['value']
  if x['type'] != y['type']:
    return False
  if x['type'] == "Array":
    xs, ys = x['value'], y['value']
    return len(xs) == len(ys) and all(values_equal(a, b) for a, b in zip(xs, ys))
  if x['type'] == "Hash":
    if x['value'].keys() != y['value'].keys():
      return False
    return all(values_equal(v, y['value'][fp][1]) for fp, (_, v) in x['value'].items())
  if x['type'] in VALUE_TYPES:
    return x['value'] == y['value']
  return x is y


# ==================== STRING FORMS ====================

def format_float(num: float) -> str:
  if math.isnan(num):
    return "NaN"
  if math.isinf(num):
    return "Infinity" if num > 0 else "-Infinity"
  text = repr(num)
  mantissa, marker, exponent = text.partition("e")
  if marker and "." not in mantissa:
    # 1e+20 prints as 1.0e+20
    return f"{mantissa}.0e{exponent}"
  return text


def inspect_value(val: Dict) -> str:
  """Developer-facing form, as printed by p"""
  val_type = val['type']
  if val_type == "Nil":
    return "nil"
  if val_type == "Bool":
    return "true" if val['value'] else "false"
  if val_type == "Int":
    return str(val['value'])
  if val_type == "Float":
    return format_float(val['value'])
  if val_type == "String":
    return _quote_string(val['value'])
  if val_type == "Array":
    return "[" + ", ".join(inspect_value(elem) for elem in val['value']) + "]"
  if val_type == "Hash":
    pairs = [f"{inspect_value(k)} => {inspect_value(v)}" for k, v in val['value'].values()]
    return "{" + ", ".join(pairs) + "}"
  if val_type in ("UserDefined", "Builtin"):
    return f"#<{val_type} {val['value']['name']}>"
  return f"<{val_type}>"


def to_s_value(val: Dict) -> str:
  """User-facing form, as printed by print and puts"""
  if val['type'] == "Nil":
    return ""
  if val['type'] == "String":
    return val['value']
  return inspect_value(val)


_STRING_ESCAPES = {
    '\\': '\\\\', '"': '\\"', '\n': '\\n', '\t': '\\t', '\r': '\\r',
    '\0': '\\0', '\a': '\\a', '\b': '\\b', '\f': '\\f', '\v': '\\v', '\x1b': '\\e',
}


def _quote_string(text: str) -> str:
  return '"' + "".join(_STRING_ESCAPES.get(ch, ch) for ch in text) + '"'


# ==================== ERROR MESSAGE BUILDERS ====================

def operation_error(op: str, left: Dict, right: Dict) -> TypeMismatch:
  """Generate operation error"""
  return TypeMismatch(f"Cannot apply '{op}' to {left['type']} and {right['type']}", op)


# ==================== BINARY OPERATION FACTORIES ====================

def _numeric_result(result: Any) -> Dict:
  if isinstance(result, complex):
    raise TypeMismatch("Result is not a real number", "**")
  return make_value(result, "Int" if isinstance(result, int) else "Float")


def binary_arithmetic_op(
  op: Callable[[Any, Any], Any],
  op_name: str,
  extra: Optional[Callable[[Dict, Dict], Optional[Dict]]] = None
) -> Callable[[Dict, Dict], Dict]:
  """
  Factory for numeric binary operations with Int/Float promotion

  Args:
    op: Python operator function (e.g., operator.sub)
    op_name: Operator tag for error messages
    extra: Handler for non-numeric operands; returns None when it does not apply

  Returns:
    Function of two values returning a value

  Examples:
    sub = binary_arithmetic_op(operator.sub, "-")
    sub(make_value(3, "Int"), make_value(1, "Int")) -> Int 2
  """
  def arithmetic(x: Dict, y: Dict) -> Dict:
    if is_numeric(x) and is_numeric(y):
      try:
        return _numeric_result(op(x['value'], y['value']))
      except OverflowError:
        # An Int too large for a Float meets a Float: it counts as an infinity
        return _numeric_result(op(_as_float(x['value']), _as_float(y['value'])))
    if extra is not None:
      result = extra(x, y)
      if result is not None:
        return result
    raise operation_error(op_name, x, y)

  return arithmetic


def binary_comparison_op(
  op: Callable[[Any, Any], bool],
  op_name: str
) -> Callable[[Dict, Dict], Dict]:
  """
  Factory for ordering comparisons: numbers with numbers, strings with strings

  Examples:
    lt = binary_comparison_op(operator.lt, "<")
    lt(make_value(1, "Int"), make_value(2.5, "Float")) -> Bool true
  """
  def comparison(x: Dict, y: Dict) -> Dict:
    if is_numeric(x) and is_numeric(y):
      return make_bool(op(x['value'], y['value']))
    if x['type'] == "String" and y['type'] == "String":
      return make_bool(op(x['value'], y['value']))
    raise operation_error(op_name, x, y)

  return comparison


def _add_sequences(x: Dict, y: Dict) -> Optional[Dict]:
  if x['type'] == "String" and y['type'] == "String":
    return make_value(x['value'] + y['value'], "String")
  if x['type'] == "Array" and y['type'] == "Array":
    return make_array(x['value'] + y['value'])
  return None


def _repeat_sequence(x: Dict, y: Dict) -> Optional[Dict]:
  if y['type'] != "Int" or x['type'] not in ("String", "Array"):
    return None
  if y['value'] < 0:
    raise TypeMismatch("Negative repetition count", "*")
  if x['type'] == "String":
    return make_value(x['value'] * y['value'], "String")
  return make_array(x['value'] * y['value'])


def _divide(x: Any, y: Any) -> Any:
  if isinstance(x, int) and isinstance(y, int):
    if y == 0:
      raise DivisionByZero("divided by 0", "/")
    return x // y
  if y == 0:
    if x == 0 or math.isnan(x):
      return math.nan
    return math.copysign(math.inf, x) * math.copysign(1.0, y)
  return x / y


def _modulo(x: Any, y: Any) -> Any:
  if isinstance(x, int) and isinstance(y, int):
    if y == 0:
      raise DivisionByZero("divided by 0", "%")
    return x % y
  if y == 0:
    return math.nan
  return x % y


def _as_float(num: Any) -> float:
  try:
    return float(num)
  except OverflowError:
    return math.inf if num > 0 else -math.inf


def _is_odd(num: Any) -> bool:
  if isinstance(num, float):
    return num.is_integer() and int(num) % 2 == 1
  return num % 2 == 1


def _power(x: Any, y: Any) -> Any:
  if isinstance(x, int) and isinstance(y, int) and y < 0:
    if x == 0:
      raise DivisionByZero("divided by 0", "**")
    return float(x) ** y
  try:
    return x ** y
  except ZeroDivisionError:
    raise DivisionByZero("divided by 0", "**")
  except OverflowError:
    return -math.inf if x < 0 and _is_odd(y) else math.inf


def _equal(x: Dict, y: Dict) -> Dict:
  return make_bool(values_equal(x, y))


BINARY_OPERATORS: Dict[str, Callable[[Dict, Dict], Dict]] = {
    '+': binary_arithmetic_op(operator.add, "+", _add_sequences),
    '-': binary_arithmetic_op(operator.sub, "-"),
    '*': binary_arithmetic_op(operator.mul, "*", _repeat_sequence),
    '/': binary_arithmetic_op(_divide, "/"),
    '%': binary_arithmetic_op(_modulo, "%"),
    '**': binary_arithmetic_op(_power, "**"),
    '<': binary_comparison_op(operator.lt, "<"),
    '<=': binary_comparison_op(operator.le, "<="),
    '==': _equal,
    '>=': binary_comparison_op(operator.ge, ">="),
    '>': binary_comparison_op(operator.gt, ">"),
}
