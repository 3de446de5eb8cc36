"""
MinRuby - Main Entry Point
Runs MinRuby programs, prints their trees, or starts an interactive session
"""

import sys
import argparse
import atexit
import os
from typing import List, Optional

# Readline support for history and auto-completion
try:
  import readline
  READLINE_AVAILABLE = True
except ImportError:
  READLINE_AVAILABLE = False

from parsing import KEYWORDS, create_parser, create_debug_parser, pretty_print_ast
from interpreter import create_interpreter, create_debug_interpreter, genv_lookup
from error_handling import MinRubyParseError, MinRubyRuntimeError
from stdlib import BUILTIN_REGISTRY, call_builtin
from utilities import inspect_value

VERSION = "0.1.0"

# Every call and every nested node costs Python frames
RECURSION_LIMIT = 10000

HISTORY_FILE = os.path.expanduser("~/.minruby_history")


def create_arg_parser() -> argparse.ArgumentParser:
  """Create command line argument parser"""
  parser = argparse.ArgumentParser(
      prog='minruby',
      description='MinRuby - a tree-walking interpreter for a small Ruby subset',
      formatter_class=argparse.RawDescriptionHelpFormatter,
      epilog="""
Examples:
  %(prog)s script.rb                  # Run a MinRuby script
  %(prog)s interp.rb script.rb        # Run an interpreter written in MinRuby on script.rb
  %(prog)s -e 'p(1 + 2)'              # Run inline code
  %(prog)s --parse script.rb          # Parse and show the tree
  %(prog)s --debug script.rb          # Run with debug output
  %(prog)s -i                         # Interactive mode
        """
  )

  parser.add_argument(
      'script',
      nargs='?',
      help='MinRuby script file to execute'
  )

  parser.add_argument(
      'args',
      nargs=argparse.REMAINDER,
      help='Further files, left for the program to read with minruby_load'
  )

  parser.add_argument(
      '-e',
      dest='code',
      metavar='CODE',
      help='Run CODE instead of a script file'
  )

  parser.add_argument(
      '-i', '--interactive',
      action='store_true',
      help='Start interactive mode'
  )

  parser.add_argument(
      '--parse',
      action='store_true',
      help='Parse the program and show its tree instead of running it'
  )

  parser.add_argument(
      '--debug',
      action='store_true',
      help='Trace parsing and evaluation'
  )

  parser.add_argument(
      '--version',
      action='version',
      version=f'MinRuby v{VERSION}'
  )

  return parser


# ============================================================================
# ERROR REPORTING
# ============================================================================

def report_parse_error(e: MinRubyParseError) -> None:
  print(str(e), file=sys.stderr, end="")


def report_runtime_error(e: MinRubyRuntimeError, source_name: str) -> None:
  print(f"\n{'=' * 70}", file=sys.stderr)
  print(f"Runtime Error in '{source_name}'", file=sys.stderr)
  print(f"{'=' * 70}", file=sys.stderr)
  print(f"\n{e}\n", file=sys.stderr)


# ============================================================================
# BATCH MODES
# ============================================================================

def parse_program(script_path: Optional[str], code: Optional[str], debug: bool = False) -> int:
  """Parse a script file or inline code and show the tree"""
  parser = create_debug_parser() if debug else create_parser()
  try:
    if code is not None:
      tree = parser.parse_string(code, "-e")
    else:
      tree = parser.parse_file(script_path)
  except MinRubyParseError as e:
    report_parse_error(e)
    return 1

  print(pretty_print_ast(tree), end="")
  return 0


def run_program(script_path: Optional[str], args: List[str], code: Optional[str],
                debug: bool = False) -> int:
  """
  Run a program file (or inline code) in a fresh global table

  The command line seeds the bridge's argv; the program text itself is fetched through
  minruby_load, so any remaining paths are still there for the program's own
  minruby_load calls.
  """
  source_name = "-e" if code is not None else script_path
  argv = list(args) if code is not None else [script_path] + list(args)
  interpreter = create_debug_interpreter(argv) if debug else create_interpreter(argv=argv)

  try:
    if code is None:
      code = call_builtin(interpreter.global_env['bridge'], 'minruby_load', [])['value']
    if debug:
      print(f"Running {source_name}...")
    interpreter.run(code, filename=source_name)
  except MinRubyParseError as e:
    report_parse_error(e)
    return 1
  except MinRubyRuntimeError as e:
    report_runtime_error(e, source_name)
    return 1
  except RecursionError:
    print(f"Error: stack level too deep in '{source_name}'", file=sys.stderr)
    return 1
  finally:
    sys.stdout.flush()

  return 0


# ============================================================================
# INTERACTIVE MODE
# ============================================================================

def setup_readline() -> None:
  """Setup readline with history and auto-completion"""
  if not READLINE_AVAILABLE:
    return

  try:
    readline.read_history_file(HISTORY_FILE)
  except OSError:
    pass  # First session, nothing saved yet
  readline.set_history_length(1000)

  completions = list(KEYWORDS) + list(BUILTIN_REGISTRY) + [
      ":parse", ":env", ":functions", ":help", "exit"
  ]

  def completer(text, state):
    options = [cmd for cmd in completions if cmd.startswith(text)]
    if state < len(options):
      return options[state]
    return None

  readline.set_completer(completer)
  readline.parse_and_bind("tab: complete")
  atexit.register(_save_history)


def _save_history() -> None:
  try:
    readline.write_history_file(HISTORY_FILE)
  except OSError as e:
    print(f"Warning: could not save history: {e}", file=sys.stderr)


def needs_more_input(error: MinRubyParseError) -> bool:
  """An unclosed block means the entry continues on the next line"""
  return "A block is missing its closing 'end'" in error.suggestions


def show_help() -> None:
  print("REPL Commands:")
  print("  :parse <code>     - Show the parsed tree")
  print("  :env              - Show local variables")
  print("  :functions        - Show defined functions")
  print("  :help             - Show this help")
  print("  exit              - Exit REPL")
  print()
  print("Unfinished blocks continue on the next line; an empty line ends the entry.")


def show_env(interpreter) -> None:
  # Hidden temporaries from && || and case start with '%'
  bindings = {name: val for name, val in interpreter.local_env.items()
              if not name.startswith('%')}
  if not bindings:
    print("  (no local variables)")
  for name, val in bindings.items():
    val_str = inspect_value(val)
    if len(val_str) > 60:
      val_str = val_str[:57] + "..."
    print(f"  {name} = {val_str}")


def show_functions(interpreter) -> None:
  for name in interpreter.global_env['functions']:
    definition = genv_lookup(interpreter.global_env, name)
    if definition['type'] == "UserDefined":
      print(f"  {name}({', '.join(definition['value']['params'])})")
    else:
      print(f"  {name} (builtin)")


def run_interactive_mode(debug: bool = False) -> None:
  """Run MinRuby interactively; all entries share one global table and one frame"""
  print(f"MinRuby v{VERSION} - Interactive Mode")
  print("Type 'exit' to quit, ':help' for commands")
  if debug:
    print("Debug mode enabled")
  print()

  setup_readline()

  parser = create_debug_parser() if debug else create_parser()
  interpreter = create_debug_interpreter() if debug else create_interpreter()
  buffer = []

  while True:
    try:
      line = input("...> " if buffer else "minruby> ")
    except KeyboardInterrupt:
      print()
      buffer = []
      continue
    except EOFError:
      print("\nGoodbye!")
      break

    if not buffer:
      command = line.strip()
      if not command:
        continue
      if command in ("exit", "quit"):
        break
      if command == ":help":
        show_help()
        continue
      if command == ":env":
        show_env(interpreter)
        continue
      if command == ":functions":
        show_functions(interpreter)
        continue
      if command.startswith(":parse "):
        try:
          print(pretty_print_ast(parser.parse_string(command[7:])), end="")
        except MinRubyParseError as e:
          report_parse_error(e)
        continue

    buffer.append(line)
    code = "\n".join(buffer)

    try:
      result = interpreter.run(code)
    except MinRubyParseError as e:
      if line.strip() and needs_more_input(e):
        continue
      report_parse_error(e)
    except MinRubyRuntimeError as e:
      print(f"Runtime Error: {e}", file=sys.stderr)
    except RecursionError:
      print("Error: stack level too deep", file=sys.stderr)
    else:
      print(f"=> {inspect_value(result)}")
    buffer = []


# ============================================================================
# ENTRY POINT
# ============================================================================

def main(argv: Optional[List[str]] = None) -> int:
  """Main entry point for MinRuby"""
  arg_parser = create_arg_parser()
  args = arg_parser.parse_args(argv)

  sys.setrecursionlimit(max(sys.getrecursionlimit(), RECURSION_LIMIT))

  if args.code is not None and args.script is not None:
    # With -e every positional argument is left for the program
    args.args = [args.script] + args.args
    args.script = None

  if args.interactive:
    run_interactive_mode(debug=args.debug)
    return 0

  if args.script is None and args.code is None:
    arg_parser.print_help()
    return 0

  if args.parse:
    return parse_program(args.script, args.code, debug=args.debug)
  return run_program(args.script, args.args, args.code, debug=args.debug)


if __name__ == "__main__":
  sys.exit(main())
