"""
MinRuby Parser
Turns MinRuby source text into the nested-list tree consumed by the evaluator
"""

from typing import Any, List, Optional, Set
import itertools
import re

from pyparsing import (
    Forward, Group, Keyword, Literal, MatchFirst, OneOrMore, OpAssoc, Optional as Opt,
    ParseBaseException, ParseException, ParserElement, ParseResults, Regex, StringEnd, Suppress,
    ZeroOrMore, infix_notation
)

from error_handling import MinRubyParseError, parse_error_from_exception

# Newlines separate statements, so only blanks and tabs are insignificant
ParserElement.set_default_whitespace_chars(" \t")
# Enable packrat parsing for performance
ParserElement.enable_packrat()


KEYWORDS = (
    "def", "end", "if", "elsif", "else", "unless", "while", "do", "begin",
    "case", "when", "then", "true", "false", "nil"
)

STRING_ESCAPES = {
    'n': '\n', 't': '\t', 'r': '\r', '\\': '\\', '"': '"', 's': ' ',
    '0': '\0', 'a': '\a', 'b': '\b', 'f': '\f', 'v': '\v', 'e': '\x1b'
}


# ============================================================================
# SOURCE PREPARATION
# ============================================================================

def strip_comments(text: str) -> str:
    """Blank out '#' comments, leaving string literals and column positions intact"""
    result = []
    quote = None
    in_comment = False
    i = 0
    while i < len(text):
        ch = text[i]
        if in_comment:
            if ch == '\n':
                in_comment = False
                result.append(ch)
            else:
                result.append(' ')
        elif quote:
            result.append(ch)
            if ch == '\\' and i + 1 < len(text):
                result.append(text[i + 1])
                i += 1
            elif ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
            result.append(ch)
        elif ch == '#':
            in_comment = True
            result.append(' ')
        else:
            result.append(ch)
        i += 1
    return ''.join(result)


def prepare_source(text: str) -> str:
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = strip_comments(text)
    # Backslash-newline joins physical lines
    return re.sub(r'\\\n', '  ', text)


def process_string_escapes(s: str) -> str:
    """Process escape sequences in double-quoted strings"""
    result = []
    i = 0
    while i < len(s):
        if s[i] == '\\' and i + 1 < len(s):
            next_char = s[i + 1]
            # Unknown escapes drop the backslash
            result.append(STRING_ESCAPES.get(next_char, next_char))
            i += 2
        else:
            result.append(s[i])
            i += 1
    return ''.join(result)


def process_single_quoted(s: str) -> str:
    """Single-quoted strings only know \\' and \\\\"""
    return re.sub(r"\\([\\'])", r"\1", s)


# ============================================================================
# TREE BUILDING HELPERS
# ============================================================================
# Nodes are built as tuples while parsing and turned into lists by to_tree
# once parsing succeeds. Some pyparsing releases hand a node back to the next
# parse action wrapped in a one-token ParseResults, so every action reads its
# operands through unwrap_token.

TRUE_LIT = ("lit", True)
FALSE_LIT = ("lit", False)
NIL_STMTS = ("stmts",)


def unwrap_token(tok: Any) -> Any:
    while isinstance(tok, ParseResults) and len(tok) == 1:
        tok = tok[0]
    return tok


def unwrap_all(tokens) -> List[Any]:
    return [unwrap_token(tok) for tok in tokens]


def negate(node: tuple) -> tuple:
    return ("if", node, FALSE_LIT, TRUE_LIT)


def fold_left(tokens: List[Any]) -> tuple:
    tokens = unwrap_all(tokens)
    node = tokens[0]
    for i in range(1, len(tokens), 2):
        node = make_binary(tokens[i], node, tokens[i + 1])
    return node


def make_binary(op: str, left: tuple, right: tuple) -> tuple:
    if op == "!=":
        return negate(("==", left, right))
    return (op, left, right)


def to_tree(node: Any) -> Any:
    """Convert parse-time tuples into the evaluator's nested lists"""
    node = unwrap_token(node)
    if isinstance(node, (tuple, ParseResults)):
        if node and node[0] == "%begin":
            return to_tree(node[1])
        return [to_tree(child) for child in node]
    return node


def resolve_vcalls(tree: List, scope: Optional[Set[str]] = None) -> List:
    """
    Turn references to names never assigned in their scope into zero-argument calls

    Each def body is its own scope, seeded with the parameters. Names become known
    in source order, so `foo` before any `foo = ...` is a call to foo.
    """
    if scope is None:
        scope = set()

    tag = tree[0]
    if tag == "lit":
        return tree
    if tag == "var_ref":
        return tree if tree[1] in scope else ["func_call", tree[1]]
    if tag == "var_assign":
        value = resolve_vcalls(tree[2], scope)
        scope.add(tree[1])
        return ["var_assign", tree[1], value]
    if tag == "func_def":
        return ["func_def", tree[1], tree[2], resolve_vcalls(tree[3], set(tree[2]))]
    if tag == "func_call":
        return ["func_call", tree[1]] + [resolve_vcalls(arg, scope) for arg in tree[2:]]
    if tag == "while2":
        # The body precedes the condition in the source
        body = resolve_vcalls(tree[2], scope)
        return ["while2", resolve_vcalls(tree[1], scope), body]
    return [tag] + [resolve_vcalls(child, scope) for child in tree[1:]]


# ============================================================================
# GRAMMAR
# ============================================================================

class MinRubyGrammar:
    """MinRuby grammar definition using pyparsing"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self._temp_ids = itertools.count(1)
        self._setup_grammar()

    def _temp_name(self, prefix: str) -> str:
        # '%' cannot appear in source identifiers, so these never collide
        return f"%{prefix}{next(self._temp_ids)}"

    def _setup_grammar(self):
        """Setup the MinRuby grammar"""

        expression = Forward()
        statement = Forward()
        rhs = Forward()
        body = Forward()

        # Keywords
        kw = {name: Keyword(name) for name in KEYWORDS}
        any_keyword = MatchFirst([kw[name] for name in KEYWORDS])

        # Layout
        newline = Literal("\n")
        opt_nl = Suppress(ZeroOrMore(newline))
        separator = Suppress(OneOrMore(newline | Literal(";")))
        opt_separator = Suppress(ZeroOrMore(newline | Literal(";")))
        then_sep = (opt_separator + Suppress(kw["then"])) | separator
        do_sep = (opt_separator + Suppress(kw["do"])) | separator

        def sym(text: str) -> ParserElement:
            return Suppress(Literal(text))

        def adjacent(text: str) -> ParserElement:
            # No whitespace allowed before it: `a[0]` indexes, `a [0]` passes an argument
            return Suppress(Literal(text).leave_whitespace())

        # Literals
        number = Regex(r'\d[\d_]*(?:\.\d[\d_]*)?(?:[eE][+-]?\d+)?').set_parse_action(self._make_number)
        dq_string = Regex(r'"(?:[^"\\]|\\.)*"').set_parse_action(
            lambda t: ("lit", process_string_escapes(t[0][1:-1]))
        )
        sq_string = Regex(r"'(?:[^'\\]|\\.)*'").set_parse_action(
            lambda t: ("lit", process_single_quoted(t[0][1:-1]))
        )
        true_lit = kw["true"].copy().set_parse_action(lambda t: TRUE_LIT)
        false_lit = kw["false"].copy().set_parse_action(lambda t: FALSE_LIT)
        nil_lit = kw["nil"].copy().set_parse_action(lambda t: ("lit", None))

        # Identifiers (keywords excluded); `x!=y` must not read `x!`
        identifier = (~any_keyword + Regex(r'[A-Za-z_][A-Za-z0-9_]*(?:[?!](?!=))?')).set_name("identifier")
        variable = identifier.copy().set_parse_action(lambda t: ("var_ref", t[0]))

        arg_list = expression + ZeroOrMore(sym(",") + opt_nl + expression)

        # Calls with parentheses: f(a, b)
        paren_call = (
            identifier + adjacent("(") + opt_nl + Opt(arg_list) + opt_nl + sym(")")
        ).set_parse_action(lambda t: ("func_call",) + tuple(unwrap_all(t)))

        # Collections
        array_literal = (
            sym("[") + opt_nl + Opt(arg_list + Opt(sym(","))) + opt_nl + sym("]")
        ).set_parse_action(lambda t: ("ary_new",) + tuple(unwrap_all(t)))

        hash_pair = expression + sym("=>") + opt_nl + expression
        hash_literal = (
            sym("{") + opt_nl
            + Opt(hash_pair + ZeroOrMore(sym(",") + opt_nl + hash_pair) + Opt(sym(",")))
            + opt_nl + sym("}")
        ).set_parse_action(lambda t: ("hash_new",) + tuple(unwrap_all(t)))

        parenthesized = sym("(") + opt_nl + statement + opt_nl + sym(")")

        # Control flow
        elsif_clause = (
            Suppress(kw["elsif"]) + expression + then_sep + body
        ).set_parse_action(lambda t: ("%elsif",) + tuple(unwrap_all(t)))
        else_clause = (Suppress(kw["else"]) + body).set_parse_action(lambda t: ("%else", unwrap_token(t[0])))

        if_expr = (
            Suppress(kw["if"]) + expression + then_sep + body
            + ZeroOrMore(elsif_clause) + Opt(else_clause) + Suppress(kw["end"])
        ).set_parse_action(self._make_if)

        unless_expr = (
            Suppress(kw["unless"]) + expression + then_sep + body
            + Opt(else_clause) + Suppress(kw["end"])
        ).set_parse_action(self._make_unless)

        while_expr = (
            Suppress(kw["while"]) + expression + do_sep + body + Suppress(kw["end"])
        ).set_parse_action(lambda t: ("while",) + tuple(unwrap_all(t)))

        when_clause = (
            Suppress(kw["when"]) + Group(arg_list) + then_sep + body
        ).set_parse_action(lambda t: ("%when", tuple(unwrap_all(t[0])), unwrap_token(t[1])))

        case_expr = (
            Suppress(kw["case"]) + expression + opt_separator
            + OneOrMore(when_clause) + Opt(else_clause) + Suppress(kw["end"])
        ).set_parse_action(self._make_case)

        param_list = Group(
            (sym("(") + opt_nl + Opt(identifier + ZeroOrMore(sym(",") + opt_nl + identifier))
             + opt_nl + sym(")"))
            | Opt(identifier + ZeroOrMore(sym(",") + identifier))
        )
        def_expr = (
            Suppress(kw["def"]) + identifier + param_list + body + Suppress(kw["end"])
        ).set_parse_action(lambda t: ("func_def", t[0], tuple(t[1]), unwrap_token(t[2])))

        begin_expr = (
            Suppress(kw["begin"]) + body + Suppress(kw["end"])
        ).set_parse_action(lambda t: ("%begin", unwrap_token(t[0])))

        primary = (
            number | dq_string | sq_string | true_lit | false_lit | nil_lit
            | array_literal | hash_literal | parenthesized
            | if_expr | unless_expr | while_expr | case_expr | def_expr | begin_expr
            | paren_call | variable
        )

        # Indexing: a[i][j]
        index = adjacent("[") + opt_nl + expression + opt_nl + sym("]")
        postfix = (primary + ZeroOrMore(index)).set_parse_action(self._make_index_chain)

        def op(pattern: str) -> ParserElement:
            # A binary operator may end a line; the operand continues on the next
            return Regex(pattern) + opt_nl

        # `!` binds tightest, then `**`, then unary minus: -2 ** 2 is -(2 ** 2).
        # An exponent may itself carry a sign, as in 2 ** -1.
        not_operand = Forward()
        power = Forward()
        signed = Forward()
        not_operand <<= (
            Suppress(Regex(r'!(?!=)')) + not_operand
        ).set_parse_action(lambda t: negate(unwrap_token(t[0]))) | postfix
        power <<= (
            not_operand + Suppress(op(r'\*\*')) + signed
        ).set_parse_action(lambda t: ("**",) + tuple(unwrap_all(t))) | not_operand
        signed <<= (
            Suppress(Literal("-")) + signed
        ).set_parse_action(self._make_negative) | power

        expression <<= infix_notation(signed, [
            (op(r'\*(?!\*)|/|%'), 2, OpAssoc.LEFT, lambda t: fold_left(list(t[0]))),
            (op(r'[-+]'), 2, OpAssoc.LEFT, lambda t: fold_left(list(t[0]))),
            (op(r'<=|>=|<|>'), 2, OpAssoc.LEFT, lambda t: fold_left(list(t[0]))),
            (op(r'==|!='), 2, OpAssoc.LEFT, lambda t: fold_left(list(t[0]))),
            (op(r'&&'), 2, OpAssoc.LEFT, self._make_and),
            (op(r'\|\|'), 2, OpAssoc.LEFT, self._make_or),
            ((op(r'\?'), op(r':')), 3, OpAssoc.RIGHT, self._make_ternary),
        ])

        # Command calls without parentheses: puts a, b
        not_an_operand = Regex(r'[*/%<>=&|?:,.)\]}]|[-+!]\s')
        command_arg = ~(kw["if"] | kw["unless"] | kw["while"]) + rhs
        command_call = (
            identifier + ~adjacent("(") + ~adjacent("[") + ~not_an_operand
            + command_arg + ZeroOrMore(sym(",") + opt_nl + command_arg)
        ).set_parse_action(lambda t: ("func_call",) + tuple(unwrap_all(t)))

        # Assignments
        assign_op = Regex(r'=(?![=~>])')
        compound_op = Regex(r'(?:\*\*|[-+*/%])=')
        assignment = (postfix + Suppress(assign_op) + opt_nl + rhs).set_parse_action(self._make_assignment)
        compound_assignment = (
            postfix + compound_op + opt_nl + rhs
        ).set_parse_action(self._make_compound_assignment)

        rhs <<= assignment | compound_assignment | command_call | expression

        # Statement modifiers: stmt if cond / stmt while cond
        modifier = (
            (kw["if"] | kw["unless"] | kw["while"]) + expression
        ).set_parse_action(lambda t: ("%mod", t[0], unwrap_token(t[1])))
        statement <<= (rhs + ZeroOrMore(modifier)).set_parse_action(self._apply_modifiers)

        body <<= (
            opt_separator + Opt(statement + ZeroOrMore(separator + statement)) + opt_separator
        ).set_parse_action(lambda t: ("stmts",) + tuple(unwrap_all(t)))

        self.expression = expression
        self.statement = statement
        self.body = body
        self.program = body + StringEnd()

    # ------------------------------------------------------------------------
    # Parse actions
    # ------------------------------------------------------------------------

    @staticmethod
    def _make_number(t):
        text = t[0].replace('_', '')
        if '.' in text or 'e' in text or 'E' in text:
            return ("lit", float(text))
        return ("lit", int(text))

    @staticmethod
    def _make_negative(t):
        operand = unwrap_token(t[0])
        if operand[0] == "lit" and type(operand[1]) in (int, float):
            return ("lit", -operand[1])
        return ("-", ("lit", 0), operand)

    def _make_and(self, t):
        tokens = unwrap_all(t[0])
        node = tokens[0]
        for right in tokens[2::2]:
            tmp = self._temp_name("and")
            node = ("stmts", ("var_assign", tmp, node),
                    ("if", ("var_ref", tmp), right, ("var_ref", tmp)))
        return node

    def _make_or(self, t):
        tokens = unwrap_all(t[0])
        node = tokens[0]
        for right in tokens[2::2]:
            tmp = self._temp_name("or")
            node = ("stmts", ("var_assign", tmp, node),
                    ("if", ("var_ref", tmp), ("var_ref", tmp), right))
        return node

    @staticmethod
    def _make_ternary(t):
        tokens = unwrap_all(t[0])
        return ("if", tokens[0], tokens[2], tokens[4])

    @staticmethod
    def _make_if(t):
        tokens = unwrap_all(t)
        cond, then_body = tokens[0], tokens[1]
        clauses = tokens[2:]

        else_body = NIL_STMTS
        if clauses and clauses[-1][0] == "%else":
            else_body = clauses.pop()[1]

        # Build the elsif chain from the innermost branch outwards
        for _, elsif_cond, elsif_body in reversed(clauses):
            else_body = ("if", elsif_cond, elsif_body, else_body)
        return ("if", cond, then_body, else_body)

    @staticmethod
    def _make_unless(t):
        tokens = unwrap_all(t)
        else_body = tokens[2][1] if len(tokens) > 2 else NIL_STMTS
        return ("if", tokens[0], else_body, tokens[1])

    def _make_case(self, t):
        tokens = unwrap_all(t)
        subject = tokens[0]
        clauses = tokens[1:]

        else_body = NIL_STMTS
        if clauses and clauses[-1][0] == "%else":
            else_body = clauses.pop()[1]

        tmp = self._temp_name("case")
        chain = else_body
        for _, values, when_body in reversed(clauses):
            tests = [("==", ("var_ref", tmp), value) for value in values]
            cond = tests[-1]
            for test in reversed(tests[:-1]):
                cond = ("if", test, TRUE_LIT, cond)
            chain = ("if", cond, when_body, chain)
        return ("stmts", ("var_assign", tmp, subject), chain)

    @staticmethod
    def _make_index_chain(t):
        tokens = unwrap_all(t)
        node = tokens[0]
        for index in tokens[1:]:
            node = ("ary_ref", node, index)
        return node

    @staticmethod
    def _assign_to(s, loc, target, value):
        if target[0] == "var_ref":
            return ("var_assign", target[1], value)
        if target[0] == "ary_ref":
            return ("ary_assign", target[1], target[2], value)
        raise ParseException(s, loc, "Cannot assign to this expression")

    def _make_assignment(self, s, loc, t):
        return self._assign_to(s, loc, unwrap_token(t[0]), unwrap_token(t[1]))

    def _make_compound_assignment(self, s, loc, t):
        target, op, value = unwrap_token(t[0]), t[1][:-1], unwrap_token(t[2])
        return self._assign_to(s, loc, target, (op, target, value))

    @staticmethod
    def _apply_modifiers(t):
        tokens = unwrap_all(t)
        node = tokens[0]
        for _, keyword, cond in tokens[1:]:
            if keyword == "if":
                node = ("if", cond, node, NIL_STMTS)
            elif keyword == "unless":
                node = ("if", cond, NIL_STMTS, node)
            elif node[0] == "%begin":
                # begin ... end while cond runs the body before the first check
                node = ("while2", cond, node[1])
            else:
                node = ("while", cond, node)
        return node

    # ------------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------------

    def parse_program(self, text: str, filename: str = "<input>",
                      known_locals: Optional[Set[str]] = None) -> List:
        """
        Parse a whole program into a resolved `stmts` tree

        known_locals names variables already bound in the frame the tree will run in,
        so a REPL line can refer to locals assigned by earlier lines.
        """
        source = prepare_source(text)
        try:
            result = self.program.parse_string(source, parse_all=True)
        except ParseBaseException as e:
            raise parse_error_from_exception(e, text, filename) from e

        tree = resolve_vcalls(to_tree(result[0]), set(known_locals or ()))
        if self.debug:
            print(f"Parsed {len(tree) - 1} statements from {filename}")
        return tree

    def parse_expression(self, text: str, filename: str = "<input>") -> List:
        """Parse a single statement (no vcall resolution: names stay var_refs)"""
        source = prepare_source(text).strip()
        try:
            result = (self.statement + StringEnd()).parse_string(source, parse_all=True)
        except ParseBaseException as e:
            raise parse_error_from_exception(e, text, filename) from e
        return to_tree(result[0])


class MinRubyParser:
    """Main MinRuby parser"""

    def __init__(self, debug: bool = False):
        self.debug = debug
        self.grammar = MinRubyGrammar(debug)

    def parse_file(self, filepath: str) -> List:
        """Parse a MinRuby source file"""
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                content = f.read()
        except FileNotFoundError:
            raise MinRubyParseError(f"File not found: {filepath}", filename=filepath)
        except (OSError, UnicodeDecodeError) as e:
            raise MinRubyParseError(f"Cannot read file {filepath}: {e}", filename=filepath)
        return self.grammar.parse_program(content, filepath)

    def parse_string(self, text: str, filename: str = "<input>",
                     known_locals: Optional[Set[str]] = None) -> List:
        """Parse MinRuby source code from string"""
        return self.grammar.parse_program(text, filename, known_locals)

    def parse_expression(self, text: str, filename: str = "<input>") -> List:
        """Parse a single MinRuby statement"""
        return self.grammar.parse_expression(text, filename)


# Factory functions for creating parsers
def create_parser(debug: bool = False) -> MinRubyParser:
    """Create a MinRuby parser"""
    return MinRubyParser(debug=debug)


def create_debug_parser() -> MinRubyParser:
    """Create a MinRuby parser with debug enabled"""
    return MinRubyParser(debug=True)


_default_parser: Optional[MinRubyParser] = None


def parse(source: str, debug: bool = False, filename: str = "<input>",
          known_locals: Optional[Set[str]] = None) -> List:
    """Parse source text with a shared parser instance"""
    global _default_parser
    if debug:
        return create_debug_parser().parse_string(source, filename, known_locals)
    if _default_parser is None:
        _default_parser = create_parser()
    return _default_parser.parse_string(source, filename, known_locals)


NODE_TAGS = frozenset((
    "lit", "+", "-", "*", "/", "%", "**", "<", "<=", "==", ">=", ">", "stmts",
    "var_assign", "var_ref", "if", "while", "while2", "func_def", "func_call",
    "ary_new", "ary_ref", "ary_assign", "hash_new"
))


def pretty_print_ast(tree: Any, indent: int = 0) -> str:
    """Pretty print a tree for debugging, one node per line"""
    prefix = "  " * indent
    if not (isinstance(tree, list) and tree and tree[0] in NODE_TAGS):
        return prefix + repr(tree) + "\n"

    if tree[0] == "lit":
        return prefix + f"lit {tree[1]!r}\n"
    if tree[0] == "func_def":
        atoms, children = tree[1:3], tree[3:]
    else:
        atoms = [child for child in tree[1:] if isinstance(child, str)]
        children = [child for child in tree[1:] if not isinstance(child, str)]

    result = prefix + tree[0]
    if atoms:
        result += " " + " ".join(repr(atom) for atom in atoms)
    result += "\n"
    for child in children:
        result += pretty_print_ast(child, indent + 1)
    return result
