import pytest

from ast_nodes import (
    SourceFile, StructDecl, VarDecl, FuncDecl, Import, If, While, Return, Assign,
    Literal, StringInterpolation, ArrayLiteral, Identifier, MemberAccess,
    Closure, Call, Binary, Prefix, Ternary,
)
from diagnostics import ParseError
from lexer import Lexer
from parser import parse_source


def single(source):
    tree = parse_source(source)
    assert isinstance(tree, SourceFile)
    assert len(tree.statements) == 1
    return tree.statements[0]


def token_types(source):
    return [t.type for t in Lexer(source).tokenize()]


def test_lexer_range_is_not_a_double():
    assert token_types("1...3") == ["NUMBER", "ELLIPSIS", "NUMBER", "EOF"]
    assert token_types("1.5") == ["NUMBER", "EOF"]


def test_lexer_skips_comments_but_keeps_newlines():
    assert token_types("a // note\n/* block /* nested */ */ b") == ["IDENT", "NEWLINE", "IDENT", "EOF"]


def test_lexer_dollar_forms():
    assert token_types("$0") == ["IDENT", "EOF"]
    assert token_types("$count") == ["DOLLAR", "IDENT", "EOF"]


def test_precedence_multiplication_binds_tighter():
    node = single("1 + 2 * 3")
    assert isinstance(node, Binary) and node.op == "+"
    assert isinstance(node.right, Binary) and node.right.op == "*"


def test_comparison_below_arithmetic_and_logic():
    node = single("a + 1 < b && c")
    assert node.op == "&&"
    assert node.left.op == "<"
    assert node.left.left.op == "+"


def test_coalesce_is_right_associative():
    node = single("a ?? b ?? c")
    assert node.op == "??"
    assert isinstance(node.left, Identifier)
    assert node.right.op == "??"


def test_prefix_and_ternary():
    node = single("!done ? -1 : 2")
    assert isinstance(node, Ternary)
    assert isinstance(node.condition, Prefix) and node.condition.op == "!"
    assert isinstance(node.then_expr, Prefix) and node.then_expr.op == "-"


def test_labeled_arguments_and_trailing_closure():
    node = single('Button(action: { count = 1 }) { Text("Go") }')
    assert isinstance(node, Call)
    assert node.args[0].label == "action"
    assert isinstance(node.args[0].value, Closure)
    assert isinstance(node.args[0].value.statements[0], Assign)
    assert isinstance(node.trailing_closure, Closure)


def test_closure_parameters():
    node = single("ForEach([1, 2]) { n in Text(n) }")
    assert isinstance(node.args[0].value, ArrayLiteral)
    assert node.trailing_closure.params == ["n"]

    node = single("ForEach(items) { (a, b) in a }")
    assert node.trailing_closure.params == ["a", "b"]


def test_if_condition_does_not_take_trailing_closure():
    node = single("if ready { 1 } else if other { 2 } else { 3 }")
    assert isinstance(node, If)
    assert isinstance(node.condition, Identifier)
    assert isinstance(node.else_block, If)
    assert node.else_block.else_block.statements[0].value == 3


def test_else_on_next_line():
    node = single("if a {\n  1\n}\nelse {\n  2\n}")
    assert node.else_block is not None


def test_modifier_chain_across_lines():
    node = single('Text("a")\n    .padding()\n    .bold()')
    assert isinstance(node, Call)
    assert node.callee.name == "bold"
    assert node.callee.base.callee.name == "padding"


def test_implicit_member_argument():
    node = single("Text(x).font(.title)")
    arg = node.args[0].value
    assert isinstance(arg, MemberAccess) and arg.base is None and arg.name == "title"


def test_string_interpolation_segments():
    node = single('"Hi \\(name), \\(1 + 2)!"')
    assert isinstance(node, StringInterpolation)
    assert node.segments[0] == "Hi "
    assert isinstance(node.segments[1], Identifier)
    assert node.segments[2] == ", "
    assert isinstance(node.segments[3], Binary)
    assert node.segments[4] == "!"


def test_app_view_declaration():
    tree = parse_source(
        "import SwiftUI\n"
        "struct AppView: View {\n"
        "    @State private var count = 0\n"
        "    let title = \"T\"\n"
        "    var label: String { \"n\" }\n"
        "    var body: some View {\n"
        "        Text(title)\n"
        "    }\n"
        "}\n"
    )
    imp, app = tree.statements
    assert isinstance(imp, Import) and imp.module == "SwiftUI"
    assert isinstance(app, StructDecl) and app.conformances == ["View"]
    state, title, label, body = app.members
    assert state.attributes == ["State"] and state.value.value == 0
    assert title.is_let and not title.is_computed
    assert label.is_computed and label.type_name == "String"
    assert body.is_computed and body.type_name == "some View"


def test_func_declaration():
    node = single("func add(_ a: Int, to b: Int) -> Int {\n  return a + b\n}")
    assert isinstance(node, FuncDecl)
    assert node.params == ["a", "b"]
    assert node.return_type == "Int"
    assert isinstance(node.body.statements[0], Return)


def test_while_and_assignment():
    node = single("while i < 3 { i = i + 1 }")
    assert isinstance(node, While)
    assert isinstance(node.body.statements[0], Assign)


def test_nil_literal_and_optional_type():
    node = single("var x: Int? = nil")
    assert isinstance(node, VarDecl)
    assert node.type_name == "Int?"
    assert isinstance(node.value, Literal) and node.value.value is None


def test_positions_are_recorded():
    tree = parse_source("let a = 1\n  b")
    assert tree.statements[1].line == 2
    assert tree.statements[1].column == 3


def test_parse_error_has_location():
    with pytest.raises(ParseError) as info:
        parse_source("let = 5")
    assert info.value.line == 1
    assert info.value.column == 5


def test_unclosed_constructs_fail():
    with pytest.raises(ParseError):
        parse_source("let x = (1 + 2")
    with pytest.raises(ParseError):
        parse_source('let s = "open')
    with pytest.raises(ParseError):
        parse_source("VStack {\n Text(\"a\")\n")


def test_two_expressions_on_one_line_fail():
    with pytest.raises(ParseError):
        parse_source("1 2")


def test_keyword_argument_label():
    node = single("Slider(value: $level, in: 0...1)")
    assert [a.label for a in node.args] == ["value", "in"]
    assert isinstance(node.args[0].value, Prefix) and node.args[0].value.op == "$"
    assert node.args[1].value.op == "..."


def test_deep_nesting_is_a_parse_error():
    with pytest.raises(ParseError) as info:
        parse_source("(" * 3000 + "1" + ")" * 3000)
    assert info.value.message == "Expression nested too deeply"
