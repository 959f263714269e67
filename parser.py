from ast_nodes import (
    SourceFile, Block, StructDecl, VarDecl, FuncDecl, Import,
    If, While, Return, Assign,
    Literal, StringInterpolation, ArrayLiteral, Identifier, MemberAccess,
    Argument, Closure, Call, Binary, Prefix, Ternary,
)
from diagnostics import ParseError
from lexer import Lexer, KEYWORDS

MODIFIERS = {
    "private", "fileprivate", "public", "internal", "open",
    "static", "final", "override", "mutating", "nonisolated",
}

LABEL_KEYWORDS = set(KEYWORDS.values())

COMPARISON_OPS = {
    "EQEQ": "==",
    "NOTEQ": "!=",
    "LT": "<",
    "GT": ">",
    "LTE": "<=",
    "GTE": ">=",
}


def parse_source(source: str) -> SourceFile:
    try:
        return Parser(Lexer(source)).parse()
    except RecursionError as e:
        raise ParseError("Expression nested too deeply") from e


class Parser:
    def __init__(self, lexer, line_offset=0, column_offset=0):
        self.tokens = lexer.tokenize()
        if line_offset or column_offset:
            for tok in self.tokens:
                if tok.line == 1:
                    tok.column += column_offset
                tok.line += line_offset
        self.pos = 0
        self.current_token = self.tokens[0]
        # trailing closures are not allowed in if/while conditions
        self.allow_trailing_closure = True

    # move to next token, but only if it matches what we expect
    def eat(self, token_type):
        if self.current_token.type == token_type:
            tok = self.current_token
            self.pos += 1
            self.current_token = self.tokens[min(self.pos, len(self.tokens) - 1)]
            return tok
        tok = self.current_token
        raise ParseError(f"Expected {token_type}, got {tok.type}", tok.line, tok.column)

    def peek(self, n=1):
        idx = min(self.pos + n, len(self.tokens) - 1)
        return self.tokens[idx]

    def error_here(self, message):
        tok = self.current_token
        raise ParseError(message, tok.line, tok.column)

    def at(self, node, tok):
        node.line = tok.line
        node.column = tok.column
        return node

    def skip_newlines(self):
        while self.current_token.type == "NEWLINE":
            self.eat("NEWLINE")

    def skip_separators(self):
        while self.current_token.type in ("NEWLINE", "SEMI"):
            self.eat(self.current_token.type)

    def end_statement(self):
        if self.current_token.type in ("NEWLINE", "SEMI", "RBRACE", "EOF"):
            return
        self.error_here(f"Expected end of statement, got {self.current_token.type}")

    # ---------- TOP LEVEL ----------
    def parse(self):
        statements = []
        self.skip_separators()

        while self.current_token.type != "EOF":
            statements.append(self.statement())
            self.end_statement()
            self.skip_separators()

        return SourceFile(statements)

    # ---------- STATEMENTS ----------
    def statement(self):
        tok = self.current_token

        if tok.type == "IMPORT":
            self.eat("IMPORT")
            name = self.eat("IDENT").value
            while self.current_token.type == "DOT":
                self.eat("DOT")
                name += "." + self.eat("IDENT").value
            return self.at(Import(name), tok)

        if self.starts_declaration():
            return self.declaration()

        if tok.type == "IF":
            return self.if_statement()

        if tok.type == "WHILE":
            return self.while_statement()

        if tok.type == "RETURN":
            self.eat("RETURN")
            if self.current_token.type in ("NEWLINE", "SEMI", "RBRACE", "EOF"):
                return self.at(Return(None), tok)
            return self.at(Return(self.expr()), tok)

        # expression statement or assignment
        node = self.expr()
        if self.current_token.type == "ASSIGN":
            self.eat("ASSIGN")
            value = self.expr()
            return self.at(Assign(node, value), tok)
        return node

    def starts_declaration(self):
        tok = self.current_token
        if tok.type in ("AT", "VAR", "LET", "STRUCT", "FUNC"):
            return True
        if tok.type == "IDENT" and tok.value in MODIFIERS:
            return self.peek().type in ("AT", "VAR", "LET", "STRUCT", "FUNC", "IDENT")
        return False

    def declaration(self):
        attributes = []
        while True:
            if self.current_token.type == "AT":
                self.eat("AT")
                attributes.append(self.eat("IDENT").value)
                self.skip_newlines()
                continue
            if self.current_token.type == "IDENT" and self.current_token.value in MODIFIERS:
                self.eat("IDENT")
                continue
            break

        tok = self.current_token
        if tok.type == "STRUCT":
            return self.struct_decl()
        if tok.type == "FUNC":
            return self.func_decl()
        if tok.type in ("VAR", "LET"):
            return self.var_decl(attributes)
        self.error_here(f"Expected declaration, got {tok.type}")

    def var_decl(self, attributes):
        tok = self.current_token
        is_let = tok.type == "LET"
        self.eat(tok.type)
        name = self.eat("IDENT").value

        type_name = None
        if self.current_token.type == "COLON":
            self.eat("COLON")
            type_name = self.type_annotation()

        value = None
        getter = None
        if self.current_token.type == "ASSIGN":
            self.eat("ASSIGN")
            value = self.expr()
        elif self.current_token.type == "LBRACE" and not is_let:
            getter = self.block()

        return self.at(VarDecl(name, value, is_let, attributes, type_name, getter), tok)

    def type_annotation(self):
        # Types are informational only; collect their text.
        text = ""
        if self.current_token.type == "IDENT" and self.current_token.value in ("some", "any"):
            text = self.eat("IDENT").value + " "

        if self.current_token.type == "LBRACKET":
            self.eat("LBRACKET")
            text += "[" + self.type_annotation()
            if self.current_token.type == "COLON":
                self.eat("COLON")
                text += ": " + self.type_annotation()
            self.eat("RBRACKET")
            text += "]"
        else:
            text += self.eat("IDENT").value
            while self.current_token.type == "DOT":
                self.eat("DOT")
                text += "." + self.eat("IDENT").value
            if self.current_token.type == "LT":
                self.eat("LT")
                inner = [self.type_annotation()]
                while self.current_token.type == "COMMA":
                    self.eat("COMMA")
                    inner.append(self.type_annotation())
                self.eat("GT")
                text += "<" + ", ".join(inner) + ">"

        while self.current_token.type in ("QUESTION", "BANG"):
            text += self.eat(self.current_token.type).value
        return text

    def struct_decl(self):
        tok = self.eat("STRUCT")
        name = self.eat("IDENT").value

        conformances = []
        if self.current_token.type == "COLON":
            self.eat("COLON")
            conformances.append(self.type_annotation())
            while self.current_token.type == "COMMA":
                self.eat("COMMA")
                conformances.append(self.type_annotation())

        self.eat("LBRACE")
        members = []
        self.skip_separators()
        while self.current_token.type != "RBRACE":
            if not self.starts_declaration():
                self.error_here("Expected declaration in struct body")
            members.append(self.declaration())
            self.end_statement()
            self.skip_separators()
        self.eat("RBRACE")
        return self.at(StructDecl(name, members, conformances), tok)

    def func_decl(self):
        tok = self.eat("FUNC")
        name = self.eat("IDENT").value
        self.eat("LPAREN")
        params = []
        self.skip_newlines()
        while self.current_token.type != "RPAREN":
            params.append(self.param())
            self.skip_newlines()
            if self.current_token.type == "COMMA":
                self.eat("COMMA")
                self.skip_newlines()
                continue
            break
        self.eat("RPAREN")

        return_type = None
        if self.current_token.type == "ARROW":
            self.eat("ARROW")
            return_type = self.type_annotation()

        body = self.block()
        return self.at(FuncDecl(name, params, body, return_type), tok)

    def param(self):
        # (label)? name ":" Type ; the internal name is what the body sees
        first = self.eat("IDENT").value
        name = first
        if self.current_token.type == "IDENT":
            name = self.eat("IDENT").value
        self.eat("COLON")
        self.type_annotation()
        return name

    def block(self):
        tok = self.eat("LBRACE")
        statements = self.statements_until_rbrace()
        self.eat("RBRACE")
        return self.at(Block(statements), tok)

    def statements_until_rbrace(self):
        saved = self.allow_trailing_closure
        self.allow_trailing_closure = True
        statements = []
        self.skip_separators()
        while self.current_token.type != "RBRACE":
            if self.current_token.type == "EOF":
                self.error_here("Expected RBRACE, got EOF")
            statements.append(self.statement())
            self.end_statement()
            self.skip_separators()
        self.allow_trailing_closure = saved
        return statements

    def if_statement(self):
        # Grammar:
        #   IF expr block (ELSE (if_statement | block))?
        # else-if chains are represented as nested If nodes in else_block.
        tok = self.eat("IF")
        condition = self.condition()
        then_block = self.block()

        # else can be on the same line or the next one
        saved_pos = self.pos
        self.skip_newlines()
        if self.current_token.type != "ELSE":
            self.pos = saved_pos
            self.current_token = self.tokens[self.pos]
            return self.at(If(condition, then_block), tok)

        self.eat("ELSE")
        if self.current_token.type == "IF":
            else_block = self.if_statement()
        else:
            else_block = self.block()
        return self.at(If(condition, then_block, else_block), tok)

    def while_statement(self):
        tok = self.eat("WHILE")
        condition = self.condition()
        body = self.block()
        return self.at(While(condition, body), tok)

    def condition(self):
        saved = self.allow_trailing_closure
        self.allow_trailing_closure = False
        try:
            return self.expr()
        finally:
            self.allow_trailing_closure = saved

    # ---------- EXPRESSIONS ----------
    # expr -> ternary
    def expr(self):
        return self.ternary()

    # ternary -> or_expr (? expr : ternary)?
    def ternary(self):
        node = self.or_expr()
        if self.current_token.type == "QUESTION":
            tok = self.eat("QUESTION")
            then_expr = self.expr()
            self.eat("COLON")
            else_expr = self.ternary()
            return self.at(Ternary(node, then_expr, else_expr), tok)
        return node

    # or_expr -> and_expr (|| and_expr)*
    def or_expr(self):
        node = self.and_expr()
        while self.current_token.type == "OR":
            tok = self.eat("OR")
            node = self.at(Binary(node, "||", self.and_expr()), tok)
        return node

    # and_expr -> comparison (&& comparison)*
    def and_expr(self):
        node = self.comparison()
        while self.current_token.type == "AND":
            tok = self.eat("AND")
            node = self.at(Binary(node, "&&", self.comparison()), tok)
        return node

    # comparison -> coalesce (op coalesce)?   (non-associative)
    def comparison(self):
        node = self.coalesce()
        if self.current_token.type in COMPARISON_OPS:
            tok = self.eat(self.current_token.type)
            node = self.at(Binary(node, COMPARISON_OPS[tok.type], self.coalesce()), tok)
        return node

    # coalesce -> range (?? coalesce)?   (right-associative)
    def coalesce(self):
        node = self.range_expr()
        if self.current_token.type == "COALESCE":
            tok = self.eat("COALESCE")
            node = self.at(Binary(node, "??", self.coalesce()), tok)
        return node

    # range -> additive (... additive)?
    def range_expr(self):
        node = self.additive()
        if self.current_token.type == "ELLIPSIS":
            tok = self.eat("ELLIPSIS")
            node = self.at(Binary(node, "...", self.additive()), tok)
        return node

    # additive -> multiplicative ((+|-) multiplicative)*
    def additive(self):
        node = self.multiplicative()
        while self.current_token.type in ("PLUS", "MINUS"):
            tok = self.eat(self.current_token.type)
            node = self.at(Binary(node, tok.value, self.multiplicative()), tok)
        return node

    # multiplicative -> prefix ((*|/|%) prefix)*
    def multiplicative(self):
        node = self.prefix()
        while self.current_token.type in ("STAR", "SLASH", "PERCENT"):
            tok = self.eat(self.current_token.type)
            node = self.at(Binary(node, tok.value, self.prefix()), tok)
        return node

    # prefix -> (- | ! | $) prefix | postfix
    def prefix(self):
        tok = self.current_token
        if tok.type in ("MINUS", "BANG", "DOLLAR"):
            self.eat(tok.type)
            return self.at(Prefix(tok.value, self.prefix()), tok)
        return self.postfix()

    # postfix -> primary (.name | (args) | trailing-closure)*
    def postfix(self):
        node = self.primary()
        while True:
            tok = self.current_token

            # leading-dot chains may continue on the next line
            if tok.type == "NEWLINE" and self.next_significant().type == "DOT":
                self.skip_newlines()
                continue

            if tok.type == "DOT":
                self.eat("DOT")
                name_tok = self.eat("IDENT")
                node = self.at(MemberAccess(node, name_tok.value), name_tok)
                continue

            if tok.type == "LPAREN":
                args = self.call_args()
                trailing = None
                if self.current_token.type == "LBRACE" and self.allow_trailing_closure:
                    trailing = self.closure()
                node = self.at(Call(node, args, trailing), tok)
                continue

            if (
                tok.type == "LBRACE"
                and self.allow_trailing_closure
                and isinstance(node, (Identifier, MemberAccess))
            ):
                node = self.at(Call(node, [], self.closure()), tok)
                continue

            return node

    def next_significant(self):
        idx = self.pos
        while self.tokens[idx].type == "NEWLINE" and idx < len(self.tokens) - 1:
            idx += 1
        return self.tokens[idx]

    def call_args(self):
        self.eat("LPAREN")
        saved = self.allow_trailing_closure
        self.allow_trailing_closure = True
        args = []
        self.skip_newlines()
        while self.current_token.type != "RPAREN":
            label = None
            # keywords double as labels: Slider(value: $v, in: 0...1)
            if self.peek().type == "COLON" and (
                self.current_token.type == "IDENT" or self.current_token.type in LABEL_KEYWORDS
            ):
                label = self.eat(self.current_token.type).value
                self.eat("COLON")
            tok = self.current_token
            args.append(self.at(Argument(self.expr(), label), tok))
            self.skip_newlines()
            if self.current_token.type == "COMMA":
                self.eat("COMMA")
                self.skip_newlines()
                continue
            break
        self.eat("RPAREN")
        self.allow_trailing_closure = saved
        return args

    def closure(self):
        tok = self.eat("LBRACE")
        params = self.closure_params()
        statements = self.statements_until_rbrace()
        self.eat("RBRACE")
        return self.at(Closure(params, statements), tok)

    def closure_params(self):
        # { a, b in ... } or { (a, b) in ... }; anything else has no parameter clause
        idx = self.pos
        while self.tokens[idx].type == "NEWLINE":
            idx += 1
        parenthesized = self.tokens[idx].type == "LPAREN"
        if parenthesized:
            idx += 1

        names = []
        while self.tokens[idx].type == "IDENT":
            names.append(self.tokens[idx].value)
            idx += 1
            if self.tokens[idx].type != "COMMA":
                break
            idx += 1

        if parenthesized:
            if self.tokens[idx].type != "RPAREN":
                return []
            idx += 1
        if not names or self.tokens[idx].type != "IN":
            return []

        self.pos = idx + 1
        self.current_token = self.tokens[self.pos]
        return names

    def primary(self):
        tok = self.current_token

        if tok.type in ("NUMBER", "STRING", "BOOL"):
            self.eat(tok.type)
            return self.at(Literal(tok.value), tok)

        if tok.type == "INTERP":
            self.eat("INTERP")
            return self.at(StringInterpolation(self.interpolation_segments(tok.value)), tok)

        if tok.type == "IDENT":
            self.eat("IDENT")
            if tok.value == "nil":
                return self.at(Literal(None), tok)
            return self.at(Identifier(tok.value), tok)

        if tok.type == "DOT":
            # implicit member expression: .red, .leading
            self.eat("DOT")
            name_tok = self.eat("IDENT")
            return self.at(MemberAccess(None, name_tok.value), tok)

        if tok.type == "LPAREN":
            self.eat("LPAREN")
            saved = self.allow_trailing_closure
            self.allow_trailing_closure = True
            self.skip_newlines()
            node = self.expr()
            self.skip_newlines()
            self.eat("RPAREN")
            self.allow_trailing_closure = saved
            return node

        if tok.type == "LBRACKET":
            return self.array_literal()

        if tok.type == "LBRACE":
            return self.closure()

        raise ParseError(f"Unexpected token in expression: {tok.type}", tok.line, tok.column)

    def array_literal(self):
        tok = self.eat("LBRACKET")
        items = []
        self.skip_newlines()
        while self.current_token.type != "RBRACKET":
            items.append(self.expr())
            self.skip_newlines()
            if self.current_token.type == "COMMA":
                self.eat("COMMA")
                self.skip_newlines()
                continue
            break
        self.eat("RBRACKET")
        return self.at(ArrayLiteral(items), tok)

    def interpolation_segments(self, parts):
        segments = []
        for part in parts:
            if isinstance(part, str):
                segments.append(part)
                continue
            source, line, column = part
            sub = Parser(Lexer(source), line_offset=line - 1, column_offset=column - 1)
            expr = sub.expr()
            if sub.current_token.type != "EOF":
                sub.error_here("Unexpected tokens in string interpolation")
            segments.append(expr)
        return segments
