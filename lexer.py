from diagnostics import ParseError


class Token:
    def __init__(self, type, value=None, line=1, column=1):
        self.type = type
        self.value = value
        self.line = line
        self.column = column

    def __repr__(self):
        if self.value is not None:
            return f"{self.type}({self.value!r})"
        return f"{self.type}"


KEYWORDS = {
    "import": "IMPORT",
    "struct": "STRUCT",
    "func": "FUNC",
    "var": "VAR",
    "let": "LET",
    "if": "IF",
    "else": "ELSE",
    "while": "WHILE",
    "return": "RETURN",
    "in": "IN",
}

# longest first so "..." wins over "." and "==" over "="
OPERATORS = [
    ("...", "ELLIPSIS"),
    ("->", "ARROW"),
    ("==", "EQEQ"),
    ("!=", "NOTEQ"),
    ("<=", "LTE"),
    (">=", "GTE"),
    ("&&", "AND"),
    ("||", "OR"),
    ("??", "COALESCE"),
    ("=", "ASSIGN"),
    ("!", "BANG"),
    ("<", "LT"),
    (">", "GT"),
    ("+", "PLUS"),
    ("-", "MINUS"),
    ("*", "STAR"),
    ("/", "SLASH"),
    ("%", "PERCENT"),
    ("?", "QUESTION"),
    (".", "DOT"),
    (",", "COMMA"),
    (":", "COLON"),
    (";", "SEMI"),
    ("(", "LPAREN"),
    (")", "RPAREN"),
    ("{", "LBRACE"),
    ("}", "RBRACE"),
    ("[", "LBRACKET"),
    ("]", "RBRACKET"),
    ("@", "AT"),
]

ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "\\": "\\",
    '"': '"',
    "'": "'",
}


class Lexer:
    def __init__(self, text):
        self.text = text
        self.pos = 0
        self.current_char = text[0] if text else None
        self.line = 1
        self.column = 1

    def advance(self):
        # track line/column based on current_char before moving
        if self.current_char == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.pos += 1
        if self.pos >= len(self.text):
            self.current_char = None
        else:
            self.current_char = self.text[self.pos]

    def peek(self, n=1):
        idx = self.pos + n
        if idx >= len(self.text):
            return None
        return self.text[idx]

    def startswith(self, s):
        return self.text.startswith(s, self.pos)

    def error(self, message, line=None, column=None):
        raise ParseError(message, line or self.line, column or self.column)

    # IMPORTANT: skip spaces/tabs only (NOT newlines)
    def skip_whitespace(self):
        while self.current_char and self.current_char in " \t\r":
            self.advance()

    def skip_line_comment(self):
        while self.current_char and self.current_char != "\n":
            self.advance()

    def skip_block_comment(self):
        start_line, start_col = self.line, self.column
        self.advance()
        self.advance()
        depth = 1
        while self.current_char is not None:
            if self.startswith("/*"):
                depth += 1
                self.advance()
                self.advance()
                continue
            if self.startswith("*/"):
                depth -= 1
                self.advance()
                self.advance()
                if depth == 0:
                    return
                continue
            self.advance()
        self.error("Unclosed block comment", start_line, start_col)

    def read_identifier(self):
        start_line, start_col = self.line, self.column
        result = ""
        while self.current_char and (self.current_char.isalnum() or self.current_char == "_"):
            result += self.current_char
            self.advance()

        if result in ("true", "false"):
            return Token("BOOL", result == "true", line=start_line, column=start_col)
        if result in KEYWORDS:
            return Token(KEYWORDS[result], result, line=start_line, column=start_col)
        return Token("IDENT", result, line=start_line, column=start_col)

    def read_number(self):
        start_line, start_col = self.line, self.column
        result = ""
        has_dot = False

        while self.current_char and (self.current_char.isdigit() or self.current_char in "._"):
            if self.current_char == ".":
                # 1...3 is a range, 1.5 is a double
                if has_dot or not (self.peek() or "").isdigit():
                    break
                has_dot = True
            if self.current_char != "_":
                result += self.current_char
            self.advance()

        if has_dot:
            return Token("NUMBER", float(result), line=start_line, column=start_col)
        return Token("NUMBER", int(result), line=start_line, column=start_col)

    def read_interpolation(self):
        # Called with current_char on "(" right after a backslash.
        start_line, start_col = self.line, self.column
        self.advance()
        depth = 1
        source = ""
        while self.current_char is not None:
            ch = self.current_char
            if ch == '"':
                # nested string literal inside the interpolation
                source += ch
                self.advance()
                while self.current_char is not None and self.current_char != '"':
                    if self.current_char == "\\":
                        source += self.current_char
                        self.advance()
                    if self.current_char is not None:
                        source += self.current_char
                        self.advance()
                if self.current_char is None:
                    break
                source += '"'
                self.advance()
                continue
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    self.advance()
                    return (source, start_line, start_col + 1)
            elif ch == "\n":
                break
            source += ch
            self.advance()
        self.error("Unclosed string interpolation", start_line, start_col)

    def read_string(self):
        start_line, start_col = self.line, self.column
        triple = self.startswith('"""')
        terminator = '"""' if triple else '"'
        for _ in terminator:
            self.advance()

        parts = []
        text = ""

        while self.current_char is not None:
            if self.startswith(terminator):
                for _ in terminator:
                    self.advance()
                if not parts:
                    return Token("STRING", text, line=start_line, column=start_col)
                parts.append(text)
                return Token("INTERP", parts, line=start_line, column=start_col)

            if self.current_char == "\n" and not triple:
                break

            if self.current_char == "\\":
                self.advance()  # consume backslash
                if self.current_char == "(":
                    parts.append(text)
                    text = ""
                    parts.append(self.read_interpolation())
                    continue
                if self.current_char is None:
                    break
                # unknown escape: keep literally
                text += ESCAPES.get(self.current_char, self.current_char)
                self.advance()
                continue

            text += self.current_char
            self.advance()

        self.error("Unclosed string", start_line, start_col)

    def get_next_token(self):
        while self.current_char:

            # NEWLINE is a real token (parser needs it)
            if self.current_char == "\n":
                start_line, start_col = self.line, self.column
                self.advance()
                return Token("NEWLINE", line=start_line, column=start_col)

            # spaces/tabs
            if self.current_char in " \t\r":
                self.skip_whitespace()
                continue

            # comments
            if self.startswith("//"):
                self.skip_line_comment()
                continue
            if self.startswith("/*"):
                self.skip_block_comment()
                continue

            # identifiers / keywords
            if self.current_char.isalpha() or self.current_char == "_":
                return self.read_identifier()

            # numbers
            if self.current_char.isdigit():
                return self.read_number()

            # strings
            if self.current_char == '"':
                return self.read_string()

            # $0 is an implicit closure parameter, $name a binding projection
            if self.current_char == "$":
                start_line, start_col = self.line, self.column
                self.advance()
                if self.current_char and self.current_char.isdigit():
                    digits = ""
                    while self.current_char and self.current_char.isdigit():
                        digits += self.current_char
                        self.advance()
                    return Token("IDENT", "$" + digits, line=start_line, column=start_col)
                return Token("DOLLAR", "$", line=start_line, column=start_col)

            for text, type_name in OPERATORS:
                if self.startswith(text):
                    start_line, start_col = self.line, self.column
                    for _ in text:
                        self.advance()
                    return Token(type_name, text, line=start_line, column=start_col)

            self.error(f"Unknown character: {self.current_char}")

        return Token("EOF", line=self.line, column=self.column)

    def tokenize(self):
        tokens = []
        while True:
            tok = self.get_next_token()
            tokens.append(tok)
            if tok.type == "EOF":
                return tokens
