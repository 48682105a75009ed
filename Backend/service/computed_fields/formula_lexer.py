"""Lexer for formula field expressions."""

import re

import ply.lex as lex

from core.exceptions import FormulaException


_ESCAPE = re.compile(r"\\(.)")


class FormulaLexer:
    """Tokenizes formula expressions such as ``deal_value * (probability / 100)``."""

    tokens = [
        "NUMBER",
        "STRING",
        "IDENTIFIER",
        "PLUS",
        "MINUS",
        "TIMES",
        "DIVIDE",
        "MODULO",
        "LPAREN",
        "RPAREN",
        "COMMA",
        "EQ",
        "NE",
        "LE",
        "GE",
        "LT",
        "GT",
        "AND",
        "OR",
        "NOT",
    ]

    t_PLUS = r"\+"
    t_MINUS = r"-"
    t_TIMES = r"\*"
    t_DIVIDE = r"/"
    t_MODULO = r"%"
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_COMMA = r","
    t_EQ = r"==?"
    t_NE = r"!=|<>"
    t_LE = r"<="
    t_GE = r">="
    t_LT = r"<"
    t_GT = r">"
    t_AND = r"&&"
    t_OR = r"\|\|"
    t_NOT = r"!"
    t_ignore = " \t\r\n"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    def t_NUMBER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+\.\d*|\.\d+|\d+"
        t.value = float(t.value) if "." in t.value else int(t.value)
        return t

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r""""([^"\\]|\\.)*"|'([^'\\]|\\.)*'"""
        t.value = _ESCAPE.sub(r"\1", t.value[1:-1])
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[A-Za-z_][A-Za-z0-9_]*"
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise FormulaException(
            f"Illegal character '{t.value[0]}' at position {t.lexpos}"
        )

    # --- Lexer methods ---

    def build(self, **kwargs) -> None:  # type: ignore
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        if self.lexer is None:
            self.build()
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens
