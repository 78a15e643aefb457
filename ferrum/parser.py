from __future__ import annotations

import ast
from pathlib import Path
from typing import List, Optional

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput

from .ast import (
    AssignStmt,
    Binary,
    Block,
    BlockExpr,
    Borrow,
    BoxNew,
    Call,
    Deref,
    Expr,
    ExprStmt,
    FunctionDef,
    IfExpr,
    LetStmt,
    Literal,
    Located,
    MacroCall,
    Name,
    Param,
    Program,
    ReturnStmt,
    Stmt,
    TypeExpr,
    Unary,
    WhileStmt,
)
from .diagnostics import Diagnostic, DiagnosticError, DiagnosticKind, Span

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1

_PARSER = Lark(
    _GRAMMAR_SRC,
    parser="lalr",
    start="program",
    propagate_positions=True,
    maybe_placeholders=False,
)


class ParseError(DiagnosticError):
    """Syntax error raised by the parser or by the tree builder."""


def parse_program(source: str, filename: Optional[str] = None) -> Program:
    try:
        tree = _PARSER.parse(source)
    except UnexpectedInput as exc:
        raise ParseError(_syntax_diagnostic(exc, filename)) from None
    try:
        return _build_program(tree)
    except _BuildError as exc:
        span = Span(file=filename, line=exc.loc.line, column=exc.loc.column)
        raise ParseError(
            Diagnostic(
                message=exc.message,
                kind=DiagnosticKind.SYNTAX_ERROR,
                phase="parser",
                span=span,
            )
        ) from None


class _BuildError(Exception):
    def __init__(self, message: str, loc: Located) -> None:
        super().__init__(message)
        self.message = message
        self.loc = loc


def _syntax_diagnostic(exc: UnexpectedInput, filename: Optional[str]) -> Diagnostic:
    if isinstance(exc, UnexpectedEOF):
        message = "expected more input, found end of file"
    elif isinstance(exc, UnexpectedCharacters):
        message = f"unknown start of token: {exc.char!r}"
    else:
        token = getattr(exc, "token", None)
        if token is None or getattr(token, "type", "") == "$END":
            message = "expected more input, found end of file"
        else:
            message = f"expected one of {_expected_list(exc)}, found `{token.value}`"
    line = getattr(exc, "line", None)
    column = getattr(exc, "column", None)
    return Diagnostic(
        message=message,
        kind=DiagnosticKind.SYNTAX_ERROR,
        phase="parser",
        span=Span(
            file=filename,
            line=line if isinstance(line, int) and line > 0 else None,
            column=column if isinstance(column, int) and column > 0 else None,
        ),
    )


def _expected_list(exc: UnexpectedInput) -> str:
    expected = sorted(getattr(exc, "expected", None) or getattr(exc, "allowed", None) or ())
    if not expected:
        return "tokens"
    return ", ".join(f"`{_TOKEN_HINTS.get(name, name)}`" for name in expected[:6])


_TOKEN_HINTS = {
    "SEMICOLON": ";",
    "LBRACE": "{",
    "RBRACE": "}",
    "LPAR": "(",
    "RPAR": ")",
    "COMMA": ",",
    "COLON": ":",
    "EQUAL": "=",
}


def _build_program(tree: Tree) -> Program:
    functions: List[FunctionDef] = []
    for child in tree.children:
        if isinstance(child, Tree) and _name(child) == "fn_def":
            functions.append(_build_function(child))
    return Program(functions=functions)


def _build_function(tree: Tree) -> FunctionDef:
    loc = _loc(tree)
    name_token = tree.children[0]
    params: List[Param] = []
    return_type: Optional[TypeExpr] = None
    body: Optional[Block] = None
    for child in tree.children[1:]:
        if not isinstance(child, Tree):
            continue
        kind = _name(child)
        if kind == "params":
            params = [_build_param(p) for p in child.children if isinstance(p, Tree)]
        elif kind == "ret_type":
            return_type = _build_type_expr(child.children[0])
        elif kind == "block":
            body = _build_block(child)
    assert body is not None
    return FunctionDef(name=name_token.value, params=params, return_type=return_type, body=body, loc=loc)


def _build_param(tree: Tree) -> Param:
    mutable = _has_token(tree, "MUT")
    tokens = [c for c in tree.children if isinstance(c, Token) and c.type == "NAME"]
    type_node = next(c for c in tree.children if isinstance(c, Tree))
    return Param(name=tokens[0].value, type_expr=_build_type_expr(type_node), loc=_loc(tree), mutable=mutable)


def _build_type_expr(node: Tree) -> TypeExpr:
    kind = _name(node)
    if kind == "named_type":
        return TypeExpr(name=node.children[0].value)
    if kind == "unit_type":
        return TypeExpr(name="()")
    if kind == "generic_type":
        name_token = node.children[0]
        inner = next(c for c in node.children if isinstance(c, Tree))
        return TypeExpr(name=name_token.value, args=[_build_type_expr(inner)])
    if kind in ("ref_type", "double_ref_type"):
        name = "&mut" if _has_token(node, "MUT") else "&"
        inner = _build_type_expr(next(c for c in node.children if isinstance(c, Tree)))
        ref = TypeExpr(name=name, args=[inner])
        if kind == "double_ref_type":
            return TypeExpr(name="&", args=[ref])
        return ref
    raise _BuildError(f"unsupported type syntax `{kind}`", _loc(node))


def _build_block(tree: Tree) -> Block:
    statements: List[Stmt] = []
    tail: Optional[Expr] = None
    items = [c for c in tree.children if isinstance(c, Tree)]
    for index, item in enumerate(items):
        kind = _name(item)
        if kind == "empty_stmt":
            continue
        is_last = all(_name(rest) == "empty_stmt" for rest in items[index + 1 :])
        if kind == "tail_expr":
            if not is_last:
                raise _BuildError("expected `;` after expression", _loc(item))
            tail = _build_expr(item.children[0])
            continue
        if kind in ("if_expr", "block_expr") and index == len(items) - 1:
            # A trailing block-like expression is the block's value.
            tail = _build_expr(item)
            continue
        statements.append(_build_stmt(item))
    return Block(statements=statements, tail=tail, loc=_loc(tree))


def _build_stmt(tree: Tree) -> Stmt:
    kind = _name(tree)
    if kind == "let_stmt":
        return _build_let_stmt(tree)
    if kind == "assign_stmt":
        return _build_assign_stmt(tree)
    if kind == "return_stmt":
        value = tree.children[0] if tree.children else None
        return ReturnStmt(loc=_loc(tree), value=_build_expr(value) if value is not None else None)
    if kind == "while_stmt":
        condition, body = tree.children
        return WhileStmt(loc=_loc(tree), condition=_build_expr(condition), body=_build_block(body))
    if kind == "expr_stmt":
        return ExprStmt(loc=_loc(tree), value=_build_expr(tree.children[0]))
    if kind in ("if_expr", "block_expr"):
        return ExprStmt(loc=_loc(tree), value=_build_expr(tree))
    raise _BuildError(f"unsupported statement `{kind}`", _loc(tree))


def _build_let_stmt(tree: Tree) -> LetStmt:
    mutable = _has_token(tree, "MUT")
    name_token = next(c for c in tree.children if isinstance(c, Token) and c.type == "NAME")
    type_expr: Optional[TypeExpr] = None
    value: Optional[Expr] = None
    seen_equal = False
    for child in tree.children:
        if isinstance(child, Token):
            if child.type == "EQUAL":
                seen_equal = True
            continue
        if _name(child) == "type_spec":
            type_expr = _build_type_expr(child.children[0])
        elif seen_equal:
            value = _build_expr(child)
    return LetStmt(loc=_loc(tree), name=name_token.value, type_expr=type_expr, value=value, mutable=mutable)


def _build_assign_stmt(tree: Tree) -> AssignStmt:
    target_node, op_token, value_node = tree.children
    op = None
    if op_token.type == "COMPOUND_OP":
        op = op_token.value[:-1]
    return AssignStmt(loc=_loc(tree), target=_build_expr(target_node), value=_build_expr(value_node), op=op)


def _build_expr(node) -> Expr:
    if isinstance(node, Tree):
        name = _name(node)
    else:
        raise TypeError(f"Unexpected node type: {type(node)}")

    if name == "binary":
        left, op_token, right = node.children
        return Binary(loc=_loc(node), op=op_token.value, left=_build_expr(left), right=_build_expr(right))
    if name == "neg":
        inner = node.children[-1]
        if isinstance(inner, Tree) and _name(inner) == "int_lit":
            return _int_literal(-int(inner.children[0].value.replace("_", "")), _loc(node))
        return Unary(loc=_loc(node), op="-", operand=_build_expr(inner))
    if name == "not_op":
        return Unary(loc=_loc(node), op="!", operand=_build_expr(node.children[-1]))
    if name == "deref":
        return Deref(loc=_loc(node), operand=_build_expr(node.children[-1]))
    if name in ("borrow", "double_borrow"):
        mutable = _has_token(node, "MUT")
        inner = Borrow(loc=_loc(node), operand=_build_expr(node.children[-1]), mutable=mutable)
        if name == "double_borrow":
            return Borrow(loc=_loc(node), operand=inner, mutable=False)
        return inner
    if name == "call":
        func = node.children[0].value
        return Call(loc=_loc(node), func=func, args=_build_args(node))
    if name == "path_call":
        owner, member = node.children[0].value, node.children[1].value
        args = _build_args(node)
        if (owner, member) != ("Box", "new"):
            raise _BuildError(f"unsupported path `{owner}::{member}`", _loc(node))
        if len(args) != 1:
            raise _BuildError("`Box::new` takes exactly one argument", _loc(node))
        return BoxNew(loc=_loc(node), value=args[0])
    if name == "macro_call":
        return _build_macro_call(node)
    if name == "if_expr":
        return _build_if(node)
    if name == "block_expr":
        return BlockExpr(loc=_loc(node), block=_build_block(node.children[0]))
    if name == "var":
        return Name(loc=_loc(node), ident=node.children[0].value)
    if name == "int_lit":
        return _int_literal(int(node.children[0].value.replace("_", "")), _loc(node))
    if name == "true_lit":
        return Literal(loc=_loc(node), value=True)
    if name == "false_lit":
        return Literal(loc=_loc(node), value=False)
    if name == "unit_lit":
        return Literal(loc=_loc(node), value=None)
    raise _BuildError(f"unsupported expression `{name}`", _loc(node))


def _int_literal(value: int, loc: Located) -> Literal:
    if value < _I32_MIN or value > _I32_MAX:
        raise _BuildError("integer literal is too large for `i32`", loc)
    return Literal(loc=loc, value=value)


def _build_args(node: Tree) -> List[Expr]:
    for child in node.children:
        if isinstance(child, Tree) and _name(child) == "args":
            return [_build_expr(arg) for arg in child.children if isinstance(arg, Tree)]
    return []


def _build_macro_call(node: Tree) -> MacroCall:
    name = node.children[0].value
    template = ""
    args: List[Expr] = []
    for child in node.children:
        if isinstance(child, Tree) and _name(child) == "macro_args":
            string_token = child.children[0]
            template = ast.literal_eval(string_token.value)
            args = [_build_expr(arg) for arg in child.children[1:] if isinstance(arg, Tree)]
    return MacroCall(loc=_loc(node), name=name, template=template, args=args)


def _build_if(node: Tree) -> IfExpr:
    condition = _build_expr(node.children[0])
    then_block = _build_block(node.children[1])
    else_block: Optional[Block] = None
    if len(node.children) > 2:
        clause = node.children[2]
        target = clause.children[0]
        if _name(target) == "block":
            else_block = _build_block(target)
        else:
            nested = _build_if(target)
            else_block = Block(statements=[], tail=nested, loc=nested.loc)
    return IfExpr(loc=_loc(node), condition=condition, then_block=then_block, else_block=else_block)


def _has_token(tree: Tree, token_type: str) -> bool:
    return any(isinstance(c, Token) and c.type == token_type for c in tree.children)


def _loc(tree: Tree) -> Located:
    meta = tree.meta
    return Located(line=getattr(meta, "line", 0), column=getattr(meta, "column", 0))


def _name(node: Tree | Token) -> str:
    if isinstance(node, Tree):
        data = node.data
        if isinstance(data, Token):
            return data.value
        return data
    if isinstance(node, Token):
        return node.type
    return str(node)
