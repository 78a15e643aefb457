from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Located:
    line: int
    column: int


@dataclass
class TypeExpr:
    # "i32", "bool", "()", "Box", "&" or "&mut"
    name: str
    args: List["TypeExpr"] = field(default_factory=list)


@dataclass
class Param:
    name: str
    type_expr: TypeExpr
    loc: Located
    mutable: bool = False


@dataclass
class Block:
    statements: List["Stmt"]
    tail: Optional["Expr"] = None
    loc: Optional[Located] = None


class Stmt:
    loc: Located


@dataclass
class LetStmt(Stmt):
    loc: Located
    name: str
    type_expr: Optional[TypeExpr]
    value: Optional["Expr"]
    mutable: bool = False


@dataclass
class AssignStmt(Stmt):
    loc: Located
    target: "Expr"
    value: "Expr"
    # Arithmetic operator of a compound assignment (`+=` carries "+").
    op: Optional[str] = None


@dataclass
class ReturnStmt(Stmt):
    loc: Located
    value: Optional["Expr"]


@dataclass
class WhileStmt(Stmt):
    loc: Located
    condition: "Expr"
    body: Block


@dataclass
class ExprStmt(Stmt):
    loc: Located
    value: "Expr"


@dataclass
class FunctionDef:
    name: str
    params: List[Param]
    return_type: Optional[TypeExpr]
    body: Block
    loc: Located


class Expr:
    loc: Located


@dataclass
class Literal(Expr):
    loc: Located
    value: object


@dataclass
class Name(Expr):
    loc: Located
    ident: str


@dataclass
class Unary(Expr):
    loc: Located
    op: str
    operand: Expr


@dataclass
class Deref(Expr):
    loc: Located
    operand: Expr


@dataclass
class Borrow(Expr):
    loc: Located
    operand: Expr
    mutable: bool = False


@dataclass
class Binary(Expr):
    loc: Located
    op: str
    left: Expr
    right: Expr


@dataclass
class Call(Expr):
    loc: Located
    func: str
    args: List[Expr]


@dataclass
class BoxNew(Expr):
    loc: Located
    value: Expr


@dataclass
class MacroCall(Expr):
    loc: Located
    name: str
    template: str
    args: List[Expr]


@dataclass
class IfExpr(Expr):
    loc: Located
    condition: Expr
    then_block: Block
    # `else if` chains are stored as a block whose tail is the nested IfExpr.
    else_block: Optional[Block] = None


@dataclass
class BlockExpr(Expr):
    loc: Located
    block: Block


@dataclass
class Program:
    functions: List[FunctionDef] = field(default_factory=list)


def is_place_expr(expr: Expr) -> bool:
    if isinstance(expr, Name):
        return True
    if isinstance(expr, Deref):
        inner = expr.operand
        if isinstance(inner, Borrow):
            return is_place_expr(inner.operand)
        return is_place_expr(inner)
    return False
