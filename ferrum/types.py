from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .ast import TypeExpr


@dataclass(frozen=True)
class Type:
    name: str
    args: Tuple["Type", ...] = ()

    def __str__(self) -> str:
        if not self.args:
            return self.name
        inner = ", ".join(str(a) for a in self.args)
        return f"{self.name}<{inner}>"


@dataclass(frozen=True)
class ReferenceType(Type):
    mutable: bool = False

    def __str__(self) -> str:
        prefix = "&mut " if self.mutable else "&"
        return f"{prefix}{self.args[0]}"


I32 = Type("i32")
BOOL = Type("bool")
UNIT = Type("()")

_PRIMITIVES: Dict[str, Type] = {
    "i32": I32,
    "bool": BOOL,
    "()": UNIT,
}

_COPY_PRIMITIVES = frozenset({I32, BOOL, UNIT})


class TypeSystemError(Exception):
    pass


class UnknownTypeError(TypeSystemError):
    pass


def resolve_type(type_expr: TypeExpr) -> Type:
    if type_expr.name == "&":
        return ref_of(resolve_type(type_expr.args[0]), mutable=False)
    if type_expr.name == "&mut":
        return ref_of(resolve_type(type_expr.args[0]), mutable=True)
    if type_expr.name == "Box":
        if len(type_expr.args) != 1:
            raise TypeSystemError("`Box` takes exactly one type argument")
        return box_of(resolve_type(type_expr.args[0]))
    if type_expr.args:
        raise TypeSystemError(f"type `{type_expr.name}` does not take type arguments")
    builtin = _PRIMITIVES.get(type_expr.name)
    if builtin:
        return builtin
    raise UnknownTypeError(f"cannot find type `{type_expr.name}` in this scope")


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    params: tuple[Type, ...]
    return_type: Type


def box_of(inner: Type) -> Type:
    return Type("Box", (inner,))


def ref_of(inner: Type, mutable: bool = False) -> ReferenceType:
    return ReferenceType(name="&mut" if mutable else "&", args=(inner,), mutable=mutable)


def is_box(ty: Optional[Type]) -> bool:
    return ty is not None and ty.name == "Box" and not isinstance(ty, ReferenceType)


def is_reference(ty: Optional[Type]) -> bool:
    return isinstance(ty, ReferenceType)


def pointee(ty: Optional[Type]) -> Optional[Type]:
    """Type reached by `*` on a value of `ty`, or None when `ty` cannot be dereferenced."""
    if is_box(ty) or is_reference(ty):
        return ty.args[0]
    return None


def is_copy(ty: Type) -> bool:
    if ty in _COPY_PRIMITIVES:
        return True
    if isinstance(ty, ReferenceType):
        return not ty.mutable
    return False


def contains_reference(ty: Type) -> bool:
    if isinstance(ty, ReferenceType):
        return True
    return any(contains_reference(arg) for arg in ty.args)


def is_displayable(ty: Type) -> bool:
    inner = pointee(ty)
    if inner is not None:
        return is_displayable(inner)
    return ty in (I32, BOOL)


def coerces_to(actual: Type, expected: Type) -> bool:
    if actual == expected:
        return True
    # &mut T is accepted where &T is expected.
    if isinstance(actual, ReferenceType) and isinstance(expected, ReferenceType):
        return actual.mutable and not expected.mutable and actual.args == expected.args
    return False
