from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from .places import BoxValue, Heap, RefValue
from .types import I32, UNIT, FunctionSignature

DISPLAYI32_SIGNATURE = FunctionSignature("displayi32", (I32,), UNIT)


class TemplateError(ValueError):
    pass


BuiltinImpl = Callable[["RuntimeContext", Sequence[object]], object]


@dataclass
class BuiltinFunction:
    signature: FunctionSignature
    impl: BuiltinImpl


@dataclass
class RuntimeContext:
    heap: Heap
    outputs: List[str] = field(default_factory=list)

    def emit(self, text: str) -> None:
        self.outputs.append(text)


def display(value: object, heap: Heap) -> str:
    """Text of a value; references and boxes show what they point at."""
    while isinstance(value, (BoxValue, RefValue)):
        value = heap.load(value.addr)
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "()"
    return str(value)


def split_template(template: str) -> List[str]:
    """
    Split a `println!` template into the literal text around `{}` holes.

    Returns one more piece than there are holes. `{{` and `}}` stand for
    literal braces.
    """
    pieces: List[str] = []
    current: List[str] = []
    i = 0
    while i < len(template):
        ch = template[i]
        nxt = template[i + 1] if i + 1 < len(template) else ""
        if ch == "{" and nxt == "{":
            current.append("{")
            i += 2
            continue
        if ch == "}" and nxt == "}":
            current.append("}")
            i += 2
            continue
        if ch == "{":
            if nxt != "}":
                raise TemplateError("invalid format string: only `{}` placeholders are supported")
            pieces.append("".join(current))
            current = []
            i += 2
            continue
        if ch == "}":
            raise TemplateError("invalid format string: unmatched `}` found")
        current.append(ch)
        i += 1
    pieces.append("".join(current))
    return pieces


def format_template(template: str, values: Sequence[object], heap: Heap) -> str:
    pieces = split_template(template)
    out = [pieces[0]]
    for value, piece in zip(values, pieces[1:]):
        out.append(display(value, heap))
        out.append(piece)
    return "".join(out)


def _builtin_displayi32(ctx: RuntimeContext, args: Sequence[object]) -> object:
    ctx.emit(display(args[0], ctx.heap))
    return None


BUILTINS: Dict[str, BuiltinFunction] = {
    "displayi32": BuiltinFunction(DISPLAYI32_SIGNATURE, _builtin_displayi32),
}

# Macros take a format template plus any number of displayable arguments.
MACROS = frozenset({"println"})
