"""A small in-memory intermediate representation that prints as LLVM assembly."""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass
from typing import Optional, Sequence, Union

_INT_MIN = -(2**31)
_INT_MAX = 2**31 - 1

_INT_BINOPS = frozenset({"add", "sub", "mul", "sdiv", "srem", "and", "or", "xor", "shl", "ashr"})
_FLOAT_BINOPS = frozenset({"fadd", "fsub", "fmul", "fdiv"})
_ICMP_PREDICATES = frozenset({"eq", "ne", "slt", "sle", "sgt", "sge"})
_FCMP_PREDICATES = frozenset({"oeq", "one", "olt", "ole", "ogt", "oge"})
_LINKAGES = frozenset({"external", "internal", "private"})
_TERMINATORS = frozenset({"br", "ret"})


def _wrap32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 2**32 if value > _INT_MAX else value


def _format_double(value: float) -> str:
    if math.isfinite(value):
        text = f"{value:.6e}"
        if float(text) == value:
            return text
    bits = struct.unpack("<Q", struct.pack("<d", value))[0]
    return f"0x{bits:016X}"


@dataclass(frozen=True)
class IRType:
    """A first-class IR type: scalar, pointer, label, void or array."""

    kind: str
    element: Optional["IRType"] = None
    count: int = 0

    @classmethod
    def array(cls, element: "IRType", count: int) -> "IRType":
        return cls("array", element, count)

    @property
    def is_integer(self) -> bool:
        return self.kind in ("i1", "i8", "i32")

    @property
    def is_float(self) -> bool:
        return self.kind == "double"

    @property
    def align(self) -> int:
        if self.kind == "array" and self.element is not None:
            return self.element.align
        return {"i1": 1, "i8": 1, "i32": 4, "double": 8, "ptr": 8}.get(self.kind, 1)

    def __str__(self) -> str:
        if self.kind == "array":
            return f"[{self.count} x {self.element}]"
        return self.kind


IRType.VOID = IRType("void")
IRType.I1 = IRType("i1")
IRType.I8 = IRType("i8")
IRType.I32 = IRType("i32")
IRType.DOUBLE = IRType("double")
IRType.PTR = IRType("ptr")
IRType.LABEL = IRType("label")


def _format_constant(type_: IRType, constant) -> str:
    if type_.kind == "i1":
        return "true" if constant else "false"
    if type_.is_float:
        return _format_double(float(constant))
    return str(int(constant))


class Value:
    """Anything that can be an operand: constants, arguments, instructions, globals."""

    def __init__(self, type: IRType, name: str = "", constant=None) -> None:
        self.type = type
        self.name = name
        self.constant = constant

    @property
    def is_constant(self) -> bool:
        return self.constant is not None

    def __repr__(self) -> str:
        label = self.name or (repr(self.constant) if self.is_constant else "?")
        return f"<{type(self).__name__} {self.type} {label}>"


def const_int(value: int) -> Value:
    """A 32-bit signed integer constant, wrapped to range."""
    return Value(IRType.I32, constant=_wrap32(int(value)))


def _const_double(value: float) -> Value:
    return Value(IRType.DOUBLE, constant=float(value))


def _const_bool(value: bool) -> Value:
    return Value(IRType.I1, constant=bool(value))


def _ref(value: Value, names: dict) -> str:
    if value.is_constant:
        return _format_constant(value.type, value.constant)
    try:
        return names[value]
    except KeyError:
        raise ValueError(f"{value!r} is not placed in the module") from None


def _typed(value: Value, names: dict) -> str:
    return f"{value.type} {_ref(value, names)}"


class Instruction(Value):
    """One instruction inside a basic block."""

    def __init__(
        self,
        opcode: str,
        type: IRType,
        operands: Sequence[Value] = (),
        *,
        successors: Sequence["BasicBlock"] = (),
        predicate: Optional[str] = None,
        element_type: Optional[IRType] = None,
        name: str = "",
    ) -> None:
        super().__init__(type, name)
        self.opcode = opcode
        self.operands = list(operands)
        self.successors = list(successors)
        self.predicate = predicate
        self.element_type = element_type
        self.block: Optional[BasicBlock] = None

    @property
    def is_terminator(self) -> bool:
        return self.opcode in _TERMINATORS

    def set_successor(self, index: int, block: "BasicBlock") -> None:
        """Replace the branch target at position index."""
        if not self.successors:
            raise ValueError(f"{self.opcode} instruction has no successors")
        self.successors[index] = block

    def _render(self, names: dict) -> str:
        op = self.opcode
        ops = self.operands
        if op == "alloca":
            text = f"alloca {self.element_type}"
            if ops:
                text += f", {_typed(ops[0], names)}"
            text += f", align {self.element_type.align}"
        elif op == "load":
            text = f"load {self.element_type}, {_typed(ops[0], names)}, align {self.element_type.align}"
        elif op == "store":
            text = f"store {_typed(ops[0], names)}, {_typed(ops[1], names)}, align {ops[0].type.align}"
        elif op in _INT_BINOPS or op in _FLOAT_BINOPS:
            text = f"{op} {_typed(ops[0], names)}, {_ref(ops[1], names)}"
        elif op == "fneg":
            text = f"fneg {_typed(ops[0], names)}"
        elif op in ("icmp", "fcmp"):
            text = f"{op} {self.predicate} {_typed(ops[0], names)}, {_ref(ops[1], names)}"
        elif op == "br":
            targets = ", ".join(f"label {_ref(b, names)}" for b in self.successors)
            text = f"br {_typed(ops[0], names)}, {targets}" if ops else f"br {targets}"
        elif op == "ret":
            text = f"ret {_typed(ops[0], names)}" if ops else "ret void"
        elif op == "call":
            callee, args = ops[0], ops[1:]
            shown = callee.signature if callee.var_arg else str(callee.return_type)
            arg_text = ", ".join(_typed(a, names) for a in args)
            text = f"call {shown} {_ref(callee, names)}({arg_text})"
        elif op == "getelementptr":
            indices = ", ".join(_typed(i, names) for i in ops[1:])
            text = f"getelementptr {self.element_type}, {_typed(ops[0], names)}, {indices}"
        elif op in ("sitofp", "fptosi"):
            text = f"{op} {_typed(ops[0], names)} to {self.element_type}"
        else:
            raise ValueError(f"unknown opcode {op!r}")
        if self.type == IRType.VOID:
            return text
        return f"{_ref(self, names)} = {text}"


class BasicBlock(Value):
    """A labelled, straight-line sequence of instructions."""

    def __init__(self, name: str = "", parent: Optional["Function"] = None) -> None:
        super().__init__(IRType.LABEL, name)
        self.parent: Optional[Function] = None
        self.instructions: list[Instruction] = []
        if parent is not None:
            parent.append_block(self)

    @property
    def terminator(self) -> Optional[Instruction]:
        if self.instructions and self.instructions[-1].is_terminator:
            return self.instructions[-1]
        return None


class Function(Value):
    """A function definition or, while it has no blocks, a declaration."""

    def __init__(
        self,
        module: "Module",
        name: str,
        return_type: IRType,
        param_types: Sequence[IRType],
        *,
        var_arg: bool = False,
        linkage: str = "external",
    ) -> None:
        if linkage not in _LINKAGES:
            raise ValueError(f"unknown linkage {linkage!r}")
        super().__init__(IRType.PTR, name)
        self.module = module
        self.return_type = return_type
        self.param_types = tuple(param_types)
        self.var_arg = var_arg
        self.linkage = linkage
        self.args = [Value(t) for t in self.param_types]
        self.blocks: list[BasicBlock] = []

    @property
    def is_declaration(self) -> bool:
        return not self.blocks

    @property
    def signature(self) -> str:
        params = [str(t) for t in self.param_types]
        if self.var_arg:
            params.append("...")
        return f"{self.return_type} ({', '.join(params)})"

    def append_block(self, block: BasicBlock) -> BasicBlock:
        """Place block at the end of this function."""
        if block.parent is not None:
            raise ValueError("block already belongs to a function")
        block.parent = self
        self.blocks.append(block)
        return block

    def _render(self, names: dict) -> str:
        prefix = "" if self.linkage == "external" else f"{self.linkage} "
        if self.is_declaration:
            params = [str(t) for t in self.param_types]
            if self.var_arg:
                params.append("...")
            return f"declare {prefix}{self.return_type} {names[self]}({', '.join(params)})"

        local = dict(names)
        used: set[str] = set()
        slot = 0

        def assign(value: Value) -> None:
            nonlocal slot
            if value.name:
                local[value] = "%" + _unique(value.name, used)
            else:
                local[value] = f"%{slot}"
                slot += 1

        for arg in self.args:
            assign(arg)
        for block in self.blocks:
            assign(block)
            for inst in block.instructions:
                if inst.type != IRType.VOID:
                    assign(inst)

        params = [_typed(arg, local) for arg in self.args]
        if self.var_arg:
            params.append("...")
        lines = [f"define {prefix}{self.return_type} {names[self]}({', '.join(params)}) {{"]
        for index, block in enumerate(self.blocks):
            if index:
                lines.append("")
            if index or block.name:
                lines.append(f"{local[block][1:]}:")
            lines.extend(f"  {inst._render(local)}" for inst in block.instructions)
        lines.append("}")
        return "\n".join(lines)


class GlobalVariable(Value):
    """A module-level variable or constant string."""

    def __init__(
        self,
        name: str,
        value_type: IRType,
        initializer: Union[Value, bytes, None] = None,
    ) -> None:
        super().__init__(IRType.PTR, name)
        self.value_type = value_type
        self.initializer = initializer

    def _render(self, names: dict) -> str:
        ref = names[self]
        if isinstance(self.initializer, bytes):
            data = "".join(
                chr(b) if 0x20 <= b < 0x7F and b not in (0x22, 0x5C) else f"\\{b:02X}"
                for b in self.initializer
            )
            return f'{ref} = private unnamed_addr constant {self.value_type} c"{data}", align 1'
        if self.initializer is None:
            if self.value_type.kind == "array":
                init = "zeroinitializer"
            else:
                init = _format_constant(self.value_type, 0)
        else:
            init = _format_constant(self.value_type, self.initializer.constant)
        return f"{ref} = global {self.value_type} {init}"


def _unique(name: str, used: set) -> str:
    candidate, suffix = name, 0
    while candidate in used:
        suffix += 1
        candidate = f"{name}{suffix}"
    used.add(candidate)
    return candidate


class Module:
    """A compilation unit holding globals and functions."""

    def __init__(self, name: str = "<stdin>") -> None:
        self.name = name
        self.globals: list[GlobalVariable] = []
        self.functions: list[Function] = []

    def add_global(self, name: str, type: IRType, initializer: Optional[Value] = None) -> GlobalVariable:
        """Return the global called name, creating it if needed, and set its initializer."""
        existing = next((g for g in self.globals if name and g.name == name), None)
        if existing is not None:
            existing.initializer = initializer
            return existing
        variable = GlobalVariable(name, type, initializer)
        self.globals.append(variable)
        return variable

    def add_function(
        self,
        name: str,
        return_type: IRType,
        param_types: Sequence[IRType],
        linkage: str = "external",
    ) -> Function:
        """Create a new function; blocks appended to it make it a definition."""
        function = Function(self, name, return_type, param_types, linkage=linkage)
        self.functions.append(function)
        return function

    def get_or_insert_function(
        self,
        name: str,
        return_type: IRType,
        param_types: Sequence[IRType],
        var_arg: bool = False,
    ) -> Function:
        """Return the function called name, declaring it if absent."""
        existing = next((f for f in self.functions if f.name == name), None)
        if existing is not None:
            return existing
        function = Function(self, name, return_type, param_types, var_arg=var_arg)
        self.functions.append(function)
        return function

    def _add_string(self, text: str) -> GlobalVariable:
        data = text.encode("utf-8") + b"\0"
        variable = GlobalVariable("", IRType.array(IRType.I8, len(data)), data)
        self.globals.append(variable)
        return variable

    def render(self) -> str:
        """The module as LLVM assembly text."""
        names: dict = {}
        used: set[str] = set()
        slot = 0
        for item in [*self.globals, *self.functions]:
            if item.name:
                names[item] = "@" + _unique(item.name, used)
            else:
                names[item] = f"@{slot}"
                slot += 1
        sections = [f"; ModuleID = '{self.name}'\nsource_filename = \"{self.name}\""]
        if self.globals:
            sections.append("\n".join(g._render(names) for g in self.globals))
        sections.extend(f._render(names) for f in self.functions)
        return "\n\n".join(sections) + "\n"


def _fold_int(op: str, a: int, b: int) -> Optional[int]:
    if op == "add":
        return a + b
    if op == "sub":
        return a - b
    if op == "mul":
        return a * b
    if op in ("sdiv", "srem"):
        if b == 0 or (a == _INT_MIN and b == -1):
            return None
        quotient = abs(a) // abs(b)
        if (a < 0) != (b < 0):
            quotient = -quotient
        return quotient if op == "sdiv" else a - b * quotient
    if op == "and":
        return a & b
    if op == "or":
        return a | b
    if op == "xor":
        return a ^ b
    if not 0 <= b < 32:
        return None
    return a << b if op == "shl" else a >> b


def _fold_float(op: str, a: float, b: float) -> Optional[float]:
    if op == "fadd":
        return a + b
    if op == "fsub":
        return a - b
    if op == "fmul":
        return a * b
    return None if b == 0 else a / b


_COMPARE = {
    "eq": lambda a, b: a == b,
    "ne": lambda a, b: a != b,
    "slt": lambda a, b: a < b,
    "sle": lambda a, b: a <= b,
    "sgt": lambda a, b: a > b,
    "sge": lambda a, b: a >= b,
    "oeq": lambda a, b: a == b,
    "one": lambda a, b: a != b,
    "olt": lambda a, b: a < b,
    "ole": lambda a, b: a <= b,
    "ogt": lambda a, b: a > b,
    "oge": lambda a, b: a >= b,
}


class IRBuilder:
    """Appends instructions at the end of a chosen block, folding constants."""

    def __init__(self) -> None:
        self.block: Optional[BasicBlock] = None

    def position_at_end(self, block: BasicBlock) -> None:
        self.block = block

    def _insert(self, inst: Instruction) -> Instruction:
        if self.block is None:
            raise RuntimeError("builder has no insertion block")
        inst.block = self.block
        self.block.instructions.append(inst)
        return inst

    @staticmethod
    def _require_pointer(pointer: Value) -> None:
        if pointer.type != IRType.PTR:
            raise ValueError(f"expected a pointer, got {pointer.type}")

    def alloca(self, type: IRType, count: Optional[Value] = None, name: str = "") -> Instruction:
        operands = [count] if count is not None else []
        return self._insert(Instruction("alloca", IRType.PTR, operands, element_type=type, name=name))

    def store(self, value: Value, pointer: Value) -> Instruction:
        self._require_pointer(pointer)
        return self._insert(Instruction("store", IRType.VOID, [value, pointer]))

    def load(self, type: IRType, pointer: Value) -> Instruction:
        self._require_pointer(pointer)
        return self._insert(Instruction("load", type, [pointer], element_type=type))

    def binop(self, opcode: str, lhs: Value, rhs: Value) -> Value:
        if opcode in _INT_BINOPS:
            if not lhs.type.is_integer:
                raise ValueError(f"{opcode} needs integer operands")
        elif opcode in _FLOAT_BINOPS:
            if not lhs.type.is_float:
                raise ValueError(f"{opcode} needs floating-point operands")
        else:
            raise ValueError(f"unknown binary opcode {opcode!r}")
        if lhs.type != rhs.type:
            raise ValueError(f"operand types differ: {lhs.type} and {rhs.type}")
        if lhs.is_constant and rhs.is_constant:
            if opcode in _INT_BINOPS:
                folded = _fold_int(opcode, int(lhs.constant), int(rhs.constant))
                if folded is not None:
                    return Value(lhs.type, constant=_wrap32(folded))
            else:
                result = _fold_float(opcode, float(lhs.constant), float(rhs.constant))
                if result is not None:
                    return _const_double(result)
        return self._insert(Instruction(opcode, lhs.type, [lhs, rhs]))

    def _compare(self, kind: str, predicate: str, lhs: Value, rhs: Value) -> Value:
        if lhs.type != rhs.type:
            raise ValueError(f"operand types differ: {lhs.type} and {rhs.type}")
        if lhs.is_constant and rhs.is_constant:
            a, b = lhs.constant, rhs.constant
            if kind == "fcmp" and (math.isnan(a) or math.isnan(b)):
                return _const_bool(False)
            return _const_bool(_COMPARE[predicate](a, b))
        return self._insert(Instruction(kind, IRType.I1, [lhs, rhs], predicate=predicate))

    def icmp(self, predicate: str, lhs: Value, rhs: Value) -> Value:
        if predicate not in _ICMP_PREDICATES or not lhs.type.is_integer:
            raise ValueError(f"invalid integer comparison {predicate!r} on {lhs.type}")
        return self._compare("icmp", predicate, lhs, rhs)

    def fcmp(self, predicate: str, lhs: Value, rhs: Value) -> Value:
        if predicate not in _FCMP_PREDICATES or not lhs.type.is_float:
            raise ValueError(f"invalid floating comparison {predicate!r} on {lhs.type}")
        return self._compare("fcmp", predicate, lhs, rhs)

    def neg(self, value: Value) -> Value:
        return self.binop("sub", Value(value.type, constant=0), value)

    def fneg(self, value: Value) -> Value:
        if not value.type.is_float:
            raise ValueError("fneg needs a floating-point operand")
        if value.is_constant:
            return _const_double(-value.constant)
        return self._insert(Instruction("fneg", value.type, [value]))

    def not_(self, value: Value) -> Value:
        return self.binop("xor", value, Value(value.type, constant=-1))

    def br(self, target: BasicBlock) -> Instruction:
        return self._insert(Instruction("br", IRType.VOID, successors=[target]))

    def cond_br(self, cond: Value, true_block: BasicBlock, false_block: BasicBlock) -> Instruction:
        if cond.type != IRType.I1:
            raise ValueError(f"branch condition must be i1, got {cond.type}")
        return self._insert(
            Instruction("br", IRType.VOID, [cond], successors=[true_block, false_block])
        )

    def ret(self, value: Value) -> Instruction:
        return self._insert(Instruction("ret", IRType.VOID, [value]))

    def ret_void(self) -> Instruction:
        return self._insert(Instruction("ret", IRType.VOID))

    def call(self, function: Function, args: Sequence[Value]) -> Instruction:
        args = list(args)
        fixed = len(function.param_types)
        if len(args) < fixed or (not function.var_arg and len(args) != fixed):
            raise ValueError(f"{function.name} takes {fixed} arguments, got {len(args)}")
        for arg, expected in zip(args, function.param_types):
            if arg.type != expected:
                raise ValueError(f"argument of type {arg.type} where {expected} expected")
        return self._insert(Instruction("call", function.return_type, [function, *args]))

    def gep(self, type: IRType, pointer: Value, indices: Sequence[Value]) -> Instruction:
        self._require_pointer(pointer)
        return self._insert(
            Instruction("getelementptr", IRType.PTR, [pointer, *indices], element_type=type)
        )

    def sitofp(self, value: Value, type: IRType) -> Value:
        if not value.type.is_integer or not type.is_float:
            raise ValueError(f"cannot convert {value.type} to {type} with sitofp")
        if value.is_constant:
            return _const_double(float(value.constant))
        return self._insert(Instruction("sitofp", type, [value], element_type=type))

    def fptosi(self, value: Value, type: IRType) -> Value:
        if not value.type.is_float or not type.is_integer:
            raise ValueError(f"cannot convert {value.type} to {type} with fptosi")
        if value.is_constant and math.isfinite(value.constant):
            truncated = math.trunc(value.constant)
            if _INT_MIN <= truncated <= _INT_MAX:
                return Value(type, constant=truncated)
        return self._insert(Instruction("fptosi", type, [value], element_type=type))

    def global_string_ptr(self, text: str) -> GlobalVariable:
        if self.block is None or self.block.parent is None:
            raise RuntimeError("builder has no insertion block inside a function")
        return self.block.parent.module._add_string(text)