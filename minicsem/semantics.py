"""Semantic actions that turn recognised constructs into IR."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .ir import BasicBlock, Function, Instruction, IRBuilder, IRType, Module, Value, const_int
from .records import (
    MAX_ARGS,
    MAX_LOCALS,
    CompileError,
    IdEntry,
    Scope,
    SemRec,
    TypeFlag,
    merge,
    parse_escape_chars,
)
from .symtab import SymbolTable

MAX_LOOP_NEST = 50
MAX_LABELS = 50
MAX_GOTOS = 50

_INT = int(TypeFlag.INT)
_DOUBLE = int(TypeFlag.DOUBLE)
_STR = int(TypeFlag.STR)
_PROC = int(TypeFlag.PROC)
_ARRAY = int(TypeFlag.ARRAY)
_ADDR = int(TypeFlag.ADDR)

_ARITHMETIC = {
    "+": ("add", "fadd"),
    "-": ("sub", "fsub"),
    "*": ("mul", "fmul"),
    "/": ("sdiv", "fdiv"),
    "%": ("srem", None),
}
_BITWISE = {"|": "or", "^": "xor", "&": "and", "<<": "shl", ">>": "ashr"}
_RELATIONS = {
    "<": ("slt", "olt"),
    ">": ("sgt", "ogt"),
    "==": ("eq", "oeq"),
    "!=": ("ne", "one"),
    "<=": ("sle", "ole"),
    ">=": ("sge", "oge"),
}


@dataclass
class _LoopScope:
    breaks: Optional[SemRec] = None
    conts: Optional[SemRec] = None


@dataclass
class _PendingGoto:
    label: Optional[str]
    branch: Instruction


def _llvm_type(t: int) -> IRType:
    base = int(t) & ~(_ARRAY | _ADDR)
    if base == _INT:
        return IRType.I32
    if base == _DOUBLE:
        return IRType.DOUBLE
    raise CompileError(f"invalid type {int(t):x}")


class CodeGenerator:
    """Builds a module from the semantic actions invoked by the parser."""

    def __init__(self, symbols: SymbolTable) -> None:
        self.symbols = symbols
        self.module = Module("<stdin>")
        self.builder = IRBuilder()
        self.errors: list[str] = []
        self.formals: list[IdEntry] = []
        self.locals: list[IdEntry] = []
        self._label_index = 0
        self._loops: list[_LoopScope] = []
        self._labels: list[tuple[str, BasicBlock]] = []
        self._gotos: list[_PendingGoto] = []
        self._declare_print()

    def _declare_print(self) -> None:
        function = self.module.get_or_insert_function(
            "print", IRType.I32, [IRType.PTR], var_arg=True
        )
        entry = self.symbols.install(self.symbols.intern("print"), 0)
        entry.type = _INT | _PROC
        entry.value = function

    def _error(self, message: str) -> None:
        self.errors.append(message)

    def _named_block(self, name: str) -> BasicBlock:
        current = self.builder.block
        if current is None or current.parent is None:
            raise CompileError("no function is being compiled")
        return BasicBlock(name, current.parent)

    def _enter(self, block: BasicBlock) -> None:
        if self.builder.block.terminator is None:
            self.builder.br(block)
        self.builder.position_at_end(block)

    # declarations

    def dcl(self, p: IdEntry, type: int, scope: int) -> IdEntry:
        """Finish a declaration: choose its scope and place its storage."""
        level = self.symbols.level
        p.type = int(p.type) + int(type)
        if scope != 0:
            p.scope = Scope(scope)
        elif p.width > 0 and level == 2:
            p.scope = Scope.GLOBAL
        else:
            p.scope = Scope.LOCAL

        if level > 2 and p.scope == Scope.PARAM:
            p.offset = len(self.formals)
            self.formals.append(p)
            if len(self.formals) > MAX_ARGS:
                raise CompileError("too many arguments")
        elif level > 2:
            p.offset = len(self.locals)
            self.locals.append(p)
            if len(self.locals) > MAX_LOCALS:
                raise CompileError("too many locals")
        elif p.width > 0 and level == 2:
            self.global_alloc(p, p.width)
        return p

    def dclr(self, name: str, type: int, width: int) -> IdEntry:
        """Enter a declared identifier at the current block level."""
        p = self.symbols.lookup(name)
        if p is not None and p.blevel == self.symbols.level:
            self._error(f"identifier {name} previously declared")
            return p
        p = self.symbols.install(name, -1)
        p.defined = True
        p.type = type
        p.width = width
        return p

    def global_alloc(self, entry: IdEntry, width: int) -> None:
        """Create a zero-initialised global for entry."""
        if entry.type & _ARRAY:
            type_ = IRType.array(_llvm_type(entry.type), width)
            init = None
        else:
            type_ = _llvm_type(entry.type)
            init = const_int(0)
        entry.value = self.module.add_global(entry.name, type_, init)

    # control-flow plumbing

    def backpatch(self, rec: Optional[SemRec], bb: BasicBlock) -> None:
        """Point every branch on list rec that targets its temporary block at bb."""
        for node in rec or ():
            branch = node.value
            if not isinstance(branch, Instruction) or branch.opcode != "br":
                raise CompileError("backpatch with non-branch instruction")
            for index, successor in enumerate(branch.successors):
                if successor is node.bb:
                    branch.set_successor(index, bb)

    def m(self) -> BasicBlock:
        """Start a fresh labelled block, falling through into it."""
        block = self._named_block(f"L{self._label_index}")
        self._label_index += 1
        self._enter(block)
        return block

    def n(self) -> SemRec:
        """Emit an unconditional branch to be backpatched later."""
        target = BasicBlock()
        branch = self.builder.br(target)
        return SemRec(value=branch, bb=target)

    def startloopscope(self) -> None:
        if len(self._loops) >= MAX_LOOP_NEST:
            raise CompileError("loop nest too great")
        self._loops.append(_LoopScope())

    def endloopscope(self) -> None:
        if self._loops:
            self._loops.pop()

    def _loop_exits(self, continue_to: BasicBlock, break_to: BasicBlock) -> None:
        if self._loops:
            top = self._loops[-1]
            if top.conts is not None:
                self.backpatch(top.conts, continue_to)
            if top.breaks is not None:
                self.backpatch(top.breaks, break_to)
        self.endloopscope()

    # logical expressions

    def ccexpr(self, e: SemRec) -> SemRec:
        """Branch on the value of e, returning open true and false lists."""
        cond = e.value
        if cond.type.is_float:
            cond = self.builder.fcmp("one", cond, Value(cond.type, constant=0.0))
        elif cond.type != IRType.I1:
            cond = self.builder.icmp("ne", cond, Value(cond.type, constant=0))
        true_block, false_block = BasicBlock(), BasicBlock()
        branch = self.builder.cond_br(cond, true_block, false_block)
        return SemRec(
            true_list=SemRec(value=branch, bb=true_block),
            false_list=SemRec(value=branch, bb=false_block),
        )

    def ccand(self, e1: SemRec, m: BasicBlock, e2: SemRec) -> SemRec:
        self.backpatch(e1.true_list, m)
        return SemRec(true_list=e2.true_list, false_list=merge(e1.false_list, e2.false_list))

    def ccor(self, e1: SemRec, m: BasicBlock, e2: SemRec) -> SemRec:
        self.backpatch(e1.false_list, m)
        return SemRec(true_list=merge(e1.true_list, e2.true_list), false_list=e2.false_list)

    def ccnot(self, e: SemRec) -> SemRec:
        return SemRec(value=e.value, bb=e.bb, type=e.type, true_list=e.false_list, false_list=e.true_list)

    def rel(self, op: str, x: SemRec, y: SemRec) -> SemRec:
        """Compare x and y, converting to double if either is one."""
        if op not in _RELATIONS:
            raise CompileError(f"unknown relational operator {op!r}")
        int_pred, float_pred = _RELATIONS[op]
        if x.type & _INT and y.type & _INT:
            value = self.builder.icmp(int_pred, x.value, y.value)
        elif x.type & _DOUBLE or y.type & _DOUBLE:
            if not x.type & _DOUBLE:
                x = self.cast(x, _DOUBLE)
            elif not y.type & _DOUBLE:
                y = self.cast(y, _DOUBLE)
            value = self.builder.fcmp(float_pred, x.value, y.value)
        else:
            raise CompileError(f"cannot compare operands with {op}")
        return self.ccexpr(SemRec(value=value, type=_INT))

    # statements

    def dobreak(self) -> None:
        if self._loops:
            top = self._loops[-1]
            top.breaks = merge(top.breaks, self.n())

    def docontinue(self) -> None:
        if self._loops:
            top = self._loops[-1]
            top.conts = merge(top.conts, self.n())

    def dodo(self, m1: BasicBlock, m2: BasicBlock, cond: SemRec, m3: BasicBlock) -> None:
        self.backpatch(cond.true_list, m1)
        self.backpatch(cond.false_list, m3)
        self._loop_exits(m2, m3)

    def dofor(self, m1, cond, m2, n1, m3, n2, m4) -> None:
        self.backpatch(cond.true_list, m3)
        self.backpatch(cond.false_list, m4)
        self.backpatch(n2, m2)
        self.backpatch(n1, m1)
        self._loop_exits(m2, m4)

    def dowhile(self, m1, cond, m2, n, m3) -> None:
        self.backpatch(cond.true_list, m2)
        self.backpatch(cond.false_list, m3)
        self.backpatch(n, m1)
        self._loop_exits(m1, m3)

    def doif(self, cond: SemRec, m1: BasicBlock, m2: BasicBlock) -> None:
        self.backpatch(cond.true_list, m1)
        self.backpatch(cond.false_list, m2)

    def doifelse(self, cond, m1, n, m2, m3) -> None:
        self.backpatch(cond.true_list, m1)
        self.backpatch(cond.false_list, m2)
        self.backpatch(n, m3)

    def doret(self, e: Optional[SemRec]) -> None:
        if e is None:
            self.builder.ret_void()
        else:
            self.builder.ret(e.value)

    def dogoto(self, label: str) -> None:
        """Branch to a user label, deferring the target if not yet declared."""
        if len(self._gotos) >= MAX_GOTOS:
            raise CompileError("too many goto statements")
        for name, block in self._labels:
            if name == label:
                self.builder.br(block)
                return
        branch = self.builder.br(BasicBlock())
        self._gotos.append(_PendingGoto(label, branch))

    def labeldcl(self, name: str) -> None:
        """Start the block of a user label and resolve gotos waiting for it."""
        if len(self._labels) >= MAX_LABELS:
            raise CompileError("too many labels")
        block = self._named_block(f"userlbl_{name}")
        self._labels.append((name, block))
        self._enter(block)
        for pending in self._gotos:
            if pending.label == name:
                pending.branch.set_successor(0, block)
                pending.label = None

    # functions

    def fname(self, t: int, name: str) -> IdEntry:
        """Declare a function and open its scope."""
        entry = self.symbols.lookup(name)
        if entry is None:
            entry = self.symbols.install(name, 0)
        if entry.defined:
            self._error("cannot declare function more than once")
        entry.type = t
        entry.scope = Scope.GLOBAL
        entry.defined = True
        self.symbols.enter_block()
        self.formals = []
        self.locals = []
        return entry

    def fhead(self, p: IdEntry) -> None:
        """Create the function and stack slots for its parameters and locals."""
        linkage = "external" if p.name == "main" else "internal"
        function: Function = self.module.add_function(
            p.name, _llvm_type(p.type), [_llvm_type(v.type) for v in self.formals], linkage
        )
        p.value = function
        self.builder.position_at_end(BasicBlock("", function))

        for arg, v in zip(function.args, self.formals):
            arg.name = v.name
            count = const_int(v.width) if v.width > 1 else None
            v.value = self.builder.alloca(_llvm_type(v.type), count, arg.name)
            self.builder.store(arg, v.value)
        for v in self.locals:
            count = const_int(v.width) if v.width > 1 else None
            v.value = self.builder.alloca(_llvm_type(v.type), count, v.name)

    def ftail(self) -> None:
        self._gotos.clear()
        self._labels.clear()
        self.symbols.leave_block()

    # expressions

    def con(self, x: str) -> SemRec:
        """An integer constant."""
        entry = self.symbols.lookup(x)
        if entry is None:
            entry = self.symbols.install(x, 0)
            entry.type = _INT
            entry.scope = Scope.GLOBAL
            entry.defined = True
        number = int(x)
        if not -(2**31) <= number < 2**31:
            raise CompileError(f"integer constant {x} out of range")
        entry.value = const_int(number)
        return SemRec(value=entry.value, type=entry.type)

    def id(self, x: str) -> SemRec:
        """The address of a variable."""
        entry = self.symbols.lookup(x)
        if entry is None:
            self._error("undeclared identifier")
            entry = self.symbols.install(x, -1)
            entry.type = _INT
            entry.scope = Scope.LOCAL
            entry.defined = True
        return SemRec(value=entry.value, type=int(entry.type) | _ADDR)

    def indx(self, x: SemRec, i: SemRec) -> SemRec:
        """The address of element i of array x."""
        address = self.builder.gep(_llvm_type(x.type), x.value, [i.value])
        return SemRec(value=address, type=int(x.type) & ~_ARRAY)

    def exprs(self, l: Optional[SemRec], e: SemRec) -> SemRec:
        """Append e to the expression list l."""
        return merge(l, e)

    def call(self, f: str, args: Optional[SemRec]) -> SemRec:
        entry = self.symbols.lookup(f)
        if entry is None:
            raise CompileError(f"undefined function {f} called")
        values = [arg.value for arg in args or ()]
        return SemRec(value=self.builder.call(entry.value, values), type=entry.type)

    def cast(self, y: SemRec, t: int) -> SemRec:
        """Convert y in place to type t."""
        value = y.value
        if t & _DOUBLE:
            target = _llvm_type(t)
            if value.type != target:
                value = self.builder.sitofp(value, target)
        elif t & _INT:
            target = _llvm_type(t)
            if value.type != target:
                value = self.builder.fptosi(value, target)
        else:
            return y
        y.type = t
        y.value = value
        return y

    def op1(self, op: str, y: SemRec) -> SemRec:
        """Unary minus, complement, or '@' to load through an address."""
        if op == "-":
            if y.type & _INT:
                return SemRec(value=self.builder.neg(y.value), type=y.type)
            if y.type & _DOUBLE:
                return SemRec(value=self.builder.fneg(y.value), type=y.type)
        elif op == "~":
            if y.type & _INT:
                return SemRec(value=self.builder.not_(y.value), type=y.type)
        elif op == "@":
            if not y.type & _ARRAY:
                y.type = int(y.type) & ~_ADDR
                return SemRec(value=self.builder.load(_llvm_type(y.type), y.value), type=y.type)
        raise CompileError(f"unsupported operand for unary {op}")

    def op2(self, op: str, x: SemRec, y: SemRec) -> SemRec:
        """Arithmetic; y is converted to the type of x."""
        if x.type != y.type:
            y = self.cast(y, x.type)
        if op not in _ARITHMETIC:
            raise CompileError(f"unknown arithmetic operator {op!r}")
        int_op, float_op = _ARITHMETIC[op]
        if x.type & _INT:
            opcode = int_op
        elif op == "%":
            raise CompileError("modulus of doubles is not allowed")
        elif x.type & _DOUBLE:
            opcode = float_op
        else:
            raise CompileError(f"unsupported operands for {op}")
        return SemRec(value=self.builder.binop(opcode, x.value, y.value), type=x.type)

    def opb(self, op: str, x: SemRec, y: SemRec) -> SemRec:
        """Bitwise operators on integers."""
        if op not in _BITWISE or not x.type & _INT:
            raise CompileError(f"unsupported operands for {op}")
        return SemRec(value=self.builder.binop(_BITWISE[op], x.value, y.value), type=x.type)

    def set(self, op: str, x: SemRec, y: SemRec) -> SemRec:
        """Plain ('') or compound assignment of y to the address x."""
        if x.type != y.type:
            y = self.cast(y, x.type)
        if op == "":
            self.builder.store(y.value, x.value)
            return x
        current = SemRec(value=self.builder.load(_llvm_type(x.type), x.value), type=x.type)
        if op in _ARITHMETIC:
            result = self.op2(op, current, y)
        else:
            result = self.opb(op, current, y)
        self.builder.store(result.value, x.value)
        return result

    def genstring(self, s: str) -> SemRec:
        """A pointer to a constant copy of the string literal s."""
        text = parse_escape_chars(s)
        return SemRec(value=self.builder.global_string_ptr(text), type=_STR)

    def emit_ir(self) -> str:
        """The generated module as assembly text."""
        return self.module.render()