import struct

import pytest

from minicsem.ir import (
    BasicBlock,
    Function,
    GlobalVariable,
    IRBuilder,
    IRType,
    Instruction,
    Module,
    const_int,
)


def _setup(params=(IRType.I32,), return_type=IRType.I32):
    module = Module()
    fn = module.add_function("main", return_type, list(params))
    entry = BasicBlock("", fn)
    builder = IRBuilder()
    builder.position_at_end(entry)
    return module, fn, entry, builder


def _assigned(text):
    return [
        line.strip().split(" = ")[0]
        for line in text.splitlines()
        if line.startswith("  %") and " = " in line
    ]


def test_const_int_wraps_to_32_bits():
    assert const_int(2**32 + 7).constant == 7
    assert const_int(-1).constant == const_int(2**32 - 1).constant


def test_binop_folds_constants_as_invariants():
    _, _, entry, builder = _setup()
    a, b = const_int(12), const_int(30)
    assert builder.binop("add", a, const_int(0)).constant == a.constant
    assert builder.binop("add", a, b).constant == builder.binop("add", b, a).constant
    assert entry.instructions == []


def test_sdiv_srem_truncate_toward_zero():
    _, _, _, builder = _setup()
    for a, b in [(-7, 2), (7, -2), (-9, -4), (9, 4)]:
        q = builder.binop("sdiv", const_int(a), const_int(b)).constant
        r = builder.binop("srem", const_int(a), const_int(b)).constant
        assert q * b + r == a
        assert abs(r) < abs(b)
        assert r == 0 or (r < 0) == (a < 0)


def test_division_by_zero_is_not_folded():
    _, _, entry, builder = _setup()
    result = builder.binop("sdiv", const_int(1), const_int(0))
    assert isinstance(result, Instruction)
    assert entry.instructions[-1] is result


def test_binop_on_variable_emits_instruction():
    _, fn, entry, builder = _setup()
    result = builder.binop("add", fn.args[0], const_int(1))
    assert result.opcode == "add"
    assert entry.instructions == [result]
    assert result.type == IRType.I32


def test_binop_errors():
    _, fn, _, builder = _setup()
    with pytest.raises(ValueError):
        builder.binop("add", fn.args[0], builder.sitofp(const_int(1), IRType.DOUBLE))
    with pytest.raises(ValueError):
        builder.binop("frobnicate", fn.args[0], fn.args[0])
    with pytest.raises(ValueError):
        builder.binop("fadd", fn.args[0], fn.args[0])


def test_builder_without_block_raises():
    with pytest.raises(RuntimeError):
        IRBuilder().alloca(IRType.I32, None, "x")


def test_terminator_and_set_successor():
    _, fn, entry, builder = _setup()
    assert entry.terminator is None
    tmp = BasicBlock()
    branch = builder.br(tmp)
    assert entry.terminator is branch
    real = BasicBlock("L0", fn)
    branch.set_successor(0, real)
    assert branch.successors == [real]


def test_set_successor_on_non_branch_raises():
    _, fn, _, builder = _setup()
    ret = builder.ret(fn.args[0])
    with pytest.raises(ValueError):
        ret.set_successor(0, BasicBlock())


def test_cond_br_successor_order_and_condition_type():
    _, fn, _, builder = _setup()
    t, f = BasicBlock(), BasicBlock()
    cond = builder.icmp("slt", fn.args[0], const_int(15))
    branch = builder.cond_br(cond, t, f)
    assert branch.successors[0] is t and branch.successors[1] is f
    assert cond.type == IRType.I1
    with pytest.raises(ValueError):
        builder.cond_br(fn.args[0], t, f)


def test_compare_folds_constants():
    _, _, _, builder = _setup()
    assert builder.icmp("slt", const_int(1), const_int(2)).constant is True
    assert builder.icmp("sge", const_int(1), const_int(2)).constant is False
    one = builder.sitofp(const_int(1), IRType.DOUBLE)
    assert builder.fcmp("oeq", one, one).constant is True


def test_cast_round_trip_and_types():
    _, fn, _, builder = _setup()
    c = const_int(-42)
    assert builder.fptosi(builder.sitofp(c, IRType.DOUBLE), IRType.I32).constant == c.constant
    converted = builder.sitofp(fn.args[0], IRType.DOUBLE)
    assert converted.type == IRType.DOUBLE
    with pytest.raises(ValueError):
        builder.fptosi(fn.args[0], IRType.I32)


def test_neg_and_not_fold():
    _, _, _, builder = _setup()
    c = const_int(5)
    assert builder.neg(builder.neg(c)).constant == c.constant
    assert builder.not_(builder.not_(c)).constant == c.constant
    d = builder.sitofp(c, IRType.DOUBLE)
    assert builder.fneg(builder.fneg(d)).constant == d.constant


def test_render_names_are_unique():
    module, fn, _, builder = _setup()
    fn.args[0].name = "x"
    first = builder.alloca(IRType.I32, None, "x")
    builder.alloca(IRType.I32, None, "x")
    builder.store(fn.args[0], first)
    builder.ret(const_int(0))
    text = module.render()
    names = _assigned(text)
    assert len(names) == 2
    assert len(set(names)) == 2
    assert "%x" not in names
    assert "define i32 @main(i32 %x)" in text


def test_unnamed_values_get_consecutive_slots():
    module, fn, _, builder = _setup()
    fn.args[0].name = "x"
    slot = builder.alloca(IRType.I32)
    builder.load(IRType.I32, slot)
    builder.load(IRType.I32, slot)
    builder.ret(const_int(0))
    numbers = [int(name[1:]) for name in _assigned(module.render())]
    assert len(numbers) == 3
    assert numbers == list(range(numbers[0], numbers[0] + len(numbers)))


def test_unplaced_branch_target_cannot_render():
    module, _, _, builder = _setup()
    builder.br(BasicBlock())
    with pytest.raises(ValueError):
        module.render()


def test_global_string_ptr():
    module, _, _, builder = _setup()
    text = "hi\n"
    gv = builder.global_string_ptr(text)
    assert isinstance(gv, GlobalVariable)
    assert gv.value_type == IRType.array(IRType.I8, len(text) + 1)
    assert gv in module.globals
    assert 'c"hi\\0A\\00"' in module.render()


def test_add_global_returns_existing():
    module = Module()
    array_type = IRType.array(IRType.DOUBLE, 6)
    first = module.add_global("m", array_type)
    second = module.add_global("m", array_type, None)
    assert first is second
    assert module.globals == [first]
    assert any(line.startswith("@m = ") for line in module.render().splitlines())


def test_get_or_insert_function_and_call():
    module, _, _, builder = _setup()
    printer = module.get_or_insert_function("print", IRType.I32, [IRType.PTR], True)
    assert module.get_or_insert_function("print", IRType.I32, [IRType.PTR], True) is printer
    assert printer.is_declaration
    fmt = builder.global_string_ptr("%d")
    result = builder.call(printer, [fmt, const_int(3)])
    assert result.type == IRType.I32
    assert result.operands[0] is printer
    with pytest.raises(ValueError):
        builder.call(printer, [])
    rendered = module.render()
    assert any(
        line.startswith("declare") and "@print" in line for line in rendered.splitlines()
    )


def test_call_fixed_arity_mismatch():
    module, _, _, builder = _setup()
    scale = module.add_function("scale", IRType.I32, [IRType.DOUBLE], "internal")
    with pytest.raises(ValueError):
        builder.call(scale, [])
    with pytest.raises(ValueError):
        builder.call(scale, [const_int(1)])


def test_add_function_rejects_unknown_linkage():
    with pytest.raises(ValueError):
        Module().add_function("f", IRType.I32, [], "weird")


def test_append_block_twice_raises():
    _, fn, _, _ = _setup()
    other = Module().add_function("g", IRType.I32, [])
    block = BasicBlock("L0", fn)
    assert block.parent is fn
    with pytest.raises(ValueError):
        other.append_block(block)
    assert isinstance(other, Function) and other.blocks == []


def test_gep_and_load_store_pointer_checks():
    module, fn, _, builder = _setup()
    array = module.add_global("m", IRType.array(IRType.DOUBLE, 6))
    element = builder.gep(IRType.DOUBLE, array, [fn.args[0]])
    assert element.type == IRType.PTR
    loaded = builder.load(IRType.DOUBLE, element)
    assert loaded.type == IRType.DOUBLE
    with pytest.raises(ValueError):
        builder.store(loaded, fn.args[0])
    with pytest.raises(ValueError):
        builder.load(IRType.I32, fn.args[0])