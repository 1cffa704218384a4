# minicsem

`minicsem` is the front half of a compiler for a small subset of C. It has
three parts:

- a scanner;
- a block-structured symbol table;
- the semantic actions that a parser calls as it reduces grammar rules.

The semantic actions build an SSA-style intermediate representation. That
representation prints as LLVM-flavoured assembly text.

The actions cover the following:

- `int` and `double` scalars, and global arrays;
- functions with parameters and locals;
- `if`/`else`, `while`, `do`/`while` and `for`;
- `break` and `continue`;
- labels with `goto`;
- calls;
- string literals.

When a `CodeGenerator` is created, it declares one variadic function,
`print(fmt, ...)`.

## Modules

### `minicsem.records`

Shared data and helpers:

- `TypeFlag` is an `IntFlag` of the type bits: `INT`, `STR`, `DOUBLE`,
  `PROC`, `ARRAY`, `ADDR` and `LBL`.
- `Scope` is one of `LOCAL`, `PARAM` or `GLOBAL`.
- `IdEntry` is a symbol table entry.
- `SemRec` is a semantic record. It holds a value, a temporary block, a type,
  a `link` to the next record, and the `true_list` and `false_list`
  backpatch lists. Iterating over a record walks its `link` chain.
- `merge(p1, p2)` appends one backpatch list to another.
- `parse_escape_chars(s)` strips the quotes from a string literal and expands
  these escapes: `\b`, `\f`, `\n`, `\r`, `\t`, `\"` and `\\`.
- `CompileError` is the exception raised for errors in the compiled program.

### `minicsem.symtab`

`SymbolTable` has these methods:

- `enter_block()` and `leave_block()` open and close a block. Leaving a block
  drops the identifiers declared in it.
- `install(name, blev)` and `lookup(name, blev)` add and find entries.
- `intern(text)` stores a string once and returns the stored copy.
- `dump(blev)` and `sdump()` return text listings of the identifiers and the
  interned strings.

### `minicsem.scanner`

- `install_reserved_words(symbols)` places the keywords and operators in a
  symbol table at block level 1.
- `Scanner(text, symbols)` splits text into `Lexeme`s, each of which carries
  a `Token` kind, the interned text and the line where it starts. Use either
  `next_token()` or the `tokens()` generator. Both of them:
  - skip `/* ... */` comments;
  - report illegal characters on standard error.

### `minicsem.ir`

An in-memory IR model:

- The IR types are `IRType`, `Value`, `Instruction`, `BasicBlock`,
  `Function`, `GlobalVariable` and `Module`. Use `const_int()` for 32-bit
  integer constants.
- `IRBuilder` appends instructions at the end of a block. It can build
  allocas, loads, stores, arithmetic, comparisons, branches, returns, calls,
  `getelementptr`, `sitofp`/`fptosi` and global string constants. When every
  operand is a constant, it folds arithmetic, comparisons and conversions to
  constants.
- `Module.render()` returns the module as assembly text.

### `minicsem.semantics`

`CodeGenerator(symbols)` holds the semantic actions:

- declarations: `dclr`, `dcl`, `global_alloc`;
- functions: `fname`, `fhead`, `ftail`;
- expressions: `con`, `id`, `indx`, `op1`, `op2`, `opb`, `set`, `cast`,
  `call`, `exprs`, `genstring`;
- conditions: `rel`, `ccexpr`, `ccand`, `ccor`, `ccnot`;
- control flow: `m`, `n`, `backpatch`, `doif`, `doifelse`, `dowhile`,
  `dodo`, `dofor`, `dobreak`, `docontinue`, `dogoto`, `labeldcl`,
  `startloopscope`, `endloopscope`;
- output: `doret`, `emit_ir`.

## Example

The code below drives the actions by hand for this program:

```c
int main(int x) {
    if (x < 15)
        return 88;
    return 21;
}
```

```python
from minicsem.records import Scope, TypeFlag
from minicsem.scanner import install_reserved_words
from minicsem.semantics import CodeGenerator
from minicsem.symtab import SymbolTable

symbols = SymbolTable()
gen = CodeGenerator(symbols)
symbols.enter_block()
install_reserved_words(symbols)
symbols.enter_block()

main = gen.fname(TypeFlag.INT, symbols.intern("main"))
param = gen.dclr(symbols.intern("x"), TypeFlag.INT, 1)
gen.dcl(param, 0, Scope.PARAM)
gen.fhead(main)

x = gen.op1("@", gen.id(symbols.intern("x")))
cond = gen.rel("<", x, gen.con(symbols.intern("15")))
m1 = gen.m()
gen.doret(gen.con(symbols.intern("88")))
m2 = gen.m()
gen.doif(cond, m1, m2)
gen.doret(gen.con(symbols.intern("21")))
gen.ftail()

print(gen.emit_ir())
```

## Errors

Some problems do not stop compilation. `CodeGenerator` appends a message to
its `errors` list and carries on. These problems are:

- a function declared twice;
- an undeclared identifier;
- an identifier declared twice in one block.

Other problems raise `CompileError`. These include:

- an invalid escape sequence;
- an integer constant out of 32-bit range;
- a call to an undefined function;
- operands that an operator does not support, such as `%` on doubles;
- too many arguments, locals, labels or gotos;
- loops nested too deeply.

## What this package does not do

The package has no grammar and no parser. It has no command-line program
either. Something else has to read the token stream and call the
`CodeGenerator` actions in the order that the grammar reduces. The package
produces assembly text only. It does not verify that text, optimise it,
assemble it or run it.