"""Scanner, symbol table, IR model and semantic actions that build textual IR for a small C subset."""

__version__ = "0.1.0"
__all__ = ["records", "symtab", "scanner", "ir", "semantics"]