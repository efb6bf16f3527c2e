"""
Budget engines: pure calculations over project budget figures.

Nothing here performs I/O, reads a clock or imports from ``budget_modules``.
Inputs are duck-typed value objects (the module DTOs satisfy them).
"""
