"""
Budget kernel: shared infrastructure for the project budget core.

Holds the typed exception hierarchy, structured logging, database
engine/session setup, the entity store abstraction and small domain value
types (clock, actor context, workflows). Nothing in here knows about
projects, phases or change orders; that lives in ``budget_modules``.
"""
