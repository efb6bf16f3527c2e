"""
Module ORM registry (``budget_modules._orm_registry``).

Imports every module ORM file so ``Base.metadata`` knows all tables before
``budget_kernel.db.engine.create_tables()`` runs.  Idempotent.
"""


def import_all_orm_models() -> None:
    import budget_modules.project.orm  # noqa: F401
