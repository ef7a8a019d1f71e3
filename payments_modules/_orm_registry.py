"""
Module ORM Registry (``payments_modules._orm_registry``).

Responsibility
--------------
Ensure all SQLAlchemy ORM models are imported so that ``Base.metadata``
contains their table definitions (and append-only listeners are
registered) before tables are created.

Architecture position
---------------------
**Modules layer** -- utility.  Called by
``payments_kernel.db.engine.create_tables`` and by ``tests/conftest.py``.
"""


def import_all_orm_models() -> None:
    """Import the kernel counter table and every ``payments_modules.*.orm`` module.

    This function is idempotent -- repeated calls are harmless.
    """
    import payments_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import payments_modules.catalog.orm  # noqa: F401
    import payments_modules.boletin.orm  # noqa: F401
    import payments_modules.schedule.orm  # noqa: F401
    # fmt: on
