"""
Payments modules -- the boletín and payment schedule workflows.

Each subpackage follows the same layout:

    models.py     frozen DTOs and status enums (no I/O)
    orm.py        SQLAlchemy persistence models (``to_dto`` back to models)
    workflows.py  declarative state machines (where the entity has one)
    service.py    the public entry point; owns the transaction boundary
"""
