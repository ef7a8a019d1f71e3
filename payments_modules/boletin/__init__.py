"""
Boletín Module (``payments_modules.boletin``).

Responsibility
--------------
Measurement boletines (payment requests) against external purchase
orders: line validation against the unit catalog and the order's history,
totals via ``payments_engines.boletin_totals``, sequential ``BM-NNNNNN``
numbering, and the pending / approved / rejected status workflow.

Invariants enforced
-------------------
* ``BoletinService`` owns the transaction boundary of every operation.
* Edits are refused once a boletín is decided or actively scheduled.
* Audit rows are append-only.
"""
