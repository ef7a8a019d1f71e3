"""
Catalog Module (``payments_modules.catalog``).

Responsibility
--------------
Read-only access to the administration-owned catalogs: units of measure
(validated by ``CatalogGate.validate_units``) and retention types offered
when a boletín line is filled in.
"""
