"""
Tests for CatalogGate.

Covers:
- Unit code validation (normalization, unknown codes, empty input)
- Deactivated units stay valid for continuity
- Active unit and retention listings
"""

from decimal import Decimal

from payments_modules.catalog.models import normalize_unit_code
from payments_modules.catalog.service import CatalogGate


class TestNormalizeUnitCode:

    def test_trims_and_upper_cases(self):
        assert normalize_unit_code("  m2 ") == "M2"

    def test_none_becomes_empty(self):
        assert normalize_unit_code(None) == ""


class TestValidateUnits:

    def test_returns_known_subset(self, catalog):
        gate = CatalogGate(catalog)

        assert gate.validate_units(["M2", "KG", "XYZ"]) == {"M2", "KG"}

    def test_matches_case_insensitively(self, catalog):
        gate = CatalogGate(catalog)

        assert gate.validate_units(["m3", " ml "]) == {"M3", "ML"}

    def test_empty_input_returns_empty_set(self, catalog):
        gate = CatalogGate(catalog)

        assert gate.validate_units([]) == set()
        assert gate.validate_units([None, "  "]) == set()

    def test_inactive_unit_still_exists(self, catalog):
        """Deactivation does not invalidate codes used by earlier boletines."""
        gate = CatalogGate(catalog)

        assert gate.validate_units(["GL"]) == {"GL"}

    def test_accepts_generators(self, catalog):
        gate = CatalogGate(catalog)

        assert gate.validate_units(code for code in ("UND",)) == {"UND"}


class TestCatalogListings:

    def test_active_units_ordered_by_code(self, catalog):
        units = CatalogGate(catalog).active_units()

        assert [u.code for u in units] == ["KG", "M2", "M3", "ML", "UND"]
        assert all(u.is_active for u in units)

    def test_active_retentions_exclude_inactive(self, catalog):
        retentions = CatalogGate(catalog).active_retentions()

        assert [r.code for r in retentions] == ["FDR", "ISR"]
        assert retentions[0].percentage == Decimal("5")
