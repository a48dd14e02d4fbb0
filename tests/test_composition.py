import importlib
import os
import sys
import unittest
from decimal import Decimal

from blending.composition import FibreEntry, RawCottonEntry, parse_fibre_entries, validate_composition


class ValidateCompositionTestCase(unittest.TestCase):
    def test_single_fibre_at_hundred_is_valid(self):
        check = validate_composition([FibreEntry(fibre_id="f1", percentage=Decimal("100"))])
        self.assertTrue(check.valid)
        self.assertEqual(check.total_percentage, Decimal("100"))

    def test_single_fibre_just_below_hundred_is_invalid(self):
        check = validate_composition([FibreEntry(fibre_id="f1", percentage=Decimal("99.99"))])
        self.assertFalse(check.valid)
        self.assertEqual(check.total_percentage, Decimal("99.99"))

    def test_raw_cotton_counts_towards_total(self):
        check = validate_composition(
            [{"fibre_id": "f1", "percentage": "33.33"}, {"fibre_id": "f2", "percentage": "33.33"}],
            [RawCottonEntry(lot_number="LOT-7", percentage=Decimal("33.34"))],
        )
        self.assertTrue(check.valid)

    def test_total_above_hundred_is_invalid(self):
        check = validate_composition(
            [{"percentage": "60"}, {"percentage": "40.01"}],
        )
        self.assertFalse(check.valid)
        self.assertEqual(check.total_percentage, Decimal("100.01"))

    def test_parse_fibre_entries_collects_field_errors(self):
        errors = {}
        entries = parse_fibre_entries(
            [{"fibre_id": "not-a-uuid", "percentage": "10"}, {"percentage": "150"}],
            errors,
        )
        self.assertEqual(entries, [])
        self.assertIn("fibres.0.fibre_id", errors)
        self.assertIn("fibres.1.fibre_id", errors)
        self.assertIn("fibres.1.percentage", errors)

    def test_parse_fibre_entries_refuses_to_round_percentages(self):
        errors = {}
        entries = parse_fibre_entries(
            [{"fibre_id": "6f1c2a9e-3b1d-4c7e-9a55-0d6f0b1e2c3a", "percentage": "99.995"}],
            errors,
        )
        self.assertEqual(entries, [])
        self.assertEqual(errors["fibres.0.percentage"], "At most 2 decimal places.")


class CompositionServiceTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.app_module.db.create_all()

        from blending import get_blending_store

        self.store = get_blending_store(self.app)
        Fibre = self.app_module.Fibre
        self.cotton = Fibre(fibre_code="CTN", fibre_name="Cotton", stock_kg=Decimal("1000"))
        self.poly = Fibre(fibre_code="PES", fibre_name="Polyester", stock_kg=Decimal("800"))
        self.viscose = Fibre(fibre_code="VIS", fibre_name="Viscose", stock_kg=Decimal("50"))
        self.app_module.db.session.add_all([self.cotton, self.poly, self.viscose])
        self.app_module.db.session.commit()

    def tearDown(self):
        self.app_module.db.session.remove()
        self.app_module.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _percentages(self, blend_id):
        from blending import get_blend

        blend = get_blend(self.store, blend_id)
        return {entry.fibre_id: entry.percentage for entry in blend.fibres}

    def test_incremental_edits_allow_totals_below_hundred(self):
        from blending import add_fibre, create_blend, update_fibre_percentage

        blend = create_blend(self.store, {"blend_code": "PC-1"})
        add_fibre(self.store, blend.id, self.cotton.id, "60")
        add_fibre(self.store, blend.id, self.poly.id, "30")
        self.assertEqual(sum(self._percentages(blend.id).values()), Decimal("90"))

        update_fibre_percentage(self.store, blend.id, self.poly.id, "40")
        self.assertEqual(sum(self._percentages(blend.id).values()), Decimal("100"))

    def test_add_fibre_rejects_overflow_and_writes_nothing(self):
        from blending import CompositionOverflowError, add_fibre, create_blend

        blend = create_blend(self.store, {"blend_code": "PC-2"})
        add_fibre(self.store, blend.id, self.cotton.id, "70")

        with self.assertRaises(CompositionOverflowError):
            add_fibre(self.store, blend.id, self.poly.id, "30.01")

        self.assertEqual(self._percentages(blend.id), {self.cotton.id: Decimal("70")})

    def test_add_fibre_counts_raw_cotton_lots(self):
        from blending import CompositionOverflowError, add_fibre, create_blend

        blend = create_blend(
            self.store,
            {
                "blend_code": "RC-1",
                "fibres": [{"fibre_id": str(self.cotton.id), "percentage": "50"}],
                "raw_cotton_lots": [{"lot_number": "LOT-1", "percentage": "50"}],
            },
        )
        with self.assertRaises(CompositionOverflowError):
            add_fibre(self.store, blend.id, self.poly.id, "1")

    def test_add_fibre_rejects_duplicates(self):
        from blending import DuplicateFibreError, add_fibre, create_blend

        blend = create_blend(self.store, {"blend_code": "PC-3"})
        add_fibre(self.store, blend.id, self.cotton.id, "10")
        with self.assertRaises(DuplicateFibreError):
            add_fibre(self.store, blend.id, self.cotton.id, "10")

    def test_update_fibre_percentage_rejects_overflow(self):
        from blending import CompositionOverflowError, add_fibre, create_blend, update_fibre_percentage

        blend = create_blend(self.store, {"blend_code": "PC-4"})
        add_fibre(self.store, blend.id, self.cotton.id, "60")
        add_fibre(self.store, blend.id, self.poly.id, "40")

        with self.assertRaises(CompositionOverflowError):
            update_fibre_percentage(self.store, blend.id, self.poly.id, "40.01")
        self.assertEqual(self._percentages(blend.id)[self.poly.id], Decimal("40"))

    def test_add_unknown_fibre(self):
        import uuid

        from blending import FibreNotFoundError, add_fibre, create_blend

        blend = create_blend(self.store, {"blend_code": "PC-5"})
        with self.assertRaises(FibreNotFoundError):
            add_fibre(self.store, blend.id, uuid.uuid4(), "10")

    def test_replace_composition_is_all_or_nothing(self):
        from blending import CompositionMismatchError, create_blend, replace_composition

        blend = create_blend(
            self.store,
            {
                "blend_code": "PC-6",
                "fibres": [
                    {"fibre_id": str(self.cotton.id), "percentage": "60"},
                    {"fibre_id": str(self.poly.id), "percentage": "40"},
                ],
            },
        )

        with self.assertRaises(CompositionMismatchError):
            replace_composition(
                self.store,
                blend.id,
                [
                    {"fibre_id": str(self.cotton.id), "percentage": "50"},
                    {"fibre_id": str(self.viscose.id), "percentage": "49.99"},
                ],
            )
        self.assertEqual(
            self._percentages(blend.id),
            {self.cotton.id: Decimal("60"), self.poly.id: Decimal("40")},
        )

        replace_composition(
            self.store,
            blend.id,
            [
                {"fibre_id": str(self.cotton.id), "percentage": "50"},
                {"fibre_id": str(self.viscose.id), "percentage": "30"},
            ],
            [{"lot_number": "LOT-9", "percentage": "20", "stock_kg": "75.5"}],
        )
        from blending import get_blend

        refreshed = get_blend(self.store, blend.id)
        check = validate_composition(refreshed.fibres, refreshed.raw_cotton_lots)
        self.assertTrue(check.valid)
        self.assertEqual([entry.fibre_id for entry in refreshed.fibres], [self.cotton.id, self.viscose.id])
        self.assertEqual(refreshed.raw_cotton_lots[0].stock_kg, Decimal("75.5"))

    def test_replace_composition_rejects_repeated_fibre(self):
        from blending import DuplicateFibreError, create_blend, replace_composition

        blend = create_blend(self.store, {"blend_code": "PC-7"})
        with self.assertRaises(DuplicateFibreError):
            replace_composition(
                self.store,
                blend.id,
                [
                    {"fibre_id": str(self.cotton.id), "percentage": "50"},
                    {"fibre_id": str(self.cotton.id), "percentage": "50"},
                ],
            )

    def test_create_with_composition_requires_exactly_hundred(self):
        from blending import BlendingValidationError, CompositionMismatchError, create_blend, list_blends

        with self.assertRaises(CompositionMismatchError):
            create_blend(
                self.store,
                {"blend_code": "PC-8", "fibres": [{"fibre_id": str(self.cotton.id), "percentage": "99.99"}]},
            )
        self.assertEqual(list_blends(self.store), [])

        create_blend(self.store, {"blend_code": "PC-8"})
        with self.assertRaises(BlendingValidationError):
            create_blend(self.store, {"blend_code": "PC-8"})

    def test_sub_hundredth_percentages_are_rejected_not_rounded(self):
        from blending import BlendingValidationError, add_fibre, create_blend, list_blends

        with self.assertRaises(BlendingValidationError) as ctx:
            create_blend(
                self.store,
                {"blend_code": "PC-11", "fibres": [{"fibre_id": str(self.cotton.id), "percentage": "99.995"}]},
            )
        self.assertIn("fibres.0.percentage", ctx.exception.errors)
        self.assertEqual(list_blends(self.store), [])

        blend = create_blend(self.store, {"blend_code": "PC-12"})
        add_fibre(self.store, blend.id, self.cotton.id, "60")
        with self.assertRaises(BlendingValidationError):
            add_fibre(self.store, blend.id, self.poly.id, "40.004")
        self.assertEqual(self._percentages(blend.id), {self.cotton.id: Decimal("60")})

    def test_blend_summary_reports_producible_yarn(self):
        from blending import blend_summary, create_blend

        blend = create_blend(
            self.store,
            {
                "blend_code": "PC-9",
                "fibres": [
                    {"fibre_id": str(self.poly.id), "percentage": "40"},
                    {"fibre_id": str(self.cotton.id), "percentage": "60"},
                ],
            },
        )
        summary = blend_summary(blend)
        self.assertTrue(summary["is_valid"])
        self.assertEqual([item["fibre_code"] for item in summary["fibres"]], ["CTN", "PES"])
        # Cotton allows 1000 / 0.6, polyester 800 / 0.4; cotton is the limit.
        self.assertEqual(summary["producible_kg"], Decimal("1666.667"))

    def test_delete_blend_removes_entries(self):
        from blending import BlendNotFoundError, create_blend, delete_blend, get_blend

        blend = create_blend(
            self.store,
            {"blend_code": "PC-10", "fibres": [{"fibre_id": str(self.cotton.id), "percentage": "100"}]},
        )
        delete_blend(self.store, blend.id)
        with self.assertRaises(BlendNotFoundError):
            get_blend(self.store, blend.id)
        self.assertEqual(self.app_module.BlendFibre.query.count(), 0)


if __name__ == "__main__":
    unittest.main()
