from decimal import Decimal

from django.test import SimpleTestCase

from inventory.models import InventoryItem
from inventory.services.base_service import ValidationError, ConversionError, IncompatibleUnitsError
from inventory.services.unit_service import UnitConverter


class UnitConverterTests(SimpleTestCase):

    def test_grams_to_kilograms(self):
        self.assertEqual(UnitConverter.convert(1500, "grams", "kilograms"), Decimal("1.5"))

    def test_liters_to_milliliters(self):
        self.assertEqual(UnitConverter.convert("0.25", "liters", "milliliters"), Decimal("250"))

    def test_same_unit_is_identity(self):
        self.assertEqual(UnitConverter.convert("3", "pieces", "pieces"), Decimal("3"))

    def test_pieces_to_grams_is_incompatible(self):
        with self.assertRaises(IncompatibleUnitsError) as ctx:
            UnitConverter.convert(1, "pieces", "grams")
        self.assertEqual(ctx.exception.code, "INCOMPATIBLE_UNITS")

    def test_mass_to_volume_is_incompatible(self):
        with self.assertRaises(IncompatibleUnitsError):
            UnitConverter.convert(1, "kilograms", "liters")

    def test_unknown_unit(self):
        with self.assertRaises(ConversionError):
            UnitConverter.convert(1, "ounces", "grams")

    def test_non_numeric_value(self):
        with self.assertRaises(ValidationError):
            UnitConverter.convert("a lot", "grams", "kilograms")
        with self.assertRaises(ValidationError):
            UnitConverter.convert(True, "grams", "kilograms")

    def test_round_trip(self):
        for value, a, b in [
            (Decimal("123.4567"), "grams", "kilograms"),
            (Decimal("0.75"), "liters", "milliliters"),
            (Decimal("1"), "milliliters", "liters"),
        ]:
            back = UnitConverter.convert(UnitConverter.convert(value, a, b), b, a)
            self.assertAlmostEqual(back, value, places=8)

    def test_are_compatible(self):
        self.assertTrue(UnitConverter.are_compatible("grams", "kilograms"))
        self.assertFalse(UnitConverter.are_compatible("pieces", "grams"))
        self.assertTrue(UnitConverter.are_compatible("pieces", "pieces"))

    def test_to_item_unit(self):
        item = InventoryItem(name="Milk", unit=InventoryItem.Unit.LITERS)
        self.assertEqual(UnitConverter.to_item_unit(item, "500", "milliliters"), Decimal("0.5"))
        self.assertEqual(UnitConverter.to_item_unit(item, "2"), Decimal("2"))

    def test_describe(self):
        result = UnitConverter.describe("1500", "grams", "kilograms")
        self.assertEqual(result["result"], "1.5")
        self.assertEqual(result["group"], UnitConverter.MASS)
