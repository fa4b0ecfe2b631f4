from typing import Dict, Any, Optional, Tuple
from decimal import Decimal, InvalidOperation

from inventory.models import InventoryItem
from inventory.services.base_service import (
    ValidationError, ConversionError, IncompatibleUnitsError,
)


class UnitConverter:
    """
    Conversion between the fixed set of item units.

    Units convert only within their group; each unit carries its factor to
    the group's base unit (grams for mass, milliliters for volume).
    Pieces has no partners.
    """

    MASS = "MASS"
    VOLUME = "VOLUME"
    COUNT = "COUNT"

    # unit -> (group, factor to base unit)
    UNITS: Dict[str, Tuple[str, Decimal]] = {
        InventoryItem.Unit.GRAMS: (MASS, Decimal("1")),
        InventoryItem.Unit.KILOGRAMS: (MASS, Decimal("1000")),
        InventoryItem.Unit.MILLILITERS: (VOLUME, Decimal("1")),
        InventoryItem.Unit.LITERS: (VOLUME, Decimal("1000")),
        InventoryItem.Unit.PIECES: (COUNT, Decimal("1")),
    }

    @classmethod
    def group_of(cls, unit: str) -> str:
        try:
            return cls.UNITS[unit][0]
        except KeyError:
            raise ConversionError(f"Unknown unit: {unit}", unit, None)

    @classmethod
    def are_compatible(cls, from_unit: str, to_unit: str) -> bool:
        if from_unit == to_unit:
            return from_unit in cls.UNITS
        from_group = cls.group_of(from_unit)
        to_group = cls.group_of(to_unit)
        return from_group == to_group and from_group != cls.COUNT

    @classmethod
    def convert(cls, value: Any, from_unit: str, to_unit: str) -> Decimal:
        if isinstance(value, bool):
            raise ValidationError("Value must be a number", "value")
        try:
            quantity = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"Value must be a number, got {value!r}", "value")
        if not quantity.is_finite():
            raise ValidationError("Value must be a finite number", "value")

        for unit in (from_unit, to_unit):
            if unit not in cls.UNITS:
                raise ConversionError(f"Unknown unit: {unit}", from_unit, to_unit)

        if from_unit == to_unit:
            return quantity

        if not cls.are_compatible(from_unit, to_unit):
            raise IncompatibleUnitsError(from_unit, to_unit)

        from_factor = cls.UNITS[from_unit][1]
        to_factor = cls.UNITS[to_unit][1]
        return quantity * from_factor / to_factor

    @classmethod
    def to_item_unit(cls, item: InventoryItem, value: Any, unit: Optional[str] = None) -> Decimal:
        """Express a quantity given in `unit` (default: item's own) in the item's unit."""
        if not unit or unit == item.unit:
            return cls.convert(value, item.unit, item.unit)
        return cls.convert(value, unit, item.unit)

    @classmethod
    def describe(cls, value: Any, from_unit: str, to_unit: str) -> Dict[str, Any]:
        result = cls.convert(value, from_unit, to_unit)
        return {
            "value": str(Decimal(str(value))),
            "from_unit": from_unit,
            "to_unit": to_unit,
            "result": str(result),
            "group": cls.group_of(from_unit),
        }

    @classmethod
    def list_units(cls) -> Dict[str, Any]:
        groups: Dict[str, list] = {}
        for unit, (group, factor) in cls.UNITS.items():
            groups.setdefault(group, []).append({
                "unit": str(unit),
                "factor_to_base": str(factor),
            })
        return {"units": [str(u) for u in cls.UNITS], "groups": groups}
