from datetime import datetime, timezone

from settings import settings
from utilities.enumerables import STORED_EQUIPMENT_TYPES, EquipmentType
from utilities.exceptions import FieldValidationError


def validate_password_value(value: str) -> str:
    if len(value) < settings.min_password_length:
        raise ValueError(f"Password must be at least {settings.min_password_length} characters")
    return value


def validate_required_text(field: str, value: str | None, message: str) -> str:
    if value is None or not value.strip():
        raise FieldValidationError.single(field, message)
    return value.strip()


def resolve_equipment_type(value: EquipmentType | str) -> str:
    """
    Map an equipment type accepted at the edge onto what gets stored, following
    `settings.equipment_type_policy`.
    """
    try:
        equipment_type = EquipmentType(value)
    except ValueError:
        raise FieldValidationError.single("equipment_type", "Invalid equipment type")

    if equipment_type in STORED_EQUIPMENT_TYPES:
        return equipment_type.value

    policy = settings.equipment_type_policy
    if policy == "coerce":
        return EquipmentType.OTHER.value
    if policy == "widen":
        return equipment_type.value

    allowed = ", ".join(sorted(t.value for t in STORED_EQUIPMENT_TYPES))
    raise FieldValidationError.single(
        "equipment_type", f"Equipment type must be one of: {allowed}"
    )


def as_utc(value: datetime) -> datetime:
    """Timestamps without an offset are taken as UTC; others are converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
