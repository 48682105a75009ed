"""Field type registry.

Maps a logical column type to its physical storage, validation rule and default
configuration. Everything here is a pure lookup: no database access.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, UTC
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlparse
from uuid import UUID

import sqlalchemy as sa
from pydantic import EmailStr, TypeAdapter, ValidationError

from core.logger import app_logger
from model.dao.base import JSONDocument
from model.dao.enums import ColumnType


_email_adapter = TypeAdapter(EmailStr)
_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")
_PHONE = re.compile(r"^\+?[0-9\s().-]{3,20}$")


class FieldCoercionError(ValueError): ...


@dataclass(frozen=True)
class FieldValidationResult:
    valid: bool
    error: str | None = None


@dataclass(frozen=True)
class StorageDescriptor:
    sa_type: sa.types.TypeEngine | None
    is_document_backed: bool = False
    is_numeric: bool = False

    @property
    def is_physical(self) -> bool:
        return self.sa_type is not None


@dataclass
class FieldType:
    type: ColumnType
    label: str
    default_config: dict[str, Any] = field(default_factory=dict)
    document_backed: bool = False
    numeric: bool = False
    computed: bool = False

    def sa_type(self, config: dict) -> sa.types.TypeEngine | None:
        if self.computed:
            return None
        if self.document_backed:
            return JSONDocument
        return sa.Text()

    def storage(self, config: dict | None = None) -> StorageDescriptor:
        return StorageDescriptor(
            sa_type=self.sa_type(config or {}),
            is_document_backed=self.document_backed,
            is_numeric=self.numeric,
        )

    def validate(self, value: Any, config: dict | None = None) -> FieldValidationResult:
        if value is None or value == "":
            return FieldValidationResult(True)
        try:
            self.coerce(value, config or {})
        except FieldCoercionError as exc:
            return FieldValidationResult(False, str(exc))
        return FieldValidationResult(True)

    def coerce(self, value: Any, config: dict | None = None) -> Any:
        """Convert an incoming value to what gets stored in the column."""
        if value is None:
            return None
        if self.computed:
            raise FieldCoercionError(f"{self.label} fields are computed and read-only")
        return self._coerce(value, config or {})

    def _coerce(self, value: Any, config: dict) -> Any:
        if isinstance(value, (dict, list)):
            raise FieldCoercionError(f"Expected a text value, got {type(value).__name__}")
        return str(value)


class TextFieldType(FieldType):
    def sa_type(self, config):
        return sa.String(int(config.get("maxLength") or 255))

    def _coerce(self, value, config):
        text = super()._coerce(value, config)
        max_length = int(config.get("maxLength") or 255)
        if len(text) > max_length:
            raise FieldCoercionError(f"Text exceeds maximum length of {max_length}")
        return text


class LongTextFieldType(FieldType):
    def sa_type(self, config):
        return sa.Text()


class EmailFieldType(FieldType):
    def sa_type(self, config):
        return sa.String(255)

    def _coerce(self, value, config):
        try:
            return _email_adapter.validate_python(str(value).strip())
        except ValidationError:
            raise FieldCoercionError(f"`{value}` is not a valid email address")


class PhoneFieldType(FieldType):
    def sa_type(self, config):
        return sa.String(20)

    def _coerce(self, value, config):
        phone = str(value).strip()
        if not _PHONE.match(phone):
            raise FieldCoercionError(f"`{value}` is not a valid phone number")
        return phone


class UrlFieldType(FieldType):
    def sa_type(self, config):
        return sa.Text()

    def _coerce(self, value, config):
        url = str(value).strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise FieldCoercionError(f"`{value}` is not a valid URL")
        return url


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise FieldCoercionError("Expected a number, got a boolean")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise FieldCoercionError(f"`{value}` is not a valid number")
    if not number.is_finite():
        raise FieldCoercionError(f"`{value}` is not a finite number")
    return number


def _check_range(number: Decimal, config: dict) -> None:
    minimum = config.get("min")
    maximum = config.get("max")
    if minimum is not None and number < Decimal(str(minimum)):
        raise FieldCoercionError(f"Value must be at least {minimum}")
    if maximum is not None and number > Decimal(str(maximum)):
        raise FieldCoercionError(f"Value must be at most {maximum}")


class NumberFieldType(FieldType):
    def sa_type(self, config):
        decimals = config.get("decimal")
        if decimals:
            return sa.Numeric(18, int(decimals))
        return sa.Integer()

    def _coerce(self, value, config):
        number = to_decimal(value)
        _check_range(number, config)
        decimals = config.get("decimal")
        if decimals:
            return number.quantize(Decimal(1).scaleb(-int(decimals)))
        if number != number.to_integral_value():
            raise FieldCoercionError(f"`{value}` is not a whole number")
        return int(number)


class DocumentNumberFieldType(FieldType):
    """Currency, percent and rating: numbers kept in a document column."""

    def _coerce(self, value, config):
        number = to_decimal(value)
        _check_range(number, config)
        if self.type == ColumnType.RATING:
            maximum = int(config.get("max") or 5)
            if number < 0 or number > maximum:
                raise FieldCoercionError(f"Rating must be between 0 and {maximum}")
            if number != number.to_integral_value():
                raise FieldCoercionError("Rating must be a whole number")
        if number == number.to_integral_value():
            return int(number)
        return float(number)


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise FieldCoercionError(f"`{value}` is not a valid ISO date")


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise FieldCoercionError(f"`{value}` is not a valid ISO datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class DateFieldType(FieldType):
    def sa_type(self, config):
        if config.get("format") == "datetime":
            return sa.DateTime(timezone=True)
        return sa.Date()

    def _coerce(self, value, config):
        if config.get("format") == "datetime":
            return parse_datetime(value)
        return parse_date(value)


class DateTimeFieldType(FieldType):
    def sa_type(self, config):
        return sa.DateTime(timezone=True)

    def _coerce(self, value, config):
        return parse_datetime(value)


class BooleanFieldType(FieldType):
    def sa_type(self, config):
        return sa.Boolean()

    def _coerce(self, value, config):
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
            return value.strip().lower() in ("true", "1")
        raise FieldCoercionError(f"`{value}` is not a valid boolean")


def option_values(config: dict) -> list[str]:
    values = []
    for option in config.get("options") or []:
        if isinstance(option, dict):
            values.append(str(option.get("value", option.get("label", ""))))
        else:
            values.append(str(option))
    return values


class SelectFieldType(FieldType):
    def _coerce(self, value, config):
        if isinstance(value, (dict, list)):
            raise FieldCoercionError("Select value must be a single option")
        choice = str(value)
        allowed = option_values(config)
        if allowed and choice not in allowed:
            raise FieldCoercionError(f"`{choice}` is not one of the available options")
        return choice


class MultiSelectFieldType(FieldType):
    def _coerce(self, value, config):
        choices = value if isinstance(value, list) else [value]
        allowed = option_values(config)
        result = []
        for choice in choices:
            if isinstance(choice, (dict, list)):
                raise FieldCoercionError("Multi select values must be plain options")
            choice = str(choice)
            if allowed and choice not in allowed:
                raise FieldCoercionError(f"`{choice}` is not one of the available options")
            result.append(choice)
        return result


class ColorFieldType(FieldType):
    def _coerce(self, value, config):
        color = str(value).strip()
        if not _HEX_COLOR.match(color):
            raise FieldCoercionError(f"`{value}` is not a hex color")
        return color


class GeolocationFieldType(FieldType):
    def _coerce(self, value, config):
        if not isinstance(value, dict) or "lat" not in value or "lng" not in value:
            raise FieldCoercionError("Geolocation must be an object with `lat` and `lng`")
        lat = float(to_decimal(value["lat"]))
        lng = float(to_decimal(value["lng"]))
        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise FieldCoercionError("Geolocation coordinates are out of range")
        result = {"lat": lat, "lng": lng}
        if value.get("address"):
            result["address"] = str(value["address"])
        return result


def _to_uuid_text(value: Any) -> str:
    if isinstance(value, dict) and "relatedId" in value:
        value = value["relatedId"]
    try:
        return str(UUID(str(value)))
    except ValueError:
        raise FieldCoercionError(f"`{value}` is not a valid record id")


class RelationFieldType(FieldType):
    def _coerce(self, value, config):
        if config.get("allowMultiple"):
            ids = value if isinstance(value, list) else [value]
            return [_to_uuid_text(item) for item in ids]
        if isinstance(value, list):
            raise FieldCoercionError("Relation accepts a single record id")
        return _to_uuid_text(value)


_REGISTRY: dict[str, FieldType] = {
    entry.type.value: entry
    for entry in [
        TextFieldType(ColumnType.TEXT, "Text", {"maxLength": 255}),
        LongTextFieldType(ColumnType.LONG_TEXT, "Long Text"),
        NumberFieldType(ColumnType.NUMBER, "Number", {"decimal": 0}),
        DateFieldType(ColumnType.DATE, "Date", {"format": "date"}),
        DateTimeFieldType(ColumnType.DATETIME, "Date & Time"),
        BooleanFieldType(ColumnType.BOOLEAN, "Checkbox"),
        BooleanFieldType(ColumnType.SWITCH, "Switch"),
        EmailFieldType(ColumnType.EMAIL, "Email"),
        PhoneFieldType(ColumnType.PHONE, "Phone"),
        UrlFieldType(ColumnType.URL, "URL"),
        SelectFieldType(ColumnType.SELECT, "Select", {"options": []}, document_backed=True),
        MultiSelectFieldType(
            ColumnType.MULTI_SELECT, "Multi Select", {"options": []}, document_backed=True
        ),
        DocumentNumberFieldType(
            ColumnType.CURRENCY,
            "Currency",
            {"currency": "USD", "decimal": 2},
            document_backed=True,
            numeric=True,
        ),
        DocumentNumberFieldType(
            ColumnType.PERCENT, "Percent", {"decimal": 0}, document_backed=True, numeric=True
        ),
        DocumentNumberFieldType(
            ColumnType.RATING, "Rating", {"max": 5}, document_backed=True, numeric=True
        ),
        ColorFieldType(ColumnType.COLOR, "Color", document_backed=True),
        GeolocationFieldType(ColumnType.GEOLOCATION, "Location", document_backed=True),
        RelationFieldType(
            ColumnType.RELATION,
            "Relation",
            {"targetTable": None, "displayField": "name", "allowMultiple": False},
            document_backed=True,
        ),
        FieldType(
            ColumnType.LOOKUP,
            "Lookup",
            {"relationField": None, "targetField": None},
            computed=True,
        ),
        FieldType(
            ColumnType.ROLLUP,
            "Rollup",
            {"sourceTable": None, "filterBy": None, "aggregation": "COUNT"},
            computed=True,
        ),
        FieldType(
            ColumnType.FORMULA,
            "Formula",
            {"formula": "", "resultType": "number"},
            computed=True,
        ),
    ]
}

COMPUTED_TYPES = frozenset(
    name for name, entry in _REGISTRY.items() if entry.computed
)


def get_field_type(logical_type: str) -> FieldType:
    """Registry entry for `logical_type`, falling back to text for unknown types."""
    entry = _REGISTRY.get(str(logical_type))
    if entry is None:
        app_logger.warning(f"Unknown column type `{logical_type}`, storing as text")
        return _REGISTRY[ColumnType.TEXT.value]
    return entry


def resolve(logical_type: str, config: dict | None = None) -> StorageDescriptor:
    return get_field_type(logical_type).storage(config)


def is_computed(logical_type: str) -> bool:
    return str(logical_type) in COMPUTED_TYPES


def list_field_types() -> list[FieldType]:
    return list(_REGISTRY.values())
