from uuid import UUID

import pytest

from core.exceptions import ValidationException
from service.identifiers import (
    ensure_column_name,
    ensure_table_name,
    is_system_column,
    is_valid_column_name,
    is_valid_table_name,
    physical_table_name,
)


COMPANY_ID = UUID("1b4e28ba-2fa1-11d2-883f-0016d3cca427")
TABLE_ID = UUID("9f8e7d6c-5b4a-4321-8fed-cba987654321")


def test_physical_table_name_is_deterministic():
    name = physical_table_name(COMPANY_ID, TABLE_ID)
    assert name == "dt_1b4e28ba2fa1_9f8e7d6c5b4a4321"
    assert name == physical_table_name(COMPANY_ID, TABLE_ID)
    assert is_valid_table_name(name)


@pytest.mark.parametrize(
    "name",
    [
        "users",
        "dt_1b4e28ba2fa1",
        "dt_1b4e28ba2fa1_9f8e7d6c5b4a432",
        "dt_1B4E28BA2FA1_9f8e7d6c5b4a4321",
        "dt_1b4e28ba2fa1_9f8e7d6c5b4a4321; drop table users",
        "dt_1b4e28ba2fa1_9f8e7d6c5b4a4321\n",
        "",
        None,
    ],
)
def test_invalid_table_names(name):
    assert not is_valid_table_name(name)


@pytest.mark.parametrize("name", ["name", "first_name", "a1", "due_date_2"])
def test_valid_column_names(name):
    assert is_valid_column_name(name)


@pytest.mark.parametrize(
    "name",
    [
        "Name",
        "1st",
        "_hidden",
        "first-name",
        "first name",
        'x"; drop table y; --',
        "select",
        "order",
        "table",
        "a" * 64,
        "name\n",
        "name\r",
        "",
    ],
)
def test_invalid_column_names(name):
    assert not is_valid_column_name(name)
    with pytest.raises(ValidationException):
        ensure_column_name(name)


def test_system_columns_are_protected():
    for name in ("id", "created_at", "updated_at", "created_by"):
        assert is_system_column(name)
        with pytest.raises(ValidationException):
            ensure_column_name(name)
        assert ensure_column_name(name, allow_system=True) == name
    assert not is_system_column("name")


def test_ensure_table_name():
    name = physical_table_name(COMPANY_ID, TABLE_ID)
    assert ensure_table_name(name) == name
    with pytest.raises(ValidationException) as exc_info:
        ensure_table_name("customers")
    assert exc_info.value.status_code == 400
