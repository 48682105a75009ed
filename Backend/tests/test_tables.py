from datetime import UTC, date, timedelta
from uuid import uuid4

import pytest

from core.exceptions import ConflictException, NotFoundException, ValidationException
from model.dao.data_table import DataTableDAO
from model.dao.enums import ColumnType
from model.dto.data_table import (
    ColumnDefinitionDTO,
    CreateTableDTO,
    CreateViewDTO,
    ReorderColumnsDTO,
    UpdateColumnDTO,
)
from model.dto.query import QueryRowsDTO


async def test_create_table(people_table, company_id, user_id):
    assert people_table.name == "People"
    assert people_table.slug == "people"
    assert people_table.company_id == company_id
    assert people_table.created_by == user_id
    assert people_table.table_name.startswith(f"dt_{company_id.hex[:12]}_")
    assert [c.name for c in people_table.columns] == [
        "name",
        "age",
        "email",
        "active",
        "status",
        "joined",
        "notes",
    ]
    assert [c.order for c in people_table.columns] == list(range(7))
    assert people_table.columns[0].label == "Name"
    assert people_table.columns[0].required

    [view] = people_table.views
    assert view.name == "All Records"
    assert view.is_default
    assert view.visible_columns == [c.id for c in people_table.columns]


def test_metadata_timestamps_are_timezone_aware(company_id):
    table = DataTableDAO(
        company_id=company_id,
        name="Deals",
        slug="deals",
        table_name=f"dt_{company_id.hex[:12]}_{uuid4().hex[:16]}",
    )
    assert table.created_at.tzinfo is UTC
    assert table.updated_at.tzinfo is UTC
    assert DataTableDAO.__table__.c.created_at.type.timezone
    assert DataTableDAO.__table__.c.updated_at.type.timezone
    assert table.to_dto().created_at.utcoffset() == timedelta(0)


async def test_table_timestamps_survive_storage(table_service, people_table, company_id):
    table = await table_service.get_table(people_table.id, company_id)
    assert table.created_at.utcoffset() == timedelta(0)
    assert table.updated_at.utcoffset() == timedelta(0)


async def test_table_slugs_are_unique_per_company(table_service, company_id):
    first = await table_service.create_table(company_id, CreateTableDTO(name="Deals"))
    second = await table_service.create_table(company_id, CreateTableDTO(name="Deals"))
    assert first.slug == "deals"
    assert second.slug == "deals-1"

    with pytest.raises(ConflictException):
        await table_service.create_table(company_id, CreateTableDTO(name="Other", slug="deals"))

    other_company = await table_service.create_table(uuid4(), CreateTableDTO(name="Deals"))
    assert other_company.slug == "deals"


async def test_create_table_validates_columns_before_ddl(table_service, company_id):
    with pytest.raises(ValidationException):
        await table_service.create_table(
            company_id,
            CreateTableDTO(
                name="Broken",
                columns=[ColumnDefinitionDTO(name="Drop Table", type=ColumnType.TEXT)],
            ),
        )
    with pytest.raises(ValidationException):
        await table_service.create_table(
            company_id,
            CreateTableDTO(
                name="Broken",
                columns=[ColumnDefinitionDTO(name="title\n", type=ColumnType.TEXT)],
            ),
        )
    with pytest.raises(ValidationException):
        await table_service.create_table(
            company_id,
            CreateTableDTO(
                name="Broken",
                columns=[
                    ColumnDefinitionDTO(
                        name="total",
                        type=ColumnType.FORMULA,
                        config={"formula": "-" * 3000 + "1"},
                    )
                ],
            ),
        )
    with pytest.raises(ValidationException):
        await table_service.create_table(
            company_id,
            CreateTableDTO(
                name="Broken",
                columns=[
                    ColumnDefinitionDTO(name="title", type=ColumnType.TEXT),
                    ColumnDefinitionDTO(name="title", type=ColumnType.TEXT),
                ],
            ),
        )
    with pytest.raises(NotFoundException):
        await table_service.create_table(
            company_id,
            CreateTableDTO(
                name="Broken",
                columns=[
                    ColumnDefinitionDTO(
                        name="owner",
                        type=ColumnType.RELATION,
                        config={"targetTable": "missing"},
                    )
                ],
            ),
        )
    assert await table_service.list_tables(company_id) == []


async def test_tables_are_scoped_to_company(table_service, people_table, company_id):
    assert [t.id for t in await table_service.list_tables(company_id)] == [people_table.id]
    assert await table_service.list_tables(uuid4()) == []
    with pytest.raises(NotFoundException):
        await table_service.get_table(people_table.id, uuid4())


async def test_delete_table(table_service, people_table, company_id):
    await table_service.delete_table(people_table.id, company_id)
    with pytest.raises(NotFoundException):
        await table_service.get_table(people_table.id, company_id)
    assert await table_service.list_tables(company_id) == []


async def test_row_lifecycle(table_service, people_table, company_id, user_id):
    row = await table_service.insert_row(
        people_table.id,
        {
            "name": "Ada",
            "age": "36",
            "email": "ada@example.com",
            "active": "true",
            "status": "doing",
            "joined": "2024-02-01",
        },
        company_id,
        user_id,
    )
    assert row["name"] == "Ada"
    assert row["age"] == 36
    assert row["active"] is True
    assert row["status"] == "doing"
    assert row["joined"] == date(2024, 2, 1)
    assert row["notes"] is None
    assert row["created_by"] == user_id
    assert row["created_at"] is not None

    updated = await table_service.update_row(
        people_table.id, row["id"], {"age": 37, "notes": "Analyst"}, company_id
    )
    assert updated["age"] == 37
    assert updated["notes"] == "Analyst"
    assert updated["name"] == "Ada"

    await table_service.delete_row(people_table.id, row["id"], company_id)
    with pytest.raises(NotFoundException):
        await table_service.get_row(people_table.id, row["id"], company_id)
    with pytest.raises(NotFoundException):
        await table_service.delete_row(people_table.id, row["id"], company_id)


async def test_insert_row_validation(table_service, people_table, company_id):
    with pytest.raises(ValidationException) as exc_info:
        await table_service.insert_row(people_table.id, {"age": 3}, company_id)
    assert "`name` is required" in exc_info.value.detail

    with pytest.raises(ValidationException):
        await table_service.insert_row(people_table.id, {"name": "A", "shoe_size": 9}, company_id)
    with pytest.raises(ValidationException):
        await table_service.insert_row(people_table.id, {"name": "A", "id": str(uuid4())}, company_id)
    with pytest.raises(ValidationException):
        await table_service.insert_row(people_table.id, {"name": "A", "age": "old"}, company_id)
    with pytest.raises(ValidationException):
        await table_service.insert_row(people_table.id, {"name": "A", "status": "gone"}, company_id)


async def test_update_row_cannot_clear_required(table_service, people_table, company_id):
    row = await table_service.insert_row(people_table.id, {"name": "Ada"}, company_id)
    with pytest.raises(ValidationException):
        await table_service.update_row(people_table.id, row["id"], {"name": None}, company_id)


async def test_add_column(table_service, people_table, company_id):
    column = await table_service.add_column(
        people_table.id,
        ColumnDefinitionDTO(name="nickname", type=ColumnType.TEXT, config={"maxLength": 40}),
        company_id,
    )
    assert column.order == 7
    assert column.label == "Nickname"
    assert column.config["maxLength"] == 40

    table = await table_service.get_table(people_table.id, company_id)
    assert table.views[0].visible_columns[-1] == column.id

    row = await table_service.insert_row(
        people_table.id, {"name": "Ada", "nickname": "Countess"}, company_id
    )
    assert row["nickname"] == "Countess"

    with pytest.raises(ConflictException):
        await table_service.add_column(
            people_table.id,
            ColumnDefinitionDTO(name="nickname", type=ColumnType.TEXT),
            company_id,
        )


async def test_add_required_column_to_populated_table(table_service, people_table, company_id):
    await table_service.insert_row(people_table.id, {"name": "Ada"}, company_id)
    with pytest.raises(ConflictException):
        await table_service.add_column(
            people_table.id,
            ColumnDefinitionDTO(name="badge", type=ColumnType.TEXT, required=True),
            company_id,
        )
    table = await table_service.get_table(people_table.id, company_id)
    assert "badge" not in [c.name for c in table.columns]


async def test_unsafe_type_change_is_rejected(table_service, people_table, company_id, monkeypatch):
    await table_service.insert_row(people_table.id, {"name": "Ada", "notes": "n/a"}, company_id)
    notes = next(c for c in people_table.columns if c.name == "notes")
    name = next(c for c in people_table.columns if c.name == "name")

    altered = []

    async def record_alter(*args, **kwargs):
        altered.append(args)

    monkeypatch.setattr(table_service._schema, "alter_column_type", record_alter)
    with pytest.raises(ValidationException) as exc_info:
        await table_service.update_column(
            people_table.id, name.id, UpdateColumnDTO(type=ColumnType.NUMBER), company_id
        )
    assert "may lose data" in exc_info.value.detail
    assert altered == []

    table = await table_service.get_table(people_table.id, company_id)
    assert next(c for c in table.columns if c.id == name.id).type == ColumnType.TEXT

    with pytest.raises(ValidationException):
        await table_service.update_column(
            people_table.id, notes.id, UpdateColumnDTO(type=ColumnType.TEXT), company_id
        )


async def test_safe_type_change_is_accepted(table_service, people_table, company_id):
    name = next(c for c in people_table.columns if c.name == "name")
    updated = await table_service.update_column(
        people_table.id,
        name.id,
        UpdateColumnDTO(type=ColumnType.LONG_TEXT, label="Full name"),
        company_id,
    )
    assert updated.type == ColumnType.LONG_TEXT
    assert updated.label == "Full name"


async def test_make_required_with_nulls(table_service, people_table, company_id):
    await table_service.insert_row(people_table.id, {"name": "Ada"}, company_id)
    age = next(c for c in people_table.columns if c.name == "age")
    with pytest.raises(ConflictException):
        await table_service.update_column(
            people_table.id, age.id, UpdateColumnDTO(required=True), company_id
        )

    updated = await table_service.update_column(
        people_table.id, age.id, UpdateColumnDTO(config={"min": 0}), company_id
    )
    assert not updated.required
    assert updated.config["min"] == 0


async def test_delete_column_cleans_up_views(
    table_service, view_service, view_query_service, people_table, company_id
):
    age = next(c for c in people_table.columns if c.name == "age")
    name = next(c for c in people_table.columns if c.name == "name")
    second = await view_service.create_view(
        people_table.id,
        CreateViewDTO(
            name="Ages",
            visible_columns=[name.id, age.id],
            column_widths={str(age.id): 120},
            sort=[{"columnId": str(age.id), "direction": "desc"}],
        ),
        company_id,
    )
    await table_service.insert_row(people_table.id, {"name": "Ada", "age": 36}, company_id)

    await table_service.delete_column(people_table.id, age.id, company_id)

    for view in await view_service.list_views(people_table.id, company_id):
        assert age.id not in view.visible_columns
        assert str(age.id) not in view.column_widths
        assert all(sort.column_id != age.id for sort in view.sort)

    result = await view_query_service.query_rows(second.id, QueryRowsDTO(), company_id)
    assert [c.name for c in result.view.columns] == ["name"]
    assert "age" not in result.rows[0]

    with pytest.raises(NotFoundException):
        await table_service.delete_column(people_table.id, age.id, company_id)


async def test_reorder_columns(table_service, people_table, company_id):
    view = people_table.views[0]
    ids = [c.id for c in reversed(people_table.columns)]

    columns = await table_service.reorder_columns(
        people_table.id, ReorderColumnsDTO(column_ids=ids, view_id=view.id), company_id
    )
    assert [c.id for c in columns] == ids

    table = await table_service.get_table(people_table.id, company_id)
    assert table.views[0].visible_columns == ids

    with pytest.raises(ValidationException):
        await table_service.reorder_columns(
            people_table.id, ReorderColumnsDTO(column_ids=[uuid4()]), company_id
        )
    with pytest.raises(NotFoundException):
        await table_service.reorder_columns(
            people_table.id, ReorderColumnsDTO(column_ids=ids, view_id=uuid4()), company_id
        )
