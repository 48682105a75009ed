from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql, sqlite

from core.exceptions import NotFoundException, ValidationException
from model.dao.enums import ColumnType, FilterOperator, GroupOperator, SortDirection
from model.dto.data_table import ColumnDTO, UpdateViewDTO
from model.dto.filters import FilterCondition, FilterGroup, SortConfig
from model.dto.query import QueryRowsDTO
from service.filter_compiler import compile_query, merge_filters
from service.identifiers import physical_table_name
from service.schema_manager import build_table


def columns_of(table):
    return {column.name: column for column in table.columns}


def condition(column, operator, value=None):
    return FilterCondition(column_id=column.id, operator=operator, value=value)


def by_name(column):
    return [SortConfig(column_id=column.id, direction=SortDirection.ASC)]


@pytest.fixture
async def people(table_service, people_table, company_id):
    rows = [
        {"name": "Ada", "age": 5, "status": "todo", "active": True, "joined": "2024-01-10"},
        {"name": "Brian", "age": 10, "status": "doing", "active": False, "notes": ""},
        {"name": "Carla", "age": 15, "status": "done", "notes": "Lead"},
    ]
    for row in rows:
        await table_service.insert_row(people_table.id, row, company_id)
    return people_table


async def query(service, table, company_id, **kwargs):
    view = table.views[0]
    name = columns_of(table)["name"]
    kwargs.setdefault("sorts", by_name(name))
    result = await service.query_rows(view.id, QueryRowsDTO(**kwargs), company_id)
    return [row["name"] for row in result.rows]


async def test_round_trip_on_default_view(view_query_service, table_service, people_table, company_id):
    inserted = await table_service.insert_row(
        people_table.id,
        {"name": "Ada", "age": 36, "email": "ada@example.com", "status": "done"},
        company_id,
    )
    result = await view_query_service.query_rows(
        people_table.views[0].id, QueryRowsDTO(), company_id
    )

    assert result.total == 1
    assert not result.has_more
    assert result.view.name == "All Records"
    assert [c.name for c in result.view.columns] == [c.name for c in people_table.columns]

    [row] = result.rows
    assert row["id"] == inserted["id"]
    assert row["name"] == "Ada"
    assert row["age"] == 36
    assert row["email"] == "ada@example.com"
    assert row["status"] == "done"


async def test_filter_comparison(view_query_service, people, company_id):
    age = columns_of(people)["age"]
    group = FilterGroup(conditions=[condition(age, FilterOperator.GTE, 10)])
    assert await query(view_query_service, people, company_id, filters=group) == [
        "Brian",
        "Carla",
    ]

    group = FilterGroup(
        conditions=[
            condition(age, FilterOperator.GTE, 10),
            condition(age, FilterOperator.LT, 15),
        ]
    )
    assert await query(view_query_service, people, company_id, filters=group) == ["Brian"]


async def test_filter_or_returns_union(view_query_service, people, company_id):
    columns = columns_of(people)
    group = FilterGroup(
        operator=GroupOperator.OR,
        conditions=[
            condition(columns["name"], FilterOperator.EQUALS, "Ada"),
            condition(columns["age"], FilterOperator.EQUALS, 15),
        ],
    )
    assert await query(view_query_service, people, company_id, filters=group) == [
        "Ada",
        "Carla",
    ]


async def test_nested_groups(view_query_service, people, company_id):
    columns = columns_of(people)
    group = FilterGroup(
        operator=GroupOperator.AND,
        conditions=[
            condition(columns["age"], FilterOperator.GT, 1),
            FilterGroup(
                operator=GroupOperator.OR,
                conditions=[
                    condition(columns["status"], FilterOperator.EQUALS, "todo"),
                    condition(columns["status"], FilterOperator.EQUALS, "done"),
                ],
            ),
        ],
    )
    assert await query(view_query_service, people, company_id, filters=group) == [
        "Ada",
        "Carla",
    ]


@pytest.mark.parametrize(
    "column_name, operator, value, expected",
    [
        ("name", FilterOperator.CONTAINS, "AR", ["Carla"]),
        ("name", FilterOperator.NOT_CONTAINS, "R", ["Ada"]),
        ("name", FilterOperator.STARTS_WITH, "b", ["Brian"]),
        ("name", FilterOperator.ENDS_WITH, "LA", ["Carla"]),
        ("name", FilterOperator.NOT_EQUALS, "Ada", ["Brian", "Carla"]),
        ("notes", FilterOperator.IS_EMPTY, None, ["Ada", "Brian"]),
        ("notes", FilterOperator.IS_NOT_EMPTY, None, ["Carla"]),
        ("notes", FilterOperator.EQUALS, None, ["Ada"]),
        ("notes", FilterOperator.NOT_EQUALS, None, ["Brian", "Carla"]),
        ("age", FilterOperator.BETWEEN, [5, 10], ["Ada", "Brian"]),
        ("age", FilterOperator.IN, [5, 15], ["Ada", "Carla"]),
        ("age", FilterOperator.NOT_IN, [5], ["Brian", "Carla"]),
        ("status", FilterOperator.EQUALS, "doing", ["Brian"]),
        ("status", FilterOperator.IN, ["todo", "done"], ["Ada", "Carla"]),
        ("status", FilterOperator.CONTAINS, "DO", ["Ada", "Brian", "Carla"]),
        ("active", FilterOperator.EQUALS, False, ["Brian"]),
        ("joined", FilterOperator.LTE, "2024-02-01", ["Ada"]),
    ],
)
async def test_operators(view_query_service, people, company_id, column_name, operator, value, expected):
    column = columns_of(people)[column_name]
    group = FilterGroup(conditions=[condition(column, operator, value)])
    assert await query(view_query_service, people, company_id, filters=group) == expected


@pytest.mark.parametrize(
    "operator, value",
    [
        (FilterOperator.BETWEEN, [5]),
        (FilterOperator.IN, []),
        (FilterOperator.NOT_IN, "5"),
        (FilterOperator.GT, None),
        (FilterOperator.CONTAINS, ""),
    ],
)
async def test_incomplete_conditions_are_dropped(view_query_service, people, company_id, operator, value):
    column = columns_of(people)["age"]
    group = FilterGroup(conditions=[condition(column, operator, value)])
    assert await query(view_query_service, people, company_id, filters=group) == [
        "Ada",
        "Brian",
        "Carla",
    ]


async def test_unknown_columns_are_ignored(view_query_service, people, company_id):
    group = FilterGroup(
        conditions=[FilterCondition(column_id=uuid4(), operator=FilterOperator.EQUALS, value=1)]
    )
    sorts = [SortConfig(column_id=uuid4())]
    names = await query(view_query_service, people, company_id, filters=group, sorts=sorts)
    assert sorted(names) == ["Ada", "Brian", "Carla"]


async def test_invalid_filter_value(view_query_service, people, company_id):
    column = columns_of(people)["age"]
    group = FilterGroup(conditions=[condition(column, FilterOperator.GT, "lots")])
    with pytest.raises(ValidationException):
        await query(view_query_service, people, company_id, filters=group)


async def test_view_filters_and_overrides(view_query_service, view_service, people, company_id):
    columns = columns_of(people)
    view = people.views[0]
    await view_service.update_view(
        view.id,
        UpdateViewDTO(
            filters=FilterGroup(conditions=[condition(columns["age"], FilterOperator.GTE, 10)]),
            sort=[SortConfig(column_id=columns["age"].id, direction=SortDirection.DESC)],
        ),
        company_id,
    )

    result = await view_query_service.query_rows(view.id, QueryRowsDTO(), company_id)
    assert [row["name"] for row in result.rows] == ["Carla", "Brian"]
    assert result.total == 2

    # Additional filters narrow the view's own filters
    additional = FilterGroup(conditions=[condition(columns["status"], FilterOperator.EQUALS, "doing")])
    result = await view_query_service.query_rows(
        view.id, QueryRowsDTO(additional_filters=additional), company_id
    )
    assert [row["name"] for row in result.rows] == ["Brian"]

    # Explicit filters replace them
    explicit = FilterGroup(conditions=[condition(columns["name"], FilterOperator.EQUALS, "Ada")])
    result = await view_query_service.query_rows(
        view.id, QueryRowsDTO(filters=explicit), company_id
    )
    assert [row["name"] for row in result.rows] == ["Ada"]


async def test_pagination(view_query_service, people, company_id):
    columns = columns_of(people)
    view = people.views[0]
    sorts = [SortConfig(column_id=columns["age"].id, direction=SortDirection.DESC)]

    page = await view_query_service.query_rows(
        view.id, QueryRowsDTO(limit=2, offset=0, sorts=sorts), company_id
    )
    assert [row["name"] for row in page.rows] == ["Carla", "Brian"]
    assert page.total == 3
    assert page.has_more

    page = await view_query_service.query_rows(
        view.id, QueryRowsDTO(limit=2, offset=2, sorts=sorts), company_id
    )
    assert [row["name"] for row in page.rows] == ["Ada"]
    assert not page.has_more


async def test_view_must_belong_to_company(view_query_service, people_table):
    with pytest.raises(NotFoundException):
        await view_query_service.query_rows(people_table.views[0].id, QueryRowsDTO(), uuid4())
    with pytest.raises(NotFoundException):
        await view_query_service.query_rows(uuid4(), QueryRowsDTO())


def test_merge_filters_keeps_both_groups():
    base = FilterGroup(
        operator=GroupOperator.OR,
        conditions=[FilterCondition(column_id=uuid4(), operator=FilterOperator.IS_EMPTY)],
    )
    extra = FilterGroup(
        conditions=[FilterCondition(column_id=uuid4(), operator=FilterOperator.IS_EMPTY)]
    )
    merged = merge_filters(base, extra)
    assert merged.operator == GroupOperator.AND
    assert merged.conditions == [base, extra]
    assert merge_filters(None, extra) is extra
    assert merge_filters(base, FilterGroup()) is base


def compiled_sql(columns, filters, dialect):
    table = build_table(physical_table_name(uuid4(), uuid4()), columns)
    compiled = compile_query(table, {c.id: c for c in columns}, filters=filters)
    return table.name, str(compiled.where.compile(dialect=dialect))


def test_document_columns_use_text_extraction():
    status = ColumnDTO(
        id=uuid4(), table_id=uuid4(), name="status", label="Status", type=ColumnType.SELECT
    )
    filters = FilterGroup(
        conditions=[FilterCondition(column_id=status.id, operator=FilterOperator.EQUALS, value="done")]
    )
    table_name, sql = compiled_sql([status], filters, postgresql.dialect())
    assert sql.startswith(f"({table_name}.status #>> '{{}}') =")

    table_name, sql = compiled_sql([status], filters, sqlite.dialect())
    assert sql.startswith(f"CAST(json_extract({table_name}.status, '$') AS TEXT) =")


def test_values_are_bound_as_parameters():
    name = ColumnDTO(id=uuid4(), table_id=uuid4(), name="name", label="Name", type=ColumnType.TEXT)
    filters = FilterGroup(
        conditions=[
            FilterCondition(
                column_id=name.id, operator=FilterOperator.EQUALS, value="x'; drop table y; --"
            )
        ]
    )
    _, sql = compiled_sql([name], filters, postgresql.dialect())
    assert "drop table" not in sql
    assert "%(" in sql


def test_default_sort_is_newest_first():
    table = build_table(physical_table_name(uuid4(), uuid4()), [])
    compiled = compile_query(table, {})
    assert compiled.where is None
    assert [str(clause) for clause in compiled.order_by] == [f"{table.name}.created_at DESC"]
