import pytest

from core.exceptions import NotFoundException, ValidationException
from model.dao.enums import ColumnType, FilterOperator
from model.dto.data_table import ColumnDefinitionDTO, CreateTableDTO
from model.dto.filters import FilterCondition, FilterGroup
from model.dto.query import GroupOptionsDTO


@pytest.fixture
async def people(table_service, people_table, company_id):
    rows = [
        {"name": "Ada", "age": 5, "status": "todo", "active": True, "joined": "2024-01-10"},
        {"name": "Brian", "age": 10, "status": "doing", "active": False},
        {"name": "Carla", "age": 15, "status": "done"},
        {"name": "Dan", "age": 10, "status": "todo", "active": True},
    ]
    for row in rows:
        await table_service.insert_row(people_table.id, row, company_id)
    return people_table


async def options_for(service, table, company_id, column_name, **kwargs):
    return await service.group_options(
        table.views[0].id, GroupOptionsDTO(column_name=column_name, **kwargs), company_id
    )


def as_tuples(result):
    return [(option.id, option.label, option.count) for option in result.options]


async def test_select_options(group_options_service, people, company_id):
    result = await options_for(group_options_service, people, company_id, "status")
    assert result.column_type == ColumnType.SELECT
    assert as_tuples(result) == [
        ("todo", "todo", 2),
        ("doing", "doing", 1),
        ("done", "done", 1),
        (None, "(Empty)", 0),
    ]
    assert result.total == 4
    assert not result.has_more


async def test_text_options(group_options_service, people, company_id):
    result = await options_for(group_options_service, people, company_id, "name", max_options=2)
    assert as_tuples(result) == [("Ada", "Ada", 1), ("Brian", "Brian", 1)]
    assert result.has_more


async def test_number_options(group_options_service, people, company_id):
    result = await options_for(group_options_service, people, company_id, "age")
    assert as_tuples(result) == [("5", "5", 1), ("10", "10", 2), ("15", "15", 1)]

    result = await options_for(group_options_service, people, company_id, "age", min_count=2)
    assert as_tuples(result) == [("10", "10", 2)]


async def test_boolean_options(group_options_service, people, company_id):
    result = await options_for(group_options_service, people, company_id, "active")
    assert as_tuples(result) == [
        ("true", "Yes", 2),
        ("false", "No", 1),
        (None, "(Empty)", 1),
    ]

    result = await options_for(
        group_options_service, people, company_id, "active", include_empty=False
    )
    assert [option.label for option in result.options] == ["Yes", "No"]


async def test_date_options(group_options_service, people, company_id):
    result = await options_for(group_options_service, people, company_id, "joined")
    assert sorted(as_tuples(result), key=str) == sorted(
        [("2024-01-10", "2024-01-10", 1), (None, "(No Date)", 3)], key=str
    )


async def test_options_honor_filters(group_options_service, people, company_id):
    age = next(c for c in people.columns if c.name == "age")
    additional = FilterGroup(
        conditions=[FilterCondition(column_id=age.id, operator=FilterOperator.GTE, value=10)]
    )
    result = await options_for(
        group_options_service, people, company_id, "status", additional_filters=additional
    )
    assert as_tuples(result) == [
        ("todo", "todo", 1),
        ("doing", "doing", 1),
        ("done", "done", 1),
        (None, "(Empty)", 0),
    ]


async def test_multi_select_options(table_service, group_options_service, company_id):
    table = await table_service.create_table(
        company_id,
        CreateTableDTO(
            name="Posts",
            columns=[
                ColumnDefinitionDTO(name="title", type=ColumnType.TEXT),
                ColumnDefinitionDTO(
                    name="tags",
                    type=ColumnType.MULTI_SELECT,
                    config={"options": ["news", "tech", "misc"]},
                ),
            ],
        ),
    )
    for values in (
        {"title": "One", "tags": ["news", "tech"]},
        {"title": "Two", "tags": ["news"]},
        {"title": "Three"},
    ):
        await table_service.insert_row(table.id, values, company_id)

    result = await options_for(group_options_service, table, company_id, "tags")
    assert as_tuples(result) == [
        ("news", "news", 2),
        ("tech", "tech", 1),
        ("misc", "misc", 0),
        (None, "(Empty)", 1),
    ]


async def test_relation_options(table_service, group_options_service, company_id):
    teams = await table_service.create_table(
        company_id,
        CreateTableDTO(
            name="Teams", columns=[ColumnDefinitionDTO(name="name", type=ColumnType.TEXT)]
        ),
    )
    players = await table_service.create_table(
        company_id,
        CreateTableDTO(
            name="Players",
            columns=[
                ColumnDefinitionDTO(name="name", type=ColumnType.TEXT),
                ColumnDefinitionDTO(
                    name="team", type=ColumnType.RELATION, config={"targetTable": "teams"}
                ),
            ],
        ),
    )
    reds = await table_service.insert_row(teams.id, {"name": "Reds"}, company_id)
    blues = await table_service.insert_row(teams.id, {"name": "Blues"}, company_id)
    for name, team in (("A", reds), ("B", reds), ("C", blues), ("D", None)):
        values = {"name": name}
        if team is not None:
            values["team"] = str(team["id"])
        await table_service.insert_row(players.id, values, company_id)

    result = await options_for(group_options_service, players, company_id, "team")
    options = {option.label: (option.id, option.count) for option in result.options}
    assert options == {
        "Reds": (str(reds["id"]), 2),
        "Blues": (str(blues["id"]), 1),
        "(Empty)": (None, 1),
    }
    assert result.options[0].label == "Reds"


async def test_unknown_and_computed_columns(table_service, group_options_service, people, company_id):
    with pytest.raises(NotFoundException):
        await options_for(group_options_service, people, company_id, "shoe_size")

    await table_service.add_column(
        people.id,
        ColumnDefinitionDTO(name="double_age", type=ColumnType.FORMULA, config={"formula": "age * 2"}),
        company_id,
    )
    with pytest.raises(ValidationException):
        await options_for(group_options_service, people, company_id, "double_age")
