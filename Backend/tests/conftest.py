from uuid import uuid4

import pytest
from sqlmodel import SQLModel

from core.database import SQLDatabase
from core.environment import SQLConfig
from model.dao.enums import ColumnType
from model.dto.data_table import ColumnDefinitionDTO, CreateTableDTO
from service.computed_fields.pipeline import ComputedFieldPipeline
from service.group_options import GroupOptionsService
from service.schema_manager import SchemaManager
from service.tables import DataTableService
from service.view_query import ViewQueryService
from service.views import ViewService


@pytest.fixture(scope="function")
async def database(tmp_path):
    """Fresh SQLite database with the metadata tables created"""
    db = await SQLDatabase().init(
        SQLConfig(driver="sqlite+aiosqlite", database=str(tmp_path / "datatables.db"))
    )
    await db.create_all(SQLModel.metadata)

    yield db

    await db.shutdown(None)


@pytest.fixture
def company_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def schema_manager(database):
    return SchemaManager(database)


@pytest.fixture
def pipeline(database):
    return ComputedFieldPipeline(database, batched=False)


@pytest.fixture
def table_service(database, schema_manager, pipeline):
    return DataTableService(database, schema_manager, pipeline)


@pytest.fixture
def view_service(database):
    return ViewService(database)


@pytest.fixture
def view_query_service(database, pipeline):
    return ViewQueryService(database, pipeline)


@pytest.fixture
def group_options_service(database):
    return GroupOptionsService(database)


@pytest.fixture
async def people_table(table_service, company_id, user_id):
    """Table with a handful of scalar and document-backed columns"""
    return await table_service.create_table(
        company_id,
        CreateTableDTO(
            name="People",
            columns=[
                ColumnDefinitionDTO(name="name", type=ColumnType.TEXT, required=True),
                ColumnDefinitionDTO(name="age", type=ColumnType.NUMBER),
                ColumnDefinitionDTO(name="email", type=ColumnType.EMAIL),
                ColumnDefinitionDTO(name="active", type=ColumnType.BOOLEAN),
                ColumnDefinitionDTO(
                    name="status",
                    type=ColumnType.SELECT,
                    config={"options": ["todo", "doing", "done"]},
                ),
                ColumnDefinitionDTO(name="joined", type=ColumnType.DATE),
                ColumnDefinitionDTO(name="notes", type=ColumnType.LONG_TEXT),
            ],
        ),
        user_id,
    )
