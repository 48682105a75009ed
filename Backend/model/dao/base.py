from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any, ClassVar, Self, Type, TypeVar
from uuid import UUID, uuid4

from pydantic import BaseModel, field_serializer
from sqlalchemy import JSON, DateTime, ScalarResult
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel, select

from core.database import SQLDatabase
from core.exceptions import DAOException
from core.utils import utc_now


T = TypeVar("T", bound="BaseModel")

# JSONB on PostgreSQL, plain JSON elsewhere
JSONDocument = JSON(none_as_null=True).with_variant(
    JSONB(none_as_null=True), "postgresql"
)


class BaseDAO(SQLModel, ABC):
    __dto_class__: ClassVar[Type[T]]

    @classmethod
    async def filter(cls, **kwargs) -> ScalarResult[Self]:
        raise NotImplementedError(
            f"`filter` method has not been implemented for {cls.__name__}"
        )

    @classmethod
    @abstractmethod
    async def get(cls, id: Any) -> list[Self]: ...

    async def save(self, db_resource: SQLDatabase) -> None:
        async with db_resource.session() as session:
            session.add(self)
            await session.commit()
            await session.refresh(self)

    async def delete(self, db_resource: SQLDatabase) -> None:
        async with db_resource.session() as session:
            instance = await session.merge(self)
            await session.delete(instance)
            await session.commit()

    def to_dto(self) -> T:
        """Convert the DAO instance to a DTO."""

        if self.__dto_class__ is None:
            raise DAOException(f"No DTO class set for {self.__class__.__name__}")

        return self.__dto_class__.model_validate(self.model_dump())


class UuidDAO(BaseDAO):
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        nullable=False,
    )

    @classmethod
    async def get(
        cls,
        id: UUID,
        db_resource: SQLDatabase,
    ) -> Self | None:
        """Filter table records by id."""
        async with db_resource.session() as session:
            query = select(cls).where(cls.id == id)
            return (await session.scalars(query)).one_or_none()


class TimestampDAO(BaseDAO):
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )

    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"onupdate": utc_now},
    )

    @field_serializer("created_at", "updated_at")
    def serialize_dt(self, dt: datetime, _info):
        # SQLite hands back naive values
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt.astimezone(UTC).isoformat(timespec="seconds")
