from datetime import datetime
from importlib import import_module
from typing import Any

from loguru import logger
from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.ext.declarative import declared_attr
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from telemetry_server import settings
from telemetry_server.common.utils import utc_now
from telemetry_server.network.database.repository.mixin import (
    CreateDomainType,
    ReadDomainType,
    RepositoryMixin,
)

# SQLite only autoincrements a column declared exactly INTEGER PRIMARY KEY
AutoIncrementId = BigInteger().with_variant(Integer(), 'sqlite')


class BaseModel(DeclarativeBase, RepositoryMixin[ReadDomainType, CreateDomainType]):
    @declared_attr
    def id(cls) -> Mapped[int]:
        return mapped_column(AutoIncrementId, primary_key=True, autoincrement=True)

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        # Naive UTC on both stores
        return mapped_column(DateTime, default=utc_now, server_default=func.current_timestamp(), nullable=False)

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(id={self.id!r})'


def import_model_modules() -> list[Any]:
    """
    Used by things like Alembic and table creation to bring in the relevant models
    Looks for `models.py` in directories registered.
    """
    model_modules = []
    for app in settings.BOUNDARIES:
        import_path = f'{settings.BASE_MODULE}.{app}.models'
        logger.debug(f'importing: {import_path}')
        module = import_module(import_path)
        model_modules.append(module)

    return model_modules
