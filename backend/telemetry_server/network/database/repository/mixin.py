from typing import TYPE_CHECKING, Any, Dict, Generic, Iterable, List, Optional, Type, TypeVar, Union

from loguru import logger
from sqlalchemy.exc import IntegrityError, MultipleResultsFound, NoResultFound
from sqlalchemy.orm import Query, Session
from sqlalchemy.sql.elements import UnaryExpression

from telemetry_server.common.domain import BaseDomain
from telemetry_server.network.database import adapter
from telemetry_server.network.database.repository.exceptions import (
    MultipleRepositoryObjectsFound,
    PreventingModelTruncation,
    RepositoryObjectNotFound,
)
from telemetry_server.network.database.session import db

if TYPE_CHECKING:
    from telemetry_server.common.model import BaseModel

Ordering = List[Union[str, UnaryExpression[Any]]]


class BaseQueryManager:
    """Every row of the model"""

    def __init__(self, model: Type['BaseModel']) -> None:  # type: ignore[type-arg]
        self.model = model

    def scope(self) -> List[Any]:
        return []

    def get_query(self, *clauses: Any, **filter_by: Any) -> 'Query[BaseModel]':  # type: ignore[type-arg]
        query = self.model._get_session().query(self.model)
        for clause in [*clauses, *self.scope()]:
            query = query.where(clause)
        if filter_by:
            query = query.filter_by(**filter_by)
        return query


class ActiveRecordManager(BaseQueryManager):
    """Rows that are not in the trash"""

    def scope(self) -> List[Any]:
        return [self.model.deleted_at.is_(None)]  # type: ignore[attr-defined]


class DeletedRecordManager(BaseQueryManager):
    """Rows in the trash"""

    def scope(self) -> List[Any]:
        return [self.model.deleted_at.is_not(None)]  # type: ignore[attr-defined]


ReadDomainType = TypeVar('ReadDomainType', bound=BaseDomain)
CreateDomainType = TypeVar('CreateDomainType', bound=BaseDomain)


class RepositoryMixin(Generic[ReadDomainType, CreateDomainType]):
    """
    Table access for services. Writes take a create domain, reads hand back
    the read domain, and `query_manager` decides which rows a plain query sees.
    Methods that take a `manager` let trash operations reach rows the default
    manager hides.
    """

    __create_domain__: Type[CreateDomainType] = NotImplemented
    __read_domain__: Type[ReadDomainType] = NotImplemented
    query_manager: Type[BaseQueryManager] = BaseQueryManager

    @classmethod
    def _get_session(cls) -> Session:
        return db.session

    @classmethod
    def _manager(cls, manager: Optional[BaseQueryManager] = None) -> BaseQueryManager:
        return manager or cls.query_manager(cls)  # type: ignore[arg-type]

    @classmethod
    def get_query(cls, *clauses: Any, **filter_by: Any) -> 'Query[BaseModel]':  # type: ignore[type-arg]
        return cls._manager().get_query(*clauses, **filter_by)

    @classmethod
    def including_deleted(cls) -> BaseQueryManager:
        return BaseQueryManager(cls)  # type: ignore[arg-type]

    @classmethod
    def only_deleted(cls) -> BaseQueryManager:
        return DeletedRecordManager(cls)  # type: ignore[arg-type]

    @classmethod
    def get(cls, *clauses: Any, **filter_by: Any) -> ReadDomainType:
        try:
            instance = cls.get_query(*clauses, **filter_by).one()
        except NoResultFound:
            raise RepositoryObjectNotFound(f'{cls.__name__} matching {filter_by} not found')
        except MultipleResultsFound:
            raise MultipleRepositoryObjectsFound(f'{cls.__name__} matching {filter_by} is not unique')
        return cls._to_domain(instance)

    @classmethod
    def get_or_none(cls, *clauses: Any, **filter_by: Any) -> Optional[ReadDomainType]:
        try:
            return cls.get(*clauses, **filter_by)
        except RepositoryObjectNotFound:
            return None

    @classmethod
    def list(
        cls,
        *clauses: Any,
        ordering: Optional[Ordering] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        **filter_by: Any,
    ) -> List[ReadDomainType]:
        query = cls.get_query(*clauses, **filter_by)
        if ordering:
            query = query.order_by(*cls._order_expressions(ordering))
        if limit is not None:
            query = query.limit(limit)
        if offset:
            query = query.offset(offset)
        return [cls._to_domain(row) for row in query]

    @classmethod
    def count(cls, *clauses: Any, **filter_by: Any) -> int:
        return int(cls.get_query(*clauses, **filter_by).count())

    @classmethod
    def create(cls, domain_obj: CreateDomainType) -> ReadDomainType:
        instance = cls(**domain_obj.to_dict())
        session = cls._get_session()
        session.add(instance)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise
        return cls._to_domain(instance)  # type: ignore[arg-type]

    @classmethod
    def upsert(cls, values: Dict[str, Any], conflict_keys: Iterable[str], update_keys: Iterable[str]) -> None:
        adapter.upsert(cls._get_session(), cls, values, conflict_keys=conflict_keys, update_keys=update_keys)

    @classmethod
    def bulk_update(cls, updates: Dict[str, Any], clauses: List[Any], manager: Optional[BaseQueryManager] = None) -> int:
        query = cls._manager(manager).get_query(*clauses)
        return int(query.update(updates, synchronize_session=False))

    @classmethod
    def delete(cls, *clauses: Any, manager: Optional[BaseQueryManager] = None) -> int:
        if not clauses:
            raise PreventingModelTruncation(f'Refusing an unfiltered delete on {cls.__name__}, use delete_all')
        return int(cls._manager(manager).get_query(*clauses).delete(synchronize_session=False))

    @classmethod
    def delete_all(cls, manager: Optional[BaseQueryManager] = None) -> int:
        deleted = int(cls._manager(manager).get_query().delete(synchronize_session=False))
        logger.info(f'deleted every visible {cls.__name__} row', count=deleted)
        return deleted

    @classmethod
    def _order_expressions(cls, ordering: Ordering) -> List[Any]:
        """`['-timestamp', 'id']` style names, or ready made expressions"""
        expressions = []
        for item in ordering:
            if not isinstance(item, str):
                expressions.append(item)
            elif item.startswith('-'):
                expressions.append(getattr(cls, item[1:]).desc())
            else:
                expressions.append(getattr(cls, item).asc())
        return expressions

    @classmethod
    def _to_domain(cls, instance: 'BaseModel[Any, Any]') -> ReadDomainType:
        return cls.__read_domain__.model_validate(instance)  # type: ignore[no-any-return]
