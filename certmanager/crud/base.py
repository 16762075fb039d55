from typing import TypeVar, Generic, Type, Any, Optional, List, Tuple
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session
from pydantic import BaseModel
from certmanager.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchema = TypeVar("CreateSchema", bound=BaseModel)
UpdateSchema = TypeVar("UpdateSchema", bound=BaseModel)


def paginate(db: Session, stmt: Select, *, page: int, limit: int) -> Tuple[List[Any], int]:
    """Executa `stmt` paginado e devolve (itens, total)."""
    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = db.scalars(stmt.offset((page - 1) * limit).limit(limit)).all()
    return list(rows), int(total)


def page_count(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit else 0


class CRUDBase(Generic[ModelType, CreateSchema, UpdateSchema]):
    def __init__(self, model: Type[ModelType]): self.model = model

    def get(self, db: Session, id: Any) -> Optional[ModelType]:
        return db.get(self.model, id)
