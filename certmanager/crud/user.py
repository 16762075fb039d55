from typing import List, Optional, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import or_, select
from certmanager.crud.base import CRUDBase, paginate
from certmanager.models.user import User, UserRole
from certmanager.schemas.user import UserRegister, UserUpdateMe
from certmanager.core.security_password import hash_password


class CRUDUser(CRUDBase[User, UserRegister, UserUpdateMe]):
    def create(self, db: Session, obj_in: UserRegister, extra=None) -> User:
        data = obj_in.model_dump()
        data["hashed_password"] = hash_password(data.pop("password"))
        data["role"] = UserRole(data.get("role") or UserRole.creator.value)
        if data.get("wallet_address"):
            data["wallet_address"] = data["wallet_address"].lower()
        if extra: data.update(extra)
        user = User(**data)
        db.add(user); db.commit(); db.refresh(user)
        return user

    def get_by_email(self, db: Session, email: str) -> User | None:
        return db.execute(select(User).where(User.email == email.strip().lower())).scalar_one_or_none()

    def get_by_wallet(self, db: Session, wallet_address: str) -> User | None:
        return db.execute(
            select(User).where(User.wallet_address == wallet_address.lower())
        ).scalar_one_or_none()

    def find_conflict(self, db: Session, *, email: str, username: str, wallet_address: Optional[str]) -> User | None:
        conds = [User.email == email.lower(), User.username == username]
        if wallet_address:
            conds.append(User.wallet_address == wallet_address.lower())
        return db.scalars(select(User).where(or_(*conds)).limit(1)).first()

    def list_filtered(
        self, db: Session, *, role: Optional[str] = None, is_active: Optional[bool] = None, page: int = 1, limit: int = 20
    ) -> Tuple[List[User], int]:
        stmt = select(User)
        if role:
            stmt = stmt.where(User.role == UserRole(role))
        if is_active is not None:
            stmt = stmt.where(User.is_active == is_active)
        return paginate(db, stmt.order_by(User.created_at.desc(), User.id.desc()), page=page, limit=limit)


user_crud = CRUDUser(User)
