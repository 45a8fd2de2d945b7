# routers/users.py
import logging
from typing import List, Optional

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from db import SessionDep
from errors import NotFound, StorageError
from models import User
from policy import Action, ensure_allowed
from schemas import UserRead, UserStatusUpdate
from .auth import CurrentUserDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


def find_users(
    session: Session,
    type: Optional[str] = None,
    status: Optional[str] = None,
) -> List[User]:
    query = select(User)
    if type is not None:
        query = query.where(User.type == type)
    if status is not None:
        query = query.where(User.status == status)
    return session.exec(query.order_by(User.created_at.desc(), User.id.desc())).all()


@router.get("", response_model=List[UserRead])
def list_users(
    session: SessionDep,
    current: CurrentUserDep,
    type: Optional[str] = None,
    status: Optional[str] = None,
):
    """
    List users for the admin dashboard, optionally filtered by type and status.
    """
    ensure_allowed(current, Action.MANAGE_USERS)

    try:
        return find_users(session, type=type, status=status)
    except SQLAlchemyError:
        logger.exception("Failed to fetch users")
        raise StorageError("Failed to fetch users")


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: int, session: SessionDep, current: CurrentUserDep):
    """
    Get a single user by ID.
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


@router.put("/{user_id}", response_model=UserRead)
def update_user_status(
    user_id: int,
    update: UserStatusUpdate,
    session: SessionDep,
    current: CurrentUserDep,
):
    """
    Activate, suspend or reset an account. Activating an NGO is what
    lets it sign in for the first time.
    """
    ensure_allowed(current, Action.MANAGE_USERS)

    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")

    previous = user.status
    user.status = update.status
    try:
        session.add(user)
        session.commit()
        session.refresh(user)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to update status of user %s", user_id)
        raise StorageError("Failed to update user")

    logger.info(
        "Admin %s changed user %s status from %s to %s",
        current.id,
        user_id,
        previous,
        user.status,
    )
    return user
