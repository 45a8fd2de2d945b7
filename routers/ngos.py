import logging
from typing import List, Optional

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from db import SessionDep
from errors import StorageError
from models import NgoDetails, User
from schemas import NgoRead, UserRead
from .auth import CurrentUserDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ngos"])


def list_ngo_views(
    session: Session,
    category: Optional[str] = None,
    status: Optional[str] = None,
) -> List[NgoRead]:
    query = (
        select(User, NgoDetails)
        .outerjoin(NgoDetails, NgoDetails.ngo_id == User.id)
        .where(User.type == "ngo")
    )
    if category is not None:
        query = query.where(NgoDetails.category == category)
    if status is not None:
        query = query.where(User.status == status)

    ngos = []
    for user, details in session.exec(
        query.order_by(User.created_at.desc(), User.id.desc())
    ).all():
        view = NgoRead(**UserRead.model_validate(user).model_dump())
        if details is not None:
            view.registration_number = details.registration_number
            view.description = details.description
            view.category = details.category
        ngos.append(view)
    return ngos


@router.get("", response_model=List[NgoRead])
def list_ngos(
    session: SessionDep,
    current: CurrentUserDep,
    category: Optional[str] = None,
    status: Optional[str] = None,
):
    """
    NGO directory with registration details, newest first.
    """
    try:
        return list_ngo_views(session, category=category, status=status)
    except SQLAlchemyError:
        logger.exception("Failed to fetch NGOs")
        raise StorageError("Failed to fetch NGOs")
