import logging
from typing import List, Optional

from fastapi import APIRouter, Query, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from db import SessionDep
from errors import Conflict, NotFound, StorageError, ValidationError
from models import Donation, Feedback, User
from policy import Action, ensure_allowed
from schemas import FeedbackCreate, FeedbackRead
from .auth import CurrentUserDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["feedback"])

FromUser = aliased(User)
ToUser = aliased(User)


def _feedback_query():
    return (
        select(Feedback, FromUser.name, FromUser.type, ToUser.name, ToUser.type, Donation.name)
        .join(FromUser, FromUser.id == Feedback.from_id)
        .join(ToUser, ToUser.id == Feedback.to_id)
        .join(Donation, Donation.id == Feedback.donation_id)
    )


def _to_read(row) -> FeedbackRead:
    feedback, from_name, from_type, to_name, to_type, donation_name = row
    return FeedbackRead(
        **feedback.model_dump(),
        from_name=from_name,
        from_type=from_type,
        to_name=to_name,
        to_type=to_type,
        donation_name=donation_name,
    )


def _involving(user_id: int):
    return or_(Feedback.from_id == user_id, Feedback.to_id == user_id)


def list_feedback_views(
    session: Session,
    donor_id: Optional[int] = None,
    ngo_id: Optional[int] = None,
    donation_id: Optional[int] = None,
) -> List[FeedbackRead]:
    query = _feedback_query()
    if donor_id is not None:
        query = query.where(_involving(donor_id))
    if ngo_id is not None:
        query = query.where(_involving(ngo_id))
    if donation_id is not None:
        query = query.where(Feedback.donation_id == donation_id)
    query = query.order_by(Feedback.created_at.desc(), Feedback.id.desc())
    return [_to_read(row) for row in session.exec(query).all()]


@router.get("", response_model=List[FeedbackRead])
def list_feedback(
    session: SessionDep,
    donor_id: Optional[int] = Query(default=None, alias="donorId"),
    ngo_id: Optional[int] = Query(default=None, alias="ngoId"),
    donation_id: Optional[int] = Query(default=None, alias="donationId"),
):
    """
    Feedback sent or received by a donor or NGO, or left about one donation.
    """
    try:
        return list_feedback_views(
            session, donor_id=donor_id, ngo_id=ngo_id, donation_id=donation_id
        )
    except SQLAlchemyError:
        logger.exception("Failed to fetch feedback")
        raise StorageError("Failed to fetch feedback")


@router.post("", response_model=FeedbackRead, status_code=status.HTTP_201_CREATED)
def create_feedback(
    feedback_in: FeedbackCreate,
    session: SessionDep,
    current: CurrentUserDep,
):
    """
    Rate another user about a donation. One feedback per donation,
    sender and recipient.
    """
    ensure_allowed(current, Action.LEAVE_FEEDBACK)

    if feedback_in.to_id == current.id:
        raise ValidationError("You cannot leave feedback for yourself")
    if session.get(Donation, feedback_in.donation_id) is None:
        raise NotFound("Donation not found")
    if session.get(User, feedback_in.to_id) is None:
        raise NotFound("Recipient not found")

    existing = session.exec(
        select(Feedback.id).where(
            Feedback.donation_id == feedback_in.donation_id,
            Feedback.from_id == current.id,
            Feedback.to_id == feedback_in.to_id,
        )
    ).first()
    if existing is not None:
        raise Conflict("Feedback already submitted")

    feedback = Feedback(
        donation_id=feedback_in.donation_id,
        from_id=current.id,
        to_id=feedback_in.to_id,
        rating=feedback_in.rating,
        comment=feedback_in.comment,
    )
    try:
        session.add(feedback)
        session.commit()
        session.refresh(feedback)
    except IntegrityError:
        session.rollback()
        raise Conflict("Feedback already submitted")
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to store feedback from user %s", current.id)
        raise StorageError("Failed to submit feedback")

    logger.info(
        "User %s rated user %s %s/5 for donation %s",
        current.id,
        feedback.to_id,
        feedback.rating,
        feedback.donation_id,
    )
    row = session.exec(_feedback_query().where(Feedback.id == feedback.id)).one()
    return _to_read(row)
