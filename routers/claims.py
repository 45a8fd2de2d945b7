import logging

from fastapi import APIRouter
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from db import SessionDep
from errors import AlreadyClaimedOrNotFound, StorageError
from models import Donation, DonationClaim, User
from policy import Action, ensure_allowed
from schemas import ClaimCreate, DonationRead
from .auth import CurrentUserDep
from .donations import get_donation_view

logger = logging.getLogger(__name__)

router = APIRouter(tags=["claims"])


def claim_donation(
    session: Session,
    ngo: User,
    donation_id: int,
    delivery_charge: float = 0,
) -> DonationRead:
    """
    Claim a pending donation for ``ngo``.

    The status flip is a conditional update on ``status = 'pending'``, so of
    several concurrent claimants only the one whose update matches the row
    goes on to insert a claim; the others see zero affected rows and fail
    the same way as a claim on an already-claimed donation.
    """
    ensure_allowed(ngo, Action.CLAIM_DONATION)

    donation = session.get(Donation, donation_id)
    if donation is None or donation.status != "pending":
        logger.warning("NGO %s could not claim donation %s", ngo.id, donation_id)
        raise AlreadyClaimedOrNotFound()

    try:
        result = session.exec(
            update(Donation)
            .where(Donation.id == donation_id, Donation.status == "pending")
            .values(status="claimed")
        )
        if result.rowcount != 1:
            session.rollback()
            logger.warning(
                "NGO %s lost the claim on donation %s to another NGO", ngo.id, donation_id
            )
            raise AlreadyClaimedOrNotFound()

        session.add(
            DonationClaim(
                donation_id=donation_id,
                ngo_id=ngo.id,
                status="processing",
                delivery_charge=delivery_charge,
            )
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning("Duplicate claim on donation %s rejected", donation_id)
        raise AlreadyClaimedOrNotFound()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to claim donation %s for NGO %s", donation_id, ngo.id)
        raise StorageError("Failed to claim donation")

    logger.info("NGO %s claimed donation %s", ngo.id, donation_id)
    return get_donation_view(session, donation_id)


@router.post("/claim", response_model=DonationRead)
def claim(claim_in: ClaimCreate, session: SessionDep, current: CurrentUserDep):
    """
    Claim a pending donation for the calling NGO.
    """
    return claim_donation(
        session,
        current,
        claim_in.donation_id,
        delivery_charge=claim_in.delivery_charge,
    )
