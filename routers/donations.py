import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from db import SessionDep
from errors import Conflict, NotFound, StorageError, ValidationError
from models import (
    CLAIM_STATUSES,
    Donation,
    DonationClaim,
    DonationImage,
    Feedback,
    User,
    can_transition,
)
from policy import Action, ensure_allowed
from schemas import (
    MAX_DONATION_IMAGES,
    DonationCreate,
    DonationFilters,
    DonationRead,
    DonationStatusUpdate,
)
from .auth import CurrentUserDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["donations"])

REQUIRED_FIELDS = (
    "name",
    "category",
    "conditions",
    "description",
    "delivery_option",
    "location",
)


def donation_filters(
    category: Optional[str] = None,
    conditions: Optional[str] = None,
    status: Optional[str] = None,
    donor_id: Optional[int] = Query(default=None, alias="donorId"),
    ngo_id: Optional[int] = Query(default=None, alias="ngoId"),
) -> DonationFilters:
    return DonationFilters(
        category=category,
        conditions=conditions,
        status=status,
        donor_id=donor_id,
        ngo_id=ngo_id,
    )


def _donation_query():
    return (
        select(Donation, User.name, DonationClaim)
        .join(User, User.id == Donation.donor_id)
        .outerjoin(DonationClaim, DonationClaim.donation_id == Donation.id)
    )


def apply_filters(query, filters: DonationFilters):
    if filters.category is not None:
        query = query.where(Donation.category == filters.category)
    if filters.conditions is not None:
        query = query.where(Donation.conditions == filters.conditions)
    if filters.status is not None:
        query = query.where(Donation.status == filters.status)
    if filters.donor_id is not None:
        query = query.where(Donation.donor_id == filters.donor_id)
    if filters.ngo_id is not None:
        query = query.where(DonationClaim.ngo_id == filters.ngo_id)
    return query


def _load_images(session: Session, donation_ids: List[int]) -> Dict[int, List[str]]:
    images: Dict[int, List[str]] = {donation_id: [] for donation_id in donation_ids}
    if not donation_ids:
        return images
    rows = session.exec(
        select(DonationImage)
        .where(col(DonationImage.donation_id).in_(donation_ids))
        .order_by(DonationImage.donation_id, DonationImage.position, DonationImage.id)
    ).all()
    for image in rows:
        images[image.donation_id].append(image.image_url)
    return images


def _to_read(
    donation: Donation,
    donor_name: str,
    claim: Optional[DonationClaim],
    images: List[str],
) -> DonationRead:
    view = DonationRead(
        **donation.model_dump(),
        donor_name=donor_name,
        images=images,
    )
    if claim is not None:
        view.ngo_id = claim.ngo_id
        view.claim_status = claim.status
        view.delivery_charge = claim.delivery_charge
        view.claimed_at = claim.claimed_at
    return view


def list_donation_views(session: Session, filters: DonationFilters) -> List[DonationRead]:
    """Donations matching ``filters``, newest first."""
    query = apply_filters(_donation_query(), filters).order_by(
        Donation.created_at.desc(), Donation.id.desc()
    )
    rows = session.exec(query).all()
    images = _load_images(session, [donation.id for donation, _, _ in rows])
    return [
        _to_read(donation, donor_name, claim, images[donation.id])
        for donation, donor_name, claim in rows
    ]


def get_donation_view(session: Session, donation_id: int) -> Optional[DonationRead]:
    row = session.exec(_donation_query().where(Donation.id == donation_id)).first()
    if row is None:
        return None
    donation, donor_name, claim = row
    images = _load_images(session, [donation.id])
    return _to_read(donation, donor_name, claim, images[donation.id])


def _store_images(session: Session, donation_id: int, image_urls: List[str]) -> None:
    for position, url in enumerate(image_urls):
        session.add(DonationImage(donation_id=donation_id, position=position, image_url=url))
    session.commit()


def _discard_donation(session: Session, donation_id: int) -> None:
    """Compensating delete for a donation whose images could not be saved."""
    try:
        session.exec(delete(DonationImage).where(DonationImage.donation_id == donation_id))
        session.exec(delete(Donation).where(Donation.id == donation_id))
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Could not remove donation %s after image failure", donation_id)


@router.get("", response_model=List[DonationRead])
def list_donations(
    session: SessionDep,
    filters: DonationFilters = Depends(donation_filters),
):
    """
    List donations, optionally filtered by category, conditions, status,
    donor, or the NGO that claimed them. Newest first.
    """
    try:
        return list_donation_views(session, filters)
    except SQLAlchemyError:
        logger.exception("Failed to fetch donations")
        raise StorageError("Failed to fetch donations")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_donation(
    donation_in: DonationCreate,
    session: SessionDep,
    current: CurrentUserDep,
):
    """
    Create a pending donation owned by the calling donor,
    with up to five image references.
    """
    ensure_allowed(current, Action.CREATE_DONATION)

    missing = [field for field in REQUIRED_FIELDS if not getattr(donation_in, field)]
    if missing:
        raise ValidationError.missing(missing)
    if len(donation_in.images) > MAX_DONATION_IMAGES:
        raise ValidationError(f"At most {MAX_DONATION_IMAGES} images are allowed")

    donation = Donation(
        donor_id=current.id,
        name=donation_in.name,
        category=donation_in.category,
        conditions=donation_in.conditions,
        description=donation_in.description,
        delivery_option=donation_in.delivery_option,
        location=donation_in.location,
        status="pending",
    )

    try:
        session.add(donation)
        session.commit()
        session.refresh(donation)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to create donation for donor %s", current.id)
        raise StorageError("Failed to create donation")

    donation_id = donation.id
    if donation_in.images:
        try:
            _store_images(session, donation_id, donation_in.images)
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Image insertion failed for donation %s", donation_id)
            _discard_donation(session, donation_id)
            raise StorageError("Failed to save donation images")

    logger.info("Donor %s created donation %s", current.id, donation_id)
    return {"message": "Donation created successfully", "donationId": donation_id}


@router.get("/{donation_id}", response_model=DonationRead)
def get_donation(donation_id: int, session: SessionDep):
    """
    Get a single donation with its images.
    """
    try:
        view = get_donation_view(session, donation_id)
    except SQLAlchemyError:
        logger.exception("Failed to fetch donation %s", donation_id)
        raise StorageError("Failed to fetch donation")
    if view is None:
        raise NotFound("Donation not found")
    return view


@router.put("/{donation_id}", response_model=DonationRead)
def update_donation_status(
    donation_id: int,
    status_in: DonationStatusUpdate,
    session: SessionDep,
    current: CurrentUserDep,
):
    """
    Move a donation along its lifecycle. Donors drive their own donations;
    admins may remove pending ones.
    """
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise NotFound("Donation not found")

    if status_in.status == "removed":
        ensure_allowed(current, Action.REMOVE_DONATION)
    else:
        ensure_allowed(current, Action.UPDATE_DONATION, owner_id=donation.donor_id)

    previous = donation.status
    target = status_in.status
    if not can_transition(previous, target):
        raise Conflict(f"Cannot change donation status from {previous} to {target}")

    try:
        result = session.exec(
            update(Donation)
            .where(Donation.id == donation_id, Donation.status == previous)
            .values(status=target)
        )
        if result.rowcount != 1:
            session.rollback()
            raise Conflict("Donation status changed meanwhile, reload and try again")
        if target in CLAIM_STATUSES:
            session.exec(
                update(DonationClaim)
                .where(DonationClaim.donation_id == donation_id)
                .values(status=target)
            )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to update donation %s", donation_id)
        raise StorageError("Failed to update donation")

    logger.info(
        "User %s moved donation %s from %s to %s", current.id, donation_id, previous, target
    )
    return get_donation_view(session, donation_id)


@router.delete("/{donation_id}", status_code=204)
def delete_donation(
    donation_id: int,
    session: SessionDep,
    current: CurrentUserDep,
):
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise NotFound("Donation not found")

    # Donor can only delete their *own* donations
    ensure_allowed(current, Action.DELETE_DONATION, owner_id=donation.donor_id)

    claimed = session.exec(
        select(DonationClaim.id).where(DonationClaim.donation_id == donation_id)
    ).first()
    if claimed is not None:
        raise Conflict("Cannot delete a donation that has been claimed")

    try:
        session.exec(delete(DonationImage).where(DonationImage.donation_id == donation_id))
        session.exec(delete(Feedback).where(Feedback.donation_id == donation_id))
        session.exec(delete(Donation).where(Donation.id == donation_id))
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to delete donation %s", donation_id)
        raise StorageError("Failed to delete donation")

    logger.info("Donor %s deleted donation %s", current.id, donation_id)
    return Response(status_code=204)
