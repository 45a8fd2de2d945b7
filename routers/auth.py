import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, Header, Response, status
from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from config import settings
from db import SessionDep
from errors import Conflict, Forbidden, StorageError, Unauthenticated, ValidationError
from models import NgoDetails, User
from schemas import LoginData, NgoDetailsRead, UserCreate, UserRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

serializer = URLSafeTimedSerializer(settings.secret_key, salt="auth-token")

SESSION_COOKIE = "session"

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user: User) -> str:
    """
    Sign the user's identity into a token.
    Example data:
        {"id": 3, "email": "a@b.org", "type": "donor"}
    """
    return serializer.dumps({"id": user.id, "email": user.email, "type": user.type})


def verify_access_token(token: str) -> Optional[dict]:
    """
    Returns the token payload if valid,
    or None if the token is invalid/expired.
    """
    try:
        data = serializer.loads(token, max_age=settings.token_max_age_seconds)
    except BadSignature:
        return None
    if not isinstance(data, dict) or "id" not in data:
        return None
    return data


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def resolve_principal(session: Session, token: Optional[str]) -> User:
    """Map a token to its user or raise ``Unauthenticated``."""
    if token is None:
        raise Unauthenticated("No token provided")

    data = verify_access_token(token)
    if data is None:
        raise Unauthenticated("Invalid or expired token")

    user = session.get(User, data["id"])
    if user is None:
        raise Unauthenticated("User not found")
    return user


def get_current_user(
    session: SessionDep,
    authorization: Optional[str] = Header(default=None),
) -> User:
    """
    Reads the Authorization header, verifies the bearer token
    and returns the user it belongs to.
    Raises 401 if the header is missing or the token is invalid.
    """
    return resolve_principal(session, parse_bearer(authorization))


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def get_optional_user(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias=SESSION_COOKIE),
) -> Optional[User]:
    """
    Like get_current_user, but reads the session cookie and
    returns None instead of raising. Used by the dashboard pages.
    """
    if session_token is None:
        return None
    data = verify_access_token(session_token)
    if data is None:
        return None
    return session.get(User, data["id"])


OptionalUserDep = Annotated[Optional[User], Depends(get_optional_user)]


def user_payload(session: Session, user: User) -> dict:
    payload = UserRead.model_validate(user).model_dump(mode="json")
    if user.type == "ngo":
        details = session.exec(
            select(NgoDetails).where(NgoDetails.ngo_id == user.id)
        ).first()
        if details is not None:
            payload["ngo_details"] = NgoDetailsRead.model_validate(details).model_dump()
    return payload


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(user_in: UserCreate, session: SessionDep):
    """
    Register a donor or NGO with a hashed password.
    NGOs start out pending until an admin activates them.
    """
    if user_in.type == "ngo":
        missing = [
            label
            for label, value in (
                ("registrationNumber", user_in.registration_number),
                ("category", user_in.category),
                ("description", user_in.description),
            )
            if not value
        ]
        if missing:
            raise ValidationError.missing(missing)

    existing = session.exec(
        select(User).where(User.email == user_in.email)
    ).first()
    if existing:
        raise Conflict("User with this email already exists")

    user = User(
        name=user_in.name,
        email=user_in.email,
        password_hash=hash_password(user_in.password),
        type=user_in.type,
        status="pending" if user_in.type == "ngo" else "active",
        phone=user_in.phone,
        address=user_in.address,
    )

    try:
        session.add(user)
        session.flush()
        if user_in.type == "ngo":
            session.add(
                NgoDetails(
                    ngo_id=user.id,
                    registration_number=user_in.registration_number,
                    description=user_in.description,
                    category=user_in.category,
                )
            )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("User with this email already exists")
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Registration failed for %s", user_in.email)
        raise StorageError("Registration failed")

    session.refresh(user)
    logger.info("Registered %s user %s", user.type, user.id)

    label = "NGO" if user.type == "ngo" else "Donor"
    return {"message": f"{label} registered successfully", "userId": user.id}


@router.post("/login")
def login(payload: LoginData, session: SessionDep, response: Response):
    """
    Log in with email + password + account type. Returns a bearer token
    and also stores it in the session cookie for the dashboard pages.
    """
    user = session.exec(
        select(User).where(User.email == payload.email, User.type == payload.type)
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise Unauthenticated("Invalid credentials")

    if user.status != "active":
        raise Forbidden("Account is not active. Please contact admin.")

    token = create_access_token(user)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=settings.token_max_age_seconds,
    )
    return {
        "message": "Login successful",
        "token": token,
        "user": user_payload(session, user),
    }


@router.post("/logout")
def logout(response: Response):
    """
    Clear the session cookie. Bearer tokens simply expire.
    """
    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Logged out"}


@router.get("/me")
def read_me(current: CurrentUserDep, session: SessionDep):
    """
    Get info about the currently authenticated user.
    """
    return user_payload(session, current)
