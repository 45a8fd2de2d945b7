#!/usr/bin/env python3
"""
Create (or re-activate) an admin account. Admins cannot self-register.
Usage: python scripts/create_admin_user.py EMAIL PASSWORD [--name NAME]
"""
import argparse
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import Session, select  # noqa: E402

from db import create_db_and_tables, engine  # noqa: E402
from logging_config import setup_logging  # noqa: E402
from models import User  # noqa: E402
from routers.auth import hash_password  # noqa: E402

logger = logging.getLogger("create_admin_user")


def create_admin_user(session: Session, email: str, password: str, name: str) -> User:
    """Return the admin with ``email``, creating it if needed."""
    existing = session.exec(select(User).where(User.email == email)).first()
    if existing is not None:
        if existing.type != "admin":
            raise ValueError(f"{email} is already registered as a {existing.type}")
        if existing.status != "active":
            existing.status = "active"
            session.add(existing)
            session.commit()
            session.refresh(existing)
        return existing

    admin = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        type="admin",
        status="active",
    )
    session.add(admin)
    session.commit()
    session.refresh(admin)
    return admin


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--name", default="System Administrator")
    args = parser.parse_args(argv)

    setup_logging()
    create_db_and_tables()
    with Session(engine) as session:
        try:
            admin = create_admin_user(session, args.email, args.password, args.name)
        except ValueError as exc:
            logger.error("%s", exc)
            return 1
    logger.info("Admin user %s ready (id %s)", admin.email, admin.id)
    return 0


if __name__ == "__main__":
    sys.exit(main())
