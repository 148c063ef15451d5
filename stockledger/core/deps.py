from typing import Generator

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from stockledger.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_actor(
    x_user_id: str | None = Header(
        default=None,
        description="Authenticated user id, set by the upstream auth gateway.",
    ),
) -> str:
    actor_id = (x_user_id or "").strip()
    if not actor_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    if len(actor_id) > 36:
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")
    return actor_id
