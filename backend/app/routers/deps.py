"""
Shared router dependencies and error translation
"""
from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.errors import MessageStoreError, NotAParticipant, NotFoundError, PersistenceError, ValidationError
from app.services.events import log_event
from app.services.message_store import MessageStore


def get_store(db: Session = Depends(get_db)) -> MessageStore:
    """Dependency for a request-scoped message store"""
    return MessageStore(db, notifier=log_event, settings=get_settings())


def http_error(exc: MessageStoreError) -> HTTPException:
    """Translate a store error into the HTTP error the API returns"""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, NotAParticipant):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail={"code": exc.code, "message": str(exc)})
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=503, detail="Message store unavailable")
    return HTTPException(status_code=500, detail=str(exc))
