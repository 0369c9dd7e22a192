from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shipgraph.errors import StoreError


@contextmanager
def smart_transaction(session: Session) -> Iterator:
    """
    Context manager that begins a transaction on the given Session.
    If a transaction is already active, start a nested SAVEPOINT (begin_nested).
    Otherwise start a normal transaction (begin).
    Usage:
        with smart_transaction(db):
            ... DB work ...
    """
    if session.in_transaction():
        cm = session.begin_nested()
    else:
        cm = session.begin()
    with cm:
        yield


@contextmanager
def short_session(factory: sessionmaker) -> Iterator[Session]:
    """
    Open a short-lived session, run the body in one transaction and close it.
    Driver errors surface as StoreError so callers only deal with graph errors.
    """
    s = factory()
    try:
        with smart_transaction(s):
            yield s
    except SQLAlchemyError as e:
        raise StoreError(f"Storage write failed: {e.__class__.__name__}: {e}") from e
    finally:
        s.close()
