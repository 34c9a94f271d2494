from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from quorum.services.errors import TransportError


@contextmanager
def atomic(session, on_conflict=None):
    """Run a block as one transaction and translate store failures.

    ``on_conflict`` is the error class raised for a unique-constraint
    violation; without it the IntegrityError propagates unchanged.
    """
    try:
        yield session
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        if on_conflict is None:
            raise
        current_app.logger.info("Constraint violation: %s", exc.orig)
        raise on_conflict() from exc
    except OperationalError as exc:
        session.rollback()
        current_app.logger.warning("Store unreachable: %s", exc.orig)
        raise TransportError() from exc
    except DBAPIError as exc:
        session.rollback()
        if exc.connection_invalidated:
            raise TransportError() from exc
        raise
    except Exception:
        session.rollback()
        raise
