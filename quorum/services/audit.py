from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from quorum.models import ActivityLog


def log_activity(ctx, action, entity_type, entity_id=None, details=None):
    """Record an audit row. Failures are logged and never propagate."""
    try:
        with ctx.session.begin_nested():
            ctx.session.add(
                ActivityLog(
                    user_id=ctx.user_id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    details=details or {},
                )
            )
    except SQLAlchemyError:
        current_app.logger.warning(
            "Failed to log activity %s on %s %s", action, entity_type, entity_id,
            exc_info=True,
        )
