from functools import wraps

from flask import abort, request
from flask_login import current_user

from quorum.services.context import VotingContext
from quorum.services.errors import ValidationError


def payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def current_context():
    return VotingContext.for_user(current_user)


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if not current_user.is_admin:
            abort(403)
        return view(*args, **kwargs)

    return wrapped


def int_field(data, name):
    value = data.get(name)
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer.") from None


def ballot_to_dict(ballot):
    return {
        "id": ballot.id,
        "question_id": ballot.question_id,
        "user_id": ballot.user_id,
        "vote": ballot.vote,
        "poll_option_id": ballot.poll_option_id,
        "created_at": ballot.created_at.isoformat() if ballot.created_at else None,
    }
