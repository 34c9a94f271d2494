"""Member directory: profiles and the groups each user belongs to."""
from flask import current_app

from quorum.models import GroupMember, User
from quorum.models.user import USER_ROLES
from quorum.services.audit import log_activity
from quorum.services.errors import NotFound, ValidationError
from quorum.services.store import atomic
from quorum.services.validation import clean_text

_UNSET = object()


def get_user(ctx, user_id):
    user = ctx.session.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


def list_users(ctx):
    return ctx.session.query(User).order_by(User.email).all()


def update_user(ctx, user_id, display_name=_UNSET, role=None):
    user = get_user(ctx, user_id)

    changes = {}
    if display_name is not _UNSET:
        changes["display_name"] = clean_text(
            display_name, "Display name", max_length=200
        )
    if role is not None:
        if role not in USER_ROLES:
            raise ValidationError("Invalid user role.")
        changes["role"] = role

    with atomic(ctx.session):
        for attribute, value in changes.items():
            setattr(user, attribute, value)
        log_activity(ctx, "user_updated", "user", user.id, {"fields": sorted(changes)})

    if "role" in changes:
        current_app.logger.info("User %s now has role %s", user.id, user.role)
    return user


def list_user_groups(ctx, user_id=None):
    user_id = user_id if user_id is not None else ctx.user_id
    return (
        ctx.session.query(GroupMember)
        .filter_by(user_id=user_id)
        .order_by(GroupMember.joined_at)
        .all()
    )
