"""Groups, their members and the quorum counter.

``Group.required_votes`` is a denormalized member count. It is changed
only here, by a SQL-level increment in the same transaction as the
membership row it accompanies. The group's open questions are
re-evaluated in that transaction too, since the count is their quorum.
"""
from flask import current_app

from quorum.models import Group, GroupMember, User
from quorum.models.group import MEMBER_ROLES
from quorum.services import events, questions
from quorum.services.audit import log_activity
from quorum.services.errors import DuplicateMember, NotFound, ValidationError
from quorum.services.store import atomic
from quorum.services.validation import clean_text


def get_group(ctx, group_id):
    group = ctx.session.get(Group, group_id)
    if group is None:
        raise NotFound("Group not found.")
    return group


def required_votes(ctx, group_id):
    return get_group(ctx, group_id).required_votes


def list_groups(ctx):
    return ctx.session.query(Group).order_by(Group.name).all()


def list_members(ctx, group_id):
    get_group(ctx, group_id)
    return (
        ctx.session.query(GroupMember)
        .filter_by(group_id=group_id)
        .order_by(GroupMember.joined_at)
        .all()
    )


def is_member(ctx, group_id, user_id):
    return ctx.session.get(GroupMember, (group_id, user_id)) is not None


def create_group(ctx, name, description=None):
    name = clean_text(name, "Group name", required=True, max_length=200)

    group = Group(
        name=name,
        description=clean_text(description, "Description"),
        required_votes=0,
        created_by=ctx.user_id,
    )
    with atomic(ctx.session):
        ctx.session.add(group)
        ctx.session.flush()
        log_activity(ctx, "group_created", "group", group.id, {"name": name})

    current_app.logger.info("Group %s created: %s", group.id, group.name)
    return group


def update_group(ctx, group_id, name=None, description=None):
    group = get_group(ctx, group_id)

    changes = {}
    if name is not None:
        changes["name"] = clean_text(name, "Group name", required=True, max_length=200)
    if description is not None:
        changes["description"] = clean_text(description, "Description")

    for attribute, value in changes.items():
        setattr(group, attribute, value)

    with atomic(ctx.session):
        log_activity(ctx, "group_updated", "group", group.id)
    return group


def delete_group(ctx, group_id):
    group = get_group(ctx, group_id)
    question_ids = [question.id for question in group.questions]

    with atomic(ctx.session):
        ctx.session.delete(group)
        log_activity(
            ctx, "group_deleted", "group", group_id, {"questions": question_ids}
        )

    current_app.logger.info(
        "Group %s deleted with %s question(s)", group_id, len(question_ids)
    )


def _shift_counter(ctx, group_id, delta):
    ctx.session.query(Group).filter(Group.id == group_id).update(
        {Group.required_votes: Group.required_votes + delta},
        synchronize_session=False,
    )


def _reconcile(ctx, group):
    # The counter was moved in SQL; reload it before re-tallying.
    ctx.session.expire(group, ["required_votes"])
    return questions.reconcile_group_questions(ctx, group.id)


def add_member(ctx, group_id, user_id, role="member"):
    group = get_group(ctx, group_id)
    if ctx.session.get(User, user_id) is None:
        raise NotFound("User not found.")
    if role not in MEMBER_ROLES:
        raise ValidationError("Invalid member role.")
    if is_member(ctx, group_id, user_id):
        raise DuplicateMember()

    member = GroupMember(group_id=group_id, user_id=user_id, role=role)
    with atomic(ctx.session, on_conflict=DuplicateMember):
        ctx.session.add(member)
        ctx.session.flush()
        _shift_counter(ctx, group_id, 1)
        closed = _reconcile(ctx, group)
        log_activity(ctx, "member_added", "group", group_id, {"user_id": user_id})

    ctx.session.refresh(group)
    current_app.logger.info(
        "User %s joined group %s (required votes now %s)",
        user_id,
        group_id,
        group.required_votes,
    )
    events.membership_changed.send(
        group, user_id=user_id, change="added", required_votes=group.required_votes
    )
    questions.announce_closed(ctx, closed)
    return member


def remove_member(ctx, group_id, user_id):
    group = get_group(ctx, group_id)

    with atomic(ctx.session):
        removed = (
            ctx.session.query(GroupMember)
            .filter_by(group_id=group_id, user_id=user_id)
            .delete(synchronize_session=False)
        )
        if not removed:
            raise NotFound("User is not a member of this group.")
        _shift_counter(ctx, group_id, -1)
        closed = _reconcile(ctx, group)
        log_activity(ctx, "member_removed", "group", group_id, {"user_id": user_id})

    ctx.session.refresh(group)
    current_app.logger.info(
        "User %s left group %s (required votes now %s)",
        user_id,
        group_id,
        group.required_votes,
    )
    events.membership_changed.send(
        group, user_id=user_id, change="removed", required_votes=group.required_votes
    )
    questions.announce_closed(ctx, closed)


def update_member_role(ctx, group_id, user_id, role):
    if role not in MEMBER_ROLES:
        raise ValidationError("Invalid member role.")
    member = ctx.session.get(GroupMember, (group_id, user_id))
    if member is None:
        raise NotFound("User is not a member of this group.")

    with atomic(ctx.session):
        member.role = role
        log_activity(
            ctx, "member_role_changed", "group", group_id,
            {"user_id": user_id, "role": role},
        )
    return member


def recount_required_votes(ctx, group_id):
    """Live member count, for checking the stored counter."""
    return ctx.session.query(GroupMember).filter_by(group_id=group_id).count()
