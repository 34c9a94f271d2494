"""In-app notifications fed by question events."""
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from quorum.models import GroupMember, Notification
from quorum.services import events
from quorum.services.errors import NotFound
from quorum.services.store import atomic

RESULT_LABELS = {
    "approved": "Approved",
    "rejected": "Rejected",
    "no_majority": "No majority",
}


def _notify_members(ctx, question, kind, title, message):
    member_ids = [
        member.user_id
        for member in ctx.session.query(GroupMember)
        .filter_by(group_id=question.group_id)
        .order_by(GroupMember.joined_at, GroupMember.user_id)
        .all()
    ]
    if not member_ids:
        return 0

    try:
        for user_id in member_ids:
            ctx.session.add(
                Notification(
                    user_id=user_id,
                    type=kind,
                    title=title,
                    message=message,
                    question_id=question.id,
                )
            )
        ctx.session.commit()
    except SQLAlchemyError:
        ctx.session.rollback()
        current_app.logger.warning(
            "Could not store %s notifications for question %s",
            kind,
            question.id,
            exc_info=True,
        )
        return 0
    return len(member_ids)


def _closed_message(question, tally):
    if question.is_poll:
        winner = next(
            (
                row
                for row in tally.get("option_results", [])
                if row["option_id"] == tally.get("winner_id")
            ),
            None,
        )
        if winner is None:
            return "Voting has ended without any votes."
        return f"Voting has ended. Most chosen: {winner['label']} ({winner['percent']}%)."

    label = RESULT_LABELS.get(question.decided_result, "No majority")
    return (
        f"Voting has ended: {label}. "
        f"Yes {tally['yes']}, no {tally['no']}, abstain {tally['abstain']}."
    )


def on_question_created(question, ctx, **extra):
    _notify_members(ctx, question, "new_question", "New question", question.title)


def on_question_closed(question, ctx, tally, **extra):
    _notify_members(
        ctx,
        question,
        "question_completed",
        f"Voting completed: {question.title}",
        _closed_message(question, tally),
    )


def register_notification_handlers():
    events.question_created.connect(on_question_created)
    events.question_closed.connect(on_question_closed)


def list_notifications(ctx, unread_only=False):
    query = ctx.session.query(Notification).filter_by(user_id=ctx.user_id)
    if unread_only:
        query = query.filter_by(read=False)
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()


def mark_read(ctx, notification_id):
    notification = ctx.session.get(Notification, notification_id)
    if notification is None or notification.user_id != ctx.user_id:
        raise NotFound("Notification not found.")
    with atomic(ctx.session):
        notification.read = True
    return notification


def mark_all_read(ctx):
    with atomic(ctx.session):
        updated = (
            ctx.session.query(Notification)
            .filter_by(user_id=ctx.user_id, read=False)
            .update({Notification.read: True}, synchronize_session=False)
        )
    return updated
