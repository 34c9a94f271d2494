from sqlalchemy import distinct, func

from quorum.models import ActivityLog, Group, Question, User, Vote
from quorum.services.voting import percent_half_up


def participation_rate(ctx):
    """Share of eligible members who voted, pooled over completed questions."""
    rows = (
        ctx.session.query(
            Question.id,
            Group.required_votes,
            func.count(distinct(Vote.user_id)),
        )
        .join(Group, Group.id == Question.group_id)
        .outerjoin(Vote, Vote.question_id == Question.id)
        .filter(Question.status == "completed")
        .group_by(Question.id, Group.required_votes)
        .all()
    )

    voted = 0
    eligible = 0
    for _question_id, required, voters in rows:
        if not required:
            continue
        eligible += required
        voted += min(voters, required)
    return percent_half_up(voted, eligible)


def get_stats(ctx):
    status_counts = dict(
        ctx.session.query(Question.status, func.count(Question.id))
        .group_by(Question.status)
        .all()
    )

    return {
        "total_questions": sum(status_counts.values()),
        "open_questions": status_counts.get("open", 0),
        "completed_questions": status_counts.get("completed", 0),
        "total_votes": ctx.session.query(func.count(Vote.id)).scalar() or 0,
        "total_users": ctx.session.query(func.count(User.id)).scalar() or 0,
        "total_groups": ctx.session.query(func.count(Group.id)).scalar() or 0,
        "participation_rate": participation_rate(ctx),
    }


def recent_activity(ctx, limit=20):
    """Newest audit rows with the acting user, if any."""
    return (
        ctx.session.query(ActivityLog, User)
        .outerjoin(User, User.id == ActivityLog.user_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
        .all()
    )
