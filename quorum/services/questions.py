"""Question lifecycle: open -> completed.

Every mutation that can change the standing of a question goes through
``refresh_outcome`` so the live preview and the frozen result are computed
by the same code. Events are sent only after the transaction commits.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from flask import current_app

from quorum.models import PollOption, Question, Vote
from quorum.models.question import COMPLETION_METHODS
from quorum.models.vote import VOTE_CHOICES
from quorum.services import events, membership
from quorum.services.audit import log_activity
from quorum.services.ballots import BallotStore
from quorum.services.errors import (
    AlreadyCompleted,
    DuplicateVote,
    NotAMember,
    NotFound,
    QuestionLocked,
    ValidationError,
)
from quorum.services.store import atomic
from quorum.services.validation import clean_flag, clean_text
from quorum.services.voting import tally_poll, tally_standard
from quorum.utils import parse_datetime, utc_now

_UNSET = object()


@dataclass
class QuestionView:
    question: Question
    group_name: str
    required_votes: int
    options: List[PollOption] = field(default_factory=list)
    ballots: List[Vote] = field(default_factory=list)
    tally: Optional[object] = None

    @property
    def voter_count(self):
        return len({ballot.user_id for ballot in self.ballots})

    def to_dict(self):
        question = self.question
        return {
            "id": question.id,
            "title": question.title,
            "description": question.description,
            "status": question.status,
            "question_type": question.question_type,
            "allow_multiple": question.allow_multiple,
            "group_id": question.group_id,
            "group_name": self.group_name,
            "deadline": _isoformat(question.deadline),
            "completion_method": question.completion_method,
            "completed_at": _isoformat(question.completed_at),
            "decided_result": question.decided_result,
            "winning_option_id": question.winning_option_id,
            "created_at": _isoformat(question.created_at),
            "updated_at": _isoformat(question.updated_at),
            "required_votes": self.required_votes,
            "voter_count": self.voter_count,
            "options": [
                {
                    "id": option.id,
                    "label": option.label,
                    "description": option.description,
                    "sort_order": option.sort_order,
                }
                for option in self.options
            ],
            "tally": self.tally.to_dict() if self.tally is not None else None,
            "voters": [voter_row(ballot) for ballot in self.ballots],
        }


def _isoformat(value):
    return value.isoformat() if value is not None else None


def voter_row(ballot):
    """Who cast a ballot and what it says; ballots are not secret."""
    user = ballot.user
    return {
        "user_id": ballot.user_id,
        "display_name": user.display_name if user else None,
        "email": user.email if user else None,
        "vote": ballot.vote,
        "poll_option_id": ballot.poll_option_id,
        "cast_at": _isoformat(ballot.updated_at or ballot.created_at),
    }


def get_question(ctx, question_id):
    question = ctx.session.get(Question, question_id)
    if question is None:
        raise NotFound("Question not found.")
    return question


def _clean_title(title):
    return clean_text(title, "Question title", required=True, max_length=200)


def _clean_deadline(raw):
    try:
        deadline = parse_datetime(raw)
    except (TypeError, ValueError):
        raise ValidationError("Deadline is not a valid date.") from None
    if deadline is not None and deadline <= utc_now():
        raise ValidationError("Deadline must be in the future.")
    return deadline


def _clean_options(options):
    if options is None:
        options = []
    if not isinstance(options, (list, tuple)):
        raise ValidationError("Options must be a list.")

    cleaned = []
    for entry in options:
        if isinstance(entry, dict):
            label = clean_text(entry.get("label"), "Option label", max_length=200)
            description = clean_text(entry.get("description"), "Option description")
        else:
            label = clean_text(entry, "Option label", max_length=200)
            description = None
        if label:
            cleaned.append((label, description))

    if len(cleaned) < 2:
        raise ValidationError("A poll needs at least two options.")
    return cleaned


def _tally(ctx, question, ballots=None):
    if ballots is None:
        ballots = BallotStore(ctx.session).list_ballots(question.id)
    if question.is_poll:
        return tally_poll(
            question.options,
            ballots,
            allow_multiple=question.allow_multiple,
            winning_option_id=question.winning_option_id,
        )
    return tally_standard(ballots, required_votes=question.group.required_votes)


def refresh_outcome(ctx, question, final=False):
    """Recompute decided_result / winning_option_id from the stored ballots.

    While open, a standard question only carries a result once new ballots
    can no longer flip it. On close the plain majority result is frozen.
    """
    tally = _tally(ctx, question)

    if question.is_poll:
        question.winning_option_id = tally.winner_id
        question.decided_result = None
    else:
        question.decided_result = tally.result if final else tally.early_result
        question.winning_option_id = None

    return tally


def _voter_count(tally):
    if hasattr(tally, "total_voters"):
        return tally.total_voters
    return tally.total_votes


def _complete(ctx, question, method):
    question.status = "completed"
    question.completed_at = utc_now()
    question.completion_method = method
    tally = refresh_outcome(ctx, question, final=True)
    log_activity(
        ctx, "question_closed", "question", question.id, {"method": method}
    )
    return tally


def _announce_close(ctx, question, tally):
    current_app.logger.info(
        "Question %s completed (%s): %s",
        question.id,
        question.completion_method,
        question.decided_result or question.winning_option_id,
    )
    events.question_closed.send(
        question,
        ctx=ctx,
        question_id=question.id,
        method=question.completion_method,
        tally=tally.to_dict(),
    )


def fetch_question_with_tally(ctx, question_id):
    question = get_question(ctx, question_id)
    return _build_view(ctx, question)


def _build_view(ctx, question):
    ballots = BallotStore(ctx.session).list_ballots(question.id)
    return QuestionView(
        question=question,
        group_name=question.group.name,
        required_votes=question.group.required_votes,
        options=list(question.options),
        ballots=ballots,
        tally=_tally(ctx, question, ballots),
    )


def list_questions(ctx, status=None, group_id=None):
    query = ctx.session.query(Question)
    if status is not None:
        query = query.filter(Question.status == status)
    if group_id is not None:
        query = query.filter(Question.group_id == group_id)
    questions = query.order_by(Question.created_at.desc(), Question.id.desc()).all()
    return [_build_view(ctx, question) for question in questions]


def get_user_ballots(ctx, question_id, user_id=None):
    get_question(ctx, question_id)
    return BallotStore(ctx.session).list_voter_ballots(
        question_id, user_id if user_id is not None else ctx.user_id
    )


def get_vote_history(ctx, user_id=None):
    """Every ballot a user has cast, newest first."""
    return BallotStore(ctx.session).list_user_ballots(
        user_id if user_id is not None else ctx.user_id
    )


def create_question(ctx, group_id, title, description=None, deadline=None):
    title = _clean_title(title)
    deadline = _clean_deadline(deadline)
    group = membership.get_group(ctx, group_id)

    question = Question(
        group_id=group.id,
        title=title,
        description=clean_text(description, "Description"),
        question_type="standard",
        allow_multiple=False,
        status="open",
        deadline=deadline,
        created_by=ctx.user_id,
    )
    with atomic(ctx.session):
        ctx.session.add(question)
        ctx.session.flush()
        log_activity(ctx, "question_created", "question", question.id)

    current_app.logger.info("Question %s opened in group %s", question.id, group.id)
    events.question_created.send(question, ctx=ctx, question_id=question.id)
    return question


def create_poll(
    ctx, group_id, title, options, description=None, deadline=None, allow_multiple=False
):
    title = _clean_title(title)
    cleaned_options = _clean_options(options)
    deadline = _clean_deadline(deadline)
    group = membership.get_group(ctx, group_id)

    question = Question(
        group_id=group.id,
        title=title,
        description=clean_text(description, "Description"),
        question_type="poll",
        allow_multiple=clean_flag(allow_multiple, "allow_multiple"),
        status="open",
        deadline=deadline,
        created_by=ctx.user_id,
    )
    with atomic(ctx.session):
        ctx.session.add(question)
        ctx.session.flush()
        for index, (label, option_description) in enumerate(cleaned_options):
            ctx.session.add(
                PollOption(
                    question_id=question.id,
                    label=label,
                    description=option_description,
                    sort_order=index,
                )
            )
        log_activity(
            ctx,
            "poll_created",
            "question",
            question.id,
            {"options": len(cleaned_options), "allow_multiple": question.allow_multiple},
        )

    current_app.logger.info(
        "Poll %s opened in group %s with %s options",
        question.id,
        group.id,
        len(cleaned_options),
    )
    events.question_created.send(question, ctx=ctx, question_id=question.id)
    return question


def _ensure_editable(ctx, question):
    if not question.is_open:
        raise AlreadyCompleted()
    if BallotStore(ctx.session).has_ballots(question.id):
        current_app.logger.warning(
            "Rejected edit of question %s: ballots already cast", question.id
        )
        raise QuestionLocked()


def update_question(ctx, question_id, title=None, description=None, deadline=_UNSET):
    question = get_question(ctx, question_id)
    _ensure_editable(ctx, question)

    changes = {}
    if title is not None:
        changes["title"] = _clean_title(title)
    if description is not None:
        changes["description"] = clean_text(description, "Description")
    if deadline is not _UNSET:
        changes["deadline"] = _clean_deadline(deadline)

    for name, value in changes.items():
        setattr(question, name, value)

    with atomic(ctx.session):
        log_activity(ctx, "question_updated", "question", question.id)

    events.question_updated.send(question, ctx=ctx, question_id=question.id)
    return question


def update_poll_options(ctx, question_id, options):
    question = get_question(ctx, question_id)
    if not question.is_poll:
        raise ValidationError("Only polls have options.")
    _ensure_editable(ctx, question)
    cleaned_options = _clean_options(options)

    with atomic(ctx.session):
        question.options.clear()
        ctx.session.flush()
        for index, (label, option_description) in enumerate(cleaned_options):
            question.options.append(
                PollOption(label=label, description=option_description, sort_order=index)
            )
        question.winning_option_id = None
        log_activity(
            ctx, "poll_options_updated", "question", question.id,
            {"options": len(cleaned_options)},
        )

    events.question_updated.send(question, ctx=ctx, question_id=question.id)
    return question


def _ensure_can_vote(ctx, question):
    if ctx.user_id is None:
        raise ValidationError("A signed-in user is required to vote.")
    if not question.is_open:
        raise AlreadyCompleted()

    if question.deadline is not None and question.deadline <= utc_now():
        with atomic(ctx.session):
            tally = _complete(ctx, question, "deadline")
        _announce_close(ctx, question, tally)
        raise AlreadyCompleted("The deadline for this question has passed.")

    if not membership.is_member(ctx, question.group_id, ctx.user_id):
        raise NotAMember()


def _poll_option_ids(question):
    return {option.id for option in question.options}


def _threshold_reached(question, tally):
    required = question.group.required_votes
    return (
        current_app.config.get("AUTO_CLOSE_ON_THRESHOLD", True)
        and required > 0
        and _voter_count(tally) >= required
    )


def reconcile_group_questions(ctx, group_id):
    """Re-evaluate a group's open questions after its member count moved.

    Runs inside the caller's transaction. Returns (question, tally) pairs
    for the questions the new count completed; pass them to
    ``announce_closed`` once the transaction has committed.
    """
    open_questions = (
        ctx.session.query(Question)
        .filter(Question.group_id == group_id, Question.status == "open")
        .order_by(Question.id)
        .all()
    )
    closed = []
    for question in open_questions:
        tally = refresh_outcome(ctx, question)
        if _threshold_reached(question, tally):
            closed.append((question, _complete(ctx, question, "threshold")))
    return closed


def announce_closed(ctx, closed):
    for question, tally in closed:
        _announce_close(ctx, question, tally)


def _record_ballots(ctx, question, write):
    """Write ballots, refresh the standing and apply the threshold trigger."""
    closed_tally = None
    with atomic(ctx.session, on_conflict=DuplicateVote):
        result = write(BallotStore(ctx.session))
        ctx.session.flush()
        tally = refresh_outcome(ctx, question)
        if _threshold_reached(question, tally):
            closed_tally = _complete(ctx, question, "threshold")

    current_app.logger.info(
        "Ballot cast on question %s by user %s", question.id, ctx.user_id
    )
    events.ballot_cast.send(
        question, ctx=ctx, question_id=question.id, user_id=ctx.user_id
    )
    if closed_tally is not None:
        _announce_close(ctx, question, closed_tally)
    return result


def cast_vote(ctx, question_id, vote):
    question = get_question(ctx, question_id)
    if question.is_poll:
        raise ValidationError("Use a poll vote for this question.")
    if vote not in VOTE_CHOICES:
        raise ValidationError("Vote must be yes, no or abstain.")
    _ensure_can_vote(ctx, question)

    return _record_ballots(
        ctx,
        question,
        lambda store: store.upsert_single_ballot(question, ctx.user_id, vote=vote),
    )


def cast_poll_vote(ctx, question_id, option_id):
    question = get_question(ctx, question_id)
    if not question.is_poll:
        raise ValidationError("This question is not a poll.")
    if option_id not in _poll_option_ids(question):
        raise NotFound("Poll option not found.")
    _ensure_can_vote(ctx, question)

    if question.allow_multiple:
        ballots = _record_ballots(
            ctx,
            question,
            lambda store: store.replace_ballots(question, ctx.user_id, [option_id]),
        )
        return ballots[0]

    return _record_ballots(
        ctx,
        question,
        lambda store: store.upsert_single_ballot(
            question, ctx.user_id, poll_option_id=option_id
        ),
    )


def cast_multi_poll_vote(ctx, question_id, option_ids):
    question = get_question(ctx, question_id)
    if not question.is_poll:
        raise ValidationError("This question is not a poll.")
    if not question.allow_multiple:
        raise ValidationError("This poll accepts a single choice only.")

    selected = list(dict.fromkeys(option_ids or []))
    if not selected:
        raise ValidationError("Select at least one option.")
    valid_ids = _poll_option_ids(question)
    if any(option_id not in valid_ids for option_id in selected):
        raise NotFound("Poll option not found.")
    _ensure_can_vote(ctx, question)

    return _record_ballots(
        ctx,
        question,
        lambda store: store.replace_ballots(question, ctx.user_id, selected),
    )


def close_question(ctx, question_id, method="manual"):
    if method not in COMPLETION_METHODS:
        raise ValidationError("Invalid completion method.")
    question = get_question(ctx, question_id)
    if not question.is_open:
        raise AlreadyCompleted()

    with atomic(ctx.session):
        tally = _complete(ctx, question, method)

    _announce_close(ctx, question, tally)
    return question


def close_expired_questions(ctx, now=None):
    now = now or utc_now()
    expired = (
        ctx.session.query(Question)
        .filter(Question.status == "open")
        .filter(Question.deadline.isnot(None))
        .filter(Question.deadline <= now)
        .all()
    )

    closed = []
    for question in expired:
        with atomic(ctx.session):
            tally = _complete(ctx, question, "deadline")
        _announce_close(ctx, question, tally)
        closed.append(question)
    return closed


def delete_question(ctx, question_id):
    question = get_question(ctx, question_id)
    group_id = question.group_id

    with atomic(ctx.session):
        ctx.session.delete(question)
        log_activity(ctx, "question_deleted", "question", question_id)

    current_app.logger.info("Question %s deleted", question_id)
    events.question_deleted.send(
        None, ctx=ctx, question_id=question_id, group_id=group_id
    )

