from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from quorum.extensions import db
from quorum.models import ActivityLog, Notification, PollOption, Question, Vote
from quorum.services import events, membership, questions
from quorum.services.ballots import BallotStore
from quorum.services.context import Identity, VotingContext
from quorum.services.errors import (
    AlreadyCompleted,
    DuplicateVote,
    NotAMember,
    NotFound,
    QuestionLocked,
    ValidationError,
)
from quorum.utils import utc_now


def _ballots(db_session, question_id, user_id=None):
    query = db_session.query(Vote).filter_by(question_id=question_id)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    return query.all()


def test_repeat_vote_replaces_previous_ballot(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(3)
    question = questions.create_question(admin_ctx, group.id, "Replace the roof")
    voter = ctx_for(members[0])

    questions.cast_vote(voter, question.id, "yes")
    questions.cast_vote(voter, question.id, "no")

    ballots = _ballots(db_session, question.id, members[0].id)
    assert [b.vote for b in ballots] == ["no"]
    assert questions.fetch_question_with_tally(admin_ctx, question.id).tally.no == 1


def test_board_scenario(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(5)
    question = questions.create_question(admin_ctx, group.id, "Budget approval")

    for member in members[:3]:
        questions.cast_vote(ctx_for(member), question.id, "yes")

    # Two outstanding ballots can no longer overturn three yes votes.
    db_session.refresh(question)
    assert question.status == "open"
    assert question.decided_result == "approved"

    questions.cast_vote(ctx_for(members[3]), question.id, "no")
    questions.cast_vote(ctx_for(members[4]), question.id, "abstain")

    view = questions.fetch_question_with_tally(admin_ctx, question.id)
    assert view.question.status == "completed"
    assert view.question.completion_method == "threshold"
    assert view.question.decided_result == "approved"
    assert (view.tally.yes, view.tally.no, view.tally.abstain) == (3, 1, 1)
    assert (view.voter_count, view.required_votes) == (5, 5)
    assert view.to_dict()["tally"]["total_votes"] == 5


def test_live_result_clears_when_a_vote_changes(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(4)
    question = questions.create_question(admin_ctx, group.id, "New intercom")

    for member in members[:3]:
        questions.cast_vote(ctx_for(member), question.id, "yes")
    db_session.refresh(question)
    assert question.decided_result == "approved"

    questions.cast_vote(ctx_for(members[0]), question.id, "no")
    db_session.refresh(question)
    assert question.decided_result is None


def test_manual_close_freezes_plain_majority(admin_ctx, ctx_for, make_group):
    group, members = make_group(5)
    question = questions.create_question(admin_ctx, group.id, "Pet policy")
    questions.cast_vote(ctx_for(members[0]), question.id, "no")
    questions.cast_vote(ctx_for(members[1]), question.id, "abstain")

    closed = questions.close_question(admin_ctx, question.id)

    assert closed.status == "completed"
    assert closed.completion_method == "manual"
    assert closed.completed_at is not None
    assert closed.decided_result == "rejected"


def test_close_tie_is_no_majority(admin_ctx, ctx_for, make_group):
    group, members = make_group(4)
    question = questions.create_question(admin_ctx, group.id, "Bike shed")
    questions.cast_vote(ctx_for(members[0]), question.id, "yes")
    questions.cast_vote(ctx_for(members[1]), question.id, "no")

    assert questions.close_question(admin_ctx, question.id).decided_result == "no_majority"


def test_completed_question_rejects_votes_and_second_close(admin_ctx, ctx_for, make_group):
    group, members = make_group(3)
    question = questions.create_question(admin_ctx, group.id, "Window cleaning")
    questions.close_question(admin_ctx, question.id)

    with pytest.raises(AlreadyCompleted):
        questions.cast_vote(ctx_for(members[0]), question.id, "yes")
    with pytest.raises(AlreadyCompleted):
        questions.close_question(admin_ctx, question.id)
    with pytest.raises(QuestionLocked):
        questions.update_question(admin_ctx, question.id, title="Too late")


def test_close_rejects_unknown_method(admin_ctx, make_group):
    group, _members = make_group(1)
    question = questions.create_question(admin_ctx, group.id, "Lift repair")
    with pytest.raises(ValidationError):
        questions.close_question(admin_ctx, question.id, method="whenever")


def test_voting_after_deadline_closes_the_question(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(3)
    question = questions.create_question(
        admin_ctx, group.id, "Parking rules", deadline=utc_now() + timedelta(days=1)
    )
    questions.cast_vote(ctx_for(members[0]), question.id, "yes")

    question.deadline = utc_now() - timedelta(minutes=1)
    db_session.commit()

    with pytest.raises(AlreadyCompleted):
        questions.cast_vote(ctx_for(members[1]), question.id, "no")

    db_session.refresh(question)
    assert question.status == "completed"
    assert question.completion_method == "deadline"
    assert question.decided_result == "approved"
    assert len(_ballots(db_session, question.id)) == 1


def test_close_expired_questions_sweeps_only_past_deadlines(admin_ctx, make_group, db_session):
    group, _members = make_group(2)
    expired = questions.create_question(
        admin_ctx, group.id, "Expired", deadline=utc_now() + timedelta(hours=1)
    )
    future = questions.create_question(
        admin_ctx, group.id, "Future", deadline=utc_now() + timedelta(days=3)
    )
    no_deadline = questions.create_question(admin_ctx, group.id, "Open ended")

    closed = questions.close_expired_questions(
        admin_ctx, now=utc_now() + timedelta(hours=2)
    )

    assert [q.id for q in closed] == [expired.id]
    assert db_session.get(Question, expired.id).completion_method == "deadline"
    assert db_session.get(Question, future.id).status == "open"
    assert db_session.get(Question, no_deadline.id).status == "open"


def test_threshold_close_can_be_disabled(app, admin_ctx, ctx_for, make_group, db_session):
    app.config["AUTO_CLOSE_ON_THRESHOLD"] = False
    group, members = make_group(2)
    question = questions.create_question(admin_ctx, group.id, "Solar panels")

    for member in members:
        questions.cast_vote(ctx_for(member), question.id, "yes")

    db_session.refresh(question)
    assert question.status == "open"
    assert question.decided_result == "approved"


def test_only_group_members_can_vote(admin_ctx, ctx_for, make_group, make_user):
    group, _members = make_group(2)
    outsider = make_user()
    question = questions.create_question(admin_ctx, group.id, "Hedge trimming")

    with pytest.raises(NotAMember):
        questions.cast_vote(ctx_for(outsider), question.id, "yes")


def test_invalid_vote_payloads(admin_ctx, ctx_for, make_group):
    group, members = make_group(2)
    question = questions.create_question(admin_ctx, group.id, "Doorbell")
    poll = questions.create_poll(admin_ctx, group.id, "Colour", ["Red", "Blue"])
    voter = ctx_for(members[0])

    with pytest.raises(ValidationError):
        questions.cast_vote(voter, question.id, "maybe")
    with pytest.raises(ValidationError):
        questions.cast_vote(voter, poll.id, "yes")
    with pytest.raises(ValidationError):
        questions.cast_poll_vote(voter, question.id, 1)
    with pytest.raises(NotFound):
        questions.cast_poll_vote(voter, poll.id, 987654)
    with pytest.raises(ValidationError):
        questions.cast_multi_poll_vote(voter, poll.id, [poll.options[0].id])
    with pytest.raises(NotFound):
        questions.cast_vote(voter, 987654, "yes")


def test_create_validation(admin_ctx, make_group):
    group, _members = make_group(1)

    with pytest.raises(ValidationError):
        questions.create_question(admin_ctx, group.id, "  ")
    with pytest.raises(ValidationError):
        questions.create_question(
            admin_ctx, group.id, "Past", deadline=utc_now() - timedelta(days=1)
        )
    with pytest.raises(ValidationError):
        questions.create_question(admin_ctx, group.id, "Bad date", deadline="tomorrow")
    with pytest.raises(ValidationError):
        questions.create_poll(admin_ctx, group.id, "One option", ["Only"])
    with pytest.raises(ValidationError):
        questions.create_poll(admin_ctx, group.id, "Blank options", ["Yes", "  "])
    with pytest.raises(NotFound):
        questions.create_question(admin_ctx, 9999, "No group")


def test_poll_options_keep_declared_order(admin_ctx, make_group):
    group, _members = make_group(1)
    poll = questions.create_poll(
        admin_ctx,
        group.id,
        "Venue choice",
        ["Hall", {"label": "Garden", "description": "Weather permitting"}, "Roof"],
    )

    assert [(o.label, o.sort_order) for o in poll.options] == [
        ("Hall", 0),
        ("Garden", 1),
        ("Roof", 2),
    ]
    assert poll.options[1].description == "Weather permitting"


def test_venue_scenario(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(8)
    poll = questions.create_poll(admin_ctx, group.id, "Venue choice", ["Hall", "Garden", "Roof"])
    hall, garden, roof = poll.options

    for member in members[:4]:
        questions.cast_poll_vote(ctx_for(member), poll.id, hall.id)
    for member in members[4:6]:
        questions.cast_poll_vote(ctx_for(member), poll.id, garden.id)

    db_session.refresh(poll)
    assert poll.winning_option_id == hall.id

    questions.close_question(admin_ctx, poll.id)
    view = questions.fetch_question_with_tally(admin_ctx, poll.id)

    assert view.question.winning_option_id == hall.id
    assert view.question.decided_result is None
    assert [(r.label, r.percent) for r in view.tally.option_results] == [
        ("Hall", 67),
        ("Garden", 33),
        ("Roof", 0),
    ]
    assert view.tally.total_voters == 6
    assert roof.id not in {b.poll_option_id for b in view.ballots}


def test_single_select_resubmission_replaces_choice(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(3)
    poll = questions.create_poll(admin_ctx, group.id, "Colour", ["Red", "Blue"])
    red, blue = poll.options
    voter = ctx_for(members[0])

    questions.cast_poll_vote(voter, poll.id, red.id)
    questions.cast_poll_vote(voter, poll.id, blue.id)

    assert [b.poll_option_id for b in _ballots(db_session, poll.id, members[0].id)] == [blue.id]


def test_multi_select_resubmission_replaces_whole_set(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(3)
    poll = questions.create_poll(
        admin_ctx, group.id, "Amenities", ["A", "B", "C"], allow_multiple=True
    )
    a, b, c = poll.options
    voter = ctx_for(members[0])

    questions.cast_multi_poll_vote(voter, poll.id, [a.id, b.id, a.id])
    assert {x.poll_option_id for x in _ballots(db_session, poll.id, members[0].id)} == {
        a.id,
        b.id,
    }

    questions.cast_multi_poll_vote(voter, poll.id, [c.id])
    ballots = _ballots(db_session, poll.id, members[0].id)
    assert [x.poll_option_id for x in ballots] == [c.id]

    with pytest.raises(ValidationError):
        questions.cast_multi_poll_vote(voter, poll.id, [])


def test_multi_select_threshold_counts_voters_not_ballots(
    admin_ctx, ctx_for, make_group, db_session
):
    group, members = make_group(2)
    poll = questions.create_poll(
        admin_ctx, group.id, "Amenities", ["A", "B", "C"], allow_multiple=True
    )
    a, b, c = poll.options

    questions.cast_multi_poll_vote(ctx_for(members[0]), poll.id, [a.id, b.id])
    db_session.refresh(poll)
    assert poll.status == "open"

    questions.cast_poll_vote(ctx_for(members[1]), poll.id, b.id)
    db_session.refresh(poll)
    assert poll.status == "completed"
    assert poll.completion_method == "threshold"
    assert poll.winning_option_id == b.id


def test_edits_allowed_until_first_ballot(admin_ctx, ctx_for, make_group):
    group, members = make_group(3)
    question = questions.create_question(admin_ctx, group.id, "Draft title")
    poll = questions.create_poll(admin_ctx, group.id, "Venue", ["Hall", "Garden"])

    updated = questions.update_question(
        admin_ctx, question.id, title="Final title", description="Details"
    )
    assert (updated.title, updated.description) == ("Final title", "Details")

    questions.update_poll_options(admin_ctx, poll.id, ["Hall", "Roof", "Cellar"])
    assert [o.label for o in poll.options] == ["Hall", "Roof", "Cellar"]

    questions.cast_vote(ctx_for(members[0]), question.id, "yes")
    questions.cast_poll_vote(ctx_for(members[0]), poll.id, poll.options[0].id)

    with pytest.raises(QuestionLocked):
        questions.update_question(admin_ctx, question.id, title="Sneaky change")
    with pytest.raises(QuestionLocked):
        questions.update_question(admin_ctx, poll.id, description="Sneaky")
    with pytest.raises(QuestionLocked):
        questions.update_poll_options(admin_ctx, poll.id, ["Hall", "Garden"])


def test_invalid_update_leaves_question_untouched(admin_ctx, make_group, db_session):
    group, _members = make_group(1)
    question = questions.create_question(admin_ctx, group.id, "Original")

    with pytest.raises(ValidationError):
        questions.update_question(
            admin_ctx, question.id, title="Changed", deadline=utc_now() - timedelta(days=1)
        )
    db_session.commit()
    db_session.refresh(question)
    assert question.title == "Original"


def test_update_options_rejects_standard_question(admin_ctx, make_group):
    group, _members = make_group(1)
    question = questions.create_question(admin_ctx, group.id, "Plain")
    with pytest.raises(ValidationError):
        questions.update_poll_options(admin_ctx, question.id, ["A", "B"])


def test_delete_cascades_to_ballots_and_options(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(3)
    poll = questions.create_poll(admin_ctx, group.id, "Venue", ["Hall", "Garden"])
    questions.cast_poll_vote(ctx_for(members[0]), poll.id, poll.options[0].id)
    questions.close_question(admin_ctx, poll.id)
    poll_id = poll.id

    questions.delete_question(admin_ctx, poll_id)

    assert db_session.get(Question, poll_id) is None
    assert db_session.query(Vote).filter_by(question_id=poll_id).count() == 0
    assert db_session.query(PollOption).filter_by(question_id=poll_id).count() == 0
    with pytest.raises(NotFound):
        questions.fetch_question_with_tally(admin_ctx, poll_id)


def test_removed_member_ballots_stay_in_history(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(4)
    question = questions.create_question(admin_ctx, group.id, "Hallway lights")
    questions.cast_vote(ctx_for(members[0]), question.id, "yes")

    membership.remove_member(admin_ctx, group.id, members[0].id)

    view = questions.fetch_question_with_tally(admin_ctx, question.id)
    assert view.required_votes == 3
    assert view.tally.yes == 1


def test_removing_a_non_voter_completes_question_at_quorum(
    admin_ctx, ctx_for, make_group, db_session
):
    group, members = make_group(4)
    question = questions.create_question(admin_ctx, group.id, "Bike shed")
    for member, vote in zip(members, ["yes", "yes", "no"]):
        questions.cast_vote(ctx_for(member), question.id, vote)

    db_session.refresh(question)
    assert question.status == "open"
    assert question.decided_result is None

    closed = []

    def receiver(sender, **extra):
        closed.append((extra["question_id"], extra["method"]))

    with events.question_closed.connected_to(receiver):
        membership.remove_member(admin_ctx, group.id, members[3].id)

    db_session.refresh(question)
    assert question.status == "completed"
    assert question.completion_method == "threshold"
    assert question.decided_result == "approved"
    assert closed == [(question.id, "threshold")]


def test_adding_a_member_refreshes_the_live_result(
    app, admin_ctx, ctx_for, make_group, make_user, db_session
):
    app.config["AUTO_CLOSE_ON_THRESHOLD"] = False
    group, members = make_group(3)
    question = questions.create_question(admin_ctx, group.id, "Window cleaning")
    for member, vote in zip(members, ["yes", "yes", "no"]):
        questions.cast_vote(ctx_for(member), question.id, vote)

    db_session.refresh(question)
    assert question.decided_result == "approved"

    membership.add_member(admin_ctx, group.id, make_user().id)

    db_session.refresh(question)
    assert question.status == "open"
    assert question.decided_result is None


def test_racing_casts_keep_one_ballot(
    admin_ctx, ctx_for, make_group, db_session, monkeypatch
):
    group, members = make_group(3)
    question = questions.create_question(admin_ctx, group.id, "Parking rules")
    question_id = question.id
    voter_id, voter_email = members[0].id, members[0].email
    voter = ctx_for(members[0])
    read_ballots = BallotStore.list_voter_ballots
    raced = []

    def read_then_lose_race(self, question_id, user_id):
        seen = read_ballots(self, question_id, user_id)
        if not raced:
            raced.append(True)
            # End this reader's transaction so the other writer can commit
            # under SQLite's file lock, then let it win.
            self.session.commit()
            with Session(db.engine) as other_session:
                other = VotingContext(other_session, Identity(voter_id, voter_email))
                questions.cast_vote(other, question_id, "no")
        return seen

    monkeypatch.setattr(BallotStore, "list_voter_ballots", read_then_lose_race)

    with pytest.raises(DuplicateVote):
        questions.cast_vote(voter, question_id, "yes")

    assert [b.vote for b in _ballots(db_session, question_id, voter_id)] == ["no"]


def test_non_text_input_is_a_validation_error(admin_ctx, make_group):
    group, _members = make_group(1)

    with pytest.raises(ValidationError):
        questions.create_question(admin_ctx, group.id, 5)
    with pytest.raises(ValidationError):
        questions.create_poll(admin_ctx, group.id, "Numbers", [1, 2])
    with pytest.raises(ValidationError):
        questions.create_poll(admin_ctx, group.id, "Not a list", "Hall, Garden")
    with pytest.raises(ValidationError):
        questions.create_poll(
            admin_ctx, group.id, "Flag", ["Hall", "Garden"], allow_multiple="false"
        )
    with pytest.raises(ValidationError):
        membership.create_group(admin_ctx, ["Board"])

    question = questions.create_question(admin_ctx, group.id, "Valid")
    with pytest.raises(ValidationError):
        questions.update_question(admin_ctx, question.id, description=5)


def test_question_view_lists_who_voted_what(admin_ctx, ctx_for, make_group):
    group, members = make_group(3)
    question = questions.create_question(admin_ctx, group.id, "Lobby paint")
    questions.cast_vote(ctx_for(members[0]), question.id, "yes")
    questions.cast_vote(ctx_for(members[1]), question.id, "no")

    voters = questions.fetch_question_with_tally(admin_ctx, question.id).to_dict()["voters"]

    assert [(v["user_id"], v["vote"]) for v in voters] == [
        (members[0].id, "yes"),
        (members[1].id, "no"),
    ]
    assert voters[0]["display_name"] == members[0].display_name


def test_vote_history_is_newest_first(admin_ctx, ctx_for, make_group):
    group, members = make_group(3)
    first = questions.create_question(admin_ctx, group.id, "First")
    second = questions.create_poll(admin_ctx, group.id, "Second", ["A", "B"])
    voter = ctx_for(members[0])

    questions.cast_vote(voter, first.id, "yes")
    questions.cast_poll_vote(voter, second.id, second.options[1].id)

    history = questions.get_vote_history(voter)
    assert [b.question_id for b in history] == [second.id, first.id]
    assert questions.get_vote_history(ctx_for(members[1])) == []


def test_list_questions_and_user_ballots(admin_ctx, ctx_for, make_group):
    group, members = make_group(3)
    first = questions.create_question(admin_ctx, group.id, "First")
    second = questions.create_question(admin_ctx, group.id, "Second")
    questions.close_question(admin_ctx, first.id)
    questions.cast_vote(ctx_for(members[1]), second.id, "abstain")

    open_views = questions.list_questions(admin_ctx, status="open")
    assert [view.question.id for view in open_views] == [second.id]
    assert len(questions.list_questions(admin_ctx, group_id=group.id)) == 2

    mine = questions.get_user_ballots(ctx_for(members[1]), second.id)
    assert [b.vote for b in mine] == ["abstain"]
    assert questions.get_user_ballots(ctx_for(members[0]), second.id) == []


def test_events_fire_after_commit(admin_ctx, ctx_for, make_group):
    group, members = make_group(1)
    received = []

    def record(name):
        def receiver(sender, **extra):
            received.append((name, extra.get("question_id"), extra.get("method")))

        return receiver

    created, cast, closed = record("created"), record("cast"), record("closed")
    with events.question_created.connected_to(created), events.ballot_cast.connected_to(
        cast
    ), events.question_closed.connected_to(closed):
        question = questions.create_question(admin_ctx, group.id, "Events")
        questions.cast_vote(ctx_for(members[0]), question.id, "yes")

    assert received == [
        ("created", question.id, None),
        ("cast", question.id, None),
        ("closed", question.id, "threshold"),
    ]


def test_completion_event_carries_final_tally(admin_ctx, ctx_for, make_group):
    group, members = make_group(3)
    question = questions.create_question(admin_ctx, group.id, "Tally payload")
    questions.cast_vote(ctx_for(members[0]), question.id, "yes")
    payloads = []

    def receiver(sender, **extra):
        payloads.append(extra["tally"])

    with events.question_closed.connected_to(receiver):
        questions.close_question(admin_ctx, question.id)

    assert payloads[0]["yes"] == 1
    assert payloads[0]["result"] == "approved"


def test_members_are_notified_on_open_and_close(admin_ctx, make_group, db_session):
    group, members = make_group(2)
    question = questions.create_question(admin_ctx, group.id, "Garden party")
    questions.close_question(admin_ctx, question.id)

    rows = (
        db_session.query(Notification)
        .filter_by(question_id=question.id)
        .order_by(Notification.id)
        .all()
    )
    assert [(n.type, n.user_id) for n in rows] == [
        ("new_question", members[0].id),
        ("new_question", members[1].id),
        ("question_completed", members[0].id),
        ("question_completed", members[1].id),
    ]
    assert rows[-1].message.startswith("Voting has ended: No majority.")


def test_lifecycle_is_audited(admin_ctx, ctx_for, make_group, db_session):
    group, members = make_group(3)
    question = questions.create_question(admin_ctx, group.id, "Audit me")
    questions.close_question(admin_ctx, question.id, method="manual")

    actions = [
        row.action
        for row in db_session.query(ActivityLog)
        .filter_by(entity_type="question", entity_id=question.id)
        .order_by(ActivityLog.id)
    ]
    assert actions == ["question_created", "question_closed"]
