"""Ballot persistence.

The unique constraint on (question_id, user_id, choice_key) is the only
serialization point between concurrent voters: of two racing inserts for
the same slot exactly one commits and the other becomes DuplicateVote.
"""
from quorum.models import Vote
from quorum.services.errors import ValidationError
from quorum.utils import utc_now


def choice_key_for(question, poll_option_id=None):
    if question.is_poll and question.allow_multiple:
        return poll_option_id
    return 0


class BallotStore:
    def __init__(self, session):
        self.session = session

    def list_ballots(self, question_id):
        return (
            self.session.query(Vote)
            .filter_by(question_id=question_id)
            .order_by(Vote.created_at, Vote.id)
            .all()
        )

    def list_voter_ballots(self, question_id, user_id):
        return (
            self.session.query(Vote)
            .filter_by(question_id=question_id, user_id=user_id)
            .order_by(Vote.id)
            .all()
        )

    def list_user_ballots(self, user_id):
        return (
            self.session.query(Vote)
            .filter_by(user_id=user_id)
            .order_by(Vote.created_at.desc(), Vote.id.desc())
            .all()
        )

    def has_ballots(self, question_id):
        return (
            self.session.query(Vote.id).filter_by(question_id=question_id).first()
            is not None
        )

    def insert_ballot(self, question, user_id, vote=None, poll_option_id=None):
        """Stage one ballot. The conflict, if any, surfaces at flush/commit."""
        if (vote is None) == (poll_option_id is None):
            raise ValidationError("A ballot carries either a vote or a poll option.")

        ballot = Vote(
            question_id=question.id,
            user_id=user_id,
            vote=vote,
            poll_option_id=poll_option_id,
            choice_key=choice_key_for(question, poll_option_id),
        )
        self.session.add(ballot)
        return ballot

    def delete_ballots_for_voter(self, question_id, user_id):
        return (
            self.session.query(Vote)
            .filter_by(question_id=question_id, user_id=user_id)
            .delete(synchronize_session=False)
        )

    def upsert_single_ballot(self, question, user_id, vote=None, poll_option_id=None):
        """Replace the voter's one ballot in place, or insert the first one."""
        existing = self.list_voter_ballots(question.id, user_id)
        if len(existing) == 1:
            ballot = existing[0]
            ballot.vote = vote
            ballot.poll_option_id = poll_option_id
            ballot.updated_at = utc_now()
            return ballot
        if existing:
            self.delete_ballots_for_voter(question.id, user_id)
        return self.insert_ballot(
            question, user_id, vote=vote, poll_option_id=poll_option_id
        )

    def replace_ballots(self, question, user_id, poll_option_ids):
        """Swap a voter's whole option set inside one SAVEPOINT.

        Readers see either the old set or the new one. A failing insert
        rolls the delete back with it.
        """
        with self.session.begin_nested():
            self.delete_ballots_for_voter(question.id, user_id)
            ballots = [
                self.insert_ballot(question, user_id, poll_option_id=option_id)
                for option_id in poll_option_ids
            ]
            self.session.flush()
        return ballots
