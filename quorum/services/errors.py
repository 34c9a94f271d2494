class QuorumError(Exception):
    """Base for every failure a command can surface to its caller."""

    status_code = 400
    kind = "error"
    default_message = "The request could not be completed."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {"ok": False, "error": self.message, "kind": self.kind}


class ValidationError(QuorumError):
    kind = "validation_error"
    default_message = "Invalid input."


class NotFound(QuorumError):
    status_code = 404
    kind = "not_found"
    default_message = "Not found."


class DuplicateVote(QuorumError):
    status_code = 409
    kind = "duplicate_vote"
    default_message = "You already voted on this question."


class QuestionLocked(QuorumError):
    status_code = 409
    kind = "question_locked"
    default_message = "This question cannot be edited once voting has started."


class AlreadyCompleted(QuestionLocked):
    kind = "already_completed"
    default_message = "Voting on this question has been completed."


class DuplicateMember(QuorumError):
    status_code = 409
    kind = "duplicate_member"
    default_message = "This user is already a member of the group."


class NotAMember(QuorumError):
    status_code = 403
    kind = "not_a_member"
    default_message = "Only members of this group can vote on this question."


class TransportError(QuorumError):
    """The store could not be reached. Callers may retry."""

    status_code = 503
    kind = "transport_error"
    default_message = "The database is unavailable. Please try again."
    retryable = True
