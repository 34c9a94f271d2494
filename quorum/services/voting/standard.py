from dataclasses import asdict, dataclass
from typing import Optional


@dataclass
class StandardTally:
    yes: int
    no: int
    abstain: int
    total_votes: int
    required_votes: Optional[int]
    result: str
    early_result: Optional[str]

    @property
    def outstanding(self):
        if self.required_votes is None:
            return None
        return max(self.required_votes - self.total_votes, 0)

    def to_dict(self):
        data = asdict(self)
        data["outstanding"] = self.outstanding
        return data


def decide_result(yes_votes, no_votes):
    # Abstentions never take part in the comparison.
    if yes_votes > no_votes:
        return "approved"
    if no_votes > yes_votes:
        return "rejected"
    return "no_majority"


def early_decision(yes_votes, no_votes, total_votes, required_votes):
    """Result that new ballots can no longer overturn, if there is one."""
    if not required_votes:
        return None
    outstanding = max(required_votes - total_votes, 0)
    if yes_votes > no_votes + outstanding:
        return "approved"
    if no_votes > yes_votes + outstanding:
        return "rejected"
    return None


def tally_standard(ballots, required_votes=None):
    counts = {"yes": 0, "no": 0, "abstain": 0}

    for ballot in ballots:
        choice = getattr(ballot, "vote", None)
        if choice in counts:
            counts[choice] += 1

    total_votes = sum(counts.values())

    return StandardTally(
        yes=counts["yes"],
        no=counts["no"],
        abstain=counts["abstain"],
        total_votes=total_votes,
        required_votes=required_votes,
        result=decide_result(counts["yes"], counts["no"]),
        early_result=early_decision(
            counts["yes"], counts["no"], total_votes, required_votes
        ),
    )
