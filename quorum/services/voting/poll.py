from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class OptionResult:
    option_id: int
    label: str
    count: int
    percent: int
    rank: int

    def to_dict(self):
        return {
            "option_id": self.option_id,
            "label": self.label,
            "count": self.count,
            "percent": self.percent,
            "rank": self.rank,
        }


@dataclass
class PollTally:
    allow_multiple: bool
    total_votes: int
    total_voters: int
    option_results: List[OptionResult] = field(default_factory=list)
    winner_id: Optional[int] = None
    is_tie: bool = False
    recorded_winner_id: Optional[int] = None

    @property
    def winner(self):
        for row in self.option_results:
            if row.option_id == self.winner_id:
                return row
        return None

    def to_dict(self):
        return {
            "allow_multiple": self.allow_multiple,
            "total_votes": self.total_votes,
            "total_voters": self.total_voters,
            "option_results": [row.to_dict() for row in self.option_results],
            "winner_id": self.winner_id,
            "is_tie": self.is_tie,
            "recorded_winner_id": self.recorded_winner_id,
        }


def percent_half_up(count, total):
    """Integer percentage rounded half up; 0 when nothing was cast."""
    if total <= 0:
        return 0
    return (200 * count + total) // (2 * total)


def tally_poll(options, ballots, allow_multiple=False, winning_option_id=None):
    ordered = sorted(options, key=lambda option: (option.sort_order, option.id))
    option_counts = {option.id: 0 for option in ordered}
    voters = set()
    total_votes = 0

    for ballot in ballots:
        option_id = getattr(ballot, "poll_option_id", None)
        if option_id is None:
            continue
        total_votes += 1
        voters.add(ballot.user_id)
        if option_id in option_counts:
            option_counts[option_id] += 1

    # sorted() is stable, so equal counts keep declaration order.
    ranked = sorted(ordered, key=lambda option: -option_counts[option.id])

    option_results = []
    for position, option in enumerate(ranked, start=1):
        count = option_counts[option.id]
        option_results.append(
            OptionResult(
                option_id=option.id,
                label=option.label,
                count=count,
                percent=percent_half_up(count, total_votes),
                rank=position,
            )
        )

    winner_id = None
    is_tie = False
    if total_votes > 0 and option_results:
        top_count = option_results[0].count
        winner_id = option_results[0].option_id
        is_tie = sum(1 for row in option_results if row.count == top_count) > 1

    return PollTally(
        allow_multiple=allow_multiple,
        total_votes=total_votes,
        total_voters=len(voters),
        option_results=option_results,
        winner_id=winner_id,
        is_tie=is_tie,
        recorded_winner_id=winning_option_id,
    )
