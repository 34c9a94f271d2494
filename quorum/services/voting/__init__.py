from quorum.services.voting.poll import PollTally, percent_half_up, tally_poll
from quorum.services.voting.standard import (
    StandardTally,
    decide_result,
    early_decision,
    tally_standard,
)

__all__ = [
    "PollTally",
    "StandardTally",
    "decide_result",
    "early_decision",
    "percent_half_up",
    "tally_poll",
    "tally_standard",
]
