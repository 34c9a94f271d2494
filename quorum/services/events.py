"""Domain events for cache invalidation and side channels.

Transports (websocket, SSE, email) subscribe to these signals; the core
only sends them after the owning transaction has committed.
"""
from blinker import Namespace

_signals = Namespace()

question_created = _signals.signal("question-created")
question_updated = _signals.signal("question-updated")
question_closed = _signals.signal("question-closed")
question_deleted = _signals.signal("question-deleted")
ballot_cast = _signals.signal("ballot-cast")
membership_changed = _signals.signal("membership-changed")
