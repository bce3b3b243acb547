"""Session layer: handshake, read loop, history paging and supervision."""

from hipchat.session.channel import Channel
from hipchat.session.dispatcher import EventDispatcher, MentionDirectory, PendingReplies
from hipchat.session.history import HistoryAggregator
from hipchat.session.negotiator import AuthNegotiator, NegotiationState, SessionIdentity
from hipchat.session.supervisor import SessionSupervisor

__all__ = [
    "AuthNegotiator",
    "Channel",
    "EventDispatcher",
    "HistoryAggregator",
    "MentionDirectory",
    "NegotiationState",
    "PendingReplies",
    "SessionIdentity",
    "SessionSupervisor",
]
