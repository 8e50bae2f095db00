"""Conversation lifecycle: state machine, service facade, background queue."""

from chatloop.conversation.conversable import Conversable, SimpleConversable
from chatloop.conversation.queue import TurnQueue
from chatloop.conversation.service import ConversationService
from chatloop.conversation.state import ConversationStateMachine

__all__ = [
    "Conversable",
    "ConversationService",
    "ConversationStateMachine",
    "SimpleConversable",
    "TurnQueue",
]
