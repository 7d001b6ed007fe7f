"""Builds the message sequence sent upstream for one conversation.

The system instruction is a constant. Each call to
:meth:`ConversationWindowBuilder.stage` returns a new list, so nothing staged
for one request is visible to another and concurrent requests need no lock.
"""

from collections.abc import Sequence

from app.conversation.prompts import SYSTEM_INSTRUCTION
from app.models.recommendations import Message

SYSTEM_MESSAGE = Message(role="system", content=SYSTEM_INSTRUCTION)


class ConversationWindowBuilder:
    def __init__(self, system_message: Message = SYSTEM_MESSAGE):
        self._system_message = system_message

    @property
    def system_message(self) -> Message:
        return self._system_message

    def stage(self, history: Sequence[Message]) -> list[Message]:
        """Return ``[system] + history`` as a fresh list.

        Copies of the system instruction echoed back by a client are dropped
        so the instruction is sent exactly once, at index 0.
        """
        staged = [self._system_message]
        staged.extend(message for message in history if message != self._system_message)
        return staged
