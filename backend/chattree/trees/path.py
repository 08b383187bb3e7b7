"""Generation context: the linear chain of messages a model conditions on."""

from enum import StrEnum

from chattree.models import Conversation, Message
from chattree.trees.tree import StructuralError, linearize


class ContextMode(StrEnum):
    CONTINUE = "continue"  # include the target; the model extends its content
    EXCLUDE_TARGET = "exclude_target"  # the target is the empty message being written


def build_context(
    conv: Conversation,
    target_id: str,
    mode: ContextMode = ContextMode.EXCLUDE_TARGET,
) -> list[Message]:
    """Return the root-first context for generating into ``target_id``.

    Raises EmptyContextError if nothing would be left to condition on.
    """
    path = linearize(conv, target_id)
    if mode is ContextMode.EXCLUDE_TARGET:
        path = path[:-1]
    if not path:
        raise EmptyContextError(target_id)
    return path


class EmptyContextError(StructuralError):
    def __init__(self, target_id: str) -> None:
        self.target_id = target_id
        super().__init__(f"Empty generation context for message: {target_id}")
