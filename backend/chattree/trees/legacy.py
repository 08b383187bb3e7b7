"""One-time conversion of flat (pre-tree) conversations.

Older conversations were a plain list with no ancestry. They become a straight
line under a root system message that carries the conversation preprompt.
"""

from chattree.models import Conversation, Message
from chattree.trees.tree import rebuild_children, validate_tree


def is_legacy(conv: Conversation) -> bool:
    return conv.root_message_id is None and bool(conv.messages)


def convert_legacy_conversation(conv: Conversation) -> Conversation:
    """Return a tree-shaped copy of ``conv``. Tree conversations are returned as-is."""
    if not is_legacy(conv):
        return conv

    root = Message(role="system", content=conv.preprompt or "")
    flat = [root, *(m.model_copy(deep=True) for m in conv.messages)]
    for index, message in enumerate(flat):
        message.ancestors = [m.id for m in flat[:index]]

    converted = conv.model_copy(update={"messages": flat, "root_message_id": root.id})
    rebuild_children(converted)
    validate_tree(converted)
    return converted
