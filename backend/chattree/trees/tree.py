"""Message tree operations over a conversation's messages.

Every message stores its full ancestor chain (root first). The chain is the
structural truth: children lists are a cache derived from it, and the path
from the root to any message is read straight off ``ancestors``.

All operations validate before they mutate, so a raised error leaves the
conversation untouched.
"""

from chattree.models import Conversation, Message


def get_message(conv: Conversation, message_id: str) -> Message:
    """Return the message with this id. Raises MessageNotFoundError."""
    for message in conv.messages:
        if message.id == message_id:
            return message
    raise MessageNotFoundError(message_id)


def has_message(conv: Conversation, message_id: str) -> bool:
    return any(m.id == message_id for m in conv.messages)


def append_child(
    conv: Conversation,
    message: Message,
    parent_id: str | None = None,
) -> str:
    """Add ``message`` as a child of ``parent_id`` and return its id.

    On an empty conversation the parent is ignored and the message becomes
    the root. On a non-empty one a missing ``parent_id`` targets the most
    recently added message.
    """
    if has_message(conv, message.id):
        raise StructuralError(f"Duplicate message id: {message.id}")

    if not conv.messages:
        message.ancestors = []
        message.children = []
        conv.messages.append(message)
        conv.root_message_id = message.id
        return message.id

    if conv.root_message_id is None:
        raise StructuralError(
            "Conversation has messages but no root; convert it before appending"
        )

    if parent_id is None:
        parent_id = conv.messages[-1].id
    try:
        parent = get_message(conv, parent_id)
    except MessageNotFoundError:
        raise InvalidOperationError(f"Parent message does not exist: {parent_id}")

    message.ancestors = [*parent.ancestors, parent.id]
    message.children = []
    conv.messages.append(message)
    parent.children.append(message.id)
    return message.id


def add_sibling(conv: Conversation, target_id: str, message: Message) -> str:
    """Add ``message`` next to ``target_id`` under the same parent. Returns its id."""
    target = get_message(conv, target_id)
    if not target.ancestors:
        raise InvalidOperationError("Cannot add a sibling to the root message")
    if has_message(conv, message.id):
        raise StructuralError(f"Duplicate message id: {message.id}")
    parent = get_message(conv, target.ancestors[-1])

    message.ancestors = list(target.ancestors)
    message.children = []
    conv.messages.append(message)
    parent.children.append(message.id)
    return message.id


def linearize(conv: Conversation, target_id: str) -> list[Message]:
    """Return the path root -> target (inclusive) in root-first order.

    Raises MessageNotFoundError if the target is absent and StructuralError
    if the ancestor chain is broken or repeats an id.
    """
    by_id = {m.id: m for m in conv.messages}
    target = by_id.get(target_id)
    if target is None:
        raise MessageNotFoundError(target_id)

    path: list[Message] = []
    seen: set[str] = set()
    for ancestor_id in [*target.ancestors, target.id]:
        if ancestor_id in seen:
            raise StructuralError(f"Cycle detected at message: {ancestor_id}")
        seen.add(ancestor_id)
        ancestor = by_id.get(ancestor_id)
        if ancestor is None:
            raise StructuralError(
                f"Broken chain: ancestor {ancestor_id} of {target_id} not found"
            )
        path.append(ancestor)
    return path


def children_of(conv: Conversation, message_id: str) -> list[Message]:
    """Messages whose immediate parent is ``message_id``, in creation order."""
    get_message(conv, message_id)
    return [
        m for m in conv.messages if m.ancestors and m.ancestors[-1] == message_id
    ]


def is_leaf(conv: Conversation, message_id: str) -> bool:
    return not children_of(conv, message_id)


def validate_tree(conv: Conversation) -> None:
    """Check the structural invariants. Raises StructuralError on the first violation."""
    if not conv.messages:
        return

    by_id: dict[str, Message] = {}
    for message in conv.messages:
        if message.id in by_id:
            raise StructuralError(f"Duplicate message id: {message.id}")
        by_id[message.id] = message

    roots = [m for m in conv.messages if not m.ancestors]
    if len(roots) != 1:
        raise StructuralError(f"Expected exactly one root, found {len(roots)}")
    if conv.root_message_id != roots[0].id:
        raise StructuralError("root_message_id does not match the root message")

    for message in conv.messages:
        if not message.ancestors:
            continue
        if len(set(message.ancestors)) != len(message.ancestors) or (
            message.id in message.ancestors
        ):
            raise StructuralError(f"Cycle in ancestors of message: {message.id}")
        parent = by_id.get(message.ancestors[-1])
        if parent is None:
            raise StructuralError(f"Parent of {message.id} not found")
        if message.ancestors != [*parent.ancestors, parent.id]:
            raise StructuralError(
                f"Ancestors of {message.id} disagree with its parent's chain"
            )


def rebuild_children(conv: Conversation) -> None:
    """Recompute every children cache from the ancestor chains."""
    by_id = {m.id: m for m in conv.messages}
    for message in conv.messages:
        message.children = []
    for message in conv.messages:
        if message.ancestors:
            parent = by_id.get(message.ancestors[-1])
            if parent is not None:
                parent.children.append(message.id)


class TreeError(Exception):
    pass


class StructuralError(TreeError):
    """The tree violates its own invariants. Never repaired silently."""


class MessageNotFoundError(TreeError):
    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")


class InvalidOperationError(TreeError):
    pass
