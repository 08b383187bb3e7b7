"""Turn a generation request into tree edits plus a write target.

There are three kinds of request: a new message, a retry (which is either an
edit of a user message or a fresh answer for an assistant message), and a
continue. Retrying never rewrites history: it adds a sibling and, for edits,
a fresh empty assistant child under that sibling.
"""

from dataclasses import dataclass

from chattree.models import Conversation, Message
from chattree.trees.path import ContextMode, build_context
from chattree.trees.tree import (
    InvalidOperationError,
    add_sibling,
    append_child,
    get_message,
    has_message,
    is_leaf,
)


@dataclass
class GenerationPlan:
    target_id: str
    context: list[Message]
    is_continue: bool = False


def plan_new_message(
    conv: Conversation,
    content: str,
    *,
    parent_id: str | None = None,
    files: list[str] | None = None,
) -> GenerationPlan:
    """Append a user message and an empty assistant reply to write into.

    The first message of a conversation is preceded by a system root holding
    the preprompt, so the first user turn can be edited like any other.
    """
    if conv.messages and parent_id is not None and not has_message(conv, parent_id):
        raise InvalidOperationError(f"Parent message does not exist: {parent_id}")

    if not conv.messages:
        parent_id = append_child(conv, Message(role="system", content=conv.preprompt or ""))

    user_id = append_child(
        conv,
        Message(role="user", content=content, files=list(files or [])),
        parent_id,
    )
    target_id = append_child(conv, Message(role="assistant"), user_id)
    return GenerationPlan(
        target_id=target_id,
        context=build_context(conv, target_id, ContextMode.EXCLUDE_TARGET),
    )


def plan_retry(
    conv: Conversation,
    message_id: str,
    *,
    new_prompt: str | None = None,
    files: list[str] | None = None,
) -> GenerationPlan:
    """Branch at ``message_id``.

    A user message with a new prompt gets an edited sibling and an empty
    assistant child. An assistant message gets an empty sibling, so the
    context is everything before it.
    """
    message = get_message(conv, message_id)

    if message.role == "user" and new_prompt:
        if not message.ancestors:
            raise InvalidOperationError("Cannot edit the root message")
        user_id = add_sibling(conv, message_id, Message(role="user", content=new_prompt))
        target_id = append_child(
            conv, Message(role="assistant", files=list(files or [])), user_id
        )
    elif message.role == "assistant":
        if not message.ancestors:
            raise InvalidOperationError("Cannot retry the root message")
        target_id = add_sibling(conv, message_id, Message(role="assistant"))
    else:
        raise InvalidOperationError(
            f"Cannot retry a {message.role} message"
            + ("" if new_prompt else " without a new prompt")
        )

    return GenerationPlan(
        target_id=target_id,
        context=build_context(conv, target_id, ContextMode.EXCLUDE_TARGET),
    )


def plan_continue(conv: Conversation, message_id: str) -> GenerationPlan:
    """Keep writing into an existing leaf message."""
    message = get_message(conv, message_id)
    if not is_leaf(conv, message_id):
        raise InvalidOperationError("Can only continue the last message")
    if message.role != "assistant":
        raise InvalidOperationError(f"Cannot continue a {message.role} message")
    return GenerationPlan(
        target_id=message_id,
        context=build_context(conv, message_id, ContextMode.CONTINUE),
        is_continue=True,
    )
