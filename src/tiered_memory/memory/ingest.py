"""
Raw block normalization for ingestion.

Turns user messages and tool outputs (plain strings, mappings or LangChain
messages) into uniform block dicts the tier manager can turn into items.
Thinking/reasoning blocks are stripped: they never enter working memory.
"""

from typing import Any, Optional

from langchain_core.messages import BaseMessage, HumanMessage, ToolMessage


def message_text(msg) -> str:
    """Flatten a message's content to text, skipping thinking/reasoning blocks."""
    content = getattr(msg, "content", "")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict):
                btype = block.get("type", "")
                if btype in ("thinking", "reasoning"):
                    continue
                text = block.get("text") or ""
                if text:
                    parts.append(text)
        return "\n".join(parts)
    return str(content) if content else ""


def _as_list(value) -> list:
    """A single string is one entry, not a sequence of characters."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def normalize_block(raw: Any) -> Optional[dict]:
    """
    Normalize one raw input into ``{id, content, tags, priority, dependencies}``.

    ``id`` and ``priority`` are None when the caller did not supply them.
    Returns None for empty input.
    """
    if raw is None:
        return None

    if isinstance(raw, str):
        block = {"id": None, "content": raw, "tags": [], "priority": None, "dependencies": []}
    elif isinstance(raw, BaseMessage):
        tags = []
        name = getattr(raw, "name", None)
        if isinstance(raw, ToolMessage) and name:
            tags.append(f"tool:{name}")
        block = {
            "id": raw.id or (raw.tool_call_id if isinstance(raw, ToolMessage) else None),
            "content": message_text(raw),
            "tags": tags,
            "priority": None,
            "dependencies": [],
        }
    elif isinstance(raw, dict):
        block = {
            "id": raw.get("id"),
            "content": str(raw.get("content") or ""),
            "tags": _as_list(raw.get("tags")),
            "priority": raw.get("priority"),
            "dependencies": _as_list(raw.get("dependencies")),
        }
    else:
        block = {"id": None, "content": str(raw), "tags": [], "priority": None, "dependencies": []}

    if not block["content"].strip():
        return None
    return block


def split_messages(messages: list) -> tuple[Optional[BaseMessage], list[BaseMessage]]:
    """
    Pick the inputs of the latest turn out of a LangChain message history.

    Returns (last human message, tool messages that followed it). AI messages
    are not ingested: the assistant's own replies reach memory through the
    next turn's tool outputs or not at all.
    """
    user_msg = None
    tool_msgs: list[BaseMessage] = []
    for msg in messages:
        if isinstance(msg, HumanMessage):
            user_msg = msg
            tool_msgs = []
        elif isinstance(msg, ToolMessage):
            tool_msgs.append(msg)
    return user_msg, tool_msgs
