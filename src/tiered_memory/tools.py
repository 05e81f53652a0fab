"""
LangChain tools over a memory session.

Defined with LangChain 1.0's @tool decorator and ToolRuntime:
- recall_archive: keyword search over archived episode manifests
- pin_memory / unpin_memory: keep an item in the working set across turns

ToolRuntime.context carries the ``MemorySession`` of the running thread.
"""

from dataclasses import dataclass

from langchain.tools import ToolRuntime, tool

from .memory.session import MemorySession

# A recalled summary is at most 256 tokens; cap the listing anyway
MAX_RECALL_RESULTS = 10


@dataclass
class MemoryToolContext:
    """
    Agent runtime context.

    Accessed from tools through ToolRuntime[MemoryToolContext].
    """
    memory_session: MemorySession


def format_manifests(manifests) -> str:
    if not manifests:
        return "No archived memory matches this query."
    lines = []
    for i, manifest in enumerate(manifests, 1):
        lines.append(f"{i}. [{manifest.topic}] (turn {manifest.turn}, id {manifest.id})")
        lines.append(f"   {manifest.summary}")
        if manifest.links:
            lines.append(f"   links: {', '.join(manifest.links)}")
    return "\n".join(lines)


@tool
def recall_archive(query: str, runtime: ToolRuntime[MemoryToolContext], limit: int = 3) -> str:
    """
    Search archived conversation memory by keywords.

    Older context that no longer fits the working set is kept as short
    episode summaries. Use this when the user refers to something discussed
    earlier that is not in the current context.

    Args:
        query: Keywords describing what to look for (e.g., 'database migration plan')
        limit: Maximum number of summaries to return
    """
    session = runtime.context.memory_session
    limit = max(1, min(limit, MAX_RECALL_RESULTS))
    return format_manifests(session.recall(query, limit))


@tool
def pin_memory(item_id: str, runtime: ToolRuntime[MemoryToolContext]) -> str:
    """
    Pin a memory item so it never expires from the working set.

    Args:
        item_id: Id of the memory item (e.g., 't3-user')
    """
    if runtime.context.memory_session.pin(item_id):
        return f"Pinned {item_id}."
    return f"No memory item with id '{item_id}'."


@tool
def unpin_memory(item_id: str, runtime: ToolRuntime[MemoryToolContext]) -> str:
    """
    Unpin a memory item so it can expire normally.

    Args:
        item_id: Id of the memory item
    """
    if runtime.context.memory_session.unpin(item_id):
        return f"Unpinned {item_id}."
    return f"No memory item with id '{item_id}'."


MEMORY_TOOLS = [recall_archive, pin_memory, unpin_memory]
