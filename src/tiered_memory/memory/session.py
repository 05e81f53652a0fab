"""
Serialized memory session for an agent.

Wraps a ``TierManager`` and one ``SessionState``: turns on the same session
are run one at a time under a lock, the state is saved to the store after
every change, and LangChain message histories can be fed in directly.
"""

import logging
import threading
from typing import Optional

from langchain_core.messages import HumanMessage, SystemMessage

from .config import Budgets, InvalidConfiguration, ScoringWeights
from .ingest import message_text, split_messages
from .manager import TierManager, TurnRequest
from .models import EpisodeManifest
from .store import SessionStore

logger = logging.getLogger(__name__)

MEMORY_MESSAGE_ID = "memory-context"


class MemorySession:
    """
    One conversation's tiered memory.

    Usage:
        session = MemorySession(manager, budgets, session_id="thread-1")
        trimmed = session.apply(messages)
        # Send trimmed messages to the LLM instead of the full history
    """

    def __init__(
        self,
        manager: TierManager,
        budgets: Optional[Budgets] = None,
        session_id: str = "default",
        store: Optional[SessionStore] = None,
        weights: Optional[ScoringWeights] = None,
        ttl: Optional[int] = None,
    ):
        self.manager = manager
        self.session_id = session_id
        self.store = store
        self._lock = threading.Lock()

        self.state = None
        record = store.load(session_id) if store else None
        if record:
            try:
                self.state = manager.load_state(record)
                logger.info(
                    "Restored memory session %s at turn %d (%d manifests)",
                    session_id, self.state.turn, len(self.state.old),
                )
            except InvalidConfiguration as e:
                logger.warning("Discarding stored state for session %s: %s", session_id, e)
        if self.state is None:
            if budgets is None:
                raise InvalidConfiguration(f"no stored state for session {session_id} and no budgets given")
            self.state = manager.initialize(budgets, weights, ttl)

    def _save(self):
        if self.store:
            self.store.save(self.session_id, self.manager.export_state(self.state))

    def turn(self, request: TurnRequest) -> str:
        """Run one turn and return the prompt fragment."""
        with self._lock:
            self.state, fragment = self.manager.turn(self.state, request)
            self._save()
        return fragment

    def pin(self, item_id: str, priority: float = 1.0) -> bool:
        with self._lock:
            self.state, found = self.manager.pin(self.state, item_id, priority)
            if found:
                self._save()
        return found

    def unpin(self, item_id: str) -> bool:
        with self._lock:
            self.state, found = self.manager.unpin(self.state, item_id)
            if found:
                self._save()
        return found

    def recall(self, query: str, k: Optional[int] = None) -> list[EpisodeManifest]:
        """Search the archive without changing any tier."""
        k = self.manager.config.recall_top_k if k is None else k
        with self._lock:
            return self.manager.retrieve(self.state, query, k)

    def apply(
        self,
        messages: list,
        pull_from_archive: bool = False,
        query: str = "",
        topic_hint: Optional[str] = None,
    ) -> list:
        """
        Run a turn over a LangChain message history.

        The latest human message and the tool messages after it are ingested.
        Returns the system messages followed by a single human message holding
        the rendered memory. The original list is not modified.
        """
        if not messages:
            return messages

        system_msgs = [m for m in messages if isinstance(m, SystemMessage)]
        user_msg, tool_msgs = split_messages(messages)
        if user_msg is None and not tool_msgs:
            logger.debug("No human or tool message to ingest, returning history as-is")
            return messages

        if pull_from_archive and not query and user_msg is not None:
            query = message_text(user_msg)

        fragment = self.turn(TurnRequest(
            user_message=user_msg,
            tool_outputs=tool_msgs,
            query=query,
            pull_from_archive=pull_from_archive,
            topic_hint=topic_hint,
        ))
        return [*system_msgs, HumanMessage(content=fragment, id=MEMORY_MESSAGE_ID)]
