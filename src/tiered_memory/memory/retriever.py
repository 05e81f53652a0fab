"""
Keyword retriever over the Old tier.

Each manifest is reduced to a set of lowercase (Unicode) alphanumeric words from
its topic, summary, tags and rehydration hints. A query matches a manifest
by how many distinct query words appear in that set.

Cost is linear in archive size times manifest length per call, which is fine
while the archive stays small. There is no index and no semantic search.
"""

import logging
import re

from .models import EpisodeManifest

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[^\W_]+")


def word_set(text: str) -> set[str]:
    """Lowercase alphanumeric words in ``text``."""
    if not text:
        return set()
    return set(_WORD_RE.findall(text.lower()))


def _manifest_words(manifest: EpisodeManifest) -> set[str]:
    words = word_set(manifest.topic) | word_set(manifest.summary)
    for tag in manifest.tags:
        words |= word_set(tag)
    for hint in manifest.rehydration_hints:
        words |= word_set(hint)
    return words


class ArchiveRetriever:
    """
    Read-only keyword search over archived episode manifests.

    Usage:
        retriever = ArchiveRetriever(state.old)
        manifests = retriever.search("postgres migration", k=3)
    """

    def __init__(self, manifests: list[EpisodeManifest]):
        self._manifests = manifests

    def search_with_scores(self, query: str, k: int) -> list[tuple[EpisodeManifest, int]]:
        """Return up to k (manifest, overlap) pairs, best first, archive order on ties."""
        if k <= 0 or not self._manifests:
            return []
        query_words = word_set(query)
        if not query_words:
            return []

        scored = []
        for position, manifest in enumerate(self._manifests):
            overlap = len(query_words & _manifest_words(manifest))
            if overlap > 0:
                scored.append((overlap, position, manifest))

        scored.sort(key=lambda entry: (-entry[0], entry[1]))
        results = [(manifest, overlap) for overlap, _, manifest in scored[:k]]
        logger.debug(
            "Archive search %r: %d/%d manifests matched, returning %d",
            query, len(scored), len(self._manifests), len(results),
        )
        return results

    def search(self, query: str, k: int) -> list[EpisodeManifest]:
        return [manifest for manifest, _ in self.search_with_scores(query, k)]
