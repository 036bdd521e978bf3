"""Reference resolution: map a loose query to one canonical note or folder.

Scoring is a fixed tier table so results are deterministic; ties are broken
by filename (notes) or path (folders). A result is only *resolved* when the
top candidate clears ``min_score`` and is not crowded by a close second.
"""
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from noteplan_mcp.config import config
from noteplan_mcp.exceptions import ErrorCode, InvalidArgumentError
from noteplan_mcp.models.schema import (Candidate, Folder, Note, NoteSource, NoteType,
                                        ResolveResult)
from noteplan_mcp.observability import traced
from noteplan_mcp.services.note_store import NoteStore
from noteplan_mcp.utils import normalize_date_token, to_bounded_int

logger = logging.getLogger(__name__)

EXACT_MATCH_SCORE = 0.96
SCORE_EPSILON = 0.001

_NUMBERED_PREFIX = re.compile(r"^\d+[\s.\-_)]+\s*")
_SYMBOL_PREFIX = re.compile(r"^[^\w\s@]+\s*")


# ----------------------------------------------------------------------
# Note scoring
# ----------------------------------------------------------------------


def note_match_score(note: Note, query: str, query_date_token: Optional[str] = None) -> float:
    """Score how well ``note`` matches ``query``; 0 means no match."""
    q = query.lower()
    note_id = (note.id or "").lower()
    title = (note.title or "").lower()
    filename = (note.filename or "").lower()
    basename = posixpath.splitext(posixpath.basename(filename))[0]
    note_date = normalize_date_token(note.date)

    if note_id and note_id == q:
        return 1.0
    if filename == q:
        return 0.99
    if basename == q:
        return 0.97
    if title == q:
        return 0.96
    if query_date_token and note_date and query_date_token == note_date:
        return 0.95
    if title.startswith(q):
        return 0.90
    if basename.startswith(q):
        return 0.88
    if f"/{q}" in filename or q in filename:
        return 0.83
    if q in f"{title} {filename}":
        return 0.76
    return 0.0


def _rank(candidates: List[Candidate]) -> List[Candidate]:
    # Sort by name first so the stable score sort keeps name order on ties
    by_name = sorted(candidates, key=lambda c: c.sort_name)
    return sorted(by_name, key=lambda c: round(c.score / SCORE_EPSILON), reverse=True)


def _decide(
    query: str,
    ranked: List[Candidate],
    limit: int,
    min_score: float,
    ambiguity_delta: float,
) -> ResolveResult:
    candidates = ranked[:limit]
    top = candidates[0] if candidates else None
    second = candidates[1] if len(candidates) > 1 else None
    delta = (top.score - second.score) if (top and second) else 1.0
    confident = top is not None and top.score >= min_score
    # A tiny epsilon keeps float noise (0.95 - 0.90) from flipping the comparison
    ambiguous = second is not None and delta < ambiguity_delta - 1e-9
    resolved = top if confident and not ambiguous else None
    return ResolveResult(
        query=query,
        resolved=resolved,
        exact_match=top is not None and round(top.score, 3) >= EXACT_MATCH_SCORE,
        ambiguous=ambiguous,
        confidence=top.score if top else 0.0,
        confidence_delta=delta,
        candidates=candidates,
    )


def _bound_score(value, default: float) -> float:
    try:
        numeric = float(value) if value is not None else default
    except (TypeError, ValueError):
        return default
    if numeric != numeric:
        return default
    return min(1.0, max(0.0, numeric))


# ----------------------------------------------------------------------
# Folder scoring
# ----------------------------------------------------------------------


def strip_common_prefixes(name: str) -> str:
    """Drop ``10 - ``-style numbering, leading emoji/symbols and ``@``."""
    result = _NUMBERED_PREFIX.sub("", name)
    result = _SYMBOL_PREFIX.sub("", result)
    if result.startswith("@"):
        result = result[1:]
    result = result.strip()
    return result or name


def bigram_similarity(a: str, b: str) -> float:
    """Dice coefficient over character bigrams."""
    if len(a) < 2 or len(b) < 2:
        return 1.0 if a == b else 0.0
    bigrams_a = {a[i:i + 2] for i in range(len(a) - 1)}
    bigrams_b = {b[i:i + 2] for i in range(len(b) - 1)}
    return 2 * len(bigrams_a & bigrams_b) / (len(bigrams_a) + len(bigrams_b))


def depth_penalty(path: str) -> float:
    depth = len(path.split("/"))
    return max(0.5, 1.0 - (depth - 1) * 0.05)


def folder_match_score(query: str, folder: Folder) -> float:
    """Score a folder against ``query`` in ``[0, 1]`` (depth-penalized)."""
    q = query.lower()
    name = folder.name.lower()
    normalized_name = strip_common_prefixes(folder.name).lower()
    last = folder.path.split("/")[-1]
    last_lower = last.lower()
    normalized_last = strip_common_prefixes(last).lower()

    if q in (name, last_lower):
        base = 1.0
    elif q in (normalized_name, normalized_last):
        base = 0.95
    elif normalized_name.startswith(q) or normalized_last.startswith(q):
        base = 0.90
    elif q in normalized_name or q in normalized_last:
        base = 0.85
    elif q in name or q in last_lower:
        base = 0.80
    else:
        similarity = max(bigram_similarity(q, normalized_name), bigram_similarity(q, normalized_last))
        base = 0.70 + similarity * 0.10 if similarity > 0.5 else similarity * 0.50
    return base * depth_penalty(folder.path)


@dataclass
class FolderMatch:
    """Best folder for a query plus up to three runners-up."""

    matched: bool
    folder: Optional[Folder] = None
    score: float = 0.0
    alternatives: List[Folder] = field(default_factory=list)
    ambiguous: bool = False

    def to_dict(self, requested: Optional[str] = None) -> dict:
        return {
            "requested": requested,
            "resolved": self.folder.path if self.folder else requested,
            "matched": self.matched,
            "ambiguous": self.ambiguous,
            "score": round(self.score, 3),
            "alternatives": [f.path for f in self.alternatives],
        }


def _scored_folders(query: str, folders: Iterable[Folder]) -> List[Candidate]:
    threshold = 0.9 if len(query) <= 2 else 0.7
    scored = [Candidate(score=folder_match_score(query, f), folder=f) for f in folders]
    scored = [c for c in scored if c.score >= threshold]
    # Path order, then "@" folders last among near-equal scores, then score
    scored.sort(key=lambda c: c.folder.path)
    scored.sort(key=lambda c: c.folder.name.startswith("@"))
    scored.sort(key=lambda c: round(c.score / 0.01), reverse=True)
    return scored


def match_folder(query: str, folders: Sequence[Folder]) -> FolderMatch:
    """Pick the folder a user most likely meant by ``query``."""
    if not query or not folders:
        return FolderMatch(matched=False)
    scored = _scored_folders(query, folders)
    if not scored:
        return FolderMatch(matched=False)
    best = scored[0]
    return FolderMatch(
        matched=True,
        folder=best.folder,
        score=best.score,
        alternatives=[c.folder for c in scored[1:4]],
        ambiguous=len(scored) > 1 and scored[1].score >= best.score - 0.15,
    )


# ----------------------------------------------------------------------
# Resolver service
# ----------------------------------------------------------------------


class ReferenceResolver:
    """Resolves notes and folders over the cached :class:`NoteStore` listing."""

    def __init__(self, store: NoteStore) -> None:
        self.store = store

    @traced("resolve_note")
    def resolve_note(
        self,
        query: str,
        folder: Optional[str] = None,
        space: Optional[str] = None,
        types: Optional[Sequence[NoteType]] = None,
        limit: int = 5,
        min_score: Optional[float] = None,
        ambiguity_delta: Optional[float] = None,
    ) -> ResolveResult:
        query = (query or "").strip()
        if not query:
            raise InvalidArgumentError("query is required", field="query", code=ErrorCode.QUERY_REQUIRED)
        limit = to_bounded_int(limit, 5, 1, 20)
        min_score = _bound_score(min_score, config.resolve_min_score)
        ambiguity_delta = _bound_score(ambiguity_delta, config.resolve_ambiguity_delta)
        allowed = set(types) if types else None
        query_date = normalize_date_token(query)

        notes = self.store.list_notes(folder=folder, space=space)
        scored = [
            Candidate(score=note_match_score(n, query, query_date), note=n)
            for n in notes
            if allowed is None or n.note_type in allowed
        ]
        ranked = _rank([c for c in scored if c.score > 0])
        result = _decide(query, ranked, limit, min_score, ambiguity_delta)

        if result.resolved is not None:
            note = result.resolved.note
            if note.source == NoteSource.SPACE and note.id:
                result.suggested_args = {"id": note.id}
            else:
                result.suggested_args = {"filename": note.filename}
        if not result.candidates:
            result.performance_hints.append(
                "Try noteplan_search with a broader query to discover canonical note IDs first."
            )
        logger.debug(
            f"resolve_note '{query}': {len(ranked)} candidates, "
            f"resolved={result.resolved is not None}, ambiguous={result.ambiguous}"
        )
        return result

    @traced("resolve_folder")
    def resolve_folder(
        self,
        query: str,
        space: Optional[str] = None,
        limit: int = 5,
        min_score: Optional[float] = None,
        ambiguity_delta: Optional[float] = None,
    ) -> ResolveResult:
        query = (query or "").strip().strip("/")
        if not query:
            raise InvalidArgumentError("query is required", field="query", code=ErrorCode.QUERY_REQUIRED)
        limit = to_bounded_int(limit, 5, 1, 20)
        min_score = _bound_score(min_score, config.resolve_min_score)
        ambiguity_delta = _bound_score(ambiguity_delta, config.resolve_ambiguity_delta)

        folders = self.store.list_folders(space=space)
        exact = [f for f in folders if f.path.lower() == query.lower()]
        if exact:
            ranked = [Candidate(score=1.0, folder=f) for f in exact]
        else:
            ranked = _scored_folders(query, folders)
        result = _decide(query, ranked, limit, min_score, ambiguity_delta)
        if result.resolved is not None:
            result.suggested_args = {"folder": result.resolved.folder.path}
        if not result.candidates:
            result.performance_hints.append(
                "Use noteplan_list_folders to browse available folders."
            )
        return result
