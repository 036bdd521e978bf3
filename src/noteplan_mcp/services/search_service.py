"""Search aggregation across the local tree and spaces.

Content search runs an ordered list of local backends (ripgrep first, a
naive scan as fallback) and merges in space full-text hits. Metadata search
scores titles and filenames from the cached listing instead. Both paths then
share date/property filtering, recency-aware scoring and optional fuzzy
re-ranking.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz, process, utils as fuzz_utils

from noteplan_mcp.config import config
from noteplan_mcp.exceptions import BackendUnavailableError, ErrorCode, InvalidArgumentError
from noteplan_mcp.models.schema import (Note, NoteSource, NoteType, QueryMode, SearchField,
                                        SearchMatch, SearchOptions, SearchResponse,
                                        SearchResult)
from noteplan_mcp.observability import traced
from noteplan_mcp.services.note_store import NoteStore, normalize_local_folder_filter
from noteplan_mcp.services.ripgrep_search import RipgrepSearch
from noteplan_mcp.storage.frontmatter_parser import matches_properties, parse_properties
from noteplan_mcp.storage.local_store import CALENDAR_DIR, NOTES_DIR
from noteplan_mcp.utils import (is_date_in_range, parse_date_filter, parse_date_filter_end,
                                split_search_terms, utc_now)

logger = logging.getLogger(__name__)

SPACE_BASE_SCORE = 50.0
ARCHIVE_PENALTY = 50.0
UNAVAILABLE_WARNING = "ripgrep unavailable; using fallback local search"
FAILED_WARNING = "ripgrep failed; using fallback local search"


# ----------------------------------------------------------------------
# Query interpretation
# ----------------------------------------------------------------------


class QueryPlan:
    """How a raw query string is matched against note text.

    ``patterns`` are the literal strings handed to a backend (any of them
    may match a line); ``required`` are the strings that must all appear in
    a note for it to count.
    """

    def __init__(self, query: str, mode: Optional[QueryMode] = None):
        self.query = query.strip()
        or_terms = split_search_terms(self.query)
        has_or = len(or_terms) > 1
        if mode is None:
            mode = QueryMode.ANY if has_or else QueryMode.PHRASE
        words = or_terms if has_or else self.query.split()
        if mode == QueryMode.SMART:
            mode = QueryMode.PHRASE if len(words) <= 1 else QueryMode.ALL
        self.mode = mode

        if mode == QueryMode.PHRASE:
            self.patterns: List[str] = [self.query]
            self.required: List[str] = []
        elif mode == QueryMode.ANY:
            self.patterns = words or [self.query]
            self.required = []
        else:
            self.patterns = words or [self.query]
            self.required = list(self.patterns)

    def satisfied_by(self, content: str, case_sensitive: bool) -> bool:
        if not self.required:
            return True
        haystack = content if case_sensitive else content.lower()
        return all(
            (term if case_sensitive else term.lower()) in haystack for term in self.required
        )

    @property
    def fts_query(self) -> str:
        return "|".join(self.patterns)


def find_matches(content: str, terms: Sequence[str], case_sensitive: bool = False) -> List[SearchMatch]:
    """Every occurrence of any term, per line, in line order."""
    matches: List[SearchMatch] = []
    needles = [t if case_sensitive else t.lower() for t in terms if t]
    for number, line in enumerate(content.split("\n"), start=1):
        haystack = line if case_sensitive else line.lower()
        spans: List[Tuple[int, int]] = []
        for needle in needles:
            start = haystack.find(needle)
            while start != -1:
                spans.append((start, start + len(needle)))
                start = haystack.find(needle, start + 1)
        for start, end in sorted(spans):
            matches.append(SearchMatch(line_number=number, line_content=line, match_start=start, match_end=end))
    return matches


# ----------------------------------------------------------------------
# Scoring
# ----------------------------------------------------------------------


def metadata_score(value: str, term: str) -> float:
    if not value or not term:
        return 0.0
    if value == term:
        return 120.0
    if value.startswith(term):
        return 100.0
    if term in value.split("/"):
        return 95.0
    if term in value:
        return 80.0
    return 0.0


def score_metadata_match(
    note: Note, query: str, field: SearchField, case_sensitive: bool = False
) -> Optional[SearchResult]:
    """Best title/filename score over the OR terms, or None when nothing matches."""
    title = note.title if case_sensitive else note.title.lower()
    filename = note.filename if case_sensitive else note.filename.lower()
    best = 0.0
    matched_on: Optional[str] = None
    for raw in split_search_terms(query) or [query.strip()]:
        term = raw if case_sensitive else raw.lower()
        if field in (SearchField.TITLE, SearchField.TITLE_OR_FILENAME):
            score = metadata_score(title, term)
            if score > best:
                best, matched_on = score, "title"
        if field in (SearchField.FILENAME, SearchField.TITLE_OR_FILENAME):
            score = metadata_score(filename, term)
            if score > best:
                best, matched_on = score, "filename"
    if best <= 0 or matched_on is None:
        return None
    line = note.title if matched_on == "title" else note.filename
    return SearchResult(
        note=note,
        matches=[SearchMatch(line_number=1, line_content=line, match_start=0, match_end=min(len(line), 120))],
        score=best,
    )


def enhanced_score(result: SearchResult, query: str, now: datetime) -> float:
    """Match count plus title, recency and creation bonuses; archive/trash penalty."""
    score = float(len(result.matches))
    note = result.note
    title = note.title.lower()
    lowered = query.lower()
    if title == lowered:
        score += 30
    elif lowered and lowered in title:
        score += 15

    if note.modified_at:
        days = (now - note.modified_at).total_seconds() / 86400
        if days < 1:
            score += 20
        elif days < 7:
            score += 15
        elif days < 30:
            score += 8
        elif days < 90:
            score += 3

    if note.created_at:
        days = (now - note.created_at).total_seconds() / 86400
        if days < 7:
            score += 5
        elif days < 30:
            score += 2

    if note.folder:
        folder = note.folder.lower()
        if "@archive" in folder or "@trash" in folder:
            score -= ARCHIVE_PENALTY
    if note.note_type == NoteType.TRASH:
        score -= ARCHIVE_PENALTY
    return score


def fuzzy_rank(
    notes: Iterable[Note], query: str, limit: int, threshold: float
) -> List[SearchResult]:
    """Typo-tolerant ranking: title weighted x2, best content line x1, 0-100."""
    results: List[SearchResult] = []
    for note in notes:
        title_score = fuzz.WRatio(query, note.title, processor=fuzz_utils.default_process)
        lines = [line for line in note.content.split("\n") if line.strip()]
        best_line = (
            process.extractOne(
                query, lines, scorer=fuzz.partial_ratio, processor=fuzz_utils.default_process
            )
            if lines
            else None
        )
        content_score = best_line[1] if best_line else 0.0
        score = (2 * title_score + content_score) / 3
        if score < threshold:
            continue
        matches: List[SearchMatch] = []
        if title_score >= threshold:
            matches.append(SearchMatch(line_number=0, line_content=note.title, match_end=len(note.title)))
        if best_line and best_line[1] >= threshold:
            line_text = best_line[0]
            number = note.content.split("\n").index(line_text) + 1
            matches.append(SearchMatch(line_number=number, line_content=line_text, match_end=len(line_text)))
        results.append(SearchResult(note=note, matches=matches, score=round(score, 2)))
    results.sort(key=lambda r: (-r.score, r.note.filename))
    return results[:limit]


# ----------------------------------------------------------------------
# Content backends
# ----------------------------------------------------------------------


class ContentBackend:
    """A local full-text backend. Raises BackendUnavailableError to hand over."""

    name = "simple"

    def search(
        self,
        plan: QueryPlan,
        folder: Optional[str],
        options: SearchOptions,
        max_results: int,
    ) -> Tuple[List[SearchResult], bool, Optional[str]]:
        raise NotImplementedError


class RipgrepBackend(ContentBackend):
    name = "ripgrep"

    def __init__(self, store: NoteStore, ripgrep: RipgrepSearch):
        self.store = store
        self.ripgrep = ripgrep

    def search(self, plan, folder, options, max_results):
        root = self.store.local.root
        if folder:
            paths = [root / NOTES_DIR / folder]
        else:
            paths = [root / NOTES_DIR, root / CALENDAR_DIR]
        rg = self.ripgrep.search(
            plan.patterns,
            paths,
            case_sensitive=options.case_sensitive,
            context_lines=options.context_lines,
            max_count=max_results,
            fixed_strings=True,
        )
        by_file: Dict[str, List[SearchMatch]] = {}
        for match in rg.matches:
            by_file.setdefault(match.file, []).append(
                SearchMatch(
                    line_number=match.line,
                    line_content=match.content,
                    match_start=match.match_start,
                    match_end=match.match_end,
                )
            )
        results: List[SearchResult] = []
        for file, matches in by_file.items():
            note = self.store.local.read_note(file)
            if note is not None:
                results.append(SearchResult(note=note, matches=matches, score=len(matches) * 10.0))
        return results, rg.partial, rg.warning


class ScanBackend(ContentBackend):
    """Reads every listed local note and matches in-process."""

    name = "simple"

    def __init__(self, store: NoteStore):
        self.store = store

    def search(self, plan, folder, options, max_results):
        notes = [
            n for n in self.store.list_notes(folder=folder) if n.source == NoteSource.LOCAL
        ]
        results: List[SearchResult] = []
        for note in notes:
            matches = find_matches(note.content, plan.patterns, options.case_sensitive)
            title_hit = any(
                (p if options.case_sensitive else p.lower())
                in (note.title if options.case_sensitive else note.title.lower())
                for p in plan.patterns
            )
            if matches or title_hit:
                results.append(SearchResult(note=note, matches=matches, score=float(len(matches))))
            if len(results) >= max_results:
                break
        return results, False, None


# ----------------------------------------------------------------------
# Aggregator
# ----------------------------------------------------------------------


class SearchService:
    """Runs searches over the unified store.

    Args:
        store: Unified note store.
        backends: Ordered local content backends. Defaults to ripgrep, then scan.
        clock: Current time for recency scoring and relative date filters.
    """

    def __init__(
        self,
        store: NoteStore,
        backends: Optional[Sequence[ContentBackend]] = None,
        ripgrep: Optional[RipgrepSearch] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self._clock = clock
        if backends is None:
            backends = []
            if config.ripgrep_enabled:
                backends.append(RipgrepBackend(store, ripgrep or RipgrepSearch()))
            backends.append(ScanBackend(store))
        self.backends = list(backends)

    def _parse_filter(self, value: Optional[str], field_name: str, end: bool = False):
        if not value:
            return None
        now = self._clock().astimezone()
        parser = parse_date_filter_end if end else parse_date_filter
        parsed = parser(value, config.first_day_of_week, now)
        if parsed is None:
            raise InvalidArgumentError(
                f"Invalid date filter for {field_name}: {value}. Use today, yesterday, "
                "this week, last week, this month, last month, this year, last year, "
                "YYYY-MM-DD or YYYYMMDD",
                field=field_name,
                value=value,
            )
        return parsed

    def _run_local_backends(
        self, plan: QueryPlan, folder: Optional[str], options: SearchOptions
    ) -> Tuple[List[SearchResult], str, bool, List[str]]:
        warnings: List[str] = []
        fallback_label: Optional[str] = None
        for backend in self.backends:
            try:
                results, partial, warning = backend.search(plan, folder, options, options.limit * 2)
            except BackendUnavailableError as e:
                logger.info(f"Search backend {backend.name} handed over: {e.message}")
                if e.failed:
                    warnings.append(FAILED_WARNING)
                    fallback_label = "fallback"
                else:
                    warnings.append(UNAVAILABLE_WARNING)
                    fallback_label = "simple"
                continue
            if warning:
                warnings.append(warning)
            label = fallback_label if (fallback_label and backend.name != "ripgrep") else backend.name
            return results, label, partial, warnings
        return [], fallback_label or "simple", False, warnings

    def _space_results(
        self, plan: QueryPlan, space_id: Optional[str], folder: Optional[str], options: SearchOptions
    ) -> List[SearchResult]:
        notes = self.store.spaces.search_full_text(plan.fts_query, space_id, options.limit * 2)
        results = []
        for note in notes:
            if folder and space_id:
                prefix = folder.strip("/")
                if not note.folder or not (note.folder == prefix or note.folder.startswith(f"{prefix}/")):
                    continue
            results.append(
                SearchResult(
                    note=note,
                    matches=find_matches(note.content, plan.patterns, options.case_sensitive),
                    score=SPACE_BASE_SCORE,
                )
            )
        return results

    @traced("search")
    def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        """Search notes; see :class:`SearchOptions` for the knobs."""
        options = options or SearchOptions(limit=config.default_search_limit)
        query = (query or "").strip()
        if not query:
            raise InvalidArgumentError("query is required", field="query", code=ErrorCode.QUERY_REQUIRED)

        space_id = self.store.resolve_space_id(options.space)
        folder = normalize_local_folder_filter(options.folder)
        field = options.search_field
        types = options.types if field == SearchField.CONTENT else (options.types or [NoteType.NOTE])
        plan = QueryPlan(query, options.query_mode)

        modified_after = self._parse_filter(options.modified_after, "modified_after")
        modified_before = self._parse_filter(options.modified_before, "modified_before", end=True)
        created_after = self._parse_filter(options.created_after, "created_after")
        created_before = self._parse_filter(options.created_before, "created_before", end=True)

        warnings: List[str] = []
        partial = False
        if field == SearchField.CONTENT:
            merged: Dict[str, SearchResult] = {}
            backend = "space-fts"
            local_count = 0
            if not space_id:
                local, backend, partial, local_warnings = self._run_local_backends(plan, folder, options)
                warnings.extend(local_warnings)
                for result in local:
                    merged.setdefault(result.note.identity_key, result)
                local_count = len(merged)
            if space_id or not folder:
                space_hits = self._space_results(plan, space_id, options.folder, options)
                for result in space_hits:
                    merged.setdefault(result.note.identity_key, result)
                if space_hits and local_count and backend != "space-fts":
                    backend = "mixed"
            results = [
                r for r in merged.values() if plan.satisfied_by(f"{r.note.title}\n{r.note.content}", options.case_sensitive)
            ]
        else:
            backend = "simple"
            warnings.append(
                f"searchField={field.value} performs metadata matching on titles/filenames "
                "(not full-text content search)."
            )
            results = []
            for note in self.store.list_notes(folder=options.folder, space=space_id):
                scored = score_metadata_match(note, query, field, options.case_sensitive)
                if scored is not None:
                    results.append(scored)

        if types:
            allowed = set(types)
            results = [r for r in results if r.note.note_type in allowed]

        def passes_filters(note: Note) -> bool:
            if options.has_date_filters:
                has_modified = modified_after is not None or modified_before is not None
                has_created = created_after is not None or created_before is not None
                if has_modified and not is_date_in_range(note.modified_at, modified_after, modified_before):
                    return False
                if has_created and not is_date_in_range(note.created_at, created_after, created_before):
                    return False
            if options.property_filters:
                return matches_properties(
                    parse_properties(note.content),
                    options.property_filters,
                    options.property_case_sensitive,
                )
            return True

        results = [r for r in results if passes_filters(r.note)]

        now = self._clock()
        if field == SearchField.CONTENT:
            for result in results:
                result.score = enhanced_score(result, query, now)

        if options.fuzzy:
            candidates = [r.note for r in results]
            if not candidates:
                candidates = [
                    n
                    for n in self.store.list_notes(folder=options.folder, space=space_id)
                    if (not types or n.note_type in set(types)) and passes_filters(n)
                ]
            results = fuzzy_rank(candidates, query, options.limit, config.fuzzy_threshold)
        else:
            results.sort(key=lambda r: (-r.score, r.note.filename))
            results = results[: options.limit]

        logger.debug(f"search '{query}' via {backend}: {len(results)} results")
        return SearchResponse(results=results, backend=backend, partial_results=partial, warnings=warnings)
