"""FTS5 full-text search over space notes.

Encapsulates FTS5 querying, graceful degradation to LIKE matching, and
index recovery for the spaces structured store.
"""
import logging
import re
import sqlite3
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import DatabaseError as SQLAlchemyDatabaseError
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError

from noteplan_mcp.exceptions import ErrorCode, StorageError
from noteplan_mcp.models.db_models import rebuild_fts_index
from noteplan_mcp.utils import escape_like_pattern, split_search_terms

logger = logging.getLogger(__name__)


class FtsIndex:
    """FTS5 full-text search index with graceful degradation.

    Args:
        engine: SQLAlchemy engine used for database access.
        session_factory: Callable returning a context-manager session.
    """

    def __init__(self, engine: Any, session_factory: Callable) -> None:
        self.engine = engine
        self._session_factory = session_factory
        self.available: bool = True

    def search(
        self,
        query: str,
        space_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Search space notes; ``a|b`` queries match either term.

        Returns:
            List of result dicts (id, title, rank, search_mode), best first.
        """
        terms = split_search_terms(query)
        if not terms:
            return []
        if not self.available:
            logger.debug("FTS5 unavailable, using fallback search")
            return self._fallback_text_search(terms, space_id, limit)

        match_expr = " OR ".join(self._escape_term(term) for term in terms)
        sql = text("""
            SELECT space_notes.id, space_notes.title, bm25(space_notes_fts) AS rank
            FROM space_notes_fts
            JOIN space_notes ON space_notes.rowid = space_notes_fts.rowid
            WHERE space_notes_fts MATCH :query
              AND (:space_id IS NULL OR space_notes.space_id = :space_id)
            ORDER BY rank
            LIMIT :limit
        """)

        results: List[Dict[str, Any]] = []
        with self._session_factory() as session:
            try:
                rows = session.execute(
                    sql, {"query": match_expr, "space_id": space_id, "limit": limit}
                ).fetchall()
            except (sqlite3.OperationalError, SQLAlchemyOperationalError) as e:
                logger.warning(f"FTS5 query failed for '{query}': {e}. Using fallback search.")
                return self._fallback_text_search(terms, space_id, limit)
            except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
                error_msg = str(e).lower()
                if ("malformed" in error_msg or "corrupt" in error_msg) and self._attempt_recovery():
                    logger.info("FTS5 rebuilt successfully, retrying search")
                    return self.search(query, space_id, limit)
                logger.error(f"FTS5 database error: {e}. Disabling FTS5 for this session.")
                self.available = False
                return self._fallback_text_search(terms, space_id, limit)

        for row in rows:
            results.append(
                {"id": row[0], "title": row[1], "rank": row[2], "search_mode": "fts5"}
            )
        return results

    def rebuild(self) -> int:
        """Rebuild the FTS5 index from the space_notes table."""
        return rebuild_fts_index(self.engine)

    @staticmethod
    def _escape_term(term: str) -> str:
        """Quote a term for literal FTS5 phrase matching."""
        cleaned = re.sub(r"[*^]", "", term).replace('"', '""')
        return f'"{cleaned}"'

    def _fallback_text_search(
        self, terms: List[str], space_id: Optional[str], limit: int
    ) -> List[Dict[str, Any]]:
        """LIKE-based fallback when FTS5 is unavailable."""
        clauses = []
        params: Dict[str, Any] = {"space_id": space_id, "limit": limit}
        for i, term in enumerate(terms):
            params[f"t{i}"] = f"%{escape_like_pattern(term)}%"
            clauses.append(
                f"(title LIKE :t{i} ESCAPE '\\' OR content LIKE :t{i} ESCAPE '\\')"
            )
        sql = text(f"""
            SELECT id, title FROM space_notes
            WHERE ({' OR '.join(clauses)})
              AND (:space_id IS NULL OR space_id = :space_id)
            LIMIT :limit
        """)
        try:
            with self._session_factory() as session:
                rows = session.execute(sql, params).fetchall()
        except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
            raise StorageError(
                f"Fallback text search failed: {e}",
                operation="search_full_text",
                code=ErrorCode.STORAGE_FAILED,
                original_error=e,
            ) from e

        lowered = [term.lower() for term in terms]
        results = []
        for row in rows:
            title_match = any(term in (row[1] or "").lower() for term in lowered)
            results.append(
                {
                    "id": row[0],
                    "title": row[1],
                    "rank": -2.0 if title_match else -1.0,
                    "search_mode": "fallback",
                }
            )
        logger.debug(f"Fallback search returned {len(results)} results")
        return results

    def _attempt_recovery(self) -> bool:
        try:
            count = self.rebuild()
            logger.info(f"FTS5 index rebuilt with {count} notes")
            return True
        except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
            logger.error(f"FTS5 rebuild failed: {e}")
            return False
