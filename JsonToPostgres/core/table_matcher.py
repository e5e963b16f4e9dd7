# Contains matching of import tables against existing database tables
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence

from .models import (
    INTERNAL_COLUMNS,
    ColumnConflict,
    ColumnMatchResult,
    ConflictResolution,
    ExistingColumn,
    ExistingTableSchema,
    JsonTable,
    MatchType,
    TableMatchResult,
    TableStatus,
)
from .naming import normalize_for_matching
from .type_inference import infer_column_type

logger = logging.getLogger(__name__)

FUZZY_LENGTH_RATIO = 0.6
FUZZY_SCORE_FACTOR = 0.8

NameMatcher = Callable[[str, Sequence[ExistingTableSchema]], Optional[ExistingTableSchema]]


def normalize_type(type_name):
    """Collapse PostgreSQL type spellings into comparison families."""
    t = str(type_name).lower().strip()

    if t == "uuid":
        return "uuid"
    if "int" in t:
        return "integer"
    if "numeric" in t or "decimal" in t or t == "real" or "double" in t:
        return "numeric"
    if t == "text" or "char" in t:
        return "text"
    if t in ("boolean", "bool"):
        return "boolean"
    if "timestamp" in t:
        return "timestamp"
    if t == "date":
        return "date"
    if t in ("json", "jsonb"):
        return "json"
    return t


def are_types_compatible(import_type, existing_type):
    """Whether values of ``import_type`` can be inserted into an ``existing_type`` column."""
    norm_import = normalize_type(import_type)
    norm_existing = normalize_type(existing_type)

    if norm_import == norm_existing:
        return True
    if norm_existing == "text":
        return True
    if norm_existing == "numeric" and norm_import == "integer":
        return True
    if norm_existing == "timestamp" and norm_import == "date":
        return True
    if norm_existing == "json" and norm_import == "text":
        return True
    return False


def find_fuzzy_match(import_name, existing_tables):
    """
    Find an existing table whose name loosely matches ``import_name``.

    Names are compared as lowercase alphanumerics; they match when equal or
    when one contains the other and the shorter is more than 60% of the
    longer. Short names can produce false positives, pass a different
    ``name_matcher`` to ``match_tables`` to change the heuristic.
    """
    normalized_import = normalize_for_matching(import_name)

    for existing in existing_tables:
        normalized_existing = normalize_for_matching(existing.name)

        if normalized_import == normalized_existing:
            return existing

        if normalized_import in normalized_existing or normalized_existing in normalized_import:
            shorter = min(len(normalized_import), len(normalized_existing))
            longer = max(len(normalized_import), len(normalized_existing))
            if longer and shorter / longer > FUZZY_LENGTH_RATIO:
                return existing

    return None


def analyze_columns(import_columns, existing_columns):
    """
    Compare import columns with the columns of an existing table.

    Args:
        import_columns: ``[(name, inferred type)]``
        existing_columns: ExistingColumn sequence

    Returns:
        dict: ``matches``, ``conflicts``, ``missing``, ``extra`` and ``score``
    """
    matches = []
    conflicts = []
    missing = []
    extra = []

    existing_by_name = {}
    existing_by_normalized_name = {}
    for col in existing_columns:
        existing_by_name[col.name.lower()] = col
        existing_by_normalized_name[normalize_for_matching(col.name)] = col

    matched_existing = set()
    public_columns = [(name, t) for name, t in import_columns if name not in INTERNAL_COLUMNS]

    for name, import_type in public_columns:
        existing_col = existing_by_name.get(name.lower())
        if existing_col is None:
            existing_col = existing_by_normalized_name.get(normalize_for_matching(name))

        if existing_col is None:
            missing.append(name)
            matches.append(ColumnMatchResult(
                import_column=name,
                existing_column=None,
                type_match=False,
                import_type=import_type,
            ))
            continue

        matched_existing.add(existing_col.name.lower())
        type_match = are_types_compatible(import_type, existing_col.type)
        matches.append(ColumnMatchResult(
            import_column=name,
            existing_column=existing_col.name,
            type_match=type_match,
            import_type=import_type,
            existing_type=existing_col.type,
        ))

        if not type_match:
            conflicts.append(ColumnConflict(
                column=name,
                import_type=import_type,
                existing_type=existing_col.type,
                resolution=ConflictResolution.CAST,
            ))

    for col in existing_columns:
        # 'id' is usually generated by the database
        if col.name.lower() not in matched_existing and col.name.lower() != "id":
            extra.append(col.name)

    compatible = sum(1 for m in matches if m.existing_column and m.type_match)
    score = round(100 * compatible / len(public_columns)) if public_columns else 0

    return {
        "matches": matches,
        "conflicts": conflicts,
        "missing": missing,
        "extra": extra,
        "score": score,
    }


def import_column_types(table: JsonTable):
    """``[(column, type)]`` for the public columns of a table, typed from its rows."""
    return [
        (name, infer_column_type(table.column_values(name), name).inferred_type.value)
        for name in table.headers()
    ]


def as_existing_schema(table):
    if isinstance(table, ExistingTableSchema):
        return table
    return ExistingTableSchema.from_dict(table)


def _match_result(table_name, match_type, existing, analysis, score):
    return TableMatchResult(
        import_table=table_name,
        match_type=match_type,
        existing_table=existing.name,
        match_score=score,
        column_matches=analysis["matches"],
        conflicts=analysis["conflicts"],
        missing_columns=analysis["missing"],
        extra_columns=analysis["extra"],
        status=TableStatus.CONFLICT if analysis["conflicts"] else TableStatus.INSERT,
    )


def match_tables(import_tables: List[JsonTable], existing_tables,
                 name_matcher: Optional[NameMatcher] = None) -> List[TableMatchResult]:
    """
    Match import tables against existing database tables.

    Args:
        import_tables: Normalized tables
        existing_tables: ExistingTableSchema objects or ``{"name", "columns"}`` dicts
        name_matcher: Replacement for ``find_fuzzy_match``

    Returns:
        list: One TableMatchResult per import table, in input order
    """
    existing_tables = [as_existing_schema(t) for t in existing_tables or ()]
    name_matcher = name_matcher or find_fuzzy_match
    results = []

    for table in import_tables:
        import_columns = import_column_types(table)

        exact = next((e for e in existing_tables if e.name.lower() == table.name.lower()), None)
        if exact is not None:
            analysis = analyze_columns(import_columns, exact.columns)
            match_type = MatchType.EXACT if analysis["score"] == 100 else MatchType.PARTIAL
            results.append(_match_result(table.name, match_type, exact, analysis, analysis["score"]))
            continue

        fuzzy = name_matcher(table.name, existing_tables)
        if fuzzy is not None:
            logger.debug("Fuzzy matched import table %s to %s", table.name, fuzzy.name)
            analysis = analyze_columns(import_columns, fuzzy.columns)
            score = round(analysis["score"] * FUZZY_SCORE_FACTOR)
            results.append(_match_result(table.name, MatchType.NAME_ONLY, fuzzy, analysis, score))
            continue

        results.append(TableMatchResult(
            import_table=table.name,
            match_type=MatchType.NEW,
            match_score=0,
            status=TableStatus.NEW,
        ))

    logger.info("Matched %d import table(s): %s", len(results), get_matching_summary(results))
    return results


def get_matching_summary(matches) -> Dict[str, int]:
    """Count match results per status."""
    summary = {status.value: 0 for status in TableStatus}
    for match in matches:
        summary[TableStatus(match.status).value] += 1
    return summary


def update_match_resolution(matches, table_name, status):
    """Return a copy of ``matches`` with the status of one table replaced."""
    status = TableStatus(status)
    return [replace(m, status=status) if m.import_table == table_name else m for m in matches]


def update_conflict_resolution(matches, table_name, column_name, resolution):
    """
    Return a copy of ``matches`` with one conflict's resolution replaced.

    The table status becomes ``conflict`` while any conflict is blocking and
    ``insert`` otherwise; ``skip``, ``augment`` and ``new`` decisions are kept.
    """
    resolution = ConflictResolution(resolution)
    updated = []

    for match in matches:
        if match.import_table != table_name:
            updated.append(match)
            continue

        conflicts = [
            replace(c, resolution=resolution) if c.column == column_name else c
            for c in match.conflicts
        ]
        status = match.status
        if status in (TableStatus.INSERT, TableStatus.CONFLICT):
            blocking = any(c.resolution == ConflictResolution.BLOCK for c in conflicts)
            status = TableStatus.CONFLICT if blocking else TableStatus.INSERT
        updated.append(replace(match, conflicts=conflicts, status=status))

    return updated
