# Contains class for building normalized tables
import logging
import uuid
from typing import Dict, List, Optional

from ..config import get_settings
from .models import (
    INTERNAL_COLUMNS,
    PARENT_ID,
    ROW_ID,
    ForeignKeyRelationship,
    JsonColumn,
    JsonTable,
    ParsedJsonData,
    RootType,
)

logger = logging.getLogger(__name__)


class RowIdCounter:
    """
    Mints surrogate row ids, one sequence per table.

    A counter belongs to a single normalization run, so two runs never share
    or reset each other's sequences.
    """

    def __init__(self, style="counter"):
        if style not in ("counter", "uuid"):
            raise ValueError(f"Unknown row id style: {style}")
        self.style = style
        self.next_id = {}  # Tracks the next available id for each table

    def next_row_id(self, table_name):
        """Gets and increments the id for a table."""
        if self.style == "uuid":
            return str(uuid.uuid4())
        row_id = self.next_id.get(table_name, 1)
        self.next_id[table_name] = row_id + 1
        return row_id


class TableBuilder:
    """
    Arena of normalized tables indexed by name.

    Owns every table, its column index and its relationship to its parent
    for the duration of one normalization run.
    """

    def __init__(self, row_ids: Optional[RowIdCounter] = None, max_sample_values=None,
                 max_identifier_length=None):
        settings = get_settings()
        self.row_ids = row_ids or RowIdCounter(settings.row_id_style)
        self.max_sample_values = max_sample_values or settings.max_sample_values
        self.max_identifier_length = max_identifier_length or settings.max_identifier_length

        self.tables: Dict[str, JsonTable] = {}  # Insertion order is discovery order
        self.relationships: List[ForeignKeyRelationship] = []
        self._column_index: Dict[str, Dict[str, JsonColumn]] = {}
        self._used_row_ids: Dict[str, set] = {}
        self._column_sources: Dict[str, Dict[tuple, str]] = {}

    def resolve_table_name(self, name, parent_table):
        """
        Pick the table name for a child of ``parent_table``.

        A name already owned by a table with another parent (or equal to the
        parent itself) falls back to ``<parent>_<name>``, then numbered
        variants, so every table keeps exactly one parent.
        """
        candidates = [name]
        if parent_table:
            candidates.append(self._fit(f"{parent_table}_{name}"))

        for candidate in candidates:
            if self._is_available(candidate, parent_table):
                return candidate

        base = candidates[-1]
        suffix = 2
        while True:
            candidate = self._fit(base, f"_{suffix}")
            if self._is_available(candidate, parent_table):
                return candidate
            suffix += 1

    def _fit(self, name, suffix=""):
        return name[:self.max_identifier_length - len(suffix)] + suffix

    def _is_available(self, name, parent_table):
        if name == parent_table:
            return False
        table = self.tables.get(name)
        return table is None or table.parent_table == parent_table

    def get_table(self, name, parent_table=None, columns=None) -> JsonTable:
        """
        Return the table for ``name`` under ``parent_table``, creating it on first use.

        Args:
            name: Sanitized table name
            parent_table: Name of the parent table, None for root tables
            columns: Initial columns for a newly created table

        Returns:
            JsonTable: Existing or newly registered table (its name may differ from ``name``)
        """
        resolved = self.resolve_table_name(name, parent_table)
        if resolved != name:
            logger.debug("Table name %s already used, child of %s stored as %s",
                         name, parent_table, resolved)

        table = self.tables.get(resolved)
        if table is not None:
            return table

        table = JsonTable(
            name=resolved,
            parent_table=parent_table,
            foreign_key=PARENT_ID if parent_table else None,
        )
        self.tables[resolved] = table
        self._column_index[resolved] = {}
        self._used_row_ids[resolved] = set()
        self._column_sources[resolved] = {}

        for column in columns or ():
            self._register_column(table, column)

        if parent_table:
            self.relationships.append(ForeignKeyRelationship(
                parent_table=parent_table,
                child_table=resolved,
                parent_column=ROW_ID,
                child_column=PARENT_ID,
            ))
        return table

    def claim_row_id(self, table_name, source_id):
        """Adopt ``source_id`` as a row id if the table has not used it yet."""
        used = self._used_row_ids[table_name]
        if source_id in used:
            return False
        used.add(source_id)
        return True

    def next_row_id(self, table_name):
        used = self._used_row_ids[table_name]
        row_id = self.row_ids.next_row_id(table_name)
        while row_id in used:
            row_id = self.row_ids.next_row_id(table_name)
        used.add(row_id)
        return row_id

    def resolve_column_name(self, table, name, source):
        """
        Column for the field at ``source`` (key path inside the row object).

        A name already held by another field of the table gets a numbered
        variant (``a_b_2``); the choice sticks for the rest of the run.
        """
        sources = self._column_sources[table.name]
        column = sources.get(source)
        if column is not None:
            return column

        taken = set(sources.values()) | set(self._column_index[table.name])
        column = name
        suffix = 2
        while column in taken:
            column = self._fit(name, f"_{suffix}")
            suffix += 1
        if column != name:
            logger.warning("Column %s of %s already holds another field, %s stored as %s",
                           name, table.name, ".".join(source), column)
        sources[source] = column
        return column

    def _register_column(self, table, column):
        table.columns.append(column)
        self._column_index[table.name][column.name] = column

    def add_row(self, table: JsonTable, row: dict, fields=None):
        """
        Append a row and extend the column union with its keys.

        Args:
            table: Target table
            row: Row values, including ``_row_id``/``_parent_id``
            fields: Optional ``{column: (source path, is_nested)}``
        """
        fields = fields or {}
        index = self._column_index[table.name]

        for key, value in row.items():
            if key in INTERNAL_COLUMNS:
                continue
            column = index.get(key)
            if column is None:
                path, nested = fields.get(key, (key, False))
                column = JsonColumn(name=key, path=path, is_nested=nested)
                self._register_column(table, column)
            if len(column.sample_values) < self.max_sample_values:
                column.sample_values.append(value)

        table.rows.append(row)

    def build(self, root_type: RootType) -> ParsedJsonData:
        tables = list(self.tables.values())
        return ParsedJsonData(
            tables=tables,
            root_type=root_type,
            total_rows=len(tables[0].rows) if tables else 0,
            relationships=list(self.relationships),
        )
