# Contains the data model shared by the import pipeline
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

ROW_ID = "_row_id"
PARENT_ID = "_parent_id"
INTERNAL_COLUMNS = (ROW_ID, PARENT_ID)


class NormalizationStrategy(str, Enum):
    """How nested objects are decomposed."""
    PARTIAL = "partial"  # promote objects that contain arrays
    FULL = "full"  # promote every nested object
    CUSTOM = "custom"  # promote the caller's chosen paths


class RootType(str, Enum):
    OBJECT = "object"
    ARRAY = "array"
    PRIMITIVE = "primitive"


class PostgresType(str, Enum):
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    NUMERIC = "NUMERIC"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP WITH TIME ZONE"
    JSONB = "JSONB"
    UUID = "UUID"


class MatchType(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    NAME_ONLY = "name_only"
    NEW = "new"


class TableStatus(str, Enum):
    NEW = "new"
    INSERT = "insert"
    CONFLICT = "conflict"
    SKIP = "skip"
    AUGMENT = "augment"


class ConflictResolution(str, Enum):
    SKIP = "skip"
    CAST = "cast"
    ALTER = "alter"
    BLOCK = "block"


class StatementType(str, Enum):
    CREATE_TABLE = "CREATE_TABLE"
    ALTER_TABLE = "ALTER_TABLE"
    CREATE_INDEX = "CREATE_INDEX"
    INSERT = "INSERT"
    DROP_TABLE = "DROP_TABLE"
    BEGIN_TRANSACTION = "BEGIN_TRANSACTION"
    COMMIT_TRANSACTION = "COMMIT_TRANSACTION"


# --- Normalized JSON -------------------------------------------------------

@dataclass
class JsonColumn:
    """One inferred column of a normalized table."""
    name: str
    path: str
    sample_values: List[Any] = field(default_factory=list)
    is_nested: bool = False
    is_array: bool = False


@dataclass
class JsonTable:
    """
    A normalized table: ordered columns plus the rows collected for it.

    Every row carries ``_row_id`` and, for child tables, ``_parent_id``.
    Rows only contain the columns they had values for; a missing key reads as NULL.
    """
    name: str
    columns: List[JsonColumn] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    parent_table: Optional[str] = None
    foreign_key: Optional[str] = None

    def column(self, name):
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def column_names(self):
        return [col.name for col in self.columns]

    def headers(self):
        """Public column names (internal ``_row_id``/``_parent_id`` left out)."""
        return [col.name for col in self.columns if col.name not in INTERNAL_COLUMNS]

    def rows_as_array(self):
        """Rows as a 2D grid matching ``headers()``, for previews."""
        headers = self.headers()
        return [[row.get(h) for h in headers] for row in self.rows]

    def column_values(self, name):
        return [row.get(name) for row in self.rows]


@dataclass
class ForeignKeyRelationship:
    parent_table: str
    child_table: str
    parent_column: str = ROW_ID
    child_column: str = PARENT_ID


@dataclass
class ParsedJsonData:
    tables: List[JsonTable]
    root_type: RootType
    total_rows: int
    relationships: List[ForeignKeyRelationship]

    def table(self, name):
        for table in self.tables:
            if table.name == name:
                return table
        return None


@dataclass
class JsonStructureNode:
    """Descriptive node for one object- or array-valued field."""
    key: str
    path: str
    type: str  # "object" or "array"
    depth: int
    field_count: int = 0
    sample_keys: List[str] = field(default_factory=list)
    has_nested_arrays: bool = False
    item_type: Optional[str] = None  # "object" or "primitive" for non-empty arrays
    item_count: Optional[int] = None
    children: List["JsonStructureNode"] = field(default_factory=list)


# --- Type inference ---------------------------------------------------------

@dataclass
class ColumnTypeInfo:
    name: str
    inferred_type: PostgresType
    nullable: bool
    unique_ratio: float
    sample_values: List[Any]
    casting_success_rate: float
    suggest_primary_key: bool
    suggest_index: bool


@dataclass
class CastingResult:
    success: bool
    value: Any
    original_value: Any
    error: Optional[str] = None


@dataclass
class CastingRule:
    source_column: str
    target_type: PostgresType
    null_on_failure: bool = False
    trim_whitespace: bool = False
    date_format: Optional[str] = None


# --- Existing schema and matching -------------------------------------------

@dataclass(frozen=True)
class ExistingColumn:
    name: str
    type: str
    nullable: bool = True


@dataclass(frozen=True)
class ExistingTableSchema:
    name: str
    columns: tuple = ()

    @classmethod
    def from_dict(cls, data):
        """Build from ``{"name": ..., "columns": [{"name", "type", "nullable"}]}``."""
        columns = tuple(
            ExistingColumn(
                name=col["name"],
                type=col.get("type", "text"),
                nullable=col.get("nullable", True),
            )
            for col in data.get("columns", [])
        )
        return cls(name=data["name"], columns=columns)


@dataclass
class ColumnMatchResult:
    import_column: str
    existing_column: Optional[str]
    type_match: bool
    import_type: str
    existing_type: Optional[str] = None


@dataclass
class ColumnConflict:
    column: str
    import_type: str
    existing_type: str
    resolution: ConflictResolution = ConflictResolution.CAST


@dataclass
class TableMatchResult:
    import_table: str
    match_type: MatchType
    existing_table: Optional[str] = None
    match_score: int = 0
    column_matches: List[ColumnMatchResult] = field(default_factory=list)
    conflicts: List[ColumnConflict] = field(default_factory=list)
    missing_columns: List[str] = field(default_factory=list)
    extra_columns: List[str] = field(default_factory=list)
    status: TableStatus = TableStatus.NEW

    def conflict_for(self, column):
        for conflict in self.conflicts:
            if conflict.column == column:
                return conflict
        return None


# --- SQL generation ----------------------------------------------------------

@dataclass
class ColumnDefinition:
    name: str
    type: str
    nullable: bool = True
    is_primary_key: bool = False
    is_unique: bool = False
    default_value: Optional[str] = None
    references: Optional[Dict[str, Any]] = None  # {"table", "column", optional "schema" and "sanitize"}


@dataclass
class IndexDefinition:
    name: str
    columns: List[str]
    unique: bool = False


@dataclass
class TableDefinition:
    name: str
    schema: str
    columns: List[ColumnDefinition]
    indexes: List[IndexDefinition] = field(default_factory=list)


@dataclass
class SQLStatement:
    type: StatementType
    sql: str
    description: str
    sequence: int = 0
    table_name: Optional[str] = None

    def to_dict(self):
        return {
            "type": self.type.value,
            "sql": self.sql,
            "description": self.description,
            "sequence": self.sequence,
            "table_name": self.table_name,
        }
