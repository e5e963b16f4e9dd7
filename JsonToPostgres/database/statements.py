# Contains builders for single PostgreSQL statements
import datetime
import decimal
import json
import math
import numbers
import re

import pandas as pd

from ..config import get_settings
from ..core.models import SQLStatement, StatementType
from ..core.naming import make_sql_safe
from ..core.type_inference import generate_column_definition, is_mongo_object_id

_LAX_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

__all__ = [
    "calculate_batch_size",
    "escape_sql_string",
    "format_sql_value",
    "generate_alter_column_type_sql",
    "generate_alter_table_add_columns_sql",
    "generate_create_table_sql",
    "generate_drop_table_sql",
    "generate_index_sql",
    "generate_insert_batch_sql",
    "is_mongo_object_id",
    "is_valid_uuid",
    "qualified_name",
    "quote_identifier",
]


def is_valid_uuid(value):
    """Any 8-4-4-4-12 hex string, whatever its version nibble."""
    return isinstance(value, str) and bool(_LAX_UUID_RE.match(value))


def escape_sql_string(text):
    """Escape single quotes in SQL strings."""
    return str(text).replace("'", "''")


def quote_identifier(name):
    return '"' + str(name).replace('"', '""') + '"'


def qualified_name(table_name, schema=None, sanitize=True):
    """
    Quoted ``"schema"."table"`` reference.

    Existing tables are passed with ``sanitize=False`` so their exact names are kept.
    """
    table = make_sql_safe(table_name) if sanitize else table_name
    if schema:
        return f"{quote_identifier(schema)}.{quote_identifier(table)}"
    return quote_identifier(table)


def format_sql_value(value):
    """
    Format a value as a PostgreSQL literal.

    Args:
        value: Python value from a normalized row

    Returns:
        str: ``NULL``, ``TRUE``/``FALSE``, a number, a quoted string,
            a quoted ISO-8601 date/time, or ``'<json>'::jsonb``
    """
    if value is None:
        return "NULL"

    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"

    if isinstance(value, (dict, list, tuple)):
        return f"'{escape_sql_string(json.dumps(value))}'::jsonb"

    if isinstance(value, (datetime.date, datetime.time)):
        if pd.isna(value):
            return "NULL"
        return f"'{value.isoformat()}'"

    if isinstance(value, numbers.Integral):
        return str(int(value))

    if isinstance(value, decimal.Decimal):
        return str(value) if value.is_finite() else "NULL"

    if isinstance(value, numbers.Real):
        if pd.isna(value) or not math.isfinite(value):
            return "NULL"
        return str(value)

    if not isinstance(value, str) and pd.isna(value):
        return "NULL"

    return f"'{escape_sql_string(value)}'"


def calculate_batch_size(column_count, total_rows, max_params=None, preferred_batch_size=None):
    """
    Rows per INSERT statement.

    Stays below the bind parameter limit for the column count, at the
    preferred batch size and never above the number of rows.
    """
    settings = get_settings()
    max_params = max_params or settings.max_params_per_statement
    preferred_batch_size = preferred_batch_size or settings.preferred_batch_size

    max_rows_per_batch = max_params // max(column_count, 1)
    return max(min(max_rows_per_batch, preferred_batch_size, total_rows), 0)


def _column_sql(col, sanitize=True):
    name = make_sql_safe(col.name) if sanitize else col.name
    sql = "  " + generate_column_definition(
        name,
        col.type,
        col.nullable,
        is_primary_key=col.is_primary_key,
        is_unique=col.is_unique,
        default_value=col.default_value,
    )
    if col.references:
        ref_table = qualified_name(col.references["table"], col.references.get("schema"),
                                   sanitize=col.references.get("sanitize", True))
        sql += f" REFERENCES {ref_table}({quote_identifier(col.references['column'])})"
    return sql


def generate_create_table_sql(table_def) -> SQLStatement:
    """
    Generate a CREATE TABLE IF NOT EXISTS statement.

    Args:
        table_def: TableDefinition (name, schema, columns)

    Returns:
        SQLStatement: CREATE_TABLE statement
    """
    safe_name = make_sql_safe(table_def.name)
    full_name = qualified_name(safe_name, table_def.schema)
    column_defs = ",\n".join(_column_sql(col) for col in table_def.columns)

    return SQLStatement(
        type=StatementType.CREATE_TABLE,
        sql=f"CREATE TABLE IF NOT EXISTS {full_name} (\n{column_defs}\n);",
        description=f"Create table {safe_name}",
        sequence=0,
        table_name=safe_name,
    )


def generate_index_sql(table_name, schema, indexes, sanitize=True):
    """Generate one CREATE INDEX IF NOT EXISTS statement per index definition."""
    table = make_sql_safe(table_name) if sanitize else table_name
    full_name = qualified_name(table, schema, sanitize=False)
    statements = []

    for i, index in enumerate(indexes):
        columns = [make_sql_safe(c) if sanitize else c for c in index.columns]
        index_name = index.name or f"idx_{make_sql_safe(table)}_{'_'.join(make_sql_safe(c) for c in columns)}"
        index_name = index_name[:get_settings().max_identifier_length]
        unique = "UNIQUE " if index.unique else ""
        column_list = ", ".join(quote_identifier(c) for c in columns)

        statements.append(SQLStatement(
            type=StatementType.CREATE_INDEX,
            sql=f"CREATE {unique}INDEX IF NOT EXISTS {quote_identifier(index_name)} ON {full_name} ({column_list});",
            description=f"Create {'unique ' if index.unique else ''}index on {', '.join(index.columns)}",
            sequence=i + 1,
            table_name=table,
        ))
    return statements


def generate_insert_batch_sql(table_name, schema, columns, rows, batch_size=50,
                              sanitize=True, casts=None):
    """
    Generate batched multi-row INSERT statements.

    Args:
        table_name: Target table
        schema: Target schema (may be empty)
        columns: Column names, aligned with each row
        rows: Row value lists
        batch_size: Rows per statement
        sanitize: Sanitize table and column names (False for existing tables)
        casts: Optional type per column appended as ``::type`` to non-NULL values

    Returns:
        list: INSERT statements numbered from 1
    """
    if not rows:
        return []

    table = make_sql_safe(table_name) if sanitize else table_name
    full_name = qualified_name(table, schema, sanitize=False)
    column_list = ", ".join(quote_identifier(make_sql_safe(c) if sanitize else c) for c in columns)
    casts = casts or [None] * len(columns)

    batch_size = max(int(batch_size), 1)
    total = len(rows)
    total_batches = math.ceil(total / batch_size)
    statements = []

    for start in range(0, total, batch_size):
        batch = rows[start:start + batch_size]
        batch_num = start // batch_size + 1

        value_rows = []
        for row in batch:
            values = []
            for value, cast in zip(row, casts):
                literal = format_sql_value(value)
                if cast and literal != "NULL":
                    literal = f"{literal}::{cast}"
                values.append(literal)
            value_rows.append(f"({', '.join(values)})")

        statements.append(SQLStatement(
            type=StatementType.INSERT,
            sql=f"INSERT INTO {full_name} ({column_list})\nVALUES\n" + ",\n".join(value_rows) + ";",
            description=(f"Insert rows {start + 1}-{min(start + batch_size, total)} of {total} total "
                         f"(batch {batch_num}/{total_batches})"),
            sequence=batch_num,
            table_name=table,
        ))
    return statements


def generate_alter_table_add_columns_sql(table_name, schema, columns, sanitize=True):
    """
    Generate ALTER TABLE ... ADD COLUMN IF NOT EXISTS statements.

    Args:
        columns: Objects or dicts with ``name``, ``type`` and optional ``nullable``
    """
    table = make_sql_safe(table_name) if sanitize else table_name
    full_name = qualified_name(table, schema, sanitize=False)
    statements = []

    for i, col in enumerate(columns):
        if isinstance(col, dict):
            name, col_type, nullable = col["name"], col["type"], col.get("nullable", True)
        else:
            name, col_type, nullable = col.name, col.type, col.nullable
        col_type = getattr(col_type, "value", col_type)
        column = make_sql_safe(name) if sanitize else name
        not_null = " NOT NULL" if nullable is False else ""

        statements.append(SQLStatement(
            type=StatementType.ALTER_TABLE,
            sql=f"ALTER TABLE {full_name} ADD COLUMN IF NOT EXISTS {quote_identifier(column)} {col_type}{not_null};",
            description=f"Add column {name} to {table}",
            sequence=i,
            table_name=table,
        ))
    return statements


def generate_alter_column_type_sql(table_name, schema, column, new_type, sanitize=True) -> SQLStatement:
    """Generate ALTER TABLE ... ALTER COLUMN ... TYPE ... USING ...."""
    table = make_sql_safe(table_name) if sanitize else table_name
    full_name = qualified_name(table, schema, sanitize=False)
    new_type = getattr(new_type, "value", new_type)
    quoted = quote_identifier(make_sql_safe(column) if sanitize else column)

    return SQLStatement(
        type=StatementType.ALTER_TABLE,
        sql=f"ALTER TABLE {full_name} ALTER COLUMN {quoted} TYPE {new_type} USING {quoted}::{new_type};",
        description=f"Change type of column {column} on {table} to {new_type}",
        sequence=0,
        table_name=table,
    )


def generate_drop_table_sql(table_name, schema, sanitize=True) -> SQLStatement:
    table = make_sql_safe(table_name) if sanitize else table_name
    return SQLStatement(
        type=StatementType.DROP_TABLE,
        sql=f"DROP TABLE IF EXISTS {qualified_name(table, schema, sanitize=False)} CASCADE;",
        description=f"Drop table {table}",
        sequence=0,
        table_name=table,
    )
