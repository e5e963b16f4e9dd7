# Contains the main entry point
import json
import logging
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List

import click

from .config import get_settings
from .core.analyzer import analyze_json_structure, structure_to_dict
from .core.models import NormalizationStrategy, ParsedJsonData, SQLStatement, TableMatchResult
from .core.naming import table_name_from_file
from .core.normalizer import JsonNormalizer, load_json
from .core.table_matcher import (
    as_existing_schema,
    match_tables,
    update_conflict_resolution,
    update_match_resolution,
)
from .database.sql_writer import PostgresTableCreator, render_script
from .exceptions import JsonImportError
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Everything one pipeline run produced."""
    parsed: ParsedJsonData
    matches: List[TableMatchResult] = field(default_factory=list)
    statements: List[SQLStatement] = field(default_factory=list)
    schema: str = "public"

    @property
    def script(self):
        return render_script(self.statements, self.schema)

    def to_dict(self):
        return {
            "root_type": self.parsed.root_type.value,
            "total_rows": self.parsed.total_rows,
            "tables": [
                {
                    "name": table.name,
                    "parent_table": table.parent_table,
                    "columns": table.headers(),
                    "row_count": len(table.rows),
                }
                for table in self.parsed.tables
            ],
            "relationships": [asdict(rel) for rel in self.parsed.relationships],
            "matches": [asdict(match) for match in self.matches],
            "statements": [statement.to_dict() for statement in self.statements],
        }


def process_json_to_postgres(json_data, root_table_name=None, existing_tables=None, schema=None,
                             strategy=None, custom_table_paths=None, table_statuses=None,
                             conflict_resolutions=None, selected_rows=None, user_table_overrides=None,
                             wrap_in_transaction=None, casting_rules=None) -> ImportResult:
    """
    Processes JSON data into the SQL that loads it into PostgreSQL.

    Args:
        json_data: The JSON data to process (string or decoded)
        root_table_name: Name for the root table (default: settings, "imported_data")
        existing_tables: ExistingTableSchema objects or ``{"name", "columns"}`` dicts
        schema: Target schema (default: settings, "public")
        strategy: "partial", "full" or "custom"
        custom_table_paths: Object paths promoted under "custom"
        table_statuses: ``{import table: status}`` overriding the matcher's decision
        conflict_resolutions: ``{import table: {column: resolution}}``
        selected_rows: ``{import table: set of row indexes}``
        user_table_overrides: ``{import table: TableDefinition}``
        wrap_in_transaction: Emit BEGIN/COMMIT (default: settings)
        casting_rules: ``{import table: {column: CastingRule}}``

    Returns:
        ImportResult: normalized tables, match results and statements

    Raises:
        JsonParseError: If ``json_data`` is a malformed JSON string
    """
    settings = get_settings()
    schema = schema or settings.default_schema

    # Transform the JSON into normalized tables
    parsed = JsonNormalizer.normalize(
        json_data,
        root_table_name=root_table_name or settings.default_root_table,
        strategy=strategy or settings.default_strategy,
        custom_table_paths=custom_table_paths,
    )

    existing = [as_existing_schema(table) for table in existing_tables or ()]
    matches = match_tables(parsed.tables, existing)

    # Apply the review decisions
    for table_name, resolutions in (conflict_resolutions or {}).items():
        for column, resolution in resolutions.items():
            matches = update_conflict_resolution(matches, table_name, column, resolution)
    for table_name, status in (table_statuses or {}).items():
        matches = update_match_resolution(matches, table_name, status)

    creator = PostgresTableCreator(schema=schema, wrap_in_transaction=wrap_in_transaction)
    statements = creator.generate_smart_import_sql(
        parsed.tables,
        parsed.relationships,
        matches,
        existing,
        schema=schema,
        selected_rows=selected_rows,
        user_table_overrides=user_table_overrides,
        casting_rules=casting_rules,
    )

    return ImportResult(parsed=parsed, matches=matches, statements=statements, schema=schema)


def load_existing_schema(path):
    """Read existing table descriptions: a list of tables or ``{"tables": [...]}``."""
    data = load_json(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("tables", [])
    return [as_existing_schema(table) for table in data]


@click.command("json-to-postgres")
@click.argument("input_file", type=click.File("r", encoding="utf-8"))
@click.option("--table", "table_name", help="Root table name (default: derived from the file name)")
@click.option("--schema", help="Target PostgreSQL schema")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in NormalizationStrategy]),
    help="How nested objects become tables",
)
@click.option("--custom-path", "custom_paths", multiple=True,
              help="Object path promoted to a table under --strategy custom (repeatable)")
@click.option("--existing-schema", "existing_schema", type=click.Path(exists=True, dir_okay=False),
              help="JSON file describing existing tables and columns")
@click.option("--no-transaction", is_flag=True, help="Do not wrap the script in BEGIN/COMMIT")
@click.option("--format", "output_format", type=click.Choice(["sql", "json"]), default="sql",
              help="Output format")
@click.option("--analyze", is_flag=True, help="Print the JSON structure tree instead of SQL")
@click.option("--log-level", help="DEBUG, INFO, WARNING or ERROR")
def main(input_file, table_name, schema, strategy, custom_paths, existing_schema, no_transaction,
         output_format, analyze, log_level):
    """Convert the JSON document INPUT_FILE ('-' for stdin) into PostgreSQL import SQL."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level, settings.log_json)

    text = input_file.read()
    if not table_name and input_file.name not in ("-", "<stdin>"):
        table_name = table_name_from_file(Path(input_file.name).name)

    try:
        if analyze:
            nodes = analyze_json_structure(load_json(text))
            click.echo(json.dumps([structure_to_dict(node) for node in nodes], indent=2))
            return

        existing_tables = load_existing_schema(existing_schema) if existing_schema else None
        result = process_json_to_postgres(
            text,
            root_table_name=table_name,
            existing_tables=existing_tables,
            schema=schema,
            strategy=strategy,
            custom_table_paths=custom_paths,
            wrap_in_transaction=False if no_transaction else None,
        )
    except JsonImportError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output_format == "json":
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        click.echo(result.script)


if __name__ == "__main__":
    main()
