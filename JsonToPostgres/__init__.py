from .core.normalizer import JsonNormalizer, parse_json_file, parse_json_string
from .core.analyzer import JsonStructureAnalyzer, analyze_json_structure
from .core.table_builder import TableBuilder
from .core.table_matcher import match_tables
from .database.sql_writer import PostgresTableCreator, generate_smart_import_sql, render_script
from .exceptions import JsonImportError, JsonParseError

from .main import ImportResult, process_json_to_postgres

__all__ = [
    "PostgresTableCreator",
    "process_json_to_postgres",
    "ImportResult",
    "JsonNormalizer",
    "JsonStructureAnalyzer",
    "TableBuilder",
    "analyze_json_structure",
    "parse_json_string",
    "parse_json_file",
    "match_tables",
    "generate_smart_import_sql",
    "render_script",
    "JsonImportError",
    "JsonParseError",
]
