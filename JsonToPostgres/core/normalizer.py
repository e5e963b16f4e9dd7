# Contains main normalization logic
import json
import logging
from pathlib import Path

from ..config import get_settings
from ..exceptions import JsonParseError
from .analyzer import JsonType, join_path, detect_json_type, has_nested_arrays
from .models import (
    INTERNAL_COLUMNS,
    PARENT_ID,
    ROW_ID,
    JsonColumn,
    NormalizationStrategy,
    ParsedJsonData,
    RootType,
)
from .naming import make_sql_safe, table_name_from_file
from .table_builder import RowIdCounter, TableBuilder
from .type_inference import is_mongo_object_id, is_uuid

logger = logging.getLogger(__name__)

SOURCE_ID_KEYS = ("_id", "id")
RESERVED_COLUMNS = ("id", "_id") + INTERNAL_COLUMNS


def load_json(json_data):
    """
    Decode a JSON string; other values are returned unchanged.

    Raises:
        JsonParseError: If the string is not valid JSON
    """
    if not isinstance(json_data, (str, bytes, bytearray)):
        return json_data
    try:
        return json.loads(json_data)
    except json.JSONDecodeError as e:
        raise JsonParseError(
            f"Invalid JSON string provided: {e.msg} (line {e.lineno}, column {e.colno})",
            line=e.lineno,
            column=e.colno,
        ) from e


class JsonNormalizer:
    """
    Handles the normalization of JSON data into relational tables.

    Each call to ``run`` works on its own table arena and row id counter.
    """

    def __init__(self, root_table_name=None, strategy=None, custom_table_paths=None,
                 row_id_style=None, adopt_source_ids=None):
        settings = get_settings()
        self.root_table_name = make_sql_safe(root_table_name or settings.default_root_table)
        self.strategy = NormalizationStrategy(strategy or settings.default_strategy)
        self.custom_table_paths = set(custom_table_paths or ())
        self.row_id_style = row_id_style or settings.row_id_style
        self.adopt_source_ids = settings.adopt_source_ids if adopt_source_ids is None else adopt_source_ids
        self._builder = None

    @staticmethod
    def normalize(json_data, root_table_name="imported_data", strategy="partial",
                  custom_table_paths=None, row_id_style=None, adopt_source_ids=None) -> ParsedJsonData:
        """
        Convert any JSON structure to normalized tables.

        Args:
            json_data: The JSON data to normalize (string or already decoded)
            root_table_name: Name for the root table
            strategy: "partial", "full" or "custom"
            custom_table_paths: Dotted object paths promoted under "custom"
            row_id_style: "counter" or "uuid" (default: settings)
            adopt_source_ids: Reuse UUID/ObjectId ``_id``/``id`` fields as row ids (default: settings)

        Returns:
            ParsedJsonData: Tables in discovery order plus their relationships

        Raises:
            JsonParseError: If ``json_data`` is a malformed JSON string
        """
        normalizer = JsonNormalizer(
            root_table_name=root_table_name,
            strategy=strategy,
            custom_table_paths=custom_table_paths,
            row_id_style=row_id_style,
            adopt_source_ids=adopt_source_ids,
        )
        return normalizer.run(json_data)

    def run(self, json_data) -> ParsedJsonData:
        data = load_json(json_data)
        self._builder = TableBuilder(RowIdCounter(self.row_id_style))

        json_type = detect_json_type(data)
        if json_type == JsonType.ARRAY:
            root_type = RootType.ARRAY
            if data:
                self._process_array(data, self.root_table_name, None, None, "", junction=False)
        elif json_type == JsonType.OBJECT:
            root_type = RootType.OBJECT
            self._process_root_object(data, self.root_table_name, "")
        else:
            root_type = RootType.PRIMITIVE

        parsed = self._builder.build(root_type)
        self._builder = None

        logger.info("Normalized JSON into %d table(s), %d row(s) in %s",
                    len(parsed.tables), sum(len(t.rows) for t in parsed.tables),
                    parsed.tables[0].name if parsed.tables else "no table")
        return parsed

    def _process_root_object(self, data, table_name, path):
        """Unwrap single-key wrapper objects before processing the row."""
        if len(data) == 1:
            key, value = next(iter(data.items()))
            child_name = make_sql_safe(key)
            child_path = join_path(path, key)
            json_type = detect_json_type(value)

            if json_type == JsonType.ARRAY and value and detect_json_type(value[0]) == JsonType.OBJECT:
                self._process_array(value, child_name, None, None, child_path, junction=False)
                return
            if json_type == JsonType.OBJECT:
                self._process_root_object(value, child_name, child_path)
                return

        self._process_object(data, table_name, None, None, path)

    def _should_promote(self, value, path):
        if self.strategy == NormalizationStrategy.FULL:
            return True
        if self.strategy == NormalizationStrategy.CUSTOM:
            return path in self.custom_table_paths
        return has_nested_arrays(value)

    def _source_id(self, data, table_name):
        """Return the key whose value becomes the row id, or None."""
        if not self.adopt_source_ids:
            return None
        for key in SOURCE_ID_KEYS:
            value = data.get(key)
            if isinstance(value, str) and (is_uuid(value) or is_mongo_object_id(value)):
                if self._builder.claim_row_id(table_name, value):
                    return key
                logger.warning("Duplicate source id %s in %s, minting a new row id", value, table_name)
                return None
        return None

    def _process_object(self, data, table_name, parent_table, parent_row_id, path):
        """
        Create one row from an object and process its nested structures.

        Returns:
            The row id assigned to the object
        """
        table = self._builder.get_table(table_name, parent_table)

        source_key = self._source_id(data, table.name)
        if source_key is not None:
            row_id = data[source_key]
        else:
            row_id = self._builder.next_row_id(table.name)

        row = {ROW_ID: row_id}
        if parent_table is not None:
            row[PARENT_ID] = parent_row_id

        fields = {}
        nested_objects = []
        nested_arrays = []
        self._collect_fields(table, data, "", (), path, row, fields, nested_objects, nested_arrays,
                             skip_key=source_key)

        self._builder.add_row(table, row, fields)

        # Process nested objects that have their own structure
        for key, value, child_path in nested_objects:
            self._process_object(value, key, table.name, row_id, child_path)

        for key, value, child_path in nested_arrays:
            self._process_array(value, key, table.name, row_id, child_path)

        return row_id

    def _collect_fields(self, table, data, prefix, source, path, row, fields, nested_objects, nested_arrays,
                        skip_key=None):
        """Split scalar fields from nested structures, flattening objects that stay inline."""
        for key, value in data.items():
            if skip_key is not None and key == skip_key:
                continue

            column = make_sql_safe(key)
            if prefix:
                column = make_sql_safe(f"{prefix}_{column}")
            elif column in RESERVED_COLUMNS:
                # Keep the generated primary key and link columns free
                column = f"source_{column.lstrip('_')}"

            field_path = join_path(path, key)
            field_source = source + (key,)
            json_type = detect_json_type(value)

            if json_type == JsonType.ARRAY:
                if value:
                    nested_arrays.append((column, value, field_path))
            elif json_type == JsonType.OBJECT:
                if self._should_promote(value, field_path):
                    logger.debug("Promoting %s to its own table", field_path)
                    nested_objects.append((column, value, field_path))
                else:
                    logger.debug("Flattening %s into %s_*", field_path, column)
                    self._collect_fields(table, value, column, field_source, field_path, row, fields,
                                        nested_objects, nested_arrays)
            else:
                column = self._builder.resolve_column_name(table, column, field_source)
                row[column] = value
                fields[column] = (field_path, bool(prefix))

    def _process_array(self, items, key, parent_table, parent_row_id, path, junction=True):
        """
        Route a non-empty array to an object table or a primitive value table.

        Object arrays are named after the field; primitive arrays become
        ``<parent>_<field>`` unless ``junction`` is False.
        """
        if detect_json_type(items[0]) == JsonType.OBJECT:
            for item in items:
                if detect_json_type(item) == JsonType.OBJECT:
                    self._process_object(item, key, parent_table, parent_row_id, path)
                else:
                    logger.debug("Skipping non-object item in %s", path or key)
            return

        table_name = make_sql_safe(f"{parent_table}_{key}") if junction and parent_table else key
        self._process_primitive_array(items, table_name, parent_table, parent_row_id, path)

    def _process_primitive_array(self, items, table_name, parent_table, parent_row_id, path):
        """Store an array of primitives as one ``value`` row per item."""
        columns = [JsonColumn(name="value", path=path or "value", is_array=True)]
        if parent_table:
            columns.append(JsonColumn(name=PARENT_ID, path=PARENT_ID))
        table = self._builder.get_table(table_name, parent_table, columns=columns)

        for value in items:
            row = {ROW_ID: self._builder.next_row_id(table.name), "value": value}
            if parent_table is not None:
                row[PARENT_ID] = parent_row_id
            self._builder.add_row(table, row)


def parse_json_string(text, table_name="pasted_data", **options) -> ParsedJsonData:
    """
    Parse a JSON string directly (for pasted data).

    Raises:
        JsonParseError: If the text is not valid JSON
    """
    return JsonNormalizer.normalize(text, root_table_name=table_name, **options)


def parse_json_file(path, **options) -> ParsedJsonData:
    """Parse a JSON file; the root table is named after the file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    return JsonNormalizer.normalize(text, root_table_name=table_name_from_file(path.name), **options)
