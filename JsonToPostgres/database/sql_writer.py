# Contains PostgreSQL script generation
import datetime
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from ..config import get_settings
from ..core.models import (
    PARENT_ID,
    ROW_ID,
    ColumnDefinition,
    ConflictResolution,
    IndexDefinition,
    PostgresType,
    SQLStatement,
    StatementType,
    TableDefinition,
    TableStatus,
)
from ..core.naming import make_sql_safe
from ..core.table_matcher import as_existing_schema, normalize_type
from ..core.type_inference import attempt_cast, infer_column_type
from .statements import (
    calculate_batch_size,
    generate_alter_column_type_sql,
    generate_alter_table_add_columns_sql,
    generate_create_table_sql,
    generate_index_sql,
    generate_insert_batch_sql,
    is_mongo_object_id,
    is_valid_uuid,
)

logger = logging.getLogger(__name__)


class StatementCollector:
    """Collects generated statements in execution order instead of executing them."""

    def __init__(self):
        self.statements: List[SQLStatement] = []

    def execute(self, statement: SQLStatement):
        statement.sequence = len(self.statements)
        self.statements.append(statement)

    def execute_all(self, statements):
        for statement in statements:
            self.execute(statement)

    def begin(self):
        self.execute(SQLStatement(
            type=StatementType.BEGIN_TRANSACTION,
            sql="BEGIN;",
            description="Start transaction (rollback all on any failure)",
        ))

    def commit(self):
        self.execute(SQLStatement(
            type=StatementType.COMMIT_TRANSACTION,
            sql="COMMIT;",
            description="Commit transaction",
        ))


class IdRemapper:
    """
    Maps the row ids of one generation run to the UUIDs written as ``id``.

    MongoDB ObjectIds and non-UUID ids get a fresh UUID; valid UUIDs are kept.
    """

    def __init__(self):
        self.id_maps: Dict[str, dict] = {}  # table -> {original id: final id}

    def remap(self, table_name, original_id):
        if is_mongo_object_id(original_id):
            final_id = str(uuid.uuid4())
        elif is_valid_uuid(original_id):
            final_id = original_id
        else:
            final_id = str(uuid.uuid4())
        self.id_maps.setdefault(table_name, {})[original_id] = final_id
        return final_id

    def resolve(self, parent_table, original_parent_id, child_table):
        """Final id of a parent row, or the original id when it was never written."""
        resolved = self.id_maps.get(parent_table, {}).get(original_parent_id)
        if resolved is None:
            logger.warning("Could not resolve parent id %s of %s in %s, keeping the original value",
                           original_parent_id, child_table, parent_table)
            return original_parent_id
        return resolved


@dataclass
class _InsertPlan:
    """Where and how the rows of one import table are written."""
    table_name: str
    target_table: str
    sanitize: bool
    prepend_id: bool
    id_column: str = "id"
    id_is_uuid: bool = True
    columns: List[tuple] = field(default_factory=list)  # (import column, target column, cast type)
    ddl: List[SQLStatement] = field(default_factory=list)


class PostgresTableCreator:
    """
    Generates the PostgreSQL statements that create and populate normalized tables.

    Nothing is executed: statements are collected in order and returned, and
    ``render_script`` turns them into one executable script.
    """

    def __init__(self, schema=None, wrap_in_transaction=None):
        settings = get_settings()
        self.schema = schema or settings.default_schema
        self.wrap_in_transaction = (settings.wrap_in_transaction if wrap_in_transaction is None
                                    else wrap_in_transaction)

    def generate_smart_import_sql(self, tables, relationships, matches=None, existing_schemas=None,
                                  schema=None, selected_rows=None, user_table_overrides=None,
                                  wrap_in_transaction=None, casting_rules=None) -> List[SQLStatement]:
        """
        Generate import SQL that respects each table's match status.

        Args:
            tables: Normalized JsonTable list
            relationships: ForeignKeyRelationship list
            matches: TableMatchResult list; tables without a match are new
            existing_schemas: ExistingTableSchema objects or dicts
            schema: Target schema
            selected_rows: ``{table: set of row indexes}``; empty or missing means all rows
            user_table_overrides: ``{table: TableDefinition}`` for new tables
            wrap_in_transaction: Emit BEGIN/COMMIT around the script
            casting_rules: ``{table: {column: CastingRule}}`` applied before formatting

        Returns:
            list: SQLStatement list with continuous sequence numbers
        """
        schema = schema or self.schema
        wrap = self.wrap_in_transaction if wrap_in_transaction is None else wrap_in_transaction
        selected_rows = selected_rows or {}
        user_table_overrides = user_table_overrides or {}
        casting_rules = casting_rules or {}

        parent_map = {rel.child_table: rel.parent_table for rel in relationships}
        tables_by_name = {table.name: table for table in tables}
        matches_by_table = {m.import_table: m for m in matches or ()}
        schemas_by_name = {s.name: s for s in (as_existing_schema(s) for s in existing_schemas or ())}

        collector = StatementCollector()
        remapper = IdRemapper()

        if wrap:
            collector.begin()

        # DDL for every table first, parents before children
        plans = []
        parent_refs = {}  # table -> foreign key target of its rows, None when there is none
        for table_name in self._determine_processing_order(tables_by_name, parent_map):
            table = tables_by_name[table_name]
            match = matches_by_table.get(table_name)
            status = TableStatus(match.status) if match else TableStatus.NEW

            if status == TableStatus.SKIP:
                logger.info("Skipping table %s", table_name)
                parent_refs[table_name] = None
                continue

            if status == TableStatus.NEW:
                reference = self._parent_reference(table_name, parent_map.get(table_name), parent_refs, schema)
                plan = self._plan_new_table(table, parent_map.get(table_name), schema,
                                            user_table_overrides.get(table_name), reference)
            else:
                existing = schemas_by_name.get(match.existing_table) if match.existing_table else None
                plan = self._plan_existing_table(table, match, existing, status,
                                                 parent_map.get(table_name), schema)

            collector.execute_all(plan.ddl)
            plans.append(plan)
            parent_refs[table_name] = _row_reference(plan, schema)

        for plan in plans:
            table = tables_by_name[plan.table_name]
            rows = self._selected_rows(table, selected_rows.get(plan.table_name))
            if not rows:
                logger.debug("No rows selected for %s, only its DDL is emitted", plan.table_name)
                continue
            collector.execute_all(self._insert_statements(
                plan, table, rows, parent_map.get(plan.table_name), schema, remapper,
                casting_rules.get(plan.table_name, {}),
            ))

        if wrap:
            collector.commit()

        logger.info("Generated %d statement(s) for %d table(s)", len(collector.statements), len(plans))
        return collector.statements

    def generate_multi_table_import_sql(self, tables, relationships, schema=None, selected_rows=None,
                                        user_table_overrides=None, wrap_in_transaction=None):
        """Generate SQL treating every table as new."""
        return self.generate_smart_import_sql(
            tables, relationships, matches=None, existing_schemas=None, schema=schema,
            selected_rows=selected_rows, user_table_overrides=user_table_overrides,
            wrap_in_transaction=wrap_in_transaction,
        )

    @staticmethod
    def _determine_processing_order(table_names, parent_map):
        """
        Order tables parents first.

        Tables are sorted by their number of ancestors; the sort is stable so
        siblings keep discovery order. A cyclic parent chain stops at the
        first repeated table.

        Args:
            table_names: All table names in our dataset
            parent_map: Dict mapping each child table to its parent

        Returns:
            list: Tables in processing order
        """
        def depth(name):
            seen = set()
            current = name
            count = 0
            while current in parent_map and current not in seen:
                seen.add(current)
                current = parent_map[current]
                count += 1
            return count

        return sorted(table_names, key=depth)

    @staticmethod
    def _selected_rows(table, selection):
        if not selection:
            return table.rows
        return [row for index, row in enumerate(table.rows) if index in selection]

    @staticmethod
    def _parent_reference(table_name, parent_table, parent_refs, schema):
        """
        Foreign key target for the ``_parent_id`` of a new child table.

        Points at the table the parent rows were actually written to, under its
        exact name and id column. None when the parent is skipped or has no
        uuid id column.
        """
        if not parent_table:
            return None
        if parent_table not in parent_refs:
            return {"table": parent_table, "column": "id", "schema": schema}
        reference = parent_refs[parent_table]
        if reference is None:
            logger.warning("Parent table %s of %s is skipped or has no uuid id column; "
                           "_parent_id gets no foreign key", parent_table, table_name)
        return reference

    @staticmethod
    def _parent_column(reference):
        return ColumnDefinition(
            name=PARENT_ID,
            type=PostgresType.UUID.value,
            nullable=False,
            # Not unique: multiple children can have the same parent
            is_unique=False,
            references=reference,
        )

    def _plan_new_table(self, table, parent_table, schema, override: Optional[TableDefinition], reference=None):
        """CREATE TABLE (plus override indexes) for a table that does not exist yet."""
        if override is not None:
            columns = []
            for col in override.columns:
                if col.name == PARENT_ID:
                    if parent_table:
                        col = replace(col, type=PostgresType.UUID.value, nullable=False,
                                      references=reference)
                    else:
                        continue
                columns.append(col)
            if parent_table and not any(col.name == PARENT_ID for col in columns):
                columns.append(self._parent_column(reference))

            table_def = TableDefinition(name=table.name, schema=schema, columns=columns,
                                        indexes=list(override.indexes))
            import_columns = set(table.headers())
            insert_columns = [(col.name, col.name, None) for col in columns
                              if col.name in import_columns]
            id_column = next((col for col in columns if col.name == "id"), None)
            prepend_id = id_column is not None
            id_is_uuid = prepend_id and normalize_type(getattr(id_column.type, "value", id_column.type)) == "uuid"
        else:
            table_def = TableDefinition(
                name=table.name,
                schema=schema,
                columns=[auto_id_column()] + [
                    ColumnDefinition(name=name, type=_inferred_type(table, name), nullable=True)
                    for name in table.headers()
                ],
            )
            if parent_table:
                table_def.columns.append(self._parent_column(reference))
            insert_columns = [(name, name, None) for name in table.headers()]
            prepend_id = True
            id_is_uuid = True

        if parent_table:
            insert_columns.append((PARENT_ID, PARENT_ID, None))

        ddl = [generate_create_table_sql(table_def)]
        ddl.extend(generate_index_sql(table.name, schema, table_def.indexes))

        return _InsertPlan(
            table_name=table.name,
            target_table=table.name,
            sanitize=True,
            prepend_id=prepend_id,
            id_is_uuid=id_is_uuid,
            columns=insert_columns,
            ddl=ddl,
        )

    def _plan_existing_table(self, table, match, existing, status, parent_table, schema):
        """INSERT (after ALTERs for augment/alter resolutions) into an existing table."""
        target = match.existing_table or table.name
        ddl = []
        columns = []

        if existing is not None:
            for col_match in match.column_matches:
                if not col_match.existing_column:
                    continue
                conflict = match.conflict_for(col_match.import_column)
                cast = None
                if conflict is not None:
                    resolution = ConflictResolution(conflict.resolution)
                    if resolution in (ConflictResolution.SKIP, ConflictResolution.BLOCK):
                        continue
                    if resolution == ConflictResolution.CAST:
                        cast = col_match.existing_type
                    elif resolution == ConflictResolution.ALTER:
                        ddl.append(generate_alter_column_type_sql(
                            target, schema, col_match.existing_column, conflict.import_type, sanitize=False,
                        ))
                columns.append((col_match.import_column, col_match.existing_column, cast))
        else:
            columns = [(name, name, None) for name in table.headers()]

        if status == TableStatus.AUGMENT and match.missing_columns:
            ddl.extend(generate_alter_table_add_columns_sql(
                target, schema,
                [{"name": name, "type": _inferred_type(table, name), "nullable": True}
                 for name in match.missing_columns],
                sanitize=False,
            ))
            columns.extend((name, name, None) for name in match.missing_columns)

        existing_columns = {c.name.lower(): c for c in existing.columns} if existing else {}
        mapped = {target_col.lower() for _, target_col, _ in columns}

        if parent_table and PARENT_ID in existing_columns and PARENT_ID not in mapped:
            columns.append((PARENT_ID, existing_columns[PARENT_ID].name, None))

        prepend_id = False
        id_name = "id"
        id_column = existing_columns.get("id")
        if id_column is not None and "id" not in mapped:
            if normalize_type(id_column.type) in ("uuid", "text"):
                prepend_id = True
                id_name = id_column.name
            else:
                logger.warning("Existing table %s has a %s id column; row ids are not written",
                               target, id_column.type)

        return _InsertPlan(
            table_name=table.name,
            target_table=target,
            sanitize=False,
            prepend_id=prepend_id,
            id_column=id_name,
            id_is_uuid=normalize_type(id_column.type) == "uuid" if prepend_id else False,
            columns=columns,
            ddl=ddl,
        )

    @staticmethod
    def _apply_casting_rule(rule, value, table_name, column):
        result = attempt_cast(value, rule.target_type, rule)
        if result.success:
            return result.value
        logger.warning("Casting rule failed for %s.%s: %s", table_name, column, result.error)
        return value

    def _insert_statements(self, plan, table, rows, parent_table, schema, remapper, rules):
        """Remap row ids and build the batched INSERTs for one table."""
        column_names = ([plan.id_column] if plan.prepend_id else []) + [target for _, target, _ in plan.columns]
        casts = ([None] if plan.prepend_id else []) + [cast for _, _, cast in plan.columns]

        data_rows = []
        for row in rows:
            final_id = remapper.remap(table.name, row[ROW_ID])
            values = [final_id] if plan.prepend_id else []

            for import_col, _, _ in plan.columns:
                if import_col == PARENT_ID:
                    values.append(remapper.resolve(parent_table, row.get(PARENT_ID), table.name))
                    continue
                value = row.get(import_col)
                rule = rules.get(import_col)
                if rule is not None:
                    value = self._apply_casting_rule(rule, value, table.name, import_col)
                values.append(value)
            data_rows.append(values)

        batch_size = calculate_batch_size(len(column_names), len(data_rows))
        return generate_insert_batch_sql(plan.target_table, schema, column_names, data_rows,
                                         batch_size, sanitize=plan.sanitize, casts=casts)


def auto_id_column():
    return ColumnDefinition(
        name="id",
        type=PostgresType.UUID.value,
        nullable=False,
        is_primary_key=True,
        is_unique=True,
        default_value="gen_random_uuid()",
    )


def _inferred_type(table, column):
    return infer_column_type(table.column_values(column), column).inferred_type.value

def _row_reference(plan, schema):
    if not (plan.prepend_id and plan.id_is_uuid):
        return None
    return {"table": plan.target_table, "column": plan.id_column, "schema": schema,
            "sanitize": plan.sanitize}



def generate_smart_import_sql(tables, relationships, matches, existing_schemas, schema="public",
                              selected_rows=None, user_table_overrides=None,
                              wrap_in_transaction=None, casting_rules=None):
    """Module-level shortcut for ``PostgresTableCreator.generate_smart_import_sql``."""
    return PostgresTableCreator(schema=schema).generate_smart_import_sql(
        tables, relationships, matches, existing_schemas, schema=schema,
        selected_rows=selected_rows, user_table_overrides=user_table_overrides,
        wrap_in_transaction=wrap_in_transaction, casting_rules=casting_rules,
    )


def generate_multi_table_import_sql(tables, relationships, schema="public", selected_rows=None,
                                    user_table_overrides=None, wrap_in_transaction=None):
    """Generate SQL for every table as a new table, parents first."""
    return PostgresTableCreator(schema=schema).generate_multi_table_import_sql(
        tables, relationships, schema=schema, selected_rows=selected_rows,
        user_table_overrides=user_table_overrides, wrap_in_transaction=wrap_in_transaction,
    )


def generate_table_definition_from_inference(table_name, schema, column_infos, add_id_column=True,
                                             include_indexes=False) -> TableDefinition:
    """
    Build a table definition from inferred column types.

    Duplicate column names get numeric suffixes (``name_1``, ``name_2``).

    Args:
        table_name: Table name (sanitized)
        schema: Target schema
        column_infos: ColumnTypeInfo list
        add_id_column: Prepend the generated UUID primary key
        include_indexes: Add an index for every column with ``suggest_index``

    Returns:
        TableDefinition
    """
    columns = []
    indexes = []
    used_names = set()
    safe_table = make_sql_safe(table_name)

    if add_id_column:
        columns.append(auto_id_column())
        used_names.add("id")

    for info in column_infos:
        sanitized = make_sql_safe(info.name)
        final_name = sanitized
        suffix = 1
        while final_name in used_names:
            final_name = f"{sanitized}_{suffix}"
            suffix += 1
        used_names.add(final_name)

        is_primary_key = (not add_id_column and info.suggest_primary_key
                          and not any(col.is_primary_key for col in columns))
        columns.append(ColumnDefinition(
            name=final_name,
            type=info.inferred_type.value,
            nullable=info.nullable,
            is_primary_key=is_primary_key,
        ))

        if include_indexes and info.suggest_index:
            indexes.append(IndexDefinition(name=f"idx_{safe_table}_{final_name}", columns=[final_name]))

    return TableDefinition(name=safe_table, schema=schema, columns=columns, indexes=indexes)


def generate_full_import_sql(table_def: TableDefinition, rows, batch_size=50,
                             wrap_in_transaction=True) -> List[SQLStatement]:
    """
    Generate the complete script for one new table with data.

    ``rows`` are value lists aligned with the table's columns, leaving out a
    generated primary key (one with a default value).
    """
    collector = StatementCollector()
    if wrap_in_transaction:
        collector.begin()

    collector.execute(generate_create_table_sql(table_def))
    collector.execute_all(generate_index_sql(table_def.name, table_def.schema, table_def.indexes))

    column_names = [col.name for col in table_def.columns
                    if not (col.is_primary_key and col.default_value)]
    collector.execute_all(generate_insert_batch_sql(
        table_def.name, table_def.schema, column_names, [list(row) for row in rows], batch_size,
    ))

    if wrap_in_transaction:
        collector.commit()
    return collector.statements


def render_script(statements, schema=None):
    """
    Join statements into one executable script.

    Args:
        statements: SQLStatement list in execution order
        schema: Schema name for the header comment

    Returns:
        str: Script with a header and a comment line per statement
    """
    script = []
    if schema:
        script.append(f"-- Generated SQL Script for {schema} schema")
    else:
        script.append("-- Generated SQL Script")
    script.append(f"-- Generated on {datetime.datetime.now()}")
    script.append("")

    for statement in statements:
        script.append(f"-- {statement.description}")
        # Exactly one trailing semicolon per statement
        script.append(statement.sql.strip().rstrip(";").strip() + ";")
        script.append("")

    return "\n".join(script)
