"""
Tests for import script generation.
"""

import logging
import re
import uuid

import pytest

from JsonToPostgres.core.models import (
    CastingRule,
    ColumnDefinition,
    IndexDefinition,
    PostgresType,
    SQLStatement,
    StatementType,
    TableDefinition,
)
from JsonToPostgres.core.normalizer import JsonNormalizer
from JsonToPostgres.core.table_matcher import match_tables, update_conflict_resolution, update_match_resolution
from JsonToPostgres.core.type_inference import infer_column_type
from JsonToPostgres.database.sql_writer import (
    IdRemapper,
    PostgresTableCreator,
    auto_id_column,
    generate_full_import_sql,
    generate_multi_table_import_sql,
    generate_smart_import_sql,
    generate_table_definition_from_inference,
    render_script,
)

UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")
DDL_TYPES = (StatementType.CREATE_TABLE, StatementType.CREATE_INDEX, StatementType.ALTER_TABLE)


def statements_for(statements, statement_type, table_name=None):
    return [s for s in statements
            if s.type == statement_type and (table_name is None or s.table_name == table_name)]


def generate(parsed, matches=None, existing=None, **kwargs):
    return generate_smart_import_sql(parsed.tables, parsed.relationships, matches, existing, **kwargs)


class TestIdRemapper:
    """Row id to UUID mapping."""

    def test_object_ids_get_new_uuids(self):
        remapper = IdRemapper()
        final_id = remapper.remap("docs", "507f1f77bcf86cd799439011")

        assert final_id != "507f1f77bcf86cd799439011"
        assert uuid.UUID(final_id)

    def test_uuids_are_kept(self):
        row_id = str(uuid.uuid4())
        assert IdRemapper().remap("docs", row_id) == row_id

    def test_counters_get_uuids(self):
        remapper = IdRemapper()
        final_id = remapper.remap("docs", 1)

        assert uuid.UUID(final_id)
        assert remapper.resolve("docs", 1, "children") == final_id

    def test_unresolved_parent_keeps_original(self, caplog):
        caplog.set_level(logging.WARNING)

        assert IdRemapper().resolve("docs", 7, "children") == 7
        assert "Could not resolve parent id" in caplog.text


class TestProcessingOrder:
    def test_parents_first(self):
        order = PostgresTableCreator._determine_processing_order(
            ["c", "b", "a", "d"], {"c": "b", "b": "a"}
        )
        assert order == ["a", "d", "b", "c"]

    def test_cycles_terminate(self):
        order = PostgresTableCreator._determine_processing_order(["a", "b"], {"a": "b", "b": "a"})
        assert sorted(order) == ["a", "b"]


class TestNewTables:
    """Scripts for tables that do not exist yet."""

    @pytest.fixture
    def parsed(self, user_with_tags):
        return JsonNormalizer.normalize(user_with_tags)

    def test_statement_layout(self, parsed):
        """DDL for every table first, then the INSERTs, inside a transaction."""
        statements = generate(parsed)

        assert [(s.type, s.table_name) for s in statements] == [
            (StatementType.BEGIN_TRANSACTION, None),
            (StatementType.CREATE_TABLE, "user"),
            (StatementType.CREATE_TABLE, "user_tags"),
            (StatementType.INSERT, "user"),
            (StatementType.INSERT, "user_tags"),
            (StatementType.COMMIT_TRANSACTION, None),
        ]
        assert [s.sequence for s in statements] == list(range(len(statements)))

    def test_ddl_precedes_inserts(self, parsed):
        statements = generate(parsed)

        last_ddl = max(i for i, s in enumerate(statements) if s.type in DDL_TYPES)
        first_insert = min(i for i, s in enumerate(statements) if s.type == StatementType.INSERT)
        assert last_ddl < first_insert

    def test_child_table_references_parent(self, parsed):
        [create] = statements_for(generate(parsed), StatementType.CREATE_TABLE, "user_tags")

        assert '"id" UUID PRIMARY KEY DEFAULT gen_random_uuid()' in create.sql
        assert '"value" TEXT' in create.sql
        assert '"_parent_id" UUID NOT NULL REFERENCES "public"."user"("id")' in create.sql

    def test_parent_ids_resolve_to_written_ids(self, parsed):
        statements = generate(parsed)
        [user_insert] = statements_for(statements, StatementType.INSERT, "user")
        [tags_insert] = statements_for(statements, StatementType.INSERT, "user_tags")

        user_ids = set(UUID_RE.findall(user_insert.sql))
        tag_uuids = UUID_RE.findall(tags_insert.sql)

        assert len(user_ids) == 1
        assert tags_insert.sql.startswith('INSERT INTO "public"."user_tags" ("id", "value", "_parent_id")')
        # id, parent id per row
        assert set(tag_uuids[1::2]) <= user_ids

    def test_object_ids_are_never_written_as_ids(self):
        data = [{"_id": "507f1f77bcf86cd799439011", "name": "a", "orders": [{"sku": "x"}]}]
        parsed = JsonNormalizer.normalize(data)

        script = render_script(generate(parsed), "public")

        assert "507f1f77bcf86cd799439011" not in script
        assert 'REFERENCES "public"."imported_data"("id")' in script

    def test_without_transaction(self, parsed):
        statements = generate(parsed, wrap_in_transaction=False)

        assert statements[0].type == StatementType.CREATE_TABLE
        assert not statements_for(statements, StatementType.COMMIT_TRANSACTION)

    def test_schema(self, parsed):
        statements = generate(parsed, schema="staging")
        [create] = statements_for(statements, StatementType.CREATE_TABLE, "user_tags")

        assert 'CREATE TABLE IF NOT EXISTS "staging"."user_tags"' in create.sql
        assert 'REFERENCES "staging"."user"("id")' in create.sql

    def test_tables_without_selected_rows_keep_their_ddl(self, parsed):
        statements = generate(parsed, selected_rows={"user_tags": {99}})

        assert statements_for(statements, StatementType.CREATE_TABLE, "user_tags")
        assert not statements_for(statements, StatementType.INSERT, "user_tags")

    def test_selected_rows(self):
        parsed = JsonNormalizer.normalize({"items": [{"a": 1}, {"a": 2}, {"a": 3}]})

        [insert] = statements_for(generate(parsed, selected_rows={"items": {0, 2}}), StatementType.INSERT)

        assert insert.description == "Insert rows 1-2 of 2 total (batch 1/1)"
        assert ", 1)" in insert.sql and ", 3)" in insert.sql
        assert ", 2)" not in insert.sql

    def test_multi_table_import(self, parsed):
        statements = generate_multi_table_import_sql(parsed.tables, parsed.relationships)
        assert len(statements_for(statements, StatementType.CREATE_TABLE)) == 2


class TestExistingTables:
    """Scripts that write into tables that already exist."""

    @pytest.fixture
    def parsed(self, people_rows):
        return JsonNormalizer.normalize(people_rows, root_table_name="users")

    @pytest.fixture
    def conflicting_users(self):
        return {"name": "users", "columns": [{"name": "id", "type": "uuid"},
                                              {"name": "name", "type": "text"},
                                              {"name": "age", "type": "boolean"}]}

    def test_insert_into_existing(self, parsed, existing_users):
        matches = match_tables(parsed.tables, [existing_users])

        statements = generate(parsed, matches, [existing_users])

        assert not statements_for(statements, StatementType.CREATE_TABLE)
        [insert] = statements_for(statements, StatementType.INSERT)
        assert insert.sql.startswith('INSERT INTO "public"."users" ("id", "name", "age")')

    def test_skip(self, parsed, existing_users):
        matches = update_match_resolution(match_tables(parsed.tables, [existing_users]), "users", "skip")

        statements = generate(parsed, matches, [existing_users])

        assert [s.type for s in statements] == [StatementType.BEGIN_TRANSACTION,
                                                StatementType.COMMIT_TRANSACTION]

    def test_cast_resolution(self, parsed, conflicting_users):
        matches = match_tables(parsed.tables, [conflicting_users])

        [insert] = statements_for(generate(parsed, matches, [conflicting_users]), StatementType.INSERT)

        assert "30::boolean" in insert.sql
        assert "'Ann'," in insert.sql

    def test_alter_resolution(self, parsed, conflicting_users):
        matches = update_conflict_resolution(match_tables(parsed.tables, [conflicting_users]),
                                             "users", "age", "alter")

        statements = generate(parsed, matches, [conflicting_users])
        [alter] = statements_for(statements, StatementType.ALTER_TABLE)
        [insert] = statements_for(statements, StatementType.INSERT)

        assert alter.sql == 'ALTER TABLE "public"."users" ALTER COLUMN "age" TYPE INTEGER USING "age"::INTEGER;'
        assert "::" not in insert.sql

    def test_skip_resolution_leaves_column_out(self, parsed, conflicting_users):
        matches = update_conflict_resolution(match_tables(parsed.tables, [conflicting_users]),
                                             "users", "age", "skip")

        [insert] = statements_for(generate(parsed, matches, [conflicting_users]), StatementType.INSERT)

        assert insert.sql.startswith('INSERT INTO "public"."users" ("id", "name")\n')

    def test_augment_adds_missing_columns(self, parsed):
        existing = {"name": "users", "columns": [{"name": "id", "type": "uuid"},
                                                  {"name": "name", "type": "text"}]}
        matches = update_match_resolution(match_tables(parsed.tables, [existing]), "users", "augment")

        statements = generate(parsed, matches, [existing])
        [alter] = statements_for(statements, StatementType.ALTER_TABLE)
        [insert] = statements_for(statements, StatementType.INSERT)

        assert alter.sql == 'ALTER TABLE "public"."users" ADD COLUMN IF NOT EXISTS "age" INTEGER;'
        assert insert.sql.startswith('INSERT INTO "public"."users" ("id", "name", "age")')

    def test_existing_names_are_used_verbatim(self, parsed):
        existing = {"name": "Users", "columns": [{"name": "ID", "type": "uuid"},
                                                  {"name": "Name", "type": "text"}]}
        matches = match_tables(parsed.tables, [existing])

        [insert] = statements_for(generate(parsed, matches, [existing]), StatementType.INSERT)

        assert insert.sql.startswith('INSERT INTO "public"."Users" ("ID", "Name")')

    def test_integer_id_is_not_written(self, parsed, caplog):
        caplog.set_level(logging.WARNING)
        existing = {"name": "users", "columns": [{"name": "id", "type": "serial"},
                                                  {"name": "name", "type": "text"},
                                                  {"name": "age", "type": "integer"}]}
        matches = match_tables(parsed.tables, [existing])

        [insert] = statements_for(generate(parsed, matches, [existing]), StatementType.INSERT)

        assert insert.sql.startswith('INSERT INTO "public"."users" ("name", "age")')
        assert "row ids are not written" in caplog.text

    def test_skipped_parent_falls_back_to_original_ids(self, user_with_tags, caplog):
        caplog.set_level(logging.WARNING)
        parsed = JsonNormalizer.normalize(user_with_tags)
        matches = update_match_resolution(match_tables(parsed.tables, []), "user", "skip")

        statements = generate(parsed, matches, [])

        assert not statements_for(statements, StatementType.INSERT, "user")
        assert statements_for(statements, StatementType.INSERT, "user_tags")
        assert "Could not resolve parent id" in caplog.text


class TestParentForeignKeys:
    """Where the _parent_id of a new child table points."""

    @pytest.fixture
    def parsed(self):
        return JsonNormalizer.normalize({"customer": [{"name": "Ann", "orders": [{"sku": "a"}]}]})

    def create_for(self, statements, table_name):
        [create] = statements_for(statements, StatementType.CREATE_TABLE, table_name)
        return create.sql

    def test_fuzzy_matched_parent(self, parsed):
        existing = {"name": "customers", "columns": [{"name": "id", "type": "uuid"},
                                                      {"name": "name", "type": "text"}]}
        matches = match_tables(parsed.tables, [existing])

        statements = generate(parsed, matches, [existing])

        assert matches[0].existing_table == "customers"
        create = self.create_for(statements, "orders")
        assert '"_parent_id" UUID NOT NULL REFERENCES "public"."customers"("id")' in create
        [insert] = statements_for(statements, StatementType.INSERT, "customers")
        assert insert.sql.startswith('INSERT INTO "public"."customers" ("id", "name")')

    def test_parent_with_different_case(self, parsed):
        existing = {"name": "Customer", "columns": [{"name": "ID", "type": "uuid"},
                                                     {"name": "Name", "type": "text"}]}
        matches = match_tables(parsed.tables, [existing])

        statements = generate(parsed, matches, [existing])

        assert 'REFERENCES "public"."Customer"("ID")' in self.create_for(statements, "orders")

    def test_skipped_parent_has_no_foreign_key(self, parsed, caplog):
        caplog.set_level(logging.WARNING)
        matches = update_match_resolution(match_tables(parsed.tables, []), "customer", "skip")

        statements = generate(parsed, matches, [])

        create = self.create_for(statements, "orders")
        assert '"_parent_id" UUID NOT NULL' in create
        assert "REFERENCES" not in create
        assert "_parent_id gets no foreign key" in caplog.text

    def test_parent_with_text_id_has_no_foreign_key(self, parsed, caplog):
        caplog.set_level(logging.WARNING)
        existing = {"name": "customer", "columns": [{"name": "id", "type": "text"},
                                                     {"name": "name", "type": "text"}]}
        matches = match_tables(parsed.tables, [existing])

        statements = generate(parsed, matches, [existing])

        assert "REFERENCES" not in self.create_for(statements, "orders")
        assert "no uuid id column" in caplog.text


class TestOverridesAndRules:
    """Caller supplied table definitions and casting rules."""

    @pytest.fixture
    def parsed(self, people_rows):
        return JsonNormalizer.normalize(people_rows, root_table_name="users")

    def test_user_table_override(self, parsed):
        override = TableDefinition(
            name="users",
            schema="public",
            columns=[auto_id_column(), ColumnDefinition("name", "VARCHAR(100)", nullable=False)],
            indexes=[IndexDefinition("idx_users_name", ["name"])],
        )

        statements = generate(parsed, user_table_overrides={"users": override})
        [create] = statements_for(statements, StatementType.CREATE_TABLE)
        [index] = statements_for(statements, StatementType.CREATE_INDEX)
        [insert] = statements_for(statements, StatementType.INSERT)

        assert '"name" VARCHAR(100) NOT NULL' in create.sql
        assert '"age"' not in create.sql
        assert index.sql == 'CREATE INDEX IF NOT EXISTS "idx_users_name" ON "public"."users" ("name");'
        assert insert.sql.startswith('INSERT INTO "public"."users" ("id", "name")\n')

    def test_override_gets_parent_link(self, user_with_tags):
        parsed = JsonNormalizer.normalize(user_with_tags)
        override = TableDefinition(name="user_tags", schema="public",
                                   columns=[auto_id_column(), ColumnDefinition("value", "VARCHAR(20)")])

        statements = generate(parsed, user_table_overrides={"user_tags": override})
        [create] = statements_for(statements, StatementType.CREATE_TABLE, "user_tags")
        [insert] = statements_for(statements, StatementType.INSERT, "user_tags")

        assert '"_parent_id" UUID NOT NULL REFERENCES "public"."user"("id")' in create.sql
        assert insert.sql.startswith('INSERT INTO "public"."user_tags" ("id", "value", "_parent_id")')

    def test_casting_rules(self, parsed):
        rules = {"users": {"age": CastingRule("age", PostgresType.TEXT)}}

        [insert] = statements_for(generate(parsed, casting_rules=rules), StatementType.INSERT)

        assert "'30'" in insert.sql

    def test_failed_casting_rule_keeps_value(self, parsed, caplog):
        caplog.set_level(logging.WARNING)
        rules = {"users": {"name": CastingRule("name", PostgresType.INTEGER)}}

        [insert] = statements_for(generate(parsed, casting_rules=rules), StatementType.INSERT)

        assert "'Ann'" in insert.sql
        assert "Casting rule failed" in caplog.text


class TestSingleTableHelpers:
    """Definitions and scripts built from column inference."""

    def test_table_definition_from_inference(self):
        infos = [infer_column_type(["a@x", "b@x"], "email"), infer_column_type([1, 2], "email")]

        table_def = generate_table_definition_from_inference("People", "public", infos, include_indexes=True)

        assert table_def.name == "people"
        assert [c.name for c in table_def.columns] == ["id", "email", "email_1"]
        assert table_def.indexes[0].name == "idx_people_email"

    def test_primary_key_without_generated_id(self):
        infos = [infer_column_type([1, 2, 3], "id"), infer_column_type(["a", "b", "c"], "label")]

        table_def = generate_table_definition_from_inference("t", "public", infos, add_id_column=False)

        assert [c.is_primary_key for c in table_def.columns] == [True, False]

    def test_full_import(self):
        table_def = TableDefinition("people", "public", [auto_id_column(), ColumnDefinition("name", "TEXT")])

        statements = generate_full_import_sql(table_def, [["Ann"], ["Bob"]])

        assert [s.type for s in statements] == [
            StatementType.BEGIN_TRANSACTION,
            StatementType.CREATE_TABLE,
            StatementType.INSERT,
            StatementType.COMMIT_TRANSACTION,
        ]
        assert [s.sequence for s in statements] == [0, 1, 2, 3]
        assert statements[2].sql == 'INSERT INTO "public"."people" ("name")\nVALUES\n(\'Ann\'),\n(\'Bob\');'


class TestRenderScript:
    """Executable script text."""

    def test_header_and_comments(self):
        statements = [
            SQLStatement(StatementType.BEGIN_TRANSACTION, "BEGIN;", "Start transaction"),
            SQLStatement(StatementType.INSERT, "SELECT 1;;  ", "Select one"),
        ]

        lines = render_script(statements, "public").splitlines()

        assert lines[0] == "-- Generated SQL Script for public schema"
        assert lines[1].startswith("-- Generated on ")
        assert lines[3:] == ["-- Start transaction", "BEGIN;", "", "-- Select one", "SELECT 1;"]
