"""
Tests for JSON normalization into relational tables.
"""

import logging
import uuid

import pytest

from JsonToPostgres.core.models import PARENT_ID, ROW_ID, RootType
from JsonToPostgres.core.naming import make_sql_safe, normalize_for_matching, table_name_from_file
from JsonToPostgres.core.normalizer import JsonNormalizer, parse_json_file, parse_json_string
from JsonToPostgres.core.table_builder import RowIdCounter
from JsonToPostgres.exceptions import JsonImportError, JsonParseError

OBJECT_ID = "507f1f77bcf86cd799439011"


def table_names(parsed):
    return [table.name for table in parsed.tables]


def assert_referential_closure(parsed):
    """Every child row points at an existing parent row."""
    for rel in parsed.relationships:
        parent_ids = {row[ROW_ID] for row in parsed.table(rel.parent_table).rows}
        for row in parsed.table(rel.child_table).rows:
            assert row[PARENT_ID] in parent_ids


class TestNaming:
    """Identifier sanitization."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("First Name", "first_name"),
            ("1st", "_1st"),
            ("", "_empty"),
            ("user-id", "user_id"),
            ("Ünïcode", "_n_code"),
        ],
    )
    def test_make_sql_safe(self, name, expected):
        assert make_sql_safe(name) == expected

    def test_long_names_are_truncated(self):
        assert len(make_sql_safe("x" * 100)) == 63

    def test_table_name_from_file(self):
        assert table_name_from_file("Customer Orders.JSON") == "customer_orders"

    def test_normalize_for_matching(self):
        assert normalize_for_matching("Customer_Orders") == "customerorders"


class TestRowIdCounter:
    """Per-table row id sequences."""

    def test_counter_per_table(self):
        counter = RowIdCounter()

        assert [counter.next_row_id("a") for _ in range(3)] == [1, 2, 3]
        assert counter.next_row_id("b") == 1

    def test_uuid_style(self):
        row_id = RowIdCounter("uuid").next_row_id("a")
        assert uuid.UUID(row_id)

    def test_unknown_style(self):
        with pytest.raises(ValueError):
            RowIdCounter("sequence")


class TestJsonNormalizer:
    """Decomposition of documents into tables."""

    def test_array_of_objects_becomes_one_table(self, items_document):
        """Columns are the union of keys in first-seen order."""
        parsed = JsonNormalizer.normalize(items_document)

        assert table_names(parsed) == ["items"]
        table = parsed.tables[0]
        assert table.headers() == ["a", "b"]
        assert len(table.rows) == 2
        assert table.rows_as_array() == [[1, None], [2, "x"]]
        assert parsed.root_type == RootType.OBJECT
        assert parsed.total_rows == 2

    def test_primitive_array_becomes_junction_table(self, user_with_tags):
        parsed = JsonNormalizer.normalize(user_with_tags)

        assert table_names(parsed) == ["user", "user_tags"]
        user, tags = parsed.tables
        assert user.headers() == ["name"]
        assert tags.headers() == ["value"]
        assert tags.parent_table == "user"
        assert [row["value"] for row in tags.rows] == ["x", "y"]
        assert [(r.parent_table, r.child_table) for r in parsed.relationships] == [("user", "user_tags")]
        assert_referential_closure(parsed)

    def test_malformed_json(self):
        with pytest.raises(JsonParseError) as exc_info:
            JsonNormalizer.normalize('{\n  "a": 1,\n}')

        assert exc_info.value.line == 3
        assert isinstance(exc_info.value, ValueError)
        assert isinstance(exc_info.value, JsonImportError)
        assert str(exc_info.value).startswith("Invalid JSON string provided")

    def test_primitive_root(self):
        parsed = JsonNormalizer.normalize("42")

        assert parsed.tables == []
        assert parsed.root_type == RootType.PRIMITIVE
        assert parsed.total_rows == 0

    def test_root_array_of_primitives(self):
        parsed = JsonNormalizer.normalize([1, 2, 3], root_table_name="numbers")

        assert table_names(parsed) == ["numbers"]
        assert parsed.tables[0].headers() == ["value"]
        assert parsed.tables[0].parent_table is None
        assert parsed.relationships == []
        assert parsed.root_type == RootType.ARRAY

    def test_non_objects_after_first_object_are_skipped(self):
        parsed = JsonNormalizer.normalize([{"a": 1}, 5, {"a": 2}], root_table_name="rows")
        assert len(parsed.tables[0].rows) == 2

    def test_empty_arrays_are_skipped(self):
        parsed = JsonNormalizer.normalize({"a": 1, "list": []}, root_table_name="doc")

        assert table_names(parsed) == ["doc"]
        assert parsed.tables[0].headers() == ["a"]

    def test_empty_keys(self):
        parsed = JsonNormalizer.normalize([{"": 1}], root_table_name="doc")
        assert parsed.tables[0].headers() == ["_empty"]

    def test_counters_are_per_run(self, items_document):
        first = JsonNormalizer.normalize(items_document)
        second = JsonNormalizer.normalize(items_document)

        assert [row[ROW_ID] for row in first.tables[0].rows] == [1, 2]
        assert [row[ROW_ID] for row in second.tables[0].rows] == [1, 2]

    def test_uuid_row_ids(self, user_with_tags):
        parsed = JsonNormalizer.normalize(user_with_tags, row_id_style="uuid")

        for table in parsed.tables:
            for row in table.rows:
                assert uuid.UUID(row[ROW_ID])
        assert_referential_closure(parsed)

    def test_sample_values_are_capped(self):
        parsed = JsonNormalizer.normalize([{"n": i} for i in range(10)], root_table_name="nums")
        assert parsed.tables[0].column("n").sample_values == [0, 1, 2, 3, 4]


class TestStrategies:
    """Which nested objects become tables."""

    @pytest.fixture
    def person(self):
        return {
            "id": 7,
            "profile": {"city": "A", "geo": {"lat": 1.5}},
            "meta": {"labels": ["x"]},
        }

    def test_partial_promotes_objects_with_arrays(self, person):
        parsed = JsonNormalizer.normalize(person, root_table_name="people", strategy="partial")

        assert table_names(parsed) == ["people", "meta", "meta_labels"]
        assert parsed.tables[0].headers() == ["source_id", "profile_city", "profile_geo_lat"]
        assert parsed.tables[0].column("profile_geo_lat").is_nested is True
        assert parsed.tables[0].column("profile_geo_lat").path == "profile.geo.lat"

    def test_full_promotes_every_object(self, person):
        parsed = JsonNormalizer.normalize(person, root_table_name="people", strategy="full")

        assert table_names(parsed) == ["people", "profile", "geo", "meta", "meta_labels"]
        assert parsed.table("geo").parent_table == "profile"
        assert_referential_closure(parsed)

    def test_custom_promotes_chosen_paths(self, person):
        parsed = JsonNormalizer.normalize(person, root_table_name="people", strategy="custom",
                                          custom_table_paths=["profile.geo"])

        assert table_names(parsed) == ["people", "profile_geo", "people_meta_labels"]
        assert parsed.tables[0].headers() == ["source_id", "profile_city"]
        assert parsed.table("people_meta_labels").parent_table == "people"

    def test_unknown_strategy(self, person):
        with pytest.raises(ValueError):
            JsonNormalizer.normalize(person, strategy="everything")


class TestTableNames:
    """Every table keeps exactly one parent."""

    def test_same_field_under_two_parents(self):
        data = {
            "a": [{"x": 1, "items": [{"v": 1}]}],
            "b": [{"y": 2, "items": [{"v": 2}]}],
        }
        parsed = JsonNormalizer.normalize(data, root_table_name="root")

        assert table_names(parsed) == ["root", "a", "items", "b", "b_items"]
        assert parsed.table("items").parent_table == "a"
        assert parsed.table("b_items").parent_table == "b"
        assert_referential_closure(parsed)

    def test_child_named_like_its_parent(self):
        parsed = JsonNormalizer.normalize({"node": [{"node": [{"v": 1}]}], "x": 1}, root_table_name="root")

        assert table_names(parsed) == ["root", "node", "node_node"]
        assert_referential_closure(parsed)

    def test_repeated_rows_share_a_child_table(self):
        data = [{"n": 1, "tags": ["a"]}, {"n": 2, "tags": ["b", "c"]}]
        parsed = JsonNormalizer.normalize(data, root_table_name="posts")

        assert table_names(parsed) == ["posts", "posts_tags"]
        assert [row[PARENT_ID] for row in parsed.table("posts_tags").rows] == [1, 2, 2]


class TestColumnNames:
    """Fields that sanitize to the same column name."""

    def test_flattened_field_next_to_matching_scalar(self, caplog):
        data = [{"a_b": 1, "a": {"b": 2}}, {"a": {"b": 4}, "a_b": 3}]

        with caplog.at_level(logging.WARNING, logger="JsonToPostgres"):
            table = JsonNormalizer.normalize(data, root_table_name="things").tables[0]

        assert table.headers() == ["a_b", "a_b_2"]
        assert [(row["a_b"], row["a_b_2"]) for row in table.rows] == [(1, 2), (3, 4)]
        assert table.column("a_b_2").path == "a.b"
        assert "already holds another field" in caplog.text

    def test_keys_differing_only_in_case(self):
        table = JsonNormalizer.normalize([{"Name": "a", "name": "b"}], root_table_name="things").tables[0]

        assert table.headers() == ["name", "name_2"]
        assert table.rows[0] == {ROW_ID: 1, "name": "a", "name_2": "b"}

    def test_numbered_names_fit_the_identifier_limit(self):
        long_key = "k" * 70
        table = JsonNormalizer.normalize([{long_key: 1, long_key.upper(): 2}],
                                         root_table_name="things").tables[0]

        assert table.headers() == ["k" * 63, "k" * 61 + "_2"]


class TestSourceIds:
    """Reuse of UUID and ObjectId identifiers as row ids."""

    def test_object_id_becomes_row_id(self):
        parsed = JsonNormalizer.normalize([{"_id": OBJECT_ID, "name": "a"}], root_table_name="docs")
        table = parsed.tables[0]

        assert table.rows[0][ROW_ID] == OBJECT_ID
        assert table.headers() == ["name"]

    def test_duplicate_source_id_gets_a_fresh_row_id(self):
        data = [{"_id": OBJECT_ID, "name": "a"}, {"_id": OBJECT_ID, "name": "b"}]
        table = JsonNormalizer.normalize(data, root_table_name="docs").tables[0]

        assert [row[ROW_ID] for row in table.rows] == [OBJECT_ID, 1]
        assert table.headers() == ["name", "source_id"]

    def test_adoption_can_be_disabled(self):
        data = [{"_id": OBJECT_ID, "name": "a"}]
        table = JsonNormalizer.normalize(data, root_table_name="docs", adopt_source_ids=False).tables[0]

        assert table.rows[0][ROW_ID] == 1
        assert table.rows[0]["source_id"] == OBJECT_ID

    def test_plain_ids_are_kept_as_columns(self):
        table = JsonNormalizer.normalize([{"id": 10}], root_table_name="docs").tables[0]

        assert table.rows[0][ROW_ID] == 1
        assert table.headers() == ["source_id"]

    def test_underscore_and_plain_ids_both_kept(self):
        data = [{"_id": OBJECT_ID, "id": 10}]
        table = JsonNormalizer.normalize(data, root_table_name="docs", adopt_source_ids=False).tables[0]

        assert table.headers() == ["source_id", "source_id_2"]
        assert table.rows[0]["source_id"] == OBJECT_ID
        assert table.rows[0]["source_id_2"] == 10


class TestParseHelpers:
    """String and file entry points."""

    def test_parse_json_string(self):
        parsed = parse_json_string('[{"a": 1}]')
        assert table_names(parsed) == ["pasted_data"]

    def test_parse_json_file(self, tmp_path):
        path = tmp_path / "My Data.json"
        path.write_text('[{"a": 1}, {"a": 2}]', encoding="utf-8")

        parsed = parse_json_file(path)

        assert table_names(parsed) == ["my_data"]
        assert parsed.total_rows == 2
