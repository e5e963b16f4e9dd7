import json
from JsonToPostgres import JsonNormalizer, PostgresTableCreator, match_tables, render_script
from JsonToPostgres.core.table_matcher import get_matching_summary, update_conflict_resolution

with open("example.json", "r") as f:
    json_data = json.load(f)

# Tables already in the database, e.g. read from information_schema.columns
existing_tables = [
    {
        "name": "customers",
        "columns": [
            {"name": "id", "type": "uuid", "nullable": False},
            {"name": "email", "type": "text", "nullable": True},
            {"name": "age", "type": "integer", "nullable": True},
        ],
    },
]

# Step 1: Normalize JSON data into relational tables
parsed = JsonNormalizer.normalize(json_data, root_table_name="customers", strategy="partial")

# Step 2: Compare against the existing tables and review the conflicts
matches = match_tables(parsed.tables, existing_tables)
print(get_matching_summary(matches))
for match in matches:
    for conflict in match.conflicts:
        # Change the column type instead of casting each value
        matches = update_conflict_resolution(matches, match.import_table, conflict.column, "alter")

# Step 3: Generate the import script
creator = PostgresTableCreator(schema="public")
statements = creator.generate_smart_import_sql(parsed.tables, parsed.relationships, matches, existing_tables)
print(render_script(statements, "public"))
