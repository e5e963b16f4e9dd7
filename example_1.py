import json
from JsonToPostgres import process_json_to_postgres

# Load your JSON data
with open("example.json", "r") as f:
    json_data = json.load(f)

schema = "public"
root_table_name = "customers"

# Basic Example: JSON to an import script in one step
result = process_json_to_postgres(json_data, root_table_name=root_table_name, schema=schema)

with open("import.sql", "w") as f:
    f.write(result.script)

print(f"Wrote {len(result.statements)} statements for {len(result.parsed.tables)} tables to import.sql")
