from .sql_writer import PostgresTableCreator

__all__ = [
    'PostgresTableCreator'
]
