"""
Pytest configuration and shared fixtures.
"""

import logging

import pytest

from JsonToPostgres.config import get_settings
from JsonToPostgres.core.models import ExistingColumn, ExistingTableSchema


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings from the environment for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handlers and levels installed by setup_logging."""
    yield
    package_logger = logging.getLogger("JsonToPostgres")
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def user_with_tags():
    """Single wrapped object holding a primitive array."""
    return {"user": {"name": "Ann", "tags": ["x", "y"]}}


@pytest.fixture
def items_document():
    """Wrapped array of objects with a column missing from the first row."""
    return {"items": [{"a": 1}, {"a": 2, "b": "x"}]}


@pytest.fixture
def people_rows():
    return [{"name": "Ann", "age": 30}, {"name": "Bob", "age": 41}]


@pytest.fixture
def existing_users():
    """Existing ``users`` table with a UUID id and matching columns."""
    return ExistingTableSchema(
        name="users",
        columns=(
            ExistingColumn("id", "uuid", nullable=False),
            ExistingColumn("name", "text"),
            ExistingColumn("age", "integer"),
        ),
    )
