# conftest.py

import copy
import os

import pytest

# Set testing environment BEFORE importing app
# This ensures app.py uses TestingConfig when imported
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from config.matching import DEFAULT_QUALITY_WEIGHTS, MatchingProfile, QualityWeights  # noqa: E402
from dedupe_app import DEDUPE_EXTENSION_KEY  # noqa: E402
from dedupe_app.dedupe.errors import NotFoundError  # noqa: E402
from dedupe_app.dedupe.models import Record, Schema  # noqa: E402

CONTACT_FIELD_TYPES = {
    "Name": "singleLineText",
    "First Name": "singleLineText",
    "Last Name": "singleLineText",
    "SSN": "singleLineText",
    "Phone": "phoneNumber",
    "Email": "email",
    "DOB": "date",
    "Address": "singleLineText",
    "Notes": "multilineText",
    "Case Notes": "multilineText",
    "Cases": "multipleRecordLinks",
    "Created": "createdTime",
    "Case Count": "count",
    "dedupe_history": "multilineText",
}


class FakeStore:
    """In-memory record store that records every call."""

    def __init__(self):
        self.schemas = {}
        self.tables = {}
        self.calls = []
        self.created = 0
        self._failures = {}

    def add_table(self, name, field_types=None, records=()):
        self.schemas[name] = Schema.from_field_types(name, field_types or CONTACT_FIELD_TYPES)
        self.tables[name] = {}
        for record in records:
            self.put(name, record)
        return self.schemas[name]

    def put(self, table, record):
        self.tables.setdefault(table, {})[record.id] = copy.deepcopy(dict(record.fields))

    def fail_on(self, method, exc, predicate=None):
        """Raise ``exc`` from ``method`` whenever ``predicate(*args)`` is true (always when omitted)."""
        self._failures[method] = (exc, predicate)

    def clear_failures(self):
        self._failures.clear()

    def _check(self, method, *args):
        self.calls.append((method, args))
        failure = self._failures.get(method)
        if failure is None:
            return
        exc, predicate = failure
        if predicate is None or predicate(*args):
            raise exc

    def _record(self, table, record_id):
        return Record(record_id, copy.deepcopy(self.tables[table][record_id]))

    def fetch_schema(self, table):
        self._check("fetch_schema", table)
        if table not in self.schemas:
            raise NotFoundError(f'Table "{table}" not found')
        return self.schemas[table]

    def fetch_all_records(self, table, *, fields=None, filter_formula=None):
        self._check("fetch_all_records", table)
        return [self._record(table, record_id) for record_id in self.tables.get(table, {})]

    def get_record(self, table, record_id):
        self._check("get_record", table, record_id)
        if record_id not in self.tables.get(table, {}):
            raise NotFoundError(f"Record {record_id} not found in {table}")
        return self._record(table, record_id)

    def update_record(self, table, record_id, fields):
        self._check("update_record", table, record_id, dict(fields))
        if record_id not in self.tables.get(table, {}):
            raise NotFoundError(f"Record {record_id} not found in {table}")
        self.tables[table][record_id].update(copy.deepcopy(dict(fields)))
        return self._record(table, record_id)

    def create_record(self, table, fields):
        self._check("create_record", table, dict(fields))
        self.created += 1
        record_id = f"recNew{self.created}"
        self.tables.setdefault(table, {})[record_id] = copy.deepcopy(dict(fields))
        return self._record(table, record_id)

    def delete_records(self, table, record_ids):
        self._check("delete_records", table, list(record_ids))
        deleted = []
        for record_id in record_ids:
            if self.tables.get(table, {}).pop(record_id, None) is not None:
                deleted.append(record_id)
        return deleted

    def calls_to(self, method):
        return [args for name, args in self.calls if name == method]


@pytest.fixture
def contact_schema():
    return Schema.from_field_types("Clients", CONTACT_FIELD_TYPES)


@pytest.fixture
def profile():
    """Contact profile with SSN as a unique id and one field per merge rule."""
    return MatchingProfile(
        key="test",
        label="Test contacts",
        unique_id_fields=("SSN",),
        concatenate_fields=("Notes",),
        append_fields=("Case Notes",),
        link_fields=("Cases",),
        quality_weights=QualityWeights(
            field_points=dict(DEFAULT_QUALITY_WEIGHTS.field_points),
            link_points={"Cases": 20},
        ),
    )


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture(scope="function")
def app(fake_store, profile):
    """Flask app wired to an in-memory store and the test profile"""
    state = flask_app.extensions[DEDUPE_EXTENSION_KEY]
    saved = dict(state)
    saved_config = {key: flask_app.config.get(key) for key in ("DEDUPE_ENABLED", "AIRTABLE_TABLE_NAME")}

    flask_app.config.update({"TESTING": True, "DEDUPE_ENABLED": True, "AIRTABLE_TABLE_NAME": "Clients"})
    state.update({"enabled": True, "profile": profile, "store": fake_store})
    try:
        yield flask_app
    finally:
        state.clear()
        state.update(saved)
        flask_app.config.update(saved_config)


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()
