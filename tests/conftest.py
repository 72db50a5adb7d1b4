import copy
import os
import sys
import types
from datetime import datetime

import pytest
from dateutil import parser as date_parser

# Ensure the repository root is importable so 'slabmarket' can be resolved
THIS_DIR = os.path.dirname(__file__)
ROOT_DIR = os.path.abspath(os.path.join(THIS_DIR, ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)


# ---------- In-memory Supabase ----------


def _comparable(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return date_parser.isoparse(value)
        except ValueError:
            return value
    return value


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Chainable subset of the postgrest query builder used by the project."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.columns = "*"
        self.count = None
        self.filters = []
        self.orders = []
        self.max_rows = None
        self.payload = None
        self.on_conflict = None

    # --- operations ---
    def select(self, columns="*", count=None):
        self.op, self.columns, self.count = "select", columns, count
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def upsert(self, rows, on_conflict=None):
        self.op, self.payload, self.on_conflict = "upsert", rows, on_conflict
        return self

    # --- filters ---
    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def gte(self, column, value):
        def check(row):
            current = row.get(column)
            if current is None:
                return False
            return _comparable(current) >= _comparable(value)

        self.filters.append(check)
        return self

    def is_(self, column, value):
        expected = None if value in ("null", None) else value
        self.filters.append(lambda row: row.get(column) is expected)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.max_rows = n
        return self

    # --- execution ---
    def _matches(self, row):
        return all(check(row) for check in self.filters)

    def _project(self, row):
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        names = [c.strip() for c in self.columns.split(",")]
        return {name: copy.deepcopy(row.get(name)) for name in names}

    def execute(self):
        self.db.calls.append((self.table_name, self.op))
        failure = self.db.failures.get((self.table_name, self.op))
        if failure is not None:
            raise failure

        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "select":
            found = [row for row in rows if self._matches(row)]
            for column, desc in reversed(self.orders):
                found.sort(
                    key=lambda r: (r.get(column) is None, r.get(column) if r.get(column) is not None else ""),
                    reverse=desc,
                )
            total = len(found)
            if self.max_rows is not None:
                found = found[: self.max_rows]
            return FakeResponse(
                [self._project(r) for r in found],
                count=total if self.count == "exact" else None,
            )

        if self.op == "insert":
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            rows.extend(copy.deepcopy(new_rows))
            return FakeResponse(copy.deepcopy(new_rows))

        if self.op == "update":
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(copy.deepcopy(self.payload))
                    updated.append(copy.deepcopy(row))
            return FakeResponse(updated)

        if self.op == "upsert":
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            keys = [k.strip() for k in (self.on_conflict or "id").split(",")]
            for new_row in new_rows:
                for row in rows:
                    if all(row.get(k) == new_row.get(k) for k in keys):
                        row.update(copy.deepcopy(new_row))
                        break
                else:
                    rows.append(copy.deepcopy(new_row))
            return FakeResponse(copy.deepcopy(new_rows))

        raise AssertionError(f"unsupported op {self.op}")


class FakeAuth:
    def __init__(self):
        self.tokens = {}

    def get_user(self, token):
        if token not in self.tokens:
            raise Exception("invalid JWT")
        return types.SimpleNamespace(user=types.SimpleNamespace(id=self.tokens[token]))


class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    def upload(self, path, content, file_options=None):
        if self.storage.fail_uploads:
            raise Exception("storage unavailable")
        self.storage.objects[(self.name, path)] = (content, file_options)
        return types.SimpleNamespace(path=path)

    def get_public_url(self, path):
        return f"https://project.supabase.co/storage/v1/object/public/{self.name}/{path}"


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.fail_uploads = False

    def from_(self, bucket):
        return FakeBucket(self, bucket)


class FakeSupabase:
    def __init__(self, tables=None):
        self.tables = {name: list(rows) for name, rows in (tables or {}).items()}
        self.failures = {}
        self.calls = []
        self.auth = FakeAuth()
        self.storage = FakeStorage()

    def table(self, name):
        return FakeQuery(self, name)

    def fail(self, table, op, error=None):
        self.failures[(table, op)] = error or Exception(f"{table} {op} failed")

    def count_calls(self, table, op):
        return sum(1 for call in self.calls if call == (table, op))


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


# ---------- PSA scrape stub ----------

SCRAPED_CERT = {
    "card_name": "CHARIZARD-HOLO",
    "set_name": "POKEMON GAME",
    "card_number": "4",
    "year": 1999,
    "grade": "GEM MT 10",
    "image_url": "https://d1htnxwo4o0jhw.cloudfront.net/cert/12345678/front.jpg",
    "pop_report": {"grade": "GEM MT 10", "population": 121},
}


@pytest.fixture
def scrape_calls(monkeypatch):
    """Replace the PSA page fetch with a recorder; returns the list of cert numbers fetched."""
    from slabmarket import psa_scraper
    from slabmarket.models.certificate import ScrapeResult

    calls = []

    async def fake_fetch(cert_number, **kwargs):
        calls.append(cert_number)
        return ScrapeResult(ok=True, data=dict(SCRAPED_CERT, certificate_number=cert_number))

    monkeypatch.setattr(psa_scraper, "fetch_certificate_data", fake_fetch)
    return calls
