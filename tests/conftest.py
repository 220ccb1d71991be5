"""Test conftest: Django settings plus in-memory ClickHouse and Kafka doubles."""

import os
import re

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "chsync.settings")
os.environ.setdefault("CLICKHOUSE_DATABASE", "default")
os.environ.setdefault("KAFKA_BOOTSTRAP_SERVERS", "127.0.0.1:9092")

import django  # noqa: E402

django.setup()

import pytest  # noqa: E402

from exporter.exceptions import TopicNotReadyError  # noqa: E402


class FakeResult:
    def __init__(self, rows):
        self._rows = list(rows)

    def __iter__(self):
        return iter(self._rows)

    def scalar(self):
        if not self._rows:
            return None
        return self._rows[0][0]


_LITERAL = r"('(?:[^']|'')*'|-?\d+(?:\.\d+)?)"
_PREDICATE = re.compile(r"`((?:[^`]|``)+)` (>=|<=|>) " + _LITERAL)
_LIMIT = re.compile(r"LIMIT (\d+)(?:, (\d+))?$")
_ORDER = re.compile(r"ORDER BY (.+?) LIMIT")


def _parse_literal(text):
    if text.startswith("'"):
        return text[1:-1].replace("''", "'")
    return float(text) if '.' in text else int(text)


def _coerce(bound, value):
    # ClickHouse converts a quoted literal to the column type
    if isinstance(bound, str) and isinstance(value, (int, float)):
        return type(value)(bound)
    return bound


def _compare(op, value, bound):
    if op == '>':
        return value > bound
    if op == '>=':
        return value >= bound
    return value <= bound


class FakeClickHouse:
    """
    Just enough of a ClickHouse connection to run export windows.

    Understands the SELECT shapes the pagination planners emit: range
    predicates on backticked columns, ORDER BY on backticked columns and
    ``LIMIT n`` / ``LIMIT offset, n``.
    """

    def __init__(self, columns, rows, database='default', table='events', row_estimate=None, max_values=None):
        self.columns = list(columns)
        self.rows = [tuple(r) for r in rows]
        self.database = database
        self.table = table
        self.row_estimate = len(self.rows) if row_estimate is None else row_estimate
        self.max_values = max_values or {}
        self.queries = []
        self.fail_on = None

    def execute(self, clause, params=None):
        query = str(clause)
        params = params or {}
        if 'system.columns' in query:
            if params.get('table') != self.table or params.get('database') != self.database:
                return FakeResult([])
            return FakeResult((name, 'String', i + 1) for i, name in enumerate(self.columns))
        if 'system.parts' in query:
            return FakeResult([(self.row_estimate,)])
        raise AssertionError(f"unexpected query: {query}")

    def exec_driver_sql(self, sql):
        self.queries.append(sql)
        if self.fail_on is not None:
            self.fail_on(sql)

        if sql.startswith('SELECT max('):
            target = sql.split(' FROM ', 1)[1]
            return FakeResult([(self.max_values.get(target),)])

        rows = list(self.rows)
        where = sql.split(' WHERE ', 1)[1].split(' ORDER BY ')[0] if ' WHERE ' in sql else ''
        for column, op, literal in _PREDICATE.findall(where):
            index = self.columns.index(column.replace('``', '`'))
            bound = _parse_literal(literal)
            rows = [r for r in rows if r[index] is not None and _compare(op, r[index], _coerce(bound, r[index]))]

        order = _ORDER.search(sql)
        if order:
            terms = [t.strip() for t in order.group(1).split(',')]
            for term in reversed(terms):
                name, _, direction = term.partition(' ')
                index = self.columns.index(name.strip('`'))
                rows.sort(key=lambda r: (r[index] is None, r[index]), reverse=(direction == 'DESC'))

        limit = _LIMIT.search(sql)
        if limit.group(2) is None:
            offset, size = 0, int(limit.group(1))
        else:
            offset, size = int(limit.group(1)), int(limit.group(2))
        return FakeResult(rows[offset:offset + size])


class FakeWriter:
    """Records delivered batches; can fail the first N writes."""

    def __init__(self, failures=None):
        self.batches = []
        self.failures = list(failures or [])
        self.attempts = 0
        self.closed = False

    def write(self, messages):
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        self.batches.append(list(messages))

    def close(self):
        self.closed = True

    @property
    def messages(self):
        return [m for batch in self.batches for m in batch]


class FakeTopicManager:
    def __init__(self, ready=True):
        self.ready = ready
        self.wait_calls = []
        self.created = []
        self.deleted = []

    def wait_ready(self, topic, timeout=10.0):
        self.wait_calls.append((topic, timeout))
        if not self.ready:
            raise TopicNotReadyError(topic)

    def ensure_topic(self, topic, partitions=None, replication_factor=None, timeout=10.0):
        self.created.append((topic, partitions, replication_factor))
        return True

    def delete_topic(self, topic, timeout=None):
        self.deleted.append(topic)
        return True


@pytest.fixture
def fake_writer():
    return FakeWriter()


@pytest.fixture
def topic_manager():
    return FakeTopicManager()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    return sleeps.append
