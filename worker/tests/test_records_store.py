import pytest

from rekky.core import db
from rekky.stores import records
from test_service_store import DummyConnection, DummyPool


@pytest.fixture
def connection():
    conn = DummyConnection()
    db._connection_pool = DummyPool(conn)
    yield conn
    db._connection_pool = None


def test_to_vector_literal():
    assert records.to_vector_literal([0.5, 1, -2.25]) == "[0.5,1.0,-2.25]"


def test_get_record_reads_from_kind_table(connection):
    connection.results.append({"id": 3, "title": "Cafe", "user_id": 1})

    row = records.RecordStore().get_record("recommendation", 3)

    assert row["title"] == "Cafe"
    assert connection.statements[0] == ("SELECT * FROM recommendations WHERE id = %(id)s;", {"id": 3})


def test_get_record_raises_when_missing(connection):
    with pytest.raises(records.RecordNotFoundError, match="annotation 99 not found"):
        records.RecordStore().get_record("annotation", 99)


def test_unknown_kind_is_rejected(connection):
    with pytest.raises(ValueError):
        records.RecordStore().get_record("review", 1)
    assert connection.statements == []


def test_enrichment_lookups_return_none_when_missing(connection):
    store = records.RecordStore()

    assert store.get_place(1) is None
    assert store.get_service(2) is None
    assert store.get_user(3) is None
    assert [sql for sql, _ in connection.statements] == [
        "SELECT * FROM places WHERE id = %(id)s;",
        "SELECT * FROM services WHERE id = %(id)s;",
        "SELECT display_name, email FROM users WHERE id = %(id)s;",
    ]


def test_write_embedding_stores_vector_literal(connection, caplog):
    with caplog.at_level("INFO"):
        records.RecordStore().write_embedding("annotation", 5, [0.1, 0.2])

    sql, params = connection.statements[0]
    assert sql == "UPDATE annotations SET embedding = %(embedding)s, updated_at = NOW() WHERE id = %(id)s;"
    assert params == {"embedding": "[0.1,0.2]", "id": 5}
    assert connection.commits == 1
    assert "Updated annotation 5 with embedding" in caplog.messages


def test_list_record_ids_filters_missing(connection):
    connection.results.append([(1,), (4,)])

    ids = records.RecordStore().list_record_ids("recommendation", missing_only=True)

    assert ids == [1, 4]
    assert connection.statements[0][0] == "SELECT id FROM recommendations WHERE embedding IS NULL ORDER BY id;"
