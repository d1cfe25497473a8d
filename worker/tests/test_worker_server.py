import pytest

from rekky.bootstrap import AppContext
from rekky.core.config import Settings
from rekky.jobs import worker_server
from rekky.models import QueueStatus, UpsertResult
from rekky.services.identity import ServiceValidationError


class DummyQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue(self, kind, record_id, data=None, priority="normal"):
        self.enqueued.append((kind, record_id, data, priority))
        return f"{kind}-{record_id}-1-1"

    def get_status(self):
        return QueueStatus(queue_length=2, processing=1, is_processing=True, retrying=0)


class DummyResolver:
    def __init__(self):
        self.error = None

    def upsert_service(self, payload):
        if self.error is not None:
            raise self.error
        return UpsertResult(service_id=7, is_new=True, action="created", confidence=1.0, reasoning="Created new service entity")


@pytest.fixture
def context():
    return AppContext(
        settings=Settings(database_url="", openai_api_key="", worker_port=9100),
        service_store=None,
        record_store=None,
        resolver=DummyResolver(),
        queue=DummyQueue(),
    )


@pytest.fixture
def client(context):
    return worker_server.create_app(context).test_client()


def test_root_and_health_endpoints(client):
    assert client.get("/").status_code == 200
    response = client.get("/healthz")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["worker_port_config"] == 9100


def test_queue_status_endpoint(client):
    response = client.get("/embedding-queue/status")

    assert response.status_code == 200
    assert response.get_json()["data"] == {"queue_length": 2, "processing": 1, "is_processing": True, "retrying": 0}


def test_enqueue_embedding_returns_task_id(client, context):
    response = client.post("/embeddings", json={"kind": "annotation", "record_id": "12", "priority": "high"})

    assert response.status_code == 202
    assert response.get_json()["data"]["task_id"] == "annotation-12-1-1"
    assert context.queue.enqueued == [("annotation", 12, {}, "high")]


def test_enqueue_embedding_validates_payload(client, context):
    assert client.post("/embeddings", json={}).status_code == 400
    assert client.post("/embeddings", json={"kind": "review", "record_id": 1}).status_code == 400
    assert client.post("/embeddings", json={"kind": "annotation"}).status_code == 400
    assert client.post("/embeddings", json={"kind": "annotation", "record_id": "abc"}).status_code == 400
    assert client.post("/embeddings", json={"kind": "annotation", "record_id": 1, "priority": "urgent"}).status_code == 400
    assert client.post("/embeddings", json={"kind": "annotation", "record_id": 1, "data": [1]}).status_code == 400
    assert context.queue.enqueued == []


def test_resolve_service_returns_result(client):
    response = client.post("/services/resolve", json={"name": "Ravi", "phone_number": "9876543210"})

    assert response.status_code == 200
    assert response.get_json()["data"]["action"] == "created"


def test_resolve_service_reports_validation_errors(client, context):
    context.resolver.error = ServiceValidationError(["Name must be at least 2 characters long"])

    response = client.post("/services/resolve", json={"name": "R"})

    assert response.status_code == 400
    assert response.get_json()["details"] == ["Name must be at least 2 characters long"]


def test_resolve_service_hides_unexpected_errors(client, context):
    context.resolver.error = RuntimeError("db down")

    response = client.post("/services/resolve", json={"name": "Ravi", "phone_number": "9876543210"})

    assert response.status_code == 500
    assert response.get_json()["error"] == "service resolution failed"
