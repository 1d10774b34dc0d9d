from fastapi.testclient import TestClient


def test_request_id_generated(client: TestClient):
    resp = client.get("/health")
    assert len(resp.headers["x-request-id"]) == 36


def test_request_id_echoed_when_safe(client: TestClient):
    resp = client.get("/health", headers={"x-request-id": "abc-123"})
    assert resp.headers["x-request-id"] == "abc-123"


def test_request_id_replaced_when_unsafe(client: TestClient):
    resp = client.get("/health", headers={"x-request-id": "<script>"})
    assert resp.headers["x-request-id"] != "<script>"
    assert len(resp.headers.get_list("x-request-id")) == 1
