import pytest
from fastapi.testclient import TestClient

import quote_api
from quote_api import app, require_user

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def authed_client(client):
    app.dependency_overrides[require_user] = lambda: None
    yield client
    app.dependency_overrides.clear()


def test_root(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_check_text(authed_client):
    resp = authed_client.post("/check", json={"text": "Isn't it \"funny\"?"})
    assert resp.status_code == 200

    body = resp.json()
    assert body["count"] == 3
    assert [d["expected"] for d in body["diagnostics"]] == [["’"], ["“"], ["”"]]
    assert body["diagnostics"][0]["location"]["start"] == {"line": 1, "column": 4, "offset": 3}


def test_check_text_with_config(authed_client):
    resp = authed_client.post(
        "/check",
        json={"text": "\"this and 'that'\"", "preferred": "straight", "straight": ["'", '"']},
    )
    assert resp.status_code == 200
    assert resp.json()["count"] == 4


def test_check_uses_environment_default_style(authed_client, monkeypatch):
    monkeypatch.setattr(quote_api, "QUOTE_MARKER_PREFERRED", "straight")
    resp = authed_client.post("/check", json={"text": "\"this and 'that'\""})
    assert resp.json()["count"] == 0

    resp = authed_client.post("/check", json={"text": "\"this\"", "preferred": "smart"})
    assert resp.json()["count"] == 2


def test_check_rejects_bad_config(authed_client):
    resp = authed_client.post("/check", json={"text": "hi", "preferred": "curly"})
    assert resp.status_code == 422


def test_check_docx(authed_client, make_docx):
    docx_bytes = make_docx("Mr. Jones' golf clubs.")
    resp = authed_client.post(
        "/check-docx",
        files={"file": ("essay.docx", docx_bytes, DOCX_MIME)},
        data={"preferred": "smart"},
    )
    assert resp.status_code == 200

    body = resp.json()
    assert body["file_name"] == "essay.docx"
    assert body["metadata"]["total"] == 1
    assert body["diagnostics"][0]["rule_id"] == "apostrophe"


def test_check_docx_rejects_other_files(authed_client):
    resp = authed_client.post(
        "/check-docx",
        files={"file": ("essay.txt", b"Isn't it", "text/plain")},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Please upload a .docx file"}


def test_check_docx_rejects_unreadable_docx(authed_client):
    resp = authed_client.post(
        "/check-docx",
        files={"file": ("essay.docx", b"not a zip", DOCX_MIME)},
    )
    assert resp.status_code == 400


def test_requires_authorization_header(client):
    resp = client.post("/check", json={"text": "hi"})
    assert resp.status_code == 401


def test_missing_supabase_config(client, monkeypatch):
    monkeypatch.setattr(quote_api, "SUPABASE_URL", None)
    resp = client.post(
        "/check",
        json={"text": "hi"},
        headers={"Authorization": "Bearer token"},
    )
    assert resp.status_code == 500


def test_check_resets_nesting_across_windows_paragraphs(authed_client):
    resp = authed_client.post("/check", json={"text": "“Unclosed\r\n\r\n“Fresh start.”"})
    assert resp.json()["count"] == 0
