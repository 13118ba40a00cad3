import pytest

import api
from utils.db.quote_store import create_quote, get_quote
from tools.quotes import quotes as quote_tools

from conftest import FakeProvider, add_category, extraction, line

COMPARISON = {
    "summary": "A är billigast.",
    "recommendation": {"recommended_supplier": "A", "reasoning": "Lägst pris"},
}


@pytest.fixture
def client():
    api.app.config.update(TESTING=True)
    return api.app.test_client()


@pytest.fixture
def provider(monkeypatch):
    fake = FakeProvider()
    monkeypatch.setattr(quote_tools, "get_provider", lambda *a, **k: fake)
    return fake


def _analyzed(name, total):
    return create_quote(
        {
            "supplier_name": name,
            "status": "analyzed",
            "category_id": "cat-1",
            "ai_analysis": extraction(name, [line("Radiator", 1, total, category="radiatorer")], total=total),
        }
    )["id"]


def test_ping(client):
    resp = client.get("/ping")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "pong"


def test_analyze_requires_text(client):
    resp = client.post("/quotes/analyze", json={"userId": "u1"})
    body = resp.get_json()
    assert resp.status_code == 400
    assert body["status"] == "error" and body["userId"] == "u1"


def test_analyze_returns_normalized_quote(client, provider):
    provider.responses.append(extraction("VVS AB", [line("Radiator", 2, 500)]))

    resp = client.post("/quotes/analyze", json={"text": "Offert: 2 radiatorer à 500 kr"})

    body = resp.get_json()
    assert resp.status_code == 200
    assert body["status"] == "done"
    assert body["toolData"]["analysis"]["totals"]["total"] == 1000.0


def test_analysis_failure_maps_to_its_status(client, provider):
    provider.responses.append("inget json här")

    resp = client.post("/quotes/analyze", json={"toolData": {"text": "Offert"}})

    body = resp.get_json()
    assert resp.status_code == 502
    assert body["status"] == "error"
    assert body["error"]
    assert body["toolData"]["stage"] == "normalize_one_main"


def test_analyze_batch_reports_counts(client, provider):
    quote_id = create_quote({"supplier_name": "VVS AB", "extracted_text": "Offert"})["id"]
    provider.responses.append(extraction("VVS AB", [line("Radiator", 2, 500)]))

    resp = client.post("/quotes/analyze-batch", json={"quoteIds": [quote_id]})

    data = resp.get_json()["toolData"]
    assert (data["success"], data["failed"], data["errors"]) == (1, 0, [])
    assert data["message"] == "1 analyzed, 0 failed"
    assert get_quote(quote_id)["status"] == "analyzed"


def test_compare_needs_two_quotes(client):
    resp = client.post("/compare", json={"categoryId": "cat-1", "quoteIds": ["q1"]})
    assert resp.status_code == 400


def test_compare_unknown_category(client, provider):
    resp = client.post("/compare", json={"categoryId": "nope", "quoteIds": ["q1", "q2"]})
    assert resp.status_code == 404
    assert provider.prompts == []


def test_compare_saves_and_comparisons_round_trip(client, provider):
    add_category("cat-1", project_name=None)
    ids = [_analyzed("A", 900), _analyzed("B", 1000)]
    provider.responses.append(COMPARISON)

    resp = client.post("/compare", json={"categoryId": "cat-1", "quoteIds": ids})

    data = resp.get_json()["toolData"]
    assert resp.status_code == 200
    assert data["id"]
    assert [e["supplier"] for e in data["price_comparison"]["ranking"]] == ["A", "B"]
    assert "Okänt projekt" in provider.prompts[0]

    stored = client.get("/comparisons?categoryId=cat-1").get_json()["toolData"]["comparison"]
    assert stored["quote_ids"] == ids
    assert stored["result"]["summary"] == "A är billigast."

    assert client.delete("/comparisons?categoryId=cat-1").get_json()["toolData"]["deleted"] is True
    again = client.delete("/comparisons?categoryId=cat-1")
    assert again.status_code == 200
    assert again.get_json()["toolData"]["deleted"] is False
    assert client.get("/comparisons?categoryId=cat-1").get_json()["toolData"]["comparison"] is None


def test_compare_survives_a_failed_save(client, provider, monkeypatch):
    add_category("cat-1")
    ids = [_analyzed("A", 900), _analyzed("B", 1000)]
    provider.responses.append(COMPARISON)

    def broken(*args, **kwargs):
        raise RuntimeError("unique violation")

    monkeypatch.setattr(quote_tools, "save_comparison", broken)

    resp = client.post("/compare", json={"categoryId": "cat-1", "quoteIds": ids})

    data = resp.get_json()["toolData"]
    assert resp.status_code == 200
    assert data["id"] is None
    assert data["summary"] == "A är billigast."


def test_comparisons_post_replaces(client):
    for summary in ("första", "andra"):
        resp = client.post(
            "/comparisons",
            json={"category_id": "cat-9", "quote_ids": ["q1", "q2"], "result": {"summary": summary}},
        )
        assert resp.status_code == 200

    stored = client.get("/comparisons?categoryId=cat-9").get_json()["toolData"]["comparison"]
    assert stored["result"]["summary"] == "andra"


def test_comparisons_require_category(client):
    assert client.get("/comparisons").status_code == 400


def test_files_process_unsupported_format(client, provider, monkeypatch):
    monkeypatch.setattr(quote_tools, "download_bytes", lambda path: b"data")

    resp = client.post("/files/process", json={"filePath": "uploads/1.docx", "fileName": "offert.docx"})

    assert resp.status_code == 400
    assert resp.get_json()["status"] == "error"
