import os

# the store picks its backend at import time
os.environ["DB_TYPE"] = "mock"
os.environ.pop("VAULT_ADDR", None)

import copy
import json
import logging

import pytest

from utils.core.log import set_logger
from utils.db.connection import _mock_db, reset_mock_db
from utils.llm.LLM import BaseLLMProvider


class FakeProvider(BaseLLMProvider):
    """Scripted provider: returns queued responses in order and records prompts."""

    name = "fake"

    def __init__(self, *responses):
        super().__init__(model="fake-model", max_tokens=1000)
        self.responses = list(responses)
        self.prompts = []
        self.documents = []
        self.callers = []

    def _generate(self, prompt, max_tokens, document=None, caller=None):
        self.prompts.append(prompt)
        self.documents.append(document)
        self.callers.append(caller)
        if not self.responses:
            raise AssertionError("FakeProvider has no scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, (dict, list)):
            return json.dumps(response, ensure_ascii=False)
        return response


def extraction(name, items, total=None, vat=None, subtotal=None, total_incl_vat=None, **supplier):
    """Extraction JSON as the LLM would return it."""
    return {
        "supplier": {"name": name, **supplier},
        "quote_info": {"quote_number": f"Q-{name[:3].upper()}", "date": "2024-03-01"},
        "terms": {"payment": "30 dagar netto", "delivery": "Fritt byggarbetsplats"},
        "items": copy.deepcopy(items),
        "totals": {
            "subtotal": subtotal,
            "vat": vat,
            "total": total,
            "total_incl_vat": total_incl_vat,
        },
    }


def line(description, quantity, unit_price, category=None, total=None, type="product"):
    return {
        "description": description,
        "quantity": quantity,
        "unit": "st",
        "unit_price": unit_price,
        "total": total,
        "type": type,
        "category": category,
    }


def add_category(category_id="cat-1", name="Radiatorer", project_name="Kv. Eken"):
    project_id = None
    if project_name:
        project_id = f"proj-{category_id}"
        _mock_db["projects"][project_id] = {"id": project_id, "name": project_name}
    _mock_db["quote_categories"][category_id] = {
        "id": category_id,
        "project_id": project_id,
        "name": name,
    }
    return category_id


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    set_logger(logging.getLogger("tests"), tool_name="tests", scope_id="tests")
    reset_mock_db()
    yield
    reset_mock_db()
