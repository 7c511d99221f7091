from __future__ import annotations

import csv
import io

from core.errors import InvalidParams, TrackedTargetCheckError, error_payload
from core.formatting import to_csv, to_faq_jsonld, to_markdown_block
from core.models import ConsensusResult


def _result(question: str, appearances: int = 2) -> ConsensusResult:
    return ConsensusResult(
        question=question,
        norm=question.lower(),
        depth=0,
        order_index=0,
        parent=None,
        appearances=appearances,
        confidence=1.0,
    )


def test_csv_quotes_questions_with_commas():
    text = to_csv([_result("Tea, or coffee?"), _result("Why tea?", 1)])
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0] == ["Question", "Depth", "Appearances", "Confidence"]
    assert rows[1] == ["Tea, or coffee?", "0", "2", "1.0"]
    assert len(rows) == 3


def test_faq_jsonld():
    doc = to_faq_jsonld([{"question": "Why tea?", "answer": "Because."}, {"question": "What?"}])
    assert doc["@type"] == "FAQPage"
    assert doc["mainEntity"][0]["acceptedAnswer"]["text"] == "Because."
    assert doc["mainEntity"][1]["acceptedAnswer"]["text"] == ""


def test_markdown_block():
    assert to_markdown_block(["A?", "B?"]) == "### People Also Ask\n\n- A?\n- B?\n"


def test_error_payload():
    assert error_payload(InvalidParams("keyword must not be empty")) == {
        "success": False,
        "error": "keyword must not be empty",
        "type": "InvalidParams",
    }
    exc = TrackedTargetCheckError("t1", "tea", TimeoutError())
    assert error_payload(exc)["type"] == "TrackedTargetCheckError"
    assert "t1" in error_payload(exc)["error"]
