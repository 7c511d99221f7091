"""Exporters for consensus results."""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from typing import Any

from core.models import ConsensusResult


def to_csv(results: Iterable[ConsensusResult]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Question", "Depth", "Appearances", "Confidence"])
    for r in results:
        writer.writerow([r.question, r.depth, r.appearances, r.confidence])
    return buf.getvalue()


def to_faq_jsonld(rows: Iterable[dict[str, str]]) -> dict[str, Any]:
    """FAQPage structured data; each row needs ``question`` and may carry ``answer``."""
    return {
        "@context": "https://schema.org",
        "@type": "FAQPage",
        "mainEntity": [
            {
                "@type": "Question",
                "name": row["question"],
                "acceptedAnswer": {"@type": "Answer", "text": row.get("answer", "")},
            }
            for row in rows
        ],
    }


def to_markdown_block(questions: Iterable[str], title: str = "People Also Ask") -> str:
    lines = [f"### {title}", ""]
    lines.extend(f"- {q}" for q in questions)
    lines.append("")
    return "\n".join(lines)
