"""Tests for the summary and terminal output."""

import io

import pytest
from rich.console import Console

from secure_coda.models import Alert
from secure_coda.output import generate_summary, print_rich_summary, severity_label


def _alerts():
    return [
        Alert(type="UNUSED_DOCUMENT", severity=5, message="Old Report unused for 3.000 days", doc_id="doc1"),
        Alert(type="PUBLIC_DOCUMENT", severity=9, message="Document is public", doc_id="doc1"),
        Alert(type="SENSITIVE_DATA_IN_ROW", severity=8, message="Sensitive data found in row",
              doc_id="doc2", table_id="t1", row_id="r1"),
        Alert(type="FETCH_FAILED", severity=3, message="Could not load documents; it was not scanned"),
    ]


@pytest.mark.parametrize("severity,label", [(10, "Critical"), (9, "Critical"), (8, "High"), (7, "High"),
                                            (5, "Medium"), (4, "Medium"), (3, "Low"), (1, "Low")])
def test_severity_label(severity, label):
    assert severity_label(severity) == label


def test_summary_counts():
    summary = generate_summary(_alerts())
    assert summary["total_alerts"] == 4
    assert summary["type_breakdown"]["PUBLIC_DOCUMENT"] == 1
    assert summary["severity_breakdown"] == {"Medium": 1, "Critical": 1, "High": 1, "Low": 1}
    assert summary["critical_count"] == 1
    assert summary["documents_affected"] == 2


def test_top_risks_ranked_by_severity():
    risks = generate_summary(_alerts())["top_risks"]
    assert [r["severity"] for r in risks] == [9, 8, 5, 3]
    assert risks[1]["subject_id"] == "r1"


def test_top_risks_capped_at_ten():
    alerts = [Alert(type="X", severity=5, message=str(i), doc_id=f"d{i}") for i in range(15)]
    assert len(generate_summary(alerts)["top_risks"]) == 10


def test_empty_summary():
    summary = generate_summary([])
    assert summary["total_alerts"] == 0
    assert summary["top_risks"] == []


def test_rich_summary_renders():
    buf = io.StringIO()
    alerts = _alerts()
    report = {"documents": 2, "fetchFailures": 1, "durationSeconds": 0.4, "cancelled": True}
    print_rich_summary(generate_summary(alerts), alerts, report, console=Console(file=buf, width=200))
    out = buf.getvalue()
    assert "SecureCoda Scan Summary" in out
    assert "PUBLIC_DOCUMENT" in out
    assert "cancelled" in out


def test_rich_summary_without_alerts():
    buf = io.StringIO()
    print_rich_summary(generate_summary([]), [], console=Console(file=buf, width=200))
    assert "Alerts by Type" not in buf.getvalue()
