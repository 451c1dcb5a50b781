"""Output generation: alert summary and rich terminal output."""

from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .models import Alert


def severity_label(severity: int) -> str:
    if severity >= 9:
        return "Critical"
    if severity >= 7:
        return "High"
    if severity >= 4:
        return "Medium"
    return "Low"


def _ranked(alerts: Iterable[Alert]) -> list[Alert]:
    # Display order only; the store itself keeps insertion order.
    return sorted(alerts, key=lambda a: -a.severity)


def generate_summary(alerts: Iterable[Alert]) -> dict:
    alerts = list(alerts)
    by_type: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    for a in alerts:
        by_type[a.type] = by_type.get(a.type, 0) + 1
        label = severity_label(a.severity)
        by_severity[label] = by_severity.get(label, 0) + 1

    return {
        "total_alerts": len(alerts),
        "type_breakdown": by_type,
        "severity_breakdown": by_severity,
        "critical_count": by_severity.get("Critical", 0),
        "documents_affected": len({a.doc_id for a in alerts if a.doc_id}),
        "top_risks": [
            {"type": a.type, "severity": a.severity, "subject_id": a.subject_id,
             "doc_id": a.doc_id, "message": a.message[:200]}
            for a in _ranked(alerts)[:10]
        ],
    }


def print_rich_summary(summary: dict, alerts: Iterable[Alert], report: Optional[dict] = None,
                       console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print()
    sev = summary.get("severity_breakdown", {})
    summary_text = (
        f"[bold]Alerts:[/bold] {summary['total_alerts']}  "
        f"[bold]Documents affected:[/bold] {summary['documents_affected']}\n"
        f"[bold magenta]Critical:[/bold magenta] {sev.get('Critical', 0)}  "
        f"[bold red]High:[/bold red] {sev.get('High', 0)}  "
        f"[bold yellow]Medium:[/bold yellow] {sev.get('Medium', 0)}  "
        f"[bold green]Low:[/bold green] {sev.get('Low', 0)}"
    )
    if report:
        summary_text += (
            f"\n[bold]Documents scanned:[/bold] {report.get('documents', 0)}  "
            f"[bold]Fetch failures:[/bold] {report.get('fetchFailures', 0)}  "
            f"[bold]Duration:[/bold] {report.get('durationSeconds', 0)}s"
        )
        if report.get("cancelled"):
            summary_text += "  [bold red](cancelled)[/bold red]"
    console.print(Panel(summary_text, title="SecureCoda Scan Summary", border_style="blue", expand=False))

    if summary["total_alerts"]:
        types = Table(title="Alerts by Type", box=box.ROUNDED)
        types.add_column("Type", style="bold")
        types.add_column("Count", justify="right")
        for alert_type, count in sorted(summary["type_breakdown"].items(), key=lambda kv: -kv[1]):
            types.add_row(alert_type, str(count))
        console.print(types)

    table = Table(title="Top Risks", box=box.ROUNDED, show_lines=True)
    table.add_column("Severity", width=10)
    table.add_column("Type", style="bold", width=24)
    table.add_column("Subject", width=22)
    table.add_column("Message", width=60)
    sev_style = {"Critical": "bold magenta", "High": "bold red", "Medium": "bold yellow", "Low": "bold green"}
    for a in _ranked(alerts)[:10]:
        label = severity_label(a.severity)
        table.add_row(
            f"[{sev_style[label]}]{a.severity} {label}[/]",
            a.type,
            a.subject_id or "N/A",
            a.message[:80] + "..." if len(a.message) > 80 else a.message,
        )
    console.print(table)
    console.print()
