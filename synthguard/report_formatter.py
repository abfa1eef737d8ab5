#!/usr/bin/env python3
"""
Report Formatter

Formats an AnalysisReport for display, JSON, and rich console tables.
"""

import json
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .findings import Finding
from .security_analyzer import AnalysisReport

SEVERITY_STYLES = {
    'critical': 'bold red',
    'high': 'red',
    'medium': 'yellow',
    'low': 'cyan',
    'info': 'dim',
}


class ReportFormatter:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def format_for_display(self, report: AnalysisReport) -> str:
        """Plain-text summary followed by one numbered entry per finding."""
        lines: List[str] = []
        verdict = "SECURE" if report.is_secure else "INSECURE"
        lines.append(f"Verdict: {verdict} (score {report.score})")

        metrics = report.metrics
        lines.append(
            f"Risk {metrics.risk_score} | Complexity {metrics.complexity_score} | "
            f"Attack surface {metrics.attack_surface_area} | Coverage {metrics.security_coverage}"
        )

        findings = report.findings
        if not findings:
            lines.append("No findings to display")
        for i, finding in enumerate(findings, 1):
            lines.append(self._format_finding(i, finding))

        for warning in report.warnings:
            lines.append(f"WARNING: {warning.kind} - {warning.message}")

        if report.recommendations:
            lines.append("")
            lines.append("Recommendations:")
            for rec in report.recommendations:
                lines.append(f"- [{rec.type.upper()}] {rec.title}: {rec.remediation}")

        return "\n".join(lines)

    def _format_finding(self, number: int, finding: Finding) -> str:
        location = f"{finding.line}:{finding.column}" if finding.line else "-"
        text = f"[{number}] {finding.severity.value.upper()}: {finding.kind} at {location}\n    {finding.message}"
        if finding.remediation:
            text += f"\n    Fix: {finding.remediation}"
        return text

    def to_json(self, report: AnalysisReport, indent: Optional[int] = 2) -> str:
        return json.dumps(report.to_dict(), indent=indent, sort_keys=True)

    def build_table(self, report: AnalysisReport) -> Table:
        table = Table(title=f"Security Analysis (score {report.score})")
        table.add_column("#", style="dim", width=4)
        table.add_column("Severity")
        table.add_column("Kind", style="cyan")
        table.add_column("Line", justify="right")
        table.add_column("Message")

        for i, finding in enumerate(report.findings + report.warnings, 1):
            severity = finding.severity.value
            table.add_row(
                str(i),
                f"[{SEVERITY_STYLES[severity]}]{severity}[/{SEVERITY_STYLES[severity]}]",
                finding.kind,
                str(finding.line) if finding.line else "-",
                finding.message,
            )
        return table

    def render(self, report: AnalysisReport) -> None:
        self.console.print(self.build_table(report))
        if report.is_secure:
            self.console.print("[green]✅ Contract passed all security gates[/green]")
        else:
            self.console.print("[red]❌ Contract failed the security gates[/red]")
        for rec in report.recommendations:
            self.console.print(f"  • [bold]{rec.title}[/bold]: {rec.remediation}")
