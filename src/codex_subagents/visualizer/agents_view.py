"""Rich views for the agent registry and agent file validation."""

from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

LEVEL_STYLES = {
	"error": "red",
	"warning": "yellow",
}


def render_agent_table(rows: list[dict[str, Any]], console: Optional[Console] = None) -> None:
	"""Render the list_agents rows as a table."""
	console = console or Console()

	if not rows:
		console.print("[dim]No agents available.[/dim]")
		return

	table = Table(title="Agents")
	table.add_column("Name", style="cyan")
	table.add_column("Profile")
	table.add_column("Approval")
	table.add_column("Sandbox")
	table.add_column("Source", justify="center")

	for row in rows:
		source_style = "green" if row["source"] == "custom" else "dim"
		table.add_row(
			escape(row["name"]),
			escape(row["profile"]),
			row.get("approval_policy") or "-",
			row.get("sandbox_mode") or "-",
			f"[{source_style}]{row['source']}[/{source_style}]",
		)

	console.print(table)


def render_validation_report(report: dict[str, Any], console: Optional[Console] = None) -> None:
	"""Render the validate_agents result: one row per issue, plus the summary line."""
	console = console or Console()

	if report.get("error"):
		console.print(f"[red]{escape(str(report['error']))}[/red]")
		return

	summary = report["summary"]
	table = Table(title=f"Agent files in {escape(str(report.get('dir', '?')))}")
	table.add_column("File", style="cyan")
	table.add_column("Agent")
	table.add_column("Level", justify="center")
	table.add_column("Code")
	table.add_column("Message")

	for entry in report["files"]:
		if not entry["issues"]:
			table.add_row(escape(entry["file"]), escape(entry.get("agent_name") or ""), "[green]ok[/green]", "", "")
			continue
		for issue in entry["issues"]:
			style = LEVEL_STYLES.get(issue["level"], "white")
			table.add_row(
				escape(entry["file"]),
				escape(entry.get("agent_name") or ""),
				f"[{style}]{issue['level']}[/{style}]",
				issue["code"],
				escape(issue["message"]),
			)

	console.print(table)
	console.print(
		f"{summary['files']} file(s): {summary['ok']} ok, "
		f"{summary['withErrors']} with errors, {summary['withWarnings']} with warnings"
	)
