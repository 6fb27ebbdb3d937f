"""Rich views for orchestration ledgers."""

from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.tree import Tree

from ..orchestration.ledger import StepStatus, Todo, TodoStatus

STATUS_ICONS = {
	StepStatus.QUEUED: f"[dim]{escape('[ ]')}[/dim]",
	StepStatus.RUNNING: f"[yellow]{escape('[~]')}[/yellow]",
	StepStatus.DONE: f"[green]{escape('[x]')}[/green]",
	StepStatus.BLOCKED: f"[red]{escape('[!]')}[/red]",
	StepStatus.CANCELED: f"[dim]{escape('[-]')}[/dim]",
}

TODO_STYLES = {
	TodoStatus.ACTIVE: "yellow",
	TodoStatus.DONE: "green",
	TodoStatus.CANCELED: "dim",
}


def format_duration(started_at: Optional[str], ended_at: Optional[str]) -> str:
	"""Elapsed time between two ISO timestamps, e.g. '1.2s' or '2m 3s'. Empty if unknown."""
	if not started_at or not ended_at:
		return ""
	try:
		seconds = (datetime.fromisoformat(ended_at) - datetime.fromisoformat(started_at)).total_seconds()
	except (ValueError, TypeError):
		return ""
	if seconds < 1.0:
		return f"{seconds * 1000:.0f}ms"
	if seconds < 60.0:
		return f"{seconds:.1f}s"
	return f"{int(seconds // 60)}m {seconds % 60:.0f}s"


def render_todo_tree(todo: Todo, console: Optional[Console] = None) -> None:
	"""Render a todo as a Rich Tree of its steps."""
	console = console or Console()

	done = sum(1 for s in todo.steps if s.status == StepStatus.DONE)
	style = TODO_STYLES.get(todo.status, "white")
	tree = Tree(
		f"[bold]{escape(todo.request_id)}[/bold] [{style}]{todo.status.value}[/{style}]  "
		f"[dim]({done}/{len(todo.steps)} steps done, requested: {escape(todo.requested_agent)})[/dim]"
	)

	for step in todo.steps:
		icon = STATUS_ICONS.get(step.status, escape("[ ]"))
		elapsed = format_duration(step.started_at, step.ended_at)
		suffix = f" [dim]{elapsed}[/dim]" if elapsed else ""
		branch = tree.add(f"{icon} [cyan]{escape(step.agent)}[/cyan] {escape(step.title)}{suffix}")
		if step.stdout_path:
			branch.add(f"[dim]stdout: {escape(step.stdout_path)}[/dim]")
		if step.stderr_path and step.status == StepStatus.BLOCKED:
			branch.add(f"[red]stderr: {escape(step.stderr_path)}[/red]")

	console.print(tree)


def render_todo_summary(todo: Todo, console: Optional[Console] = None) -> None:
	"""Render a summary panel for a todo."""
	console = console or Console()

	prompt = todo.user_prompt.strip()
	first_line = prompt.splitlines()[0] if prompt else ""

	lines = []
	lines.append(f"[bold]Request:[/bold] {escape(first_line)}")
	lines.append(f"[bold]Requested agent:[/bold] {escape(todo.requested_agent)}")
	lines.append(f"[bold]Status:[/bold] {todo.status.value}")
	lines.append(f"[bold]Created:[/bold] {todo.created_at[:19]}")

	if todo.summary:
		lines.append("")
		lines.append("[bold]Summary:[/bold]")
		lines.append(escape(todo.summary))

	if todo.next_actions:
		lines.append("")
		lines.append("[bold]Next actions:[/bold]")
		for action in todo.next_actions:
			lines.append(f"  - {escape(action)}")

	console.print(Panel("\n".join(lines), title=f"Todo: {escape(todo.request_id)}", border_style="cyan"))
