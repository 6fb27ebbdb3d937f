"""Visualizer package - Rich terminal views for agents and orchestration ledgers."""

from .agents_view import render_agent_table, render_validation_report
from .ledger_view import render_todo_summary, render_todo_tree

__all__ = [
	"render_agent_table",
	"render_todo_summary",
	"render_todo_tree",
	"render_validation_report",
]
