"""Orchestration module - todo ledger, markers, routing, and request logs."""

from .ledger import (
	LedgerError,
	LedgerStore,
	Step,
	StepStatus,
	Todo,
	TodoNotFoundError,
	TodoStatus,
	append_step,
	finalize,
	load_todo,
	save_todo,
	update_step,
)
from .markers import Marker, apply_markers, parse_markers
from .request_log import RequestLog
from .routing import build_envelope, route_through_orchestrator
from .session import OrchestrationSession

__all__ = [
	"LedgerError",
	"LedgerStore",
	"Marker",
	"OrchestrationSession",
	"RequestLog",
	"Step",
	"StepStatus",
	"Todo",
	"TodoNotFoundError",
	"TodoStatus",
	"append_step",
	"apply_markers",
	"build_envelope",
	"finalize",
	"load_todo",
	"parse_markers",
	"route_through_orchestrator",
	"save_todo",
	"update_step",
]
