"""Prometheus counters for chat, safety and moderation activity."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"safechat_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"safechat_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

CHAT_ROOMS_CREATED = Counter(
	"safechat_chat_rooms_created_total",
	"Chat rooms created",
	["context_type"],
)

CHAT_ROOM_TRANSITIONS = Counter(
	"safechat_chat_room_transitions_total",
	"Chat room status transitions",
	["from_status", "to_status"],
)

CHAT_MESSAGES_SENT = Counter(
	"safechat_chat_messages_sent_total",
	"Chat messages accepted",
	["message_type"],
)

CHAT_MESSAGES_FLAGGED = Counter(
	"safechat_chat_messages_flagged_total",
	"Chat messages flagged by the safety scanner",
	["flag"],
)

CHAT_BLOCKS = Counter(
	"safechat_user_blocks_total",
	"User block actions",
	["action"],
)

CHAT_REPORTS_FILED = Counter(
	"safechat_chat_reports_filed_total",
	"Chat reports filed",
	["report_type"],
)

CHAT_REPORT_DECISIONS = Counter(
	"safechat_chat_report_decisions_total",
	"Chat report review outcomes",
	["decision"],
)

MODERATION_ACTIONS = Counter(
	"safechat_moderation_actions_total",
	"Moderation ledger entries",
	["action"],
)

STRIKE_ESCALATIONS = Counter(
	"safechat_strike_escalations_total",
	"Automatic sanctions applied from strike thresholds",
	["sanction"],
)

APPEALS = Counter(
	"safechat_appeals_total",
	"Appeals filed and decided",
	["event"],
)

SWEEP_ITEMS = Counter(
	"safechat_sweep_items_total",
	"Items processed by expiry sweeps",
	["sweep", "result"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_room_created(context_type: str) -> None:
	CHAT_ROOMS_CREATED.labels(context_type=context_type).inc()


def inc_room_transition(from_status: str, to_status: str) -> None:
	CHAT_ROOM_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()


def inc_message_sent(message_type: str) -> None:
	CHAT_MESSAGES_SENT.labels(message_type=message_type).inc()


def inc_message_flagged(flags: list[str]) -> None:
	for flag in flags:
		CHAT_MESSAGES_FLAGGED.labels(flag=flag).inc()


def inc_block(action: str) -> None:
	CHAT_BLOCKS.labels(action=action).inc()


def inc_report_filed(report_type: str) -> None:
	CHAT_REPORTS_FILED.labels(report_type=report_type).inc()


def inc_report_decision(decision: str) -> None:
	CHAT_REPORT_DECISIONS.labels(decision=decision).inc()


def inc_moderation_action(action: str) -> None:
	MODERATION_ACTIONS.labels(action=action).inc()


def inc_strike_escalation(sanction: str) -> None:
	STRIKE_ESCALATIONS.labels(sanction=sanction).inc()


def inc_appeal(event: str) -> None:
	APPEALS.labels(event=event).inc()


def record_sweep(sweep: str, *, processed: int, failed: int = 0) -> None:
	if processed:
		SWEEP_ITEMS.labels(sweep=sweep, result="ok").inc(processed)
	if failed:
		SWEEP_ITEMS.labels(sweep=sweep, result="error").inc(failed)
