"""Central registry for Prometheus metrics used by the trust engine."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


VOUCH_TRANSITIONS = Counter(
	"trustnet_vouch_transitions_total",
	"Vouch ledger transitions by action",
	["action", "vouch_type"],
)

VOUCH_REJECTIONS = Counter(
	"trustnet_vouch_rejections_total",
	"Vouch ledger operations rejected with a caller-visible error",
	["reason"],
)

SCORE_RECOMPUTES = Counter(
	"trustnet_score_recomputes_total",
	"Trust score recomputes by component and outcome",
	["component", "outcome"],
)

SCORE_DELTA = Histogram(
	"trustnet_score_change_points",
	"Absolute trust score change per stored recompute",
	buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 40.0, 100.0),
)

HISTORY_WRITES = Counter(
	"trustnet_history_writes_total",
	"Trust score history entries persisted",
)

HISTORY_WRITE_FAILURES = Counter(
	"trustnet_history_write_failures_total",
	"Trust score history entries dropped after a write failure",
)

ACCOUNTABILITY_WRITES = Counter(
	"trustnet_accountability_writes_total",
	"Accountability log writes by outcome",
	["impact", "outcome"],
)

CONFIG_RELOADS = Counter(
	"trustnet_config_reloads_total",
	"Trust configuration reloads by outcome",
	["outcome"],
)

CACHE_EVENTS = Counter(
	"trustnet_read_cache_events_total",
	"Read cache hits, misses, stale serves and errors",
	["namespace", "event"],
)

BADGE_EVALUATIONS = Counter(
	"trustnet_badge_evaluations_total",
	"Badge evaluations by badge type and awarded tier",
	["badge", "tier"],
)

BADGE_METRIC_FAILURES = Counter(
	"trustnet_badge_metric_failures_total",
	"Badge metric reads that timed out or failed",
	["badge", "reason"],
)

LEADERBOARD_BUILD_LATENCY = Histogram(
	"trustnet_leaderboard_build_seconds",
	"Leaderboard build latency in seconds",
	["scope"],
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)

DECAY_ADJUSTMENTS = Counter(
	"trustnet_decay_adjustments_total",
	"Users adjusted by a decay sweep",
)


def inc_vouch_transition(action: str, vouch_type: str) -> None:
	VOUCH_TRANSITIONS.labels(action=action, vouch_type=vouch_type).inc()


def inc_vouch_rejection(reason: str) -> None:
	VOUCH_REJECTIONS.labels(reason=reason).inc()


def inc_score_recompute(component: str, outcome: str) -> None:
	SCORE_RECOMPUTES.labels(component=component, outcome=outcome).inc()


def observe_score_delta(change: float) -> None:
	SCORE_DELTA.observe(abs(change))


def inc_history_write() -> None:
	HISTORY_WRITES.inc()


def inc_history_failure() -> None:
	HISTORY_WRITE_FAILURES.inc()

def inc_accountability_write(impact: str, outcome: str) -> None:
	ACCOUNTABILITY_WRITES.labels(impact=impact, outcome=outcome).inc()


def inc_config_reload(outcome: str) -> None:
	CONFIG_RELOADS.labels(outcome=outcome).inc()


def inc_cache_event(namespace: str, event: str) -> None:
	CACHE_EVENTS.labels(namespace=namespace, event=event).inc()

def inc_badge_evaluation(badge: str, tier: str | None) -> None:
	BADGE_EVALUATIONS.labels(badge=badge, tier=tier or "none").inc()


def inc_badge_metric_failure(badge: str, reason: str) -> None:
	BADGE_METRIC_FAILURES.labels(badge=badge, reason=reason).inc()


def observe_leaderboard_build(scope: str, seconds: float) -> None:
	LEADERBOARD_BUILD_LATENCY.labels(scope=scope).observe(seconds)


def inc_decay_adjustment() -> None:
	DECAY_ADJUSTMENTS.inc()
