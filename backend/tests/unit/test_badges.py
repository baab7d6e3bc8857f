import asyncio
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY

from trustnet.domain.badges import BadgeEngine, MetricValue, evaluate
from trustnet.domain.config import DEFAULT_BADGES, BadgeDefinition, ConfigProvider, TrustConfig
from trustnet.domain.exceptions import NotFoundError
from trustnet.domain.models import TIER_ORDER, BadgeTier, utcnow


def _by_type(evaluations):
	return {evaluation.definition.type: evaluation for evaluation in evaluations}


@pytest.mark.parametrize("definition", DEFAULT_BADGES, ids=lambda definition: definition.type)
def test_tiers_are_monotonic_and_remaining_never_negative(definition):
	previous_rank = -1
	for count in range(0, definition.thresholds[-1] + 10):
		tier, next_tier, progress = evaluate(definition, count)
		rank = TIER_ORDER.index(tier) if tier else -1
		assert rank >= previous_rank
		previous_rank = rank
		assert 0 <= progress <= 100
		if next_tier is not None:
			assert next_tier.remaining >= 0
		else:
			assert tier == BadgeTier.PLATINUM


def test_evaluate_reports_next_tier_and_progress():
	definition = BadgeDefinition("EVENT_ENTHUSIAST", "Event Enthusiast", (5, 20, 50, 150))
	tier, next_tier, progress = evaluate(definition, 9)
	assert tier == BadgeTier.BRONZE
	assert next_tier.tier == BadgeTier.SILVER
	assert next_tier.remaining == 11
	assert progress == 26

	tier, next_tier, progress = evaluate(definition, 0)
	assert tier is None
	assert next_tier.tier == BadgeTier.BRONZE
	assert progress == 0


@pytest.mark.asyncio
async def test_reliable_badge_requires_attendance_ratio(store):
	store.add_user("steady")
	store.set_stat("steady", events_attended=9, no_shows=1)
	store.add_user("flaky")
	store.set_stat("flaky", events_attended=9, no_shows=5)
	engine = BadgeEngine(store, ConfigProvider())

	steady = _by_type(await engine.evaluate_user("steady"))
	flaky = _by_type(await engine.evaluate_user("flaky"))

	assert steady["RELIABLE"].tier == BadgeTier.BRONZE
	assert steady["RELIABLE"].count == 9
	assert flaky["RELIABLE"].count == 0
	assert flaky["RELIABLE"].tier is None
	assert flaky["EVENT_ENTHUSIAST"].tier == BadgeTier.BRONZE


@pytest.mark.asyncio
async def test_long_standing_counts_membership_days(store):
	now = utcnow()
	store.add_user("veteran", created_at=now - timedelta(days=100))
	engine = BadgeEngine(store, ConfigProvider())

	badge = _by_type(await engine.evaluate_user("veteran", now=now))["LONG_STANDING"]

	assert badge.count == 100
	assert badge.tier == BadgeTier.SILVER
	assert badge.next_tier.tier == BadgeTier.GOLD
	assert badge.earned_at is not None


@pytest.mark.asyncio
async def test_unknown_metric_is_skipped_and_custom_metric_is_used(store):
	store.add_user("u1")
	definitions = DEFAULT_BADGES + (
		BadgeDefinition("MYSTERY", "Mystery", (1, 2, 3, 4)),
		BadgeDefinition("HOST", "Host", (1, 3, 5, 10), metric="events_hosted"),
	)
	engine = BadgeEngine(store, ConfigProvider(initial=TrustConfig(badges=definitions)))

	async def _hosted(ctx):
		return MetricValue(count=4)

	engine.registry.register("events_hosted", _hosted)
	badges = _by_type(await engine.evaluate_user("u1"))

	assert "MYSTERY" not in badges
	assert badges["HOST"].tier == BadgeTier.SILVER
	assert len(badges) == len(DEFAULT_BADGES) + 1


def _metric_failures(badge, reason):
	value = REGISTRY.get_sample_value("trustnet_badge_metric_failures_total", {"badge": badge, "reason": reason})
	return value or 0.0


@pytest.mark.asyncio
async def test_slow_metric_skips_only_its_badge(store):
	store.add_user("u1")
	store.set_stat("u1", events_attended=9, no_shows=1)
	engine = BadgeEngine(store, ConfigProvider(), read_timeout=0.05)

	async def _slow(ctx):
		await asyncio.sleep(1)
		return MetricValue(count=100)

	engine.registry.register("CONNECTOR", _slow)
	before = _metric_failures("CONNECTOR", "timeout")
	badges = _by_type(await engine.evaluate_user("u1"))

	assert "CONNECTOR" not in badges
	assert len(badges) == len(DEFAULT_BADGES) - 1
	assert badges["EVENT_ENTHUSIAST"].tier == BadgeTier.BRONZE
	assert _metric_failures("CONNECTOR", "timeout") == before + 1


@pytest.mark.asyncio
async def test_failing_metric_skips_only_its_badge(store):
	store.add_user("u1")
	engine = BadgeEngine(store, ConfigProvider())

	async def _broken(ctx):
		raise RuntimeError("projection unavailable")

	engine.registry.register("VOUCHER", _broken)
	before = _metric_failures("VOUCHER", "error")
	badges = _by_type(await engine.evaluate_user("u1"))

	assert "VOUCHER" not in badges
	assert len(badges) == len(DEFAULT_BADGES) - 1
	assert _metric_failures("VOUCHER", "error") == before + 1


@pytest.mark.asyncio
async def test_unknown_user_raises(store):
	engine = BadgeEngine(store, ConfigProvider())
	with pytest.raises(NotFoundError):
		await engine.evaluate_user("ghost")


@pytest.mark.asyncio
async def test_service_splits_earned_and_in_progress(store, trust_service):
	store.add_user("u1")
	store.set_stat("u1", events_attended=9, no_shows=1, communities_joined=3)

	badges = await trust_service.get_badges("u1")

	earned = {badge.type for badge in badges.earned}
	assert earned == {"RELIABLE", "EVENT_ENTHUSIAST", "COMMUNITY_BUILDER"}
	assert badges.config_version == trust_service.config.snapshot_version
	assert all(badge.next_tier.remaining >= 0 for badge in badges.in_progress)

	cached = await trust_service.get_badges("u1")
	assert cached == badges
