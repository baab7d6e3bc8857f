from datetime import timedelta

import pytest

from trustnet.domain.exceptions import NotFoundError, ValidationError
from trustnet.domain.models import (
	AccountabilityImpact,
	AccountabilityLog,
	TrustLevel,
	TrustMoment,
	utcnow,
)


def _seed_member(store, user_id: str = "u", **user_fields) -> None:
	store.add_user(user_id, username=user_id, **user_fields)
	store.set_stat(user_id, events_attended=5, events_hosted=1, communities_joined=1)
	store.add_trust_moment(TrustMoment(giver_id="g1", receiver_id=user_id, rating=5, tags=frozenset({"kind", "punctual"})))
	store.add_trust_moment(TrustMoment(giver_id="g2", receiver_id=user_id, rating=4, tags=frozenset({"kind"})))
	store.add_trust_moment(TrustMoment(giver_id="g3", receiver_id=user_id, rating=3, moment_type="event"))
	store.add_trust_moment(TrustMoment(giver_id="g4", receiver_id=user_id, rating=1, is_public=False))


@pytest.mark.asyncio
async def test_score_detail_explains_each_component(store, trust_service):
	_seed_member(store)
	await trust_service.recalculate("u")
	await trust_service.recorder.flush()

	detail = await trust_service.get_trust_score_detail("u")

	assert detail.current_score == pytest.approx(39.9)
	assert detail.trust_level == TrustLevel.TRUSTED
	assert detail.breakdown.vouches.score == 0.0
	assert detail.breakdown.vouches.primary.max_score == pytest.approx(12.0)
	assert detail.breakdown.activity.score == 15.0
	assert detail.breakdown.activity.percentage == 50
	assert detail.breakdown.activity.events_attended.count == 5
	assert detail.breakdown.activity.events_attended.target_count == 5

	stats = detail.breakdown.trust_moments.statistics
	assert detail.breakdown.trust_moments.score == pytest.approx(24.9)
	assert stats.total_moments == 3
	assert stats.average_rating == 4.0
	assert stats.distribution["five_star"] == 1
	assert stats.distribution["one_star"] == 0
	assert stats.sentiment["positive_percentage"] == 67
	assert stats.by_moment_type == {"general": 2, "event": 1}
	assert [(tag.tag, tag.count) for tag in stats.top_tags] == [("kind", 2), ("punctual", 1)]

	assert detail.next_level.next == TrustLevel.LEADER
	assert detail.next_level.points_needed == pytest.approx(21.1)
	assert detail.next_level.progress == 30
	assert detail.score_change.start_score == 0.0
	assert detail.score_change.change == pytest.approx(39.9)


@pytest.mark.asyncio
async def test_suggestions_target_missing_components(store, trust_service):
	_seed_member(store)
	await trust_service.recalculate("u")

	suggestions = await trust_service.get_suggestions("u")

	assert [item.action for item in suggestions.suggestions] == [
		"get_primary_vouch",
		"get_secondary_vouch",
		"join_community",
		"host_event",
		"offer_service",
	]
	assert suggestions.suggestions[1].title == "Get 3 more secondary vouches"
	assert suggestions.suggestions[1].potential_points == 12
	assert suggestions.suggestions[3].title == "Host 2 more events"
	assert [win.title for win in suggestions.quick_wins] == ["Join 2 more communities"]
	assert suggestions.next_level == TrustLevel.LEADER
	assert suggestions.points_to_next_level == pytest.approx(21.1)


@pytest.mark.asyncio
async def test_history_lists_changes_with_summary(store, trust_service):
	store.add_user("u")
	store.set_stat("u", events_attended=3)
	await trust_service.recalculate("u")
	store.set_stat("u", events_attended=5, events_hosted=1, services_provided=2)
	await trust_service.recalculate("u")
	await trust_service.recorder.flush()

	history = await trust_service.get_trust_score_history("u")

	assert [entry.score for entry in history.history] == [6.0, 15.0]
	assert history.history[1].previous_score == 6.0
	assert history.history[1].change == 9.0
	assert history.summary.start_score == 0.0
	assert history.summary.end_score == 15.0
	assert history.summary.total_change == 15.0
	assert history.summary.lowest == 6.0
	assert history.summary.average == 10.5
	assert history.summary.period_days == 30


@pytest.mark.asyncio
async def test_history_without_changes_reports_current_score(store, trust_service):
	store.add_user("quiet", trust_score=12.0)

	history = await trust_service.get_trust_score_history("quiet", days=7)

	assert len(history.history) == 1
	assert history.history[0].reason == "Current score"
	assert history.summary.total_change == 0.0
	assert history.summary.period_days == 7


@pytest.mark.asyncio
@pytest.mark.parametrize("days", [0, 366])
async def test_history_window_is_validated(store, trust_service, days):
	store.add_user("u")
	with pytest.raises(ValidationError):
		await trust_service.get_trust_score_history("u", days=days)


@pytest.mark.asyncio
async def test_detail_for_unknown_user(trust_service):
	with pytest.raises(NotFoundError):
		await trust_service.get_trust_score_detail("ghost")


@pytest.mark.asyncio
async def test_dashboard_combines_rank_accountability_and_decay(store, trust_service):
	now = utcnow()
	_seed_member(store, last_active_at=now - timedelta(days=25))
	store.add_user("x", trust_score=50.0)
	store.add_user("y", trust_score=10.0)
	store.add_accountability(
		AccountabilityLog(voucher_id="u", vouchee_id="a", impact_type=AccountabilityImpact.NEGATIVE, impact_value=-12.0)
	)
	store.add_accountability(
		AccountabilityLog(voucher_id="u", vouchee_id="b", impact_type=AccountabilityImpact.NEGATIVE, impact_value=-4.0)
	)
	await trust_service.recalculate("u")
	await trust_service.recorder.flush()

	dashboard = await trust_service.insights.get_trust_dashboard("u", now=now)

	assert dashboard.rank.position == 2
	assert dashboard.rank.total_users == 3
	assert dashboard.rank.percentile == pytest.approx(66.7)
	assert dashboard.accountability_impact.total_impact == pytest.approx(-16.0)
	assert dashboard.accountability_impact.affected_vouchees == 2
	assert dashboard.decay_warning.days_until_decay == 5
	assert dashboard.last_activity.days_ago == 25
	assert dashboard.recent_changes[0].score == pytest.approx(39.9)
	assert dashboard.suggestions.current_level == TrustLevel.TRUSTED


@pytest.mark.asyncio
async def test_active_user_has_no_decay_warning(store, trust_service):
	store.add_user("fresh", last_active_at=utcnow() - timedelta(days=2))
	dashboard = await trust_service.get_trust_dashboard("fresh")
	assert dashboard.decay_warning is None


@pytest.mark.asyncio
async def test_compute_score_reads_without_storing(store, trust_service):
	_seed_member(store)
	assert await trust_service.scores.compute_score("u") == pytest.approx(39.9)
	assert store.state.users["u"].trust_score == 0.0
