import pytest

from trustnet.domain.exceptions import ValidationError
from trustnet.domain.leaderboard import LeaderboardService, display_name
from trustnet.domain.models import CommunityMembership, LeaderboardScope, TrustLevel, User, UserStatus


@pytest.fixture
def ranked_store(store):
	store.add_user("a", username="ada", trust_score=80.0)
	store.add_user("b", username="bo", trust_score=50.0)
	store.add_user("c", username="cy", trust_score=50.0)
	store.add_user("d", username="di", trust_score=20.0)
	store.add_user("e", username="ed", trust_score=0.0)
	store.add_user("f", username="fay", trust_score=90.0, status=UserStatus.SUSPENDED)
	return store


@pytest.mark.asyncio
async def test_global_ranking_shares_rank_on_ties(ranked_store):
	board = await LeaderboardService(ranked_store).build("b")

	assert board.total == 4
	assert [entry.user_id for entry in board.entries] == ["a", "b", "c", "d"]
	assert [entry.rank for entry in board.entries] == [1, 2, 2, 4]
	assert [entry.percentile for entry in board.entries] == [100.0, 75.0, 75.0, 25.0]
	assert [entry.is_me for entry in board.entries] == [False, True, False, False]
	assert board.entries[0].trust_level == TrustLevel.LEADER
	assert board.user_rank is None


@pytest.mark.asyncio
async def test_requester_outside_limit_gets_user_rank(ranked_store):
	board = await LeaderboardService(ranked_store).build("d", limit=2)

	assert [entry.user_id for entry in board.entries] == ["a", "b"]
	assert board.user_rank.user_id == "d"
	assert board.user_rank.rank == 4
	assert board.user_rank.is_me is True


@pytest.mark.asyncio
async def test_zero_score_requester_is_ranked_below_population(ranked_store):
	board = await LeaderboardService(ranked_store).build("e")

	assert board.total == 4
	assert all(not entry.is_me for entry in board.entries)
	assert board.user_rank.user_id == "e"
	assert board.user_rank.rank == 5
	assert board.user_rank.percentile == 20.0
	assert board.user_rank.is_me is True


@pytest.mark.asyncio
async def test_non_member_requester_gets_community_relative_rank(ranked_store):
	ranked_store.add_membership(CommunityMembership(community_id="c1", user_id="c"))
	ranked_store.add_membership(CommunityMembership(community_id="c1", user_id="d"))

	board = await LeaderboardService(ranked_store).build("b", scope=LeaderboardScope.COMMUNITY, community_id="c1")

	assert [entry.user_id for entry in board.entries] == ["c", "d"]
	assert board.user_rank.user_id == "b"
	assert board.user_rank.rank == 1
	assert board.user_rank.percentile == 100.0


@pytest.mark.asyncio
async def test_unlisted_or_unknown_requester_has_no_user_rank(ranked_store):
	assert (await LeaderboardService(ranked_store).build("f")).user_rank is None
	assert (await LeaderboardService(ranked_store).build("ghost")).user_rank is None


@pytest.mark.asyncio
async def test_friends_scope_includes_requester(ranked_store):
	ranked_store.connect("b", "a")
	ranked_store.connect("b", "d")

	board = await LeaderboardService(ranked_store).build("b", scope="friends")

	assert [entry.user_id for entry in board.entries] == ["a", "b", "d"]
	assert board.scope == LeaderboardScope.FRIENDS


@pytest.mark.asyncio
async def test_community_scope_uses_approved_members(ranked_store):
	ranked_store.add_membership(CommunityMembership(community_id="c1", user_id="c"))
	ranked_store.add_membership(CommunityMembership(community_id="c1", user_id="d"))
	ranked_store.add_membership(CommunityMembership(community_id="c1", user_id="a", is_approved=False))

	board = await LeaderboardService(ranked_store).build(scope=LeaderboardScope.COMMUNITY, community_id="c1")

	assert board.community_id == "c1"
	assert [(entry.user_id, entry.rank) for entry in board.entries] == [("c", 1), ("d", 2)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
	"kwargs, reason",
	[
		({"scope": "planet"}, "invalid_scope"),
		({"limit": 0}, "invalid_limit"),
		({"limit": 501}, "invalid_limit"),
		({"scope": "community"}, "community_id_required"),
		({"scope": "friends", "requester_id": None}, "requester_required"),
	],
)
async def test_build_validates_arguments(ranked_store, kwargs, reason):
	with pytest.raises(ValidationError) as excinfo:
		await LeaderboardService(ranked_store).build(**kwargs)
	assert excinfo.value.reason == reason


def test_display_name_falls_back_to_anonymised_id():
	assert display_name(User(id="user-abcd1234")) == "User1234"
	assert display_name(User(id="x", username="xena")) == "xena"


@pytest.mark.asyncio
async def test_service_leaderboard_is_cached_until_invalidated(ranked_store, trust_service):
	first = await trust_service.get_leaderboard("a")
	ranked_store.state.users["d"].trust_score = 95.0

	cached = await trust_service.get_leaderboard("a")
	assert cached == first

	await trust_service.cache.invalidate()
	fresh = await trust_service.get_leaderboard("a")
	assert fresh.entries[0].user_id == "d"
