import asyncio
from pathlib import Path

import pytest

from trustnet.domain.config import (
	DEFAULT_BADGES,
	ConfigProvider,
	TrustConfig,
	file_loader,
	load_trust_config,
	parse_trust_config,
)
from trustnet.domain.container import TrustService
from trustnet.domain.exceptions import ConfigError
from trustnet.domain.models import BadgeTier, VouchType

CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "trust.yaml"


def test_bundled_config_matches_defaults():
	config = load_trust_config(CONFIG_PATH)
	assert config.vouch_weights.for_type(VouchType.COMMUNITY) == 40.0
	assert config.max_vouches.for_type(VouchType.SECONDARY) == 3
	assert [badge.type for badge in config.badges] == [badge.type for badge in DEFAULT_BADGES]
	assert config.badge("TRUST_LEADER").threshold(BadgeTier.GOLD) == 90


def test_empty_document_uses_defaults():
	assert parse_trust_config(None) == TrustConfig()


@pytest.mark.parametrize(
	"document",
	[
		["not", "a", "mapping"],
		{"badges": {"VOUCHER": {}}},
		{"badges": [{"type": "VOUCHER", "tiers": {"bronze": 1, "silver": 5, "gold": 15}}]},
		{"badges": [{"type": "VOUCHER", "tiers": {"bronze": 5, "silver": 5, "gold": 15, "platinum": 50}}]},
		{"badges": [{"type": "VOUCHER", "tiers": {"bronze": "one", "silver": 5, "gold": 15, "platinum": 50}}]},
		{"vouch_weights": {"primary": 130}},
		{"max_vouches": {"secondary": 0}},
	],
)
def test_malformed_documents_are_rejected(document):
	with pytest.raises(ConfigError):
		parse_trust_config(document)


def test_invalid_yaml_is_a_config_error(tmp_path):
	path = tmp_path / "trust.yaml"
	path.write_text("badges: [unterminated", encoding="utf-8")
	with pytest.raises(ConfigError):
		load_trust_config(path)


@pytest.mark.asyncio
async def test_reload_swaps_snapshot_and_bumps_version(tmp_path):
	path = tmp_path / "trust.yaml"
	path.write_text("version: 1\nvouch_weights: {primary: 20, secondary: 30, community: 50}\n", encoding="utf-8")
	provider = ConfigProvider(file_loader(path))

	snapshot = await provider.reload()

	assert snapshot.vouch_weights.primary == 20.0
	assert provider.current() is snapshot
	assert provider.snapshot_version == 2


@pytest.mark.asyncio
async def test_failed_reload_keeps_last_known_snapshot(tmp_path):
	path = tmp_path / "trust.yaml"
	path.write_text("version: 7\n", encoding="utf-8")
	provider = ConfigProvider(file_loader(path))
	good = await provider.reload()

	path.write_text("max_vouches: {primary: -1}\n", encoding="utf-8")
	after = await provider.reload()

	assert after is good
	assert provider.snapshot_version == 7


@pytest.mark.asyncio
async def test_slow_reload_times_out_to_last_known_snapshot():
	initial = TrustConfig(version=3)

	async def _hang() -> TrustConfig:
		await asyncio.sleep(5)
		return TrustConfig(version=99)

	provider = ConfigProvider(_hang, timeout=0.05, initial=initial)
	assert await provider.reload() is initial
	assert provider.current() is initial


@pytest.mark.asyncio
async def test_reloaded_limits_apply_to_new_requests(store):
	async def _looser() -> TrustConfig:
		return parse_trust_config({"max_vouches": {"primary": 2}})

	async with TrustService(store, config=ConfigProvider(_looser)) as trust_service:
		await _approve_two_primaries(store, trust_service)
		limits = await trust_service.get_vouch_limits("bob")

	assert limits.limits[VouchType.PRIMARY].current == 2
	assert limits.limits[VouchType.PRIMARY].available == 0


async def _approve_two_primaries(store, trust_service):
	store.add_user("bob")
	for voucher in ("alice", "carol"):
		store.add_user(voucher)
		store.connect(voucher, "bob")
		requested = await trust_service.request_vouch(voucher, "bob", VouchType.PRIMARY)
		await trust_service.respond_to_vouch_request(requested.vouch.id, voucher, "approve")

