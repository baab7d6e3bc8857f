"""Versioned trust configuration: vouch weights, slot limits and badge tiers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping

import yaml

from trustnet.domain.exceptions import ConfigError
from trustnet.domain.models import TIER_ORDER, BadgeTier, VouchType
from trustnet.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VouchWeights:
	"""Share of the vouches component (percent) granted to each vouch type."""

	primary: float = 30.0
	secondary: float = 30.0
	community: float = 40.0

	def for_type(self, vouch_type: VouchType) -> float:
		return {
			VouchType.PRIMARY: self.primary,
			VouchType.SECONDARY: self.secondary,
			VouchType.COMMUNITY: self.community,
		}[vouch_type]


@dataclass(frozen=True, slots=True)
class VouchLimits:
	primary: int = 1
	secondary: int = 3
	community: int = 2

	def for_type(self, vouch_type: VouchType) -> int:
		return {
			VouchType.PRIMARY: self.primary,
			VouchType.SECONDARY: self.secondary,
			VouchType.COMMUNITY: self.community,
		}[vouch_type]


@dataclass(frozen=True, slots=True)
class BadgeDefinition:
	type: str
	name: str
	thresholds: tuple[int, int, int, int]
	description: str = ""
	metric: str | None = None

	@property
	def metric_name(self) -> str:
		return self.metric or self.type

	def threshold(self, tier: BadgeTier) -> int:
		return self.thresholds[TIER_ORDER.index(tier)]


@dataclass(frozen=True, slots=True)
class AccountabilityMultipliers:
	negative: float = 0.4
	positive: float = 0.2


DEFAULT_BADGES: tuple[BadgeDefinition, ...] = (
	BadgeDefinition("VOUCHER", "Voucher", (1, 5, 15, 50), "Vouch for people you trust"),
	BadgeDefinition("CONNECTOR", "Connector", (5, 25, 100, 500), "Build accepted connections"),
	BadgeDefinition("COMMUNITY_BUILDER", "Community Builder", (3, 10, 25, 50), "Join and grow communities"),
	BadgeDefinition("EVENT_ENTHUSIAST", "Event Enthusiast", (5, 20, 50, 150), "Attend community events"),
	BadgeDefinition("TRUST_LEADER", "Trust Leader", (51, 76, 90, 95), "Reach a high trust score"),
	BadgeDefinition("RELIABLE", "Reliable", (5, 15, 30, 100), "Show up to the events you join"),
	BadgeDefinition("IMPACT_MAKER", "Impact Maker", (5, 20, 50, 150), "Vouch for people who do well"),
	BadgeDefinition("LONG_STANDING", "Long Standing", (30, 90, 180, 365), "Days as a member"),
)


@dataclass(frozen=True, slots=True)
class TrustConfig:
	"""Immutable configuration snapshot; replaced wholesale on reload."""

	version: int = 1
	vouch_weights: VouchWeights = field(default_factory=VouchWeights)
	max_vouches: VouchLimits = field(default_factory=VouchLimits)
	badges: tuple[BadgeDefinition, ...] = DEFAULT_BADGES
	reliability_threshold: float = 0.9
	inactivity_warning_days: int = 23
	decay_after_days: int = 30
	history_days: int = 30
	accountability: AccountabilityMultipliers = field(default_factory=AccountabilityMultipliers)

	def badge(self, badge_type: str) -> BadgeDefinition | None:
		for definition in self.badges:
			if definition.type == badge_type:
				return definition
		return None


def _number(section: Mapping[str, Any], key: str, default: float) -> float:
	if key not in section:
		return default
	try:
		return float(section[key])
	except (TypeError, ValueError) as exc:
		raise ConfigError(f"{key} must be numeric") from exc


def _weights(section: Any) -> VouchWeights:
	if not isinstance(section, dict):
		return VouchWeights()
	weights = VouchWeights(
		primary=_number(section, "primary", 30.0),
		secondary=_number(section, "secondary", 30.0),
		community=_number(section, "community", 40.0),
	)
	for value in (weights.primary, weights.secondary, weights.community):
		if not 0.0 <= value <= 100.0:
			raise ConfigError("vouch weights must be within 0..100")
	return weights


def _limits(section: Any) -> VouchLimits:
	if not isinstance(section, dict):
		return VouchLimits()
	limits = VouchLimits(
		primary=int(_number(section, "primary", 1)),
		secondary=int(_number(section, "secondary", 3)),
		community=int(_number(section, "community", 2)),
	)
	if min(limits.primary, limits.secondary, limits.community) < 1:
		raise ConfigError("max_vouches must be positive")
	return limits


def _badge(item: Any) -> BadgeDefinition:
	if not isinstance(item, dict) or "type" not in item:
		raise ConfigError("badge entries must be mappings with a type")
	tiers = item.get("tiers")
	if not isinstance(tiers, dict):
		raise ConfigError(f"badge {item['type']} is missing tiers")
	try:
		thresholds = tuple(int(tiers[tier.value]) for tier in TIER_ORDER)
	except KeyError as exc:
		raise ConfigError(f"badge {item['type']} is missing tier {exc.args[0]}") from exc
	except (TypeError, ValueError) as exc:
		raise ConfigError(f"badge {item['type']} tiers must be integers") from exc
	if any(lower >= upper for lower, upper in zip(thresholds, thresholds[1:])) or thresholds[0] < 0:
		raise ConfigError(f"badge {item['type']} tiers must be ascending")
	badge_type = str(item["type"])
	return BadgeDefinition(
		type=badge_type,
		name=str(item.get("name", badge_type.replace("_", " ").title())),
		thresholds=thresholds,  # type: ignore[arg-type]
		description=str(item.get("description", "")),
		metric=str(item["metric"]) if item.get("metric") else None,
	)


def parse_trust_config(data: Any) -> TrustConfig:
	if data is None:
		data = {}
	if not isinstance(data, dict):
		raise ConfigError("trust config must be a mapping")

	badges = DEFAULT_BADGES
	if "badges" in data:
		raw_badges = data["badges"]
		if not isinstance(raw_badges, list):
			raise ConfigError("badges must be a list")
		badges = tuple(_badge(item) for item in raw_badges)

	accountability_section = data.get("accountability") if isinstance(data.get("accountability"), dict) else {}
	return TrustConfig(
		version=int(_number(data, "version", 1)),
		vouch_weights=_weights(data.get("vouch_weights")),
		max_vouches=_limits(data.get("max_vouches")),
		badges=badges,
		reliability_threshold=_number(data, "reliability_threshold", 0.9),
		inactivity_warning_days=int(_number(data, "inactivity_warning_days", 23)),
		decay_after_days=int(_number(data, "decay_after_days", 30)),
		history_days=int(_number(data, "history_days", 30)),
		accountability=AccountabilityMultipliers(
			negative=_number(accountability_section, "negative_multiplier", 0.4),
			positive=_number(accountability_section, "positive_multiplier", 0.2),
		),
	)


def load_trust_config(path: str | Path) -> TrustConfig:
	with open(path, "r", encoding="utf-8") as handle:
		try:
			loaded = yaml.safe_load(handle)
		except yaml.YAMLError as exc:
			raise ConfigError(f"invalid YAML in {path}") from exc
	return parse_trust_config(loaded)


ConfigLoader = Callable[[], Awaitable[TrustConfig]]


def file_loader(path: str | Path) -> ConfigLoader:
	async def _load() -> TrustConfig:
		return await asyncio.to_thread(load_trust_config, path)

	return _load


async def _defaults() -> TrustConfig:
	return TrustConfig()


class ConfigProvider:
	"""Holds the active snapshot and swaps it atomically on reload.

	Readers call `current()` and never wait on I/O. A reload that fails or
	times out keeps the last-known snapshot in force.
	"""

	def __init__(
		self,
		loader: ConfigLoader | None = None,
		*,
		timeout: float = 2.0,
		initial: TrustConfig | None = None,
	) -> None:
		self._loader = loader or _defaults
		self._timeout = timeout
		self._current = initial or TrustConfig()
		self._reload_lock = asyncio.Lock()

	def current(self) -> TrustConfig:
		return self._current

	@property
	def snapshot_version(self) -> int:
		return self._current.version

	async def reload(self) -> TrustConfig:
		async with self._reload_lock:
			previous = self._current
			try:
				loaded = await asyncio.wait_for(self._loader(), timeout=self._timeout)
			except asyncio.TimeoutError:
				obs_metrics.inc_config_reload("timeout")
				logger.warning(
					"trust config reload timed out; keeping last-known snapshot",
					extra={"config_version": previous.version, "timeout_s": self._timeout},
				)
				return previous
			except Exception:
				obs_metrics.inc_config_reload("error")
				logger.exception(
					"trust config reload failed; keeping last-known snapshot",
					extra={"config_version": previous.version},
				)
				return previous
			snapshot = replace(loaded, version=max(loaded.version, previous.version + 1))
			self._current = snapshot
			obs_metrics.inc_config_reload("ok")
			logger.info("trust config reloaded", extra={"config_version": snapshot.version})
			return snapshot
