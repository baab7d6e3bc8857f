"""Inactivity warnings and the pluggable score decay hook."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional, Protocol

from trustnet.domain import policy
from trustnet.domain.config import TrustConfig
from trustnet.domain.models import User, utcnow
from trustnet.obs import metrics as obs_metrics

if TYPE_CHECKING:  # pragma: no cover - type-only imports
	from trustnet.domain.container import TrustService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DecayWarning:
	days_until_decay: int
	message: str


def decay_warning(last_active: Optional[datetime], now: datetime, config: TrustConfig) -> Optional[DecayWarning]:
	"""Warn during the window between the warning threshold and the decay start."""
	days = policy.inactive_days(last_active, now)
	if config.inactivity_warning_days <= days < config.decay_after_days:
		remaining = config.decay_after_days - days
		return DecayWarning(
			days_until_decay=remaining,
			message=f"Your trust score will start decaying in {remaining} days due to inactivity",
		)
	return None


class DecayPolicy(Protocol):
	"""Returns the adjusted score for an inactive user, or None to leave it alone."""

	def adjust(self, user: User, inactive_days: int) -> Optional[float]:
		...


class NoDecayPolicy:
	"""Default policy: the reduction curve past the decay threshold is not defined yet."""

	def adjust(self, user: User, inactive_days: int) -> Optional[float]:
		return None


async def run_decay_sweep(
	service: "TrustService",
	decay_policy: DecayPolicy | None = None,
	*,
	now: datetime | None = None,
) -> int:
	"""Apply the decay policy to users inactive past the decay threshold.

	Returns the number of users whose score was adjusted.
	"""
	decay_policy = decay_policy or NoDecayPolicy()
	now = now or utcnow()
	cfg = service.config.current()
	candidates = await service.store.reader().list_inactive_users(now - timedelta(days=cfg.decay_after_days))
	adjusted = 0
	for user in candidates:
		days = policy.inactive_days(user.last_active_at or user.created_at, now)
		target = decay_policy.adjust(user, days)
		if target is None:
			continue
		await service.scores.apply_override(
			user.id,
			policy.clamp_score(target),
			reason=f"Inactivity decay after {days} days",
		)
		obs_metrics.inc_decay_adjustment()
		adjusted += 1
	logger.info("decay sweep finished", extra={"candidates": len(candidates), "adjusted": adjusted})
	return adjusted
