"""Vouch ledger: request/response/revocation state machine with slot limits."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from trustnet.domain.config import ConfigProvider, TrustConfig
from trustnet.domain.exceptions import (
	AuthorizationError,
	DuplicateRequestError,
	InvalidStateTransition,
	LimitExceededError,
	NotFoundError,
	SelfVouchError,
	TrustError,
	ValidationError,
)
from trustnet.domain.models import (
	COMMUNITY_VOUCHER_ROLES,
	COUNTED_STATUSES,
	AccountabilityImpact,
	AccountabilityLog,
	ScoreComponent,
	Vouch,
	VouchAction,
	VouchStatus,
	VouchType,
	utcnow,
)
from trustnet.domain.repository import TrustRepository, TrustStore, slot_lock_key
from trustnet.domain.scoring import ScoreEngine, ScoreUpdate
from trustnet.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 500
MAX_PAGE_SIZE = 100


@dataclass(slots=True)
class VouchResult:
	vouch: Vouch
	score: Optional[ScoreUpdate] = None


@dataclass(slots=True)
class VouchPage:
	items: list[Vouch]
	total: int
	limit: int
	offset: int


def _coerce_type(value: VouchType | str) -> VouchType:
	try:
		return VouchType(value.upper() if isinstance(value, str) else value)
	except ValueError as exc:
		raise ValidationError("invalid_vouch_type") from exc


def _coerce_action(value: VouchAction | str) -> VouchAction:
	try:
		return VouchAction(value.lower() if isinstance(value, str) else value)
	except ValueError as exc:
		raise ValidationError("invalid_action") from exc


def _check_message(message: Optional[str]) -> Optional[str]:
	if message is None:
		return None
	text = message.strip()
	if len(text) > MAX_MESSAGE_LENGTH:
		raise ValidationError("message_too_long")
	return text or None


def _rejected(exc: TrustError) -> TrustError:
	obs_metrics.inc_vouch_rejection(exc.reason)
	return exc


class VouchLedger:
	"""Enforces the vouch lifecycle and the per-type slot invariant.

	Every check-then-commit runs inside ``store.transaction`` holding the
	``(vouchee, type)`` slot lock, so concurrent requests cannot oversubscribe
	a vouchee. Score recomputes happen after the ledger commit, under the
	vouchee's own score lock.
	"""

	def __init__(self, store: TrustStore, config: ConfigProvider, scores: ScoreEngine) -> None:
		self._store = store
		self._config = config
		self._scores = scores

	async def _ensure_capacity(self, repo: TrustRepository, cfg: TrustConfig, vouchee_id: str, vouch_type: VouchType) -> None:
		current = await repo.count_vouches(vouchee_id, vouch_type, COUNTED_STATUSES)
		if current >= cfg.max_vouches.for_type(vouch_type):
			raise _rejected(LimitExceededError())

	async def _ensure_not_duplicate(
		self,
		repo: TrustRepository,
		voucher_id: str,
		vouchee_id: str,
		vouch_type: VouchType,
		*,
		ignore_id: str | None = None,
	) -> None:
		existing = await repo.find_open_vouch(voucher_id, vouchee_id, vouch_type)
		if existing is not None and existing.id != ignore_id:
			raise _rejected(DuplicateRequestError())

	async def _ensure_users(self, *user_ids: str) -> None:
		repo = self._store.reader()
		for user_id in user_ids:
			if await repo.get_user(user_id) is None:
				raise _rejected(NotFoundError("user_not_found"))

	async def request_vouch(
		self,
		voucher_id: str,
		vouchee_id: str,
		vouch_type: VouchType | str,
		message: Optional[str] = None,
		community_id: Optional[str] = None,
	) -> VouchResult:
		vouch_type = _coerce_type(vouch_type)
		message = _check_message(message)
		if vouch_type == VouchType.COMMUNITY and not community_id:
			raise _rejected(ValidationError("community_id_required"))
		if voucher_id == vouchee_id:
			raise _rejected(SelfVouchError())
		await self._ensure_users(voucher_id, vouchee_id)

		if vouch_type == VouchType.COMMUNITY:
			assert community_id is not None
			return await self.create_community_vouch(vouchee_id, community_id, voucher_id, message)

		if not await self._store.reader().are_connected(voucher_id, vouchee_id):
			raise _rejected(AuthorizationError("not_connected"))

		cfg = self._config.current()
		async with self._store.transaction(slot_lock_key(vouchee_id, vouch_type)) as repo:
			await self._ensure_capacity(repo, cfg, vouchee_id, vouch_type)
			await self._ensure_not_duplicate(repo, voucher_id, vouchee_id, vouch_type)
			vouch = Vouch(
				voucher_id=voucher_id,
				vouchee_id=vouchee_id,
				vouch_type=vouch_type,
				status=VouchStatus.PENDING,
				weight_percentage=cfg.vouch_weights.for_type(vouch_type),
				message=message,
			)
			await repo.insert_vouch(vouch)

		obs_metrics.inc_vouch_transition("request", vouch_type.value)
		logger.info(
			"vouch requested",
			extra={"vouch_id": vouch.id, "voucher_id": voucher_id, "vouchee_id": vouchee_id, "vouch_type": vouch_type.value},
		)
		return VouchResult(vouch=vouch)

	async def _load_for_voucher(self, vouch_id: str, actor_id: str) -> Vouch:
		vouch = await self._store.reader().get_vouch(vouch_id)
		if vouch is None:
			raise _rejected(NotFoundError("vouch_not_found"))
		if vouch.voucher_id != actor_id:
			raise _rejected(AuthorizationError("not_voucher"))
		return vouch

	async def respond_to_vouch_request(
		self,
		vouch_id: str,
		actor_id: str,
		action: VouchAction | str,
		downgrade_to: VouchType | str | None = None,
	) -> VouchResult:
		action = _coerce_action(action)
		vouch = await self._load_for_voucher(vouch_id, actor_id)
		if vouch.status != VouchStatus.PENDING:
			raise _rejected(InvalidStateTransition())

		if action == VouchAction.APPROVE:
			return await self._approve(vouch)
		if action == VouchAction.DECLINE:
			return await self._decline(vouch)
		if downgrade_to is None:
			raise _rejected(ValidationError("downgrade_target_required"))
		return await self._downgrade(vouch, _coerce_type(downgrade_to))

	async def _reload_pending(self, repo: TrustRepository, vouch_id: str) -> Vouch:
		current = await repo.get_vouch(vouch_id)
		if current is None:
			raise _rejected(NotFoundError("vouch_not_found"))
		if current.status != VouchStatus.PENDING:
			raise _rejected(InvalidStateTransition())
		return current

	async def _approve(self, vouch: Vouch) -> VouchResult:
		cfg = self._config.current()
		async with self._store.transaction(slot_lock_key(vouch.vouchee_id, vouch.vouch_type)) as repo:
			current = await self._reload_pending(repo, vouch.id)
			await self._ensure_capacity(repo, cfg, current.vouchee_id, current.vouch_type)
			current.status = VouchStatus.APPROVED
			current.approved_at = utcnow()
			await repo.update_vouch(current)
			await repo.increment_vouch_counters(current.voucher_id, current.vouchee_id)

		obs_metrics.inc_vouch_transition("approve", current.vouch_type.value)
		score = await self._scores.recompute(
			current.vouchee_id,
			reason="Vouch approved",
			component=ScoreComponent.VOUCHES,
			related_entity_type="vouch",
			related_entity_id=current.id,
		)
		return VouchResult(vouch=current, score=score)

	async def _decline(self, vouch: Vouch) -> VouchResult:
		async with self._store.transaction(slot_lock_key(vouch.vouchee_id, vouch.vouch_type)) as repo:
			current = await self._reload_pending(repo, vouch.id)
			current.status = VouchStatus.DECLINED
			await repo.update_vouch(current)

		obs_metrics.inc_vouch_transition("decline", current.vouch_type.value)
		logger.info("vouch declined", extra={"vouch_id": current.id, "vouchee_id": current.vouchee_id})
		return VouchResult(vouch=current)

	async def _downgrade(self, vouch: Vouch, target: VouchType) -> VouchResult:
		if vouch.vouch_type != VouchType.PRIMARY or target != VouchType.SECONDARY:
			raise _rejected(ValidationError("invalid_downgrade"))
		cfg = self._config.current()
		lock_keys = (slot_lock_key(vouch.vouchee_id, VouchType.PRIMARY), slot_lock_key(vouch.vouchee_id, target))
		async with self._store.transaction(*lock_keys) as repo:
			current = await self._reload_pending(repo, vouch.id)
			await self._ensure_capacity(repo, cfg, current.vouchee_id, target)
			await self._ensure_not_duplicate(repo, current.voucher_id, current.vouchee_id, target, ignore_id=current.id)
			current.vouch_type = target
			current.weight_percentage = cfg.vouch_weights.for_type(target)
			current.status = VouchStatus.APPROVED
			current.approved_at = utcnow()
			await repo.update_vouch(current)
			await repo.increment_vouch_counters(current.voucher_id, current.vouchee_id)

		obs_metrics.inc_vouch_transition("downgrade", target.value)
		score = await self._scores.recompute(
			current.vouchee_id,
			reason="Vouch approved as secondary",
			component=ScoreComponent.VOUCHES,
			related_entity_type="vouch",
			related_entity_id=current.id,
		)
		return VouchResult(vouch=current, score=score)

	async def revoke_vouch(self, vouch_id: str, actor_id: str, reason: Optional[str] = None) -> VouchResult:
		reason = _check_message(reason)
		vouch = await self._load_for_voucher(vouch_id, actor_id)
		if vouch.status not in COUNTED_STATUSES:
			raise _rejected(InvalidStateTransition())

		async with self._store.transaction(slot_lock_key(vouch.vouchee_id, vouch.vouch_type)) as repo:
			current = await repo.get_vouch(vouch_id)
			if current is None or current.status not in COUNTED_STATUSES:
				raise _rejected(InvalidStateTransition())
			current.status = VouchStatus.REVOKED
			current.revoked_at = utcnow()
			current.revoke_reason = reason
			await repo.update_vouch(current)

		obs_metrics.inc_vouch_transition("revoke", current.vouch_type.value)
		score = await self._scores.recompute(
			current.vouchee_id,
			reason="Vouch revoked",
			component=ScoreComponent.VOUCHES,
			related_entity_type="vouch",
			related_entity_id=current.id,
		)
		await self._log_revocation(current, score)
		return VouchResult(vouch=current, score=score)

	async def _log_revocation(self, vouch: Vouch, score: ScoreUpdate) -> None:
		log = AccountabilityLog(
			voucher_id=vouch.voucher_id,
			vouchee_id=vouch.vouchee_id,
			vouch_id=vouch.id,
			impact_type=AccountabilityImpact.NEGATIVE,
			impact_value=round(score.score - score.previous, 4),
			reason=f"Vouch revoked: {vouch.revoke_reason}" if vouch.revoke_reason else "Vouch revoked",
			related_entity_type="vouch_revocation",
			related_entity_id=vouch.id,
		)
		try:
			await self._store.reader().insert_accountability(log)
		except Exception:
			obs_metrics.inc_accountability_write(log.impact_type.value, "error")
			logger.exception("accountability log write failed", extra={"vouch_id": vouch.id, "voucher_id": vouch.voucher_id})
			return
		obs_metrics.inc_accountability_write(log.impact_type.value, "ok")

	async def create_community_vouch(
		self,
		user_id: str,
		community_id: str,
		admin_id: str,
		message: Optional[str] = None,
	) -> VouchResult:
		message = _check_message(message)
		if user_id == admin_id:
			raise _rejected(SelfVouchError())
		reader = self._store.reader()
		membership = await reader.get_membership(community_id, admin_id)
		if membership is None or not membership.is_approved or membership.role not in COMMUNITY_VOUCHER_ROLES:
			raise _rejected(AuthorizationError("not_community_admin"))
		if await reader.get_user(user_id) is None:
			raise _rejected(NotFoundError("user_not_found"))

		cfg = self._config.current()
		vouch_type = VouchType.COMMUNITY
		async with self._store.transaction(slot_lock_key(user_id, vouch_type)) as repo:
			await self._ensure_capacity(repo, cfg, user_id, vouch_type)
			await self._ensure_not_duplicate(repo, admin_id, user_id, vouch_type)
			now = utcnow()
			vouch = Vouch(
				voucher_id=admin_id,
				vouchee_id=user_id,
				vouch_type=vouch_type,
				status=VouchStatus.APPROVED,
				weight_percentage=cfg.vouch_weights.community / cfg.max_vouches.community,
				community_id=community_id,
				message=message,
				is_community_vouch=True,
				created_at=now,
				approved_at=now,
			)
			await repo.insert_vouch(vouch)
			await repo.increment_vouch_counters(admin_id, user_id)

		obs_metrics.inc_vouch_transition("community", vouch_type.value)
		score = await self._scores.recompute(
			user_id,
			reason="Community vouch received",
			component=ScoreComponent.VOUCHES,
			related_entity_type="community_vouch",
			related_entity_id=vouch.id,
		)
		return VouchResult(vouch=vouch, score=score)

	# --- Reads ---

	async def _page(
		self,
		*,
		vouchee_id: str | None = None,
		voucher_id: str | None = None,
		status: VouchStatus | str | None = None,
		vouch_type: VouchType | str | None = None,
		limit: int = 20,
		offset: int = 0,
	) -> VouchPage:
		if limit < 1 or limit > MAX_PAGE_SIZE or offset < 0:
			raise ValidationError("invalid_page")
		statuses = None
		if status is not None:
			try:
				statuses = [VouchStatus(status.upper() if isinstance(status, str) else status)]
			except ValueError as exc:
				raise ValidationError("invalid_status") from exc
		items, total = await self._store.reader().list_vouches(
			vouchee_id=vouchee_id,
			voucher_id=voucher_id,
			statuses=statuses,
			vouch_type=_coerce_type(vouch_type) if vouch_type is not None else None,
			limit=limit,
			offset=offset,
		)
		return VouchPage(items=items, total=total, limit=limit, offset=offset)

	async def get_vouches_received(self, user_id: str, **filters) -> VouchPage:
		return await self._page(vouchee_id=user_id, **filters)

	async def get_vouches_given(self, user_id: str, **filters) -> VouchPage:
		return await self._page(voucher_id=user_id, **filters)

	async def get_vouch_limits(self, user_id: str) -> dict[VouchType, dict[str, int]]:
		cfg = self._config.current()
		repo = self._store.reader()
		limits: dict[VouchType, dict[str, int]] = {}
		for vouch_type in VouchType:
			maximum = cfg.max_vouches.for_type(vouch_type)
			current = await repo.count_vouches(user_id, vouch_type, COUNTED_STATUSES)
			limits[vouch_type] = {"max": maximum, "current": current, "available": max(0, maximum - current)}
		return limits

	async def get_vouch_summary(self, user_id: str) -> dict[str, object]:
		repo = self._store.reader()
		limits = await self.get_vouch_limits(user_id)
		_, pending = await repo.list_vouches(vouchee_id=user_id, statuses=[VouchStatus.PENDING], limit=0)
		_, given_total = await repo.list_vouches(voucher_id=user_id, limit=0)
		_, given_active = await repo.list_vouches(voucher_id=user_id, statuses=COUNTED_STATUSES, limit=0)
		return {
			"received": {vouch_type: entry["current"] for vouch_type, entry in limits.items()},
			"total_received": sum(entry["current"] for entry in limits.values()),
			"pending_received": pending,
			"total_given": given_total,
			"active_given": given_active,
			"available_slots": {vouch_type: entry["available"] for vouch_type, entry in limits.items()},
			"can_receive_more": any(entry["available"] > 0 for entry in limits.values()),
		}
