import json
import logging

from trustnet.obs import logging as obs_logging


def _record(**extra) -> logging.LogRecord:
	record = logging.LogRecord("trustnet.domain.vouches", logging.INFO, __file__, 10, "vouch revoked", None, None)
	for key, value in extra.items():
		setattr(record, key, value)
	return record


def test_formatter_redacts_free_text_and_keeps_ids():
	payload = json.loads(
		obs_logging.JSONLogFormatter().format(_record(vouch_id="v-1", revoke_reason="personal details", score=12.5))
	)
	assert payload["msg"] == "vouch revoked"
	assert payload["level"] == "info"
	assert payload["vouch_id"] == "v-1"
	assert payload["revoke_reason"] == "[redacted]"
	assert payload["score"] == 12.5


def test_bound_context_is_emitted_and_reset():
	tokens = obs_logging.bind_context(request_id="req-1", operation="revoke_vouch", actor_id="alice")
	try:
		payload = json.loads(obs_logging.JSONLogFormatter().format(_record()))
	finally:
		obs_logging.reset_context(tokens)
	assert payload["request_id"] == "req-1"
	assert payload["operation"] == "revoke_vouch"
	assert payload["actor_id"] == "alice"

	payload = json.loads(obs_logging.JSONLogFormatter().format(_record()))
	assert "request_id" not in payload


def test_long_values_and_collections_are_truncated():
	payload = json.loads(obs_logging.JSONLogFormatter().format(_record(user_ids=[str(i) for i in range(20)], note="x" * 300)))
	assert len(payload["user_ids"]) == 11
	assert payload["note"].endswith("…")


def test_get_logger_defaults_to_package_logger():
	assert obs_logging.get_logger().name == "trustnet"
	assert obs_logging.get_logger("trustnet.domain").name == "trustnet.domain"
