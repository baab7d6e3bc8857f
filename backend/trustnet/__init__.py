"""Reputation and social-trust engine: vouches, trust scores, badges and leaderboards."""

from trustnet.domain.container import TrustService, build_trust_service

__all__ = ["TrustService", "build_trust_service"]
