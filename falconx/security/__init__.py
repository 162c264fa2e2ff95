"""Request gating: rate limiting, origin policy and the security audit trail."""
