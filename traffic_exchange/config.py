"""Core configuration & tunable anti-fraud / ledger rules.

Every business rule that may evolve (dwell threshold, cooldown window, daily
cap, referral bonus, holding period, sweep cadence) is centralized here so it
can be tuned without touching service logic. Values are module-level dicts so
tests can monkeypatch individual keys; environment variables override the
defaults at import time.
"""
from __future__ import annotations

import os
from decimal import Decimal


def _env_int(name: str, default: int) -> int:
	raw = os.getenv(name)
	return int(raw) if raw and raw.strip() else default


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


# ---------------------------- View Validation ----------------------------- #
VIEW_VALIDATION_SETTINGS: dict[str, object] = {
	# Completion minus start must be at least this long (inclusive).
	"min_dwell_seconds": _env_int("MIN_DWELL_SECONDS", 20),
	# Only one credited view per IP inside this window.
	"ip_cooldown_seconds": _env_int("IP_COOLDOWN_SECONDS", 600),
	# Ceiling on view_earn points per user per calendar day.
	"daily_points_cap": Decimal(os.getenv("DAILY_POINTS_CAP", "100000")),
	# Used when a site carries no payout rate.
	"default_points_per_view": Decimal("1"),
	# None = pending sessions never expire.
	"max_pending_seconds": None,
	# Calendar day boundary for the daily cap (IANA zone name).
	"day_boundary_timezone": os.getenv("DAY_BOUNDARY_TIMEZONE", "UTC"),
}

# ---------------------------- Proxy Detection ----------------------------- #
PROXY_DETECTION_SETTINGS: dict[str, list[str]] = {
	"headers": [
		"x-forwarded-for",
		"x-real-ip",
		"via",
		"forwarded",
		"x-forwarded-proto",
		"proxy-connection",
	],
	"user_agent_markers": ["proxy", "vpn", "tor"],
}

# -------------------------------- Referral -------------------------------- #
REFERRAL_SETTINGS: dict[str, object] = {
	"bonus_points": Decimal("50"),
	"code_length": 6,
}

# -------------------------------- Earnings -------------------------------- #
EARNINGS_SETTINGS: dict[str, object] = {
	"holding_period_days": _env_int("EARNINGS_HOLDING_PERIOD_DAYS", 15),
	# Points required for one currency unit when converting.
	"points_per_currency_unit": Decimal(os.getenv("POINTS_PER_CURRENCY_UNIT", "1000")),
}

# ---------------------------- Unlock Scheduler ---------------------------- #
UNLOCK_SCHEDULER_SETTINGS: dict[str, object] = {
	"enabled": _env_bool("ENABLE_UNLOCK_SCHEDULER", True),
	"interval_seconds": _env_int("UNLOCK_SWEEP_INTERVAL_SECONDS", 3600),
	"batch_size": _env_int("UNLOCK_SWEEP_BATCH_SIZE", 500),
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 1,
	"factor": 2,          # Exponential factor
	"max_seconds": 300,
	"jitter_pct": 0.10,   # +/-10% jitter
}

# ------------------------------ Withdrawals ------------------------------- #
# Shared secret presented by the withdrawal subsystem as
# "Authorization: Service <token>". Unset disables the service endpoints.
WITHDRAWAL_SERVICE_TOKEN: str | None = os.getenv("WITHDRAWAL_SERVICE_TOKEN") or None

__all__ = [
	"VIEW_VALIDATION_SETTINGS",
	"PROXY_DETECTION_SETTINGS",
	"REFERRAL_SETTINGS",
	"EARNINGS_SETTINGS",
	"UNLOCK_SCHEDULER_SETTINGS",
	"BACKOFF_POLICY",
	"WITHDRAWAL_SERVICE_TOKEN",
]
