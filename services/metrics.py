"""Prometheus metrics shared by the ticket services."""

from prometheus_client import Counter

JOIN_OUTCOMES = Counter(
    "giveaway_join_outcomes_total",
    "Join attempts by outcome code",
    ["outcome"],
)

TICKETS_CREDITED = Counter(
    "giveaway_tickets_credited_total",
    "Extra tickets credited by source",
    ["source"],
)

CAPTCHA_EVENTS = Counter(
    "giveaway_captcha_events_total",
    "Captcha generations and verification outcomes",
    ["event"],
)
