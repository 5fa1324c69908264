"""Disputes raised by either party to a job and settled by admins."""

from .service import (
    dispute_stats,
    evidence_signed_url,
    get_all_disputes,
    get_dispute,
    get_user_disputes,
    submit_dispute,
    update_dispute_status,
)

__all__ = [
    "submit_dispute",
    "get_dispute",
    "update_dispute_status",
    "get_user_disputes",
    "get_all_disputes",
    "dispute_stats",
    "evidence_signed_url",
]
