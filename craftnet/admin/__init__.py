"""Admin-only read models."""

from .dashboard import ActivityItem, DashboardSnapshot, format_time_ago, get_dashboard_snapshot

__all__ = ["ActivityItem", "DashboardSnapshot", "format_time_ago", "get_dashboard_snapshot"]
