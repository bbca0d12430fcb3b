"""
Console presentation for aggregation runs and health statistics.
"""

import sys
from datetime import datetime, timezone
from typing import Optional, TextIO

from .enums import ValidationMode
from .event_logger import EventLogger
from .health_tracker import HealthTracker
from .models import FetchProgress, RunSummary, ValidationProgress


MAX_ERRORS_SHOWN = 5


def format_size(count: int) -> str:
    """Abbreviate a count: 999, 1.5K, 2.3M."""
    if count < 1000:
        return str(count)
    if count < 1_000_000:
        return f"{count / 1000:.1f}K"
    return f"{count / 1_000_000:.1f}M"


def format_time_since(timestamp: Optional[str], now: Optional[datetime] = None) -> str:
    """Render an ISO timestamp relative to now ("5m ago", "2 days ago")."""
    if not timestamp:
        return "-"
    try:
        then = datetime.fromisoformat(timestamp)
    except ValueError:
        return "-"
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)

    seconds = ((now or datetime.now(timezone.utc)) - then).total_seconds()
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    days = int(seconds // 86400)
    return "1 day ago" if days == 1 else f"{days} days ago"


def render_summary(summary: RunSummary) -> str:
    """Build the end-of-run summary block."""
    lines = [
        "",
        "=" * 60,
        "AGGREGATION COMPLETE",
        "=" * 60,
        "",
        "Source statistics",
        f"  URLs fetched:        {summary.urls_fetched}",
    ]
    if summary.urls_filtered:
        lines.append(f"  URLs filtered:       {summary.urls_filtered}")
    lines += [
        f"  Domains found:       {format_size(summary.domains_found)}",
        f"  Duplicates removed:  {format_size(summary.duplicates_removed)}",
    ]

    if summary.mode is not ValidationMode.NONE:
        lines += [
            "",
            f"Validation results ({summary.mode.value})",
            f"  Valid domains:       {format_size(summary.valid_count)}",
            f"  Invalid domains:     {format_size(summary.invalid_count)}",
        ]
        if summary.domains_found > 0:
            rate = summary.invalid_count / summary.domains_found * 100
            lines.append(
                f"  Filtered out {format_size(summary.invalid_count)} invalid domains "
                f"({rate:.1f}% cleaning rate)"
            )

    lines += [
        "",
        "Output",
        f"  File:                {summary.output_path}",
        f"  Total domains:       {format_size(summary.valid_count)}",
        f"  Duration:            {summary.duration_seconds:.1f}s",
    ]

    if summary.errors:
        lines += ["", f"Errors encountered: {len(summary.errors)}"]
        for error in summary.error_sample(MAX_ERRORS_SHOWN):
            lines.append(f"  - {error}")
        hidden = len(summary.errors) - MAX_ERRORS_SHOWN
        if hidden > 0:
            lines.append(f"  ... and {hidden} more")

    lines.append("=" * 60)
    return "\n".join(lines)


def render_stats_table(tracker: HealthTracker, now: Optional[datetime] = None) -> str:
    """Build the per-URL health table printed by ``magpie stats``."""
    stats = tracker.all_stats()
    if not stats:
        return "No stats available yet. Run an aggregation first."

    lines = ["BLOCKLIST STATISTICS", "=" * 60]
    blacklisted = set(tracker.blacklisted_urls())
    filtered = len(blacklisted)
    active = len(stats) - filtered
    total_success = total_failures = 0

    for stat in stats:
        is_filtered = stat.url in blacklisted
        total_success += stat.success_count
        total_failures += stat.failure_count

        display_url = stat.url if len(stat.url) <= 60 else stat.url[:57] + "..."
        status = "✗ Filtered" if is_filtered else "✓ Active"
        lines.append(f"{display_url}  {status}")
        lines.append(
            f"  Success: {stat.success_count}  Failed: {stat.failure_count}  "
            f"Domains: {format_size(stat.total_domains)}  "
            f"Checked: {format_time_since(stat.last_checked, now)}"
        )
        if stat.last_error:
            lines.append(f"  Last error: {stat.last_error}")

    lines += [
        "-" * 60,
        f"Total URLs:       {len(stats)}",
        f"Active:           {active}",
        f"Filtered:         {filtered}",
        f"Total successes:  {total_success}",
        f"Total failures:   {total_failures}",
    ]

    last_run = tracker.last_run
    if last_run is not None:
        lines += [
            "",
            "Last run",
            f"  Run time:         {format_time_since(last_run.timestamp, now)}",
            f"  URLs fetched:     {last_run.urls_fetched}",
        ]
        if last_run.urls_failed:
            lines.append(f"  URLs failed:      {last_run.urls_failed}")
        lines += [
            f"  Domains raw:      {format_size(last_run.domains_fetched)}",
            f"  Domains unique:   {format_size(last_run.unique_domains)}",
            f"  Duplicates:       {format_size(last_run.duplicates)}",
        ]
        if last_run.validation_method != ValidationMode.NONE.value:
            lines += [
                f"  Valid domains:    {format_size(last_run.valid_domains)}",
                f"  Invalid domains:  {format_size(last_run.invalid_domains)}",
            ]
        lines.append(f"  Validation:       {last_run.validation_method}")

    return "\n".join(lines)


class ConsoleReporter:
    """
    Progress listener that writes to the console.

    Progress lines go through the event logger; the final summary block is
    printed to ``output_stream``. Quiet mode suppresses both.
    """

    def __init__(
        self,
        logger: Optional[EventLogger] = None,
        output_stream: Optional[TextIO] = None,
        quiet: bool = False,
    ) -> None:
        self._logger = logger
        self._output_stream = output_stream or sys.stdout
        self._quiet = quiet

    def on_fetch_progress(self, event: FetchProgress) -> None:
        if self._quiet or self._logger is None:
            return
        self._logger.info(
            "Progress",
            f"{event.url}: {event.domains_found} domains "
            f"({format_size(event.total_domains)} unique so far)",
            {"worker_id": event.worker_id},
        )

    def on_validation_progress(self, event: ValidationProgress) -> None:
        if self._quiet or self._logger is None:
            return
        self._logger.info(
            "Progress",
            f"Progress: {event.processed}/{event.total} ({event.percent:.1f}%) - "
            f"{event.valid} valid, {event.invalid} invalid - "
            f"{event.rate_per_second:.0f} domains/s",
            {},
        )

    def on_summary(self, summary: RunSummary) -> None:
        if self._quiet:
            return
        print(render_summary(summary), file=self._output_stream)
