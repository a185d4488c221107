"""Report generation for subscription sync results."""

import json
import csv
import io
from datetime import datetime

from ..errors import ErrorKind
from .models import SyncReport, RecordOutcome


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (ErrorKind, RecordOutcome)):
        return value.value
    raise TypeError(f"Cannot serialize {type(value).__name__} in a sync report")


class ReportGenerator:
    """Generator for sync reports in various formats."""

    CSV_HEADER = ["type", "record_type", "id", "external_id", "status", "kind", "error"]

    def __init__(self, report: SyncReport):
        """Initialize the report generator.

        Args:
            report: The sync report to generate output from.
        """
        self.report = report

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Serialize the report summary, plus per-record entries when include_details is set."""
        data = self.report.to_summary_dict()
        if include_details:
            data["results"] = self.report.results.to_dict()
            data["payments_created"] = [r.model_dump() for r in self.report.payments_created]
            data["charge_sync_errors"] = [r.model_dump() for r in self.report.charge_sync_errors]

        return json.dumps(data, indent=indent, default=_json_default)

    def to_csv(self) -> str:
        """Generate CSV with one row per record touched or failed.

        Returns:
            CSV string with a header row.
        """
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(self.CSV_HEADER)

        for record in self.report.results.created + self.report.results.updated + self.report.payments_created:
            writer.writerow([
                record.outcome.value,
                record.record_type,
                record.id,
                record.external_id,
                record.status,
                "",
                "",
            ])

        for record in self.report.results.errors + self.report.charge_sync_errors:
            writer.writerow([
                "error",
                record.record_type,
                "",
                record.external_id,
                "",
                record.kind.value,
                record.message,
            ])

        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the report.

        Returns:
            Formatted text summary of the sync report.
        """
        summary = self.report.to_summary_dict()
        stats = summary["statistics"]

        lines = [
            "=" * 60,
            "SUBSCRIPTION SYNC REPORT",
            "=" * 60,
            f"Report ID: {summary['id']}",
            f"Account: {summary['account_id']}",
            f"Billing Customer: {summary['billing_customer_reference'] or 'N/A'}",
            f"Active Subscription: {'yes' if summary['has_active_subscription'] else 'no'}",
            f"Message: {summary['message']}",
            "",
            "Statistics:",
            f"  Subscriptions Created: {stats['created']}",
            f"  Subscriptions Updated: {stats['updated']}",
            f"  Errors: {stats['errors']}",
            f"  Payments Created: {stats['payments_created']}",
            f"  Charge Sync Errors: {stats['charge_sync_errors']}",
            "",
            f"Started At: {summary['started_at']}",
            f"Completed At: {summary['completed_at'] or 'N/A'}",
        ]

        failures = self.report.results.errors + self.report.charge_sync_errors
        if failures:
            lines.extend(["", "Errors:"])
            for r in failures:
                lines.append(f"  [{r.record_type}] {r.external_id}: {r.kind.value} - {r.message}")

        lines.append("=" * 60)

        return "\n".join(lines)
