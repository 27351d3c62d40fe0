"""
Email Templates - Alarm Notification Emails

Builds the subject and HTML body sent when a machine alarm is raised.
"""

from datetime import datetime

from ..common.config import Machine
from ..common.timestamp import parse_iso
from ..storage.base import AlarmRecord

# Severity -> badge color
SEVERITY_COLORS = {
    "critical": "#dc2626",  # Red
    "high": "#ea580c",      # Orange
    "medium": "#ca8a04",    # Amber
    "low": "#2563eb",       # Blue
}

KIND_LABELS = {
    "offline": "Machine Offline",
    "critical-offline": "Machine Critically Offline",
    "cleaning-routine": "Routine Cleaning Due",
    "cleaning-deep": "Deep Cleaning Due",
    "cleaning-emergency": "Emergency Cleaning Required",
    "cleaning-overdue": "Cleaning Overdue",
    "error": "Machine Error",
}


def format_alarm_email(alarm: AlarmRecord, machine: Machine) -> tuple[str, str]:
    """
    Generate email subject and HTML body for a new alarm.

    Args:
        alarm: The alarm that was just created
        machine: Machine the alarm belongs to

    Returns:
        Tuple of (subject, html_body)
    """
    label = KIND_LABELS.get(alarm.kind, alarm.kind.replace("-", " ").title())
    color = SEVERITY_COLORS.get(alarm.severity, SEVERITY_COLORS["medium"])

    subject = f"[{alarm.severity.upper()}] {label} - {machine.display_name}"

    html = f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
</head>
<body style="margin:0;padding:0;background-color:#f3f4f6;font-family:Arial,sans-serif;">
  <table width="100%" cellpadding="0" cellspacing="0" style="padding:24px 0;">
    <tr>
      <td align="center">
        <table width="600" cellpadding="0" cellspacing="0" style="background-color:#ffffff;border-radius:8px;">
          <tr>
            <td style="background-color:{color};padding:20px 24px;color:#ffffff;">
              <span style="font-size:12px;text-transform:uppercase;">Alarm {alarm.severity}</span>
              <br>
              <span style="font-size:22px;font-weight:700;">{label}</span>
            </td>
          </tr>
          <tr>
            <td style="padding:20px 24px 12px;color:#374151;font-size:15px;">{alarm.message}</td>
          </tr>
          <tr>
            <td style="padding:8px 24px 20px;">
              <table width="100%" cellpadding="0" cellspacing="0" style="border:1px solid #e5e7eb;">
                {_detail_row("Machine", machine.name)}
                {_detail_row("Serial", machine.serial_number or "-")}
                {_detail_row("Type", machine.type.value.replace("_", " "))}
                {_detail_row("Location", machine.location or "-")}
                {_detail_row("Triggered", _format_timestamp(alarm.created_at))}
              </table>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""

    return subject, html


def _detail_row(label: str, value: str) -> str:
    return f"""<tr>
    <td style="padding:8px 14px;border-bottom:1px solid #e5e7eb;color:#6b7280;width:100px;">{label}</td>
    <td style="padding:8px 14px;border-bottom:1px solid #e5e7eb;color:#111827;">{value}</td>
</tr>"""


def _format_timestamp(ts: datetime | str | None) -> str:
    """Format a timestamp for display (UTC)."""
    dt = parse_iso(ts)
    if dt is None:
        return "-"
    return dt.strftime("%b %d, %Y at %H:%M UTC")
