"""Message rendering for each notification channel.

Pure functions: an Alert in, a channel-specific payload out.
"""

from html import escape
from typing import Any

from market_monitor.alerts.schemas import Alert

SEVERITY_EMOJI = {
    "high": "🚨",
    "medium": "⚠️",
    "low": "ℹ️",
}

DISCLAIMER = (
    "Disclaimer: This is not financial advice. Always do your own research "
    "before making investment decisions."
)


def severity_emoji(severity: str) -> str:
    return SEVERITY_EMOJI.get(severity, "📢")


def alert_label(alert: Alert) -> str:
    """``BTC_EXTREME_INFLOW`` → ``BTC EXTREME INFLOW``."""
    return alert.alert_type.replace("_", " ")


def _details_lines(alert: Alert) -> list[str]:
    lines = [f"Metric: {alert.metric}"]
    if alert.value is not None:
        lines.append(f"Value: {alert.value:g}")
    lines.append(f"Time: {alert.created_at.strftime('%Y-%m-%d %H:%M UTC')}")
    return lines


def render_email(alert: Alert) -> tuple[str, str]:
    """Render an alert as an email subject and plain-text body."""
    subject = f"{severity_emoji(alert.severity)} Market Alert: {alert_label(alert)}"
    body_lines = [
        f"{alert_label(alert)} ({alert.severity.upper()})",
        "=" * 50,
        "",
        alert.message,
        "",
        "-" * 50,
        *_details_lines(alert),
    ]
    summary = (alert.details.get("prediction") or {}).get("summary")
    if summary:
        body_lines += ["", "Outlook:", str(summary)]
    body_lines += ["", DISCLAIMER]
    return subject, "\n".join(body_lines)


def render_push(alert: Alert) -> dict[str, Any]:
    """Render the JSON payload shown by the browser notification."""
    return {
        "title": f"{severity_emoji(alert.severity)} Market Alert",
        "body": alert.message,
        "tag": f"alert-{alert.alert_id}",
        "data": {
            "alertId": alert.alert_id,
            "alertType": alert.alert_type,
            "severity": alert.severity,
            "timestamp": alert.created_at.isoformat(),
            "url": "/app/alerts",
        },
        "requireInteraction": alert.severity == "high",
    }


def render_chat(alert: Alert) -> str:
    """Render an alert as Telegram HTML."""
    details = "\n".join(f"• {escape(line)}" for line in _details_lines(alert))
    return (
        f"<b>{severity_emoji(alert.severity)} Market Alert</b>\n\n"
        f"<b>Type:</b> {escape(alert_label(alert))}\n"
        f"<b>Severity:</b> {alert.severity.upper()}\n\n"
        f"{escape(alert.message)}\n\n"
        f"<b>Details:</b>\n{details}\n\n"
        f"<i>{DISCLAIMER}</i>"
    )
