"""
Email templates for DR Tracker notifications.

All templates use inline CSS for maximum email client compatibility.
Each template function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from collections.abc import Sequence
from html import escape
from typing import Any

# Color constants
BG_PAGE = "#F5F7FA"
BG_CARD = "#FFFFFF"
ACCENT = "#2563EB"
UP = "#16A34A"
DOWN = "#DC2626"
TEXT_PRIMARY = "#111827"
TEXT_SECONDARY = "#6B7280"
BORDER = "#E5E7EB"

APP_NAME = "DR Tracker"


def _base_layout(content: str, app_name: str = APP_NAME) -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{app_name}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 24px;">
                            <span style="font-size: 22px; font-weight: 700; color: {ACCENT};">{app_name}</span>
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 12px; padding: 32px;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 24px;">
                            <p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
                                You are receiving this because notifications are enabled for this domain.<br>
                                Manage them from your dashboard.
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _signed(change: int) -> str:
    return f"+{change}" if change > 0 else str(change)


def _change_color(change: int) -> str:
    return UP if change > 0 else DOWN if change < 0 else TEXT_SECONDARY


def _change_span(change: int) -> str:
    return f'<span style="color: {_change_color(change)};">{_signed(change)}</span>'


def _heading(text: str) -> str:
    return f'<h1 style="color: {TEXT_PRIMARY}; font-size: 22px; font-weight: 700; margin: 0 0 16px 0;">{text}</h1>'


def _paragraph(text: str) -> str:
    return f'<p style="color: {TEXT_SECONDARY}; font-size: 15px; line-height: 1.6; margin: 0 0 16px 0;">{text}</p>'


def dr_change_alert(domain: str, old_da: int, new_da: int, change: int) -> tuple[str, str, str]:
    """Instant alert for a DR change at or above the domain's threshold."""
    direction = "increased" if change > 0 else "decreased"
    subject = f"DR Change Alert: {domain} {_signed(change)}"
    content = f"""\
{_heading("Domain Rating changed")}
{_paragraph(f"The Domain Rating of <strong>{escape(domain)}</strong> has {direction}.")}
<p style="font-size: 32px; font-weight: 700; margin: 8px 0 24px 0; color: {TEXT_PRIMARY};">
    {old_da} &rarr; {new_da}
    <span style="color: {_change_color(change)}; font-size: 20px;">({_signed(change)})</span>
</p>"""
    text_body = (
        f"The Domain Rating of {domain} has {direction}.\n\n"
        f"DR {old_da} -> {new_da} ({_signed(change)})\n\n"
        f"-- {APP_NAME}"
    )
    return subject, _base_layout(content), text_body


def daily_batch(domains: Sequence[dict[str, Any]]) -> tuple[str, str, str]:
    """Daily summary of every changed domain for one owner."""
    total = len(domains)
    positive = sum(1 for d in domains if d["change"] > 0)
    negative = sum(1 for d in domains if d["change"] < 0)
    subject = f"Daily DR Update: {total} domain{'s' if total != 1 else ''} updated"

    rows = "\n".join(
        f'<tr><td style="padding: 8px 0; color: {TEXT_PRIMARY};">{escape(d["domain"])}</td>'
        f'<td align="right" style="padding: 8px 0; color: {TEXT_SECONDARY};">{d["old_da"]} &rarr; {d["new_da"]}</td>'
        f'<td align="right" style="padding: 8px 0; color: {_change_color(d["change"])};">{_signed(d["change"])}</td></tr>'
        for d in domains
    )
    content = f"""\
{_heading("Your daily DR update")}
{_paragraph(f"{positive} up, {negative} down across {total} domain{'s' if total != 1 else ''}.")}
<table role="presentation" width="100%" style="border-collapse: collapse; font-size: 14px;">
{rows}
</table>"""
    lines = [f"- {d['domain']}: {d['old_da']} -> {d['new_da']} ({_signed(d['change'])})" for d in domains]
    text_body = f"Your daily DR update ({positive} up, {negative} down):\n\n" + "\n".join(lines) + f"\n\n-- {APP_NAME}"
    return subject, _base_layout(content), text_body


def weekly_recap(
    total_domains: int,
    average_da: float,
    top_performer: dict[str, Any],
    biggest_loser: dict[str, Any],
    week_start: str,
    week_end: str,
) -> tuple[str, str, str]:
    """Monday recap of the previous week."""
    subject = f"Your Weekly DR Recap ({week_start} to {week_end})"
    top_line = (
        f"Top performer: <strong>{escape(top_performer['domain'])}</strong> at DR {top_performer['da']} "
        f"({_change_span(top_performer['change'])})"
    )
    drop_line = (
        f"Biggest drop: <strong>{escape(biggest_loser['domain'])}</strong> at DR {biggest_loser['da']} "
        f"({_change_span(biggest_loser['change'])})"
    )
    content = f"""\
{_heading("Your week in Domain Rating")}
{_paragraph(f"{total_domains} domain{'s' if total_domains != 1 else ''} tracked, average DR <strong>{average_da:.1f}</strong>.")}
{_paragraph(top_line)}
{_paragraph(drop_line)}"""
    text_body = (
        f"Week {week_start} to {week_end}\n\n"
        f"Domains tracked: {total_domains}\n"
        f"Average DR: {average_da:.1f}\n"
        f"Top performer: {top_performer['domain']} DR {top_performer['da']} ({_signed(top_performer['change'])})\n"
        f"Biggest drop: {biggest_loser['domain']} DR {biggest_loser['da']} ({_signed(biggest_loser['change'])})\n\n"
        f"-- {APP_NAME}"
    )
    return subject, _base_layout(content), text_body


def milestone_celebration(domain: str, milestone: int) -> tuple[str, str, str]:
    """One-time celebration for a DR threshold crossing."""
    subject = f"Milestone reached: {domain} hit DR {milestone}"
    content = f"""\
{_heading(f"DR {milestone} reached!")}
{_paragraph(f"Congratulations, <strong>{escape(domain)}</strong> has reached Domain Rating {milestone}.")}"""
    text_body = f"Congratulations! {domain} has reached Domain Rating {milestone}.\n\n-- {APP_NAME}"
    return subject, _base_layout(content), text_body


def inactivity_warning(days_inactive: int, domain_count: int) -> tuple[str, str, str]:
    """Nudge after 7 or 9 days without any domain activity."""
    subject = f"Your domains haven't been checked in {days_inactive} days"
    content = f"""\
{_heading("We miss you")}
{_paragraph(f"None of your {domain_count} tracked domain{'s' if domain_count != 1 else ''} "
            f"has been checked in {days_inactive} days.")}"""
    text_body = (
        f"None of your {domain_count} tracked domains has been checked in {days_inactive} days.\n\n-- {APP_NAME}"
    )
    return subject, _base_layout(content), text_body
