"""
Storefront notification email layout

Table-based, inline-CSS wrapper for rule-driven emails. The rule body is
plain text with light markdown: **bold**, *bold*, [label](url) and line
breaks.

Usage:
    from notifier.services.email_html import render_notification_email

    html = render_notification_email(
        subject="Pedido enviado",
        body="Oi **Ana**, seu pedido saiu! [Rastrear](https://t.example/AB123)",
        store_name="Loja Exemplo",
    )
"""

from __future__ import annotations

import html
import re
from datetime import datetime, timezone

# ── Layout tokens ─────────────────────────────────────────────
COLOR_PRIMARY = "#667eea"
COLOR_BG = "#f4f4f5"
COLOR_WHITE = "#ffffff"
COLOR_BORDER = "#e4e4e7"
COLOR_TEXT = "#3f3f46"
COLOR_HEADING = "#18181b"
COLOR_MUTED = "#71717a"

FONT_STACK = "-apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif"

_BOLD_DOUBLE_RE = re.compile(r"\*\*(.+?)\*\*")
_BOLD_SINGLE_RE = re.compile(r"\*(.+?)\*")
_LINK_RE = re.compile(r"\[(.+?)\]\((.+?)\)")


def markdown_to_html(text: str) -> str:
    """Escape the text, then apply the small markdown subset used by rule templates."""
    if not text:
        return ""
    result = html.escape(text, quote=True)
    result = _BOLD_DOUBLE_RE.sub(r"<strong>\1</strong>", result)
    result = _BOLD_SINGLE_RE.sub(r"<strong>\1</strong>", result)
    result = _LINK_RE.sub(
        rf'<a href="\2" style="color:{COLOR_PRIMARY};text-decoration:underline;">\1</a>',
        result,
    )
    return result.replace("\r\n", "\n").replace("\n", "<br>")


def render_notification_email(
    *,
    subject: str,
    body: str,
    store_name: str,
    preheader: str = "",
) -> str:
    """Render a rule email body inside the store layout.

    Args:
        subject: Used for <title> and the heading.
        body: Rendered template text (markdown subset, not HTML).
        store_name: Sender identity shown in the footer.
        preheader: Hidden preview text shown by email clients.
    """
    safe_subject = html.escape(subject or "")
    safe_store = html.escape(store_name or "")
    year = datetime.now(timezone.utc).year

    # Hidden text that shows in the email client preview
    preheader_html = ""
    if preheader:
        preheader_html = (
            f'<div style="display:none;font-size:1px;color:{COLOR_BG};line-height:1px;'
            f'max-height:0;max-width:0;opacity:0;overflow:hidden;">'
            f"{html.escape(preheader)}"
            f"</div>"
        )

    return f"""\
<!DOCTYPE html>
<html lang="pt-BR" xmlns="http://www.w3.org/1999/xhtml">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>{safe_subject}</title>
</head>
<body style="margin:0;padding:0;background-color:{COLOR_BG};font-family:{FONT_STACK};">
{preheader_html}
<table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color:{COLOR_BG};">
  <tr>
    <td align="center" style="padding:40px 20px;">
      <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width:600px;width:100%;background-color:{COLOR_WHITE};border-radius:8px;overflow:hidden;">
        <tr>
          <td style="padding:30px 40px;border-bottom:1px solid {COLOR_BORDER};">
            <h1 style="margin:0;font-size:20px;font-weight:600;color:{COLOR_HEADING};">{safe_subject}</h1>
          </td>
        </tr>
        <tr>
          <td style="padding:30px 40px;font-size:15px;line-height:1.6;color:{COLOR_TEXT};">
{markdown_to_html(body)}
          </td>
        </tr>
        <tr>
          <td style="padding:20px 40px;background-color:#fafafa;border-top:1px solid {COLOR_BORDER};text-align:center;font-size:12px;color:{COLOR_MUTED};">
            Enviado por {safe_store}<br />
            &copy; {year} {safe_store}
          </td>
        </tr>
      </table>
    </td>
  </tr>
</table>
</body>
</html>"""
