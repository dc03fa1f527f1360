"""
Email service for stock alert digests.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import logging
from flask import current_app
from flask_mail import Mail, Message
from markupsafe import escape

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Keeps dev and test environments from failing on a missing SMTP server.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _fmt(value) -> str:
    if value is None:
        return '-'
    return f"{float(value):g}"


def _rows_html(products: list, limit_key: str) -> str:
    return "".join(
        f"""
                <tr>
                    <td>{escape(p['code'])}</td>
                    <td>{escape(p['description'])}</td>
                    <td align="center">{_fmt(p['current_quantity'])}</td>
                    <td align="center">{_fmt(p.get(limit_key))}</td>
                </tr>
                """
        for p in products
    )


def build_stock_alert_bodies(digest: dict, business_name: str):
    """
    Render the alert digest as (text, html).

    digest: {'low_stock': [...], 'almost_out': [...], 'excess_stock': [...]}
    with product dicts from Product.to_dict().
    """
    sections = [
        ('⚠️ Stock bajo', digest.get('low_stock', []), 'min_quantity'),
        ('⏳ Por agotarse', digest.get('almost_out', []), 'min_quantity'),
        ('📦 Exceso de stock', digest.get('excess_stock', []), 'max_quantity'),
    ]

    text_lines = [f"Alertas de inventario - {business_name}", ""]
    html_parts = [f"<h2>Alertas de inventario - {escape(business_name)}</h2>"]

    for title, products, limit_key in sections:
        text_lines.append(f"{title} ({len(products)})")
        for p in products:
            text_lines.append(
                f"  - {p['code']} {p['description']}: {_fmt(p['current_quantity'])} (límite {_fmt(p.get(limit_key))})"
            )
        text_lines.append("")

        if products:
            limit_label = 'Stock Máximo' if limit_key == 'max_quantity' else 'Stock Mínimo'
            html_parts.append(f"""
            <h3>{title} ({len(products)})</h3>
            <table border="1" cellpadding="8" cellspacing="0" width="100%">
                <tr>
                    <th>Código</th>
                    <th>Producto</th>
                    <th>Stock Actual</th>
                    <th>{limit_label}</th>
                </tr>
                {_rows_html(products, limit_key)}
            </table>
            """)

    return "\n".join(text_lines), "".join(html_parts)


def send_stock_alert_email(to_emails: list, digest: dict, business_name: str) -> bool:
    """
    Send the stock alert digest.

    Returns:
        True if sent (or mail disabled), False on SMTP failure
    """
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Stock alert skipped for {to_emails}")
            return True

        text_body, html_body = build_stock_alert_bodies(digest, business_name)
        total = sum(len(digest.get(k, [])) for k in ('low_stock', 'almost_out', 'excess_stock'))

        msg = Message(
            subject=f"⚠️ Alertas de Stock ({total}) - {business_name}",
            recipients=to_emails,
            body=text_body,
            html=html_body,
        )

        mail.send(msg)
        logger.info(f"[EMAIL] ✓ Stock alert sent to {to_emails}")
        return True

    except Exception:
        # SMTP failures never break the caller
        logger.exception("[EMAIL] ✗ Error sending stock alert")
        return False
