"""
Service for stock alerts: low stock, almost out and excess stock.
"""
import logging
from typing import Optional

from flask import current_app, has_app_context

from almacen.blueprints.metrics import stock_alert_emails_total
from almacen.exceptions import ValidationError
from almacen.middleware import ANONYMOUS
from almacen.models import Product, AuditAction
from almacen.services.audit_service import log_action
from almacen.services.email_service import send_stock_alert_email

logger = logging.getLogger(__name__)


def _almost_out_factor(factor=None):
    if factor is not None:
        return factor
    if has_app_context():
        return current_app.config.get('ALMOST_OUT_FACTOR', 1.1)
    return 1.1


def _with_minimum(session):
    return session.query(Product).filter(
        Product.min_quantity.isnot(None),
        Product.min_quantity > 0
    )


def get_low_stock_products(session):
    """Products at or below their minimum, most critical first."""
    products = _with_minimum(session).filter(
        Product.current_quantity <= Product.min_quantity
    ).all()
    return sorted(products, key=lambda p: (p.current_quantity / p.min_quantity, p.description))


def get_almost_out_products(session, factor=None):
    """
    Products within `factor` times their minimum (default +10%).

    Includes products already below the minimum.
    """
    factor = _almost_out_factor(factor)
    products = [p for p in _with_minimum(session).all() if p.is_almost_out(factor)]
    return sorted(products, key=lambda p: (p.current_quantity / p.min_quantity, p.description))


def get_excess_stock_products(session):
    """Products above their maximum, biggest excess first."""
    products = session.query(Product).filter(
        Product.max_quantity.isnot(None),
        Product.max_quantity > 0,
        Product.current_quantity > Product.max_quantity
    ).all()
    return sorted(products, key=lambda p: (-(p.current_quantity - p.max_quantity), p.description))


def get_alert_digest(session, factor=None) -> dict:
    """
    All three alert lists as serializable dicts.

    Returns:
        dict with keys low_stock, almost_out, excess_stock, total
    """
    low_stock = [p.to_dict() for p in get_low_stock_products(session)]
    almost_out = [p.to_dict() for p in get_almost_out_products(session, factor)]
    excess_stock = []
    for product in get_excess_stock_products(session):
        data = product.to_dict()
        data['excess_quantity'] = float(product.current_quantity - product.max_quantity)
        excess_stock.append(data)

    return {
        'low_stock': low_stock,
        'almost_out': almost_out,
        'excess_stock': excess_stock,
        'total': len(low_stock) + len(almost_out) + len(excess_stock),
    }


def send_stock_alerts(session, to: Optional[str] = None, actor=ANONYMOUS) -> dict:
    """
    Email the alert digest.

    Args:
        to: recipient(s), comma separated; defaults to ALERT_EMAIL_TO
        actor: who triggered the send (audit row)

    Returns:
        dict with sent flag, recipients and per-list counts

    Raises:
        ValidationError: no recipient configured
    """
    recipients_raw = to or current_app.config.get('ALERT_EMAIL_TO', '')
    recipients = [r.strip() for r in str(recipients_raw).split(',') if r.strip()]
    if not recipients:
        raise ValidationError('No hay destinatario configurado para las alertas (ALERT_EMAIL_TO)')

    digest = get_alert_digest(session)
    counts = {
        'low_stock': len(digest['low_stock']),
        'almost_out': len(digest['almost_out']),
        'excess_stock': len(digest['excess_stock']),
    }

    if digest['total'] == 0:
        logger.info("[ALERTS] No stock alerts to send")
        return {'sent': False, 'recipients': recipients, 'counts': counts}

    business_name = current_app.config.get('BUSINESS_NAME', 'Almacén')
    sent = send_stock_alert_email(recipients, digest, business_name)
    stock_alert_emails_total.labels(status='sent' if sent else 'failed').inc()

    if sent:
        log_action(session, actor, AuditAction.STOCK_ALERT_SENT, 'alert', None, {
            'recipients': recipients,
            **counts,
        })
        session.commit()

    logger.info(f"[ALERTS] Digest to {recipients}: sent={sent} counts={counts}")
    return {'sent': sent, 'recipients': recipients, 'counts': counts}
