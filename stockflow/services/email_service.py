"""
Email service for subscription lifecycle notifications.
Uses Flask-Mail for SMTP integration with UTF-8 support.

Every sender returns True/False and never raises, so a mail outage
cannot break the billing transition that triggered it.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app
from flask_mail import Mail, Message
from markupsafe import Markup, escape

from stockflow.utils.formatters import date_co

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents 500 errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _billing_url() -> str:
    return f"{current_app.config.get('FRONTEND_URL', '').rstrip('/')}/billing"


def _render(first_name: str, heading: str, paragraphs: Iterable[str], color: str = '#0d6efd') -> str:
    """HTML body. Plain strings are escaped; Markup paragraphs keep their tags."""
    body = "".join(f"<p>{escape(p)}</p>" for p in paragraphs)
    return f"""
    <!DOCTYPE html>
    <html>
    <head><meta charset="UTF-8"></head>
    <body style="font-family: Arial, sans-serif; color: #333;">
        <div style="max-width: 600px; margin: auto; padding: 20px;">
            <div style="background: {color}; color: #fff; padding: 20px; text-align: center;">
                <h1>{escape(heading)}</h1>
            </div>
            <div style="background: #fff; padding: 30px;">
                <p>Hola <strong>{escape(first_name)}</strong>,</p>
                {body}
                <div style="text-align:center;margin:30px 0;">
                    <a href="{escape(_billing_url())}" style="padding: 12px 30px; background: #198754;
                       color: #fff; text-decoration: none; border-radius: 5px;">Ver mi suscripción</a>
                </div>
            </div>
        </div>
    </body>
    </html>
    """


def _send(to_email: str, subject: str, html: str, text: str, event: str) -> bool:
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] {event} email skipped for {to_email}")
            return True

        msg = Message(subject=subject, recipients=[to_email], body=text, html=html)
        mail.send(msg)
        logger.info(f"[EMAIL] ✓ {event} email sent to {to_email}")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] ✗ Error sending {event} email to {to_email}: {e}")
        return False


def send_subscription_activated_email(
    to_email: str,
    first_name: str,
    tenant_name: str,
    plan_name: str,
    period_label: str,
    end_date: datetime,
    renewal: bool = False
) -> bool:
    """
    Notify that a plan was activated or renewed.

    Args:
        to_email: Recipient email
        first_name: Recipient first name
        tenant_name: Business name
        plan_name: Display name of the plan (Pyme, Pro...)
        period_label: Mensual, Trimestral or Anual
        end_date: New end of the paid period
        renewal: True when an existing period was extended

    Returns:
        True if sent successfully (or mail disabled), False otherwise
    """
    if renewal:
        subject = f"🔄 Tu plan {plan_name} fue renovado - {tenant_name}"
        lead = Markup("Renovamos tu plan <strong>{}</strong> ({}) de {}.").format(
            plan_name, period_label, tenant_name
        )
        lead_text = f"Renovamos tu plan {plan_name} ({period_label}) de {tenant_name}."
    else:
        subject = f"🎉 Plan {plan_name} activado - {tenant_name}"
        lead = Markup("Tu plan <strong>{}</strong> ({}) ya está activo en {}.").format(
            plan_name, period_label, tenant_name
        )
        lead_text = f"Tu plan {plan_name} ({period_label}) ya está activo en {tenant_name}."
    vigente = f"Tu suscripción estará vigente hasta el {date_co(end_date)}."
    tail = Markup("Tu suscripción estará vigente hasta el <strong>{}</strong>.").format(date_co(end_date))
    text = f"Hola {first_name},\n\n{lead_text}\n{vigente}\n\n{_billing_url()}"
    return _send(to_email, subject, _render(first_name, subject, [lead, tail]), text, 'activation')


def send_subscription_suspended_email(
    to_email: str,
    first_name: str,
    tenant_name: str,
    plan_name: str,
    reason: Optional[str] = None
) -> bool:
    subject = f"⚠️ Suscripción suspendida - {tenant_name}"
    lead = f"La suscripción {plan_name} de {tenant_name} fue suspendida."
    detail = f"Motivo: {reason}" if reason else "Contacta a soporte para más información."
    text = f"Hola {first_name},\n\n{lead}\n{detail}"
    return _send(to_email, subject, _render(first_name, subject, [lead, detail], '#dc3545'), text, 'suspension')


def send_subscription_changed_email(
    to_email: str,
    first_name: str,
    tenant_name: str,
    old_plan_name: str,
    new_plan_name: str,
    end_date: datetime
) -> bool:
    subject = f"🔁 Cambio de plan - {tenant_name}"
    lead = Markup("Tu plan cambió de {} a <strong>{}</strong>.").format(old_plan_name, new_plan_name)
    tail = f"Tu periodo actual sigue vigente hasta el {date_co(end_date)}."
    text = f"Hola {first_name},\n\nTu plan cambió de {old_plan_name} a {new_plan_name}.\n{tail}"
    return _send(to_email, subject, _render(first_name, subject, [lead, tail]), text, 'plan change')


def send_subscription_expiring_email(
    to_email: str,
    first_name: str,
    tenant_name: str,
    plan_name: str,
    end_date: datetime,
    days_remaining: int
) -> bool:
    """Warn that the subscription ends soon (also used when a renewal charge fails)."""
    when = "mañana" if days_remaining <= 1 else f"en {days_remaining} días"
    subject = f"⏰ Tu plan {plan_name} vence {when} - {tenant_name}"
    lead = Markup("Tu plan <strong>{}</strong> de {} vence {} ({}).").format(
        plan_name, tenant_name, when, date_co(end_date)
    )
    tail = "Renueva o actualiza tu método de pago para evitar interrupciones."
    text = f"Hola {first_name},\n\nTu plan {plan_name} vence {when} ({date_co(end_date)}).\n{tail}"
    return _send(to_email, subject, _render(first_name, subject, [lead, tail], '#fd7e14'), text, 'expiring')


def send_subscription_expired_email(
    to_email: str,
    first_name: str,
    tenant_name: str,
    plan_name: str
) -> bool:
    subject = f"❌ Tu plan {plan_name} venció - {tenant_name}"
    lead = f"El plan {plan_name} de {tenant_name} venció y la cuenta quedó suspendida."
    tail = "Activa un nuevo plan para recuperar el acceso."
    text = f"Hola {first_name},\n\n{lead}\n{tail}"
    return _send(to_email, subject, _render(first_name, subject, [lead, tail], '#dc3545'), text, 'expired')
