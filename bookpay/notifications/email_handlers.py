from bookpay.config import Settings
from bookpay.services.email_service import send_email
from bookpay.utils.template import render_template


def send_user_email(template, subject, to, settings: Settings, **ctx):
    html = render_template(template, store_name=settings.store_name, **ctx)
    return send_email(to=to, subject=subject, html=html, settings=settings)


def send_admin_email(template, subject, settings: Settings, **ctx):
    html = render_template(template, store_name=settings.store_name, **ctx)
    return send_email(to=settings.admin_emails, subject=subject, html=html, settings=settings)
