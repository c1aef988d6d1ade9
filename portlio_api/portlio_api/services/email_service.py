"""Transactional email dispatch through Resend.

Every send attempt, successful or not, leaves one ``email_logs`` row.
Template data uses the same camelCase keys the web app posts to
``POST /emails/send`` (``name``, ``daysLeft``, ``planName``, ``amount``,
``portalTitle``, ``portalUrl``, ``clientEmail``).
"""

from __future__ import annotations

import asyncio
import html
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from portlio_core.errors import ExternalServiceError
from portlio_core.state.repository import EmailLogRepository
from sqlalchemy.ext.asyncio import AsyncSession

from portlio_api.config import APISettings
from portlio_api.middleware.prometheus import EMAILS_SENT_TOTAL

logger = logging.getLogger(__name__)


class EmailType(str, Enum):
    WELCOME = "welcome"
    TRIAL_ENDING = "trial_ending"
    PAYMENT_SUCCESS = "payment_success"
    PORTAL_SHARED = "portal_shared"
    UPGRADE_WELCOME = "upgrade_welcome"


# Types accepted by POST /emails/send; the rest are sent by the server only.
PUBLIC_EMAIL_TYPES: frozenset[EmailType] = frozenset(
    {EmailType.WELCOME, EmailType.TRIAL_ENDING, EmailType.PAYMENT_SUCCESS, EmailType.PORTAL_SHARED}
)


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    html: str
    text: str | None = None


@dataclass(frozen=True)
class EmailResult:
    success: bool
    message_id: str | None = None


def _layout(heading: str, body: str, footer: str = "") -> str:
    return (
        "<!DOCTYPE html><html><body style=\"font-family: Inter, system-ui, sans-serif; "
        'line-height: 1.6; color: #334155; background-color: #f8fafc; padding: 20px;">'
        '<div style="max-width: 600px; margin: 0 auto; background: white; border-radius: 12px;">'
        '<div style="background: #4f46e5; padding: 30px; text-align: center;">'
        f'<h1 style="color: white; margin: 0;">{heading}</h1></div>'
        f'<div style="padding: 30px;">{body}</div>'
        f"{footer}</div></body></html>"
    )


def _days_left(value: Any) -> int:
    """Coerce ``daysLeft`` to a non-negative whole number of days."""
    if isinstance(value, bool):
        raise ValueError("daysLeft must be a whole number of days")
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValueError("daysLeft must be a whole number of days") from None
    if days < 0:
        raise ValueError("daysLeft must not be negative")
    return days


def _button(href: str, label: str) -> str:
    return (
        f'<p style="text-align: center;"><a href="{html.escape(href, quote=True)}" '
        'style="display: inline-block; background: #4f46e5; color: white; padding: 12px 24px; '
        f'text-decoration: none; border-radius: 8px; font-weight: 600;">{label}</a></p>'
    )


class EmailTemplates:
    """Render the transactional email templates."""

    def __init__(self, app_url: str, support_email: str) -> None:
        self._app_url = app_url.rstrip("/")
        self._support = support_email

    def welcome(self, name: str) -> EmailTemplate:
        safe_name = html.escape(name)
        body = (
            f"<h2>Hi {safe_name}!</h2>"
            "<p>Thanks for signing up for Portlio! Your <strong>14-day free trial</strong> has started, "
            "giving you full access to all premium features.</p>"
            "<ul><li>Create professional client portals</li>"
            "<li>Customize with your branding and colors</li>"
            "<li>Collect payments and files from clients</li>"
            "<li>Track analytics and client engagement</li></ul>"
            + _button(f"{self._app_url}/dashboard", "Create Your First Portal")
            + f'<p>Need help? Email us at <a href="mailto:{self._support}">{self._support}</a>.</p>'
            "<p>Best regards,<br>The Portlio Team</p>"
        )
        text = (
            f"Welcome to Portlio, {name}!\n\n"
            "Your 14-day free trial has started.\n\n"
            f"Get started: {self._app_url}/dashboard\n\n"
            f"Need help? Email us at {self._support}\n"
        )
        return EmailTemplate(
            subject="Welcome to Portlio! Your 14-day trial has started 🎉",
            html=_layout("Welcome to Portlio!", body),
            text=text,
        )

    def trial_ending(self, name: str, days_left: int) -> EmailTemplate:
        body = (
            f"<h2>Hi {html.escape(name)},</h2>"
            f"<p>Your Portlio trial ends in <strong>{days_left} days</strong>.</p>"
            "<p>You'll be moved to the free plan (2 portals, basic features). "
            "Upgrade now to keep all your portals active with premium features.</p>"
            + _button(f"{self._app_url}/pricing", "Upgrade Now")
            + f"<p>Questions? Contact us at {self._support}</p>"
        )
        return EmailTemplate(
            subject=f"Your Portlio trial ends in {days_left} days",
            html=_layout(f"{days_left} days left in your trial", body),
        )

    def payment_success(self, name: str, plan_name: str, amount: Any) -> EmailTemplate:
        body = (
            f"<h2>Hi {html.escape(name)},</h2>"
            f"<p>Thank you for upgrading to <strong>Portlio {html.escape(plan_name)}</strong>! "
            f"Your payment of <strong>${html.escape(str(amount))}</strong> has been processed successfully.</p>"
            + _button(f"{self._app_url}/dashboard", "Access Your Dashboard")
            + f"<p>Need help? Contact us at {self._support}</p>"
        )
        return EmailTemplate(
            subject="Payment confirmed - Welcome to Portlio Pro! 🎉",
            html=_layout("Payment Confirmed!", body),
        )

    def portal_shared(self, portal_title: str, portal_url: str, client_email: str) -> EmailTemplate:
        body = (
            f"<p>Your project portal \"<strong>{html.escape(portal_title)}</strong>\" is now ready. "
            "This secure portal contains everything you need for our project together.</p>"
            + _button(portal_url, "Access Your Portal")
            + "<p>Bookmark this link for easy access throughout our project.</p>"
        )
        footer = (
            '<p style="text-align: center; color: #64748b; font-size: 12px;">'
            f"Sent to {html.escape(client_email)}</p>"
        )
        return EmailTemplate(
            subject=f"New client portal: {portal_title}",
            html=_layout("Your Project Portal is Ready!", body, footer),
        )

    def upgrade_welcome(self, plan_name: str, include_unlimited: bool) -> EmailTemplate:
        perks = ["Custom branding", "Advanced analytics", "Priority support"]
        if include_unlimited:
            perks.append("Unlimited portals")
        body = (
            f"<p>Thank you for upgrading to {html.escape(plan_name)}.</p>"
            "<p>You now have access to:</p><ul>"
            + "".join(f"<li>{perk}</li>" for perk in perks)
            + "</ul>"
            + _button(f"{self._app_url}/dashboard", "Get Started")
        )
        return EmailTemplate(
            subject=f"Welcome to Portlio {plan_name}!",
            html=_layout("Welcome to Portlio!", body),
        )

    def render(self, email_type: EmailType | str, data: dict[str, Any]) -> EmailTemplate:
        """Resolve and render the template for *email_type*.

        Raises
        ------
        ValueError
            If *email_type* is not a known template, or a
            template value such as ``daysLeft`` is malformed.
        """
        try:
            kind = EmailType(email_type)
        except ValueError:
            raise ValueError(f"Invalid email type '{email_type}'") from None

        name = str(data.get("name") or "there")
        if kind is EmailType.WELCOME:
            return self.welcome(name)
        if kind is EmailType.TRIAL_ENDING:
            return self.trial_ending(name, _days_left(data.get("daysLeft", 3)))
        if kind is EmailType.PAYMENT_SUCCESS:
            return self.payment_success(name, str(data.get("planName", "Professional")), data.get("amount", 0))
        if kind is EmailType.UPGRADE_WELCOME:
            plan_name = str(data.get("planName", "Professional"))
            return self.upgrade_welcome(plan_name, include_unlimited=plan_name == "Agency")
        return self.portal_shared(
            str(data.get("portalTitle", "")),
            str(data.get("portalUrl", self._app_url)),
            str(data.get("clientEmail", "")),
        )


class EmailService:
    """Send templated email and record the outcome.

    Parameters
    ----------
    session:
        Session used for the ``email_logs`` rows.
    settings:
        Provides the Resend API key, sender address and app URL.
    """

    def __init__(self, session: AsyncSession, settings: APISettings) -> None:
        self._session = session
        self._settings = settings
        self._templates = EmailTemplates(settings.app_url, settings.support_email)
        self._logs = EmailLogRepository(session)

    def _get_resend(self) -> Any:
        """Lazily import and configure the Resend client."""
        import resend

        resend.api_key = self._settings.resend_api_key.get_secret_value()
        return resend

    async def _deliver(self, to: str, template: EmailTemplate) -> str | None:
        if not self._settings.resend_api_key.get_secret_value():
            raise RuntimeError("Email provider is not configured")
        resend = self._get_resend()
        params: dict[str, Any] = {
            "from": self._settings.email_from,
            "to": [to],
            "subject": template.subject,
            "html": template.html,
        }
        if template.text:
            params["text"] = template.text
        response = await asyncio.wait_for(
            asyncio.to_thread(resend.Emails.send, params),
            timeout=self._settings.email_timeout,
        )
        if isinstance(response, dict):
            return response.get("id")
        return getattr(response, "id", None)

    async def send(self, email_type: EmailType | str, to: str, data: dict[str, Any] | None = None) -> EmailResult:
        """Render and send one email.

        Raises
        ------
        ValueError
            For an unknown email type or invalid template data (nothing is
            logged).
        ExternalServiceError
            If the provider call fails.  A ``failed`` log row is written
            before raising.
        """
        payload = dict(data or {})
        template = self._templates.render(email_type, payload)
        kind = EmailType(email_type).value

        start = time.monotonic()
        try:
            message_id = await self._deliver(to, template)
        except Exception as exc:
            duration_ms = round((time.monotonic() - start) * 1000, 2)
            logger.warning("Email '%s' to %s failed: %s", kind, to, exc)
            await self._logs.record(
                email_type=kind,
                recipient=to,
                subject=template.subject,
                status="failed",
                data=payload,
                error_message=str(exc) or exc.__class__.__name__,
                duration_ms=duration_ms,
            )
            EMAILS_SENT_TOTAL.labels(email_type=kind, status="failed").inc()
            raise ExternalServiceError("email", "Failed to send email") from exc

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        await self._logs.record(
            email_type=kind,
            recipient=to,
            subject=template.subject,
            status="sent",
            data=payload,
            provider_id=message_id,
            duration_ms=duration_ms,
        )
        EMAILS_SENT_TOTAL.labels(email_type=kind, status="sent").inc()
        logger.info("Email '%s' sent to %s (id=%s)", kind, to, message_id)
        return EmailResult(success=True, message_id=message_id)

    async def send_best_effort(self, email_type: EmailType | str, to: str, data: dict[str, Any] | None = None) -> bool:
        """Send an email as a side effect; failures are logged, never raised."""
        try:
            await self.send(email_type, to, data)
        except ExternalServiceError:
            return False
        return True
