"""Tests for portlio_api/services/email_service.py and routers/emails.py

Every send attempt must leave exactly one ``email_logs`` row, and the
HTTP endpoint must only accept the client-facing email types.
"""

from __future__ import annotations

import pytest
from portlio_core.errors import ExternalServiceError
from portlio_core.state.repository import EmailLogRepository
from pydantic import SecretStr

from portlio_api.services.email_service import EmailService, EmailTemplates, EmailType


@pytest.fixture()
def email_service(db_session, test_settings) -> EmailService:
    return EmailService(db_session, test_settings)


class TestTemplates:
    def test_welcome_escapes_name(self) -> None:
        template = EmailTemplates("https://app.portlio.test", "support@portlio.test").render(
            "welcome", {"name": "<script>alert(1)</script>"}
        )
        assert "<script>" not in template.html
        assert "&lt;script&gt;" in template.html
        assert "https://app.portlio.test/dashboard" in template.html
        assert template.text is not None

    def test_trial_ending_subject(self) -> None:
        template = EmailTemplates("https://app.portlio.test", "s@p.test").render("trial_ending", {"daysLeft": 2})
        assert template.subject == "Your Portlio trial ends in 2 days"

    def test_portal_shared_links_portal(self) -> None:
        template = EmailTemplates("https://app.portlio.test", "s@p.test").render(
            "portal_shared",
            {"portalTitle": "Acme", "portalUrl": "https://app.portlio.test/p/acme-1", "clientEmail": "c@x.test"},
        )
        assert template.subject == "New client portal: Acme"
        assert "https://app.portlio.test/p/acme-1" in template.html

    def test_upgrade_welcome_lists_unlimited_for_agency(self) -> None:
        templates = EmailTemplates("https://app.portlio.test", "s@p.test")
        assert "Unlimited portals" in templates.render("upgrade_welcome", {"planName": "Agency"}).html
        assert "Unlimited portals" not in templates.render("upgrade_welcome", {"planName": "Professional"}).html

    @pytest.mark.parametrize("days_left", [None, "soon", -1, True])
    def test_trial_ending_rejects_bad_days_left(self, days_left) -> None:
        with pytest.raises(ValueError, match="daysLeft"):
            EmailTemplates("https://app.portlio.test", "s@p.test").render("trial_ending", {"daysLeft": days_left})

    def test_trial_ending_accepts_numeric_string(self) -> None:
        template = EmailTemplates("https://app.portlio.test", "s@p.test").render("trial_ending", {"daysLeft": "5"})
        assert template.subject == "Your Portlio trial ends in 5 days"

    def test_unknown_type(self) -> None:
        with pytest.raises(ValueError, match="Invalid email type"):
            EmailTemplates("https://app.portlio.test", "s@p.test").render("newsletter", {})


class TestSend:
    @pytest.mark.asyncio
    async def test_sent_is_logged(self, email_service, db_session, resend_client) -> None:
        result = await email_service.send(EmailType.WELCOME, "client@example.com", {"name": "Dana"})

        assert result.success is True
        assert result.message_id == "msg_test"
        params = resend_client.Emails.send.call_args.args[0]
        assert params["to"] == ["client@example.com"]
        assert params["from"] == "noreply@portlio.com"

        logs = await EmailLogRepository(db_session).list_for_recipient("client@example.com")
        assert len(logs) == 1
        assert logs[0].status == "sent"
        assert logs[0].provider_id == "msg_test"
        assert logs[0].data == {"name": "Dana"}

    @pytest.mark.asyncio
    async def test_provider_failure_is_logged_and_raised(self, email_service, db_session, resend_client) -> None:
        resend_client.Emails.send.side_effect = RuntimeError("rate limited")

        with pytest.raises(ExternalServiceError):
            await email_service.send("trial_ending", "client@example.com", {"daysLeft": 3})

        logs = await EmailLogRepository(db_session).list_for_recipient("client@example.com")
        assert [(log.status, log.error_message) for log in logs] == [("failed", "rate limited")]

    @pytest.mark.asyncio
    async def test_unconfigured_provider_logs_failure(self, db_session, test_settings, resend_client) -> None:
        test_settings.resend_api_key = SecretStr("")
        service = EmailService(db_session, test_settings)

        assert await service.send_best_effort("welcome", "client@example.com") is False

        resend_client.Emails.send.assert_not_called()
        logs = await EmailLogRepository(db_session).list_for_recipient("client@example.com")
        assert [log.status for log in logs] == ["failed"]

    @pytest.mark.asyncio
    async def test_unknown_type_writes_no_log(self, email_service, db_session) -> None:
        with pytest.raises(ValueError):
            await email_service.send("newsletter", "client@example.com")

        assert await EmailLogRepository(db_session).list_for_recipient("client@example.com") == []


class TestEmailsRouter:
    @pytest.mark.asyncio
    async def test_send_portal_shared(self, client, owner_id, auth_headers) -> None:
        resp = await client.post(
            "/api/v1/emails/send",
            json={
                "type": "portal_shared",
                "to": "client@example.com",
                "data": {"portalTitle": "Acme", "portalUrl": "https://app.portlio.test/p/acme-1"},
            },
            headers=auth_headers,
        )

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "messageId": "msg_test"}

    @pytest.mark.asyncio
    async def test_server_only_type_rejected(self, client, owner_id, auth_headers) -> None:
        resp = await client.post(
            "/api/v1/emails/send",
            json={"type": "upgrade_welcome", "to": "client@example.com"},
            headers=auth_headers,
        )

        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid email type"}

    @pytest.mark.asyncio
    async def test_provider_failure_returns_500_and_keeps_log(
        self, client, owner_id, auth_headers, session_factory, resend_client
    ) -> None:
        resend_client.Emails.send.side_effect = RuntimeError("provider down")

        resp = await client.post(
            "/api/v1/emails/send",
            json={"type": "welcome", "to": "client@example.com"},
            headers=auth_headers,
        )

        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to send email"}
        async with session_factory() as session:
            logs = await EmailLogRepository(session).list_for_recipient("client@example.com")
        assert [log.status for log in logs] == ["failed"]

    @pytest.mark.asyncio
    async def test_malformed_days_left_is_bad_request(self, client, owner_id, auth_headers, resend_client) -> None:
        resp = await client.post(
            "/api/v1/emails/send",
            json={"type": "trial_ending", "to": "client@example.com", "data": {"daysLeft": None}},
            headers=auth_headers,
        )

        assert resp.status_code == 400
        assert "daysLeft" in resp.json()["detail"]
        resend_client.Emails.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_requires_auth(self, client) -> None:
        resp = await client.post("/api/v1/emails/send", json={"type": "welcome", "to": "client@example.com"})
        assert resp.status_code == 401
