"""
Unit tests for subscription notification emails.
"""

from datetime import datetime

import pytest

from stockflow.services import email_service


@pytest.fixture
def outbox(monkeypatch):
    """Capture what would be handed to Flask-Mail."""
    sent = []

    def capture(to_email, subject, html, text, event):
        sent.append({'to': to_email, 'subject': subject, 'html': html, 'text': text, 'event': event})
        return True

    monkeypatch.setattr(email_service, '_send', capture)
    return sent


class TestEmailBodies:
    def test_suspension_reason_is_escaped(self, outbox):
        email_service.send_subscription_suspended_email(
            'owner@test.com', 'Ana', 'Tienda <b>Sol</b>', 'Pyme', reason='<script>alert(1)</script>'
        )

        html = outbox[0]['html']
        assert '<script>' not in html
        assert '&lt;script&gt;alert(1)&lt;/script&gt;' in html
        assert '&lt;b&gt;Sol&lt;/b&gt;' in html
        assert 'Motivo: <script>alert(1)</script>' in outbox[0]['text']

    def test_activation_keeps_emphasis_and_escapes_values(self, outbox):
        email_service.send_subscription_activated_email(
            'owner@test.com', 'Ana & Luis', 'Café "El Patio"', 'Pyme', 'Mensual', datetime(2026, 11, 15)
        )

        html = outbox[0]['html']
        assert '<strong>Pyme</strong>' in html
        assert 'Ana &amp; Luis' in html
        assert 'Café &#34;El Patio&#34;' in html
        assert '15/11/2026' in outbox[0]['text']

    def test_disabled_mail_reports_success(self, app):
        assert app.config['MAIL_SUPPRESS_SEND'] is True
        assert email_service.send_subscription_expired_email('owner@test.com', 'Ana', 'Tienda', 'Pyme') is True
