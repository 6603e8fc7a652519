"""
Unit tests for notification backends (backrotate/backup/notifications.py).
"""

from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest

from backrotate.backup.notifications import EmailNotifier
from backrotate.backup.errors import NotificationError


@pytest.fixture
def email_notifier():
    return EmailNotifier(
        smtp_host='smtp.example.com',
        smtp_port=587,
        sender='backups@example.com',
        username='relay',
        password='relay-pass',
        start_tls=True,
    )


class TestEmailNotifier:

    def test_build_message(self, email_notifier):
        msg = email_notifier.build_message(['a@example.com', 'b@example.com'], 'Subject', 'Body text')

        assert msg['From'] == 'backups@example.com'
        assert msg['To'] == 'a@example.com, b@example.com'
        assert msg['Subject'] == 'Subject'
        assert 'Body text' in msg.as_string()

    @patch('backrotate.backup.notifications.aiosmtplib.send', new_callable=AsyncMock)
    def test_send(self, mock_send, email_notifier):
        email_notifier.send(['a@example.com'], 'Backup ok', 'Published')

        mock_send.assert_awaited_once()
        kwargs = mock_send.call_args[1]
        assert kwargs['hostname'] == 'smtp.example.com'
        assert kwargs['port'] == 587
        assert kwargs['username'] == 'relay'
        assert kwargs['start_tls'] is True

    @patch('backrotate.backup.notifications.aiosmtplib.send', new_callable=AsyncMock)
    def test_no_recipients_sends_nothing(self, mock_send, email_notifier):
        email_notifier.send([], 'Backup ok', 'Published')

        mock_send.assert_not_awaited()

    @patch('backrotate.backup.notifications.aiosmtplib.send', new_callable=AsyncMock)
    def test_smtp_error_raises_notification_error(self, mock_send, email_notifier):
        mock_send.side_effect = aiosmtplib.SMTPException("relay refused")

        with pytest.raises(NotificationError, match="relay refused"):
            email_notifier.send(['a@example.com'], 'Backup failed', 'Details')

    @patch('backrotate.backup.notifications.aiosmtplib.send', new_callable=AsyncMock)
    def test_connection_error_raises_notification_error(self, mock_send, email_notifier):
        mock_send.side_effect = ConnectionRefusedError("no relay")

        with pytest.raises(NotificationError):
            email_notifier.send(['a@example.com'], 'Backup failed', 'Details')
