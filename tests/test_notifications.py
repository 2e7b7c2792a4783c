import logging

from virtfusion.models import HostUser
from virtfusion.notifications import LoggingNotifier, render_credentials_email


def test_credentials_email_contains_login_details():
    message = render_credentials_email("https://panel.example.com", "ada@example.com", "pw-123")

    assert message.subject == "Panel Account Created"
    assert "Email: ada@example.com" in message.content
    assert "Password: pw-123" in message.content
    assert message.button is not None
    assert message.button.name == "VPS Panel"
    assert message.button.url == "https://panel.example.com"


def test_credentials_email_escapes_markup():
    message = render_credentials_email("https://panel.example.com", "ada@example.com", "<b>&</b>")

    assert "<b>" not in message.content
    assert "&lt;b&gt;&amp;&lt;/b&gt;" in message.content


def test_logging_notifier_omits_content(caplog):
    user = HostUser(id=7, first_name="Ada", last_name="Lovelace", email="ada@example.com")
    message = render_credentials_email("https://panel.example.com", user.email, "pw-123")

    with caplog.at_level(logging.INFO, logger="virtfusion.notifications"):
        LoggingNotifier().send(user, message)

    assert "Panel Account Created" in caplog.text
    assert "pw-123" not in caplog.text
