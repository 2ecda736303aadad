"""Tests for the webhook configuration script, with the Twilio client mocked."""

from unittest.mock import MagicMock, patch

import pytest

import scripts.setup_twilio as setup_twilio


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(setup_twilio.settings, "twilio_account_sid", "AC123")
    monkeypatch.setattr(setup_twilio.settings, "twilio_auth_token", "secret")
    monkeypatch.setattr(setup_twilio.settings, "twilio_phone_number", None)
    monkeypatch.setattr(setup_twilio.settings, "public_base_url", "https://calls.example.com")


def test_configure_by_number_sid(configured):
    with patch("scripts.setup_twilio.Client") as MockClient:
        setup_twilio.main(["--number-sid", "PN123"])

    client = MockClient.return_value
    MockClient.assert_called_once_with("AC123", "secret")
    client.incoming_phone_numbers.assert_called_once_with("PN123")
    client.incoming_phone_numbers.return_value.update.assert_called_once_with(
        voice_url="https://calls.example.com/api/calls/incoming",
        voice_method="POST",
    )


def test_configure_by_phone_number_lookup(configured):
    with patch("scripts.setup_twilio.Client") as MockClient:
        client = MockClient.return_value
        client.incoming_phone_numbers.list.return_value = [MagicMock(sid="PN456")]
        setup_twilio.main(["--phone-number", "+15559876543", "--webhook", "https://other.example.com/hook"])

    client.incoming_phone_numbers.list.assert_called_once_with(phone_number="+15559876543", limit=1)
    client.incoming_phone_numbers.assert_called_once_with("PN456")
    client.incoming_phone_numbers.return_value.update.assert_called_once_with(
        voice_url="https://other.example.com/hook",
        voice_method="POST",
    )


def test_unknown_phone_number_exits(configured):
    with patch("scripts.setup_twilio.Client") as MockClient:
        MockClient.return_value.incoming_phone_numbers.list.return_value = []
        with pytest.raises(SystemExit):
            setup_twilio.main(["--phone-number", "+15550000000"])


def test_missing_credentials_exit(configured, monkeypatch):
    monkeypatch.setattr(setup_twilio.settings, "twilio_auth_token", None)
    with patch("scripts.setup_twilio.Client") as MockClient:
        with pytest.raises(SystemExit):
            setup_twilio.main(["--number-sid", "PN123"])
    MockClient.assert_not_called()


def test_number_required(configured):
    with pytest.raises(SystemExit):
        setup_twilio.main([])
