"""Point a Twilio number's voice webhook at this service.

Usage:
    python scripts/setup_twilio.py --number-sid PNxxxxxxxx
    python scripts/setup_twilio.py --phone-number +15559876543 --webhook https://<your-host>/api/calls/incoming
"""

import argparse
import sys
from typing import Optional

from twilio.rest import Client

from config.settings import settings
from src.utils.logger import get_logger

logger = get_logger(__name__)


def find_number_sid(client: Client, phone_number: str) -> Optional[str]:
    """Look up the IncomingPhoneNumber SID for an E.164 number."""
    matches = client.incoming_phone_numbers.list(phone_number=phone_number, limit=1)
    return matches[0].sid if matches else None


def configure_number(client: Client, webhook: str, number_sid: str) -> None:
    """Update the Voice webhook on an existing Twilio incoming phone number."""
    client.incoming_phone_numbers(number_sid).update(
        voice_url=webhook,
        voice_method="POST",
    )
    logger.info("Updated webhook for number %s -> %s", number_sid, webhook)


def main(argv: Optional[list] = None) -> None:
    parser = argparse.ArgumentParser(description="Configure the Twilio inbound call webhook.")
    parser.add_argument("--webhook", required=False, help="Public https URL for POST /api/calls/incoming")
    parser.add_argument("--number-sid", required=False, help="Twilio IncomingPhoneNumber SID")
    parser.add_argument("--phone-number", required=False, help="E.164 number to look up instead of a SID")
    args = parser.parse_args(argv)

    webhook = args.webhook or (settings.public_base_url and settings.incoming_webhook_url)
    if not webhook:
        logger.error("Provide --webhook or set PUBLIC_BASE_URL.")
        sys.exit(1)

    phone_number = args.phone_number or settings.twilio_phone_number
    if not args.number_sid and not phone_number:
        logger.error("Provide --number-sid or --phone-number (or set TWILIO_PHONE_NUMBER).")
        sys.exit(1)

    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        logger.error("Twilio credentials are missing. Set TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN.")
        sys.exit(1)

    client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
    number_sid = args.number_sid or find_number_sid(client, phone_number)
    if not number_sid:
        logger.error("No Twilio incoming number matches %s.", phone_number)
        sys.exit(1)

    configure_number(client, webhook, number_sid)


if __name__ == "__main__":
    main()
