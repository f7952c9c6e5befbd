#!/usr/bin/env python3
"""
Provider configuration check, for running from a deployment shell.

Sends a canned email or SMS straight through the provider, bypassing the
queue, and prints the provider response.

Usage (from the project root):
    python scripts/send_test_message.py email someone@example.com
    python scripts/send_test_message.py sms +441234567890
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Allow running from any directory
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from notifier.core.logging import get_logger, setup_logging  # noqa: E402
from notifier.domain.services.providers.base_provider import ProviderResponse  # noqa: E402
from notifier.domain.services.providers.email_provider import EmailProvider  # noqa: E402
from notifier.domain.services.providers.sms_provider import SMSProvider  # noqa: E402


logger = get_logger(__name__)


async def _send(channel: str, to: str) -> ProviderResponse:
    if channel == "email":
        return await EmailProvider().test_email_configuration(to)
    return await SMSProvider().test_sms_configuration(to)


def main() -> int:
    parser = argparse.ArgumentParser(description="Send a provider configuration test message")
    parser.add_argument("channel", choices=["email", "sms"], help="Provider to test")
    parser.add_argument("to", help="Email address or E.164 phone number")
    args = parser.parse_args()

    setup_logging(level="INFO", json_format=False, app_name="notifier-provider-test")

    logger.info("Sending configuration test", extra_data={"channel": args.channel})
    response = asyncio.run(_send(args.channel, args.to))

    if response.success:
        print(f"OK   {response.provider} accepted the message (id: {response.message_id})")
        return 0

    print(f"FAIL {response.provider}: {response.error}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
