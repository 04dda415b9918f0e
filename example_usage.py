#!/usr/bin/env python3
"""
Basic usage examples for the Catenis API client library.

This script logs a message through the Catenis API and then listens for
new message notifications on a WebSocket notification channel.

Set CATENIS_DEVICE_ID and CATENIS_API_ACCESS_SECRET before running it.
"""

import logging
import os
import sys
import time

from catenis_client import (
    CatenisClient,
    CatenisClientError,
    CloseEvent,
    ErrorEvent,
    NotificationEvent,
    NotifyEvent,
    OpenEvent
)


def handle_event(event):
    """Print notification channel events."""
    if isinstance(event, OpenEvent):
        print("   ✓ Notification channel open")
    elif isinstance(event, NotifyEvent):
        print(f"   ✓ Notification: {event.message}")
    elif isinstance(event, CloseEvent):
        print(f"   Notification channel closed: {event.close_info}")
    elif isinstance(event, ErrorEvent):
        print(f"   ✗ Notification channel error: {event.error}")


def main():
    """Run basic usage examples."""

    device_id = os.environ.get('CATENIS_DEVICE_ID')
    api_access_secret = os.environ.get('CATENIS_API_ACCESS_SECRET')

    if not device_id or not api_access_secret:
        print("Please set CATENIS_DEVICE_ID and CATENIS_API_ACCESS_SECRET")
        sys.exit(1)

    print("=== Catenis Python Client Basic Usage Examples ===\n")

    print("1. Creating Catenis client...")
    client = CatenisClient(device_id, api_access_secret, environment='sandbox')
    print(f"   Client created for: {client.base_api_url}")
    print(f"   Device id: {device_id}\n")

    try:
        print("2. Logging message...")
        result = client.log_message("Hello from Python Catenis client!", {'encoding': 'utf8'})
        print(f"   ✓ Message logged: {result['messageId']}\n")

        print("3. Listening for new message notifications (30 seconds)...")
        channel = client.new_ws_notify_channel(NotificationEvent.NEW_MSG_RECEIVED)
        channel.open(handle_event)

        time.sleep(30)

        channel.close()
        channel.join(10)
        print()

        print("=== All Examples Completed Successfully! ===")

    except CatenisClientError as e:
        print(f"Catenis Client Error: {e}")
        sys.exit(1)
    finally:
        client.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
