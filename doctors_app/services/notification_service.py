"""
Notification Dispatcher
Best-effort push and SMS delivery for appointment and credentialing events.

Engines queue notifications on a ``NotificationDispatcher`` only after their
database transaction has committed. Delivery failures are logged and never
reach the caller.
"""

import asyncio
import logging
from typing import Any, Optional

import firebase_admin
from fastapi import BackgroundTasks
from firebase_admin import credentials, messaging

from .. import config
from .sms_service import send_sms

logger = logging.getLogger(__name__)


def get_firebase_app() -> Optional[firebase_admin.App]:
    """Firebase Admin app, initialized once from the service account; None when push is not configured"""
    if not config.FIREBASE_SERVICE_ACCOUNT_PATH:
        return None

    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    try:
        cred = credentials.Certificate(config.FIREBASE_SERVICE_ACCOUNT_PATH)
        options = {"projectId": config.FIREBASE_PROJECT_ID} if config.FIREBASE_PROJECT_ID else None
        app = firebase_admin.initialize_app(cred, options)
        logger.info("✅ Firebase Admin SDK initialized")
        return app
    except Exception as e:
        logger.error(f"❌ Error initializing Firebase Admin SDK: {e}")
        return None


async def send_push_notification(
    tokens: Optional[list[str]],
    title: str,
    body: str,
    data: Optional[dict] = None,
) -> dict:
    """
    Send a push notification to a user's devices.

    Args:
        tokens: FCM registration tokens
        title: Notification title
        body: Notification body
        data: Optional data payload (values are sent as strings)

    Returns:
        Dict with success/failure/skipped counts and failed tokens. Never raises.
    """
    result = {"success": 0, "failure": 0, "skipped": 0, "failed_tokens": []}

    if not tokens:
        logger.info("No FCM tokens provided. Skipping notification.")
        return result

    app = get_firebase_app()
    if app is None:
        logger.info(f"🔔 [DEV MODE] Push not sent to {len(tokens)} device(s): {title} - {body}")
        result["skipped"] = len(tokens)
        return result

    message = messaging.MulticastMessage(
        tokens=list(tokens),
        notification=messaging.Notification(title=title, body=body),
        data={key: str(value) for key, value in (data or {}).items()},
        android=messaging.AndroidConfig(priority="high"),
        apns=messaging.APNSConfig(headers={"apns-priority": "10"}),
    )

    try:
        # The Admin SDK is blocking
        response = await asyncio.to_thread(messaging.send_each_for_multicast, message, app=app)

        result["success"] = response.success_count
        result["failure"] = response.failure_count
        result["failed_tokens"] = [
            token for token, item in zip(tokens, response.responses) if not item.success
        ]

        logger.info(f"✅ Push sent: {result['success']} delivered, {result['failure']} failed")
        if result["failed_tokens"]:
            logger.info(f"List of failed tokens: {result['failed_tokens']}")

    except Exception as e:
        logger.error(f"❌ Error sending push notification: {e}")
        result["failure"] = len(tokens)
        result["failed_tokens"] = list(tokens)

    return result


async def _deliver(kind: str, func, kwargs: dict) -> Any:
    try:
        return await func(**kwargs)
    except Exception as e:
        logger.error(f"❌ Failed to deliver {kind} notification: {e}")
        return None


class NotificationDispatcher:
    """
    Collects notifications for one unit of work.

    Bound to FastAPI ``BackgroundTasks`` inside a request, notifications are
    sent after the response. Without background tasks (worker jobs, tests)
    they are held in ``pending`` until ``flush()`` is awaited.
    """

    def __init__(self, background_tasks: Optional[BackgroundTasks] = None):
        self.background_tasks = background_tasks
        self.pending: list[tuple[str, Any, dict]] = []

    def push(self, tokens: Optional[list[str]], title: str, body: str, data: Optional[dict] = None):
        if not tokens:
            logger.debug(f"ℹ️ No push tokens for '{title}', skipped")
            return
        self._schedule(
            "push",
            send_push_notification,
            {"tokens": list(tokens), "title": title, "body": body, "data": data},
        )

    def sms(self, phone: Optional[str], message: str):
        if not phone:
            logger.debug("ℹ️ No phone number for SMS, skipped")
            return
        self._schedule("sms", send_sms, {"to_phone": phone, "message_body": message})

    def _schedule(self, kind: str, func, kwargs: dict):
        if self.background_tasks is not None:
            self.background_tasks.add_task(_deliver, kind, func, kwargs)
        else:
            self.pending.append((kind, func, kwargs))

    async def flush(self) -> list:
        """Deliver held notifications; failures are logged, not raised"""
        queued, self.pending = self.pending, []
        results = []
        for kind, func, kwargs in queued:
            results.append(await _deliver(kind, func, kwargs))
        return results
