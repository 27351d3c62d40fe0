"""
Alarm Notifications

AlarmNotifier turns a newly created alarm into at most one Notification,
routed by the machine's notification settings. A NotificationDispatcher
delivers it; submit() never blocks the caller.

ResendEmailDispatcher sends through the Resend REST API with httpx.
Retries are not attempted: a failed send is logged and dropped.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from ..common.config import AlarmKind, Settings, Severity
from ..common.logging_setup import get_service_logger
from ..storage.base import AlarmRecord, MachineRegistry
from .email_templates import format_alarm_email

logger = get_service_logger("notifier")

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class Notification:
    recipients: tuple[str, ...]
    subject: str
    body: str
    priority: str = "high"  # high, critical


class NotificationDispatcher(ABC):
    """Fire-and-forget delivery"""

    @abstractmethod
    def submit(self, notification: Notification) -> None:
        """Queue a notification for delivery and return immediately."""

    async def aclose(self) -> None:
        """Wait for in-flight deliveries."""


class ResendEmailDispatcher(NotificationDispatcher):
    """
    Email delivery via Resend.

    Each submit() schedules a background task on the running loop. Without
    RESEND_API_KEY every notification is skipped with a warning.
    """

    def __init__(
        self,
        settings: Settings,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = settings.resend_api_key
        self.from_email = settings.resend_from_email
        self.timeout = timeout
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()

    def submit(self, notification: Notification) -> None:
        if not self.api_key:
            logger.warning(
                f"RESEND_API_KEY not set - skipping email: {notification.subject}",
                extra={"recipients": list(notification.recipients)},
            )
            return

        task = asyncio.get_running_loop().create_task(self._send(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, notification: Notification) -> None:
        payload = {
            "from": self.from_email,
            "to": list(notification.recipients),
            "subject": notification.subject,
            "html": notification.body,
        }
        if notification.priority == "critical":
            payload["headers"] = {"X-Priority": "1", "Importance": "high"}

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    RESEND_API_URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                    timeout=self.timeout,
                )
                response.raise_for_status()
                email_id = response.json().get("id")
            logger.info(
                f"Email sent: {notification.subject} (id: {email_id})",
                extra={"recipients": list(notification.recipients), "email_id": email_id},
            )
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Resend rejected email: {e.response.status_code}: {e.response.text}",
                extra={"subject": notification.subject},
            )
        except httpx.HTTPError as e:
            logger.error(f"Email send failed: {e}", extra={"subject": notification.subject})

    async def aclose(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


class AlarmNotifier:
    """Routes alarm-created events to the dispatcher"""

    def __init__(self, registry: MachineRegistry, dispatcher: NotificationDispatcher):
        self.registry = registry
        self.dispatcher = dispatcher

    async def alarm_created(self, alarm: AlarmRecord) -> None:
        machine = await self.registry.get(alarm.machine_id)
        if machine is None:
            logger.warning(
                f"Alarm {alarm.id} for unknown machine {alarm.machine_id}, not notifying",
                extra={"alarm_id": alarm.id},
            )
            return

        settings = machine.notifications
        if not settings.recipients:
            return
        if not settings.allows(AlarmKind(alarm.kind)):
            logger.debug(
                f"{AlarmKind(alarm.kind).category} alerts disabled for {machine.id}",
                extra={"alarm_id": alarm.id, "machine_id": machine.id},
            )
            return

        subject, html = format_alarm_email(alarm, machine)
        priority = "critical" if alarm.severity == Severity.CRITICAL.value else "high"
        self.dispatcher.submit(Notification(
            recipients=tuple(settings.recipients),
            subject=subject,
            body=html,
            priority=priority,
        ))
