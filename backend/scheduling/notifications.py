"""Fire-and-forget appointment notifications.

Mutations hand a detached snapshot of the appointment to a
``BackgroundNotifier``, which delivers it through a ``NotificationSink`` on a
worker thread. Delivery failures are logged and never reach the caller.
"""

import concurrent.futures
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol

from backend.core import config

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    REMINDER = 'reminder'
    CANCELLATION = 'cancellation'
    RESCHEDULE = 'reschedule'


@dataclass(frozen=True)
class AppointmentNotification:
    appointment_id: str
    patient_id: str
    therapist_id: str
    patient_name: Optional[str]
    therapist_name: Optional[str]
    scheduled_at: datetime
    duration: int
    status: str
    price: Decimal

    @classmethod
    def from_appointment(cls, appointment) -> 'AppointmentNotification':
        patient_user = appointment.patient.user if appointment.patient else None
        therapist_user = appointment.therapist.user if appointment.therapist else None
        return cls(
            appointment_id=appointment.id,
            patient_id=appointment.patient_id,
            therapist_id=appointment.therapist_id,
            patient_name=patient_user.name if patient_user else None,
            therapist_name=therapist_user.name if therapist_user else None,
            scheduled_at=appointment.scheduled_at,
            duration=appointment.duration,
            status=appointment.status,
            price=Decimal(appointment.price or 0),
        )


class NotificationSink(Protocol):
    def send(self, kind: NotificationKind, notification: AppointmentNotification) -> None:
        ...


class LoggingNotificationSink:
    """Stand-in for the WhatsApp gateway: writes the outgoing message to the log."""

    def send(self, kind: NotificationKind, notification: AppointmentNotification) -> None:
        logger.info('WhatsApp %s -> %s', kind.value, self.render(kind, notification))

    @staticmethod
    def render(kind: NotificationKind, notification: AppointmentNotification) -> str:
        patient = notification.patient_name or 'Patient'
        if kind is NotificationKind.REMINDER:
            return f"Reminder sent to {patient} - appointment at {notification.scheduled_at:%H:%M}"
        if kind is NotificationKind.CANCELLATION:
            return f"Cancellation sent to {patient}"
        return f"Reschedule sent to {patient} - new date: {notification.scheduled_at:%d/%m/%Y %H:%M}"


class BackgroundNotifier:
    """Dispatches notifications on an executor without waiting for them."""

    def __init__(
        self,
        sink: NotificationSink,
        executor: Optional[concurrent.futures.Executor] = None,
        enabled: bool = True,
    ):
        self.sink = sink
        self.enabled = enabled
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=config.NOTIFICATION_WORKERS,
            thread_name_prefix='notifications',
        )

    def dispatch(self, kind: NotificationKind, appointment) -> Optional[concurrent.futures.Future]:
        if not self.enabled:
            return None

        try:
            notification = AppointmentNotification.from_appointment(appointment)
            future = self._executor.submit(self.sink.send, kind, notification)
        except Exception:
            logger.exception('Could not dispatch %s notification for appointment %s', kind.value, appointment.id)
            return None

        future.add_done_callback(lambda done: self._log_failure(kind, notification, done))
        return future

    @staticmethod
    def _log_failure(
        kind: NotificationKind,
        notification: AppointmentNotification,
        future: concurrent.futures.Future,
    ) -> None:
        if future.cancelled():
            logger.warning('%s notification for appointment %s was cancelled', kind.value, notification.appointment_id)
            return

        error = future.exception()
        if error is not None:
            logger.error(
                'Failed to send %s notification for appointment %s: %s',
                kind.value,
                notification.appointment_id,
                error,
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


_notifier: Optional[BackgroundNotifier] = None


def get_notifier() -> BackgroundNotifier:
    global _notifier

    if _notifier is None:
        _notifier = BackgroundNotifier(LoggingNotificationSink(), enabled=config.NOTIFICATIONS_ENABLED)
    return _notifier


def shutdown_notifier() -> None:
    global _notifier

    if _notifier is not None:
        _notifier.shutdown(wait=True)
        _notifier = None
