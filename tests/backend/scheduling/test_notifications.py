import concurrent.futures
import logging
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

from backend.scheduling import notifications
from backend.scheduling.notifications import (
    AppointmentNotification,
    BackgroundNotifier,
    LoggingNotificationSink,
    NotificationKind,
)


def make_appointment(**overrides):
    values = {
        'id': 'appt-1',
        'patient_id': 'patient-1',
        'therapist_id': 'therapist-1',
        'patient': SimpleNamespace(user=SimpleNamespace(name='Carla Patient')),
        'therapist': SimpleNamespace(user=SimpleNamespace(name='Ana Therapist')),
        'scheduled_at': datetime(2026, 1, 6, 9, 0),
        'duration': 60,
        'status': 'SCHEDULED',
        'price': Decimal('120.00'),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_snapshot_copies_names_and_slot():
    notification = AppointmentNotification.from_appointment(make_appointment())

    assert notification.patient_name == 'Carla Patient'
    assert notification.therapist_name == 'Ana Therapist'
    assert notification.scheduled_at == datetime(2026, 1, 6, 9, 0)
    assert notification.price == Decimal('120.00')


def test_snapshot_without_loaded_relations():
    notification = AppointmentNotification.from_appointment(make_appointment(patient=None, therapist=None, price=None))

    assert notification.patient_name is None
    assert notification.therapist_name is None
    assert notification.price == Decimal('0')


def test_render_messages():
    notification = AppointmentNotification.from_appointment(make_appointment())

    assert LoggingNotificationSink.render(NotificationKind.REMINDER, notification) == (
        'Reminder sent to Carla Patient - appointment at 09:00'
    )
    assert LoggingNotificationSink.render(NotificationKind.CANCELLATION, notification) == (
        'Cancellation sent to Carla Patient'
    )
    assert LoggingNotificationSink.render(NotificationKind.RESCHEDULE, notification) == (
        'Reschedule sent to Carla Patient - new date: 06/01/2026 09:00'
    )


def test_logging_sink_writes_to_log(caplog):
    notification = AppointmentNotification.from_appointment(make_appointment())

    with caplog.at_level(logging.INFO, logger='backend.scheduling.notifications'):
        LoggingNotificationSink().send(NotificationKind.CANCELLATION, notification)

    assert 'WhatsApp cancellation -> Cancellation sent to Carla Patient' in caplog.text


def test_dispatch_runs_on_worker_thread(sink):
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    notifier = BackgroundNotifier(sink, executor=executor)

    future = notifier.dispatch(NotificationKind.REMINDER, make_appointment())
    future.result(timeout=5)
    notifier.shutdown()

    assert [(kind, sent.appointment_id) for kind, sent in sink.sent] == [(NotificationKind.REMINDER, 'appt-1')]


def test_failed_delivery_is_logged(failing_sink, make_notifier, caplog):
    notifier = make_notifier(failing_sink)

    with caplog.at_level(logging.ERROR, logger='backend.scheduling.notifications'):
        future = notifier.dispatch(NotificationKind.RESCHEDULE, make_appointment())

    assert isinstance(future.exception(), RuntimeError)
    assert 'Failed to send reschedule notification for appointment appt-1: gateway down' in caplog.text


def test_disabled_notifier_sends_nothing(sink, make_notifier):
    notifier = make_notifier(sink)
    notifier.enabled = False

    assert notifier.dispatch(NotificationKind.REMINDER, make_appointment()) is None
    assert sink.sent == []


def test_dispatch_after_shutdown_is_logged(sink, caplog):
    notifier = BackgroundNotifier(sink, executor=concurrent.futures.ThreadPoolExecutor(max_workers=1))
    notifier.shutdown()

    with caplog.at_level(logging.ERROR, logger='backend.scheduling.notifications'):
        assert notifier.dispatch(NotificationKind.REMINDER, make_appointment()) is None

    assert 'Could not dispatch reminder notification for appointment appt-1' in caplog.text


def test_shared_notifier_is_reused_until_shutdown(monkeypatch):
    monkeypatch.setattr(notifications, '_notifier', None)

    first = notifications.get_notifier()
    assert notifications.get_notifier() is first

    notifications.shutdown_notifier()
    assert notifications._notifier is None
