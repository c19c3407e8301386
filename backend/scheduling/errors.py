"""Errors raised by the scheduling core."""


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class ConflictError(SchedulingError):
    """The requested slot cannot be booked.

    Carries every conflict message so callers can show all of them at once.
    """

    def __init__(self, messages: list[str], prefix: str = 'Conflicts detected'):
        self.messages = list(messages)
        self.prefix = prefix
        super().__init__(f"{prefix}: {', '.join(self.messages)}")


class AppointmentNotFoundError(SchedulingError):
    def __init__(self, appointment_id: str):
        self.appointment_id = appointment_id
        super().__init__('Appointment not found.')


class InvalidTransitionError(SchedulingError):
    """The appointment's current status does not allow the requested change."""
