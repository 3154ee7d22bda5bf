"""
Local error taxonomy.

Remote failures are not exceptions: they come back as RemoteResult values
(see backend_client). Only local conditions that end the current operation
are raised.
"""


class DeviceError(Exception):
    """Base class for device-side failures."""


class StorageUnavailable(DeviceError):
    """Persistent medium could not be read or written."""

    def __init__(self, path: str, reason: str = ''):
        self.path = path
        self.reason = reason
        message = f'Storage unavailable: {path}'
        if reason:
            message = f'{message} ({reason})'
        super().__init__(message)


class CapacityExhausted(DeviceError):
    """Identity or slot space is full."""
