"""Project-specific exception types."""

from __future__ import annotations


class EphVMError(RuntimeError):
    """Base error for domain-level ephvm failures."""


class QMPTimeout(EphVMError):
    """Raised when the QMP peer does not answer within the timeout budget."""


class QMPConnectionClosed(EphVMError):
    """Raised when the QMP peer closes the stream while a reply is awaited."""


class QMPProtocolError(EphVMError):
    """Raised when the QMP peer sends a line that is not UTF-8 JSON."""


class ActionFailed(EphVMError):
    """Raised when a lifecycle action could not be completed."""


class ConfigError(ActionFailed):
    """Raised when required configuration is missing or invalid."""


class AlreadyRunning(ActionFailed):
    """Raised when create is invoked against a live instance."""


class Unresponsive(ActionFailed):
    """Raised when destroy cannot confirm that QEMU has exited."""
