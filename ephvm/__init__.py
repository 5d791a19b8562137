"""Ephemeral QEMU virtual machines for test execution, controlled over QMP."""

__version__ = '0.1.0'
