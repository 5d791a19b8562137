"""VM operation exports for lifecycle and share helpers."""

from __future__ import annotations

from .lifecycle import (
    InstancePhase,
    cleanup_monitor_sockets,
    create_vm,
    destroy_vm,
    probe_instance,
    provision_guest,
    vm_status,
    wait_for_monitor,
)
from .share import mount_script, virtfs_args

__all__ = [
    'InstancePhase',
    'cleanup_monitor_sockets',
    'create_vm',
    'destroy_vm',
    'mount_script',
    'probe_instance',
    'provision_guest',
    'virtfs_args',
    'vm_status',
    'wait_for_monitor',
]
