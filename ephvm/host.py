"""Host dependency checks and KVM availability detection."""

from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

from .config import EphVMConfig
from .util import which

log = logger

OPTIONAL_CMDS = ['sshpass']


def required_commands(cfg: EphVMConfig) -> list[str]:
    return [cfg.vm.binary or 'qemu-system-x86_64', 'ssh', 'ssh-keygen']


def check_commands(cfg: EphVMConfig) -> tuple[list[str], list[str]]:
    missing = [c for c in required_commands(cfg) if which(c) is None]
    missing_opt = [c for c in OPTIONAL_CMDS if which(c) is None]
    return missing, missing_opt


def kvm_available(dev: Path = Path('/dev/kvm')) -> bool:
    if not dev.exists():
        log.info(
            "KVM device {} doesn't exist. Maybe the module is not loaded.", dev
        )
        return False
    if not os.access(dev, os.R_OK | os.W_OK):
        log.info(
            'KVM device {} not read/writeable. Maybe add your user to the kvm group.',
            dev,
        )
        return False
    return True


def resolve_kvm(cfg: EphVMConfig) -> bool:
    mode = str(cfg.vm.kvm).strip().lower()
    if mode in {'true', 'yes', '1'}:
        return True
    if mode in {'false', 'no', '0'}:
        return False
    return kvm_available()
