"""Top-level modal CLI wiring and logging setup."""

from __future__ import annotations

import os
import sys

import scriptconfig as scfg
from loguru import logger

from ..errors import ActionFailed
from ..host import check_commands
from ..vm import create_vm, destroy_vm, vm_status
from ._common import _BaseCommand, _load_cfg, _load_cfg_with_path, log
from .config import ConfigModalCLI


class CreateCLI(_BaseCommand):
    """Spawn and provision the VM described by the config."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, _ = _load_cfg_with_path(args.config)
        cfg.finalize()
        missing, missing_opt = check_commands(cfg)
        if missing:
            raise ActionFailed(
                f'Missing required commands: {", ".join(missing)}'
            )
        if missing_opt and cfg.ssh.password:
            log.warning(
                'Optional commands not found: {}. Password login to the guest '
                'needs sshpass.',
                ', '.join(missing_opt),
            )
        create_vm(cfg)
        print(vm_status(cfg), end='')
        return 0


class DestroyCLI(_BaseCommand):
    """Shut the VM down and remove its monitor sockets."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        if not destroy_vm(cfg):
            print(f'VM {cfg.vm.name} is not running.')
        return 0


class StatusCLI(_BaseCommand):
    """Report whether the VM is absent, orphaned, or running."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg = _load_cfg(args.config)
        print(vm_status(cfg), end='')
        return 0


class EphVMModalCLI(scfg.ModalCLI):
    """Ephemeral QEMU VMs for test execution."""

    config = ConfigModalCLI
    create = CreateCLI
    destroy = DestroyCLI
    status = StatusCLI


def main(argv: list[str] | None = None) -> None:
    verbosity = 1
    if argv is None:
        argv = sys.argv[1:]
    config_value = _option_value(argv, '--config')
    try:
        verbosity = _load_cfg(config_value).verbosity
    except Exception:
        verbosity = 1

    _setup_logging(_count_verbose(argv), verbosity)

    try:
        rc = EphVMModalCLI.main(argv=argv, _noexit=True)
    except Exception as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        log.error('Unhandled ephvm error: {}', ex)
        sys.exit(2)

    if any(flag in argv for flag in ('-h', '--help')):
        sys.exit(0)
    if isinstance(rc, int):
        sys.exit(rc)
    sys.exit(0)


def _setup_logging(args_verbose: int, cfg_verbosity: int) -> None:
    logger.remove()
    effective_verbosity = args_verbose if args_verbose > 0 else cfg_verbosity
    level = 'WARNING'
    if effective_verbosity == 1:
        level = 'INFO'
    elif effective_verbosity >= 2:
        level = 'DEBUG'
    colorize = sys.stderr.isatty() and os.getenv('NO_COLOR') is None
    logger.add(
        sys.stderr,
        level=level,
        colorize=colorize,
        format='<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>',
    )
    log.debug(
        'Logging configured at {} (effective_verbosity={}, colorize={})',
        level,
        effective_verbosity,
        colorize,
    )


def _option_value(argv: list[str], *names: str) -> str | None:
    for name in names:
        if name in argv:
            try:
                return argv[argv.index(name) + 1]
            except IndexError:
                return None
    return None


def _count_verbose(argv: list[str]) -> int:
    count = 0
    for item in argv:
        if item == '--verbose':
            count += 1
        elif item.startswith('-') and not item.startswith('--'):
            short = item[1:]
            if short and set(short) <= {'v'}:
                count += len(short)
    return count
