"""VM lifecycle implementation: stale-socket detection, spawn, provision, destroy."""

from __future__ import annotations

import enum
import shlex
import socket
import time
from pathlib import Path

from loguru import logger

from ..config import EphVMConfig
from ..errors import (
    ActionFailed,
    AlreadyRunning,
    QMPConnectionClosed,
    QMPProtocolError,
    QMPTimeout,
    Unresponsive,
)
from ..host import resolve_kvm
from ..keys import ensure_keypair, read_pubkey
from ..ports import find_free_port
from ..qmp import Connected, QMPClient, Refused, connect_monitor
from ..runtime import qemu_cmd, short_hostname
from ..ssh import SSHChannel
from ..state import (
    InstanceState,
    instance_paths,
    load_state,
    remove_state,
    save_state,
)
from ..util import ensure_dir, remove_if_exists, run_cmd
from .share import mount_script

log = logger


class InstancePhase(enum.Enum):
    ABSENT = 'absent'
    ORPHANED = 'orphaned'
    RUNNING = 'running'


def _paths(cfg: EphVMConfig) -> dict[str, Path]:
    return instance_paths(cfg.expanded_paths())


def probe_instance(cfg: EphVMConfig) -> InstancePhase:
    """Classify an instance by its monitor socket.

    The socket file alone is not proof of life: a file that refuses
    connections was left behind by a QEMU that already exited.
    """
    monitor = _paths(cfg)['monitor']
    if not monitor.exists():
        return InstancePhase.ABSENT
    res = connect_monitor(monitor)
    if isinstance(res, Refused):
        return InstancePhase.ORPHANED
    res.sock.close()
    return InstancePhase.RUNNING


def cleanup_monitor_sockets(cfg: EphVMConfig) -> None:
    p = _paths(cfg)
    for key in ('monitor', 'console'):
        if remove_if_exists(p[key]):
            log.debug('Removed {}', p[key])


def wait_for_monitor(
    path: Path,
    timeout: float,
    *,
    initial_delay: float = 0.05,
    max_delay: float = 1.0,
) -> None:
    """Poll until the monitor socket at ``path`` accepts a connection."""
    deadline = time.monotonic() + timeout
    delay = initial_delay
    attempt = 0
    while True:
        attempt += 1
        if path.exists():
            res = connect_monitor(path)
            if isinstance(res, Connected):
                res.sock.close()
                log.debug(
                    'Monitor socket ready after {} attempts: {}', attempt, path
                )
                return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ActionFailed(
                f'QEMU monitor socket {path} did not come up within {timeout}s'
            )
        time.sleep(min(delay, remaining))
        delay = min(delay * 2, max_delay)


def _channel(
    cfg: EphVMConfig, state: InstanceState, *, use_key: bool
) -> SSHChannel:
    return SSHChannel(
        state.hostname or cfg.ssh.host,
        state.port,
        state.username or cfg.ssh.username,
        password=state.password,
        identity_file=state.ssh_key if use_key else '',
        control_path=_paths(cfg)['ssh_control'],
        command_timeout=cfg.timeouts.ssh_command,
    )


def provision_guest(cfg: EphVMConfig, channel: SSHChannel, pubkey: str) -> None:
    """One-time guest setup: hostname, authorized key, and host shares.

    Each remote command is bounded by ``timeouts.ssh_command``.
    """
    budget = cfg.timeouts.ssh_command
    fqdn = cfg.vm.hostname or cfg.vm.name
    hostname = short_hostname(fqdn)
    names = fqdn if hostname == fqdn else f'{fqdn} {hostname}'
    channel.execute(
        f"sudo sh -c 'echo 127.0.0.1 {names} >> /etc/hosts; "
        f'hostnamectl set-hostname {hostname} || hostname {hostname} '
        f"|| true' 2>/dev/null",
        timeout=budget,
    )
    channel.execute('install -dm700 "$HOME/.ssh"', timeout=budget)
    channel.execute(
        f'echo {shlex.quote(pubkey)} > "$HOME/.ssh/authorized_keys"',
        timeout=budget,
    )
    for share in cfg.shares:
        log.info('Mounting host share {} at {}', share.path, share.mountpoint)
        channel.execute(mount_script(share), timeout=budget)


def create_vm(cfg: EphVMConfig) -> InstanceState:
    cfg = cfg.finalize()
    name = cfg.vm.name
    p = _paths(cfg)
    ensure_dir(p['state_dir'])
    monitor = p['monitor']
    if monitor.exists():
        res = connect_monitor(monitor)
        if isinstance(res, Refused):
            log.info(
                'Stale monitor socket detected. Assuming old QEMU already quit.'
            )
            cleanup_monitor_sockets(cfg)
        else:
            res.sock.close()
            raise AlreadyRunning(f'QEMU instance {name} already running.')

    privkey = ensure_keypair(p['privkey'])

    port = cfg.ssh.port or find_free_port(
        cfg.ssh.host, cfg.ssh.port_min, cfg.ssh.port_max
    )
    kvm = resolve_kvm(cfg)
    log.info('KVM {}.', 'enabled' if kvm else 'disabled')
    cmd = qemu_cmd(cfg, p, port=port, kvm=kvm)

    log.info('Spawning QEMU for {}..', name)
    res = run_cmd(
        cmd,
        check=False,
        env={'QEMU_AUDIO_DRV': 'none'},
        timeout=cfg.timeouts.spawn,
    )
    if res.code != 0:
        cleanup_monitor_sockets(cfg)
        raise ActionFailed(
            res.stderr.strip() or f'QEMU exited with code {res.code}'
        )
    wait_for_monitor(monitor, cfg.timeouts.monitor_ready)

    state = InstanceState(
        name=name,
        monitor_path=str(monitor),
        console_path=str(p['console']),
        acpi_poweroff=cfg.needs_acpi_poweroff(),
        hostname=cfg.ssh.host,
        port=port,
        username=cfg.ssh.username,
        password=cfg.ssh.password,
    )
    save_state(state, p['state_file'])

    log.info('Waiting for SSH..')
    channel = _channel(cfg, state, use_key=False)
    try:
        channel.wait_until_ready(timeout=cfg.ssh.ready_timeout)
        provision_guest(cfg, channel, read_pubkey(privkey))
    finally:
        channel.close()
    state.ssh_key = str(privkey)
    save_state(state, p['state_file'])
    log.info(
        'VM created: {} (ssh {}@{} -p {})',
        name,
        state.username,
        state.hostname,
        port,
    )
    return state


def _shutdown(
    cfg: EphVMConfig, sock: socket.socket, *, acpi_poweroff: bool
) -> None:
    mon = None
    try:
        mon = QMPClient(sock, timeout=cfg.timeouts.qmp)
        if acpi_poweroff:
            log.info('Sending ACPI poweroff..')
            mon.execute('system_powerdown', cfg.timeouts.powerdown_command)
            mon.wait_for_eof(cfg.timeouts.powerdown)
        else:
            log.info('Quitting QEMU..')
            mon.execute('quit')
            mon.wait_for_eof(cfg.timeouts.quit)
    except QMPConnectionClosed:
        log.info('QEMU closed the monitor connection.')
    except QMPTimeout as ex:
        raise Unresponsive(f'QEMU instance {cfg.vm.name} is unresponsive') from ex
    except QMPProtocolError as ex:
        raise Unresponsive(
            f'QEMU instance {cfg.vm.name} sent an unreadable monitor reply: {ex}'
        ) from ex
    finally:
        if mon is None:
            sock.close()
        else:
            mon.close()


def destroy_vm(cfg: EphVMConfig, state: InstanceState | None = None) -> bool:
    """Shut down the instance and remove its artifacts.

    Returns False when there was nothing to destroy. A refused monitor
    connection still removes the artifacts, while an unresponsive QEMU
    leaves them in place because the process may still be alive.
    """
    cfg = cfg.expanded_paths()
    p = _paths(cfg)
    monitor = p['monitor']
    if not monitor.exists():
        log.debug('No monitor socket at {}; nothing to destroy.', monitor)
        return False

    if state is None:
        state = load_state(p['state_file'])
    if state is not None:
        _channel(cfg, state, use_key=bool(state.ssh_key)).close()
        acpi_poweroff = state.acpi_poweroff
    else:
        acpi_poweroff = cfg.needs_acpi_poweroff()

    res = connect_monitor(monitor)
    if isinstance(res, Refused):
        log.info('Connection to monitor refused. Assuming QEMU already quit.')
    else:
        _shutdown(cfg, res.sock, acpi_poweroff=acpi_poweroff)

    cleanup_monitor_sockets(cfg)
    remove_state(p['state_file'])
    log.info('VM removed: {}', cfg.vm.name)
    return True


def vm_status(cfg: EphVMConfig) -> str:
    p = _paths(cfg)
    phase = probe_instance(cfg)
    lines = [
        f'name={cfg.vm.name}',
        f'phase={phase.value}',
        f'monitor={p["monitor"]}',
    ]
    state = load_state(p['state_file'])
    if state is not None:
        acpi = 'true' if state.acpi_poweroff else 'false'
        lines.append(f'acpi_poweroff={acpi}')
        if state.port:
            lines.append(f'ssh={state.username}@{state.hostname}:{state.port}')
        if state.ssh_key:
            lines.append(f'ssh_key={state.ssh_key}')
    return '\n'.join(lines) + '\n'
