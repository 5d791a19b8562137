"""Runtime helpers for constructing QEMU and SSH command arguments."""

from __future__ import annotations

from pathlib import Path

from .config import EphVMConfig

GUEST_NET = '192.168.1.0/24'


def qemu_escape(value: str) -> str:
    """Escape a value embedded in a comma separated QEMU option string."""
    return str(value).replace(',', ',,')


def short_hostname(fqdn: str) -> str:
    return fqdn.split('.', 1)[0]


def drive_args(cfg: EphVMConfig) -> list[str]:
    args = ['-device', 'virtio-scsi-pci,id=scsi']
    for idx, disk in enumerate(cfg.disks):
        opts = [
            'if=none',
            f'id=disk{idx}',
            f'format={disk.format}',
            f'file={qemu_escape(disk.file)}',
        ]
        if disk.readonly:
            opts.append('readonly=on')
        if disk.snapshot:
            opts.append('snapshot=on')
        args += ['-drive', ','.join(opts)]
        args += ['-device', f'scsi-hd,drive=disk{idx}']
    return args


def qemu_cmd(
    cfg: EphVMConfig,
    paths: dict[str, Path],
    *,
    port: int,
    kvm: bool,
) -> list[str]:
    """Build the argv that spawns a daemonized QEMU for ``cfg``."""
    # Import lazily to avoid circular import: vm.lifecycle imports runtime.
    from .vm.share import virtfs_args

    hostname = short_hostname(cfg.vm.hostname or cfg.vm.name)
    monitor = qemu_escape(str(paths['monitor']))
    console = qemu_escape(str(paths['console']))
    nic = ','.join(
        [
            'user',
            f'model={cfg.vm.nic_model}',
            f'net={GUEST_NET}',
            f'hostname={hostname}',
            f'hostfwd=tcp:{cfg.ssh.host}:{port}-:22',
        ]
    )
    cmd = [
        cfg.vm.binary,
        '-daemonize',
        '-display',
        str(cfg.display.display),
        '-chardev',
        f'socket,id=mon-qmp,path={monitor},server=on,wait=off',
        '-mon',
        'chardev=mon-qmp,mode=control',
        '-chardev',
        f'socket,id=mon-rdl,path={console},server=on,wait=off',
        '-mon',
        'chardev=mon-rdl,mode=readline',
        '-m',
        str(cfg.vm.memory),
        '-smp',
        str(cfg.vm.cpus),
        '-nic',
        nic,
        *drive_args(cfg),
    ]
    if kvm:
        cmd += ['-enable-kvm', '-cpu', 'host']
    if cfg.display.vga:
        cmd += ['-vga', str(cfg.display.vga)]
    if cfg.display.spice:
        cmd += ['-spice', str(cfg.display.spice)]
    if cfg.display.vnc:
        cmd += ['-vnc', str(cfg.display.vnc)]
    for share in cfg.shares:
        cmd += virtfs_args(share)
    return cmd


def ssh_base_args(
    ident: str = '',
    *,
    port: int | None = None,
    strict_host_key_checking: str = 'no',
    connect_timeout: int | None = None,
    batch_mode: bool = False,
    user_known_hosts_file: str | None = '/dev/null',
    control_path: str | None = None,
) -> list[str]:
    args: list[str] = []
    if batch_mode:
        args.extend(['-o', 'BatchMode=yes'])
    if connect_timeout is not None:
        args.extend(['-o', f'ConnectTimeout={connect_timeout}'])
    args.extend(['-o', f'StrictHostKeyChecking={strict_host_key_checking}'])
    if user_known_hosts_file:
        args.extend(['-o', f'UserKnownHostsFile={user_known_hosts_file}'])
    args.extend(['-o', 'LogLevel=ERROR'])
    if control_path:
        args.extend(
            [
                '-o',
                'ControlMaster=auto',
                '-o',
                f'ControlPath={control_path}',
                '-o',
                'ControlPersist=60',
            ]
        )
    if port is not None:
        args.extend(['-p', str(port)])
    if ident:
        args.extend(['-o', 'IdentitiesOnly=yes', '-i', ident])
    return args


def with_sshpass(cmd: list[str]) -> list[str]:
    """Prefix ``cmd`` so sshpass feeds the password from ``$SSHPASS``."""
    return ['sshpass', '-e', *cmd]
