"""Dataclass configuration, TOML load/save, and defaulting rules."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

from .errors import ConfigError
from .util import expand

ARCH_BINARY: dict[str, str] = {
    'i386': 'qemu-system-i386',
    'x86': 'qemu-system-i386',
    '32bit': 'qemu-system-i386',
    'amd64': 'qemu-system-x86_64',
    'x86_64': 'qemu-system-x86_64',
    '64bit': 'qemu-system-x86_64',
    'aarch64': 'qemu-system-aarch64',
    'arm64': 'qemu-system-aarch64',
}

AUTO = 'auto'


@dataclass
class VMConfig:
    name: str = 'default'
    arch: str = 'x86_64'
    binary: str = ''
    memory: int = 512
    cpus: int = 1
    nic_model: str = 'virtio'
    hostname: str = ''
    kvm: str = AUTO
    acpi_poweroff: str = AUTO


@dataclass
class DisplayConfig:
    display: str = 'none'
    vga: str = ''
    spice: str = ''
    vnc: str = ''


@dataclass
class DiskConfig:
    file: str = ''
    format: str = 'qcow2'
    snapshot: bool = True
    readonly: bool = False

    @property
    def persistent(self) -> bool:
        return not self.snapshot and not self.readonly


@dataclass
class ShareConfig:
    path: str = ''
    mountpoint: str = ''
    tag: str = ''
    readonly: bool = False


@dataclass
class SSHConfig:
    username: str = 'kitchen'
    password: str = 'kitchen'
    host: str = '127.0.0.1'
    port: int = 0
    port_min: int = 1025
    port_max: int = 65535
    ready_timeout: int = 300


@dataclass
class TimeoutsConfig:
    qmp: float = 2
    quit: float = 5
    powerdown_command: float = 5
    powerdown: float = 120
    monitor_ready: float = 10
    spawn: float = 60
    ssh_command: float = 300


@dataclass
class PathsConfig:
    state_dir: str = '.ephvm'


@dataclass
class EphVMConfig:
    vm: VMConfig = field(default_factory=VMConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    disks: list[DiskConfig] = field(default_factory=list)
    shares: list[ShareConfig] = field(default_factory=list)
    verbosity: int = 1

    def expanded_paths(self) -> 'EphVMConfig':
        self.paths.state_dir = expand(self.paths.state_dir)
        for disk in self.disks:
            disk.file = expand(disk.file) if disk.file else ''
        for share in self.shares:
            share.path = expand(share.path) if share.path else ''
        return self

    def needs_acpi_poweroff(self) -> bool:
        """Whether destroy must power down gracefully to protect disk state."""
        mode = str(self.vm.acpi_poweroff).strip().lower()
        if mode in {'true', 'yes', '1'}:
            return True
        if mode in {'false', 'no', '0'}:
            return False
        return any(d.persistent for d in self.disks)

    def finalize(self) -> 'EphVMConfig':
        """Validate required values and fill in derived defaults."""
        self.expanded_paths()
        if not self.vm.binary:
            binary = ARCH_BINARY.get(self.vm.arch)
            if binary is None:
                raise ConfigError(f"Unknown architecture '{self.vm.arch}'")
            self.vm.binary = binary
        if self.display.spice and not self.display.vga:
            self.display.vga = 'qxl'
        if not self.vm.hostname:
            self.vm.hostname = self.vm.name
        if not self.disks:
            raise ConfigError(
                'Must specify at least one disk image ([[disks]] file=...)'
            )
        for idx, disk in enumerate(self.disks):
            if not disk.file:
                raise ConfigError(f'disks[{idx}] is missing a file')
        for idx, share in enumerate(self.shares):
            if not share.path or not share.mountpoint:
                raise ConfigError(f'shares[{idx}] needs both path and mountpoint')
            if not share.tag:
                share.tag = f'share{idx}'
        if self.ssh.port_min > self.ssh.port_max:
            raise ConfigError(
                f'ssh.port_min ({self.ssh.port_min}) is greater than '
                f'ssh.port_max ({self.ssh.port_max})'
            )
        return self


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def _emit_kv(lines: list[str], key: str, val: object) -> None:
    if isinstance(val, bool):
        lines.append(f'{key} = {"true" if val else "false"}')
    elif isinstance(val, (int, float)):
        lines.append(f'{key} = {val}')
    else:
        lines.append(f'{key} = "{_toml_escape(str(val))}"')


def dump_toml(cfg: EphVMConfig) -> str:
    d = asdict(cfg)
    lines: list[str] = []
    # Top-level keys must precede the first table header.
    if cfg.verbosity != 1:
        lines.append(f'verbosity = {cfg.verbosity}')
        lines.append('')
    for section, body in d.items():
        if isinstance(body, dict):
            lines.append(f'[{section}]')
            for k, v in body.items():
                _emit_kv(lines, k, v)
            lines.append('')
        elif isinstance(body, list):
            for item in body:
                lines.append(f'[[{section}]]')
                for k, v in item.items():
                    _emit_kv(lines, k, v)
                lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def _apply(obj: object, body: dict) -> None:
    for k, v in body.items():
        if hasattr(obj, k):
            setattr(obj, k, v)


def from_dict(raw: dict) -> EphVMConfig:
    cfg = EphVMConfig()
    for section in ('vm', 'display', 'ssh', 'timeouts', 'paths'):
        body = raw.get(section, None)
        if isinstance(body, dict):
            _apply(getattr(cfg, section), body)
    for item in raw.get('disks', []):
        if isinstance(item, dict):
            disk = DiskConfig()
            _apply(disk, item)
            cfg.disks.append(disk)
    for item in raw.get('shares', []):
        if isinstance(item, dict):
            share = ShareConfig()
            _apply(share, item)
            cfg.shares.append(share)
    for key in ('kvm', 'acpi_poweroff'):
        # TOML booleans are accepted in place of the auto/true/false strings.
        val = getattr(cfg.vm, key)
        if isinstance(val, bool):
            setattr(cfg.vm, key, 'true' if val else 'false')
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def load(path: Path) -> EphVMConfig:
    raw = tomllib.loads(path.read_text(encoding='utf-8'))
    return from_dict(raw)


def save(path: Path, cfg: EphVMConfig) -> None:
    path.write_text(dump_toml(cfg), encoding='utf-8')
