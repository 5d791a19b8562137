"""Per-instance state record persisted between create and destroy."""

from __future__ import annotations

import os
import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from .config import EphVMConfig
from .util import ensure_dir, remove_if_exists


@dataclass
class InstanceState:
    name: str
    monitor_path: str
    console_path: str
    acpi_poweroff: bool = False
    hostname: str = ''
    port: int = 0
    username: str = ''
    password: str = ''
    ssh_key: str = ''


def instance_paths(cfg: EphVMConfig) -> dict[str, Path]:
    state_dir = Path(cfg.paths.state_dir)
    name = cfg.vm.name
    return {
        'state_dir': state_dir,
        'monitor': state_dir / f'{name}.qmp',
        'console': state_dir / f'{name}.mon',
        'state_file': state_dir / f'{name}.state.toml',
        'ssh_control': state_dir / f'{name}.ssh',
        'privkey': state_dir / 'ephvm.key',
    }


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def load_state(path: Path) -> InstanceState | None:
    if not path.exists():
        return None
    raw = tomllib.loads(path.read_text(encoding='utf-8'))
    known = {f.name for f in fields(InstanceState)}
    body = {k: v for k, v in raw.items() if k in known}
    if not body.get('name') or not body.get('monitor_path'):
        return None
    body.setdefault('console_path', '')
    return InstanceState(**body)


def save_state(state: InstanceState, path: Path) -> Path:
    ensure_dir(path.parent)
    lines: list[str] = []
    for key, val in asdict(state).items():
        if isinstance(val, bool):
            lines.append(f'{key} = {"true" if val else "false"}')
        elif isinstance(val, int):
            lines.append(f'{key} = {val}')
        else:
            lines.append(f'{key} = "{_toml_escape(str(val))}"')
    # The record can contain the guest password.
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, 'w', encoding='utf-8') as file:
        file.write('\n'.join(lines) + '\n')
    return path


def remove_state(path: Path) -> bool:
    return remove_if_exists(path)
