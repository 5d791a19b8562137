"""Options and config resolution shared by all CLI commands."""

from __future__ import annotations

from pathlib import Path

import scriptconfig as scfg
from loguru import logger

from ..config import EphVMConfig, load

log = logger

DEFAULT_CONFIG_NAME = '.ephvm.toml'


class _BaseCommand(scfg.DataConfig):
    """Base options shared by all commands."""

    config = scfg.Value(
        None, help=f'Path to config TOML (default: {DEFAULT_CONFIG_NAME}).'
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )


def _cfg_path(p: str | None) -> Path:
    return Path(p or DEFAULT_CONFIG_NAME).resolve()


def _load_cfg_with_path(config_path: str | None) -> tuple[EphVMConfig, Path]:
    path = _cfg_path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f'Config not found: {path}. Run: ephvm config init --config {path}'
        )
    cfg = load(path).expanded_paths()
    log.debug('Loaded config {} (vm={})', path, cfg.vm.name)
    return cfg, path


def _load_cfg(config_path: str | None) -> EphVMConfig:
    cfg, _ = _load_cfg_with_path(config_path)
    return cfg
