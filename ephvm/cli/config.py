"""CLI commands that create and display the project config file."""

from __future__ import annotations

import sys

import scriptconfig as scfg

from ..config import DiskConfig, EphVMConfig, dump_toml, save
from ._common import _BaseCommand, _cfg_path, _load_cfg_with_path


class InitCLI(_BaseCommand):
    """Write a starter config with one snapshot disk."""

    name = scfg.Value('default', help='VM instance name.')
    image = scfg.Value('', help='Disk image file for the first disk.')
    force = scfg.Value(
        False, isflag=True, help='Overwrite an existing config file.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        if path.exists() and not args.force:
            print(f'Config already exists: {path}', file=sys.stderr)
            print('Use --force to overwrite it.', file=sys.stderr)
            return 2
        cfg = EphVMConfig()
        cfg.vm.name = str(args.name)
        cfg.disks.append(DiskConfig(file=str(args.image or '')))
        save(path, cfg)
        print(f'Wrote config: {path}')
        return 0


class ConfigShowCLI(_BaseCommand):
    """Show the resolved config, with derived defaults filled in."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        cfg, path = _load_cfg_with_path(args.config)
        cfg.finalize()
        print(f'# Config: {path}')
        print(f'# acpi_poweroff resolves to: {cfg.needs_acpi_poweroff()}')
        print(dump_toml(cfg), end='')
        return 0


class ConfigModalCLI(scfg.ModalCLI):
    """Config file management commands."""

    init = InitCLI
    show = ConfigShowCLI
