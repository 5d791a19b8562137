"""Tests for config loading, saving, and finalize defaults."""

from __future__ import annotations

from pathlib import Path

import pytest

from ephvm.config import (
    DiskConfig,
    EphVMConfig,
    ShareConfig,
    dump_toml,
    load,
    save,
)
from ephvm.errors import ConfigError


def _cfg_with_disk(**disk_kw) -> EphVMConfig:
    cfg = EphVMConfig()
    cfg.disks.append(DiskConfig(file='/images/base.qcow2', **disk_kw))
    return cfg


def test_dump_load_roundtrip(tmp_path: Path) -> None:
    cfg = EphVMConfig()
    cfg.vm.name = 'my "vm"'
    cfg.vm.memory = 2048
    cfg.paths.state_dir = '~/code/${USER}/state'
    cfg.disks = [
        DiskConfig(file='/images/a.qcow2'),
        DiskConfig(file='/images/b.raw', format='raw', snapshot=False),
    ]
    cfg.shares = [ShareConfig(path='/src', mountpoint='/mnt/src', readonly=True)]
    cfg.timeouts.powerdown = 30.5
    cfg.verbosity = 3
    fpath = tmp_path / '.ephvm.toml'
    save(fpath, cfg)

    cfg2 = load(fpath)
    assert cfg2.vm.name == cfg.vm.name
    assert cfg2.vm.memory == 2048
    assert cfg2.paths.state_dir == cfg.paths.state_dir
    assert cfg2.disks == cfg.disks
    assert cfg2.shares == cfg.shares
    assert cfg2.timeouts.powerdown == 30.5
    assert cfg2.verbosity == 3


def test_dump_toml_verbosity_default_omitted() -> None:
    text = dump_toml(EphVMConfig())
    assert 'verbosity =' not in text
    assert '[[disks]]' not in text


def test_dump_toml_verbosity_precedes_tables(tmp_path: Path) -> None:
    cfg = EphVMConfig()
    cfg.verbosity = 2
    cfg.shares = [ShareConfig(path='/src', mountpoint='/mnt/src')]
    text = dump_toml(cfg)
    assert text.startswith('verbosity = 2\n')
    fpath = tmp_path / '.ephvm.toml'
    save(fpath, cfg)
    cfg2 = load(fpath)
    assert cfg2.verbosity == 2
    assert cfg2.shares == cfg.shares


def test_load_accepts_toml_booleans(tmp_path: Path) -> None:
    fpath = tmp_path / '.ephvm.toml'
    fpath.write_text(
        '[vm]\nkvm = false\nacpi_poweroff = true\n'
        '[[disks]]\nfile = "/images/x.qcow2"\n',
        encoding='utf-8',
    )
    cfg = load(fpath)
    assert cfg.vm.kvm == 'false'
    assert cfg.vm.acpi_poweroff == 'true'
    assert cfg.disks[0].snapshot is True


def test_expanded_paths_expands_env(monkeypatch) -> None:
    monkeypatch.setenv('EPHVM_TEST_DIR', '/tmp/ephvm-x')
    cfg = EphVMConfig()
    cfg.paths.state_dir = '$EPHVM_TEST_DIR/state'
    cfg.disks.append(DiskConfig(file='$EPHVM_TEST_DIR/disk.qcow2'))
    out = cfg.expanded_paths()
    assert out.paths.state_dir == '/tmp/ephvm-x/state'
    assert out.disks[0].file == '/tmp/ephvm-x/disk.qcow2'


@pytest.mark.parametrize(
    'arch, binary',
    [
        ('i386', 'qemu-system-i386'),
        ('32bit', 'qemu-system-i386'),
        ('amd64', 'qemu-system-x86_64'),
        ('64bit', 'qemu-system-x86_64'),
        ('arm64', 'qemu-system-aarch64'),
    ],
)
def test_finalize_resolves_binary_from_arch(arch: str, binary: str) -> None:
    cfg = _cfg_with_disk()
    cfg.vm.arch = arch
    assert cfg.finalize().vm.binary == binary


def test_finalize_keeps_explicit_binary() -> None:
    cfg = _cfg_with_disk()
    cfg.vm.arch = 'sparc'
    cfg.vm.binary = '/opt/qemu/bin/qemu-system-sparc'
    assert cfg.finalize().vm.binary == '/opt/qemu/bin/qemu-system-sparc'


def test_finalize_rejects_unknown_arch() -> None:
    cfg = _cfg_with_disk()
    cfg.vm.arch = 'sparc'
    with pytest.raises(ConfigError, match="Unknown architecture 'sparc'"):
        cfg.finalize()


def test_finalize_requires_a_disk() -> None:
    with pytest.raises(ConfigError, match='at least one disk'):
        EphVMConfig().finalize()
    cfg = EphVMConfig()
    cfg.disks.append(DiskConfig())
    with pytest.raises(ConfigError, match='missing a file'):
        cfg.finalize()


def test_finalize_defaults() -> None:
    cfg = _cfg_with_disk()
    cfg.vm.name = 'web'
    cfg.display.spice = 'port=5930,disable-ticketing=on'
    cfg.shares = [
        ShareConfig(path='/a', mountpoint='/mnt/a'),
        ShareConfig(path='/b', mountpoint='/mnt/b', tag='code'),
    ]
    cfg.finalize()
    assert cfg.vm.hostname == 'web'
    assert cfg.display.vga == 'qxl'
    assert [s.tag for s in cfg.shares] == ['share0', 'code']


def test_finalize_rejects_incomplete_share_and_port_range() -> None:
    cfg = _cfg_with_disk()
    cfg.shares = [ShareConfig(path='/a')]
    with pytest.raises(ConfigError, match='path and mountpoint'):
        cfg.finalize()
    cfg = _cfg_with_disk()
    cfg.ssh.port_min = 3000
    cfg.ssh.port_max = 2000
    with pytest.raises(ConfigError, match='port_min'):
        cfg.finalize()


def test_acpi_poweroff_auto_follows_disk_persistence() -> None:
    cfg = EphVMConfig()
    cfg.disks = [DiskConfig(file='a'), DiskConfig(file='b')]
    assert cfg.needs_acpi_poweroff() is False
    cfg.disks.append(DiskConfig(file='c', snapshot=False, readonly=True))
    assert cfg.needs_acpi_poweroff() is False
    cfg.disks.append(DiskConfig(file='d', snapshot=False))
    assert cfg.needs_acpi_poweroff() is True


def test_acpi_poweroff_explicit_setting_wins() -> None:
    cfg = _cfg_with_disk(snapshot=False)
    cfg.vm.acpi_poweroff = 'false'
    assert cfg.needs_acpi_poweroff() is False
    cfg = _cfg_with_disk()
    cfg.vm.acpi_poweroff = 'true'
    assert cfg.needs_acpi_poweroff() is True
