"""Tests for the ssh command channel used to provision guests."""

from __future__ import annotations

from pathlib import Path

import pytest

from ephvm.errors import ActionFailed, EphVMError
from ephvm.ssh import SSHChannel
from ephvm.util import CmdResult


@pytest.fixture
def calls(monkeypatch) -> list[tuple[list[str], dict]]:
    recorded: list[tuple[list[str], dict]] = []

    def fake_run_cmd(cmd, **kwargs):
        recorded.append((list(cmd), kwargs))
        return CmdResult(0, 'out\n', '')

    monkeypatch.setattr('ephvm.ssh.run_cmd', fake_run_cmd)
    return recorded


def test_password_auth_goes_through_sshpass(calls) -> None:
    ch = SSHChannel('127.0.0.1', 2222, 'kitchen', password='secret')
    assert ch.execute('uname -a') == 'out\n'
    (cmd, kwargs), = calls
    assert cmd[:3] == ['sshpass', '-e', 'ssh']
    assert 'BatchMode=yes' not in cmd
    assert cmd[-2:] == ['kitchen@127.0.0.1', 'uname -a']
    assert kwargs['env'] == {'SSHPASS': 'secret'}
    assert 'secret' not in cmd


def test_identity_file_takes_precedence(calls) -> None:
    ch = SSHChannel(
        '127.0.0.1', 2222, 'kitchen', password='secret', identity_file='/k/id'
    )
    ch.execute('true')
    (cmd, kwargs), = calls
    assert cmd[0] == 'ssh'
    assert 'BatchMode=yes' in cmd
    assert cmd[cmd.index('-i') + 1] == '/k/id'
    assert kwargs['env'] is None


def test_execute_failure_raises(monkeypatch) -> None:
    monkeypatch.setattr(
        'ephvm.ssh.run_cmd',
        lambda cmd, **kwargs: CmdResult(3, '', 'permission denied\n'),
    )
    ch = SSHChannel('127.0.0.1', 2222, 'kitchen', identity_file='/k/id')
    with pytest.raises(ActionFailed, match='code=3'):
        ch.execute('cat /root/x')


def test_wait_until_ready_retries(monkeypatch) -> None:
    results = [CmdResult(255, '', 'refused'), CmdResult(0, '', '')]
    monkeypatch.setattr('ephvm.ssh.run_cmd', lambda cmd, **kw: results.pop(0))
    monkeypatch.setattr('ephvm.ssh.time.sleep', lambda s: None)
    ch = SSHChannel('127.0.0.1', 2222, 'kitchen', password='pw')
    ch.wait_until_ready(timeout=30, interval=0)
    assert results == []


def test_wait_until_ready_gives_up(monkeypatch) -> None:
    monkeypatch.setattr(
        'ephvm.ssh.run_cmd', lambda cmd, **kw: CmdResult(255, '', '')
    )
    ch = SSHChannel('127.0.0.1', 2222, 'kitchen', password='pw')
    with pytest.raises(ActionFailed, match='127.0.0.1:2222') as exc:
        ch.wait_until_ready(timeout=0.05, interval=0.01)
    assert isinstance(exc.value, EphVMError)


def test_execute_uses_command_timeout_by_default(calls) -> None:
    ch = SSHChannel(
        '127.0.0.1', 2222, 'kitchen', identity_file='/k/id', command_timeout=45
    )
    ch.execute('true')
    ch.execute('true', timeout=7)
    assert [kw['timeout'] for _, kw in calls] == [45, 7]


def test_execute_reports_timed_out_command(monkeypatch) -> None:
    seen = []

    def fake_run_cmd(cmd, **kwargs):
        seen.append(kwargs['timeout'])
        return CmdResult(124, '', 'Timed out after 2s')

    monkeypatch.setattr('ephvm.ssh.run_cmd', fake_run_cmd)
    ch = SSHChannel(
        '127.0.0.1', 2222, 'kitchen', identity_file='/k/id', command_timeout=2
    )
    with pytest.raises(ActionFailed, match='code=124'):
        ch.execute('sudo mount -t 9p share0 /mnt')
    assert seen == [2]


def test_close_exits_master_only_when_socket_exists(
    calls, tmp_path: Path
) -> None:
    ctl = tmp_path / 'vm.ssh'
    ch = SSHChannel('127.0.0.1', 2222, 'kitchen', control_path=ctl)
    ch.close()
    assert calls == []
    ctl.write_text('', encoding='utf-8')
    ch.close()
    (cmd, _), = calls
    assert cmd == [
        'ssh',
        '-o',
        f'ControlPath={ctl}',
        '-O',
        'exit',
        '-p',
        '2222',
        'kitchen@127.0.0.1',
    ]
