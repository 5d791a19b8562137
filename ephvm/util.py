"""Shared utility helpers for subprocess execution, paths, and command formatting."""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

log = logger


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str


class CmdError(RuntimeError):
    def __init__(self, cmd: Sequence[str] | str, result: CmdResult):
        self.cmd = cmd
        self.result = result
        super().__init__(
            f'Command failed (code={result.code}): {cmd}\n{result.stderr}'.strip()
        )


def shell_join(cmd: Sequence[str]) -> str:
    return ' '.join(shlex.quote(c) for c in cmd)


def run_cmd(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
    text: bool = True,
    input_text: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> CmdResult:
    """Run ``cmd`` and wait for it to exit.

    ``env`` holds overrides that are merged over the current environment.
    A ``timeout`` that expires is reported as exit code 124, the same code
    coreutils ``timeout`` uses.
    """
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)
    log.opt(depth=1).debug('RUN: {}', shell_join(cmd))
    try:
        p = subprocess.run(
            list(cmd),
            input=input_text if input_text is not None else None,
            capture_output=capture,
            text=text,
            env=full_env,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as ex:
        res = CmdResult(
            124,
            _as_text(ex.stdout),
            (_as_text(ex.stderr) + f'\nTimed out after {timeout}s').strip(),
        )
        if check:
            log.opt(depth=1).error(
                'Command timed out after {}s cmd={}', timeout, shell_join(cmd)
            )
            raise CmdError(cmd, res) from ex
        return res
    res = CmdResult(p.returncode, p.stdout or '', p.stderr or '')
    if check and p.returncode != 0:
        log.opt(depth=1).error(
            'Command failed code={} cmd={} stderr={} stdout={}',
            p.returncode,
            shell_join(cmd),
            res.stderr.strip(),
            res.stdout.strip(),
        )
        raise CmdError(cmd, res)
    if p.returncode == 0:
        log.opt(depth=1).debug('Command ok code=0 cmd={}', shell_join(cmd))
    return res


def _as_text(data: bytes | str | None) -> str:
    if data is None:
        return ''
    if isinstance(data, bytes):
        return data.decode('utf-8', errors='replace')
    return data


def which(cmd: str) -> Optional[str]:
    from shutil import which as _which

    return _which(cmd)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))


def remove_if_exists(path: Path) -> bool:
    """Unlink ``path``; a missing file is not an error."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
