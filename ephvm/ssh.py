"""Remote command channel to the guest over the system ``ssh`` binary."""

from __future__ import annotations

import time
from pathlib import Path

from loguru import logger

from .errors import ActionFailed
from .runtime import ssh_base_args, with_sshpass
from .util import run_cmd

log = logger


class SSHChannel:
    """Runs shell snippets on a guest reachable through a forwarded port.

    When ``control_path`` is given, commands share one multiplexed master
    connection which :meth:`close` shuts down. Password authentication goes
    through ``sshpass``; an ``identity_file`` takes precedence over it.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        *,
        password: str = '',
        identity_file: str = '',
        control_path: str | Path | None = None,
        connect_timeout: int = 5,
        command_timeout: float | None = 300,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.identity_file = identity_file
        self.control_path = str(control_path) if control_path else None
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    @property
    def target(self) -> str:
        return f'{self.username}@{self.host}'

    def _ssh_cmd(self, remote: list[str]) -> tuple[list[str], dict[str, str] | None]:
        use_password = bool(self.password) and not self.identity_file
        cmd = [
            'ssh',
            *ssh_base_args(
                self.identity_file,
                port=self.port,
                connect_timeout=self.connect_timeout,
                batch_mode=not use_password,
                control_path=self.control_path,
            ),
            self.target,
            *remote,
        ]
        if use_password:
            return with_sshpass(cmd), {'SSHPASS': self.password}
        return cmd, None

    def wait_until_ready(self, timeout: float = 300, interval: float = 2) -> None:
        cmd, env = self._ssh_cmd(['true'])
        deadline = time.monotonic() + timeout
        attempt = 0
        while time.monotonic() < deadline:
            attempt += 1
            res = run_cmd(
                cmd,
                check=False,
                env=env,
                timeout=self.connect_timeout + 10,
            )
            if res.code == 0:
                log.info('SSH is ready on {}:{}', self.host, self.port)
                return
            log.debug(
                'SSH not ready on {}:{} (attempt={} code={})',
                self.host,
                self.port,
                attempt,
                res.code,
            )
            time.sleep(interval)
        raise ActionFailed(
            f'Timed out waiting for SSH on {self.host}:{self.port} '
            f'after {timeout}s'
        )

    def execute(self, script: str, *, timeout: float | None = None) -> str:
        """Run ``script`` on the guest and return its stdout.

        ``timeout`` defaults to ``command_timeout``. A command that outlives
        it is killed and reported like any other failure (code 124).
        """
        if timeout is None:
            timeout = self.command_timeout
        cmd, env = self._ssh_cmd([script])
        res = run_cmd(cmd, check=False, env=env, timeout=timeout)
        if res.code != 0:
            raise ActionFailed(
                f'Remote command failed (code={res.code}) on {self.target}: '
                f'{script}\n{res.stderr.strip()}'.strip()
            )
        return res.stdout

    def close(self) -> None:
        if not self.control_path or not Path(self.control_path).exists():
            return
        cmd = [
            'ssh',
            '-o',
            f'ControlPath={self.control_path}',
            '-O',
            'exit',
            '-p',
            str(self.port),
            self.target,
        ]
        run_cmd(cmd, check=False, timeout=self.connect_timeout + 10)
