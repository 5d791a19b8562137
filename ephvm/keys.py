"""Project-wide SSH key pair used to log into provisioned guests."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from .errors import ActionFailed
from .util import CmdError, ensure_dir, run_cmd

log = logger


def ensure_keypair(path: Path) -> Path:
    """Create ``path`` and ``path.pub`` with ssh-keygen unless they exist.

    The key is shared by every instance in a project, so an existing private
    key is never regenerated. A missing public half is derived from it.
    """
    pub = Path(str(path) + '.pub')
    if path.is_file():
        if not pub.is_file():
            res = run_cmd(['ssh-keygen', '-y', '-f', str(path)], check=False)
            if res.code != 0:
                raise ActionFailed(
                    f"Unable to derive public key from '{path}': {res.stderr.strip()}"
                )
            pub.write_text(res.stdout.strip() + '\n', encoding='utf-8')
        return path
    ensure_dir(path.parent)
    log.info('Generating SSH key pair {}', path)
    try:
        run_cmd(
            [
                'ssh-keygen',
                '-q',
                '-t',
                'ed25519',
                '-N',
                '',
                '-C',
                'ephvm',
                '-f',
                str(path),
            ],
            # ssh-keygen asks before overwriting; empty stdin answers no.
            input_text='',
        )
    except CmdError as ex:
        raise ActionFailed(f"Unable to create file '{path}'") from ex
    path.chmod(0o600)
    return path


def read_pubkey(path: Path) -> str:
    pub = Path(str(path) + '.pub')
    return pub.read_text(encoding='utf-8').strip()
