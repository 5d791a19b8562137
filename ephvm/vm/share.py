"""Host folder sharing over virtio-9p: QEMU arguments and guest mounts."""

from __future__ import annotations

import shlex

from ..config import ShareConfig


def virtfs_args(share: ShareConfig) -> list[str]:
    path = str(share.path).replace(',', ',,')
    opts = [
        'local',
        f'path={path}',
        f'mount_tag={share.tag}',
        'security_model=none',
    ]
    if share.readonly:
        opts.append('readonly=on')
    return ['-virtfs', ','.join(opts)]


def mount_script(share: ShareConfig) -> str:
    """Shell snippet that mounts ``share`` in the guest if not mounted yet."""
    dst = shlex.quote(share.mountpoint)
    tag = shlex.quote(share.tag)
    opts = 'trans=virtio,version=9p2000.L'
    if share.readonly:
        opts += ',ro'
    return (
        f'sudo mkdir -p {dst} && '
        f'(mountpoint -q {dst} || sudo mount -t 9p -o {opts} {tag} {dst})'
    )
