"""Free TCP port discovery for the guest SSH forward."""

from __future__ import annotations

import random
import socket

from loguru import logger

from .errors import ActionFailed

log = logger


def port_is_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_free_port(
    host: str = '127.0.0.1',
    port_min: int = 1025,
    port_max: int = 65535,
    *,
    attempts: int = 100,
    rng: random.Random | None = None,
) -> int:
    """Return a port in ``[port_min, port_max]`` that could be bound on ``host``.

    Candidates are drawn at random so concurrent instances rarely race for
    the same port. Another process can still grab it before QEMU binds it.
    """
    if port_min > port_max:
        raise ValueError(f'Empty port range {port_min}-{port_max}')
    rng = rng or random.Random()
    span = port_max - port_min + 1
    if span <= attempts:
        candidates = list(range(port_min, port_max + 1))
        rng.shuffle(candidates)
    else:
        candidates = [rng.randint(port_min, port_max) for _ in range(attempts)]
    for port in candidates:
        if port_is_free(host, port):
            log.debug('Using free port {}:{}', host, port)
            return port
        log.debug('Port {}:{} is in use, retrying', host, port)
    raise ActionFailed(
        f'Could not find a free port on {host} in range {port_min}-{port_max}'
    )
