"""Minimal QMP (QEMU Machine Protocol) client over a UNIX stream socket.

Only what the lifecycle code needs is implemented: the capabilities
handshake, one synchronous command at a time, and detection of the peer
closing the connection. QMP messages are JSON objects terminated by a
newline. An introduction to the protocol is available at:

    https://wiki.qemu.org/Documentation/QMP
"""

from __future__ import annotations

import json
import select
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

from .errors import QMPConnectionClosed, QMPProtocolError, QMPTimeout

log = logger

READ_CHUNK = 4096


class LineBuffer:
    """Accumulates raw chunks and hands out complete ``\\n``-terminated lines."""

    def __init__(self) -> None:
        self._data = bytearray()
        # Offset up to which the data is known not to contain a newline.
        self._scanned = 0

    def __len__(self) -> int:
        return len(self._data)

    def feed(self, chunk: bytes) -> None:
        self._data.extend(chunk)

    def pop_line(self) -> bytes | None:
        idx = self._data.find(b'\n', self._scanned)
        if idx < 0:
            self._scanned = len(self._data)
            return None
        line = bytes(self._data[: idx + 1])
        del self._data[: idx + 1]
        self._scanned = 0
        return line


@dataclass(frozen=True)
class Connected:
    sock: socket.socket


@dataclass(frozen=True)
class Refused:
    path: str
    reason: str


def connect_monitor(path: str | Path) -> Connected | Refused:
    """Connect to a monitor socket.

    A refused connection, or a socket file that disappeared before we got to
    it, means no QEMU process is listening. That is an expected outcome
    when probing for stale sockets, so it is returned rather than raised.
    """
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(str(path))
    except (ConnectionRefusedError, FileNotFoundError) as ex:
        sock.close()
        return Refused(str(path), ex.strerror or str(ex))
    except OSError:
        sock.close()
        raise
    return Connected(sock)


class QMPClient:
    """Synchronous QMP client that owns a connected socket.

    Construction performs the handshake: one greeting message is read and
    ``qmp_capabilities`` is executed, each bounded by ``timeout`` on its
    own. On :class:`QMPTimeout` the socket is left open and the caller
    is responsible for closing it.
    """

    def __init__(self, sock: socket.socket, timeout: float = 2.0) -> None:
        self._sock = sock
        self._sock.setblocking(False)
        self.timeout = timeout
        self._buf = LineBuffer()
        self._closed = False
        greeting = self._read_message(timeout)
        if greeting is None:
            raise QMPTimeout(f'No QMP greeting within {timeout}s')
        log.debug('QMP greeting: {}', greeting)
        self.execute('qmp_capabilities', timeout)

    def __enter__(self) -> 'QMPClient':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def execute(self, command: str, timeout: float | None = None) -> Any:
        """Send ``command`` and return the payload of its ``return`` reply."""
        if timeout is None:
            timeout = self.timeout
        self._send({'execute': command}, timeout)
        deadline = time.monotonic() + timeout
        while True:
            remaining = max(0.0, deadline - time.monotonic())
            msg = self._read_message(remaining)
            if msg is None:
                raise QMPTimeout(
                    f'No reply to QMP command {command!r} within {timeout}s'
                )
            if isinstance(msg, dict) and 'return' in msg:
                return msg['return']
            log.debug('Ignoring QMP message while awaiting {}: {}', command, msg)

    def wait_for_eof(self, timeout: float | None = None) -> None:
        """Block until the peer closes the connection.

        Every readiness event restarts the wait, so ``QMPTimeout`` is only
        raised after the socket stayed silent for ``timeout`` seconds.
        """
        if timeout is None:
            timeout = self.timeout
        while self._wait_readable(timeout):
            try:
                data = self._sock.recv(READ_CHUNK)
            except BlockingIOError:
                continue
            except ConnectionResetError:
                return
            if not data:
                return
        raise QMPTimeout(f'QMP peer did not close the connection within {timeout}s')

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sock.close()

    def _send(self, obj: dict, timeout: float) -> None:
        payload = json.dumps(obj).encode('utf-8') + b'\r\n'
        log.debug('QMP send: {}', obj)
        self._sock.settimeout(timeout)
        try:
            self._sock.sendall(payload)
        except TimeoutError as ex:
            raise QMPTimeout(f'Could not send {obj} within {timeout}s') from ex
        except (BrokenPipeError, ConnectionResetError) as ex:
            raise QMPConnectionClosed(f'QMP connection lost sending {obj}') from ex
        finally:
            self._sock.setblocking(False)

    def _wait_readable(self, timeout: float) -> bool:
        ready, _, _ = select.select([self._sock], [], [], timeout)
        return bool(ready)

    def _read_message(self, timeout: float) -> Any | None:
        """Return the next decoded message, or None if ``timeout`` expires."""
        deadline = time.monotonic() + timeout
        while True:
            line = self._buf.pop_line()
            if line is not None:
                try:
                    return json.loads(line.decode('utf-8'))
                except ValueError as ex:
                    raise QMPProtocolError(
                        f'Malformed QMP message {line[:80]!r}'
                    ) from ex
            remaining = max(0.0, deadline - time.monotonic())
            if not self._wait_readable(remaining):
                return None
            try:
                chunk = self._sock.recv(READ_CHUNK)
            except BlockingIOError:
                continue
            except ConnectionResetError as ex:
                raise QMPConnectionClosed('QMP connection reset by peer') from ex
            if not chunk:
                raise QMPConnectionClosed(
                    f'QMP connection closed with {len(self._buf)} unparsed bytes'
                )
            self._buf.feed(chunk)
