"""
Remote feed download over SFTP.

Two transports are tried in order: paramiko first, then the libssh2
bindings (ssh2-python) when installed. Whichever libraries are importable
decide the transport list; nothing is chosen by configuration.
Credentials are used for the session only and never stored.
"""

import io
import socket
from dataclasses import dataclass, field
from typing import List, Optional

from .console import log

# SFTP client libraries - paramiko preferred, ssh2-python as fallback
try:
    import paramiko
    HAS_PARAMIKO = True
except ImportError:
    HAS_PARAMIKO = False

try:
    from ssh2.exceptions import SSH2Error
    from ssh2.session import Session as Ssh2Session
    from ssh2.sftp import LIBSSH2_FXF_READ, LIBSSH2_SFTP_S_IRUSR
    HAS_SSH2 = True
except ImportError:
    HAS_SSH2 = False


CONNECT_TIMEOUT = 30


class TransportError(Exception):
    """A transport could not connect, authenticate or transfer."""


class RemoteTransport:
    """One way of downloading a file over SFTP."""
    name = 'transport'

    def download(self, host: str, port: int, username: str, password: str,
                 path: str, timeout: float) -> bytes:
        raise NotImplementedError


class ParamikoTransport(RemoteTransport):
    name = 'paramiko'

    def download(self, host, port, username, password, path, timeout):
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise TransportError(f"Could not connect to {host}:{port}: {e}")

        transport = paramiko.Transport(sock)
        try:
            transport.banner_timeout = timeout
            try:
                transport.connect(username=username, password=password)
            except paramiko.AuthenticationException:
                raise TransportError("SFTP login failed - check username and password")
            sftp = paramiko.SFTPClient.from_transport(transport)
            try:
                sftp.get_channel().settimeout(timeout)
                buffer = io.BytesIO()
                sftp.getfo(path, buffer)
                return buffer.getvalue()
            finally:
                sftp.close()
        except TransportError:
            raise
        except FileNotFoundError:
            raise TransportError(f"Remote file not found: {path}")
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise TransportError(f"SFTP transfer failed: {e}")
        finally:
            transport.close()


class Ssh2Transport(RemoteTransport):
    name = 'ssh2'

    def download(self, host, port, username, password, path, timeout):
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise TransportError(f"Could not connect to {host}:{port}: {e}")

        try:
            session = Ssh2Session()
            session.set_timeout(int(timeout * 1000))
            session.handshake(sock)
            try:
                session.userauth_password(username, password)
            except SSH2Error:
                raise TransportError("SSH2 authentication failed")
            sftp = session.sftp_init()
            chunks = []
            with sftp.open(path, LIBSSH2_FXF_READ, LIBSSH2_SFTP_S_IRUSR) as handle:
                for _size, data in handle:
                    chunks.append(data)
            session.disconnect()
            return b''.join(chunks)
        except TransportError:
            raise
        except (SSH2Error, OSError) as e:
            raise TransportError(f"Could not open remote file {path}: {e}")
        finally:
            sock.close()


def default_transports() -> List[RemoteTransport]:
    """Transports whose libraries are installed, preferred first."""
    transports: List[RemoteTransport] = []
    if HAS_PARAMIKO:
        transports.append(ParamikoTransport())
    if HAS_SSH2:
        transports.append(Ssh2Transport())
    return transports


@dataclass
class FetchResult:
    """Outcome of a download attempt."""
    success: bool
    data: bytes = b''
    transport: Optional[str] = None
    error: Optional[str] = None
    attempts: List[str] = field(default_factory=list)

    @property
    def file_size(self) -> int:
        return len(self.data)


class RemoteFetcher:
    """Downloads one remote file, falling back across transports."""

    def __init__(self, transports: Optional[List[RemoteTransport]] = None,
                 timeout: float = CONNECT_TIMEOUT):
        self.transports = default_transports() if transports is None else transports
        self.timeout = timeout

    def fetch(self, host: str, port: int, username: str, password: str,
              path: str) -> FetchResult:
        """
        Download path from host.

        Returns:
            FetchResult with the file bytes, or success=False with every
            transport's error joined by " | "
        """
        if not self.transports:
            return FetchResult(
                success=False,
                error="No SFTP library available. Install paramiko (or ssh2-python).",
            )

        errors = []
        attempts = []
        for transport in self.transports:
            attempts.append(transport.name)
            try:
                data = transport.download(host, port, username, password, path, self.timeout)
            except TransportError as e:
                log(f"{transport.name}: {e}")
                errors.append(f"{transport.name}: {e}")
                continue
            log(f"Downloaded {len(data):,} bytes via {transport.name}")
            return FetchResult(success=True, data=data, transport=transport.name, attempts=attempts)

        return FetchResult(success=False, error=' | '.join(errors), attempts=attempts)
