"""
Remote command execution on the authoritative name server over SSH
"""

import asyncio
import io
import os
import shlex
import socket
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import paramiko

from ..core.exceptions import ConfigurationException, TransientPublishError
from ..core.logging_config import get_publish_logger

logger = get_publish_logger()


@dataclass
class CommandResult:
    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


class RemoteExecutor(ABC):
    """Runs commands and writes files on the name-server host"""

    @abstractmethod
    async def run(self, command: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        """Run a command; connection problems raise ``TransientPublishError``"""

    @abstractmethod
    async def upload(self, path: str, content: str, timeout: Optional[float] = None) -> None:
        """Write ``content`` to ``path`` on the remote host"""

    async def close(self) -> None:
        """Release the connection"""


def load_private_key(key_material: str, passphrase: Optional[str] = None) -> paramiko.PKey:
    """Load a private key from PEM/OpenSSH content or from a file path"""
    key_classes = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)
    is_content = key_material.lstrip().startswith("-----BEGIN")
    if not is_content:
        key_path = os.path.expanduser(key_material)
        if not os.path.exists(key_path):
            raise ConfigurationException(f"SSH private key file not found: {key_path}")

    last_error = None
    for key_class in key_classes:
        try:
            if is_content:
                return key_class.from_private_key(io.StringIO(key_material), password=passphrase)
            return key_class.from_private_key_file(os.path.expanduser(key_material), password=passphrase)
        except paramiko.SSHException as e:
            last_error = e
    raise ConfigurationException(
        "Unsupported or unreadable SSH private key",
        details={"error": str(last_error)},
        suggestions=["Provide an Ed25519, ECDSA or RSA key in PEM or OpenSSH format"]
    )


class _RemoteCall:
    """One remote call, abandoned by the caller when it gives up waiting.

    The worker thread checks the call before it starts anything on the
    server, so a call abandoned while queued or connecting never runs.
    """

    def __init__(self, description: str, timeout: float):
        self.description = description
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout
        self.channel: Optional[paramiko.Channel] = None
        self._abandoned = False
        self._guard = threading.Lock()

    @property
    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    def check(self) -> None:
        if self._abandoned or self.remaining <= 0:
            raise TransientPublishError(f"{self.description} abandoned before it started")

    def attach(self, channel: paramiko.Channel) -> None:
        """Bind the call's channel; closes it at once if the caller already left"""
        with self._guard:
            abandoned = self._abandoned or self.remaining <= 0
            if not abandoned:
                self.channel = channel
        if abandoned:
            channel.close()
            raise TransientPublishError(f"{self.description} abandoned before it started")

    def abandon(self) -> None:
        with self._guard:
            self._abandoned = True
            channel, self.channel = self.channel, None
        if channel is not None:
            channel.close()


class SSHExecutor(RemoteExecutor):
    """Key-authenticated SSH executor.

    paramiko is blocking, so every call runs in a worker thread and is bounded
    by ``asyncio.wait_for``. One transport is shared and re-established when it
    drops; each call opens its own channel on it, so calls for different
    domains run side by side. A call that times out only closes its own
    channel.
    """

    def __init__(
        self,
        host: str,
        username: str,
        private_key: Optional[str],
        port: int = 22,
        passphrase: Optional[str] = None,
        strict_host_key_checking: bool = False,
        known_hosts: Optional[str] = None,
        default_timeout: float = 30.0
    ):
        self.host = host
        self.port = port
        self.username = username
        self.private_key = private_key
        self.passphrase = passphrase
        self.strict_host_key_checking = strict_host_key_checking
        self.known_hosts = known_hosts
        self.default_timeout = default_timeout
        self._client: Optional[paramiko.SSHClient] = None
        # Guards connecting and reconnecting only, never a running command
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "SSHExecutor":
        return cls(
            host=settings.DNS_SERVER_HOST,
            port=settings.DNS_SERVER_PORT,
            username=settings.DNS_SERVER_USER,
            private_key=settings.SSH_PRIVATE_KEY,
            passphrase=settings.SSH_KEY_PASSPHRASE,
            strict_host_key_checking=settings.SSH_STRICT_HOST_KEY_CHECKING,
            known_hosts=settings.SSH_KNOWN_HOSTS,
            default_timeout=settings.REMOTE_CALL_TIMEOUT,
        )

    def _connect(self, timeout: float) -> paramiko.SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client
            self._client.close()
            self._client = None

        if not self.private_key:
            raise ConfigurationException(
                "SSH_PRIVATE_KEY is required to publish zones",
                suggestions=["Set SSH_PRIVATE_KEY to the key content or a key file path"]
            )
        pkey = load_private_key(self.private_key, self.passphrase)

        client = paramiko.SSHClient()
        if self.strict_host_key_checking:
            client.load_system_host_keys()
            if self.known_hosts:
                client.load_host_keys(os.path.expanduser(self.known_hosts))
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                pkey=pkey,
                timeout=timeout,
                banner_timeout=timeout,
                auth_timeout=timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise ConfigurationException(
                f"SSH authentication failed for {self.username}@{self.host}",
                details={"error": str(e)}
            ) from e
        except (paramiko.SSHException, socket.error, EOFError) as e:
            client.close()
            raise TransientPublishError(
                f"Could not connect to {self.host}:{self.port}",
                details={"error": str(e)}
            ) from e

        logger.debug(f"SSH connection established to {self.username}@{self.host}:{self.port}")
        self._client = client
        return client

    def _client_for(self, call: _RemoteCall) -> paramiko.SSHClient:
        if not self._lock.acquire(timeout=max(call.remaining, 0)):
            raise TransientPublishError(f"{call.description} timed out waiting for the SSH connection")
        try:
            call.check()
            return self._connect(call.remaining)
        finally:
            self._lock.release()

    def _discard(self, client: paramiko.SSHClient) -> None:
        """Drop the client if its transport is dead; live transports keep serving other calls"""
        transport = client.get_transport()
        if transport is not None and transport.is_active():
            return
        with self._lock:
            if self._client is client:
                self._client = None
        client.close()

    def _drop_connection(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _open_sftp(self, transport: paramiko.Transport) -> paramiko.SFTPClient:
        return paramiko.SFTPClient.from_transport(transport)

    def _run_sync(self, call: _RemoteCall, command: str) -> CommandResult:
        client = self._client_for(call)
        channel = None
        try:
            channel = client.get_transport().open_session(timeout=call.remaining)
            call.attach(channel)
            channel.settimeout(call.timeout)
            channel.exec_command(command)
            out = channel.makefile("rb").read().decode("utf-8", errors="replace")
            err = channel.makefile_stderr("rb").read().decode("utf-8", errors="replace")
            returncode = channel.recv_exit_status()
        except (paramiko.SSHException, socket.error, EOFError) as e:
            self._discard(client)
            raise TransientPublishError(
                f"Remote command failed on {self.host}: {command}",
                details={"error": str(e)}
            ) from e
        finally:
            if channel is not None:
                channel.close()
        return CommandResult(command=command, returncode=returncode, stdout=out, stderr=err)

    def _upload_sync(self, call: _RemoteCall, path: str, content: str) -> None:
        client = self._client_for(call)
        try:
            sftp = self._open_sftp(client.get_transport())
            try:
                call.attach(sftp.get_channel())
                sftp.get_channel().settimeout(call.timeout)
                with sftp.file(path, "w") as remote_file:
                    remote_file.write(content.encode("utf-8"))
                sftp.chmod(path, 0o644)
            finally:
                sftp.close()
        except (paramiko.SSHException, socket.error, EOFError) as e:
            self._discard(client)
            raise TransientPublishError(
                f"Upload to {self.host}:{path} failed",
                details={"error": str(e)}
            ) from e

    async def _dispatch(self, call: _RemoteCall, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, call, *args), timeout=call.timeout)
        except asyncio.TimeoutError as e:
            call.abandon()
            raise TransientPublishError(f"{call.description} timed out after {call.timeout}s") from e
        except asyncio.CancelledError:
            call.abandon()
            raise

    async def run(self, command: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        command_str = shlex.join(command)
        call = _RemoteCall(f"Remote command {command_str}", timeout or self.default_timeout)
        return await self._dispatch(call, self._run_sync, command_str)

    async def upload(self, path: str, content: str, timeout: Optional[float] = None) -> None:
        call = _RemoteCall(f"Upload of {path}", timeout or self.default_timeout)
        await self._dispatch(call, self._upload_sync, path, content)

    async def close(self) -> None:
        await asyncio.to_thread(self._drop_connection)


def build_command(*parts: str, sudo: bool = False) -> List[str]:
    """Command list, prefixed with non-interactive sudo when required"""
    return (["sudo", "-n"] if sudo else []) + list(parts)
