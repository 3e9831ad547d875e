"""
Shared fixtures: an in-memory BIND9 host and test settings
"""

import asyncio
import os
import re
import shlex
from typing import Dict, List, Optional, Sequence

import pytest

from zonesync.core.config import Settings
from zonesync.core.exceptions import TransientPublishError
from zonesync.services.remote_executor import CommandResult, RemoteExecutor
from zonesync.services.soa_probe import SOAProbe

_SERIAL_RE = re.compile(r"^\s*(\d+)\t; Serial$", re.MULTILINE)


def serial_of(zone_text: str) -> Optional[int]:
    match = _SERIAL_RE.search(zone_text)
    return int(match.group(1)) if match else None


class FakeBindServer(RemoteExecutor):
    """Interprets the publisher's commands against a dict filesystem.

    ``served`` holds the serial each zone was last loaded with. Failures are
    injected by queueing outcomes: ``reload_outcomes`` takes "error" (rndc
    exits non-zero) or "transient" (the connection drops).
    """

    def __init__(self, zones_dir: str = "/etc/bind"):
        self.zones_dir = zones_dir
        self.files: Dict[str, str] = {}
        self.served: Dict[str, int] = {}
        self.commands: List[List[str]] = []
        self.uploads: List[str] = []
        self.reject_zones = set()
        self.reload_outcomes: List[str] = []
        self.upload_outcomes: List[str] = []
        self.upload_gate: Optional[asyncio.Event] = None
        self.upload_started: Optional[asyncio.Event] = None
        self.closed = False

    def live_path(self, domain_name: str) -> str:
        return f"{self.zones_dir}/db.{domain_name}"

    def live_text(self, domain_name: str) -> Optional[str]:
        return self.files.get(self.live_path(domain_name))

    def ran(self, program: str) -> List[List[str]]:
        return [c for c in self.commands if os.path.basename(self._args(c)[0]) == program]

    @staticmethod
    def _args(command: List[str]) -> List[str]:
        return command[2:] if command[:2] == ["sudo", "-n"] else command

    async def upload(self, path: str, content: str, timeout: Optional[float] = None) -> None:
        self.uploads.append(path)
        if self.upload_started is not None:
            self.upload_started.set()
        if self.upload_gate is not None:
            await self.upload_gate.wait()
        if self.upload_outcomes and self.upload_outcomes.pop(0) == "transient":
            raise TransientPublishError("Connection reset by peer")
        self.files[path] = content

    async def run(self, command: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
        command = list(command)
        self.commands.append(command)
        await asyncio.sleep(0)
        args = self._args(command)
        program = os.path.basename(args[0])
        handler = getattr(self, f"_do_{program.replace('-', '_')}", None)
        if handler is None:
            return CommandResult(shlex.join(command), 127, stderr=f"{program}: command not found")
        returncode, output = handler(args[1:])
        return CommandResult(shlex.join(command), returncode, stdout=output)

    async def close(self) -> None:
        self.closed = True

    # Commands
    def _do_named_checkzone(self, args):
        domain, path = args[-2], args[-1]
        if path not in self.files:
            return 1, f"zone {domain}/IN: loading from master file {path} failed: file not found"
        if domain in self.reject_zones:
            return 1, f"zone {domain}/IN: not loaded due to errors."
        return 0, f"zone {domain}/IN: loaded serial {serial_of(self.files[path])}\nOK"

    def _do_test(self, args):
        return (0 if args[-1] in self.files else 1), ""

    def _do_cp(self, args):
        src, dst = args[-2], args[-1]
        if src not in self.files:
            return 1, f"cp: cannot stat '{src}': No such file or directory"
        self.files[dst] = self.files[src]
        return 0, ""

    def _do_install(self, args):
        return self._do_cp(args)

    def _do_mv(self, args):
        src, dst = args[-2], args[-1]
        if src not in self.files:
            return 1, f"mv: cannot stat '{src}': No such file or directory"
        self.files[dst] = self.files.pop(src)
        return 0, ""

    def _do_rm(self, args):
        self.files.pop(args[-1], None)
        return 0, ""

    def _do_rndc(self, args):
        domain = args[-1]
        outcome = self.reload_outcomes.pop(0) if self.reload_outcomes else "ok"
        if outcome == "transient":
            raise TransientPublishError("Timed out waiting for rndc")
        if outcome == "error":
            return 1, f"rndc: 'reload' failed: zone {domain} failed to load"
        text = self.live_text(domain)
        if text is None:
            self.served.pop(domain, None)
            return 1, "rndc: 'reload' failed: not found"
        self.served[domain] = serial_of(text)
        return 0, "zone reload queued"

    def _do_systemctl(self, args):
        return 0, ""


class FakeProbe(SOAProbe):
    """Reads served serials straight from the fake server"""

    def __init__(self, server: FakeBindServer):
        super().__init__("127.0.0.1")
        self.server = server

    async def query_serial(self, zone: str) -> Optional[int]:
        return self.server.served.get(zone)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path}/dashboard.db",
        SYNC_STATE_DATABASE_URL=f"sqlite:///{tmp_path}/state.db",
        DNS_SERVER_HOST="192.0.2.53",
        SSH_PRIVATE_KEY=None,
        SYNC_API_TOKEN=None,
        SYNC_MAX_ATTEMPTS=3,
        SYNC_BACKOFF_BASE=0.01,
        SYNC_BACKOFF_MAX=0.05,
        DNS_VERIFY_ENABLED=True,
        DNS_VERIFY_ATTEMPTS=2,
        DNS_VERIFY_DELAY=0.01,
        PUBLISH_INACTIVE_DOMAINS=False,
        SYNC_REQUEST_TIMEOUT=10.0,
    )


@pytest.fixture
def server():
    return FakeBindServer()
