"""
Zone publisher: makes compiled zone text live on the BIND9 server

Publishing never edits the live zone file in place. The new text is
uploaded to a staging file, checked with named-checkzone, installed next
to the live file and renamed over it. If the reload or the SOA check that
follows fails, the previous file is restored the same way.
"""

import time
from dataclasses import dataclass
from typing import Optional

from ..core.config import get_settings
from ..core.exceptions import PublishError, TransientPublishError, ZoneSyncException
from ..core.logging_config import get_publish_logger
from .remote_executor import CommandResult, RemoteExecutor, build_command
from .soa_probe import SOAProbe
from .zone_compiler import CompiledZone

logger = get_publish_logger()

COMMAND_NOT_FOUND = 127


@dataclass
class PublishResult:
    domain_name: str
    serial: int
    checksum: str
    duration: float
    replaced_existing: bool
    verified: bool

    def to_dict(self):
        return {
            "domain_name": self.domain_name,
            "serial": self.serial,
            "checksum": self.checksum,
            "duration": round(self.duration, 3),
            "replaced_existing": self.replaced_existing,
            "verified": self.verified,
        }


class _ReloadFailed(Exception):
    """Reload or verification failed after the swap"""


class ZonePublisher:
    """Publishes zone files over a ``RemoteExecutor``"""

    def __init__(self, executor: RemoteExecutor, probe: Optional[SOAProbe] = None, settings=None):
        settings = settings or get_settings()
        self.executor = executor
        self.probe = probe if settings.DNS_VERIFY_ENABLED else None
        self.zones_dir = settings.BIND_ZONES_DIR.rstrip("/")
        self.temp_dir = settings.REMOTE_TEMP_DIR.rstrip("/")
        self.use_sudo = settings.REMOTE_USE_SUDO
        self.service_name = settings.BIND_SERVICE_NAME
        self.rndc_path = settings.RNDC_PATH
        self.checkzone_path = settings.NAMED_CHECKZONE_PATH
        self.timeout = settings.REMOTE_CALL_TIMEOUT
        self.verify_attempts = settings.DNS_VERIFY_ATTEMPTS
        self.verify_delay = settings.DNS_VERIFY_DELAY

    # Paths
    def zone_path(self, domain_name: str) -> str:
        return f"{self.zones_dir}/db.{domain_name}"

    def backup_path(self, domain_name: str) -> str:
        return f"{self.zone_path(domain_name)}.bak"

    def _staging_path(self, domain_name: str, serial: int) -> str:
        return f"{self.temp_dir}/zonesync-{domain_name}-{serial}.zone"

    def _incoming_path(self, domain_name: str, suffix: str) -> str:
        # Same directory as the live file so the final mv is a rename
        return f"{self.zones_dir}/.db.{domain_name}.{suffix}"

    async def _run(self, *parts: str, sudo: bool = True) -> CommandResult:
        command = build_command(*parts, sudo=sudo and self.use_sudo)
        return await self.executor.run(command, timeout=self.timeout)

    async def _checked(self, stage: str, *parts: str, sudo: bool = True) -> CommandResult:
        result = await self._run(*parts, sudo=sudo)
        if not result.ok:
            raise PublishError(
                f"Command failed: {result.command}",
                stage=stage,
                details={"returncode": result.returncode, "output": result.output}
            )
        return result

    async def _install(self, stage: str, source: str, live: str, incoming: str) -> None:
        """Copy ``source`` beside the live file, then rename it over the live file"""
        await self._checked(stage, "install", "-m", "0644", source, incoming)
        await self._checked(stage, "mv", "-f", incoming, live)

    async def _cleanup(self, *paths: str) -> None:
        for path in paths:
            try:
                await self._run("rm", "-f", path, sudo=not path.startswith(self.temp_dir + "/"))
            except ZoneSyncException as e:
                logger.warning(f"Could not remove {path}: {e.message}")

    async def reload_zone(self, domain_name: str) -> CommandResult:
        """Graceful reload of one zone, falling back to a service reload"""
        result = await self._run(self.rndc_path, "reload", domain_name)
        if result.returncode == COMMAND_NOT_FOUND:
            logger.warning("rndc not found, falling back to systemctl reload")
            result = await self._run("systemctl", "reload", self.service_name)
        return result

    async def fetch_live_serial(self, domain_name: str) -> Optional[int]:
        """Serial currently served for the zone, if the probe can see one"""
        if self.probe is None:
            return None
        return await self.probe.query_serial(domain_name)

    async def _reload_and_verify(self, compiled: CompiledZone) -> bool:
        result = await self.reload_zone(compiled.domain_name)
        if not result.ok:
            raise _ReloadFailed(f"Reload failed: {result.output or result.returncode}")

        if self.probe is None:
            return False
        served = await self.probe.wait_for_serial(
            compiled.domain_name, compiled.serial, self.verify_attempts, self.verify_delay
        )
        if served != compiled.serial:
            raise _ReloadFailed(
                f"Server serves serial {served} for {compiled.domain_name}, expected {compiled.serial}"
            )
        return True

    async def _rollback(self, domain_name: str, had_previous: bool) -> bool:
        live = self.zone_path(domain_name)
        try:
            if had_previous:
                await self._install(
                    PublishError.STAGE_RELOAD,
                    self.backup_path(domain_name),
                    live,
                    self._incoming_path(domain_name, "rollback"),
                )
            else:
                await self._checked(PublishError.STAGE_RELOAD, "rm", "-f", live)
            result = await self.reload_zone(domain_name)
        except ZoneSyncException as e:
            logger.error(f"Rollback of {domain_name} failed: {e.message}")
            return False

        if had_previous and not result.ok:
            logger.error(f"Rollback of {domain_name} restored the file but reload failed: {result.output}")
            return False
        logger.warning(f"Rolled back {domain_name} to the last known good zone file")
        return True

    async def publish(self, compiled: CompiledZone) -> PublishResult:
        """Publish ``compiled``; raises ``PublishError`` or ``TransientPublishError``"""
        domain = compiled.domain_name
        serial = compiled.serial
        live = self.zone_path(domain)
        staging = self._staging_path(domain, serial)
        incoming = self._incoming_path(domain, str(serial))
        started = time.monotonic()
        outcome = "failed"
        try:
            await self.executor.upload(staging, compiled.text, timeout=self.timeout)

            check = await self._run(self.checkzone_path, domain, staging, sudo=False)
            if not check.ok:
                raise PublishError(
                    f"named-checkzone rejected the zone for {domain}",
                    stage=PublishError.STAGE_VALIDATE,
                    details={"output": check.output, "serial": serial},
                    suggestions=["Inspect the record values reported in the checkzone output"]
                )

            had_previous = (await self._run("test", "-f", live)).ok
            if had_previous:
                await self._checked(PublishError.STAGE_PREPARE, "cp", "-p", live, self.backup_path(domain))

            await self._install(PublishError.STAGE_PREPARE, staging, live, incoming)

            try:
                verified = await self._reload_and_verify(compiled)
            except _ReloadFailed as e:
                rolled_back = await self._rollback(domain, had_previous)
                raise PublishError(
                    str(e),
                    stage=PublishError.STAGE_RELOAD,
                    rollback_succeeded=rolled_back,
                    details={"serial": serial}
                ) from e

            outcome = "succeeded"
            return PublishResult(
                domain_name=domain,
                serial=serial,
                checksum=compiled.checksum,
                duration=time.monotonic() - started,
                replaced_existing=had_previous,
                verified=verified,
            )
        except TransientPublishError:
            outcome = "transient-failure"
            raise
        finally:
            duration = time.monotonic() - started
            logger.info(
                f"publish domain={domain} serial={serial} records={compiled.record_count} "
                f"outcome={outcome} duration={duration:.3f}s"
            )
            if outcome != "transient-failure":
                await self._cleanup(staging, incoming)
