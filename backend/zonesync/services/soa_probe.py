"""
SOA liveness probe against the authoritative server
"""

import asyncio
import ipaddress
from typing import Optional

import dns.asyncquery
import dns.asyncresolver
import dns.exception
import dns.message
import dns.name
import dns.rcode
import dns.rdatatype

from ..core.logging_config import get_publish_logger

logger = get_publish_logger()


class SOAProbe:
    """Reads the serial a name server is currently serving for a zone"""

    def __init__(self, address: str, port: int = 53, timeout: float = 5.0):
        self.address = address
        self.port = port
        self.timeout = timeout
        self._resolved: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "SOAProbe":
        return cls(
            address=settings.verify_address,
            port=settings.DNS_VERIFY_PORT,
            timeout=min(settings.REMOTE_CALL_TIMEOUT, 10.0),
        )

    async def _server_address(self) -> str:
        if self._resolved:
            return self._resolved
        try:
            ipaddress.ip_address(self.address)
            self._resolved = self.address
        except ValueError:
            answer = await dns.asyncresolver.resolve(self.address, "A", lifetime=self.timeout)
            self._resolved = answer[0].address
        return self._resolved

    async def query_serial(self, zone: str) -> Optional[int]:
        """Return the served SOA serial, or None when the server does not answer authoritatively"""
        try:
            server = await self._server_address()
            query = dns.message.make_query(dns.name.from_text(zone), dns.rdatatype.SOA)
            response = await dns.asyncquery.udp(query, server, port=self.port, timeout=self.timeout)
        except (dns.exception.DNSException, OSError) as e:
            logger.debug(f"SOA query for {zone} against {self.address} failed: {e}")
            return None

        if response.rcode() != dns.rcode.NOERROR:
            logger.debug(f"SOA query for {zone} returned {dns.rcode.to_text(response.rcode())}")
            return None
        for rrset in response.answer:
            if rrset.rdtype == dns.rdatatype.SOA:
                return rrset[0].serial
        return None

    async def wait_for_serial(self, zone: str, serial: int, attempts: int = 3, delay: float = 1.0) -> Optional[int]:
        """Poll until the server serves ``serial``; returns the last serial seen"""
        served = None
        for attempt in range(max(attempts, 1)):
            served = await self.query_serial(zone)
            if served == serial:
                return served
            if attempt < attempts - 1:
                await asyncio.sleep(delay)
        return served
