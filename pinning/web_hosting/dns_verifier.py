"""
Lookup of published discovery records.

Resolves a project's TXT records through public DNS to show what peers
and gateways currently see.
"""

import asyncio
import logging
from typing import Dict, List

import dns.exception
import dns.resolver

from pinning.errors import DnsApiFailure

logger = logging.getLogger(__name__)

RECORD_NAMES = ("@", "api", "_dnslink", "_dnslink.api")


class PublishedRecordVerifier:
    """
    Resolves discovery TXT records of a domain.

    Results reflect resolver caches, so a freshly upserted record may take
    up to its TTL to appear.
    """

    def __init__(self, dns_timeout: int = 10):
        """
        Initialize verifier.

        Args:
            dns_timeout: Timeout for DNS queries (seconds)
        """
        self.dns_timeout = dns_timeout

    @staticmethod
    def fqdn(domain: str, name: str) -> str:
        return domain if name == "@" else f"{name}.{domain}"

    def _resolve(self, qname: str) -> List[str]:
        resolver = dns.resolver.Resolver()
        resolver.timeout = self.dns_timeout
        resolver.lifetime = self.dns_timeout

        try:
            answers = resolver.resolve(qname, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            logger.warning(f"No TXT records found for {qname}")
            return []
        except dns.resolver.Timeout as e:
            raise DnsApiFailure(f"DNS query timeout for {qname}") from e
        except dns.exception.DNSException as e:
            raise DnsApiFailure(f"DNS error for {qname}: {e}") from e

        # TXT records are quoted strings, possibly split in chunks
        return [b"".join(rdata.strings).decode("utf-8") for rdata in answers]

    async def lookup(self, domain: str, name: str) -> List[str]:
        """
        Resolve one TXT record.

        Args:
            domain: Zone, e.g. "example.com"
            name: Record name relative to the zone ("@" for the apex)

        Returns:
            TXT values (empty if the name does not exist)

        Raises:
            DnsApiFailure: On timeouts and resolver errors
        """
        qname = self.fqdn(domain, name)
        logger.info(f"Querying DNS for {qname}")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._resolve, qname)

    async def published(self, domain: str) -> Dict[str, List[str]]:
        """Resolve all four discovery records of a domain."""
        values = await asyncio.gather(*(self.lookup(domain, name) for name in RECORD_NAMES))
        return dict(zip(RECORD_NAMES, values))
