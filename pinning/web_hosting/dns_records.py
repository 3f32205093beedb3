"""
DNS discovery records on DigitalOcean.

Keeps one TXT record per (domain, name) pointing at the latest published
location of a project's content:

    @              datkey=<hex key>          website hyperdrive
    api            datkey=<hex key>          API hyperdrive
    _dnslink       dnslink=/ipfs/<cid>       website on IPFS
    _dnslink.api   dnslink=/ipfs/<cid>       API on IPFS
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

import aiohttp

from pinning.errors import DnsApiFailure

logger = logging.getLogger(__name__)

DIGITALOCEAN_API = "https://api.digitalocean.com/v2"
DEFAULT_TTL = 300
PAGE_SIZE = 500


@dataclass
class DNSRecord:
    """A domain record as the provider reports it."""

    type: str
    name: str
    data: str
    ttl: Optional[int] = None
    id: Optional[int] = None

    @classmethod
    def from_api(cls, item: dict) -> "DNSRecord":
        return cls(
            type=item.get("type"),
            name=item.get("name"),
            data=item.get("data"),
            ttl=item.get("ttl"),
            id=item.get("id"),
        )

    def to_api(self) -> dict:
        body = asdict(self)
        body.pop("id")
        return body


class DigitalOceanDNS:
    """
    Minimal DigitalOcean domain records client.

    Covers listing, deleting and creating records, authenticated with a
    personal access token.
    """

    def __init__(
        self,
        token: str,
        base_url: str = DIGITALOCEAN_API,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: int = 30
    ):
        """
        Initialize DNS provider client.

        Args:
            token: DigitalOcean API token
            base_url: API base URL
            session: Shared aiohttp session (created lazily when omitted)
            timeout: Request timeout (seconds)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    def _records_url(self, domain: str) -> str:
        return f"{self.base_url}/domains/{domain}/records"

    async def _request(self, method: str, url: str, body: Optional[dict] = None) -> dict:
        try:
            async with self._get_session().request(
                method, url, json=body, headers=self.headers
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise DnsApiFailure(
                        f"{method} {url} failed with {resp.status}: {text}",
                        status=resp.status
                    )
                if resp.status == 204 or resp.content_type != "application/json":
                    return {}
                return await resp.json()
        except aiohttp.ClientError as e:
            raise DnsApiFailure(f"{method} {url} failed: {e}") from e

    async def list_records(self, domain: str) -> List[DNSRecord]:
        """List every record of a domain, following pagination."""
        url = f"{self._records_url(domain)}?per_page={PAGE_SIZE}"
        records = []

        while url:
            logger.info(f"GET {url}")
            data = await self._request("GET", url)
            records.extend(DNSRecord.from_api(item) for item in data.get("domain_records", []))
            url = data.get("links", {}).get("pages", {}).get("next")

        return records

    async def delete_record(self, domain: str, record_id: int):
        url = f"{self._records_url(domain)}/{record_id}"
        logger.info(f"DELETE {url}")
        await self._request("DELETE", url)

    async def create_record(self, domain: str, record: DNSRecord) -> DNSRecord:
        url = self._records_url(domain)
        body = record.to_api()
        logger.info(f"POST {url} with data {body}")
        data = await self._request("POST", url, body)
        created = data.get("domain_record")
        return DNSRecord.from_api(created) if created else record

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class DnsReconciler:
    """
    Upserts discovery TXT records.

    The list/delete/create sequence is not atomic on the provider side,
    so it runs under a lock per (domain, name). Readers may briefly see
    no matching record between the delete and the create.
    """

    def __init__(self, provider: DigitalOceanDNS):
        self.provider = provider
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, domain: str, name: str) -> asyncio.Lock:
        key = (domain, name)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def upsert_txt(
        self,
        domain: str,
        name: str,
        data: str,
        ttl: int = DEFAULT_TTL
    ) -> DNSRecord:
        """
        Make the TXT record (domain, name) hold ``data``.

        Existing records with the same type and name (exact match) are
        deleted first; a failed delete is logged and the create still runs.

        Args:
            domain: Zone, e.g. "example.com"
            name: Record name relative to the zone ("@" for the apex)
            data: Record value
            ttl: Record TTL (seconds)

        Returns:
            The created record

        Raises:
            DnsApiFailure: If listing or creating fails
        """
        async with self._lock_for(domain, name):
            records = await self.provider.list_records(domain)
            matching = [r for r in records if r.type == "TXT" and r.name == name]

            for record in matching:
                try:
                    await self.provider.delete_record(domain, record.id)
                except DnsApiFailure as e:
                    logger.error(f"Failed to delete TXT {name} ({record.id}) of {domain}: {e}")

            return await self.provider.create_record(
                domain,
                DNSRecord(type="TXT", name=name, data=data, ttl=ttl)
            )
