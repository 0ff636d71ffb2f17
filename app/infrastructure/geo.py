"""Best-effort IP geolocation."""

import ipaddress

import httpx
import structlog

from app.domain.value_objects import GeoLabel
from app.infrastructure.config import settings

logger = structlog.get_logger()


def is_public_ip(ip: str | None) -> bool:
    """Whether an address is worth looking up.

    Args:
        ip: Address as text.

    Returns:
        False for empty, malformed, private, loopback or reserved addresses.
    """
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address.is_global


class GeoLocator:
    """Looks up city and country for a public IP.

    Never raises: every failure degrades to an empty label.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.geoip_api_url).rstrip("/")
        self.api_key = settings.geoip_api_key if api_key is None else api_key
        self.timeout = timeout or settings.external_call_timeout_seconds
        self.transport = transport

    async def lookup(self, ip: str | None) -> GeoLabel:
        """Resolve location labels for an address.

        Args:
            ip: Client IP.

        Returns:
            Labels, possibly empty.
        """
        if not is_public_ip(ip):
            return GeoLabel()

        params = {"key": self.api_key} if self.api_key else None
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}/{ip}/json/", params=params)
            data = response.json() if response.status_code == 200 else {}
        except (httpx.RequestError, ValueError) as e:
            logger.warning("Geo lookup failed", ip=ip, error=str(e))
            return GeoLabel()

        city = data.get("city") or data.get("region") or None
        country = data.get("country_name") or data.get("country") or None
        return GeoLabel(city=city, country=country)
