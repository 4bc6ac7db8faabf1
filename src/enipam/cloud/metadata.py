"""
Instance metadata service client.

Reads instance identity and per-interface attributes from the link-local
metadata service using IMDSv2 session tokens.
"""

import httpx

from enipam.errors import TransientCloudError
from enipam.models.cloud import Interface
from enipam.utils.logger import get_logger

logger = get_logger(__name__)

TOKEN_HEADER = "X-aws-ec2-metadata-token"
TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"


class MetadataClient:
    """
    Thin reader over the instance metadata service.

    A session token is fetched lazily and reused for the life of the client.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 1.0,
        token_ttl: int = 21600,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_ttl = token_ttl
        self._http = httpx.Client(
            base_url=self.base_url, timeout=timeout, transport=transport
        )
        self._token: str | None = None

    def close(self) -> None:
        self._http.close()

    # =========================================================================
    # Requests
    # =========================================================================

    def _fetch_token(self) -> str:
        response = self._http.put(
            "/api/token", headers={TOKEN_TTL_HEADER: str(self.token_ttl)}
        )
        response.raise_for_status()
        return response.text.strip()

    def _get_token(self) -> str:
        if self._token is None:
            try:
                self._token = self._fetch_token()
            except httpx.HTTPError as e:
                logger.error(f"Metadata token request failed: {e}")
                raise TransientCloudError(f"metadata token request failed: {e}")
        return self._token

    def get(self, path: str) -> str:
        """
        Fetch a metadata path as text.

        Raises:
            TransientCloudError: On any transport or HTTP error.
        """
        token = self._get_token()
        try:
            response = self._http.get(
                f"/meta-data/{path.lstrip('/')}", headers={TOKEN_HEADER: token}
            )
            response.raise_for_status()
            return response.text
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"HTTP {status} on metadata path {path}")
            raise TransientCloudError(f"metadata HTTP {status} on {path}")
        except httpx.RequestError as e:
            logger.error(f"Metadata request error on {path}: {e}")
            raise TransientCloudError(f"metadata network error on {path}: {e}")

    def get_lines(self, path: str) -> list[str]:
        """Fetch a newline separated metadata listing."""
        return [line.strip() for line in self.get(path).splitlines() if line.strip()]

    def available(self) -> bool:
        """Whether the metadata service answers at all."""
        try:
            self._get_token()
            return True
        except TransientCloudError:
            return False

    # =========================================================================
    # Instance Identity
    # =========================================================================

    def instance_id(self) -> str:
        return self.get("instance-id").strip()

    def instance_type(self) -> str:
        return self.get("instance-type").strip()

    def availability_zone(self) -> str:
        return self.get("placement/availability-zone").strip()

    def region(self) -> str:
        return self.get("placement/region").strip()

    def primary_mac(self) -> str:
        return self.get("mac").strip()

    # =========================================================================
    # Interfaces
    # =========================================================================

    def interface(self, mac: str) -> Interface:
        """Build an Interface from the metadata of one MAC address."""
        prefix = f"network/interfaces/macs/{mac}"
        return Interface(
            id=self.get(f"{prefix}/interface-id").strip(),
            mac=mac,
            device_index=int(self.get(f"{prefix}/device-number").strip()),
            subnet_id=self.get(f"{prefix}/subnet-id").strip(),
            subnet_cidr=self.get(f"{prefix}/subnet-ipv4-cidr-block").strip(),
            vpc_id=self.get(f"{prefix}/vpc-id").strip(),
            security_group_ids=self.get_lines(f"{prefix}/security-group-ids"),
            ipv4s=self.get_lines(f"{prefix}/local-ipv4s"),
            vpc_cidrs=self.get_lines(f"{prefix}/vpc-ipv4-cidr-blocks"),
        )

    def interfaces(self) -> list[Interface]:
        """Every attached interface, sorted by device index."""
        macs = [m.rstrip("/") for m in self.get_lines("network/interfaces/macs/")]
        interfaces = [self.interface(mac) for mac in macs]
        interfaces.sort(key=lambda i: i.device_index)
        return interfaces
