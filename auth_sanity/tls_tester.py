"""Protocol-version compliance tester.

Proves that a server accepts, or refuses, one exact TLS protocol version.
Each probe builds an ``ssl.SSLContext`` whose minimum and maximum version
are both the requested version, with certificate verification on, then
performs the handshake and a minimal ``GET`` through ``http.client``.

Probes never retry.  The handshake itself is the thing under test, and a
server's protocol policy is deterministic, so a single transport error is
taken as conclusive.  Timeouts count as transport errors.

Usage::

    tester = TLSTester(uri="https://auth.example.com/register")
    outcome = tester.probe_must_allow("TLSv1_2")
    outcome.allowed, outcome.detail
"""

import http.client
import logging
import ssl
from typing import Callable, Dict, NamedTuple, Optional, Tuple
from urllib.parse import urlparse

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Default per-probe socket timeout in seconds
DEFAULT_TIMEOUT = 10.0

# Version identifier -> (human label, name of the ssl.TLSVersion member)
PROTOCOL_VERSIONS: Dict[str, Tuple[str, str]] = {
    "SSLv3": ("SSLv3.0", "SSLv3"),
    "TLSv1": ("TLSv1.0", "TLSv1"),
    "TLSv1_1": ("TLSv1.1", "TLSv1_1"),
    "TLSv1_2": ("TLSv1.2", "TLSv1_2"),
    "TLSv1_3": ("TLSv1.3", "TLSv1_3"),
}

# Oldest first; used to find "every version below X"
VERSION_ORDER = ("SSLv3", "TLSv1", "TLSv1_1", "TLSv1_2", "TLSv1_3")

# Connector signature: (host, port, path, context, timeout) -> None, raising on failure
Connector = Callable[[str, int, str, ssl.SSLContext, float], None]


class ProbeOutcome(NamedTuple):
    """Result of a single pinned-version probe.

    For ``probe_must_allow`` ``allowed`` means the connection succeeded; for
    ``probe_must_deny`` it means the server correctly refused it.
    """

    allowed: bool
    detail: str


def human_label(version: str) -> str:
    """``"TLSv1_1" -> "TLSv1.1"``.  Raises ConfigurationError for unknown ids."""
    try:
        return PROTOCOL_VERSIONS[version][0]
    except KeyError:
        raise ConfigurationError(f"Unknown protocol version '{version}'") from None


def versions_below(version: str) -> Tuple[str, ...]:
    """All known versions strictly older than ``version``."""
    human_label(version)
    return VERSION_ORDER[:VERSION_ORDER.index(version)]


def https_get(host: str, port: int, path: str, context: ssl.SSLContext, timeout: float) -> None:
    """Handshake with ``context`` and issue a minimal GET; raise on any failure."""
    conn = http.client.HTTPSConnection(host, port, timeout=timeout, context=context)
    try:
        conn.request("GET", path or "/", headers={"Connection": "close"})
        resp = conn.getresponse()
        resp.read()
    finally:
        conn.close()


class TLSTester:
    """Pinned-version TLS probe for one endpoint.

    Args:
        uri:       Full endpoint URL.  Takes precedence over host/port.
        host:      Host name, used with ``port`` when ``uri`` is not given.
        port:      TCP port.
        timeout:   Per-probe socket timeout in seconds.
        ca_bundle: Path to a CA bundle used for peer verification.
        connector: Replacement for ``https_get``; lets tests simulate
                   handshake outcomes without a TLS server.

    Raises:
        ConfigurationError: if neither ``uri`` nor a complete host/port pair
            is supplied.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        timeout: float = DEFAULT_TIMEOUT,
        ca_bundle: Optional[str] = None,
        connector: Optional[Connector] = None,
    ):
        if uri:
            parsed = urlparse(uri)
            if not parsed.hostname:
                raise ConfigurationError(f"TLSTester cannot find a host in '{uri}'")
            self.host = parsed.hostname
            try:
                self.port = parsed.port or 443
            except ValueError:
                raise ConfigurationError(f"TLSTester got an invalid port in '{uri}'") from None
            self.path = parsed.path or "/"
            if parsed.query:
                self.path += f"?{parsed.query}"
        elif host and port:
            self.host = host
            self.port = int(port)
            self.path = "/"
        else:
            raise ConfigurationError('"uri" or "host"/"port" required by TLSTester')
        self.uri = uri
        self.timeout = timeout
        self.ca_bundle = ca_bundle
        self._connect = connector or https_get

    @classmethod
    def supports_version_pinning(cls, version: Optional[str] = None) -> bool:
        """Capability query: can this interpreter pin the handshake version?

        With ``version`` given, also asks whether the linked OpenSSL was
        built with that protocol.
        """
        if not hasattr(ssl, "TLSVersion"):
            return False
        if version is None:
            return getattr(ssl, "HAS_TLSv1_2", False)
        human_label(version)
        return bool(getattr(ssl, f"HAS_{PROTOCOL_VERSIONS[version][1]}", False))

    # -- Probes --------------------------------------------------------------

    def probe_must_allow(self, version: str) -> ProbeOutcome:
        """Succeeds iff a connection pinned to ``version`` completes."""
        label = human_label(version)
        try:
            self._attempt(version)
        except (OSError, http.client.HTTPException) as exc:
            logger.debug("%s:%s refused %s: %s", self.host, self.port, label, exc)
            return ProbeOutcome(False, f"Caught TLS error: {exc}")
        return ProbeOutcome(True, f"Allowed connection with {label}")

    def probe_must_deny(self, version: str, readable_version: Optional[str] = None) -> ProbeOutcome:
        """Succeeds iff a connection pinned to ``version`` is refused."""
        label = readable_version or human_label(version)
        try:
            self._attempt(version)
        except (OSError, http.client.HTTPException) as exc:
            return ProbeOutcome(
                True,
                f"Correctly denied connection error of type {type(exc).__name__} "
                f"happened, message is {exc}",
            )
        logger.debug("%s:%s accepted %s", self.host, self.port, label)
        return ProbeOutcome(False, f"Should not allow connections with {label}")

    def verify_ensure_tls_1_2(self) -> ProbeOutcome:
        return self.probe_must_allow("TLSv1_2")

    def verify_deny_tls_1_0(self) -> ProbeOutcome:
        return self.probe_must_deny("TLSv1", "TLSv1.0")

    def verify_deny_tls_1_1(self) -> ProbeOutcome:
        return self.probe_must_deny("TLSv1_1", "TLSv1.1")

    def verify_deny_ssl_3(self) -> ProbeOutcome:
        return self.probe_must_deny("SSLv3", "SSLv3.0")

    # -- Internals -----------------------------------------------------------

    def build_context(self, version: str) -> ssl.SSLContext:
        """SSL context pinned to exactly ``version``, verifying the peer."""
        pinned = getattr(ssl.TLSVersion, PROTOCOL_VERSIONS[version][1])
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ctx.check_hostname = True
        ctx.verify_mode = ssl.CERT_REQUIRED
        if self.ca_bundle:
            ctx.load_verify_locations(cafile=self.ca_bundle)
        else:
            ctx.load_default_certs()
        if VERSION_ORDER.index(version) < VERSION_ORDER.index("TLSv1_2"):
            # Let the server, not our own OpenSSL security level, refuse legacy versions
            try:
                ctx.set_ciphers("DEFAULT:@SECLEVEL=0")
            except ssl.SSLError as exc:
                logger.debug("Could not lower security level for %s: %s", version, exc)
        ctx.minimum_version = pinned
        ctx.maximum_version = pinned
        return ctx

    def _attempt(self, version: str) -> None:
        ctx = self.build_context(version)
        self._connect(self.host, self.port, self.path, ctx, self.timeout)
