"""Mutual-TLS profile with an explicit post-handshake verification hook.

Some managed database providers issue server certificates whose chain or
subject alternative names fail the default validation. Instead of turning
verification off, the profile replaces it with a check it performs itself
after every handshake:

1. the leaf certificate's subject common name must equal the configured
   server name;
2. the leaf must chain to a certificate in the configured CA bundle, using
   the other certificates the server presented as intermediates. Every hop
   is checked for issuer linkage, signature and validity window.

The :class:`ssl.SSLContext` handed to the driver disables only the built-in
checks that the hook replaces, and installs a socket class whose
``do_handshake`` runs the hook. A rejected peer aborts the connection with
:class:`~ratchet.core.errors.TLSVerificationError`.

Tags:
    tls, mutual-tls, x509, cryptography, ratchet
"""

from __future__ import annotations

import ssl
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.x509.oid import NameOID

from ratchet.core.errors import DatabaseConnectionError, TLSVerificationError
from ratchet.core.logging import get_logger

from .types import TLSMaterial

logger = get_logger(__name__)

MAX_CHAIN_DEPTH = 10


class VerifyingSSLSocket(ssl.SSLSocket):
    """SSL socket that runs the owning profile's hook after the handshake."""

    def do_handshake(self, block: bool = False) -> None:
        super().do_handshake(block)
        profile = getattr(self.context, "profile", None)
        if profile is None:
            return
        try:
            profile.verify_connection(peer_chain(self))
        except TLSVerificationError:
            self.close()
            raise


class VerifyingSSLContext(ssl.SSLContext):
    """SSL context carrying the :class:`TLSProfile` its sockets report to."""

    sslsocket_class = VerifyingSSLSocket
    profile: TLSProfile | None = None


def peer_chain(sock: ssl.SSLSocket) -> list[bytes]:
    """DER certificates presented by the peer, leaf first.

    Python 3.13+ exposes the presented chain as
    ``SSLSocket.get_unverified_chain()``. On 3.10-3.12 the same chain is
    only reachable through the underlying ``_ssl`` socket object, whose
    certificates are converted from PEM here.
    """
    get_chain = getattr(sock, "get_unverified_chain", None)
    if get_chain is not None:
        chain = get_chain()
        if chain:
            return list(chain)

    get_raw_chain = getattr(getattr(sock, "_sslobj", None), "get_unverified_chain", None)
    if get_raw_chain is not None:
        chain = get_raw_chain()
        if chain:
            return [ssl.PEM_cert_to_DER_cert(cert.public_bytes()) for cert in chain]

    leaf = sock.getpeercert(binary_form=True)
    return [leaf] if leaf else []


def load_roots(ca_path: str | Path) -> list[x509.Certificate]:
    """Load every certificate in a PEM bundle into a trust pool."""
    try:
        pem = Path(ca_path).read_bytes()
    except OSError as e:
        raise DatabaseConnectionError(
            f"read server ca cert file {ca_path}", retryable=False, cause=e
        ) from e
    try:
        roots = x509.load_pem_x509_certificates(pem)
    except ValueError as e:
        raise DatabaseConnectionError(
            f"failed to append certificates from {ca_path}", retryable=False, cause=e
        ) from e
    if not roots:
        raise DatabaseConnectionError(
            f"failed to append certificates from {ca_path}", retryable=False
        )
    return roots


def common_name(cert: x509.Certificate) -> str:
    """Subject common name of ``cert``, or an empty string."""
    attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attrs:
        return ""
    value = attrs[0].value
    return value.decode("utf-8") if isinstance(value, bytes) else value


def _is_ca(cert: x509.Certificate) -> bool:
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return False


def _find_issuer(
    cert: x509.Certificate, candidates: Sequence[x509.Certificate]
) -> x509.Certificate | None:
    for candidate in candidates:
        if candidate.subject != cert.issuer:
            continue
        try:
            cert.verify_directly_issued_by(candidate)
        except (ValueError, TypeError, InvalidSignature):
            continue
        return candidate
    return None


def _check_validity(cert: x509.Certificate, now: datetime) -> None:
    if now < cert.not_valid_before_utc or now > cert.not_valid_after_utc:
        raise TLSVerificationError(
            f"certificate {cert.subject.rfc4514_string()} is expired or not yet valid"
        )


class TLSProfile:
    """
    Client TLS configuration for one server name.

    Reads the CA bundle and client key pair eagerly so that unreadable or
    malformed files fail at construction, before any connection attempt.
    """

    def __init__(self, material: TLSMaterial):
        self.server_name = material.server_name
        self._material = material
        self._roots = load_roots(material.ca_path)
        self._context = self._build_context()

    @property
    def ssl_context(self) -> ssl.SSLContext:
        return self._context

    @property
    def roots(self) -> list[x509.Certificate]:
        return list(self._roots)

    def _build_context(self) -> VerifyingSSLContext:
        try:
            context = VerifyingSSLContext(ssl.PROTOCOL_TLS_CLIENT)
            # Chain and hostname checks are performed by verify_connection.
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        except ssl.SSLError as e:
            raise DatabaseConnectionError(
                "register tls profile", retryable=False, cause=e
            ) from e
        try:
            context.load_cert_chain(
                certfile=self._material.cert_path,
                keyfile=self._material.key_path,
            )
        except (OSError, ssl.SSLError) as e:
            raise DatabaseConnectionError(
                "load x509 key pair", retryable=False, cause=e
            ) from e
        context.profile = self
        return context

    def verify_connection(
        self,
        chain: Sequence[bytes],
        *,
        now: datetime | None = None,
    ) -> None:
        """Accept or reject the certificates a server presented.

        Args:
            chain: DER-encoded certificates, leaf first.
            now: Point in time for validity checks (defaults to current UTC).

        Raises:
            TLSVerificationError: On a name mismatch or an unverifiable chain.
        """
        if not chain:
            raise TLSVerificationError("server presented no certificate")
        try:
            certs = [x509.load_der_x509_certificate(der) for der in chain]
        except ValueError as e:
            raise TLSVerificationError("malformed peer certificate", cause=e) from e

        leaf, intermediates = certs[0], certs[1:]
        name = common_name(leaf)
        if name != self.server_name:
            raise TLSVerificationError(
                f"invalid certificate name {name!r}, expected {self.server_name!r}"
            )
        self._verify_chain(leaf, intermediates, now or datetime.now(timezone.utc))
        logger.debug("tls.peer_verified", server_name=self.server_name, depth=len(certs))

    def _verify_chain(
        self,
        leaf: x509.Certificate,
        intermediates: list[x509.Certificate],
        now: datetime,
    ) -> None:
        pool = [cert for cert in intermediates if _is_ca(cert)]
        current = leaf
        for _ in range(MAX_CHAIN_DEPTH):
            _check_validity(current, now)
            root = _find_issuer(current, self._roots)
            if root is not None:
                _check_validity(root, now)
                return
            issuer = _find_issuer(current, pool)
            if issuer is None:
                raise TLSVerificationError(
                    f"certificate {current.subject.rfc4514_string()} "
                    "signed by unknown authority"
                )
            pool.remove(issuer)
            current = issuer
        raise TLSVerificationError("certificate chain exceeds maximum depth")


__all__ = [
    "TLSProfile",
    "VerifyingSSLContext",
    "VerifyingSSLSocket",
    "common_name",
    "load_roots",
    "peer_chain",
]
