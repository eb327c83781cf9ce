"""
Test support utilities for ratchet tests.

This module provides helpers that don't fit as pytest fixtures but are
useful across multiple test files: a throwaway certificate authority for
the TLS tests and a builder for legacy (v0) tracking tables.
"""

from __future__ import annotations

import socket
import ssl
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ratchet.core.hashing import compute_checksum

SERVER_NAME = "db.ratchet.internal"


def make_cert(
    common_name: str,
    *,
    issuer: tuple[x509.Certificate, ec.EllipticCurvePrivateKey] | None = None,
    ca: bool = False,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """
    Create a certificate and its key.

    Self-signed when ``issuer`` is None, otherwise signed by the given
    ``(certificate, key)`` pair.
    """
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    issuer_name, signing_key = (issuer[0].subject, issuer[1]) if issuer else (subject, key)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
        .sign(signing_key, hashes.SHA256())
    )
    return cert, key


def der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


def write_pem(path: Path, *certs: x509.Certificate) -> Path:
    path.write_bytes(b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certs))
    return path


def write_key(path: Path, key: ec.EllipticCurvePrivateKey) -> Path:
    path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return path


@dataclass
class PKI:
    """
    A root CA, an intermediate CA, a server leaf and a client key pair.

    ``ca_path``, ``cert_path`` and ``key_path`` are PEM files on disk ready
    to hand to a store.
    """

    root: tuple[x509.Certificate, ec.EllipticCurvePrivateKey]
    intermediate: tuple[x509.Certificate, ec.EllipticCurvePrivateKey]
    leaf: x509.Certificate
    ca_path: Path
    cert_path: Path
    key_path: Path
    server_name: str = SERVER_NAME

    @classmethod
    def build(cls, directory: Path) -> PKI:
        root = make_cert("Ratchet Test Root", ca=True)
        intermediate = make_cert("Ratchet Test Intermediate", issuer=root, ca=True)
        leaf, _ = make_cert(SERVER_NAME, issuer=intermediate)
        client, client_key = make_cert("ratchet-client", issuer=root)
        return cls(
            root=root,
            intermediate=intermediate,
            leaf=leaf,
            ca_path=write_pem(directory / "ca.pem", root[0]),
            cert_path=write_pem(directory / "client-cert.pem", client),
            key_path=write_key(directory / "client-key.pem", client_key),
        )

    def chain(self) -> list[bytes]:
        """DER chain a correctly configured server presents."""
        return [der(self.leaf), der(self.intermediate[0])]


# =============================================================================
# Loopback TLS server
# =============================================================================


@contextmanager
def tls_server(
    directory: Path,
    leaf: tuple[x509.Certificate, ec.EllipticCurvePrivateKey],
    *intermediates: x509.Certificate,
) -> Iterator[tuple[str, int]]:
    """
    Serve one TLS connection on 127.0.0.1 presenting ``leaf`` + ``intermediates``.

    Yields the ``(host, port)`` to connect to. The server completes its side
    of the handshake and then waits for the client to hang up; handshake
    failures on the server side are ignored, the client side is what the
    tests assert on.
    """
    chain_path = write_pem(directory / "server-chain.pem", leaf[0], *intermediates)
    key_path = write_key(directory / "server-key.pem", leaf[1])
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile=str(chain_path), keyfile=str(key_path))

    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(10)

    def serve() -> None:
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        conn.settimeout(10)
        try:
            with context.wrap_socket(conn, server_side=True) as tls:
                tls.recv(1)
        except OSError:
            pass
        finally:
            conn.close()

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    try:
        yield listener.getsockname()[:2]
    finally:
        listener.close()
        thread.join(timeout=10)


def tls_connect(
    context: ssl.SSLContext, address: tuple[str, int], server_name: str
) -> ssl.SSLSocket:
    """Open a client connection and run the handshake through ``context``."""
    raw = socket.create_connection(address, timeout=10)
    try:
        return context.wrap_socket(raw, server_hostname=server_name)
    except BaseException:
        raw.close()
        raise


# =============================================================================
# Legacy schema
# =============================================================================


LEGACY_SQLITE_DDL = [
    """
    CREATE TABLE meta (
        filename TEXT UNIQUE NOT NULL,
        md5 TEXT UNIQUE NOT NULL,
        createdat TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE metacheckpoints (
        filename TEXT NOT NULL,
        idx INTEGER NOT NULL,
        md5 TEXT NOT NULL,
        createdat TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (filename, idx)
    )
    """,
]


def install_legacy_schema(
    store, migrations: dict[str, str], *, with_version_table: bool = True
) -> None:
    """
    Create v0 tracking tables on an open SQLite store.

    ``meta`` keeps its md5 uniqueness constraint and has no content column,
    ``metacheckpoints`` has no content column. With ``with_version_table``
    an empty ``metaversion`` table is created as well; without it the store
    looks like one that predates the version table entirely. ``migrations``
    maps filename to the text whose checksum is recorded.
    """
    for ddl in LEGACY_SQLITE_DDL:
        store.exec(ddl).close()
    if with_version_table:
        store.exec("CREATE TABLE metaversion (version INTEGER NOT NULL)").close()
    for filename, content in migrations.items():
        store.exec(
            "INSERT INTO meta (filename, md5) VALUES (?, ?)",
            filename,
            compute_checksum(content),
        ).close()


def column_names(store, table: str) -> list[str]:
    cursor = store.exec(f"PRAGMA table_info({table})")
    try:
        return [row[1] for row in cursor.fetchall()]
    finally:
        cursor.close()


def scalar(store, sql: str, *args):
    cursor = store.exec(sql, *args)
    try:
        row = cursor.fetchone()
    finally:
        cursor.close()
    return row[0] if row else None
