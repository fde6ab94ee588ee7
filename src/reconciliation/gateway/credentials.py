"""Instant-payment credentials: OAuth client pair plus the mutual-TLS certificate.

Certificates are uploaded by the back-office and referenced from the
`pix_certificates_meta` setting by kind:

    pix_cert_p12           password-less PKCS#12 bundle
    pix_cert_pem           certificate chain and private key in one PEM file
    pix_cert_crt/_key      certificate and private key as separate PEM files

Kinds are tried in that order; the first one that yields both a certificate
and a key wins.
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import structlog
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    load_pem_private_key,
    pkcs12,
)

from reconciliation.gateway.port import CredentialsError
from reconciliation.settings.resolver import (
    PIX_CERTIFICATES,
    PIX_CLIENT_ID,
    PIX_CLIENT_SECRET,
    PIX_KEY,
    PixEnvironment,
    SettingsResolver,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PixCredentials:
    client_id: str
    client_secret: str
    certificate_pem: bytes
    private_key_pem: bytes
    pix_key: str | None = None
    environment: PixEnvironment = PixEnvironment.PRODUCTION


# ---------------------------------------------------------------------------
# Certificate storage
# ---------------------------------------------------------------------------
class CertificateStore(ABC):
    @abstractmethod
    def read(self, storage_path: str) -> bytes | None:
        """Raw bytes of an uploaded certificate file, or None when absent."""
        ...


class DirectoryCertificateStore(CertificateStore):
    """Uploaded certificates kept under a local directory."""

    def __init__(self, root: str | os.PathLike | None = None):
        self.root = Path(root or os.environ.get("CERTIFICATES_DIR", "certificates")).resolve()

    def read(self, storage_path: str) -> bytes | None:
        path = (self.root / storage_path).resolve()
        if not path.is_relative_to(self.root):
            raise CredentialsError(f"Certificate path escapes the store: {storage_path}", provider="pix")
        if not path.is_file():
            return None
        return path.read_bytes()


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------
def split_pem_bundle(data: bytes) -> tuple[bytes | None, bytes | None]:
    """Certificate chain and PKCS#8 private key found in a combined PEM file."""
    try:
        certificates = x509.load_pem_x509_certificates(data)
    except ValueError:
        certificates = []
    try:
        key = load_pem_private_key(data, password=None)
    except TypeError as exc:
        raise CredentialsError(f"PEM private key must not be encrypted: {exc}", provider="pix") from exc
    except UnsupportedAlgorithm as exc:
        raise CredentialsError(f"Unsupported PEM private key: {exc}", provider="pix") from exc
    except ValueError:
        key = None

    certificate_pem = b"".join(cert.public_bytes(Encoding.PEM) for cert in certificates) or None
    private_key_pem = None
    if key is not None:
        private_key_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return certificate_pem, private_key_pem


def decode_pkcs12(data: bytes) -> tuple[bytes, bytes]:
    """Certificate chain and PKCS#8 private key from a password-less PKCS#12 bundle."""
    try:
        key, certificate, additional = pkcs12.load_key_and_certificates(data, None)
    except ValueError as exc:
        raise CredentialsError(f"Could not decode PKCS#12 bundle: {exc}", provider="pix") from exc
    if key is None or certificate is None:
        raise CredentialsError("PKCS#12 bundle has no certificate or no private key", provider="pix")

    chain = [certificate, *(additional or [])]
    certificate_pem = b"".join(cert.public_bytes(Encoding.PEM) for cert in chain)
    private_key_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return certificate_pem, private_key_pem


def _storage_path(meta: dict, kind: str) -> str | None:
    entry = meta.get(kind)
    if isinstance(entry, dict):
        return entry.get("storage_path")
    return None


def load_certificate_pair(meta: dict, store: CertificateStore) -> tuple[bytes, bytes]:
    certificate_pem = private_key_pem = None

    path = _storage_path(meta, "pix_cert_p12")
    if path:
        data = store.read(path)
        if data:
            certificate_pem, private_key_pem = decode_pkcs12(data)

    path = _storage_path(meta, "pix_cert_pem")
    if path and not (certificate_pem and private_key_pem):
        data = store.read(path)
        if data:
            certificate_pem, private_key_pem = split_pem_bundle(data)

    crt_path = _storage_path(meta, "pix_cert_crt")
    if crt_path and not certificate_pem:
        certificate_pem = store.read(crt_path)
    key_path = _storage_path(meta, "pix_cert_key")
    if key_path and not private_key_pem:
        private_key_pem = store.read(key_path)

    if not certificate_pem or not private_key_pem:
        raise CredentialsError("mTLS certificate or private key not found", provider="pix")
    return certificate_pem, private_key_pem


def load_pix_credentials(settings: SettingsResolver, store: CertificateStore) -> PixCredentials:
    """Credentials for the environment selected by `ambiente_ativo_pix`."""
    environment = settings.pix_environment
    client_id = settings.pix_credential(PIX_CLIENT_ID)
    client_secret = settings.pix_credential(PIX_CLIENT_SECRET)
    if not client_id or not client_secret:
        raise CredentialsError(
            f"Instant-payment client credentials are not configured for {environment.value}",
            provider="pix",
        )

    certificate_pem, private_key_pem = load_certificate_pair(settings.pix_credential(PIX_CERTIFICATES), store)
    logger.info("Loaded instant-payment credentials", environment=environment.value)
    return PixCredentials(
        client_id=client_id,
        client_secret=client_secret,
        certificate_pem=certificate_pem,
        private_key_pem=private_key_pem,
        pix_key=settings.pix_credential(PIX_KEY),
        environment=environment,
    )
