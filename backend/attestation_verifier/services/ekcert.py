"""
EK Certificate Verification

Builds a trust store from manufacturer certificate directories and checks
that a device's endorsement key certificate chains to one of the roots.

Directory layout, one subdirectory per manufacturer:

    <cert_dir>/<manufacturer>/RootCA/<cert>.{der,cer,crt,pem}
    <cert_dir>/<manufacturer>/IntermediateCA/<cert>.{der,cer,crt,pem}

IntermediateCA is optional, not every manufacturer publishes intermediates.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.x509.oid import NameOID

from attestation_verifier.core.exceptions import InvalidInput, TrustStoreConstructionError
from attestation_verifier.core.logging import get_logger

from .models import CertSummary, EKCertVerificationResult

logger = get_logger(__name__)

ROOT_CA_DIR = "RootCA"
INTERMEDIATE_CA_DIR = "IntermediateCA"

DER_ONLY_EXTENSIONS = {".der"}
DER_OR_PEM_EXTENSIONS = {".crt", ".cer", ".pem"}

# Longest chain we will try to build, leaf and root included
MAX_CHAIN_LENGTH = 8


def parse_certificates(data: bytes, allow_pem: bool = True) -> List[x509.Certificate]:
    """
    Parse DER, or one or more PEM certificates.

    Raises:
        ValueError: If the data holds no parseable certificate
    """
    try:
        return [x509.load_der_x509_certificate(data)]
    except ValueError as der_error:
        if not allow_pem or b"-----BEGIN CERTIFICATE-----" not in data:
            raise der_error
    return x509.load_pem_x509_certificates(data)


def _read_cert_dir(path: Path) -> List[x509.Certificate]:
    certs = []
    for entry in sorted(path.iterdir()):
        if entry.is_dir():
            continue
        suffix = entry.suffix.lower()
        if suffix not in DER_ONLY_EXTENSIONS | DER_OR_PEM_EXTENSIONS:
            continue
        try:
            data = entry.read_bytes()
        except OSError as e:
            raise TrustStoreConstructionError(f"{entry}: read failed: {e}")
        try:
            certs.extend(
                parse_certificates(data, allow_pem=suffix in DER_OR_PEM_EXTENSIONS)
            )
        except ValueError as e:
            raise TrustStoreConstructionError(f"{entry.name} parse failed: {e}")
    return certs


class TrustStore:
    """Trusted roots and usable intermediates. Read-only after construction."""

    def __init__(
        self,
        roots: Iterable[x509.Certificate],
        intermediates: Iterable[x509.Certificate] = (),
    ):
        self.roots = list(roots)
        self.intermediates = list(intermediates)
        self._roots_by_subject = self._index(self.roots)
        self._intermediates_by_subject = self._index(self.intermediates)

    @staticmethod
    def _index(certs: List[x509.Certificate]) -> Dict[x509.Name, List[x509.Certificate]]:
        index: Dict[x509.Name, List[x509.Certificate]] = {}
        for cert in certs:
            index.setdefault(cert.subject, []).append(cert)
        return index

    def root_candidates(self, issuer: x509.Name) -> List[x509.Certificate]:
        return self._roots_by_subject.get(issuer, [])

    def intermediate_candidates(self, issuer: x509.Name) -> List[x509.Certificate]:
        return self._intermediates_by_subject.get(issuer, [])

    @classmethod
    def from_directories(cls, cert_dirs: Iterable[str]) -> "TrustStore":
        """
        Scan manufacturer directories. Fail-fast: an unreadable top-level
        directory, a manufacturer without RootCA, or a malformed certificate
        aborts construction. An unreadable or missing IntermediateCA
        directory means no intermediates for that manufacturer.

        Raises:
            TrustStoreConstructionError
        """
        roots: List[x509.Certificate] = []
        intermediates: List[x509.Certificate] = []

        for cert_dir in cert_dirs:
            base = Path(cert_dir)
            try:
                manufacturers = sorted(p for p in base.iterdir() if p.is_dir())
            except OSError as e:
                raise TrustStoreConstructionError(f"cannot read {base}: {e}")

            for manufacturer in manufacturers:
                root_dir = manufacturer / ROOT_CA_DIR
                try:
                    roots.extend(_read_cert_dir(root_dir))
                except OSError as e:
                    raise TrustStoreConstructionError(
                        f"cannot read {root_dir}: {e}"
                    )

                intermediate_dir = manufacturer / INTERMEDIATE_CA_DIR
                try:
                    intermediates.extend(_read_cert_dir(intermediate_dir))
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(
                        "Skipping unreadable intermediate directory",
                        path=str(intermediate_dir),
                        error=str(e),
                    )

        logger.info(
            "Built EK trust store",
            roots=len(roots),
            intermediates=len(intermediates),
        )
        return cls(roots, intermediates)


class ChainBuildError(Exception):
    pass


class EKCertVerifier:
    """
    Verifies EK certificates against a TrustStore.

    Key usage and extended key usage are not checked: manufacturers apply
    them inconsistently, and the chain only establishes provenance.
    """

    def __init__(self, trust_store: TrustStore):
        self.trust_store = trust_store

    @classmethod
    def from_directories(cls, cert_dirs: Iterable[str]) -> "EKCertVerifier":
        return cls(TrustStore.from_directories(cert_dirs))

    def verify_ek_cert(
        self, cert_bytes: bytes, now: Optional[datetime] = None
    ) -> EKCertVerificationResult:
        """
        Verify the properties and provenance of an EK certificate.

        Raises:
            InvalidInput: If the certificate cannot be parsed at all
        """
        try:
            cert = parse_certificates(cert_bytes)[0]
        except ValueError as e:
            raise InvalidInput(f"EK certificate parse failed: {e}")
        return self.verify_certificate(cert, now)

    def verify_certificate(
        self, cert: x509.Certificate, now: Optional[datetime] = None
    ) -> EKCertVerificationResult:
        now = now or datetime.now(timezone.utc)
        try:
            chain = self._build_chain(cert, now)
        except ChainBuildError as e:
            logger.warning(
                "EK certificate verification failed",
                serial=str(cert.serial_number),
                error=str(e),
            )
            return EKCertVerificationResult(
                succeeded=False,
                chain_verified=False,
                verification_error=str(e),
            )

        return EKCertVerificationResult(
            succeeded=True,
            chain_verified=True,
            chain=[_summarize(c) for c in chain],
        )

    def _build_chain(self, leaf: x509.Certificate, now: datetime) -> List[x509.Certificate]:
        if not _valid_at(leaf, now):
            raise ChainBuildError(
                "certificate has expired or is not yet valid: "
                f"valid from {leaf.not_valid_before_utc.isoformat()} "
                f"to {leaf.not_valid_after_utc.isoformat()}"
            )

        # A configured root presented as the leaf is its own chain
        for root in self.trust_store.root_candidates(leaf.subject):
            if root == leaf:
                return [leaf]

        chain = self._extend([leaf], now)
        if chain is None:
            raise ChainBuildError("certificate signed by unknown authority")
        return chain

    def _extend(
        self, chain: List[x509.Certificate], now: datetime
    ) -> Optional[List[x509.Certificate]]:
        current = chain[-1]

        for root in self.trust_store.root_candidates(current.issuer):
            if _valid_at(root, now) and _issued_by(current, root):
                return chain + [root]

        if len(chain) + 1 >= MAX_CHAIN_LENGTH:
            return None

        for candidate in self.trust_store.intermediate_candidates(current.issuer):
            if candidate in chain:
                continue
            if not (_valid_at(candidate, now) and _is_ca(candidate)):
                continue
            if not _issued_by(current, candidate):
                continue
            found = self._extend(chain + [candidate], now)
            if found is not None:
                return found
        return None


def _valid_at(cert: x509.Certificate, now: datetime) -> bool:
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


def _is_ca(cert: x509.Certificate) -> bool:
    """CA unless a parseable basicConstraints extension says otherwise."""
    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return True
    except ValueError:
        # Malformed extensions are common in manufacturer certificates
        return True
    return constraints.value.ca


def _issued_by(cert: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        cert.verify_directly_issued_by(issuer)
    except (InvalidSignature, ValueError, TypeError, UnsupportedAlgorithm):
        return False
    return True


def _name_attribute(name: x509.Name, oid) -> List[str]:
    return [str(attr.value) for attr in name.get_attributes_for_oid(oid)]


def _summarize(cert: x509.Certificate) -> CertSummary:
    common_names = _name_attribute(cert.issuer, NameOID.COMMON_NAME)
    return CertSummary(
        issuer_cn=common_names[0] if common_names else "",
        issuer_org=" ".join(_name_attribute(cert.issuer, NameOID.ORGANIZATION_NAME)),
        serial=str(cert.serial_number),
    )
