"""Certificate inspection: TLS chain retrieval, validation and CRL checks."""

import socket
import ssl
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from http import HTTPStatus
from itertools import pairwise

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID, SignatureAlgorithmOID

from megadunder.web import json_response, read_json, text_error

CONNECT_TIMEOUT = 10.0
CRL_TIMEOUT = 10.0
_MAX_DAYS = 2**31 - 1

_TLS_VERSIONS = {
    0x0301: "TLS 1.0",
    0x0302: "TLS 1.1",
    0x0303: "TLS 1.2",
    0x0304: "TLS 1.3",
}

_PROTOCOL_CODES = {
    "TLSv1": 0x0301,
    "TLSv1.1": 0x0302,
    "TLSv1.2": 0x0303,
    "TLSv1.3": 0x0304,
}

_CRL_REASONS = {
    0: "unspecified",
    1: "keyCompromise",
    2: "cACompromise",
    3: "affiliationChanged",
    4: "superseded",
    5: "cessationOfOperation",
    6: "certificateHold",
    8: "removeFromCRL",
    9: "privilegeWithdrawn",
    10: "aACompromise",
}

_REASON_CODES = {
    x509.ReasonFlags.unspecified: 0,
    x509.ReasonFlags.key_compromise: 1,
    x509.ReasonFlags.ca_compromise: 2,
    x509.ReasonFlags.affiliation_changed: 3,
    x509.ReasonFlags.superseded: 4,
    x509.ReasonFlags.cessation_of_operation: 5,
    x509.ReasonFlags.certificate_hold: 6,
    x509.ReasonFlags.remove_from_crl: 8,
    x509.ReasonFlags.privilege_withdrawn: 9,
    x509.ReasonFlags.aa_compromise: 10,
}

_KEY_USAGE_NAMES = (
    ("digital_signature", "Digital Signature"),
    ("key_encipherment", "Key Encipherment"),
    ("key_cert_sign", "Certificate Sign"),
    ("crl_sign", "CRL Sign"),
)

_EXT_KEY_USAGE_NAMES = {
    ExtendedKeyUsageOID.SERVER_AUTH: "Server Authentication",
    ExtendedKeyUsageOID.CLIENT_AUTH: "Client Authentication",
    ExtendedKeyUsageOID.CODE_SIGNING: "Code Signing",
    ExtendedKeyUsageOID.EMAIL_PROTECTION: "Email Protection",
    ExtendedKeyUsageOID.TIME_STAMPING: "Time Stamping",
}

_SIGNATURE_NAMES = {
    SignatureAlgorithmOID.RSA_WITH_MD5: "MD5-RSA",
    SignatureAlgorithmOID.RSA_WITH_SHA1: "SHA1-RSA",
    SignatureAlgorithmOID.RSA_WITH_SHA256: "SHA256-RSA",
    SignatureAlgorithmOID.RSA_WITH_SHA384: "SHA384-RSA",
    SignatureAlgorithmOID.RSA_WITH_SHA512: "SHA512-RSA",
    SignatureAlgorithmOID.DSA_WITH_SHA1: "DSA-SHA1",
    SignatureAlgorithmOID.DSA_WITH_SHA256: "DSA-SHA256",
    SignatureAlgorithmOID.ECDSA_WITH_SHA1: "ECDSA-SHA1",
    SignatureAlgorithmOID.ECDSA_WITH_SHA256: "ECDSA-SHA256",
    SignatureAlgorithmOID.ECDSA_WITH_SHA384: "ECDSA-SHA384",
    SignatureAlgorithmOID.ECDSA_WITH_SHA512: "ECDSA-SHA512",
    SignatureAlgorithmOID.ED25519: "Ed25519",
}


def _lookup(data, key):
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return None


def _string(data, key):
    value = _lookup(data, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _integer(data, key):
    value = _lookup(data, key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer")
    return value


def _rfc3339(moment):
    if moment.microsecond:
        return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def _extension(cert, kind):
    try:
        return cert.extensions.get_extension_for_class(kind).value
    except (x509.ExtensionNotFound, ValueError):
        return None


def _public_key(cert):
    try:
        return cert.public_key()
    except (ValueError, UnsupportedAlgorithm):
        return None


def _signature_algorithm(cert):
    oid = cert.signature_algorithm_oid
    if oid == SignatureAlgorithmOID.RSASSA_PSS:
        try:
            digest = cert.signature_hash_algorithm
        except UnsupportedAlgorithm:
            digest = None
        if digest is not None and digest.name in {"sha256", "sha384", "sha512"}:
            return f"{digest.name.upper()}-RSAPSS"
        return oid.dotted_string
    return _SIGNATURE_NAMES.get(oid, oid.dotted_string)


@dataclass
class CertRequest:
    """A request to inspect the certificates of a TLS endpoint."""

    hostname: str = ""
    port: int = 0
    check_type: str = ""

    @classmethod
    def from_dict(cls, data):
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"cannot decode {type(data).__name__} into {cls.__name__}")
        return cls(
            hostname=_string(data, "hostname"),
            port=_integer(data, "port"),
            check_type=_string(data, "checkType"),
        )


@dataclass
class CertInfo:
    """Details of a single certificate."""

    subject: str
    issuer: str
    valid_from: datetime
    valid_to: datetime
    serial_number: str
    version: int
    key_usage: list[str] = field(default_factory=list)
    sans: list[str] = field(default_factory=list)
    signature_alg: str = ""
    public_key_type: str = ""
    public_key_bits: int = 0
    crl_status: str = ""
    crl_details: str = ""

    def to_dict(self):
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "validFrom": _rfc3339(self.valid_from),
            "validTo": _rfc3339(self.valid_to),
            "serialNumber": self.serial_number,
            "version": self.version,
            "keyUsage": list(self.key_usage),
            "sans": list(self.sans),
            "signatureAlg": self.signature_alg,
            "publicKeyType": self.public_key_type,
            "publicKeyBits": self.public_key_bits,
            "crlStatus": self.crl_status,
            "crlDetails": self.crl_details,
        }


@dataclass
class ChainStatus:
    """Outcome of chain validation and expiry checks."""

    is_valid: bool = False
    error_message: str = ""
    expires_in: int = 0
    next_expiry: str = ""
    expiry_warning: str = ""

    def to_dict(self):
        payload = {"isValid": self.is_valid}
        if self.error_message:
            payload["errorMessage"] = self.error_message
        payload.update(
            expiresIn=self.expires_in,
            nextExpiry=self.next_expiry,
            expiryWarning=self.expiry_warning,
        )
        return payload


@dataclass
class CertResponse:
    """Response of the certificate tools API."""

    output: str = ""
    error: str = ""
    chain: list[CertInfo] = field(default_factory=list)
    chain_status: ChainStatus = field(default_factory=ChainStatus)

    def to_dict(self):
        payload = {}
        if self.output:
            payload["output"] = self.output
        if self.error:
            payload["error"] = self.error
        if self.chain:
            payload["chain"] = [info.to_dict() for info in self.chain]
        payload["chainStatus"] = self.chain_status.to_dict()
        return payload


@dataclass
class TLSConnection:
    """What a completed TLS handshake revealed."""

    certs: list[x509.Certificate]
    version: int = 0
    cipher_suite: str = ""
    server_name: str = ""
    alpn_protocol: str = ""
    verified: bool = False


def fetch_chain(hostname, port):
    """Connect with a verified TLS 1.2+ handshake and return the peer's chain."""
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    with socket.create_connection((hostname, port), timeout=CONNECT_TIMEOUT) as raw:
        with context.wrap_socket(raw, server_hostname=hostname) as tls:
            chain = tls.get_unverified_chain() or []
            certs = [x509.load_der_x509_certificate(bytes(der)) for der in chain]
            cipher = tls.cipher()
            return TLSConnection(
                certs=certs,
                version=_PROTOCOL_CODES.get(tls.version() or "", 0),
                cipher_suite=cipher[0] if cipher else "",
                server_name=hostname,
                alpn_protocol=tls.selected_alpn_protocol() or "",
                verified=True,
            )


def get_cert_info(cert):
    """Summarise a certificate for the API."""
    usage = []
    key_usage = _extension(cert, x509.KeyUsage)
    if key_usage is not None:
        usage.extend(label for attr, label in _KEY_USAGE_NAMES if getattr(key_usage, attr))
    ext_usage = _extension(cert, x509.ExtendedKeyUsage)
    if ext_usage is not None:
        usage.extend(_EXT_KEY_USAGE_NAMES[oid] for oid in ext_usage if oid in _EXT_KEY_USAGE_NAMES)

    alt_names = _extension(cert, x509.SubjectAlternativeName)
    sans = list(alt_names.get_values_for_type(x509.DNSName)) if alt_names is not None else []

    return CertInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        valid_from=cert.not_valid_before_utc,
        valid_to=cert.not_valid_after_utc,
        serial_number=str(cert.serial_number),
        version=cert.version.value + 1,
        key_usage=usage,
        sans=sans,
        signature_alg=_signature_algorithm(cert),
        public_key_type=public_key_type(cert),
        public_key_bits=public_key_bits(cert),
    )


def public_key_type(cert):
    """Name the kind of public key a certificate carries."""
    key = _public_key(cert)
    match key:
        case rsa.RSAPublicKey():
            return "RSA"
        case ec.EllipticCurvePublicKey():
            return "ECDSA"
        case ed25519.Ed25519PublicKey():
            return "Ed25519"
    return f"Unknown ({type(key).__name__})"


def public_key_bits(cert):
    """Size in bits of a certificate's public key, or 0 when unknown."""
    key = _public_key(cert)
    match key:
        case rsa.RSAPublicKey():
            return key.key_size
        case ec.EllipticCurvePublicKey():
            return key.curve.key_size
        case ed25519.Ed25519PublicKey():
            return 256
    return 0


def tls_version_name(version):
    """Readable name of a TLS protocol version code."""
    return _TLS_VERSIONS.get(int(version), f"Unknown (0x{int(version):04X})")


def validate_certificates(certs, now=None):
    """Report validity period, key strength and signature algorithm of each cert."""
    now = now or datetime.now(UTC)
    lines = ["Certificate Validation Results:\n\n"]
    for number, cert in enumerate(certs, start=1):
        lines.append(f"Certificate {number}:\n")
        if now < cert.not_valid_before_utc:
            lines.append("❌ Certificate not yet valid\n")
        elif now > cert.not_valid_after_utc:
            lines.append("❌ Certificate has expired\n")
        else:
            lines.append("✅ Certificate is within validity period\n")
            days_left = (cert.not_valid_after_utc - now).total_seconds() / 3600 / 24
            if days_left < 30:
                lines.append(f"⚠️ Warning: Certificate expires in {days_left:.0f} days\n")

        if public_key_bits(cert) < 2048:
            lines.append("❌ Weak key strength (< 2048 bits)\n")
        else:
            lines.append("✅ Adequate key strength\n")

        if "SHA1" in _signature_algorithm(cert):
            lines.append("❌ Weak signature algorithm (SHA1)\n")
        else:
            lines.append("✅ Strong signature algorithm\n")
        lines.append("\n")
    return "".join(lines)


def _distribution_points(cert):
    points = _extension(cert, x509.CRLDistributionPoints)
    if points is None:
        return []
    return [
        name.value
        for point in points
        for name in point.full_name or ()
        if isinstance(name, x509.UniformResourceIdentifier)
    ]


def check_certificate_revocation(cert):
    """Check every CRL distribution point of cert; return (status, details)."""
    urls = _distribution_points(cert)
    if not urls:
        return "Unknown", "No CRL distribution points found"
    results = [f"CRL {url}: {check_single_crl(cert, url)[1]}" for url in urls]
    return "Checked", "\n".join(results)


def _parse_crl(data):
    try:
        return x509.load_der_x509_crl(data)
    except ValueError:
        if b"-----BEGIN" not in data:
            raise
    return x509.load_pem_x509_crl(data)


def check_single_crl(cert, crl_url):
    """Download one CRL and look cert up in it; return (status, detail)."""
    try:
        response = urllib.request.urlopen(crl_url, timeout=CRL_TIMEOUT)
    except (OSError, ValueError) as exc:
        return "Error", f"Failed to download CRL: {exc}"
    with response:
        try:
            data = response.read()
        except OSError as exc:
            return "Error", f"Failed to read CRL: {exc}"

    try:
        crl = _parse_crl(data)
    except ValueError as exc:
        return "Error", f"Failed to parse CRL: {exc}"

    next_update = crl.next_update_utc
    if next_update is None or next_update < datetime.now(UTC):
        return "Warning", "CRL is expired"

    revoked = crl.get_revoked_certificate_by_serial_number(cert.serial_number)
    if revoked is None:
        return "Valid", "Certificate is not revoked"

    reason = "unspecified"
    try:
        flag = revoked.extensions.get_extension_for_class(x509.CRLReason).value.reason
    except (x509.ExtensionNotFound, ValueError):
        flag = None
    if flag is not None:
        reason = parse_crl_reason(_REASON_CODES.get(flag, -1))
    revoked_on = _rfc3339(revoked.revocation_date_utc)
    return "Revoked", f"Certificate was revoked on {revoked_on}. Reason: {reason}"


def parse_crl_reason(reason):
    """Readable name of a CRL reason code."""
    return _CRL_REASONS.get(reason, "unknown")


def _verify_path(certs, now):
    if len(certs) < 2:
        raise ValueError("x509: certificate signed by unknown authority")
    for cert in certs:
        if now < cert.not_valid_before_utc or now > cert.not_valid_after_utc:
            raise ValueError("x509: certificate has expired or is not yet valid")
    for child, parent in pairwise(certs):
        try:
            child.verify_directly_issued_by(parent)
        except (ValueError, TypeError, InvalidSignature, UnsupportedAlgorithm) as exc:
            raise ValueError("x509: certificate signed by unknown authority") from exc


def validate_chain(certs, now=None):
    """Verify the chain against its own last certificate and check expiry."""
    now = now or datetime.now(UTC)
    if not certs:
        return ChainStatus(is_valid=False, error_message="No certificates in chain", expires_in=365)

    status = ChainStatus(is_valid=True)
    try:
        _verify_path(certs, now)
    except ValueError as exc:
        status.is_valid = False
        status.error_message = f"Chain validation failed: {exc}"

    min_days = _MAX_DAYS
    next_to_expire = ""
    for index, cert in enumerate(certs):
        if now > cert.not_valid_before_utc and now > cert.not_valid_after_utc:
            status.is_valid = False
            status.error_message = f"Certificate {index + 1} has expired"
            continue
        if now < cert.not_valid_before_utc:
            status.is_valid = False
            status.error_message = f"Certificate {index + 1} is not yet valid"
            continue
        days = int((cert.not_valid_after_utc - now).total_seconds() / 3600 / 24)
        if days < min_days:
            min_days = days
            next_to_expire = format_cert_name(cert, index, len(certs))

    status.expires_in = min_days
    status.next_expiry = next_to_expire
    if min_days <= 0:
        status.expiry_warning = "Certificate has expired!"
    elif min_days <= 7:
        status.expiry_warning = f"Critical: Certificate expires in {min_days} days!"
    elif min_days <= 30:
        status.expiry_warning = f"Warning: Certificate expires in {min_days} days"
    elif min_days <= 90:
        status.expiry_warning = f"Notice: Certificate expires in {min_days} days"
    return status


def _attribute(name, oid, last=False):
    values = [attr.value for attr in name.get_attributes_for_oid(oid)]
    if not values:
        return ""
    return str(values[-1] if last else values[0])


def format_cert_name(cert, index, total):
    """Readable label for the certificate at index in a chain of total."""
    if index == 0:
        common_name = _attribute(cert.subject, NameOID.COMMON_NAME, last=True)
        if common_name:
            return f"Server Certificate ({common_name})"
        alt_names = _extension(cert, x509.SubjectAlternativeName)
        dns_names = alt_names.get_values_for_type(x509.DNSName) if alt_names is not None else []
        if dns_names:
            return f"Server Certificate ({dns_names[0]})"
        return "Server Certificate"

    label = "Root CA" if index == total - 1 else f"Intermediate CA {index}"
    organization = _attribute(cert.subject, NameOID.ORGANIZATION_NAME)
    if organization:
        return f"{label} ({organization})"
    return label


@dataclass
class CertToolsHandler:
    """Serves the certificate tools API."""

    fetcher: Callable[[str, int], TLSConnection] = fetch_chain

    def process(self, request):
        """Run the requested check and build the response."""
        if not request.hostname:
            return CertResponse(error="Hostname is required")
        if not 1 <= request.port <= 65535:
            return CertResponse(error="Port must be between 1 and 65535")

        try:
            connection = self.fetcher(request.hostname, request.port)
        except (OSError, ValueError) as exc:
            return CertResponse(error=f"Connection failed: {exc}")

        certs = list(connection.certs)
        if not certs:
            return CertResponse(error="No certificates found in the chain")

        match request.check_type:
            case "chain":
                chain = []
                for cert in certs:
                    info = get_cert_info(cert)
                    info.crl_status, info.crl_details = check_certificate_revocation(cert)
                    chain.append(info)
                return CertResponse(chain=chain, chain_status=validate_chain(certs))
            case "connection":
                details = (
                    "\nTLS Connection Details:\n"
                    f"Protocol Version: {tls_version_name(connection.version)}\n"
                    f"Cipher Suite: {connection.cipher_suite}\n"
                    f"Server Name: {connection.server_name}\n"
                    f"ALPN Protocol: {connection.alpn_protocol}\n"
                    f"Certificate Transparency: {str(connection.verified).lower()}\n"
                )
                return CertResponse(output=details)
            case "validation":
                return CertResponse(output=validate_certificates(certs))
        return CertResponse(error=f"Invalid check type: {request.check_type}")

    def handle(self, environ, start_response):
        """WSGI entry point for POST /api/cert-tools."""
        if environ.get("REQUEST_METHOD") != "POST":
            return text_error(start_response, "Method not allowed", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            request = CertRequest.from_dict(read_json(environ))
        except ValueError as exc:
            response = CertResponse(error=f"Invalid request format: {exc}")
            return json_response(start_response, response.to_dict())
        return json_response(start_response, self.process(request).to_dict())