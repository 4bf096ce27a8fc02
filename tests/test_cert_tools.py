import io
import json
from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from megadunder.handlers.cert_tools import (
    CertRequest,
    CertResponse,
    CertToolsHandler,
    TLSConnection,
    check_certificate_revocation,
    check_single_crl,
    format_cert_name,
    get_cert_info,
    parse_crl_reason,
    public_key_bits,
    public_key_type,
    tls_version_name,
    validate_certificates,
    validate_chain,
)

NOW = datetime.now(UTC).replace(microsecond=0)
CA_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
LEAF_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_name(cn=None, org=None):
    attrs = []
    if org:
        attrs.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org))
    if cn:
        attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, cn))
    return x509.Name(attrs)


def key_usage(**flags):
    names = (
        "digital_signature",
        "content_commitment",
        "key_encipherment",
        "data_encipherment",
        "key_agreement",
        "key_cert_sign",
        "crl_sign",
        "encipher_only",
        "decipher_only",
    )
    return x509.KeyUsage(**{name: flags.get(name, False) for name in names})


def build_cert(
    subject,
    key,
    issuer=None,
    issuer_key=None,
    not_before=None,
    not_after=None,
    sans=(),
    usage=None,
    eku=(),
    crl_urls=(),
):
    issuer = issuer or subject
    issuer_key = issuer_key or key
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or NOW - timedelta(days=1))
        .not_valid_after(not_after or NOW + timedelta(days=365))
    )
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in sans]), critical=False
        )
    if usage is not None:
        builder = builder.add_extension(usage, critical=True)
    if eku:
        builder = builder.add_extension(x509.ExtendedKeyUsage(list(eku)), critical=False)
    if crl_urls:
        points = [
            x509.DistributionPoint(
                full_name=[x509.UniformResourceIdentifier(url)],
                relative_name=None,
                reasons=None,
                crl_issuer=None,
            )
            for url in crl_urls
        ]
        builder = builder.add_extension(x509.CRLDistributionPoints(points), critical=False)
    algorithm = None if isinstance(issuer_key, ed25519.Ed25519PrivateKey) else hashes.SHA256()
    return builder.sign(issuer_key, algorithm)


CA = build_cert(make_name("Example Root", "Example Org"), CA_KEY)


def make_leaf(days=20, **kwargs):
    return build_cert(
        make_name("leaf.example.com", "Example Org"),
        LEAF_KEY,
        issuer=CA.subject,
        issuer_key=CA_KEY,
        not_after=NOW + timedelta(days=days),
        **kwargs,
    )


def write_crl(path, revoked=(), next_update=None, last_update=None, pem=False):
    builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(CA.subject)
        .last_update(last_update or NOW - timedelta(days=1))
        .next_update(next_update or NOW + timedelta(days=7))
    )
    for serial in revoked:
        entry = (
            x509.RevokedCertificateBuilder()
            .serial_number(serial)
            .revocation_date(NOW - timedelta(hours=1))
            .add_extension(x509.CRLReason(x509.ReasonFlags.key_compromise), critical=False)
            .build()
        )
        builder = builder.add_revoked_certificate(entry)
    crl = builder.sign(CA_KEY, hashes.SHA256())
    encoding = serialization.Encoding.PEM if pem else serialization.Encoding.DER
    path.write_bytes(crl.public_bytes(encoding))
    return path.as_uri()


def fake_fetcher(certs, version=0x0304):
    def fetch(hostname, port):
        return TLSConnection(
            certs=certs,
            version=version,
            cipher_suite="TLS_AES_128_GCM_SHA256",
            server_name=hostname,
            alpn_protocol="",
            verified=True,
        )

    return fetch


def call(handler, method, body=b""):
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = dict(headers)

    environ = {
        "REQUEST_METHOD": method,
        "CONTENT_LENGTH": str(len(body)),
        "wsgi.input": io.BytesIO(body),
    }
    chunks = handler.handle(environ, start_response)
    return captured, b"".join(chunks)


@pytest.mark.parametrize(
    ("code", "expected"),
    [(0x0301, "TLS 1.0"), (0x0302, "TLS 1.1"), (0x0303, "TLS 1.2"), (0x0304, "TLS 1.3")],
)
def test_tls_version_names(code, expected):
    assert tls_version_name(code) == expected


def test_tls_version_unknown_is_hex():
    assert tls_version_name(0x1234) == "Unknown (0x1234)"


@pytest.mark.parametrize(
    ("code", "expected"),
    [(0, "unspecified"), (1, "keyCompromise"), (6, "certificateHold"), (10, "aACompromise"), (7, "unknown")],
)
def test_parse_crl_reason(code, expected):
    assert parse_crl_reason(code) == expected


def test_rsa_key_type_and_bits():
    leaf = make_leaf()
    assert public_key_type(leaf) == "RSA"
    assert public_key_bits(leaf) == 2048


def test_ecdsa_key_type_and_bits():
    key = ec.generate_private_key(ec.SECP256R1())
    cert = build_cert(make_name("ec.example.com"), key)
    assert public_key_type(cert) == "ECDSA"
    assert public_key_bits(cert) == 256
    assert get_cert_info(cert).signature_alg == "ECDSA-SHA256"


def test_ed25519_key_type_and_bits():
    key = ed25519.Ed25519PrivateKey.generate()
    cert = build_cert(make_name("ed.example.com"), key)
    assert public_key_type(cert) == "Ed25519"
    assert public_key_bits(cert) == 256
    assert get_cert_info(cert).signature_alg == "Ed25519"


def test_get_cert_info_fields():
    leaf = make_leaf(
        sans=("example.com", "www.example.com"),
        usage=key_usage(digital_signature=True, key_cert_sign=True),
        eku=(ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH),
    )
    info = get_cert_info(leaf)
    assert info.subject == "CN=leaf.example.com,O=Example Org"
    assert info.issuer == CA.subject.rfc4514_string()
    assert info.key_usage == [
        "Digital Signature",
        "Certificate Sign",
        "Server Authentication",
        "Client Authentication",
    ]
    assert info.sans == ["example.com", "www.example.com"]
    assert info.version == 3
    assert info.serial_number == str(leaf.serial_number)
    assert info.signature_alg == "SHA256-RSA"
    assert info.public_key_type == "RSA"


def test_get_cert_info_without_extensions_has_empty_lists():
    payload = get_cert_info(make_leaf()).to_dict()
    assert payload["keyUsage"] == []
    assert payload["sans"] == []
    assert datetime.fromisoformat(payload["validTo"]) == NOW + timedelta(days=20)


def test_validate_certificates_good_cert():
    report = validate_certificates([make_leaf(days=200)], NOW)
    assert report.startswith("Certificate Validation Results:\n\nCertificate 1:\n")
    assert "✅ Certificate is within validity period\n" in report
    assert "✅ Adequate key strength\n" in report
    assert "✅ Strong signature algorithm\n" in report
    assert "⚠️" not in report


def test_validate_certificates_near_expiry_warns():
    report = validate_certificates([make_leaf(days=10)], NOW)
    assert "⚠️ Warning: Certificate expires in 10 days\n" in report


def test_validate_certificates_expired_and_weak():
    key = ec.generate_private_key(ec.SECP256R1())
    expired = build_cert(
        make_name("old.example.com"),
        key,
        not_before=NOW - timedelta(days=30),
        not_after=NOW - timedelta(days=1),
    )
    report = validate_certificates([CA, expired], NOW)
    assert "Certificate 2:\n❌ Certificate has expired\n" in report
    assert "❌ Weak key strength (< 2048 bits)\n" in report


def test_validate_certificates_not_yet_valid():
    future = make_leaf(days=100, not_before=NOW + timedelta(days=5))
    assert "❌ Certificate not yet valid\n" in validate_certificates([future], NOW)


def test_validate_chain_empty():
    status = validate_chain([], NOW)
    assert status.is_valid is False
    assert status.error_message == "No certificates in chain"
    assert status.expires_in == 365


def test_validate_chain_valid():
    status = validate_chain([make_leaf(days=20), CA], NOW)
    assert status.is_valid is True
    assert status.error_message == ""
    assert status.expires_in == 20
    assert status.next_expiry == "Server Certificate (leaf.example.com)"
    assert status.expiry_warning == "Warning: Certificate expires in 20 days"


@pytest.mark.parametrize(
    ("days", "warning"),
    [
        (5, "Critical: Certificate expires in 5 days!"),
        (60, "Notice: Certificate expires in 60 days"),
        (200, ""),
    ],
)
def test_validate_chain_expiry_warnings(days, warning):
    status = validate_chain([make_leaf(days=days), CA], NOW)
    assert status.expiry_warning == warning
    assert status.expires_in == days


def test_validate_chain_single_certificate_has_no_trust_anchor():
    status = validate_chain([CA], NOW)
    assert status.is_valid is False
    assert status.error_message.startswith("Chain validation failed: ")
    assert status.next_expiry == "Server Certificate (Example Root)"


def test_validate_chain_wrong_issuer():
    other_key = ec.generate_private_key(ec.SECP256R1())
    other_ca = build_cert(make_name("Other Root", "Other Org"), other_key)
    status = validate_chain([make_leaf(), other_ca], NOW)
    assert status.is_valid is False
    assert status.error_message.startswith("Chain validation failed: ")


def test_validate_chain_expired_root():
    expired_ca = build_cert(
        CA.subject,
        CA_KEY,
        not_before=NOW - timedelta(days=30),
        not_after=NOW - timedelta(days=1),
    )
    status = validate_chain([make_leaf(days=20), expired_ca], NOW)
    assert status.is_valid is False
    assert status.error_message == "Certificate 2 has expired"
    assert status.expires_in == 20


def test_format_cert_name_variants():
    leaf = make_leaf()
    no_cn = build_cert(make_name(org="Example Org"), LEAF_KEY, sans=("alt.example.com",))
    bare = build_cert(make_name("Bare Root"), CA_KEY)
    assert format_cert_name(leaf, 0, 3) == "Server Certificate (leaf.example.com)"
    assert format_cert_name(no_cn, 0, 3) == "Server Certificate (alt.example.com)"
    assert format_cert_name(CA, 1, 3) == "Intermediate CA 1 (Example Org)"
    assert format_cert_name(CA, 2, 3) == "Root CA (Example Org)"
    assert format_cert_name(bare, 1, 2) == "Root CA"


def test_revocation_without_distribution_points():
    assert check_certificate_revocation(make_leaf()) == ("Unknown", "No CRL distribution points found")


def test_single_crl_not_revoked(tmp_path):
    url = write_crl(tmp_path / "empty.crl")
    assert check_single_crl(make_leaf(), url) == ("Valid", "Certificate is not revoked")


def test_single_crl_revoked(tmp_path):
    leaf = make_leaf()
    url = write_crl(tmp_path / "revoked.crl", revoked=[leaf.serial_number])
    status, detail = check_single_crl(leaf, url)
    assert status == "Revoked"
    assert detail.startswith("Certificate was revoked on ")
    assert detail.endswith("Reason: keyCompromise")


def test_single_crl_pem_encoded(tmp_path):
    leaf = make_leaf()
    url = write_crl(tmp_path / "revoked.pem", revoked=[leaf.serial_number], pem=True)
    assert check_single_crl(leaf, url)[0] == "Revoked"


def test_single_crl_expired(tmp_path):
    url = write_crl(
        tmp_path / "old.crl",
        last_update=NOW - timedelta(days=10),
        next_update=NOW - timedelta(days=1),
    )
    assert check_single_crl(make_leaf(), url) == ("Warning", "CRL is expired")


def test_single_crl_garbage(tmp_path):
    path = tmp_path / "garbage.crl"
    path.write_bytes(b"not a crl")
    status, detail = check_single_crl(make_leaf(), path.as_uri())
    assert status == "Error"
    assert detail.startswith("Failed to parse CRL: ")


def test_single_crl_download_failure(tmp_path):
    status, detail = check_single_crl(make_leaf(), (tmp_path / "missing.crl").as_uri())
    assert status == "Error"
    assert detail.startswith("Failed to download CRL: ")


def test_revocation_with_distribution_point(tmp_path):
    url = write_crl(tmp_path / "list.crl")
    leaf = make_leaf(crl_urls=(url,))
    assert check_certificate_revocation(leaf) == ("Checked", f"CRL {url}: Certificate is not revoked")


def test_cert_request_from_dict():
    request = CertRequest.from_dict({"hostname": "example.com", "port": 443, "checkType": "chain"})
    assert request == CertRequest(hostname="example.com", port=443, check_type="chain")


@pytest.mark.parametrize("payload", [{"port": "443"}, {"port": True}, {"hostname": 5}, [1, 2]])
def test_cert_request_rejects_wrong_types(payload):
    with pytest.raises(ValueError):
        CertRequest.from_dict(payload)


def test_empty_response_keeps_chain_status():
    assert CertResponse().to_dict() == {
        "chainStatus": {"isValid": False, "expiresIn": 0, "nextExpiry": "", "expiryWarning": ""}
    }


def test_process_requires_hostname():
    handler = CertToolsHandler(fetcher=fake_fetcher([CA]))
    assert handler.process(CertRequest(port=443)).error == "Hostname is required"


@pytest.mark.parametrize("port", [0, 65536, -1])
def test_process_rejects_bad_port(port):
    handler = CertToolsHandler(fetcher=fake_fetcher([CA]))
    response = handler.process(CertRequest(hostname="example.com", port=port))
    assert response.error == "Port must be between 1 and 65535"


def test_process_connection_failure():
    def refuse(hostname, port):
        raise ConnectionRefusedError("connection refused")

    response = CertToolsHandler(fetcher=refuse).process(CertRequest("example.com", 443, "chain"))
    assert response.error == "Connection failed: connection refused"


def test_process_without_certificates():
    response = CertToolsHandler(fetcher=fake_fetcher([])).process(CertRequest("example.com", 443, "chain"))
    assert response.error == "No certificates found in the chain"


def test_process_invalid_check_type():
    response = CertToolsHandler(fetcher=fake_fetcher([CA])).process(CertRequest("example.com", 443, "bogus"))
    assert response.error == "Invalid check type: bogus"


def test_process_connection_details():
    handler = CertToolsHandler(fetcher=fake_fetcher([CA], version=0x0304))
    output = handler.process(CertRequest("example.com", 443, "connection")).output
    assert output.startswith("\nTLS Connection Details:\n")
    assert "Protocol Version: TLS 1.3\n" in output
    assert "Server Name: example.com\n" in output
    assert output.endswith("Certificate Transparency: true\n")


def test_process_validation_report():
    handler = CertToolsHandler(fetcher=fake_fetcher([make_leaf(days=200), CA]))
    output = handler.process(CertRequest("example.com", 443, "validation")).output
    assert output.startswith("Certificate Validation Results:\n\n")
    assert "Certificate 2:\n" in output


def test_process_chain():
    leaf = make_leaf(days=200)
    handler = CertToolsHandler(fetcher=fake_fetcher([leaf, CA]))
    response = handler.process(CertRequest("example.com", 443, "chain"))
    assert [info.serial_number for info in response.chain] == [str(leaf.serial_number), str(CA.serial_number)]
    assert response.chain[0].crl_status == "Unknown"
    assert response.chain_status.is_valid is True
    payload = response.to_dict()
    assert payload["chain"][0]["subject"] == "CN=leaf.example.com,O=Example Org"
    assert "error" not in payload


def test_handle_rejects_get():
    captured, body = call(CertToolsHandler(fetcher=fake_fetcher([CA])), "GET")
    assert captured["status"].startswith("405")
    assert body == b"Method not allowed\n"


def test_handle_invalid_json():
    captured, body = call(CertToolsHandler(fetcher=fake_fetcher([CA])), "POST", b"{not json")
    assert captured["status"].startswith("200")
    assert captured["headers"]["Content-Type"] == "application/json"
    assert json.loads(body)["error"].startswith("Invalid request format: ")


def test_handle_missing_hostname():
    request = json.dumps({"port": 443, "checkType": "chain"}).encode()
    _, body = call(CertToolsHandler(fetcher=fake_fetcher([CA])), "POST", request)
    assert json.loads(body)["error"] == "Hostname is required"


def test_handle_connection_check():
    request = json.dumps({"hostname": "example.com", "port": 443, "checkType": "connection"}).encode()
    _, body = call(CertToolsHandler(fetcher=fake_fetcher([CA], version=0x0303)), "POST", request)
    assert "Protocol Version: TLS 1.2\n" in json.loads(body)["output"]