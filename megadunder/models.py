"""Request and response models of the JSON API."""

from dataclasses import dataclass, field


def _mapping(data, what):
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"cannot decode {type(data).__name__} into {what}")
    return data


def _lookup(data, key):
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return None


def _string(data, key, default=""):
    value = _lookup(data, key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _boolean(data, key, default=False):
    value = _lookup(data, key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"field {key!r} must be a boolean")
    return value


def _omit_empty(payload, **optional):
    payload.update({key: value for key, value in optional.items() if value})
    return payload


@dataclass
class DNSLookupRequest:
    """A DNS lookup request."""

    record_type: str = ""
    name: str = ""
    check_dnssec: bool = False

    @classmethod
    def from_dict(cls, data):
        data = _mapping(data, cls.__name__)
        return cls(
            record_type=_string(data, "recordType"),
            name=_string(data, "name"),
            check_dnssec=_boolean(data, "checkDNSSEC"),
        )


@dataclass
class DNSSECInfo:
    """Results of a DNSSEC check."""

    enabled: bool = False
    status: str = ""
    validated: bool = False
    has_ds: bool = False
    ds_records: str = ""
    signature_info: str = ""
    validation_details: str = ""
    error: str = ""

    def to_dict(self):
        return _omit_empty(
            {
                "enabled": self.enabled,
                "status": self.status,
                "validated": self.validated,
                "hasDS": self.has_ds,
            },
            dsRecords=self.ds_records,
            signatureInfo=self.signature_info,
            validationDetails=self.validation_details,
            error=self.error,
        )


@dataclass
class DNSLookupResponse:
    """The result of a DNS lookup."""

    output: str = ""
    error: str = ""
    dnssec_info: DNSSECInfo | None = None

    def to_dict(self):
        payload = _omit_empty({"output": self.output}, error=self.error)
        if self.dnssec_info is not None:
            payload["dnssecInfo"] = self.dnssec_info.to_dict()
        return payload


@dataclass
class CurlOptions:
    """Options for a curl request."""

    protocol: str = ""
    port: str = ""

    @classmethod
    def from_dict(cls, data):
        data = _mapping(data, cls.__name__)
        return cls(protocol=_string(data, "protocol"), port=_string(data, "port"))


@dataclass
class IPToolsRequest:
    """A request to run a network tool against an address."""

    ip_version: str = ""
    ip_address: str = ""
    command: str = ""
    curl_options: CurlOptions = field(default_factory=CurlOptions)

    @classmethod
    def from_dict(cls, data):
        data = _mapping(data, cls.__name__)
        return cls(
            ip_version=_string(data, "ipVersion"),
            ip_address=_string(data, "ipAddress"),
            command=_string(data, "command"),
            curl_options=CurlOptions.from_dict(_lookup(data, "curlOptions")),
        )


@dataclass
class IPToolsResponse:
    """Output of a network tool."""

    output: str = ""
    error: str = ""

    def to_dict(self):
        return _omit_empty({"output": self.output}, error=self.error)


@dataclass
class SMTPOptions:
    """Options for the SMTP check."""

    port: str = ""
    check_tls: bool = False

    @classmethod
    def from_dict(cls, data):
        data = _mapping(data, cls.__name__)
        return cls(port=_string(data, "port"), check_tls=_boolean(data, "checkTLS"))


@dataclass
class MailToolsRequest:
    """A request for mail configuration checks."""

    domain: str = ""
    check_type: str = ""
    dkim_selector: str = ""
    smtp_options: SMTPOptions = field(default_factory=SMTPOptions)

    @classmethod
    def from_dict(cls, data):
        data = _mapping(data, cls.__name__)
        return cls(
            domain=_string(data, "domain"),
            check_type=_string(data, "checkType"),
            dkim_selector=_string(data, "dkimSelector"),
            smtp_options=SMTPOptions.from_dict(_lookup(data, "smtpOptions")),
        )


@dataclass
class CheckInfo:
    """Status and details of a single check."""

    status: str = ""
    title: str = ""
    message: str = ""
    details: list[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "status": self.status,
            "title": self.title,
            "message": self.message,
            "details": list(self.details) or None,
        }


@dataclass
class MailToolsResponse:
    """Results of the mail configuration checks."""

    output: str = ""
    error: str = ""
    spf_info: CheckInfo | None = None
    dmarc_info: CheckInfo | None = None
    dkim_info: CheckInfo | None = None
    mx_info: CheckInfo | None = None
    smtp_info: CheckInfo | None = None

    def to_dict(self):
        payload = _omit_empty({"output": self.output}, error=self.error)
        checks = {
            "spfInfo": self.spf_info,
            "dmarcInfo": self.dmarc_info,
            "dkimInfo": self.dkim_info,
            "mxInfo": self.mx_info,
            "smtpInfo": self.smtp_info,
        }
        payload.update({key: info.to_dict() for key, info in checks.items() if info is not None})
        return payload