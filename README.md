# megadunder

A self-hosted web toolbox for everyday network troubleshooting. It is a WSGI
application that serves a handful of HTML pages and four JSON endpoints,
which run common diagnostics on the server's behalf:

- **IP tools** (`/api/ip-tools`): `ping`, `traceroute`, `curl` and `telnet`
  against IPv4 or IPv6 hosts.
- **DNS tools** (`/api/dns-tools`): record lookups through `dig`, with
  optional DNSSEC checks covering DS, DNSKEY, RRSIG and validation.
- **Certificate tools** (`/api/cert-tools`): fetch a server's TLS chain,
  describe each certificate, check its CRL distribution points, validate the
  chain and report on the TLS connection.
- **Mail tools** (`/api/mail-tools`): SPF, DMARC, DKIM, MX and SMTP/STARTTLS
  checks for a domain.

Every response gets security headers such as `X-Frame-Options` and
`Content-Security-Policy`. Requests are rate limited to 100 per minute for
each client address and port that the WSGI server reports. A request that
runs longer than 30 seconds is answered with `504 Gateway Timeout`. Each
request is logged with its client, method, path, status and duration.

## Requirements

- Python 3.13 or later.
- The diagnostics call system programs, which must be on `PATH`: `dig`,
  `curl`, `ping`, `ping6`, `traceroute`, `traceroute6`, `telnet`, `timeout`
  and `openssl`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Page templates

The HTML pages are rendered with Jinja2 from a template directory that this
package does **not** ship. The directory must hold `layout.html`,
`index.html`, `ip_tools.html`, `dns_tools.html`, `cert_tools.html` and
`mail_tools.html`. All six are loaded when the server is created, and a
missing or broken template stops it from starting.

Each page renders `layout.html` with these variables:

| Variable | Value                                                          |
|----------|----------------------------------------------------------------|
| `Title`  | `Home`, `IP Tools`, `DNS Tools`, `Certificate Tools`, `Mail Tools` |
| `Active` | `home`, `ip`, `dns`, `cert`, `mail`                            |
| `Year`   | 2024 for the first three pages, the current year for the others |
| `Debug`  | the `DEBUG` setting                                            |

The pages are served at `/`, `/ip-tools`, `/dns-tools`, `/cert-tools` and
`/mail-tools`. Any other path that is not an API endpoint gets a 404.

## Running

```
megadunder --templates /path/to/templates
```

Options:

- `--port`: the port to listen on (default `8080`).
- `--templates`: the template directory (default: a `templates` directory
  next to the installed `megadunder` package, which is not included).

On start, unless `$PWD` ends in a directory named `megadunder`, the command
searches the current directory and its two parents for a `.env` file. It
changes into the first directory that has one. If none has one, it changes
to the directory three levels up. It then loads its configuration and serves
on all interfaces with a threaded server from the standard library. The
command exits with status 1 if the templates cannot be loaded or the port
cannot be opened.

### Configuration

`megadunder.config.load()` reads the first of `.env`, `../../.env` and
`cmd/megadunder/.env` that exists. Variables already set in the environment
take precedence over the file.

| Variable | Meaning                           | Default |
|----------|-----------------------------------|---------|
| `DEBUG`  | passed to the templates as `Debug` | `false` |

`DEBUG` accepts `1`, `t`, `T`, `true`, `TRUE`, `True` and `0`, `f`, `F`,
`false`, `FALSE`, `False`. Any other value falls back to the default.

## API

Every endpoint takes a JSON body via `POST` and answers with JSON. Other
methods get `405 Method not allowed`. A body that is not valid JSON gets
`400 Invalid request body` from the IP and DNS endpoints, and a JSON
`error` from the certificate and mail endpoints. Validation failures such as
a missing name, an unknown record type or an unknown check type come back as
an `error` field with status 200.

```
POST /api/dns-tools
{"recordType": "MX", "name": "example.com", "checkDNSSEC": true}
```

`recordType` is one of `A`, `AAAA`, `CNAME`, `MX`, `TXT`, `NS`, `SOA`,
`PTR`, `DNSKEY`, `DS`, `RRSIG`, `NSEC` or `NSEC3`. For `PTR`, a name that
does not end in `.in-addr.arpa` or `.ip6.arpa` is looked up with `dig -x`.
The response has `output`, and optionally `error` and `dnssecInfo`.

```
POST /api/ip-tools
{"ipVersion": "ipv4", "ipAddress": "example.com", "command": "curl",
 "curlOptions": {"protocol": "https", "port": "443"}}
```

`ipVersion` is `ipv4` or `ipv6`. `command` is one of `curl`, `ping`,
`traceroute` or `telnet`. For telnet the address is `host:port` for IPv4 and
`[host]:port` for IPv6. Hostnames are accepted if they resolve; for IPv6 they
must resolve to at least one IPv6 address. The response has `output` and
optionally `error`.

```
POST /api/cert-tools
{"hostname": "example.com", "port": 443, "checkType": "chain"}
```

`checkType` is one of:

- `chain`: per-certificate details with CRL status, plus `chainStatus`
  (validity, days until the next expiry and an expiry warning).
- `connection`: protocol version, cipher suite, server name and ALPN.
- `validation`: a text report on validity period, key strength and
  signature algorithm.

The handshake verifies the server against the system trust store and needs
TLS 1.2 or later.

```
POST /api/mail-tools
{"domain": "example.com", "checkType": "all", "dkimSelector": "default",
 "smtpOptions": {"port": "25", "checkTLS": true}}
```

`checkType` is one of `all`, `spf`, `dmarc`, `dkim`, `mx` or `smtp`. Each
check fills `spfInfo`, `dmarcInfo`, `dkimInfo`, `mxInfo` or `smtpInfo` with
a `status` (`valid`, `warning` or `error`), a `title`, a `message` and
`details`. `all` runs every check and also writes a text summary to
`output`. The DKIM selector defaults to `default` and may contain only
letters, digits, `-` and `_`. The SMTP port defaults to `25`.

## Embedding

`megadunder.server.Server(port, template_dir, config)` is a WSGI
application that routes pages and API endpoints. `Server.build_app()`
returns it wrapped in the rate limiter, security headers, request logging
and timeout middleware, and `Server.start()` serves that stack forever.
`config` is a `megadunder.config.Config`, for example the one returned by
`megadunder.config.load()`.

The API handlers in `megadunder.handlers` can also be used without the
server. `IPToolsHandler`, `DNSToolsHandler`, `CertToolsHandler` and
`MailToolsHandler` each have a `process(request)` method that takes a
request model and returns a response model with `to_dict()`, and a
`handle(environ, start_response)` WSGI entry point.

## What it does not do

- It ships no HTML templates or static assets. You must provide the page
  templates yourself (see above).
- It has no authentication. Anyone who can reach it can make the server run
  the diagnostic programs, so put it behind something that controls access.