[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "megadunder"
version = "0.1.0"
description = "A small WSGI web toolbox for network, DNS, TLS certificate and mail diagnostics"
requires-python = ">=3.13"
keywords = [
    "network",
    "dns",
    "dnssec",
    "tls",
    "certificates",
    "crl",
    "spf",
    "dmarc",
    "dkim",
    "smtp",
    "wsgi",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking :: Monitoring",
]
dependencies = [
    "python-dotenv",
    "cryptography",
    "dnspython",
    "jinja2",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
megadunder = "megadunder.main:main"

[tool.hatch.build.targets.wheel]
packages = ["megadunder"]

[tool.pytest.ini_options]
addopts = "-ra"
