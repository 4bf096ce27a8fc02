"""WSGI web toolbox for network, DNS, TLS certificate and mail diagnostics."""

__version__ = "0.1.0"