"""
tls_ca_sync — Kubernetes controller that publishes the CA chain of TLS Secrets.

Watches TLS Secrets carrying an opt-in annotation, extracts the certificate
authority blocks from their tls.crt chain and keeps a sibling ConfigMap
<secret>-ca with data["ca.crt"] in sync.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
