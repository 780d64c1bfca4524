from __future__ import annotations

import ssl
from typing import Optional

from .config import Settings


def build_tls_server_context(
    cert_path: str,
    key_path: str,
    *,
    client_ca_path: str | None = None,
    require_client_auth: bool = False,
) -> ssl.SSLContext:
    if require_client_auth and client_ca_path is None:
        raise ValueError(
            "TLS_CLIENT_CA_PATH must be set when client auth is required"
        )

    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(certfile=cert_path, keyfile=key_path)

    if require_client_auth:
        context.load_verify_locations(cafile=client_ca_path)
        context.verify_mode = ssl.CERT_REQUIRED

    return context


def server_ssl_context(settings: Settings) -> Optional[ssl.SSLContext]:
    if not settings.tls_enabled:
        return None
    if not settings.tls_cert_path or not settings.tls_key_path:
        raise ValueError(
            "TLS_CERT_PATH and TLS_KEY_PATH must be set when TLS is enabled"
        )
    return build_tls_server_context(
        settings.tls_cert_path,
        settings.tls_key_path,
        client_ca_path=settings.tls_client_ca_path,
        require_client_auth=settings.tls_require_client_auth,
    )
