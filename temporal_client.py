"""Temporal client factory.

Creates connections to Temporal using settings from the environment. With
an API key the client connects to Temporal Cloud over TLS; without one it
connects in plaintext, which suits a local dev server.
"""

import os
from pathlib import Path
from typing import Union

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client
from temporalio.service import TLSConfig


DEFAULT_ENDPOINT = "localhost:7233"


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: host:port (default "localhost:7233")
    - TEMPORAL_NAMESPACE: Namespace (default "default")
    - TEMPORAL_API_KEY: Temporal Cloud API key; enables TLS
    - TEMPORAL_CERT_PATH: Client certificate chain for mTLS (optional)

    Returns:
        Connected Temporal client

    Raises:
        ValueError: If TEMPORAL_CERT_PATH is set without TEMPORAL_API_KEY
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT", DEFAULT_ENDPOINT)
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")

    if cert_path and not api_key:
        raise ValueError(
            "TEMPORAL_CERT_PATH is set but TEMPORAL_API_KEY is not. "
            "Set the API key to connect to Temporal Cloud"
        )

    if not api_key:
        return await Client.connect(endpoint, namespace=namespace)

    tls_config: Union[bool, TLSConfig] = True
    if cert_path:
        # One PEM file holding the certificate chain and its private key
        pem = Path(cert_path).read_bytes()
        tls_config = TLSConfig(client_cert=pem, client_private_key=pem)

    return await Client.connect(
        target_host=endpoint,
        namespace=namespace,
        tls=tls_config,
        api_key=api_key,
    )
