from relay_client.auth import CredentialProvider, StaticCredentials
from relay_client.client import RelayClient
from relay_client.config import RelayClientSettings

__all__ = ["CredentialProvider", "RelayClient", "RelayClientSettings", "StaticCredentials"]
