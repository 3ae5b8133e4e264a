from agency_core.remote.client import AuthorizationClient
from agency_core.remote.http import HttpAuthorizationClient

__all__ = ["AuthorizationClient", "HttpAuthorizationClient"]
