"""Builds OAuth 2.0 dynamic client registration requests (RFC 7591).

The request body is assembled from the instance state bag so a run
registers exactly the client the user configured: public clients use
``token_endpoint_auth_method: none``, confidential clients
``client_secret_basic``.
"""

from typing import Any, Dict, List, Union

GRANT_TYPES = ["authorization_code"]


def make_registration_request(
    client_name: str,
    initiate_login_uri: str,
    redirect_uris: Union[str, List[str]],
    scope: str,
    confidential_client: bool = False,
) -> Dict[str, Any]:
    """Generate a registration request body.

    A single ``redirect_uris`` string is wrapped in a list; the protocol
    always sends an array.
    """
    if isinstance(redirect_uris, str):
        redirect_uris = [redirect_uris]
    return {
        "client_name": client_name,
        "initiate_login_uri": initiate_login_uri,
        "redirect_uris": list(redirect_uris),
        "grant_types": list(GRANT_TYPES),
        "scope": scope,
        "token_endpoint_auth_method": auth_method(confidential_client),
    }


def auth_method(confidential_client: bool) -> str:
    return "client_secret_basic" if confidential_client else "none"
