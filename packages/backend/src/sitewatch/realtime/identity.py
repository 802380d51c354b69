"""Per-session client identity.

Learn: Every bridge command carries a requester_id so bridges (and the
response table) can tell which session asked. It is an opaque correlation
label — never used for authorization.

The id is created lazily on first use and lives as long as the session
storage does. The default storage is process-scoped, so one running
SiteWatch process is one "session".
"""

import uuid
from collections.abc import MutableMapping

CLIENT_ID_KEY = "sitewatch_client_id"

_session_storage: dict[str, str] = {}


def get_client_id(storage: MutableMapping[str, str] | None = None) -> str:
    """Return this session's client id, generating it on first call."""
    store = _session_storage if storage is None else storage
    client_id = store.get(CLIENT_ID_KEY)
    if not client_id:
        client_id = str(uuid.uuid4())
        store[CLIENT_ID_KEY] = client_id
    return client_id
