"""HTTP clients for the identity bridge.

The bridge is a sidecar service that speaks the Nostr Connect handshake on
behalf of the door: it opens sessions visitors can connect to, relays their
key presentations, and runs the challenge-response exchange for a key.
"""

import typing
from urllib.parse import quote

from keydoor import keydoor_logging, tornado_requests
from keydoor.common.exception import AuthenticationError, EventDecodeError, SessionCreationError
from keydoor.config import DEFAULT_TIMEOUT
from keydoor.identity import (
    Authenticator,
    AuthResult,
    EventSequence,
    IdentityProtocolSession,
    PresentationEvent,
    SessionHandle,
)

logger = keydoor_logging.init_logging("bridge")

# statuses of the event endpoint meaning the session is over
SESSION_GONE = (404, 410)


def _body_text(response: tornado_requests.TornadoResponse) -> str:
    body = response.body
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body or ""


class BridgeEventSequence(EventSequence):
    def __init__(self, bridge_url: str, session_id: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.bridge_url = bridge_url
        self.session_id = session_id
        self.timeout = timeout
        self._ended = False

    @property
    def _session_url(self) -> str:
        return f"{self.bridge_url}/sessions/{quote(self.session_id, safe='')}"

    async def next(self) -> typing.Optional[PresentationEvent]:
        if self._ended:
            return None

        response = await tornado_requests.request("GET", f"{self._session_url}/events/next", timeout=self.timeout)

        if response.status_code == 204 or response.status_code in SESSION_GONE:
            self._ended = True
            return None

        # bridge unreachable: the session is lost, a new one has to be created
        if response.status_code == 599:
            logger.warning("Lost connection to the bridge in session %s: %s", self.session_id, _body_text(response))
            self._ended = True
            return None

        if response.status_code != 200:
            raise EventDecodeError(f"Event request failed with status {response.status_code}: {_body_text(response)}")

        try:
            payload = response.json()
            npub = payload["npub"]
        except (ValueError, KeyError, TypeError) as e:
            raise EventDecodeError(f"Malformed presentation event: {e}") from e

        if not isinstance(npub, str) or not npub:
            raise EventDecodeError("Presentation event carries no public key")

        return PresentationEvent(npub=npub, context=payload.get("context"))

    async def close(self) -> None:
        self._ended = True
        response = await tornado_requests.request("DELETE", self._session_url, timeout=self.timeout)
        if response.status_code not in (200, 204) and response.status_code not in SESSION_GONE:
            logger.warning("Could not close session %s: status %s", self.session_id, response.status_code)


class BridgeSession(IdentityProtocolSession):
    def __init__(self, bridge_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.bridge_url = bridge_url.rstrip("/")
        self.timeout = timeout

    async def create(self, label: str, visibility: str) -> SessionHandle:
        response = await tornado_requests.request(
            "POST",
            f"{self.bridge_url}/sessions",
            data={"label": label, "visibility": visibility},
            timeout=self.timeout,
        )

        if response.status_code != 200:
            raise SessionCreationError(
                f"Session request failed with status {response.status_code}: {_body_text(response)}"
            )

        try:
            payload = response.json()
            session_id = str(payload["session_id"])
            reference = str(payload["reference"])
        except (ValueError, KeyError, TypeError) as e:
            raise SessionCreationError(f"Malformed session response: {e}") from e

        return SessionHandle(reference, BridgeEventSequence(self.bridge_url, session_id, self.timeout))


class BridgeAuthenticator(Authenticator):
    def __init__(self, bridge_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.bridge_url = bridge_url.rstrip("/")
        self.timeout = timeout

    async def authenticate(
        self, npub: str, scopes: typing.Sequence[str], context: typing.Any = None
    ) -> AuthResult:
        response = await tornado_requests.request(
            "POST",
            f"{self.bridge_url}/authenticate",
            data={"npub": npub, "scopes": list(scopes), "context": context},
            timeout=self.timeout,
        )

        if response.status_code != 200:
            raise AuthenticationError(
                f"Authentication request failed with status {response.status_code}: {_body_text(response)}"
            )

        try:
            approved = response.json()["approved"]
        except (ValueError, KeyError, TypeError) as e:
            raise AuthenticationError(f"Malformed authentication response: {e}") from e

        if not isinstance(approved, bool):
            raise AuthenticationError("Authentication response carries no verdict")

        return AuthResult.APPROVED if approved else AuthResult.DECLINED
