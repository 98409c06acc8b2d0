import abc
import enum
import typing
import uuid
from dataclasses import dataclass, field

# Interfaces of the identity-protocol side of the door: a session yields the
# keys presented by visitors, an authenticator runs the challenge-response
# exchange for one of them. The handshake itself happens behind these.


@dataclass(frozen=True)
class PresentationEvent:
    """A visitor's device presented its public key over the session.

    The context is opaque and only handed back to the Authenticator.
    """

    npub: str
    context: typing.Any = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))


class EventSequence(metaclass=abc.ABCMeta):
    """Pull-based sequence of presentation events of one session.

    The sequence is finite and cannot be restarted once exhausted; only a new
    session produces a new sequence.
    """

    @abc.abstractmethod
    async def next(self) -> typing.Optional[PresentationEvent]:
        """Wait for the next event; None once the session has ended.

        Raises EventDecodeError when a single event could not be read; the
        sequence remains usable.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release the session; the sequence must not be used afterwards"""


@dataclass(frozen=True)
class SessionHandle:
    """Shareable handshake reference and the events of that session"""

    reference: str
    events: EventSequence


class IdentityProtocolSession(metaclass=abc.ABCMeta):
    """Creates handshake sessions visitors can connect to"""

    @abc.abstractmethod
    async def create(self, label: str, visibility: str) -> SessionHandle:
        """Start a new session. Raises SessionCreationError on failure."""
        raise NotImplementedError


class AuthResult(enum.Enum):
    APPROVED = "approved"
    DECLINED = "declined"


class Authenticator(metaclass=abc.ABCMeta):
    """Challenge-response authentication of a presented key"""

    @abc.abstractmethod
    async def authenticate(
        self, npub: str, scopes: typing.Sequence[str], context: typing.Any = None
    ) -> AuthResult:
        """Raises AuthenticationError on transport or protocol failure"""
        raise NotImplementedError
