import asyncio
import logging
import typing

from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from keydoor import keydoor_logging
from keydoor.actuator import ActuatorController, HttpActuatorClient
from keydoor.allowlist_store import AllowListStore
from keydoor.bridge import BridgeAuthenticator, BridgeSession
from keydoor.common import states
from keydoor.common.exception import (
    AuthenticationError,
    ConfigurationError,
    EventDecodeError,
    SessionCreationError,
    StoreError,
)
from keydoor.common.retry import SessionBackoff
from keydoor.config import DEFAULT_AUTH_SCOPES, DEFAULT_SESSION_RETRY_INTERVAL, DoorConfig
from keydoor.db import keydoor_db
from keydoor.decision import AuthorizationDecision, DenyReason, UnlockOutcome, UnlockStatus
from keydoor.identity import Authenticator, AuthResult, IdentityProtocolSession, PresentationEvent, SessionHandle

logger = keydoor_logging.init_logging("authorization_loop")


class AuthorizationLoop:
    """Daemon granting door access to presented identity keys.

    Sessions are created against the identity bridge one at a time and their
    events are evaluated strictly in order: allow list lookup, then
    challenge-response, then a single unlock command. A failed session
    creation is retried after a fixed delay; an exhausted session is replaced
    immediately. Everything short of cancellation is recovered from.
    """

    state: int
    handle: typing.Optional[SessionHandle]

    def __init__(
        self,
        sessions: IdentityProtocolSession,
        authenticator: Authenticator,
        store: AllowListStore,
        actuator: ActuatorController,
        door_id: int,
        session_label: str = "keydoor",
        session_visibility: str = "private",
        scopes: typing.Sequence[str] = tuple(DEFAULT_AUTH_SCOPES),
        retry_interval: float = DEFAULT_SESSION_RETRY_INTERVAL,
        unlock_duration: typing.Optional[int] = None,
    ) -> None:
        self.sessions = sessions
        self.authenticator = authenticator
        self.store = store
        self.actuator = actuator
        self.door_id = door_id
        self.session_label = session_label
        self.session_visibility = session_visibility
        self.scopes = tuple(scopes)
        self.unlock_duration = unlock_duration
        self.backoff = SessionBackoff(retry_interval, logger)

        self.state = states.IDLE
        self.handle = None
        self._pending_closes: typing.Set["asyncio.Future[None]"] = set()

    @classmethod
    def from_config(cls, door_config: DoorConfig, store: AllowListStore) -> "AuthorizationLoop":
        timeout = door_config.request_timeout
        return cls(
            sessions=BridgeSession(door_config.bridge_url, timeout),
            authenticator=BridgeAuthenticator(door_config.bridge_url, timeout),
            store=store,
            actuator=ActuatorController(HttpActuatorClient(door_config.actuator_url, timeout)),
            door_id=door_config.door_id,
            session_label=door_config.session_label,
            session_visibility=door_config.session_visibility,
            scopes=door_config.auth_scopes,
            retry_interval=door_config.session_retry_interval,
            unlock_duration=door_config.unlock_duration,
        )

    def _set_state(self, state: int) -> None:
        if state != self.state:
            logger.debug("State %s -> %s", states.state_to_str(self.state), states.state_to_str(state))
        self.state = state

    async def run(self) -> None:
        """Serve until cancelled. CancelledError is re-raised after cleanup."""
        logger.info("Starting authorization loop for door %d", self.door_id)
        try:
            while True:
                handle = await self._open_session()
                await self._consume(handle)
        except asyncio.CancelledError:
            logger.info("Authorization loop for door %d was cancelled, shutting down", self.door_id)
            raise
        finally:
            # the bridge may take up to request_timeout to answer, do not wait for it
            self._discard_session()
            self._set_state(states.IDLE)

    async def _open_session(self) -> SessionHandle:
        while True:
            self._set_state(states.IDLE)
            try:
                handle = await self._create_session()
            except Exception as e:
                delay = self.backoff.failed()
                if isinstance(e, SessionCreationError):
                    logger.warning(
                        "Session creation failed (%d in a row): %s. Retrying in %.1f seconds",
                        self.backoff.failures,
                        e,
                        delay,
                    )
                else:
                    logger.exception(
                        "Unexpected error creating a session (%d in a row). Retrying in %.1f seconds",
                        self.backoff.failures,
                        delay,
                    )
                await asyncio.sleep(delay)
                continue

            self.backoff.succeeded()
            self.handle = handle
            self._set_state(states.SESSION_ACTIVE)
            logger.info("Session %s is live", handle.reference)
            return handle

    async def _consume(self, handle: SessionHandle) -> None:
        while True:
            try:
                event = await handle.events.next()
            except EventDecodeError as e:
                logger.warning("Skipping unreadable event in session %s: %s", handle.reference, e)
                await asyncio.sleep(0)
                continue
            except Exception:
                logger.exception("Unexpected error reading the next event in session %s, skipping it", handle.reference)
                await asyncio.sleep(0)
                continue

            if event is None:
                self._set_state(states.SESSION_ENDED)
                logger.info("Session %s ended, creating a new one", handle.reference)
                self._discard_session()
                return

            self._set_state(states.EVALUATING)
            await self.evaluate(event)
            self._set_state(states.SESSION_ACTIVE)

    async def _create_session(self) -> SessionHandle:
        creation = asyncio.ensure_future(self.sessions.create(self.session_label, self.session_visibility))
        try:
            return await asyncio.shield(creation)
        except asyncio.CancelledError:
            # the bridge may still hand out the session; close it once it does
            creation.add_done_callback(self._close_late_session)
            raise

    def _close_late_session(self, creation: "asyncio.Future[SessionHandle]") -> None:
        if creation.cancelled() or creation.exception() is not None:
            return
        handle = creation.result()
        logger.info("Closing session %s created after shutdown was requested", handle.reference)
        self._schedule_close(handle)

    def _discard_session(self) -> None:
        handle, self.handle = self.handle, None
        if handle is not None:
            self._schedule_close(handle)

    def _schedule_close(self, handle: SessionHandle) -> None:
        closing = asyncio.ensure_future(self._close_session(handle))
        self._pending_closes.add(closing)
        closing.add_done_callback(self._pending_closes.discard)

    @staticmethod
    async def _close_session(handle: SessionHandle) -> None:
        try:
            await handle.events.close()
        except Exception as e:
            logger.warning("Could not close session %s: %s", handle.reference, e)

    async def evaluate(self, event: PresentationEvent) -> AuthorizationDecision:
        """Decide on one presentation and unlock the door if it is authorized"""
        token = keydoor_logging.event_id_var.set(event.event_id)
        try:
            decision = await self._decide(event)
            self._log_decision(event, decision)

            if decision.authorized:
                outcome = await self._unlock()
                self._log_unlock(event, outcome)

            return decision
        finally:
            keydoor_logging.event_id_var.reset(token)

    async def _decide(self, event: PresentationEvent) -> AuthorizationDecision:
        try:
            enabled = await self.store.is_enabled(event.npub)
        except StoreError as e:
            logger.error("Allow list lookup for %s failed, denying: %s", event.npub, e)
            enabled = False
        except Exception:
            logger.exception("Unexpected error looking up %s, denying", event.npub)
            enabled = False

        if not enabled:
            return AuthorizationDecision.deny(DenyReason.KEY_UNKNOWN_OR_DISABLED)

        try:
            result = await self.authenticator.authenticate(event.npub, self.scopes, event.context)
        except AuthenticationError as e:
            logger.error("Authentication of %s failed: %s", event.npub, e)
            return AuthorizationDecision.deny(DenyReason.AUTHENTICATION_ERROR)
        except Exception:
            logger.exception("Unexpected error authenticating %s", event.npub)
            return AuthorizationDecision.deny(DenyReason.AUTHENTICATION_ERROR)

        if result is AuthResult.APPROVED:
            return AuthorizationDecision.authorize()
        return AuthorizationDecision.deny(DenyReason.AUTHENTICATION_DECLINED)

    async def _unlock(self) -> UnlockOutcome:
        try:
            return await self.actuator.unlock(self.door_id, self.unlock_duration)
        except Exception as e:
            logger.exception("Unexpected error unlocking door %d", self.door_id)
            return UnlockOutcome.transport_error(str(e))

    def _log_decision(self, event: PresentationEvent, decision: AuthorizationDecision) -> None:
        record: typing.Dict[str, typing.Any] = {
            "event": "decision",
            "identity": event.npub,
            "event_id": event.event_id,
            "door_id": self.door_id,
            "decision": "authorized" if decision.authorized else "denied",
        }
        if decision.reason is not None:
            record["reason"] = decision.reason.value
        keydoor_logging.log_decision(logger, logging.INFO if decision.authorized else logging.WARNING, record)

    def _log_unlock(self, event: PresentationEvent, outcome: UnlockOutcome) -> None:
        record = {
            "event": "unlock",
            "identity": event.npub,
            "event_id": event.event_id,
            "door_id": self.door_id,
            "outcome": outcome.status.value,
            "message": outcome.message,
        }
        loglevel = logging.INFO if outcome.status is UnlockStatus.UNLOCKED else logging.ERROR
        keydoor_logging.log_decision(logger, loglevel, record)


async def run(door_config: DoorConfig) -> None:
    """Run the door daemon described by door_config until cancelled.

    Raises ConfigurationError if the database URL cannot be used.
    """
    try:
        engine = keydoor_db.make_engine(door_config.database_url)
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid database_url: {e}") from e

    store = AllowListStore(engine)
    if door_config.auto_create_db:
        try:
            await asyncio.get_running_loop().run_in_executor(None, store.create_schema)
        except SQLAlchemyError as e:
            logger.error("Could not create the allow list schema: %s", e)

    try:
        await AuthorizationLoop.from_config(door_config, store).run()
    finally:
        engine.dispose()
