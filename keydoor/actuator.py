import abc
import typing

from tornado.locks import Lock

from keydoor import keydoor_logging, tornado_requests
from keydoor.common.exception import ActuatorError
from keydoor.config import DEFAULT_TIMEOUT
from keydoor.decision import UnlockOutcome

logger = keydoor_logging.init_logging("actuator")


class ActuatorClient(metaclass=abc.ABCMeta):
    """Network client of the door controller"""

    @abc.abstractmethod
    async def send_unlock(self, door_id: int, duration: typing.Optional[int]) -> typing.Tuple[bool, str]:
        """Send one unlock command; None keeps the hardware default duration.

        Returns whether the controller accepted the command and its message.
        Raises ActuatorError if the controller could not be reached.
        """
        raise NotImplementedError


class HttpActuatorClient(ActuatorClient):
    def __init__(self, actuator_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.actuator_url = actuator_url.rstrip("/")
        self.timeout = timeout

    async def send_unlock(self, door_id: int, duration: typing.Optional[int]) -> typing.Tuple[bool, str]:
        data: typing.Dict[str, typing.Any] = {} if duration is None else {"duration": duration}
        response = await tornado_requests.request(
            "PUT", f"{self.actuator_url}/doors/{door_id}/unlock", data=data, timeout=self.timeout
        )

        if response.status_code == 599:
            raise ActuatorError(str(response.body))

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            success = bool(payload.get("success", False)) and response.status_code == 200
            return success, str(payload.get("message", ""))

        if response.status_code == 200:
            return True, ""
        return False, f"Door controller returned status {response.status_code}"


class ActuatorController:
    """Owner of the door hardware.

    Commands go through a single lock so that only one of them is in flight
    at any time. Nothing is retried here.
    """

    client: ActuatorClient
    _lock: Lock

    def __init__(self, client: ActuatorClient) -> None:
        self.client = client
        self._lock = Lock()

    async def unlock(self, door_id: int, duration_override: typing.Optional[int] = None) -> UnlockOutcome:
        async with self._lock:
            try:
                success, message = await self.client.send_unlock(door_id, duration_override)
            except ActuatorError as e:
                logger.error("Unlock of door %d failed: %s", door_id, e)
                return UnlockOutcome.transport_error(str(e))

        if success:
            return UnlockOutcome.unlocked(message)
        return UnlockOutcome.refused(message)
