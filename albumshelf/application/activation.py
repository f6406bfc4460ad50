import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from albumshelf.domain.errors import ActivationFailed
from albumshelf.domain.ports import PlayerApi


logger = logging.getLogger(__name__)

# Transfer was accepted by the service even if verification lags behind
TRANSFER_ACCEPTED = 204


@dataclass(frozen=True)
class ActivationPolicy:
    """Every timing constant used while making the device the active output.

    Play-album retries re-issue a single transfer instead of re-running the
    whole protocol, so waits never nest.
    """

    attempts: int = 2
    settle_delay_s: float = 0.3
    verify_base_delay_s: float = 0.6
    verify_step_s: float = 0.2
    play_retries: int = 3
    play_retry_base_delay_s: float = 0.5
    play_retry_step_s: float = 0.3

    def verify_delay(self, attempt: int) -> float:
        return self.verify_base_delay_s + attempt * self.verify_step_s

    def play_retry_delay(self, attempt: int) -> float:
        return self.play_retry_base_delay_s + attempt * self.play_retry_step_s


class DeviceActivator:
    """Ensures a device is the account's active output before playback."""

    def __init__(self, policy: Optional[ActivationPolicy] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.policy = policy or ActivationPolicy()
        self._sleep = sleep

    def activate(self, api: PlayerApi, device_id: str) -> None:
        """Confirm or force activation of ``device_id``.

        Raises ActivationFailed when activation could not be confirmed.
        """
        if self._active_device(api) == device_id:
            logger.debug(f"Device {device_id} is already active")
            return

        # Pause everywhere first so a foreign client does not grab the
        # session back while we transfer
        try:
            api.pause()
        except Exception as e:
            logger.debug(f"Pause before transfer failed: {e}")

        self._sleep(self.policy.settle_delay_s)

        for attempt in range(self.policy.attempts):
            status = self.transfer_once(api, device_id)
            self._sleep(self.policy.verify_delay(attempt))

            if self._active_device(api) == device_id:
                logger.info(f"Device {device_id} activated (attempt {attempt + 1})")
                return

            if status == TRANSFER_ACCEPTED:
                logger.info(f"Device transfer accepted (attempt {attempt + 1})")
                return

        raise ActivationFailed(f"Activation of {device_id} not confirmed after "
                               f"{self.policy.attempts} attempt(s)")

    def transfer_once(self, api: PlayerApi, device_id: str) -> Optional[int]:
        """Issue one transfer request; failures are logged and return None."""
        try:
            return api.transfer(device_id, play=False)
        except Exception as e:
            logger.warning(f"Transfer to {device_id} failed: {e}")
            return None

    def _active_device(self, api: PlayerApi) -> Optional[str]:
        try:
            return api.get_active_device_id()
        except Exception as e:
            logger.debug(f"Active device query failed: {e}")
            return None
