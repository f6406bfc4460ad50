import time
import logging
import threading
from typing import Callable, Dict, Optional

from albumshelf.application.activation import ActivationPolicy
from albumshelf.application.playback import PlaybackController
from albumshelf.crosscutting.logging import CorrelationContext
from albumshelf.domain.ports import PlaybackSession
from albumshelf.infrastructure.playback.connect_session import SpotifyConnectSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], PlaybackSession]


class PlayerRegistry:
    """One playback controller per authenticated user.

    Controllers are created on connect and disposed on logout or
    disconnect, which also closes the session's HTTP resources.
    """

    def __init__(self, device_name: str,
                 session_factory: Optional[SessionFactory] = None,
                 policy: Optional[ActivationPolicy] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.device_name = device_name
        self._session_factory = session_factory or (lambda: SpotifyConnectSession(device_name))
        self._policy = policy or ActivationPolicy()
        self._sleep = sleep
        self._entries: Dict[str, PlaybackController] = {}
        self._sessions: Dict[str, PlaybackSession] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[PlaybackController]:
        return self._entries.get(user_id)

    def session_for(self, user_id: str) -> Optional[PlaybackSession]:
        return self._sessions.get(user_id)

    def connect(self, user_id: str, get_credential: Callable[[], Optional[str]]) -> PlaybackController:
        """Create the user's controller if needed and (re)connect its session."""
        with self._lock:
            controller = self._entries.get(user_id)
            if controller is None:
                session = self._session_factory()
                controller = PlaybackController(session, policy=self._policy, sleep=self._sleep)
                self._entries[user_id] = controller
                self._sessions[user_id] = session
                logger.info(f"Created playback controller for {user_id}")
            session = self._sessions[user_id]

        with CorrelationContext(user_id=user_id, stage='connect'):
            if session.connect(get_credential):
                logger.info(f"Playback session connected for {user_id}")
            else:
                logger.warning(f"Playback session for {user_id} is not ready")
        return controller

    def dispose(self, user_id: str) -> bool:
        with self._lock:
            controller = self._entries.pop(user_id, None)
            self._sessions.pop(user_id, None)
        if controller is None:
            return False
        controller.dispose()
        logger.info(f"Disposed playback controller for {user_id}")
        return True

    def dispose_all(self) -> None:
        for user_id in list(self._entries):
            self.dispose(user_id)
