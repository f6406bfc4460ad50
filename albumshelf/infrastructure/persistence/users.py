import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional, Union

from albumshelf.domain.entities import Preferences, User, generate_id, now_ms
from albumshelf.infrastructure.persistence.json_file import JsonDocument

logger = logging.getLogger(__name__)


class JsonUserRepository:
    """Registered users in ``users.json``."""

    def __init__(self, path: Union[str, Path]):
        self._document = JsonDocument(path, default=list)

    def _users(self) -> List[User]:
        data = self._document.read()
        return [User.from_dict(record) for record in data] if isinstance(data, list) else []

    def _save(self, users: List[User]) -> None:
        self._document.write([user.to_dict() for user in users])

    def get_by_id(self, user_id: str) -> Optional[User]:
        for user in self._users():
            if user.id == user_id:
                return user
        return None

    def get_by_external_id(self, external_id: str) -> Optional[User]:
        for user in self._users():
            if user.external_id == external_id:
                return user
        return None

    def create(self, external_id: str,
               email: Optional[str] = None,
               display_name: Optional[str] = None,
               image_url: Optional[str] = None,
               access_token: str = "",
               refresh_token: str = "",
               token_expires_at: int = 0,
               preferences: Optional[Preferences] = None) -> User:
        now = now_ms()
        user = User(
            id=generate_id("user"),
            external_id=external_id,
            email=email,
            display_name=display_name,
            image_url=image_url,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=token_expires_at,
            created_at=now,
            updated_at=now,
            preferences=preferences or Preferences(),
        )
        with self._document.lock:
            users = self._users()
            users.append(user)
            self._save(users)
        logger.info(f"Created user {user.id}")
        return user

    def update(self, user_id: str, **changes: Any) -> Optional[User]:
        """Apply field changes to a user; returns None for unknown ids."""
        with self._document.lock:
            users = self._users()
            for index, user in enumerate(users):
                if user.id == user_id:
                    updated = replace(user, updated_at=now_ms(), **changes)
                    users[index] = updated
                    self._save(users)
                    return updated
        logger.warning(f"Cannot update unknown user {user_id}")
        return None

    def update_tokens(self, user_id: str, access_token: str,
                      refresh_token: Optional[str], expires_in: int) -> Optional[User]:
        """Store refreshed credentials; a missing refresh token keeps the old one."""
        changes = {
            'access_token': access_token,
            'token_expires_at': now_ms() + int(expires_in) * 1000,
        }
        if refresh_token:
            changes['refresh_token'] = refresh_token
        return self.update(user_id, **changes)
