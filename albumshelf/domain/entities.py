from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional, Tuple


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """Build ids of the form ``<prefix>_<epoch-ms>_<9 base36 chars>``."""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{prefix}_{now_ms()}_{suffix}"


@dataclass(frozen=True)
class Track:
    """A track of an album as returned by the metadata service."""

    id: str
    name: str = ""
    duration_ms: int = 0
    track_number: int = 0
    artists: str = ""
    preview_url: Optional[str] = None
    external_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "durationMs": self.duration_ms,
            "trackNumber": self.track_number,
            "artists": self.artists,
            "previewUrl": self.preview_url,
            "externalUrl": self.external_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Track":
        # Older records stored the duration under "duration"
        duration = data.get("durationMs", data.get("duration", 0))
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            duration_ms=int(duration or 0),
            track_number=int(data.get("trackNumber") or 0),
            artists=data.get("artists") or "",
            preview_url=data.get("previewUrl"),
            external_url=data.get("externalUrl") or "",
        )


@dataclass(frozen=True)
class AlbumImage:
    url: str
    height: Optional[int] = None
    width: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "height": self.height, "width": self.width}


@dataclass(frozen=True)
class Album:
    """Album record. Replaced as a whole, never mutated in place."""

    id: str
    name: str = ""
    artists: str = ""
    images: Tuple[AlbumImage, ...] = ()
    external_url: str = ""
    release_date: str = ""
    total_tracks: int = 0
    genres: Tuple[str, ...] = ()
    label: str = ""
    popularity: int = 0
    tracks: Tuple[Track, ...] = ()

    def __post_init__(self):
        # Genres are a set semantically; keep first-seen order for stable output
        object.__setattr__(self, 'genres', tuple(dict.fromkeys(self.genres)))
        object.__setattr__(self, 'images', tuple(self.images))
        object.__setattr__(self, 'tracks', tuple(self.tracks))
        if not 0 <= self.popularity <= 100:
            raise ValueError(f"popularity out of range: {self.popularity}")

    @property
    def cover_url(self) -> Optional[str]:
        return self.images[0].url if self.images else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "artists": self.artists,
            "images": [image.to_dict() for image in self.images],
            "externalUrl": self.external_url,
            "releaseDate": self.release_date,
            "totalTracks": self.total_tracks,
            "genres": list(self.genres),
            "label": self.label,
            "popularity": self.popularity,
            "tracks": [track.to_dict() for track in self.tracks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Album":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            artists=data.get("artists") or "",
            images=tuple(
                AlbumImage(url=img["url"], height=img.get("height"), width=img.get("width"))
                for img in data.get("images") or []
            ),
            external_url=data.get("externalUrl") or "",
            release_date=data.get("releaseDate") or "",
            total_tracks=int(data.get("totalTracks") or 0),
            genres=tuple(data.get("genres") or ()),
            label=data.get("label") or "",
            popularity=int(data.get("popularity") or 0),
            tracks=tuple(Track.from_dict(t) for t in data.get("tracks") or []),
        )


@dataclass(frozen=True)
class Shelf:
    """Named, ordered collection of albums, unique by album id."""

    id: str
    name: str
    albums: Tuple[Album, ...] = ()
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def new(cls, name: str) -> "Shelf":
        return cls(id=generate_id("shelf"), name=name, albums=(), created_at=now_ms())

    def index_of(self, album_id: str) -> int:
        for index, album in enumerate(self.albums):
            if album.id == album_id:
                return index
        return -1

    def contains(self, album_id: str) -> bool:
        return self.index_of(album_id) != -1

    def with_albums(self, albums: Iterable[Album]) -> "Shelf":
        return replace(self, albums=tuple(albums))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "albums": [album.to_dict() for album in self.albums],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Shelf":
        return cls(
            id=data["id"],
            name=data["name"],
            albums=tuple(Album.from_dict(a) for a in data.get("albums") or []),
            created_at=int(data.get("createdAt") or now_ms()),
        )


@dataclass(frozen=True)
class CurrentTrack:
    """Track reported by the playback device."""

    id: str
    name: str = ""
    artists: str = ""
    album_name: str = ""
    image_url: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "artists": self.artists,
            "albumName": self.album_name,
            "imageUrl": self.image_url,
        }


@dataclass(frozen=True)
class PlaybackState:
    """Snapshot of the playback session; replaced on every transition."""

    is_ready: bool = False
    device_id: Optional[str] = None
    is_playing: bool = False
    current_track: Optional[CurrentTrack] = None
    position_ms: int = 0
    duration_ms: int = 0
    current_album_track_list: Optional[Tuple[Track, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        tracks = self.current_album_track_list
        return {
            "isReady": self.is_ready,
            "deviceId": self.device_id,
            "isPlaying": self.is_playing,
            "currentTrack": self.current_track.to_dict() if self.current_track else None,
            "positionMs": self.position_ms,
            "durationMs": self.duration_ms,
            "currentAlbumTrackList": [t.to_dict() for t in tracks] if tracks is not None else None,
        }


@dataclass(frozen=True)
class NowPlaying:
    """Album/track of a shelf that the device is currently playing."""

    album_id: str
    track_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"albumId": self.album_id, "trackId": self.track_id}


@dataclass(frozen=True)
class Preferences:
    theme: str = "dark"
    default_view: str = "grid"
    auto_play: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"theme": self.theme, "defaultView": self.default_view, "autoPlay": self.auto_play}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Preferences":
        data = data or {}
        return cls(
            theme=data.get("theme", "dark"),
            default_view=data.get("defaultView", "grid"),
            auto_play=bool(data.get("autoPlay", False)),
        )


@dataclass(frozen=True)
class User:
    """Registered user. ``external_id`` is the stable Spotify user id."""

    id: str
    external_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    image_url: Optional[str] = None
    access_token: str = ""
    refresh_token: str = ""
    token_expires_at: int = 0
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    preferences: Preferences = field(default_factory=Preferences)

    def public_profile(self) -> Dict[str, Any]:
        """Profile without credentials."""
        return {
            "id": self.id,
            "externalId": self.external_id,
            "email": self.email,
            "displayName": self.display_name,
            "imageUrl": self.image_url,
            "createdAt": self.created_at,
            "preferences": self.preferences.to_dict(),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.public_profile()
        data.update({
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "tokenExpiresAt": self.token_expires_at,
            "updatedAt": self.updated_at,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            external_id=data.get("externalId") or data["spotifyId"],
            email=data.get("email"),
            display_name=data.get("displayName"),
            image_url=data.get("imageUrl"),
            access_token=data.get("accessToken") or data.get("spotifyAccessToken") or "",
            refresh_token=data.get("refreshToken") or data.get("spotifyRefreshToken") or "",
            token_expires_at=int(data.get("tokenExpiresAt") or 0),
            created_at=int(data.get("createdAt") or now_ms()),
            updated_at=int(data.get("updatedAt") or now_ms()),
            preferences=Preferences.from_dict(data.get("preferences")),
        )


@dataclass(frozen=True)
class UserSession:
    """Identity carried in the session cookie."""

    user_id: str
    external_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "externalId": self.external_id,
            "email": self.email,
            "displayName": self.display_name,
            "imageUrl": self.image_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserSession":
        return cls(
            user_id=data["userId"],
            external_id=data["externalId"],
            email=data.get("email"),
            display_name=data.get("displayName"),
            image_url=data.get("imageUrl"),
        )

    @classmethod
    def for_user(cls, user: User) -> "UserSession":
        return cls(
            user_id=user.id,
            external_id=user.external_id,
            email=user.email,
            display_name=user.display_name,
            image_url=user.image_url,
        )
