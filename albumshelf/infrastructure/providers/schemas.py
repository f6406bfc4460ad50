"""Validated shapes of payloads that cross the process boundary.

Spotify responses and JSON request bodies are parsed here, at the edge;
anything that does not fit raises ``InvalidPayload`` instead of leaking
untyped dictionaries into the core.
"""

import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from albumshelf.domain.entities import Album, AlbumImage, CurrentTrack, Shelf, Track
from albumshelf.domain.errors import InvalidPayload
from albumshelf.domain.normalization import external_url_for, normalize_id


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ArtistRef(_Lenient):
    name: str = ""


class ImageRef(_Lenient):
    url: str
    height: Optional[int] = None
    width: Optional[int] = None


class ExternalUrls(_Lenient):
    spotify: str = ""


class TrackItem(_Lenient):
    id: str
    name: str = ""
    duration_ms: int = 0
    track_number: int = 0
    artists: List[ArtistRef] = Field(default_factory=list)
    preview_url: Optional[str] = None
    external_urls: ExternalUrls = Field(default_factory=ExternalUrls)


class TrackPage(_Lenient):
    items: List[TrackItem] = Field(default_factory=list)
    next: Optional[str] = None


class AlbumPayload(_Lenient):
    id: str
    name: str = ""
    artists: List[ArtistRef] = Field(default_factory=list)
    images: List[ImageRef] = Field(default_factory=list)
    external_urls: ExternalUrls = Field(default_factory=ExternalUrls)
    release_date: str = ""
    total_tracks: int = 0
    genres: List[str] = Field(default_factory=list)
    label: Optional[str] = ""
    popularity: int = Field(0, ge=0, le=100)
    tracks: TrackPage = Field(default_factory=TrackPage)


class TokenPayload(_Lenient):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[int] = None


class UserProfilePayload(_Lenient):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    images: List[ImageRef] = Field(default_factory=list)


class PlayerAlbumRef(_Lenient):
    name: str = ""
    images: List[ImageRef] = Field(default_factory=list)


class PlayerTrackRef(_Lenient):
    id: Optional[str] = None
    uri: Optional[str] = None
    name: str = ""
    artists: List[ArtistRef] = Field(default_factory=list)
    album: PlayerAlbumRef = Field(default_factory=PlayerAlbumRef)


class TrackWindow(_Lenient):
    current_track: Optional[PlayerTrackRef] = None


class PlayerStatePayload(_Lenient):
    paused: bool = True
    position: int = 0
    duration: int = 0
    track_window: TrackWindow = Field(default_factory=TrackWindow)


class AlbumRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""


class ShelfRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    name: str
    albums: List[AlbumRecord] = Field(default_factory=list)
    created_at: Optional[int] = Field(None, alias="createdAt")


class ShelvesBody(_Lenient):
    shelves: List[ShelfRecord]


class PreferencesBody(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    theme: Optional[Literal["dark", "light", "auto"]] = None
    default_view: Optional[Literal["grid", "list"]] = Field(None, alias="defaultView")
    auto_play: Optional[bool] = Field(None, alias="autoPlay")


class UserUpdateBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    display_name: Optional[str] = Field(None, alias="displayName", min_length=1)
    preferences: Optional[PreferencesBody] = None


class TrackRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str


class PlayTrackBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    track_id: str = Field(alias="trackId", min_length=1)
    album_id: Optional[str] = Field(None, alias="albumId")
    context: Optional[List[TrackRecord]] = None


class PlayAlbumBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    album_id: Optional[str] = Field(None, alias="albumId")
    track_ids: Optional[List[str]] = Field(None, alias="trackIds")
    context: Optional[List[TrackRecord]] = None


class SeekBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    position_ms: Optional[int] = Field(None, alias="positionMs")
    fraction: Optional[float] = None


def _validate(model, raw: Any, what: str):
    if not isinstance(raw, dict):
        raise InvalidPayload(f"{what} payload must be an object")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise InvalidPayload(f"Invalid {what} payload: {e.error_count()} error(s)") from e


def _join_artists(artists: List[ArtistRef]) -> str:
    return ", ".join(a.name for a in artists if a.name)


def album_from_payload(raw: Dict[str, Any], extra_tracks: Optional[List[Dict[str, Any]]] = None) -> Album:
    """Build an Album from a Spotify album object.

    ``extra_tracks`` carries track items fetched from later pages of the
    album's track listing.
    """
    payload = _validate(AlbumPayload, raw, "album")
    items = list(payload.tracks.items)
    for item in extra_tracks or []:
        items.append(_validate(TrackItem, item, "track"))

    tracks = tuple(
        Track(
            id=item.id,
            name=item.name,
            duration_ms=item.duration_ms,
            track_number=item.track_number,
            artists=_join_artists(item.artists),
            preview_url=item.preview_url,
            external_url=item.external_urls.spotify or external_url_for('track', item.id),
        )
        for item in items
    )
    return Album(
        id=payload.id,
        name=payload.name,
        artists=_join_artists(payload.artists) or "Unknown Artist",
        images=tuple(AlbumImage(url=i.url, height=i.height, width=i.width) for i in payload.images),
        external_url=payload.external_urls.spotify or external_url_for('album', payload.id),
        release_date=payload.release_date,
        total_tracks=payload.total_tracks or len(tracks),
        genres=tuple(payload.genres),
        label=payload.label or "",
        popularity=payload.popularity,
        tracks=tracks,
    )


def token_from_payload(raw: Dict[str, Any]) -> TokenPayload:
    token = _validate(TokenPayload, raw, "token")
    if token.expires_at is None:
        token = token.model_copy(update={"expires_at": int(time.time()) + token.expires_in})
    return token


def profile_from_payload(raw: Dict[str, Any]) -> UserProfilePayload:
    return _validate(UserProfilePayload, raw, "profile")


def translate_player_state(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map a vendor state payload to PlaybackState fields."""
    payload = _validate(PlayerStatePayload, raw, "player state")

    current = payload.track_window.current_track
    current_track = None
    if current is not None:
        track_id = normalize_id(current.id or current.uri)
        if track_id:
            images = current.album.images
            current_track = CurrentTrack(
                id=track_id,
                name=current.name,
                artists=_join_artists(current.artists),
                album_name=current.album.name,
                image_url=images[0].url if images else "",
            )

    return {
        "is_playing": not payload.paused,
        "position_ms": payload.position,
        "duration_ms": payload.duration,
        "current_track": current_track,
    }


def shelves_from_body(raw: Any) -> List[Shelf]:
    """Parse ``{"shelves": [...]}`` into Shelf records."""
    body = _validate(ShelvesBody, raw, "shelves")
    shelves = []
    for record in body.shelves:
        try:
            shelves.append(Shelf.from_dict(record.model_dump(by_alias=True, exclude_none=True)))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidPayload(f"Invalid shelf {record.id}: {e}") from e
    return shelves


def user_update_from_body(raw: Any) -> UserUpdateBody:
    return _validate(UserUpdateBody, raw, "user update")


def tracks_from_records(records: Optional[List[TrackRecord]]) -> List[Track]:
    tracks = []
    for record in records or []:
        try:
            tracks.append(Track.from_dict(record.model_dump()))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidPayload(f"Invalid track {record.id}: {e}") from e
    return tracks


def play_track_from_body(raw: Any) -> PlayTrackBody:
    return _validate(PlayTrackBody, raw, "play track")


def play_album_from_body(raw: Any) -> PlayAlbumBody:
    return _validate(PlayAlbumBody, raw, "play album")


def seek_from_body(raw: Any) -> SeekBody:
    return _validate(SeekBody, raw, "seek")
