import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from albumshelf.application.playback import PlaybackController
from albumshelf.domain.entities import Album, Track
from albumshelf.domain.normalization import external_url_for, ids_match, to_uri


logger = logging.getLogger(__name__)

PLAYER = 'player'
PREVIEW = 'preview'
EXTERNAL = 'external'
TOGGLED = 'toggled'
SKIPPED = 'skipped'


@dataclass(frozen=True)
class PlaybackOutcome:
    """How a play request was served.

    ``uri``/``url`` name what the caller should open for the preview and
    external modes.
    """

    mode: str
    uri: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"mode": self.mode, "uri": self.uri, "url": self.url}


def format_time(ms: int) -> str:
    minutes = int(ms // 60000)
    seconds = int((ms % 60000) // 1000)
    return f"{minutes}:{seconds:02d}"


def _external_album(album: Album) -> PlaybackOutcome:
    return PlaybackOutcome(EXTERNAL, uri=to_uri('album', album.id),
                           url=album.external_url or external_url_for('album', album.id))


def _external_track(track: Track) -> PlaybackOutcome:
    return PlaybackOutcome(EXTERNAL, uri=to_uri('track', track.id),
                           url=track.external_url or external_url_for('track', track.id))


class PlaybackCoordinator:
    """Serves play requests with the full player, falling back to preview
    audio or to opening the item in the external app."""

    def __init__(self, controller: Optional[PlaybackController]):
        self._controller = controller

    @property
    def player_available(self) -> bool:
        return self._controller is not None and self._controller.is_available

    def play_album(self, album: Album) -> PlaybackOutcome:
        if not album.tracks:
            logger.warning(f"Album {album.id} has no tracks")
            return PlaybackOutcome(SKIPPED)

        if not self.player_available:
            return _external_album(album)

        track_ids = [track.id for track in album.tracks]
        if self._controller.play_album(track_ids, album.tracks):
            return PlaybackOutcome(PLAYER, uri=to_uri('album', album.id))

        logger.warning(f"Album playback failed for {album.id}, trying first track")
        first = album.tracks[0]
        if self._controller.play_track(first.id, album.tracks):
            return PlaybackOutcome(PLAYER, uri=to_uri('track', first.id))

        logger.warning("Could not play album, opening it externally")
        return _external_album(album)

    def play_track(self, album: Album, track: Track) -> PlaybackOutcome:
        if self.player_available:
            state = self._controller.state
            if (state.is_playing and state.current_track is not None
                    and ids_match(state.current_track.id, track.id)):
                self._controller.toggle_play_pause()
                return PlaybackOutcome(TOGGLED, uri=to_uri('track', track.id))

            if self._controller.play_track(track.id, album.tracks):
                return PlaybackOutcome(PLAYER, uri=to_uri('track', track.id))
            return _external_track(track)

        if track.preview_url:
            return PlaybackOutcome(PREVIEW, uri=to_uri('track', track.id), url=track.preview_url)
        return _external_track(track)

    def seek_to_fraction(self, fraction: float) -> bool:
        if self._controller is None:
            return False
        duration = self._controller.state.duration_ms
        if not duration:
            return False
        fraction = min(1.0, max(0.0, fraction))
        self._controller.seek(int(fraction * duration))
        return True
