import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from flask import Flask, jsonify, redirect, request, session

from albumshelf.application.coordinator import PlaybackCoordinator
from albumshelf.application.now_playing import reconcile
from albumshelf.application.shelves import UNIFIED_SHELF_NAME
from albumshelf.crosscutting.config import ConfigError, Settings, get_settings
from albumshelf.crosscutting.logging import CorrelationContext, log_error
from albumshelf.domain.entities import Album, Shelf, Track, User, UserSession, now_ms
from albumshelf.domain.errors import (
    InvalidAlbumUrl, InvalidPayload, NotFound, PersistenceFailure, TemporaryFailure, VendorApiError,
)
from albumshelf.domain.normalization import ids_match
from albumshelf.domain.ports import AlbumCatalog, ShelfStore
from albumshelf.infrastructure.auth.spotify_oauth import SpotifyAuthService, needs_refresh
from albumshelf.infrastructure.persistence.shelves import JsonFileShelfStore, create_shelf_store
from albumshelf.infrastructure.persistence.users import JsonUserRepository
from albumshelf.infrastructure.providers.schemas import (
    play_album_from_body, play_track_from_body, seek_from_body, shelves_from_body, tracks_from_records,
    user_update_from_body,
)
from albumshelf.infrastructure.providers.spotify import SpotifyCatalog
from albumshelf.interfaces.player_registry import PlayerRegistry

SESSION_COOKIE_NAME = 'spotify_session'
SESSION_KEY = 'user'


class HTTPServer:
    """HTTP server for AlbumShelf: auth flow, album lookup, shelves and player."""

    def __init__(self, host: str = 'localhost', port: int = 3000, debug: bool = False,
                 settings: Optional[Settings] = None,
                 auth_service: Optional[SpotifyAuthService] = None,
                 catalog: Optional[AlbumCatalog] = None,
                 users: Optional[JsonUserRepository] = None,
                 shelf_store: Optional[ShelfStore] = None,
                 players: Optional[PlayerRegistry] = None):
        """Initialize HTTP server.

        Collaborators default to the ones configured by ``settings``; tests
        pass their own.
        """
        self.host = host
        self.port = port
        self.debug = debug
        self.settings = settings or get_settings()
        self.logger = logging.getLogger(__name__)

        self.version = "0.1.0"
        self.commit = self.settings.commit

        self._auth_service = auth_service
        self._catalog = catalog
        self.users = users or JsonUserRepository(self.settings.users_file)
        self.file_store = JsonFileShelfStore(self.settings.shelves_file)
        self._shelf_store = shelf_store
        self.players = players or PlayerRegistry(self.settings.device_name)

        self.app = Flask(__name__)
        self.app.config.update(
            SECRET_KEY=self.settings.secret_key or 'albumshelf-dev-secret',
            SESSION_COOKIE_NAME=SESSION_COOKIE_NAME,
            SESSION_COOKIE_HTTPONLY=True,
            SESSION_COOKIE_SAMESITE='Lax',
            SESSION_COOKIE_SECURE=False,
            PERMANENT_SESSION_LIFETIME=timedelta(days=30),
        )
        if not self.settings.secret_key:
            self.logger.warning("ALBUMSHELF_SECRET_KEY not set, using development secret")

        self._setup_routes()

    # Collaborators

    def _auth(self) -> SpotifyAuthService:
        if self._auth_service is None:
            self._auth_service = SpotifyAuthService.from_settings(self.settings)
        return self._auth_service

    def _album_catalog(self) -> AlbumCatalog:
        if self._catalog is None:
            config = self.settings.spotify_client_config()
            self._catalog = SpotifyCatalog(config['client_id'], config['client_secret'])
        return self._catalog

    def _shelves(self) -> ShelfStore:
        if self._shelf_store is not None:
            return self._shelf_store
        return create_shelf_store(self.settings.shelf_store_url, self.settings.shelf_store_key, self.file_store)

    # Session helpers

    def _current_session(self) -> Optional[UserSession]:
        data = session.get(SESSION_KEY)
        if not data:
            return None
        try:
            return UserSession.from_dict(data)
        except (KeyError, TypeError):
            self.logger.warning("Discarding malformed session cookie")
            session.pop(SESSION_KEY, None)
            return None

    def _start_session(self, user: User) -> None:
        session.clear()
        session.permanent = True
        session[SESSION_KEY] = UserSession.for_user(user).to_dict()

    @staticmethod
    def _error(message: str, status: int, **extra: Any):
        body = {'error': message}
        body.update(extra)
        return jsonify(body), status

    def _fresh_user(self, user: User) -> User:
        """Return the user with a credential valid for at least five minutes.

        Raises VendorApiError when the refresh is rejected.
        """
        if not needs_refresh(user.token_expires_at, now_ms()):
            return user

        self.logger.info(f"Refreshing access token for {user.id}")
        token = self._auth().refresh(user.refresh_token)
        updated = self.users.update_tokens(user.id, token.access_token, token.refresh_token, token.expires_in)
        if updated is None:
            raise PersistenceFailure("Failed to update user tokens")
        return updated

    def _credential_for(self, user_id: str):
        def get_credential() -> Optional[str]:
            user = self.users.get_by_id(user_id)
            if user is None:
                return None
            try:
                return self._fresh_user(user).access_token
            except (ConfigError, VendorApiError, InvalidPayload, PersistenceFailure, TemporaryFailure) as e:
                self.logger.warning(f"No usable credential for {user_id}: {e}")
                return None
        return get_credential

    def _user_shelves(self, external_id: str) -> List[Shelf]:
        try:
            return self._shelves().get_shelves(external_id)
        except PersistenceFailure as e:
            log_error(self.logger, "Failed to read shelves", e)
            return []

    def _find_album(self, shelves: List[Shelf], album_id: str) -> Optional[Album]:
        ordered = sorted(shelves, key=lambda s: s.name != UNIFIED_SHELF_NAME)
        for shelf in ordered:
            for album in shelf.albums:
                if ids_match(album.id, album_id):
                    return album
        return None

    def _setup_routes(self) -> None:
        """Setup Flask routes."""
        app = self.app

        @app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'version': self.version,
                'commit': self.commit,
                'timestamp': datetime.now().isoformat()
            }), 200

        @app.route('/', methods=['GET'])
        def root():
            """Root endpoint with basic info."""
            return jsonify({
                'service': 'AlbumShelf HTTP Interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'spotify_auth': '/api/spotify/auth',
                    'oauth_callback': '/api/spotify/callback',
                    'me': '/api/auth/me',
                    'token': '/api/auth/token',
                    'album': '/api/spotify/album',
                    'shelves': '/api/user/shelves',
                    'player': '/api/player/state',
                }
            }), 200

        # Authentication

        @app.route('/api/spotify/auth', methods=['GET'])
        def spotify_auth():
            """Return the Spotify authorize URL."""
            try:
                return jsonify({'authUrl': self._auth().get_authorize_url()}), 200
            except ConfigError as e:
                self.logger.error(f"Spotify auth not configured: {e}")
                return self._error('Spotify API credentials not configured', 500)

        @app.route('/api/spotify/callback', methods=['GET'])
        def oauth_callback():
            """OAuth callback: exchange the code, upsert the user, start a session."""
            error = request.args.get('error')
            code = request.args.get('code')

            if error:
                self.logger.error(f"OAuth error: {error}")
                return redirect('/?' + urlencode({'error': error}))
            if not code:
                return redirect('/?error=no_code')

            try:
                auth = self._auth()
            except ConfigError as e:
                self.logger.error(f"Spotify auth not configured: {e}")
                return redirect('/?error=config_error')

            try:
                token = auth.exchange_code(code)
                profile = auth.current_profile(token.access_token)

                user = self.users.get_by_external_id(profile.id)
                is_new_user = user is None
                if user is not None:
                    user = self.users.update_tokens(user.id, token.access_token,
                                                    token.refresh_token, token.expires_in) or user
                else:
                    user = self.users.create(
                        external_id=profile.id,
                        email=profile.email,
                        display_name=profile.display_name or profile.id,
                        image_url=profile.images[0].url if profile.images else None,
                        access_token=token.access_token,
                        refresh_token=token.refresh_token or "",
                        token_expires_at=now_ms() + token.expires_in * 1000,
                    )

                self._start_session(user)
                with CorrelationContext(user_id=user.id, stage='login'):
                    self.logger.info(f"User logged in (new={is_new_user})")

                params = {'welcome': 'true'} if is_new_user else {}
                params['auth'] = 'success'
                return redirect('/?' + urlencode(params))

            except Exception as e:
                log_error(self.logger, "OAuth callback failed", e)
                return redirect('/?error=auth_failed')

        @app.route('/api/auth/me', methods=['GET'])
        def auth_me():
            """Report the logged-in user, if any."""
            current = self._current_session()
            if current is None:
                return jsonify({'isAuthenticated': False, 'user': None}), 200

            user = self.users.get_by_id(current.user_id)
            if user is not None:
                return jsonify({'isAuthenticated': True, 'user': user.public_profile()}), 200

            # Record gone (e.g. data dir reset); the cookie still identifies the user
            data = current.to_dict()
            data['id'] = current.user_id
            return jsonify({'isAuthenticated': True, 'user': data}), 200

        @app.route('/api/auth/logout', methods=['POST'])
        def auth_logout():
            current = self._current_session()
            if current is not None:
                self.players.dispose(current.user_id)
            session.clear()
            return jsonify({'success': True}), 200

        @app.route('/api/auth/token', methods=['GET'])
        def auth_token():
            """Bearer credential for the playback device, refreshed when close to expiry."""
            current = self._current_session()
            if current is None:
                return self._error('Not authenticated', 401)

            user = self.users.get_by_id(current.user_id)
            if user is None:
                return self._error('User not found', 404)

            try:
                user = self._fresh_user(user)
            except ConfigError:
                return self._error('Spotify API credentials not configured', 500)
            except (VendorApiError, InvalidPayload, TemporaryFailure) as e:
                self.logger.warning(f"Token refresh failed: {e}")
                return self._error('Failed to refresh token', 401, needsReauth=True)
            except PersistenceFailure:
                return self._error('Failed to update user tokens', 500)

            return jsonify({'accessToken': user.access_token}), 200

        # User profile

        @app.route('/api/user', methods=['GET', 'PATCH'])
        def user_profile():
            current = self._current_session()
            if current is None:
                return self._error('Not authenticated', 401)
            user = self.users.get_by_id(current.user_id)
            if user is None:
                return self._error('User not found', 404)

            if request.method == 'GET':
                return jsonify({'user': user.public_profile()}), 200

            try:
                update = user_update_from_body(request.get_json(silent=True))
            except InvalidPayload as e:
                return self._error('Invalid user data', 400, details=str(e))

            changes: Dict[str, Any] = {}
            if update.display_name is not None:
                changes['display_name'] = update.display_name
            if update.preferences is not None:
                prefs = update.preferences.model_dump(exclude_none=True)
                changes['preferences'] = replace(user.preferences, **prefs)

            updated = self.users.update(user.id, **changes) if changes else user
            return jsonify({'user': updated.public_profile()}), 200

        # Album metadata

        @app.route('/api/spotify/album', methods=['POST'])
        def spotify_album():
            body = request.get_json(silent=True) or {}
            url = body.get('url') if isinstance(body, dict) else None
            if not url:
                return self._error('Album URL is required', 400)

            try:
                album = self._album_catalog().fetch_album(url)
            except InvalidAlbumUrl as e:
                return self._error(str(e), 400)
            except NotFound:
                return self._error('Album not found', 404)
            except ConfigError:
                return self._error('Spotify API credentials not configured', 500)
            except VendorApiError as e:
                if e.status == 401:
                    return self._error('Spotify API authentication failed.', 401, details=e.message)
                return self._error(e.message, 500)
            except (TemporaryFailure, InvalidPayload) as e:
                log_error(self.logger, "Album fetch failed", e)
                return self._error('Failed to fetch album details', 500)

            return jsonify(album.to_dict()), 200

        # Shelves

        @app.route('/api/user/shelves', methods=['GET', 'POST'])
        def user_shelves():
            current = self._current_session()
            if current is None:
                return self._error('Not authenticated', 401)

            store = self._shelves()
            if request.method == 'GET':
                try:
                    shelves = store.get_shelves(current.external_id)
                except PersistenceFailure as e:
                    log_error(self.logger, "Error fetching shelves", e)
                    return self._error('Internal server error', 500)
                return jsonify({'shelves': [s.to_dict() for s in shelves]}), 200

            try:
                shelves = shelves_from_body(request.get_json(silent=True))
            except InvalidPayload as e:
                return self._error('Invalid shelves data', 400, details=str(e))

            try:
                store.put_shelves(current.external_id, shelves)
            except PersistenceFailure as e:
                log_error(self.logger, "Error saving shelves", e)
                return self._error('Internal server error', 500)

            with CorrelationContext(user_id=current.user_id):
                self.logger.info(f"Saved {len(shelves)} shelves")
            return jsonify({'success': True}), 200

        @app.route('/api/user/<external_id>/shelves', methods=['GET'])
        def public_shelves(external_id: str):
            """Read-only view of someone's shelves."""
            user = self.users.get_by_external_id(external_id)
            try:
                shelves = self._shelves().get_shelves(external_id)
            except PersistenceFailure as e:
                log_error(self.logger, "Error fetching public shelves", e)
                return self._error('Internal server error', 500)

            if user is None and not shelves:
                return self._error('User not found', 404)

            profile = {
                'externalId': external_id,
                'displayName': user.display_name if user else None,
                'imageUrl': user.image_url if user else None,
            }
            return jsonify({'user': profile, 'shelves': [s.to_dict() for s in shelves]}), 200

        # Player

        def player_context() -> Tuple[Optional[UserSession], Any]:
            current = self._current_session()
            if current is None:
                return None, self._error('Not authenticated', 401)
            controller = self.players.get(current.user_id)
            if controller is None:
                return current, self._error('Player not connected', 409)
            return current, controller

        @app.route('/api/player/connect', methods=['POST'])
        def player_connect():
            current = self._current_session()
            if current is None:
                return self._error('Not authenticated', 401)
            controller = self.players.connect(current.user_id, self._credential_for(current.user_id))
            body = controller.snapshot()
            body['connected'] = controller.is_available
            body['deviceName'] = self.players.device_name
            return jsonify(body), 200

        @app.route('/api/player/state', methods=['GET'])
        def player_state():
            current, controller = player_context()
            if current is None or isinstance(controller, tuple):
                return controller

            player_session = self.players.session_for(current.user_id)
            if player_session is not None:
                player_session.refresh_state()

            unified = next((s for s in self._user_shelves(current.external_id)
                            if s.name == UNIFIED_SHELF_NAME), None)
            now_playing = reconcile(controller.state.current_track, unified)

            body = controller.snapshot()
            body['nowPlaying'] = now_playing.to_dict() if now_playing else None
            return jsonify(body), 200

        @app.route('/api/player/play-track', methods=['POST'])
        def player_play_track():
            current = self._current_session()
            if current is None:
                return self._error('Not authenticated', 401)
            try:
                body = play_track_from_body(request.get_json(silent=True))
                context = tuple(tracks_from_records(body.context))
            except InvalidPayload as e:
                return self._error('Invalid play request', 400, details=str(e))

            album = None
            if body.album_id:
                album = self._find_album(self._user_shelves(current.external_id), body.album_id)
            if album is None:
                album = Album(id=body.album_id or '', tracks=context)

            track = next((t for t in album.tracks if ids_match(t.id, body.track_id)), None) or Track(id=body.track_id)
            coordinator = PlaybackCoordinator(self.players.get(current.user_id))
            with CorrelationContext(user_id=current.user_id):
                outcome = coordinator.play_track(album, track)
            return jsonify(outcome.to_dict()), 200

        @app.route('/api/player/play-album', methods=['POST'])
        def player_play_album():
            current = self._current_session()
            if current is None:
                return self._error('Not authenticated', 401)
            try:
                body = play_album_from_body(request.get_json(silent=True))
                context = tracks_from_records(body.context) or None
            except InvalidPayload as e:
                return self._error('Invalid play request', 400, details=str(e))

            if body.album_id:
                album = self._find_album(self._user_shelves(current.external_id), body.album_id)
                if album is None:
                    return self._error('Album not found', 404)
                coordinator = PlaybackCoordinator(self.players.get(current.user_id))
                with CorrelationContext(user_id=current.user_id):
                    outcome = coordinator.play_album(album)
                return jsonify(outcome.to_dict()), 200

            if not body.track_ids:
                return self._error('albumId or trackIds is required', 400)
            controller = self.players.get(current.user_id)
            if controller is None:
                return self._error('Player not connected', 409)
            with CorrelationContext(user_id=current.user_id):
                started = controller.play_album(body.track_ids, context)
            return jsonify({'success': started}), 200

        @app.route('/api/player/toggle', methods=['POST'])
        def player_toggle():
            current, controller = player_context()
            if current is None or isinstance(controller, tuple):
                return controller
            controller.toggle_play_pause()
            return jsonify({'success': True}), 200

        @app.route('/api/player/seek', methods=['POST'])
        def player_seek():
            current, controller = player_context()
            if current is None or isinstance(controller, tuple):
                return controller
            try:
                body = seek_from_body(request.get_json(silent=True))
            except InvalidPayload as e:
                return self._error('positionMs or fraction is required', 400, details=str(e))
            if body.fraction is not None:
                return jsonify({'success': PlaybackCoordinator(controller).seek_to_fraction(body.fraction)}), 200
            if body.position_ms is None:
                return self._error('positionMs or fraction is required', 400)
            controller.seek(max(0, body.position_ms))
            return jsonify({'success': True}), 200

        @app.route('/api/player/next', methods=['POST'])
        def player_next():
            current, controller = player_context()
            if current is None or isinstance(controller, tuple):
                return controller
            return jsonify({'success': controller.next_track()}), 200

        @app.route('/api/player/prev', methods=['POST'])
        def player_prev():
            current, controller = player_context()
            if current is None or isinstance(controller, tuple):
                return controller
            return jsonify({'success': controller.prev_track()}), 200

        @app.route('/api/player/disconnect', methods=['POST'])
        def player_disconnect():
            current = self._current_session()
            if current is None:
                return self._error('Not authenticated', 401)
            return jsonify({'success': self.players.dispose(current.user_id)}), 200

    def run(self) -> None:
        """Run the HTTP server."""
        self.logger.info(f"Starting AlbumShelf HTTP server on {self.host}:{self.port}")
        try:
            self.app.run(
                host=self.host,
                port=self.port,
                debug=self.debug
            )
        finally:
            self.players.dispose_all()


def create_app(**kwargs) -> Flask:
    """Create Flask app for testing."""
    server = HTTPServer(**kwargs)
    return server.app
