"""
Session SSE d'un client connecté.

Cycle de vie :
AUTHENTICATING → AUTHORIZING → CONNECTED → STREAMING → CLOSING → CLOSED

- authenticate() / authorize() sont appelés par le router avant de répondre : une erreur
  à ce stade rejette la connexion (401 / 403 / 404) avant toute inscription.
- stream() est le corps de la StreamingResponse : il inscrit la connexion dans le
  ConnectionTracker, envoie le message "connected" et les snapshots initiaux, s'abonne
  aux bus, puis alterne messages publiés et heartbeats.
- close() s'exécute exactement une fois quelle que soit la sortie (déconnexion du client,
  annulation de la tâche, erreur) : désabonnements, arrêt des timers, décompte.

Les handlers inscrits sur les bus ne font que déposer le message dans une file bornée :
une erreur d'envoi n'atteint jamais le publieur ni les autres abonnés.
"""

import asyncio
import json
import logging
import time
from contextlib import ExitStack
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from app.config import settings
from app.exceptions import TransientDeliveryError
from app.realtime.connection_tracker import CONNECT, DISCONNECT
from app.realtime.pubsub import Unsubscribe
from app.schemas.auth import TokenClaims
from app.services import access_service, auth_service

logger = logging.getLogger(__name__)

AUTHENTICATING = "AUTHENTICATING"
AUTHORIZING = "AUTHORIZING"
CONNECTED = "CONNECTED"
STREAMING = "STREAMING"
CLOSING = "CLOSING"
CLOSED = "CLOSED"

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Désactive le buffering nginx
}


def encode_event(message: Any) -> str:
    """Trame SSE "data: <json>\\n\\n". Lève TypeError / ValueError si non sérialisable."""
    if isinstance(message, BaseModel):
        message = message.model_dump(mode="json")
    return f"data: {json.dumps(message, ensure_ascii=False)}\n\n"


def heartbeat_frame() -> str:
    """Commentaire SSE, ignoré par les parseurs côté client."""
    return f": heartbeat {int(time.time() * 1000)}\n\n"


class _Ticker:
    """Message périodique (ex. statistiques de connexions du flux admin)."""

    def __init__(self, interval: float, build: Callable[[], Any]):
        self.interval = interval
        self.build = build
        self.next_at = 0.0


class StreamSession:
    def __init__(
        self,
        hub,
        *,
        heartbeat_seconds: Optional[float] = None,
        queue_size: Optional[int] = None,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self.hub = hub
        self.state = AUTHENTICATING
        self.claims: Optional[TokenClaims] = None
        self.connection_key: Optional[str] = None

        self._heartbeat_seconds = heartbeat_seconds or settings.SSE_HEARTBEAT_SECONDS
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size or settings.SSE_QUEUE_SIZE)
        self._is_disconnected = is_disconnected
        self._hello: Any = None
        self._initial: List[Callable[[], Awaitable[Iterable[Any]]]] = []
        self._listeners: List[Callable[[], Unsubscribe]] = []
        self._tickers: List[_Ticker] = []
        self._disposers = ExitStack()
        self._tracked = False
        self._closed = False

    # --- Authentification / autorisation ---

    def authenticate(self, token: Optional[str], require_stream_claim: Optional[bool] = None) -> TokenClaims:
        """Lève AuthenticationError si le jeton est absent, invalide ou sans claim de streaming."""
        self._expect(AUTHENTICATING)
        self.claims = auth_service.decode_stream_token(token, require_stream_claim)
        self.state = AUTHORIZING
        return self.claims

    def authorize(self, roles: Iterable[str], school_id=None) -> None:
        """Vérifie le rôle puis le périmètre école (le SUPER_ADMIN passe toujours)."""
        self._expect(AUTHORIZING)
        access_service.require_roles(self.claims, roles)
        if school_id is not None:
            access_service.require_school_scope(self.claims, school_id)

    def accept(self, connection_key: str, hello: Any) -> None:
        """Autorisation terminée : la connexion sera suivie sous connection_key."""
        self._expect(AUTHORIZING)
        self.connection_key = connection_key
        self._hello = hello
        self.state = CONNECTED

    # --- Configuration du flux (avant stream()) ---

    def add_initial(self, factory: Callable[[], Awaitable[Iterable[Any]]]) -> None:
        """Messages calculés à la connexion (ex. snapshot initial)."""
        self._initial.append(factory)

    def listen(self, subscribe: Callable[[], Unsubscribe]) -> None:
        """subscribe() sera appelé à l'ouverture ; son désabonnement est garanti à la fermeture."""
        self._listeners.append(subscribe)

    def every(self, interval: float, build: Callable[[], Any]) -> None:
        self._tickers.append(_Ticker(interval, build))

    # --- Envoi ---

    def push(self, message: Any) -> bool:
        """Handler de bus : dépose le message sans jamais lever. Retourne False si non livré."""
        try:
            self._enqueue(message)
        except TransientDeliveryError as exc:
            logger.warning("[SSE] Message non livré (%s) : %s", self.connection_key, exc.message)
            return False
        return True

    def _enqueue(self, message: Any) -> None:
        if self._closed:
            raise TransientDeliveryError("Session fermée.")
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            raise TransientDeliveryError("File d'envoi saturée.")

    def _frame(self, message: Any) -> Optional[str]:
        try:
            return encode_event(message)
        except (TypeError, ValueError):
            logger.exception("[SSE] Message non sérialisable ignoré (%s)", self.connection_key)
            return None

    # --- Cycle de vie ---

    def response(self) -> StreamingResponse:
        return StreamingResponse(self.stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def stream(self):
        """Corps de la réponse SSE ; se termine à la déconnexion du client."""
        self._expect(CONNECTED)
        try:
            self._open()
            frame = self._frame(self._hello)
            if frame:
                yield frame

            for factory in self._initial:
                try:
                    messages = await factory()
                except Exception:
                    logger.exception("[SSE] Snapshot initial indisponible (%s)", self.connection_key)
                    continue
                for message in messages:
                    frame = self._frame(message)
                    if frame:
                        yield frame

            for subscribe in self._listeners:
                self._disposers.callback(subscribe())
            self.state = STREAMING

            async for frame in self._pump():
                yield frame
        finally:
            self.close()

    async def _pump(self):
        loop = asyncio.get_running_loop()
        next_heartbeat = loop.time() + self._heartbeat_seconds
        for ticker in self._tickers:
            ticker.next_at = loop.time() + ticker.interval

        while not self._closed:
            now = loop.time()
            if now >= next_heartbeat:
                if self._is_disconnected is not None and await self._is_disconnected():
                    logger.info("[SSE] Client parti détecté au heartbeat (%s)", self.connection_key)
                    return
                yield heartbeat_frame()
                next_heartbeat = now + self._heartbeat_seconds

            for ticker in self._tickers:
                if now >= ticker.next_at:
                    ticker.next_at = now + ticker.interval
                    frame = self._frame(ticker.build())
                    if frame:
                        yield frame

            deadline = min([next_heartbeat] + [t.next_at for t in self._tickers])
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError:
                continue
            frame = self._frame(message)
            if frame:
                yield frame

    def _open(self) -> None:
        self.hub.connection_tracker.track(self.connection_key, CONNECT)
        self._tracked = True
        logger.info("[SSE] Nouvelle connexion %s, rôle %s", self.connection_key, self.claims.role)

    def close(self) -> None:
        """Libère abonnements et compteur. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self.state = CLOSING
        try:
            self._disposers.close()
        finally:
            if self._tracked:
                self.hub.connection_tracker.track(self.connection_key, DISCONNECT)
                logger.info("[SSE] Connexion fermée %s", self.connection_key)
            self.state = CLOSED

    def _expect(self, state: str) -> None:
        if self.state != state:
            raise RuntimeError(f"Transition invalide depuis l'état {self.state} (attendu {state}).")
