"""
Publication / abonnement en mémoire, mono-processus.

- subscribe(key, handler) retourne une fonction de désabonnement (idempotente)
- publish(key, payload) appelle de façon synchrone, dans l'ordre d'inscription,
  tous les handlers inscrits pour cette clé au moment de l'appel
- pas de persistance ni de rejeu : un abonné inscrit après un publish ne le reçoit pas
- un handler qui lève une exception est journalisé ; les suivants sont quand même appelés

Les registres ne sont modifiés que depuis la boucle asyncio (sections synchrones),
aucun verrou n'est donc nécessaire. La diffusion entre plusieurs instances du serveur
demanderait un relais externe (hors périmètre).
"""

import logging
from typing import Any, Callable, Dict, Hashable, List

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class PubSub:
    def __init__(self, name: str = "pubsub"):
        self.name = name
        self._handlers: Dict[Hashable, List[Handler]] = {}

    def subscribe(self, key: Hashable, handler: Handler) -> Unsubscribe:
        self._handlers.setdefault(key, []).append(handler)
        active = True

        def unsubscribe() -> None:
            nonlocal active
            if not active:
                return
            active = False
            handlers = self._handlers.get(key)
            if handlers is None:
                return
            try:
                handlers.remove(handler)
            except ValueError:
                pass
            if not handlers:
                del self._handlers[key]

        return unsubscribe

    def publish(self, key: Hashable, payload: Any) -> int:
        """Diffuse payload aux abonnés de key. Retourne le nombre de handlers appelés sans erreur."""
        delivered = 0
        for handler in tuple(self._handlers.get(key, ())):
            try:
                handler(payload)
                delivered += 1
            except Exception:
                logger.exception("[%s] Handler en échec pour la clé %s", self.name, key)
        return delivered

    def subscriber_count(self, key: Hashable) -> int:
        return len(self._handlers.get(key, ()))

    def keys(self) -> List[Hashable]:
        """Clés ayant au moins un abonné."""
        return list(self._handlers.keys())
