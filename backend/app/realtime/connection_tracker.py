"""
Compteurs des connexions SSE ouvertes, par clé de périmètre.
En mémoire uniquement : remis à zéro au redémarrage du processus.
"""

import logging
from typing import Dict

from app.schemas.snapshot import ConnectionStats

logger = logging.getLogger(__name__)

CONNECT = "connect"
DISCONNECT = "disconnect"


class ConnectionTracker:
    def __init__(self):
        self._total = 0
        self._by_key: Dict[str, int] = {}

    def track(self, key: str, action: str) -> None:
        if action == CONNECT:
            self._total += 1
            self._by_key[key] = self._by_key.get(key, 0) + 1
            return
        if action != DISCONNECT:
            raise ValueError(f"Action invalide : {action}")

        current = self._by_key.get(key, 0)
        if current <= 0:
            # Déconnexion sans connexion correspondante : le compteur ne descend jamais sous zéro
            logger.warning("Déconnexion ignorée pour %s : aucune connexion suivie.", key)
            return
        self._total -= 1
        if current == 1:
            del self._by_key[key]
        else:
            self._by_key[key] = current - 1

    def get_stats(self) -> ConnectionStats:
        return ConnectionStats(total=self._total, by_key=dict(self._by_key))
