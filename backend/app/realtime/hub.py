"""
Point de composition des registres temps réel du processus.

Une seule instance est créée au démarrage (lifespan de app.main) et transmise aux
routers par dépendance ; les tests construisent la leur.
"""

from fastapi import Request

from app.realtime.connection_tracker import ConnectionTracker
from app.realtime.event_emitter import EventEmitter
from app.realtime.snapshot_bus import SnapshotBus


class RealtimeHub:
    def __init__(self):
        self.snapshot_bus = SnapshotBus()
        self.event_emitter = EventEmitter()
        self.connection_tracker = ConnectionTracker()


def get_hub(request: Request) -> RealtimeHub:
    """Dépendance FastAPI : le hub partagé de l'application."""
    return request.app.state.hub
