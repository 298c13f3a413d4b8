"""
Bus des snapshots agrégés.

Clés :
- ("school", school_id)            → snapshots d'une école (scopes started et active)
- ("class", school_id, class_id)   → snapshots d'une classe
- ADMIN_KEY                        → tous les snapshots d'école (flux super-admin)
"""

import uuid
from typing import Callable, List, Tuple

from app.realtime.pubsub import PubSub, Unsubscribe
from app.schemas.snapshot import ClassSnapshot, SchoolSnapshot

ADMIN_KEY = ("admin",)


def school_key(school_id: uuid.UUID) -> tuple:
    return ("school", str(school_id))


def class_key(school_id: uuid.UUID, class_id: uuid.UUID) -> tuple:
    return ("class", str(school_id), str(class_id))


class SnapshotBus(PubSub):
    def __init__(self):
        super().__init__(name="snapshot_bus")

    def publish_school_snapshot(self, snapshot: SchoolSnapshot) -> None:
        self.publish(school_key(snapshot.school_id), snapshot)
        self.publish(ADMIN_KEY, snapshot)

    def publish_class_snapshot(self, snapshot: ClassSnapshot) -> None:
        self.publish(class_key(snapshot.school_id, snapshot.class_id), snapshot)

    def on_school_snapshot(self, school_id: uuid.UUID, handler: Callable[[SchoolSnapshot], None]) -> Unsubscribe:
        return self.subscribe(school_key(school_id), handler)

    def on_class_snapshot(
        self, school_id: uuid.UUID, class_id: uuid.UUID, handler: Callable[[ClassSnapshot], None],
    ) -> Unsubscribe:
        return self.subscribe(class_key(school_id, class_id), handler)

    def on_admin_snapshot(self, handler: Callable[[SchoolSnapshot], None]) -> Unsubscribe:
        return self.subscribe(ADMIN_KEY, handler)

    def active_class_keys(self) -> List[Tuple[uuid.UUID, uuid.UUID]]:
        """(school_id, class_id) des classes ayant au moins un abonné (rafraîchissement périodique)."""
        return [
            (uuid.UUID(key[1]), uuid.UUID(key[2]))
            for key in self.keys()
            if key[0] == "class"
        ]
