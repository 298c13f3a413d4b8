"""
Émetteur des scans IN/OUT individuels.

Chaque scan est publié sur la clé de son école et sur ALL_SCHOOLS_KEY (flux super-admin).
Les sessions refiltrent quand même le contenu (école, classe) avant d'envoyer.
"""

import uuid
from typing import Callable

from app.realtime.pubsub import PubSub, Unsubscribe
from app.schemas.attendance import AttendanceEventPayload

ALL_SCHOOLS_KEY = "*"


class EventEmitter(PubSub):
    def __init__(self):
        super().__init__(name="event_emitter")

    def emit_attendance(self, payload: AttendanceEventPayload) -> None:
        self.publish(str(payload.school_id), payload)
        self.publish(ALL_SCHOOLS_KEY, payload)

    def on_attendance(
        self, school_id: uuid.UUID, handler: Callable[[AttendanceEventPayload], None],
    ) -> Unsubscribe:
        return self.subscribe(str(school_id), handler)

    def on_any_attendance(self, handler: Callable[[AttendanceEventPayload], None]) -> Unsubscribe:
        return self.subscribe(ALL_SCHOOLS_KEY, handler)
