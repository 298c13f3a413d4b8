"""
Calcul du statut de présence effectif (source unique de vérité).

Toutes les comparaisons se font en minutes depuis minuit, heure locale de l'école.
Les fonctions de ce module sont pures : aucune I/O, aucune dépendance au fuseau.

Règles de compute_status :
1. Statut stocké en base → renvoyé tel quel (décision humaine ou terminal)
2. Pas d'heure de début de cours → PENDING_EARLY
3. Maintenant < début du cours → PENDING_EARLY
4. Maintenant < début + cutoff → PENDING_LATE
5. Sinon → ABSENT
"""

import math
from datetime import datetime
from typing import Iterable, Literal, Optional
from zoneinfo import ZoneInfo

EffectiveStatus = Literal["PRESENT", "LATE", "ABSENT", "EXCUSED", "PENDING_EARLY", "PENDING_LATE"]

PERSISTED_STATUSES = ("PRESENT", "LATE", "ABSENT", "EXCUSED")
PENDING_STATUSES = ("PENDING_EARLY", "PENDING_LATE")

SCOPE_STARTED = "started"
SCOPE_ACTIVE = "active"
VALID_SCOPES = {SCOPE_STARTED, SCOPE_ACTIVE}


def parse_time_to_minutes(value: Optional[str]) -> Optional[int]:
    """
    Convertit "HH:MM" en minutes depuis minuit.
    Retourne None si la valeur est vide ou mal formée (horaire inconnu).
    """
    if not value:
        return None
    try:
        hours, minutes = value.strip().split(":")[:2]
        hours, minutes = int(hours), int(minutes)
    except ValueError:
        return None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None
    return hours * 60 + minutes


def get_now_minutes_in_zone(now: datetime, timezone: str) -> int:
    """Minutes écoulées depuis minuit dans le fuseau de l'école."""
    local = now.astimezone(ZoneInfo(timezone))
    return local.hour * 60 + local.minute


def compute_status(
    db_status: Optional[str],
    class_start_time: Optional[str],
    absence_cutoff_minutes: int,
    now_minutes: int,
) -> EffectiveStatus:
    """Statut effectif d'un élève à l'instant now_minutes (voir règles du module)."""
    if db_status:
        return db_status

    class_start = parse_time_to_minutes(class_start_time)
    if class_start is None:
        return "PENDING_EARLY"

    if now_minutes < class_start:
        return "PENDING_EARLY"
    if now_minutes < class_start + absence_cutoff_minutes:
        return "PENDING_LATE"
    return "ABSENT"


def compute_student_statuses(students: Iterable[dict], absence_cutoff_minutes: int, now_minutes: int) -> dict:
    """
    Calcul en lot : chaque élément porte id, today_status et class_start_time.
    Retourne {id: statut effectif}.
    """
    return {
        student["id"]: compute_status(
            student.get("today_status"),
            student.get("class_start_time"),
            absence_cutoff_minutes,
            now_minutes,
        )
        for student in students
    }


def round_half_up(value: float) -> int:
    """Entier le plus proche, .5 vers le haut (2.5 → 3). Valeurs positives uniquement."""
    return math.floor(value + 0.5)


def calculate_attendance_percent(present: int, late: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up((present + late) / total * 100)


def split_no_scan_counts(
    classes: Iterable[dict],
    class_student_counts: dict,
    class_attendance_counts: dict,
    absence_cutoff_minutes: int,
    now_minutes: int,
) -> dict:
    """
    Répartit les élèves sans scan aujourd'hui entre pending_early / pending_late / absent,
    classe par classe, selon l'horaire de chaque classe.

    classes : [{"id": ..., "start_time": "HH:MM" | None}]
    """
    split = {"pending_early": 0, "pending_late": 0, "absent": 0}

    for cls in classes:
        total_in_class = class_student_counts.get(cls["id"], 0)
        attended = class_attendance_counts.get(cls["id"], 0)
        not_arrived = max(0, total_in_class - attended)
        if not_arrived == 0:
            continue

        status = compute_status(None, cls.get("start_time"), absence_cutoff_minutes, now_minutes)
        if status == "PENDING_EARLY":
            split["pending_early"] += not_arrived
        elif status == "PENDING_LATE":
            split["pending_late"] += not_arrived
        else:
            split["absent"] += not_arrived

    return split


def get_started_class_ids(classes: Iterable[dict], now_minutes: int) -> list:
    """Classes dont le cours a commencé. Une classe sans horaire est considérée commencée."""
    started = []
    for cls in classes:
        start = parse_time_to_minutes(cls.get("start_time"))
        if start is None or now_minutes >= start:
            started.append(cls["id"])
    return started


def get_active_class_ids(classes: Iterable[dict], now_minutes: int, absence_cutoff_minutes: int) -> list:
    """
    Classes dont la fenêtre [début, max(fin, début + cutoff)) contient maintenant.
    Une classe sans horaire n'est jamais active.
    """
    active = []
    for cls in classes:
        start = parse_time_to_minutes(cls.get("start_time"))
        if start is None:
            continue
        end_from_schedule = parse_time_to_minutes(cls.get("end_time"))
        if end_from_schedule is None:
            end_from_schedule = start
        end = max(end_from_schedule, start + absence_cutoff_minutes)
        if start <= now_minutes < end:
            active.append(cls["id"])
    return active


def resolve_scope_class_ids(classes: list, scope: str, now_minutes: int, absence_cutoff_minutes: int) -> list:
    """
    Classes retenues pour les compteurs "aujourd'hui" selon le scope.

    "started" retombe sur toutes les classes quand aucune n'a commencé (le tableau de bord
    ne doit pas se vider avant le début de la journée). "active" n'a pas ce repli.
    """
    if scope not in VALID_SCOPES:
        raise ValueError(f"Scope invalide : {scope}. Valeurs acceptées : {sorted(VALID_SCOPES)}")

    all_ids = [cls["id"] for cls in classes]
    if scope == SCOPE_ACTIVE:
        return get_active_class_ids(classes, now_minutes, absence_cutoff_minutes)

    started = get_started_class_ids(classes, now_minutes)
    if not started and all_ids:
        return all_ids
    return started


def normalize_absent(
    total_students: int,
    present: int,
    late: int,
    excused: int,
    pending_early: int,
    pending_late: int,
    absent_raw: int,
) -> int:
    """
    Borne le nombre d'absents pour que la somme des compteurs ne dépasse jamais l'effectif :
    absent ∈ [0, total - (present + late + excused + pending_early + pending_late)].
    """
    reserved = present + late + excused + pending_early + pending_late
    return max(0, min(absent_raw, total_students - reserved))
