"""
Outils de dates dans le fuseau de l'école.
Les plages sont des dates locales inclusives [start_date, end_date].
"""

from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

VALID_PERIODS = {"today", "yesterday", "week", "month", "custom"}

# Abréviations des jours (lundi = 0), affichées sur les graphiques hebdomadaires
DAY_NAMES = ["Lu", "Ma", "Me", "Je", "Ve", "Sa", "Di"]


class DateRange(NamedTuple):
    start_date: date
    end_date: date
    label: str

    @property
    def is_single_day(self) -> bool:
        return self.start_date == self.end_date


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: Optional[str], default: str) -> str:
    """Retourne un nom IANA valide : celui de l'école, sinon la valeur par défaut."""
    if name:
        try:
            ZoneInfo(name)
            return name
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return default


def local_today(now: datetime, tz: str) -> date:
    return now.astimezone(ZoneInfo(tz)).date()


def get_date_range(
    period: str,
    tz: str,
    now: datetime,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> DateRange:
    """
    Plage de dates locale pour une période :
    - today / yesterday : un seul jour
    - week  : les 7 derniers jours, aujourd'hui inclus
    - month : du 1er du mois courant à aujourd'hui
    - custom : start_date et end_date obligatoires, start ≤ end

    Lève ValueError pour une période inconnue ou une plage personnalisée invalide.
    """
    if period not in VALID_PERIODS:
        raise ValueError(f"Période invalide : {period}. Valeurs acceptées : {sorted(VALID_PERIODS)}")

    today = local_today(now, tz)

    if period == "today":
        return DateRange(today, today, "Aujourd'hui")
    if period == "yesterday":
        yesterday = today - timedelta(days=1)
        return DateRange(yesterday, yesterday, "Hier")
    if period == "week":
        return DateRange(today - timedelta(days=6), today, "7 derniers jours")
    if period == "month":
        return DateRange(today.replace(day=1), today, "Ce mois-ci")

    if start_date is None or end_date is None:
        raise ValueError("Les dates de début et de fin sont obligatoires pour une période personnalisée.")
    if start_date > end_date:
        raise ValueError("La date de début doit précéder la date de fin.")
    return DateRange(start_date, end_date, f"{start_date.isoformat()} → {end_date.isoformat()}")


def trailing_week(end_date: date) -> list:
    """Les 7 dates se terminant à end_date (incluse), de la plus ancienne à la plus récente."""
    return [end_date - timedelta(days=offset) for offset in range(6, -1, -1)]
