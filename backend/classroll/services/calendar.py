"""
Calcul du calendrier effectif d'un cours (fonctions pures, aucun accès BDD).

Motif hebdomadaire + exceptions persistées → sémantique d'une date :
- NO_CLASS  : ni jour de cours, ni rattrapage
- REGULAR   : jour du motif hebdomadaire, sans exception
- CANCELLED : annulation enregistrée à cette date
- MAKEUP    : rattrapage enregistré à cette date (lié à une annulation)

Numéro de semaine : compté depuis course.start_date par tranches de 7 jours,
que la tranche contienne ou non un jour de cours (semaine 1 = 7 premiers jours).
"""

from datetime import date, timedelta
from typing import Iterable, Iterator, Optional, Set, Tuple

from classroll.models.course import WEEKDAY_CODES
from classroll.models.schedule_exception import CANCELLATION, MAKEUP
from classroll.schemas.schedule import (
    CANCELLED,
    MAKEUP_CLASS,
    NO_CLASS,
    REGULAR,
    OccurrenceView,
)


def parse_weekdays(weekdays: str) -> Set[int]:
    """"MON,WED" → {0, 2} (indices datetime.date.weekday())."""
    codes = [code.strip().upper() for code in (weekdays or "").split(",") if code.strip()]
    return {WEEKDAY_CODES.index(code) for code in codes if code in WEEKDAY_CODES}


def format_weekdays(codes: Iterable[str]) -> str:
    """["WED", "MON"] → "MON,WED" (ordre de la semaine)."""
    wanted = {code.strip().upper() for code in codes}
    return ",".join(code for code in WEEKDAY_CODES if code in wanted)


def week_number(course_start: date, day: date) -> int:
    """Semaine de `day` relativement au début du cours (1 minimum)."""
    return max((day - course_start).days // 7 + 1, 1)


def in_course_range(course, day: date) -> bool:
    return course.start_date <= day <= course.end_date


def is_meeting_day(course, day: date) -> bool:
    """Vrai si le motif hebdomadaire du cours tombe ce jour-là (dans la période du cours)."""
    return in_course_range(course, day) and day.weekday() in parse_weekdays(course.weekdays)


def iter_meeting_dates(
    course,
    start: date,
    end: date,
    skip_weeks: Optional[Iterable[int]] = None,
) -> Iterator[Tuple[date, int]]:
    """
    Énumère paresseusement les (date, semaine) du motif hebdomadaire dans [start, end],
    restreint à la période du cours, en excluant les semaines listées dans skip_weeks.
    """
    skipped = set(skip_weeks or ())
    days = parse_weekdays(course.weekdays)
    current = max(start, course.start_date)
    last = min(end, course.end_date)

    while current <= last:
        if current.weekday() in days:
            week = week_number(course.start_date, current)
            if week not in skipped:
                yield current, week
        current += timedelta(days=1)


def resolve_occurrence(course, day: date, exception=None, partner=None) -> OccurrenceView:
    """
    Résout la sémantique de `day` pour `course`.

    `exception` : l'exception persistée à cette date (ou None).
    `partner`   : l'exception liée, soit l'annulation remplacée pour un MAKEUP,
                  soit le rattrapage éventuel pour une CANCELLATION.
    Ne modifie jamais l'état.
    """
    regular_day = is_meeting_day(course, day)

    if exception is not None:
        if exception.exception_type == CANCELLATION:
            return OccurrenceView(
                course_id=course.id,
                date=day,
                kind=CANCELLED,
                has_class=False,
                is_regular_day=regular_day,
                week=exception.week,
                exception_id=exception.id,
                related_date=partner.date if partner is not None else None,
                reason=exception.reason,
            )
        if exception.exception_type == MAKEUP:
            return OccurrenceView(
                course_id=course.id,
                date=day,
                kind=MAKEUP_CLASS,
                has_class=True,
                is_regular_day=regular_day,
                week=exception.week,
                start_time=exception.start_time or course.start_time,
                end_time=exception.end_time or course.end_time,
                exception_id=exception.id,
                related_date=partner.date if partner is not None else None,
                reason=exception.reason,
            )

    if regular_day:
        return OccurrenceView(
            course_id=course.id,
            date=day,
            kind=REGULAR,
            has_class=True,
            is_regular_day=True,
            week=week_number(course.start_date, day),
            start_time=course.start_time,
            end_time=course.end_time,
        )

    return OccurrenceView(
        course_id=course.id,
        date=day,
        kind=NO_CLASS,
        has_class=False,
        is_regular_day=False,
    )
