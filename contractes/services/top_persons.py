"""Precomputed ranking of persons linked to the most active awardees.

The CSV is produced offline by the network analysis job and shipped with
the deployment; a missing file just means no ranking is shown.
"""

import csv
import logging
import math
from functools import lru_cache
from pathlib import Path

from contractes.config import TOP_PERSONS_CSV_PATH
from contractes.models import TopLinkedPerson

logger = logging.getLogger(__name__)

MAIN_POSITION_LABELS = {
    "ADMINISTRADOR": "Administrador",
    "ORGANO_GOBIERNO": "Òrgan de govern",
}


def _to_number(value: str | None) -> float:
    try:
        parsed = float(value or "")
    except ValueError:
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def map_main_position(raw: str) -> str:
    return MAIN_POSITION_LABELS.get(raw, raw or "—")


@lru_cache(maxsize=4)
def _load(path: Path) -> tuple[TopLinkedPerson, ...]:
    try:
        with path.open(encoding="utf-8", newline="") as f:
            rows = list(csv.DictReader(f))
    except FileNotFoundError:
        logger.info(f"Top linked persons CSV not found at {path}")
        return ()

    persons = []
    for row in rows:
        if not any((cell or "").strip() for cell in row.values() if isinstance(cell, str)):
            continue
        rank = int(_to_number(row.get("rank")))
        person_name = row.get("person_name") or ""
        if rank <= 0 or not person_name.strip():
            continue
        persons.append(
            TopLinkedPerson(
                rank=rank,
                person_name=person_name,
                total_amount_active_period=_to_number(row.get("total_amount_active_period")),
                total_contracts_active_period=_to_number(row.get("total_contracts_active_period")),
                active_companies_with_ops=_to_number(row.get("active_companies_with_ops")),
                active_operation_days=_to_number(row.get("active_operation_days")),
                main_position=map_main_position((row.get("main_position") or "").strip()),
                main_position_amount=_to_number(row.get("main_position_amount")),
                companies_sample=[
                    v.strip() for v in (row.get("companies_sample") or "").split("|") if v.strip()
                ],
            )
        )

    persons.sort(key=lambda p: p.rank)
    logger.info(f"Loaded {len(persons)} top linked persons from {path}")
    return tuple(persons)


def load_top_linked_persons(path: Path | None = None) -> list[TopLinkedPerson]:
    """Ranked persons from the CSV, empty when the file is missing.

    The file is parsed once per path for the life of the process.
    """
    return list(_load(Path(path or TOP_PERSONS_CSV_PATH)))
