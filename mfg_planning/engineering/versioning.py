"""
Effectivity rules shared by BOM and routing versions.

At most one released document per product may be effective on any date.
Releasing a version closes the window of the overlapping released versions:
- an older version (earlier start) ends the day before the new one starts;
- a newer version (later start) keeps its window and the new one ends the day before it;
- a version starting the same day is obsoleted.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Sequence, Tuple, TypeVar

from mfg_planning.engineering.engineering_models import DocumentStatus

logger = logging.getLogger(__name__)

Doc = TypeVar("Doc")


def _window(doc) -> Tuple[date, date]:
    return (doc.effective_from or date.min, doc.effective_to or date.max)


def windows_overlap(a, b) -> bool:
    a_from, a_to = _window(a)
    b_from, b_to = _window(b)
    return a_from <= b_to and b_from <= a_to


def supersede_overlapping(new_doc: Doc, versions: Sequence[Doc]) -> Tuple[Doc, List[Doc]]:
    """
    Resolve effectivity overlaps for a document about to be released.

    Returns:
        (new_doc with its window possibly shortened, other versions that changed)
    """
    changed = []
    others = sorted(
        (v for v in versions
         if v.id != new_doc.id and v.status == DocumentStatus.RELEASED),
        key=lambda v: v.effective_from or date.min,
    )

    for other in others:
        if not windows_overlap(new_doc, other):
            continue

        new_from, _ = _window(new_doc)
        other_from, _ = _window(other)

        if other_from < new_from:
            changed.append(other.with_changes(effective_to=new_from - timedelta(days=1)))
            logger.info(f"Version {other.version} of {other.product_id} superseded from {new_from}")
        elif other_from > new_from:
            new_doc = new_doc.with_changes(effective_to=other_from - timedelta(days=1))
        else:
            changed.append(other.with_changes(status=DocumentStatus.OBSOLETE))
            logger.info(f"Version {other.version} of {other.product_id} obsoleted by version {new_doc.version}")

    return new_doc, changed
