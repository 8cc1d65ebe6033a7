"""
Subject catalog and subject-picker ordering.

The catalog and the per-domain priority lists are fixed at import time.
Pages that offer a subject picker call ``get_sorted_subjects`` to split the
catalog into the editorially ranked "popular" subjects and the rest.
"""

from collections import namedtuple
from enum import Enum

SUBJECTS = (
    "Biology",
    "Business Studies",
    "Business Studies (HSC Accelerated)",
    "Chemistry",
    "Chinese Continuers",
    "Chinese Continuers (HSC Accelerated)",
    "Classical Greek",
    "Drama",
    "Economics",
    "Engineering Studies",
    "English Advanced",
    "Geography",
    "Geography (HSC Accelerated)",
    "German Continuers (HSC Accelerated)",
    "Health & Movement Science",
    "Latin Continuers",
    "Legal Studies",
    "Mathematics Advanced",
    "Mathematics Advanced X1",
    "Modern History",
    "Modern History (HSC Accelerated)",
    "Music 2",
    "Music 2 (HSC Accelerated)",
    "NSW School of Languages",
    "Physics",
    "Software Engineering",
    "Visual Arts",
    "Other",
)

ALL_SUBJECTS_LABEL = "All"

# Only used by announcement filters.
ANNOUNCEMENT_SUBJECTS = (ALL_SUBJECTS_LABEL,) + SUBJECTS

PRIORITY_STANDARD = (
    "English Advanced",
    "Mathematics Advanced",
    "Mathematics Extension 1",
    "Physics",
    "Chemistry",
    "Biology",
    "Economics",
    "Business Studies",
    "Modern History",
    "Geography",
    "Legal Studies",
    "Software Engineering",
    "Engineering Studies",
)

PRIORITY_ESSAY = (
    "English Advanced",
    "Economics",
    "Business Studies",
    "Modern History",
    "Geography",
    "Legal Studies",
)


class Domain(str, Enum):
    STANDARD = "standard"
    ESSAY = "essay"


PRIORITY_LISTS = {
    Domain.STANDARD: PRIORITY_STANDARD,
    Domain.ESSAY: PRIORITY_ESSAY,
}

SubjectPartition = namedtuple("SubjectPartition", ["popular", "others"])


def _collation_key(subject):
    # Case-insensitive first, exact string as tie-breaker keeps the order total.
    return (subject.casefold(), subject)


def partition(domain, catalog=SUBJECTS, priority_lists=None):
    """Split ``catalog`` into (popular, others) for a picker domain.

    ``popular`` follows the domain's priority list and skips entries that are
    not in the catalog. ``others`` is every catalog subject not named by the
    priority list, sorted ascending. Unknown domains raise ``ValueError``.
    """
    domain = Domain(domain)
    if priority_lists is None:
        priority_lists = PRIORITY_LISTS
    priority = tuple(priority_lists[domain])

    catalog_set = set(catalog)
    priority_set = set(priority)

    popular = [s for s in priority if s in catalog_set]
    others = sorted((s for s in catalog if s not in priority_set), key=_collation_key)
    return SubjectPartition(popular, others)


def get_sorted_subjects(domain):
    """Picker ordering for the compiled-in catalog."""
    return partition(domain, SUBJECTS, PRIORITY_LISTS)


def is_known_subject(value, catalog=SUBJECTS):
    """Exact-match membership test, no trimming or case folding."""
    return value in catalog
