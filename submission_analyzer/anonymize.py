"""PII-stripped export of a course's data.

Writes ``<data>/anonymous/<course>/`` with the same files as the private
course directory minus the identity map. Name and Canvas-id fields are
dropped and any roster display name found in free text is replaced by
the student's anonymous id.
"""

import logging
import re

from submission_analyzer.identity import IdentityMap
from submission_analyzer.storage import load_json, save_json

logger = logging.getLogger(__name__)

PII_FIELDS = {"name", "studentName", "partnerName", "authorName", "lmsUserId"}


def _name_variants(name: str) -> list:
    """A sortable ``Last, First`` name also appears as ``First Last``."""
    variants = [name]
    if "," in name:
        last, _, first = name.partition(",")
        if first.strip() and last.strip():
            variants.append(f"{first.strip()} {last.strip()}")
    return variants


def build_name_pattern(identity: IdentityMap):
    """Return ``(regex, {lowercased name: anon_id})`` for roster names."""
    lookup = {}
    for anon_id in identity.anon_ids():
        name = (identity.name(anon_id, default="") or "").strip()
        if not name:
            continue
        for variant in _name_variants(name):
            lookup.setdefault(variant.lower(), anon_id)
    if not lookup:
        return None, lookup
    alternatives = sorted(lookup, key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(a) for a in alternatives), re.IGNORECASE)
    return pattern, lookup


def scrub(value, pattern, lookup):
    """Recursively drop PII fields and replace names inside strings."""
    if isinstance(value, dict):
        return {
            k: scrub(v, pattern, lookup)
            for k, v in value.items()
            if k not in PII_FIELDS
        }
    if isinstance(value, list):
        return [scrub(v, pattern, lookup) for v in value]
    if isinstance(value, str) and pattern is not None:
        return pattern.sub(lambda m: lookup[m.group(0).lower()], value)
    return value


def export_course(course, data) -> dict:
    """Mirror index, shards, analysis and grading files; returns file count."""
    identity = IdentityMap.load(data.id_mapping(course.code), course.prefix)
    pattern, lookup = build_name_pattern(identity)
    src = data.course_dir(course.code)
    dst = data.anonymous_dir(course.code)

    sources = [data.submission_index(course.code), data.analysis(course.code)]
    sources += sorted(data.submissions_dir(course.code).glob("*.json"))
    sources += sorted(data.grading_dir(course.code).glob("*.json"))

    written = 0
    for path in sources:
        payload = load_json(path)
        if payload is None:
            continue
        save_json(dst / path.relative_to(src), scrub(payload, pattern, lookup))
        written += 1

    logger.info("Anonymized export: %d files -> %s", written, dst)
    return {"files": written}
