# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

"""
Document Number Generator

Renders human-readable, per-tenant unique document numbers from a tenant's
configured prefix and pattern.

TOKENS:
    {PREFIX}      configured prefix (e.g., BILL)
    {DATE}        YYYYMMDD
    {YEAR}        YYYY
    {MONTH}       MM
    {DAY}         DD
    {SEQUENCE}    counter, unpadded
    {SEQUENCE2}   counter, zero-padded to 2 digits (also 3 and 4)

ALLOCATION:
1. UPDATE document_sequences SET next_sequence = next_sequence + 1 (row is
   write-locked until the caller's transaction ends).
2. Render the candidate; if it already exists for the tenant, bump and retry,
   up to NUMBER_ALLOCATION_ATTEMPTS.
3. The existence check is advisory. The (tenant_id, document_number) unique
   constraint on insert is authoritative; a violation there re-runs the whole
   operation (see concurrency.run_with_retry).

FALLBACK: a broken template or unreadable counter falls back to
PREFIX-YYYYMMDD-NNNN, sequenced from the highest existing number of the day.
"""

from __future__ import annotations

import re
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..errors import AllocationExhaustedError, ValidationError
from ..models import DocumentSequence
from ..time_utils import utcnow


DEFAULT_PATTERN = "{PREFIX}-{DATE}-{SEQUENCE4}"

DEFAULT_PREFIXES = {
    "bill": "BILL",
    "purchase": "PUR",
    "sales_return": "SR-RET",
    "purchase_return": "PR-RET",
}

_TOKEN_RE = re.compile(r"\{([A-Z0-9]+)\}")
_SEQUENCE_TOKEN_RE = re.compile(r"^SEQUENCE([2-4])?$")


class TemplateError(ValueError):
    """Raised when a numbering pattern cannot be rendered."""


def render_pattern(pattern: str, *, prefix: str, sequence: int, on: datetime) -> str:
    """
    Substitute every {TOKEN} in pattern. Unknown tokens and patterns without
    a sequence token raise TemplateError.
    """
    if not pattern:
        raise TemplateError("pattern is empty")
    if sequence is None or sequence < 1:
        raise TemplateError(f"invalid sequence value: {sequence!r}")

    values = {
        "PREFIX": prefix or "",
        "DATE": on.strftime("%Y%m%d"),
        "YEAR": on.strftime("%Y"),
        "MONTH": on.strftime("%m"),
        "DAY": on.strftime("%d"),
    }

    seen_sequence = False

    def _sub(match: re.Match) -> str:
        nonlocal seen_sequence
        token = match.group(1)
        seq_match = _SEQUENCE_TOKEN_RE.match(token)
        if seq_match:
            seen_sequence = True
            width = int(seq_match.group(1) or 0)
            return str(sequence).zfill(width)
        if token not in values:
            raise TemplateError(f"unknown token {{{token}}}")
        return values[token]

    rendered = _TOKEN_RE.sub(_sub, pattern)
    if not seen_sequence:
        raise TemplateError("pattern must contain a {SEQUENCE} token")
    if "{" in rendered or "}" in rendered:
        raise TemplateError("pattern has unbalanced braces")
    return rendered


def _number_exists(model, tenant_id: int, document_number: str) -> bool:
    return (
        db.session.query(model.id)
        .filter(model.tenant_id == tenant_id, model.document_number == document_number)
        .first()
        is not None
    )


def get_or_create_sequence(tenant_id: int, document_type: str) -> DocumentSequence:
    """
    Return the tenant's sequence row for document_type, creating it with
    defaults if missing. Runs inside the caller's transaction.
    """
    seq = db.session.query(DocumentSequence).filter_by(
        tenant_id=tenant_id, document_type=document_type
    ).first()
    if seq is not None:
        return seq

    seq = DocumentSequence(
        tenant_id=tenant_id,
        document_type=document_type,
        prefix=DEFAULT_PREFIXES.get(document_type, document_type.upper()),
        pattern=DEFAULT_PATTERN,
        next_sequence=1,
    )
    db.session.add(seq)
    db.session.flush()
    return seq


def _increment_counter(tenant_id: int, document_type: str) -> int:
    """Atomically bump next_sequence and return the value that was consumed."""
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_sequence=DocumentSequence.next_sequence + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        raise LookupError(f"no sequence row for {document_type}")

    current = (
        db.session.query(DocumentSequence.next_sequence)
        .filter_by(tenant_id=tenant_id, document_type=document_type)
        .execution_options(populate_existing=True)
        .scalar()
    )
    if current is None:
        raise LookupError(f"sequence counter for {document_type} is unreadable")
    return int(current) - 1


def _fallback_number(model, tenant_id: int, prefix: str, on: datetime, attempts: int) -> str:
    """
    PREFIX-YYYYMMDD-NNNN, sequenced from the highest existing number today.
    """
    base = f"{prefix}-{on.strftime('%Y%m%d')}-"
    rows = (
        db.session.query(model.document_number)
        .filter(model.tenant_id == tenant_id, model.document_number.like(f"{base}%"))
        .all()
    )
    highest = 0
    for (number,) in rows:
        tail = number[len(base):]
        if tail.isdigit():
            highest = max(highest, int(tail))

    for offset in range(1, attempts + 1):
        candidate = f"{base}{highest + offset:04d}"
        if not _number_exists(model, tenant_id, candidate):
            return candidate

    raise AllocationExhaustedError(
        "Could not allocate a unique document number",
        details={"attempts": attempts, "fallback": True},
    )


def allocate_document_number(
    *,
    tenant_id: int,
    document_type: str,
    model,
    on: datetime | None = None,
) -> str:
    """
    Allocate the next document number for a tenant/document type.

    Must be called inside the transaction that inserts the document.
    Raises AllocationExhaustedError when every attempt collides.
    """
    on = on or utcnow()
    attempts = int(current_app.config.get("NUMBER_ALLOCATION_ATTEMPTS", 100))
    prefix = DEFAULT_PREFIXES.get(document_type, document_type.upper())

    try:
        seq = get_or_create_sequence(tenant_id, document_type)
        prefix = seq.prefix or prefix
        pattern = seq.pattern or DEFAULT_PATTERN

        for _ in range(attempts):
            sequence = _increment_counter(tenant_id, document_type)
            candidate = render_pattern(pattern, prefix=prefix, sequence=sequence, on=on)
            if not _number_exists(model, tenant_id, candidate):
                return candidate
            current_app.logger.info(
                "Document number %s already taken for tenant %s, retrying", candidate, tenant_id
            )
    except (TemplateError, LookupError, TypeError, ValueError) as exc:
        current_app.logger.warning(
            "Numbering config for tenant %s/%s unusable (%s); using default pattern",
            tenant_id, document_type, exc,
        )
        return _fallback_number(model, tenant_id, prefix, on, attempts)

    raise AllocationExhaustedError(
        "Could not allocate a unique document number",
        details={"attempts": attempts, "document_type": document_type},
    )


def preview_document_number(*, tenant_id: int, document_type: str, on: datetime | None = None) -> str:
    """Render the number the next allocation would try, without consuming it."""
    on = on or utcnow()
    seq = db.session.query(DocumentSequence).filter_by(
        tenant_id=tenant_id, document_type=document_type
    ).first()
    if seq is None:
        return render_pattern(
            DEFAULT_PATTERN,
            prefix=DEFAULT_PREFIXES.get(document_type, document_type.upper()),
            sequence=1,
            on=on,
        )
    return render_pattern(seq.pattern, prefix=seq.prefix, sequence=seq.next_sequence, on=on)


def configure_sequence(
    *,
    tenant_id: int,
    document_type: str,
    prefix: str | None = None,
    pattern: str | None = None,
    next_sequence: int | None = None,
) -> DocumentSequence:
    """
    Update a tenant's numbering configuration. The new pattern is validated
    by a trial render before it is stored.
    """
    if document_type not in DEFAULT_PREFIXES:
        raise ValidationError(f"Unknown document type: {document_type}")
    if next_sequence is not None and next_sequence < 1:
        raise ValidationError("next_sequence must be >= 1")

    seq = get_or_create_sequence(tenant_id, document_type)
    new_prefix = prefix if prefix is not None else seq.prefix
    new_pattern = pattern if pattern is not None else seq.pattern

    try:
        render_pattern(new_pattern, prefix=new_prefix, sequence=next_sequence or seq.next_sequence or 1, on=utcnow())
    except TemplateError as exc:
        db.session.rollback()
        raise ValidationError(f"Invalid number pattern: {exc}")

    seq.prefix = new_prefix
    seq.pattern = new_pattern
    if next_sequence is not None:
        seq.next_sequence = next_sequence

    db.session.commit()
    current_app.logger.info(
        "Numbering for tenant %s/%s set to %r (prefix %r)", tenant_id, document_type, new_pattern, new_prefix
    )
    return seq
