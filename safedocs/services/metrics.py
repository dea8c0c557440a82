from __future__ import annotations

import uuid

from prometheus_client import Counter


DOCUMENTS_UPLOADED_COUNTER = Counter(
    "safedocs_documents_uploaded_total",
    "Documents uploaded per org and storage backend",
    ["org_id", "storage_type"],
)

DOCUMENT_VERSIONS_COUNTER = Counter(
    "safedocs_document_versions_total",
    "New document versions uploaded per org",
    ["org_id"],
)

SHARE_LINK_ACCESS_COUNTER = Counter(
    "safedocs_share_link_access_total",
    "Share link resolution attempts by outcome",
    ["outcome"],
)

ACCESS_REQUEST_DECISIONS_COUNTER = Counter(
    "safedocs_access_request_decisions_total",
    "Access requests reviewed by decision",
    ["decision"],
)

EXPIRED_SHARE_LINKS_COUNTER = Counter(
    "safedocs_share_links_expired_total",
    "Share links deactivated by the expiry worker",
)


def _org_label(org_id: uuid.UUID | None) -> str:
    return str(org_id) if org_id else "none"


def record_document_uploaded(org_id: uuid.UUID | None, storage_type: str) -> None:
    DOCUMENTS_UPLOADED_COUNTER.labels(org_id=_org_label(org_id), storage_type=storage_type).inc()


def record_document_version(org_id: uuid.UUID | None) -> None:
    DOCUMENT_VERSIONS_COUNTER.labels(org_id=_org_label(org_id)).inc()


def record_share_link_access(outcome: str) -> None:
    SHARE_LINK_ACCESS_COUNTER.labels(outcome=outcome).inc()


def record_access_request_decision(decision: str) -> None:
    ACCESS_REQUEST_DECISIONS_COUNTER.labels(decision=decision).inc()


def record_share_links_expired(count: int) -> None:
    if count > 0:
        EXPIRED_SHARE_LINKS_COUNTER.inc(count)
