"""Deterministic idempotency keys.

Keys depend only on stable identifiers, so a retried run sends the same key
for the same logical mutation and the provider can deduplicate it.
"""

import hashlib


KEY_PREFIX = "xl"


def idempotency_key(*parts: str, run_id: str | None = None) -> str:
    """Hash ``parts`` (and an optional run scope) into a provider-safe key."""
    material = "\x1f".join([*parts, run_id or ""])
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:40]
    return f"{KEY_PREFIX}-{digest}"


def child_creation_key(
    tenant_id: str, parent_id: str, child_name: str, *, run_id: str | None = None
) -> str:
    """Key for creating the child named ``child_name`` under ``parent_id``."""
    return idempotency_key(
        tenant_id, parent_id, "create_child", child_name.strip().lower(), run_id=run_id
    )
