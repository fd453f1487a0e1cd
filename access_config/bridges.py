"""
Config -> Kernel Bridges.

Functions that convert an ``AccessConfig`` into kernel-compatible inputs.
These live in access_config (the producer) because the kernel must NEVER
import access_config.

Usage:
    from access_config import get_active_config
    from access_config.bridges import build_credential_policy, build_draft_rules

    config = get_active_config()
    credentials = CredentialService(session, actors, policy=build_credential_policy(config))
"""

from __future__ import annotations

from datetime import timedelta

from access_config.schema import AccessConfig
from access_kernel.domain.codes import CodeSigner
from access_kernel.domain.collaborators import StaticBlacklist
from access_kernel.domain.credential import CredentialPolicy
from access_kernel.domain.validation import DraftRules


def build_credential_policy(config: AccessConfig) -> CredentialPolicy:
    creds = config.credentials
    return CredentialPolicy(
        visitor_usage_limit=creds.visitor.usage_limit,
        employee_usage_limit=creds.employee.usage_limit,
        employee_validity=timedelta(hours=creds.employee.validity_hours),
        code_bytes=creds.code_bytes,
        default_access_level=creds.default_access_level,
    )


def build_draft_rules(config: AccessConfig) -> DraftRules:
    rules = config.validation
    return DraftRules(
        phone_pattern=rules.phone_pattern,
        id_document_pattern=rules.id_document_pattern,
        max_name_length=rules.max_name_length,
        max_purpose_length=rules.max_purpose_length,
    )


def build_blacklist(config: AccessConfig) -> StaticBlacklist:
    """In-memory blacklist seeded from the configuration set."""
    return StaticBlacklist(phones=config.blacklist.phones, names=config.blacklist.names)


def build_code_signer(config: AccessConfig, key: bytes) -> CodeSigner:
    """QR and time-window code signer.  The key never lives in the YAML set."""
    return CodeSigner(key, time_window_seconds=config.credentials.time_window_seconds)
