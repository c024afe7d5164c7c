"""
intake_config -- single public entrypoint for intake policy.

Responsibility:
    Provides the ONLY way to obtain policy at runtime through
    ``get_active_policy()``.  Engines and services never read YAML or
    environment variables themselves; they receive the ``IntakePolicy``
    (or the piece of it they need) from their caller.

Architecture position:
    Configuration -- sits above ``intake_kernel`` and below
    ``intake_services`` / ``intake_modules``.  The kernel MUST NEVER import
    from ``intake_config``.

Invariants enforced:
    - Single entrypoint: runtime policy flows through ``get_active_policy()``.
    - Deterministic: the same YAML always yields the same checksum.
    - Rules flagged ``pending_confirmation`` are loaded but logged as a
      warning every time the pack is loaded.

Audit relevance:
    Every load emits an ``INTAKE_CONFIG_TRACE`` log entry with the config
    id, version and checksum, tying each committed document back to the
    policy that computed its totals.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from intake_config.loader import load_policy
from intake_config.schema import (
    CurrencyPolicy,
    IntakePolicy,
    NumberingPolicy,
    ReferencePolicy,
    StampDutyPolicy,
    StockReasonPolicy,
    VatPolicy,
    VatPolicyRule,
)

_logger = logging.getLogger("intake_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

_cache: dict[Path, IntakePolicy] = {}
_cache_lock = threading.Lock()


def get_active_policy(config_path: Path | None = None) -> IntakePolicy:
    """The ONLY public policy entrypoint.

    Loads and validates the YAML pack at ``config_path`` (defaults to
    ``intake_config/sets/default.yaml``) once per path and returns the cached
    frozen ``IntakePolicy`` afterwards.

    Raises:
        FileNotFoundError: If the pack does not exist.
        ValueError / KeyError: If the pack is malformed.
    """
    path = Path(config_path or _DEFAULT_CONFIG_PATH).resolve()
    with _cache_lock:
        policy = _cache.get(path)
        if policy is not None:
            return policy

        policy = load_policy(path)

        _logger.info(
            "INTAKE_CONFIG_TRACE",
            extra={
                "trace_type": "INTAKE_CONFIG_TRACE",
                "config_id": policy.config_id,
                "config_version": policy.version,
                "checksum": policy.checksum,
                "vat_rule_count": len(policy.vat.rules),
                "settlement_currency": policy.currency.settlement_currency,
            },
        )
        for rule in policy.pending_rules:
            _logger.warning(
                "policy_rule_pending_confirmation",
                extra={
                    "config_id": policy.config_id,
                    "document_kind": rule.document_kind.value,
                    "locality": rule.locality,
                    "default_rate": str(rule.default_rate),
                    "note": rule.note,
                },
            )

        _cache[path] = policy
        return policy


def clear_policy_cache() -> None:
    """Forget loaded packs (tests and hot reload)."""
    with _cache_lock:
        _cache.clear()


__all__ = [
    "CurrencyPolicy",
    "IntakePolicy",
    "NumberingPolicy",
    "ReferencePolicy",
    "StampDutyPolicy",
    "StockReasonPolicy",
    "VatPolicy",
    "VatPolicyRule",
    "clear_policy_cache",
    "get_active_policy",
]
