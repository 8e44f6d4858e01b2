"""
Guardrails for agent actions.

Maps action types onto a fixed risk taxonomy and decides, per subscription
tier, whether an action runs automatically or waits for explicit approval.
Pending approvals auto-deny when their risk-specific timeout expires.

The chain orchestrator does not call this module; it is consulted by the
layer that turns model output into actions.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .types import Tier

logger = logging.getLogger(__name__)


class RiskLevel(str, Enum):
    """Risk taxonomy for actions."""

    SAFE = "safe"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


ACTION_RISK_LEVELS: dict[str, RiskLevel] = {
    # Read-only
    "read_file": RiskLevel.SAFE,
    "list_directory": RiskLevel.SAFE,
    "search_code": RiskLevel.SAFE,
    "get_file_info": RiskLevel.SAFE,
    "analyze_code": RiskLevel.SAFE,
    "explain_code": RiskLevel.SAFE,
    "search_web": RiskLevel.SAFE,
    "read_database": RiskLevel.SAFE,
    "get_tool_info": RiskLevel.SAFE,
    # Local writes
    "create_file": RiskLevel.LOW,
    "edit_file": RiskLevel.LOW,
    "write_file": RiskLevel.LOW,
    "query_database": RiskLevel.LOW,
    "generate_code": RiskLevel.LOW,
    "http_request_get": RiskLevel.LOW,
    "crm_read": RiskLevel.LOW,
    # Structural changes and outbound writes
    "rename_file": RiskLevel.MODERATE,
    "move_file": RiskLevel.MODERATE,
    "terminal_read": RiskLevel.MODERATE,
    "http_request_post": RiskLevel.MODERATE,
    "crm_write": RiskLevel.MODERATE,
    "database_write": RiskLevel.MODERATE,
    "package_add": RiskLevel.MODERATE,
    "config_modify": RiskLevel.MODERATE,
    # Destructive
    "delete_file": RiskLevel.HIGH,
    "delete_directory": RiskLevel.HIGH,
    "terminal_execute": RiskLevel.HIGH,
    "package_remove": RiskLevel.HIGH,
    "database_delete": RiskLevel.HIGH,
    "crm_delete": RiskLevel.HIGH,
    "network_request": RiskLevel.HIGH,
    "restructure_code": RiskLevel.HIGH,
    "modify_dependencies": RiskLevel.HIGH,
    # System-wide or irreversible
    "database_drop": RiskLevel.CRITICAL,
    "database_truncate": RiskLevel.CRITICAL,
    "system_command": RiskLevel.CRITICAL,
    "environment_modify": RiskLevel.CRITICAL,
    "security_config_change": RiskLevel.CRITICAL,
    "git_force_push": RiskLevel.CRITICAL,
    "production_deployment": RiskLevel.CRITICAL,
    "delete_production_data": RiskLevel.CRITICAL,
    "modify_auth": RiskLevel.CRITICAL,
    "api_key_change": RiskLevel.CRITICAL,
}


@dataclass(frozen=True)
class TierAutonomy:
    """What a tier may do without asking."""

    name: str
    auto_approve: frozenset[RiskLevel]
    max_actions_per_hour: int
    max_actions_per_day: int
    # Risk levels an emergency override may skip approval for
    override: frozenset[RiskLevel] = frozenset()


TIER_AUTONOMY: dict[Tier, TierAutonomy] = {
    Tier.FREE: TierAutonomy(
        name="Semi-Autonomous (Free)",
        auto_approve=frozenset({RiskLevel.SAFE}),
        max_actions_per_hour=50,
        max_actions_per_day=200,
    ),
    Tier.PRO: TierAutonomy(
        name="Autonomous with Approval (Pro)",
        auto_approve=frozenset({RiskLevel.SAFE, RiskLevel.LOW}),
        max_actions_per_hour=200,
        max_actions_per_day=1000,
        override=frozenset({RiskLevel.LOW, RiskLevel.MODERATE}),
    ),
    Tier.PRO_PLUS: TierAutonomy(
        name="Full Autonomy (Pro-Plus)",
        auto_approve=frozenset({RiskLevel.SAFE, RiskLevel.LOW, RiskLevel.MODERATE}),
        max_actions_per_hour=500,
        max_actions_per_day=3000,
        override=frozenset({RiskLevel.LOW, RiskLevel.MODERATE, RiskLevel.HIGH}),
    ),
    Tier.ENTERPRISE: TierAutonomy(
        name="Enterprise Autonomy",
        auto_approve=frozenset(
            {RiskLevel.SAFE, RiskLevel.LOW, RiskLevel.MODERATE, RiskLevel.HIGH}
        ),
        max_actions_per_hour=2000,
        max_actions_per_day=10000,
        override=frozenset(RiskLevel),
    ),
}

# Seconds to wait for a decision before auto-denying
APPROVAL_TIMEOUTS: dict[RiskLevel, float] = {
    RiskLevel.SAFE: 0,
    RiskLevel.LOW: 120,
    RiskLevel.MODERATE: 300,
    RiskLevel.HIGH: 600,
    RiskLevel.CRITICAL: 1800,
}

SENSITIVE_FILE_PATTERNS = [
    re.compile(p)
    for p in [
        r"\.env$",
        r"\.env\..+$",
        r"config/production",
        r"\.git/config$",
        r"package\.json$",
        r"package-lock\.json$",
        r"yarn\.lock$",
        r"Dockerfile$",
        r"docker-compose",
        r"\.github/workflows",
        r"\.vscode/settings\.json$",
        r"tsconfig\.json$",
        r"webpack\.config",
        r"\.secret",
        r"\.key$",
        r"\.pem$",
        r"\.ssh/",
    ]
]

SENSITIVE_COMMAND_PATTERNS = [
    re.compile(r"rm\s+-rf"),
    re.compile(r"sudo"),
    re.compile(r"chmod\s+777"),
    re.compile(r"git\s+push\s+--force"),
    re.compile(r"npm\s+publish"),
    re.compile(r"docker\s+rm"),
    re.compile(r"kubectl\s+delete"),
    re.compile(r"DROP\s+TABLE", re.IGNORECASE),
    re.compile(r"TRUNCATE", re.IGNORECASE),
    re.compile(r"DELETE\s+FROM", re.IGNORECASE),
    re.compile(r"shutdown"),
    re.compile(r"reboot"),
    re.compile(r"kill\s+-9"),
]

SENSITIVE_QUERY_PATTERNS = [
    re.compile(r"DROP", re.IGNORECASE),
    re.compile(r"TRUNCATE", re.IGNORECASE),
    re.compile(r"ALTER\s+TABLE", re.IGNORECASE),
    re.compile(r"DELETE\s+FROM\s+\w+\s*$", re.IGNORECASE),
    re.compile(r"UPDATE\s+\w+\s+SET", re.IGNORECASE),
]

_APPROVAL_MESSAGES: dict[str, str] = {
    "delete_file": "Delete file: {file_path}",
    "delete_directory": "Delete directory: {dir_path}",
    "terminal_execute": "Execute command: {command}",
    "database_delete": "Delete database records: {query}",
    "database_drop": "DROP DATABASE/TABLE: {query}",
    "database_truncate": "TRUNCATE table: {query}",
    "package_remove": "Uninstall package: {package}",
    "modify_dependencies": "Modify dependencies",
    "git_force_push": "Force push to Git repository",
    "production_deployment": "Deploy to production environment",
    "system_command": "Execute system command: {command}",
    "environment_modify": "Modify environment variables",
    "security_config_change": "Change security configuration",
    "api_key_change": "Modify API keys or credentials",
}


def get_action_risk_level(action_type: str) -> RiskLevel:
    """Risk level for an action; unknown actions are critical."""
    return ACTION_RISK_LEVELS.get(action_type, RiskLevel.CRITICAL)


def requires_approval(action_type: str, tier: Tier | str) -> bool:
    return get_action_risk_level(action_type) not in TIER_AUTONOMY[Tier(tier)].auto_approve


def can_override(tier: Tier | str, risk_level: RiskLevel) -> bool:
    return risk_level in TIER_AUTONOMY[Tier(tier)].override


def is_sensitive_action(details: Mapping[str, Any] | None) -> bool:
    """Whether file paths, commands or queries in the details match a sensitive pattern."""
    if not details:
        return False
    checks = (
        ("file_path", SENSITIVE_FILE_PATTERNS),
        ("command", SENSITIVE_COMMAND_PATTERNS),
        ("query", SENSITIVE_QUERY_PATTERNS),
    )
    for key, patterns in checks:
        value = details.get(key)
        if value and any(pattern.search(str(value)) for pattern in patterns):
            return True
    return False


def approval_message(action_type: str, risk_level: RiskLevel, details: Mapping[str, Any] | None) -> str:
    details = details or {}
    template = _APPROVAL_MESSAGES.get(action_type)
    if template is not None:
        values = {
            key: details.get(key, "unknown")
            for key in ("file_path", "dir_path", "command", "query", "package")
        }
        return template.format(**values)
    message = f"Execute {action_type} ({risk_level.value} risk)"
    if details.get("description"):
        message += f": {details['description']}"
    return message


class GuardrailDecision(BaseModel):
    """Outcome of evaluating one action."""

    action_type: str
    tier: Tier
    risk_level: RiskLevel
    approved: bool
    auto_approved: bool = False
    overridden: bool = False
    requires_approval: bool = False
    approval_id: str | None = None
    timeout_seconds: float | None = None
    denied_reason: str | None = None
    sensitive: bool = False
    reason: str = ""
    message: str | None = None


@dataclass
class ApprovalRequest:
    """A pending or decided approval."""

    approval_id: str
    action_type: str
    tier: Tier
    user_id: str
    risk_level: RiskLevel
    timeout_seconds: float
    created_at: float
    expires_at: float
    details: dict[str, Any] = field(default_factory=dict)
    sensitive: bool = False
    status: ApprovalStatus = ApprovalStatus.PENDING
    decided_by: str | None = None
    decided_at: float | None = None
    denied_reason: str | None = None


def _resolve_future(future: asyncio.Future, approved: bool) -> None:
    if not future.done():
        future.set_result(approved)


class GuardrailEngine:
    """
    Evaluates actions and tracks their approvals.

    approve()/deny() may be called from any thread; coroutines blocked in
    wait_for_approval() are woken on their own event loop.
    """

    def __init__(
        self,
        approval_timeouts: Mapping[RiskLevel, float] | None = None,
        clock: Callable[[], float] = time.time,
        history_limit: int = 1000,
    ):
        """
        Args:
            approval_timeouts: Overrides for APPROVAL_TIMEOUTS
            clock: Time source in seconds
            history_limit: Decided approvals kept in memory
        """
        self.approval_timeouts = {**APPROVAL_TIMEOUTS, **(approval_timeouts or {})}
        self._clock = clock
        self._history_limit = history_limit
        self._lock = threading.Lock()
        self._pending: dict[str, ApprovalRequest] = {}
        self._history: list[ApprovalRequest] = []
        self._waiters: dict[str, list[tuple[asyncio.AbstractEventLoop, asyncio.Future]]] = {}
        self._actions: dict[str, list[float]] = {}
        self._stats: dict[str, Any] = {
            "total_evaluations": 0,
            "auto_approved": 0,
            "approval_requests": 0,
            "approved": 0,
            "denied": 0,
            "timed_out": 0,
            "overridden": 0,
            "by_tier": {},
            "by_action_type": {},
            "by_risk_level": {},
        }

    def _count(self, category: str, key: str) -> None:
        bucket = self._stats[category]
        bucket[key] = bucket.get(key, 0) + 1

    def _check_rate_limits(self, user_id: str, tier: Tier) -> str | None:
        """Record the action and return a denial reason if a limit is hit."""
        autonomy = TIER_AUTONOMY[tier]
        now = self._clock()
        recent = [t for t in self._actions.get(user_id, []) if t > now - 24 * 3600]
        hourly = sum(1 for t in recent if t > now - 3600)

        if hourly >= autonomy.max_actions_per_hour:
            self._actions[user_id] = recent
            return f"Hourly action limit exceeded ({autonomy.max_actions_per_hour} for {tier.value} tier)"
        if len(recent) >= autonomy.max_actions_per_day:
            self._actions[user_id] = recent
            return f"Daily action limit exceeded ({autonomy.max_actions_per_day} for {tier.value} tier)"

        recent.append(now)
        self._actions[user_id] = recent
        return None

    def evaluate(
        self,
        action_type: str,
        tier: Tier | str,
        details: Mapping[str, Any] | None = None,
        user_id: str = "anonymous",
        skip_approval: bool = False,
    ) -> GuardrailDecision:
        """
        Decide whether an action may run.

        Args:
            action_type: Key of ACTION_RISK_LEVELS; unknown actions are critical
            tier: Subscription tier of the acting user
            details: file_path / command / query / description of the action
            user_id: Rate limits are tracked per user
            skip_approval: Emergency override, honoured only where the tier allows it

        Returns:
            GuardrailDecision; when approval is required it carries the
            approval id and its timeout
        """
        tier = Tier(tier)
        risk_level = get_action_risk_level(action_type)
        autonomy = TIER_AUTONOMY[tier]
        sensitive = is_sensitive_action(details)

        if action_type not in ACTION_RISK_LEVELS:
            logger.warning(f"Unknown action type defaulting to critical: {action_type}")

        with self._lock:
            self._stats["total_evaluations"] += 1
            self._count("by_tier", tier.value)
            self._count("by_action_type", action_type)
            self._count("by_risk_level", risk_level.value)

            denial = self._check_rate_limits(user_id, tier)
            if denial is not None:
                self._stats["denied"] += 1
                logger.warning(f"Guardrail denied {action_type} for {user_id}: {denial}")
                return GuardrailDecision(
                    action_type=action_type,
                    tier=tier,
                    risk_level=risk_level,
                    approved=False,
                    denied_reason=denial,
                    sensitive=sensitive,
                    reason=denial,
                )

            if risk_level in autonomy.auto_approve:
                self._stats["auto_approved"] += 1
                logger.info(f"Auto-approved {action_type} ({risk_level.value}) for {tier.value} tier")
                return GuardrailDecision(
                    action_type=action_type,
                    tier=tier,
                    risk_level=risk_level,
                    approved=True,
                    auto_approved=True,
                    sensitive=sensitive,
                    reason=f"Auto-approved: {autonomy.name} tier allows {risk_level.value} risk actions",
                )

            if sensitive:
                logger.warning(f"Sensitive action detected: {action_type} {dict(details or {})}")

            if skip_approval and can_override(tier, risk_level):
                self._stats["overridden"] += 1
                logger.warning(f"Guardrail overridden: {action_type} ({risk_level.value}) by {user_id}")
                return GuardrailDecision(
                    action_type=action_type,
                    tier=tier,
                    risk_level=risk_level,
                    approved=True,
                    overridden=True,
                    sensitive=sensitive,
                    reason="Override granted by tier privileges",
                )

            timeout = self.approval_timeouts[risk_level]
            now = self._clock()
            request = ApprovalRequest(
                approval_id=f"approval_{uuid.uuid4().hex[:12]}",
                action_type=action_type,
                tier=tier,
                user_id=user_id,
                risk_level=risk_level,
                timeout_seconds=timeout,
                created_at=now,
                expires_at=now + timeout,
                details=dict(details or {}),
                sensitive=sensitive,
            )
            self._pending[request.approval_id] = request
            self._stats["approval_requests"] += 1

        logger.info(f"Approval request {request.approval_id} created for {action_type} ({timeout:g}s)")
        return GuardrailDecision(
            action_type=action_type,
            tier=tier,
            risk_level=risk_level,
            approved=False,
            requires_approval=True,
            approval_id=request.approval_id,
            timeout_seconds=timeout,
            sensitive=sensitive,
            reason=f"Approval required: {risk_level.value} risk action for {tier.value} tier",
            message=approval_message(action_type, risk_level, details),
        )

    def _decide(
        self,
        approval_id: str,
        status: ApprovalStatus,
        decided_by: str | None = None,
        reason: str | None = None,
        timed_out: bool = False,
    ) -> bool:
        with self._lock:
            request = self._pending.pop(approval_id, None)
            if request is None:
                return False
            request.status = status
            request.decided_by = decided_by
            request.decided_at = self._clock()
            request.denied_reason = reason
            self._history.append(request)
            if len(self._history) > self._history_limit:
                self._history.pop(0)
            self._stats["approved" if status is ApprovalStatus.APPROVED else "denied"] += 1
            if timed_out:
                self._stats["timed_out"] += 1
            waiters = self._waiters.pop(approval_id, [])

        approved = status is ApprovalStatus.APPROVED
        for loop, future in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve_future, future, approved)

        logger.info(f"Approval {approval_id} {status.value}" + (f": {reason}" if reason else ""))
        return True

    def approve(self, approval_id: str, approved_by: str = "user") -> bool:
        """Grant a pending approval. Returns False if it is not pending."""
        return self._decide(approval_id, ApprovalStatus.APPROVED, decided_by=approved_by)

    def deny(self, approval_id: str, reason: str = "User denied") -> bool:
        """Deny a pending approval. Returns False if it is not pending."""
        return self._decide(approval_id, ApprovalStatus.DENIED, reason=reason)

    async def wait_for_approval(self, approval_id: str) -> bool:
        """
        Block until a pending approval is decided.

        Auto-denies the request once its timeout expires.

        Returns:
            True if approved, False if denied, expired or unknown
        """
        with self._lock:
            request = self._pending.get(approval_id)
            if request is None:
                decided = self._find_decided(approval_id)
                return decided is not None and decided.status is ApprovalStatus.APPROVED
            loop = asyncio.get_running_loop()
            future: asyncio.Future = loop.create_future()
            self._waiters.setdefault(approval_id, []).append((loop, future))
            remaining = max(0.0, request.expires_at - self._clock())

        try:
            return await asyncio.wait_for(future, remaining)
        except asyncio.TimeoutError:
            self._decide(approval_id, ApprovalStatus.DENIED, reason="Timed out", timed_out=True)
            decided = self._find_decided(approval_id)
            return decided is not None and decided.status is ApprovalStatus.APPROVED
        finally:
            self._discard_waiter(approval_id, future)

    def _discard_waiter(self, approval_id: str, future: asyncio.Future) -> None:
        with self._lock:
            waiters = self._waiters.get(approval_id)
            if waiters is None:
                return
            waiters[:] = [entry for entry in waiters if entry[1] is not future]
            if not waiters:
                del self._waiters[approval_id]

    def _find_decided(self, approval_id: str) -> ApprovalRequest | None:
        for request in reversed(self._history):
            if request.approval_id == approval_id:
                return request
        return None

    def get_approval(self, approval_id: str) -> ApprovalRequest | None:
        """Snapshot of a pending or decided approval."""
        with self._lock:
            request = self._pending.get(approval_id) or self._find_decided(approval_id)
            return replace(request) if request else None

    def get_pending_approvals(self, user_id: str | None = None) -> list[ApprovalRequest]:
        with self._lock:
            return [
                replace(request)
                for request in self._pending.values()
                if user_id is None or request.user_id == user_id
            ]

    def get_approval_history(self, user_id: str | None = None, limit: int = 50) -> list[ApprovalRequest]:
        """Decided approvals, newest first."""
        with self._lock:
            matching = [
                replace(request)
                for request in self._history
                if user_id is None or request.user_id == user_id
            ]
        return list(reversed(matching))[:limit]

    def clear_expired_approvals(self) -> int:
        """Deny every pending approval past its expiry. Returns how many were denied."""
        now = self._clock()
        with self._lock:
            expired = [aid for aid, request in self._pending.items() if request.expires_at <= now]
        for approval_id in expired:
            self._decide(approval_id, ApprovalStatus.DENIED, reason="Timed out", timed_out=True)
        return len(expired)

    def get_statistics(self) -> dict[str, Any]:
        with self._lock:
            stats = {
                key: dict(value) if isinstance(value, dict) else value
                for key, value in self._stats.items()
            }
            stats["pending_approvals"] = len(self._pending)
        total = stats["total_evaluations"]
        stats["auto_approval_rate"] = f"{stats['auto_approved'] / total * 100:.2f}%" if total else "0.00%"
        return stats


__all__ = [
    "ACTION_RISK_LEVELS",
    "APPROVAL_TIMEOUTS",
    "ApprovalRequest",
    "ApprovalStatus",
    "GuardrailDecision",
    "GuardrailEngine",
    "RiskLevel",
    "TIER_AUTONOMY",
    "TierAutonomy",
    "approval_message",
    "can_override",
    "get_action_risk_level",
    "is_sensitive_action",
    "requires_approval",
]
