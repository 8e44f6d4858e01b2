"""
modelchain: model selection and multi-model chain orchestration.

Picks the best model for each role of a pipeline from a capability catalog,
then runs the roles in sequence, feeding each role's output to the next.

Provides:
- Capability-weighted model selection per task, role, tier and budget
- Auto, manual and template chain modes
- Sequential execution with progress, events, cost accounting and stop
- Provider invocation with retry/backoff, plus an offline simulator
- Tier-based guardrails for agent actions
"""

__version__ = "0.1.0"

# Catalogs
from .catalog import (
    CHAIN_TEMPLATES,
    MODEL_CATALOG,
    TASK_REQUIREMENTS,
    get_best_models_for_task,
    get_model,
    get_models_for_tier,
    get_task_requirement,
)
from .roles import (
    CHAIN_TYPES,
    ROLE_DEFINITIONS,
    get_agents_for_tier,
    get_best_roles_for_task,
    get_role,
)

# Configuration
from .config import ModelChainConfig, default_config

# Cost accounting
from .cost_tracker import CostTracker, get_cost_tracker

# Events
from .events import (
    ChainEvent,
    ChainEventType,
    ChainObserver,
    EventBus,
    EventLogConfig,
    JsonlEventSink,
    LoggingObserver,
)

# Guardrails
from .guardrails import GuardrailDecision, GuardrailEngine, RiskLevel

# Invocation
from .invocation import ModelInvoker, ProviderInvoker, SimulatedInvoker

# Selection and orchestration
from .model_selector import ModelSelector, get_model_selector, select_model
from .orchestrator import ChainOrchestrator, get_orchestrator
from .progress import CancellationToken, ProgressUpdate

# Types and errors
from .types import (
    Budget,
    Capability,
    ChainCancelledError,
    ChainMode,
    ChainPlan,
    ChainRequest,
    ChainResult,
    ChainSelection,
    ChainStatus,
    ConfigurationError,
    InvocationError,
    InvocationResult,
    InvocationTimeoutError,
    MissingModelMapError,
    ModelChainError,
    ModelProfile,
    NoEligibleModelError,
    ProviderRejectedError,
    ProviderUnavailableError,
    RoleExecutionError,
    RoleResult,
    SelectionResult,
    Strategy,
    TemplateNotFoundError,
    Tier,
    UnknownChainTypeError,
    UnknownRoleError,
)

__all__ = [
    "__version__",
    # Catalogs
    "CHAIN_TEMPLATES",
    "CHAIN_TYPES",
    "MODEL_CATALOG",
    "ROLE_DEFINITIONS",
    "TASK_REQUIREMENTS",
    "get_agents_for_tier",
    "get_best_models_for_task",
    "get_best_roles_for_task",
    "get_model",
    "get_models_for_tier",
    "get_role",
    "get_task_requirement",
    # Configuration
    "ModelChainConfig",
    "default_config",
    # Cost accounting
    "CostTracker",
    "get_cost_tracker",
    # Events
    "ChainEvent",
    "ChainEventType",
    "ChainObserver",
    "EventBus",
    "EventLogConfig",
    "JsonlEventSink",
    "LoggingObserver",
    # Guardrails
    "GuardrailDecision",
    "GuardrailEngine",
    "RiskLevel",
    # Invocation
    "ModelInvoker",
    "ProviderInvoker",
    "SimulatedInvoker",
    # Selection and orchestration
    "CancellationToken",
    "ChainOrchestrator",
    "ModelSelector",
    "ProgressUpdate",
    "get_model_selector",
    "get_orchestrator",
    "select_model",
    # Types and errors
    "Budget",
    "Capability",
    "ChainCancelledError",
    "ChainMode",
    "ChainPlan",
    "ChainRequest",
    "ChainResult",
    "ChainSelection",
    "ChainStatus",
    "ConfigurationError",
    "InvocationError",
    "InvocationResult",
    "InvocationTimeoutError",
    "MissingModelMapError",
    "ModelChainError",
    "ModelProfile",
    "NoEligibleModelError",
    "ProviderRejectedError",
    "ProviderUnavailableError",
    "RoleExecutionError",
    "RoleResult",
    "SelectionResult",
    "Strategy",
    "TemplateNotFoundError",
    "Tier",
    "UnknownChainTypeError",
    "UnknownRoleError",
]
