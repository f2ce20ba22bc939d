"""External system integrations"""

# Event Bus
from .event_bus import EventBus, Event, EXECUTION_TOPIC, NODE_TOPIC

# Model Client
from .model_client import (
    ModelClient,
    MockModelClient,
    ChatMessage,
    ChatCompletionRequest,
    ChatCompletionResponse,
    Usage
)
from .providers import (
    AIClient,
    OpenAIProvider,
    AnthropicProvider,
    NVIDIAProvider,
    provider_for_model
)

# Exceptions
from .exceptions import (
    IntegrationError,
    ModelAPIError,
    ModelConfigError,
    ToolNotFoundError,
    ToolExecutionError
)

# Validators
from .validators import SchemaValidator

# Tool Registry
from .tool_registry import (
    ToolRegistry,
    LocalToolRegistry,
    ToolExecutor,
    ToolDefinition,
    ToolParameter,
    ParameterType,
    ParameterValidation
)
from .builtin_tools import BuiltinTools

__all__ = [
    # Event Bus
    "EventBus",
    "Event",
    "EXECUTION_TOPIC",
    "NODE_TOPIC",

    # Model Client
    "ModelClient",
    "MockModelClient",
    "ChatMessage",
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "Usage",
    "AIClient",
    "OpenAIProvider",
    "AnthropicProvider",
    "NVIDIAProvider",
    "provider_for_model",

    # Exceptions
    "IntegrationError",
    "ModelAPIError",
    "ModelConfigError",
    "ToolNotFoundError",
    "ToolExecutionError",

    # Validators
    "SchemaValidator",

    # Tool Registry
    "ToolRegistry",
    "LocalToolRegistry",
    "ToolExecutor",
    "ToolDefinition",
    "ToolParameter",
    "ParameterType",
    "ParameterValidation",
    "BuiltinTools"
]
