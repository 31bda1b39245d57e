from .client import LlmClient
from .coerce import CoercionError, coerce_structured
from .router import LlmError, call_model

__all__ = ["CoercionError", "LlmClient", "LlmError", "call_model", "coerce_structured"]
