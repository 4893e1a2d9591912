"""
Adapter implementations for individual LLM providers.
"""

from .base import BaseModelAdapter  # noqa: F401
from .deepseek import DeepSeekAdapter  # noqa: F401
from .qwen import QwenAdapter  # noqa: F401
