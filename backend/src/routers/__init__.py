"""HTTP adapters for the three client protocols."""

from .gemini_compat import router as gemini_router
from .native import router as native_router
from .openai_compat import router as openai_router

__all__ = ["native_router", "openai_router", "gemini_router"]
