"""Services module."""
from . import argument_analysis
from . import argument_service
from . import knowledge_base
from . import llm
from . import opponent_simulator

__all__ = ["argument_analysis", "argument_service", "knowledge_base", "llm", "opponent_simulator"]
