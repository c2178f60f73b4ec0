"""Conversation loop and the stages built on it"""

from .tool_loop import ToolLoop
from .diagnosis_agent import DiagnosisAgent
from .fix_generator import FixGenerator
from .publisher import ChangePublisher
from .reporter import Reporter

__all__ = [
    'ToolLoop',
    'DiagnosisAgent',
    'FixGenerator',
    'ChangePublisher',
    'Reporter',
]
