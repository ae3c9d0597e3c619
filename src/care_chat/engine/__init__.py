"""Conversation engines: scripted flow, AI flow and the orchestrator choosing between them."""

from .ai_flow import AIFlowAdapter, AIFlowError
from .orchestrator import ConversationOrchestrator, FallbackDecision, decide_fallback
from .scripted import ScriptedFlowEngine

__all__ = [
    "AIFlowAdapter",
    "AIFlowError",
    "ConversationOrchestrator",
    "FallbackDecision",
    "ScriptedFlowEngine",
    "decide_fallback",
]
