from .intelligence import (
    AIAnalysis,
    BuyingStage,
    ConversationIntelligence,
    DetectedIntent,
    ExtractedMemory,
    FollowUpDecision,
    MemoryType,
    Sentiment,
)
from .follow_up import FollowUpContext, ProcessResult

__all__ = [
    "AIAnalysis", "BuyingStage", "ConversationIntelligence", "DetectedIntent",
    "ExtractedMemory", "FollowUpDecision", "MemoryType", "Sentiment",
    "FollowUpContext", "ProcessResult",
]
