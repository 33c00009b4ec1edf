from .document import (
    CodeInterpreterCall,
    ContentPart,
    Document,
    FunctionCall,
    FunctionCallOutput,
    ImageGenerationCall,
    McpCall,
    Message,
    OutputItem,
    OutputText,
    Reasoning,
    ReasoningText,
    Refusal,
    ResponseError,
    SummaryPart,
    Usage,
    WebSearchCall,
)
from .events import ResponseEvent, parse_event
from .history import HistoryEntry, InputMessage, InputText

__all__ = [
    "CodeInterpreterCall",
    "ContentPart",
    "Document",
    "FunctionCall",
    "FunctionCallOutput",
    "HistoryEntry",
    "ImageGenerationCall",
    "InputMessage",
    "InputText",
    "McpCall",
    "Message",
    "OutputItem",
    "OutputText",
    "Reasoning",
    "ReasoningText",
    "Refusal",
    "ResponseError",
    "ResponseEvent",
    "SummaryPart",
    "Usage",
    "WebSearchCall",
    "parse_event",
]
