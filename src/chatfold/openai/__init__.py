from openai import AsyncOpenAI as OpenAIAsyncClient
from openai import AsyncStream as OpenAIAsyncStream
from openai.types.chat import ChatCompletionChunk as OpenAICompletionChunk
from openai.types.chat import ChatCompletionMessageParam as OpenAIMessageParam
from openai.types.completion_usage import CompletionUsage as OpenAICompletionUsage
from openai.types.responses import ResponseStreamEvent as OpenAIResponseStreamEvent
from openai.types.shared_params import FunctionDefinition as OpenAIFunctionDefinition

__all__ = [
    "OpenAIAsyncClient",
    "OpenAIAsyncStream",
    "OpenAICompletionChunk",
    "OpenAICompletionUsage",
    "OpenAIFunctionDefinition",
    "OpenAIMessageParam",
    "OpenAIResponseStreamEvent",
]
