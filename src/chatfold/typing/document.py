from collections.abc import Callable, Iterable
from typing import Annotated, Any, Literal, TypeAlias, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
)

ResponseStatus: TypeAlias = Literal[
    "in_progress", "completed", "incomplete", "failed", "queued", "cancelled"
]

# Once an item reaches one of these it accepts no further deltas
SEALED_STATUSES = frozenset({"completed", "incomplete"})


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def _none_as(factory: Callable[[], Any]) -> BeforeValidator:
    return BeforeValidator(lambda v: factory() if v is None else v)


def _tag_of(known: Iterable[str]) -> Callable[[Any], str]:
    known_tags = frozenset(known)

    def tag(value: Any) -> str:
        if isinstance(value, dict):
            kind = value.get("type")
        else:
            kind = getattr(value, "type", None)
        return kind if kind in known_tags else "unknown"

    return tag


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")


# --- Content parts ---


class OutputText(_FrozenModel):
    type: Literal["output_text"] = "output_text"
    text: Annotated[str, _none_as(str)] = ""
    annotations: Annotated[list[Any], _none_as(list)] = Field(default_factory=list)


class Refusal(_FrozenModel):
    type: Literal["refusal"] = "refusal"
    refusal: Annotated[str, _none_as(str)] = ""


class ReasoningText(_FrozenModel):
    type: Literal["reasoning_text"] = "reasoning_text"
    text: Annotated[str, _none_as(str)] = ""


class UnknownPart(_FrozenModel):
    type: str


ContentPart: TypeAlias = Annotated[
    Union[
        Annotated[OutputText, Tag("output_text")],
        Annotated[Refusal, Tag("refusal")],
        Annotated[ReasoningText, Tag("reasoning_text")],
        Annotated[UnknownPart, Tag("unknown")],
    ],
    Discriminator(_tag_of({"output_text", "refusal", "reasoning_text"})),
]


class SummaryPart(_FrozenModel):
    type: Literal["summary_text"] = "summary_text"
    text: Annotated[str, _none_as(str)] = ""


# --- Output items ---


class _OutputItemBase(_FrozenModel):
    id: str | None = None
    status: str | None = None

    @property
    def sealed(self) -> bool:
        return self.status in SEALED_STATUSES


class Message(_OutputItemBase):
    type: Literal["message"] = "message"
    role: str = "assistant"
    content: Annotated[list[ContentPart], _none_as(list)] = Field(
        default_factory=list
    )


class Reasoning(_OutputItemBase):
    type: Literal["reasoning"] = "reasoning"
    summary: Annotated[list[SummaryPart], _none_as(list)] = Field(
        default_factory=list
    )
    content: Annotated[list[ContentPart], _none_as(list)] = Field(
        default_factory=list
    )


class FunctionCall(_OutputItemBase):
    type: Literal["function_call"] = "function_call"
    name: str = ""
    call_id: str = ""
    arguments: Annotated[str, _none_as(str)] = ""


class FunctionCallOutput(_OutputItemBase):
    type: Literal["function_call_output"] = "function_call_output"
    call_id: str
    output: Annotated[str, _none_as(str)] = ""


class WebSearchCall(_OutputItemBase):
    type: Literal["web_search_call"] = "web_search_call"


class ImageGenerationCall(_OutputItemBase):
    type: Literal["image_generation_call"] = "image_generation_call"
    result: str | None = None


class CodeInterpreterCall(_OutputItemBase):
    type: Literal["code_interpreter_call"] = "code_interpreter_call"
    code: Annotated[str, _none_as(str)] = ""


class McpCall(_OutputItemBase):
    type: Literal["mcp_call"] = "mcp_call"
    name: str = ""
    server_label: str = ""
    arguments: Annotated[str, _none_as(str)] = ""
    output: str | None = None
    error: str | None = None


class UnknownItem(_OutputItemBase):
    type: str


OutputItem: TypeAlias = Annotated[
    Union[
        Annotated[Message, Tag("message")],
        Annotated[Reasoning, Tag("reasoning")],
        Annotated[FunctionCall, Tag("function_call")],
        Annotated[FunctionCallOutput, Tag("function_call_output")],
        Annotated[WebSearchCall, Tag("web_search_call")],
        Annotated[ImageGenerationCall, Tag("image_generation_call")],
        Annotated[CodeInterpreterCall, Tag("code_interpreter_call")],
        Annotated[McpCall, Tag("mcp_call")],
        Annotated[UnknownItem, Tag("unknown")],
    ],
    Discriminator(
        _tag_of(
            {
                "message",
                "reasoning",
                "function_call",
                "function_call_output",
                "web_search_call",
                "image_generation_call",
                "code_interpreter_call",
                "mcp_call",
            }
        )
    ),
]

OutputItemAdapter: TypeAdapter[OutputItem] = TypeAdapter(OutputItem)


# --- Document ---


class Usage(_FrozenModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class ResponseError(_FrozenModel):
    code: str | None = None
    message: str


class Document(_FrozenModel):
    id: str
    object: Literal["response"] = "response"
    status: ResponseStatus = "in_progress"
    model: str = ""
    created_at: float = 0
    instructions: str | list[Any] | None = None
    tools: Annotated[list[dict[str, Any]], _none_as(list)] = Field(
        default_factory=list
    )
    temperature: float | None = None
    output: Annotated[list[OutputItem], _none_as(list)] = Field(
        default_factory=list
    )
    usage: Usage | None = None
    error: ResponseError | None = None

    @property
    def output_text(self) -> str:
        return "".join(
            part.text
            for item in self.output
            if isinstance(item, Message) and item.role == "assistant"
            for part in item.content
            if isinstance(part, OutputText)
        )

    @property
    def terminal(self) -> bool:
        return self.status in {"completed", "incomplete", "failed", "cancelled"}

    def find_item(self, item_id: str) -> int | None:
        for index, item in enumerate(self.output):
            if item.id == item_id:
                return index
        return None
