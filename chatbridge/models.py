"""Typed views of the OpenAI-compatible request and response bodies.

Request objects know how to turn themselves into the JSON payload the
provider expects (:meth:`to_dict`); response objects are built from the
decoded JSON (:meth:`from_dict`).  Unknown response keys are ignored but
the untouched payload is kept on ``raw`` for callers that need a field
this module does not model.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE_URL = "image_url"


class ResponseFormatType(str, Enum):
    TEXT = "text"
    JSON_OBJECT = "json_object"
    JSON_SCHEMA = "json_schema"


def _clean(value: Any) -> Any:
    """Recursively drop ``None`` entries and unwrap enums and dataclasses."""
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return _clean({f.name: getattr(value, f.name) for f in fields(value)})
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_clean(v) for v in value]
    return value


# ---------------------------------------------------------------------------
#  Requests
# ---------------------------------------------------------------------------

@dataclass
class ContentPart:
    """One element of a multi-part message body (text or image)."""

    type: ContentType
    text: Optional[str] = None
    image_url: Optional[Dict[str, str]] = None

    @classmethod
    def of_text(cls, text: str) -> "ContentPart":
        return cls(type=ContentType.TEXT, text=text)

    @classmethod
    def of_image(cls, url: str, detail: Optional[str] = None) -> "ContentPart":
        image = {"url": url}
        if detail:
            image["detail"] = detail
        return cls(type=ContentType.IMAGE_URL, image_url=image)


@dataclass
class RequestMessage:
    role: Role
    content: Union[str, List[ContentPart], None]
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None


@dataclass
class ResponseFormat:
    type: ResponseFormatType = ResponseFormatType.TEXT
    json_schema: Optional[Dict[str, Any]] = None


@dataclass
class FunctionDefinition:
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


@dataclass
class Tool:
    function: FunctionDefinition
    type: str = "function"


@dataclass
class ChatRequest:
    """Body of ``POST /v1/chat/completions`` minus the ``stream`` flag.

    The facade sets ``stream`` itself depending on which call is made.
    Anything not modelled here can be passed through ``extra``.
    """

    model: str
    messages: List[RequestMessage]
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    n: Optional[int] = None
    max_tokens: Optional[int] = None
    stop: Union[str, List[str], None] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    logit_bias: Optional[Dict[str, float]] = None
    logprobs: Optional[bool] = None
    top_logprobs: Optional[int] = None
    seed: Optional[int] = None
    user: Optional[str] = None
    response_format: Optional[ResponseFormat] = None
    tools: Optional[List[Tool]] = None
    tool_choice: Union[str, Dict[str, Any], None] = None
    parallel_tool_calls: Optional[bool] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = _clean(self)
        payload.update(_clean(payload.pop("extra", {})))
        return payload


@dataclass
class GenerateImageRequest:
    """Body of ``POST /v1/images/generations``."""

    prompt: str
    model: Optional[str] = None
    n: Optional[int] = None
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    response_format: Optional[str] = None
    user: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _clean(self)


def as_payload(request: Any) -> Dict[str, Any]:
    """Return *request* as a JSON-ready ``dict``.

    Accepts the dataclasses above or an already-built mapping.
    """
    if hasattr(request, "to_dict"):
        return request.to_dict()
    return _clean(dict(request))


# ---------------------------------------------------------------------------
#  Responses
# ---------------------------------------------------------------------------

@dataclass
class Model:
    id: str
    object: str = "model"
    created: Optional[int] = None
    owned_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Model":
        return cls(
            id=data["id"],
            object=data.get("object", "model"),
            created=data.get("created"),
            owned_by=data.get("owned_by"),
        )


@dataclass
class Models:
    data: List[Model]
    object: str = "list"
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Models":
        return cls(
            data=[Model.from_dict(m) for m in data.get("data", [])],
            object=data.get("object", "list"),
            raw=data,
        )

    @property
    def ids(self) -> List[str]:
        return [m.id for m in self.data]


@dataclass
class FunctionCall:
    name: str
    arguments: str = ""


@dataclass
class ToolCall:
    id: str
    function: FunctionCall
    type: str = "function"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        fn = data.get("function") or {}
        return cls(
            id=data.get("id", ""),
            type=data.get("type", "function"),
            function=FunctionCall(name=fn.get("name", ""), arguments=fn.get("arguments") or ""),
        )


@dataclass
class ResponseMessage:
    role: str
    content: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    refusal: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResponseMessage":
        return cls(
            role=data.get("role", Role.ASSISTANT.value),
            content=data.get("content"),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            refusal=data.get("refusal"),
        )


@dataclass
class TopLogProb:
    token: str
    logprob: float
    bytes: Optional[List[int]] = None


@dataclass
class LogProb:
    token: str
    logprob: float
    bytes: Optional[List[int]] = None
    top_logprobs: List[TopLogProb] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogProb":
        return cls(
            token=data["token"],
            logprob=data["logprob"],
            bytes=data.get("bytes"),
            top_logprobs=[
                TopLogProb(token=t["token"], logprob=t["logprob"], bytes=t.get("bytes"))
                for t in data.get("top_logprobs") or []
            ],
        )


@dataclass
class ChoiceLogProbs:
    content: List[LogProb] = field(default_factory=list)
    refusal: List[LogProb] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChoiceLogProbs":
        return cls(
            content=[LogProb.from_dict(lp) for lp in data.get("content") or []],
            refusal=[LogProb.from_dict(lp) for lp in data.get("refusal") or []],
        )


@dataclass
class Choice:
    index: int
    message: ResponseMessage
    finish_reason: Optional[str] = None
    logprobs: Optional[ChoiceLogProbs] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Choice":
        logprobs = data.get("logprobs")
        return cls(
            index=data.get("index", 0),
            message=ResponseMessage.from_dict(data.get("message") or {}),
            finish_reason=data.get("finish_reason"),
            logprobs=ChoiceLogProbs.from_dict(logprobs) if logprobs else None,
        )


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Usage":
        return cls(
            prompt_tokens=data.get("prompt_tokens", 0),
            completion_tokens=data.get("completion_tokens", 0),
            total_tokens=data.get("total_tokens", 0),
        )


@dataclass
class ChatCompletion:
    id: str
    model: str
    choices: List[Choice]
    created: Optional[int] = None
    object: str = "chat.completion"
    usage: Optional[Usage] = None
    system_fingerprint: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatCompletion":
        usage = data.get("usage")
        return cls(
            id=data.get("id", ""),
            model=data.get("model", ""),
            choices=[Choice.from_dict(c) for c in data.get("choices", [])],
            created=data.get("created"),
            object=data.get("object", "chat.completion"),
            usage=Usage.from_dict(usage) if usage else None,
            system_fingerprint=data.get("system_fingerprint"),
            raw=data,
        )

    @property
    def content(self) -> str:
        """Text of the first choice, or ``""`` when there is none."""
        if not self.choices:
            return ""
        return self.choices[0].message.content or ""


@dataclass
class ImageData:
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


@dataclass
class ImageResponse:
    data: List[ImageData]
    created: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageResponse":
        return cls(
            data=[
                ImageData(
                    url=img.get("url"),
                    b64_json=img.get("b64_json"),
                    revised_prompt=img.get("revised_prompt"),
                )
                for img in data.get("data", [])
            ],
            created=data.get("created"),
            raw=data,
        )
