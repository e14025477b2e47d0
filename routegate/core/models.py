"""Inbound chat request schema."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import AnyUrl, BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ResourceRef(_Frozen):
    url: AnyUrl


class TextPart(_Frozen):
    type: Literal["text"]
    text: str


class ImagePart(_Frozen):
    type: Literal["image_url"]
    image_url: ResourceRef


class AudioPart(_Frozen):
    type: Literal["audio"]
    audio: ResourceRef


ContentPart = Annotated[Union[TextPart, ImagePart, AudioPart], Field(discriminator="type")]


class ChatMessage(_Frozen):
    role: Literal["user", "assistant", "system", "function", "tool"]
    content: Union[str, Annotated[list[ContentPart], Field(min_length=1)]]
    name: str | None = None
    function_call: Any = None
    tool_calls: Any = None


class ChatRequest(BaseModel):
    """Validated chat request; unknown keys are kept and forwarded."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    messages: Annotated[list[ChatMessage], Field(min_length=1)]
    # 仅校验形状（字符串或对象），字段级校验交给 resolver
    fast_model: str | dict[str, Any] | None = Field(default=None, alias="fastModel")
    slow_model: str | dict[str, Any] | None = Field(default=None, alias="slowModel")
    stream: bool | None = None

    @property
    def wants_stream(self) -> bool:
        return self.stream is True

    def last_user_content(self) -> str | list[ContentPart]:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""
