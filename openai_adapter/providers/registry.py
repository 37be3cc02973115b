"""模型描述与注册表。

本模块把"模型 ID"映射为 ModelDescriptor：

- family: 行为分类。standard（GPT 类，接受采样参数）或 constrained
  （o 系列推理模型，拒绝采样参数、使用 max_completion_tokens）。
- context_window_tokens / max_output_tokens: 上下文与输出上限。
- capabilities: 视觉、函数调用、流式、推理、json_schema 等能力标记。

注册表在导入时构建一次，之后只读。未登记的模型 ID 不会报错，
而是按前缀推断家族并使用默认上限。
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Iterable, List, Mapping, Optional


class ModelFamily(str, Enum):
    STANDARD = "standard"
    CONSTRAINED = "constrained"


class Capability(str, Enum):
    TEXT = "text_generation"
    VISION = "vision"
    FUNCTION_CALLING = "function_calling"
    REASONING = "reasoning"
    TOOL_ACCESS = "tool_access"
    STREAMING = "streaming"
    JSON_SCHEMA = "json_schema"


class PricingTier(str, Enum):
    ECONOMY = "economy"
    STANDARD = "standard"
    PREMIUM = "premium"


_GPT_CAPS = frozenset(
    {Capability.TEXT, Capability.FUNCTION_CALLING, Capability.STREAMING, Capability.JSON_SCHEMA}
)
_GPT_VISION_CAPS = _GPT_CAPS | {Capability.VISION, Capability.TOOL_ACCESS}
_REASONING_CAPS = frozenset(
    {
        Capability.TEXT,
        Capability.REASONING,
        Capability.FUNCTION_CALLING,
        Capability.STREAMING,
        Capability.TOOL_ACCESS,
        Capability.JSON_SCHEMA,
    }
)
# DeepSeek 兼容 OpenAI 协议，但不接受 json_schema 响应格式
_DEEPSEEK_CAPS = frozenset(
    {Capability.TEXT, Capability.FUNCTION_CALLING, Capability.STREAMING, Capability.TOOL_ACCESS}
)

DEFAULT_CONTEXT_WINDOW = 128_000
DEFAULT_MAX_OUTPUT_TOKENS = 16_384
_CONSTRAINED_PREFIXES = ("o1", "o3", "o4")


@dataclass(frozen=True)
class ModelDescriptor:
    """单个模型的静态描述，构造后不可变。"""

    identifier: str
    family: ModelFamily
    context_window_tokens: int = DEFAULT_CONTEXT_WINDOW
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    capabilities: FrozenSet[Capability] = field(default=_GPT_CAPS)
    pricing_tier: PricingTier = PricingTier.STANDARD

    @property
    def api_name(self) -> str:
        return self.identifier

    @property
    def is_constrained(self) -> bool:
        return self.family is ModelFamily.CONSTRAINED

    @property
    def supports_json_schema(self) -> bool:
        return Capability.JSON_SCHEMA in self.capabilities

    @property
    def supports_vision(self) -> bool:
        return Capability.VISION in self.capabilities

    @property
    def supports_function_calling(self) -> bool:
        return Capability.FUNCTION_CALLING in self.capabilities

    def __str__(self) -> str:
        return f"{self.identifier} ({self.family.value}, {self.pricing_tier.value})"


def infer_family(identifier: str) -> ModelFamily:
    """根据模型 ID 前缀推断家族。

    o1 / o3 / o4 本身或以 "-" 续接的名称（o1-pro、o3-mini、o4-mini...）归为
    constrained；其他一律 standard，包括 "o5" 之类的未来名称。
    """

    name = identifier.strip().lower()
    for prefix in _CONSTRAINED_PREFIXES:
        if name == prefix or name.startswith(prefix + "-"):
            return ModelFamily.CONSTRAINED
    return ModelFamily.STANDARD


def _entries() -> Iterable[ModelDescriptor]:
    S, C = ModelFamily.STANDARD, ModelFamily.CONSTRAINED
    yield ModelDescriptor("gpt-4.1", S, 1_047_576, 32_768, _GPT_VISION_CAPS)
    yield ModelDescriptor("gpt-4.1-mini", S, 1_047_576, 32_768, _GPT_VISION_CAPS, PricingTier.ECONOMY)
    yield ModelDescriptor("gpt-4.1-nano", S, 1_047_576, 32_768, _GPT_VISION_CAPS, PricingTier.ECONOMY)
    yield ModelDescriptor("gpt-4o", S, 128_000, 16_384, _GPT_VISION_CAPS)
    yield ModelDescriptor("gpt-4o-mini", S, 128_000, 16_384, _GPT_CAPS | {Capability.VISION}, PricingTier.ECONOMY)
    yield ModelDescriptor("gpt-4-turbo", S, 128_000, 4_096, _GPT_VISION_CAPS)
    yield ModelDescriptor("o1", C, 200_000, 32_768, _REASONING_CAPS)
    yield ModelDescriptor("o1-pro", C, 200_000, 65_536, _REASONING_CAPS, PricingTier.PREMIUM)
    yield ModelDescriptor("o3", C, 200_000, 32_768, _REASONING_CAPS)
    yield ModelDescriptor("o3-pro", C, 200_000, 65_536, _REASONING_CAPS, PricingTier.PREMIUM)
    yield ModelDescriptor("o3-mini", C, 200_000, 65_536, _REASONING_CAPS, PricingTier.ECONOMY)
    yield ModelDescriptor("o4-mini", C, 200_000, 16_384, _REASONING_CAPS, PricingTier.ECONOMY)
    yield ModelDescriptor("deepseek-chat", S, 32_768, 8_192, _DEEPSEEK_CAPS, PricingTier.ECONOMY)
    yield ModelDescriptor("deepseek-coder", S, 32_768, 8_192, _DEEPSEEK_CAPS, PricingTier.ECONOMY)
    yield ModelDescriptor("deepseek-reasoner", S, 65_536, 8_192, _DEEPSEEK_CAPS, PricingTier.ECONOMY)


MODEL_REGISTRY: Mapping[str, ModelDescriptor] = MappingProxyType({m.identifier: m for m in _entries()})


def resolve_model(identifier: str, family: Optional[ModelFamily] = None) -> ModelDescriptor:
    """获取模型描述。

    - 已登记的 ID 直接返回注册表中的描述；
    - 未登记的 ID 按前缀推断家族，deepseek- 前缀去掉 json_schema 能力；
    - family 显式给出时覆盖推断/登记结果。
    """

    if not identifier or not identifier.strip():
        raise ValueError("model identifier must be non-empty")
    known = MODEL_REGISTRY.get(identifier) or MODEL_REGISTRY.get(identifier.lower())
    if known is None:
        inferred = infer_family(identifier)
        if identifier.lower().startswith("deepseek"):
            caps = _DEEPSEEK_CAPS
        elif inferred is ModelFamily.CONSTRAINED:
            caps = _REASONING_CAPS
        else:
            caps = _GPT_CAPS
        known = ModelDescriptor(identifier=identifier, family=inferred, capabilities=caps)
    elif known.identifier != identifier:
        known = replace(known, identifier=identifier)
    if family is not None and ModelFamily(family) is not known.family:
        known = replace(known, family=ModelFamily(family))
    return known


def models_of_family(family: ModelFamily) -> List[ModelDescriptor]:
    return [m for m in MODEL_REGISTRY.values() if m.family is family]


def models_with_capability(capability: Capability) -> List[ModelDescriptor]:
    return [m for m in MODEL_REGISTRY.values() if capability in m.capabilities]
