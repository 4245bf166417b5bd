"""Topic registry: declarative mapping from capabilities to wire topics."""

import re
import string
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .exceptions import TopicValidationError
from .utils.validation import ConfigValidator


@dataclass(frozen=True)
class Topic:
    """
    A subscribable event channel.

    Identity is the ``(name, scope)`` pair, i.e. the wire topic
    ``name.scope``. ``capability`` and ``params`` are descriptive only.
    """
    name: str
    scope: str
    capability: str = field(default="", compare=False)
    params: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def wire(self) -> str:
        """Topic string as sent in LISTEN requests."""
        return f"{self.name}.{self.scope}"

    @property
    def key(self) -> str:
        """Capability-style key used for handler patterns, e.g. ``bits:123``."""
        if not self.capability:
            return self.wire
        return f"{self.capability}:{'.'.join(self.params or (self.scope,))}"

    def __str__(self) -> str:
        return self.wire


@dataclass(frozen=True)
class TopicDefinition:
    """Catalogue entry: one capability, its wire template and payload decoder."""
    capability: str
    name: str
    scope_template: str
    decoder: Optional[Callable[[Dict[str, Any]], Any]] = None
    description: str = ""

    @property
    def params(self) -> Tuple[str, ...]:
        """Parameter names in template order."""
        return tuple(
            field_name
            for _, field_name, _, _ in string.Formatter().parse(self.scope_template)
            if field_name
        )

    @property
    def pattern(self) -> "re.Pattern[str]":
        """Regex matching wire topics produced by this definition."""
        parts = [re.escape(self.name), r"\."]
        for literal, field_name, _, _ in string.Formatter().parse(self.scope_template):
            parts.append(re.escape(literal))
            if field_name:
                parts.append(f"(?P<{field_name}>[0-9]+)")
        return re.compile("".join(parts))

    def build(self, *args: Any, **kwargs: Any) -> Topic:
        """Create a Topic from positional or keyword parameters."""
        names = self.params
        if len(args) > len(names):
            raise TopicValidationError(
                f"{self.capability} takes {len(names)} parameter(s) ({', '.join(names)}), got {len(args)}",
                capability=self.capability,
            )

        values: Dict[str, Any] = dict(zip(names, args))
        for key, value in kwargs.items():
            if key not in names:
                continue
            if key in values:
                raise TopicValidationError(
                    f"{self.capability}: parameter {key} given twice", capability=self.capability
                )
            values[key] = value

        missing = [name for name in names if values.get(name) in (None, "")]
        if missing:
            raise TopicValidationError(
                f"{self.capability}: missing parameter(s) {', '.join(missing)}",
                capability=self.capability,
            )

        normalized = {}
        for name in names:
            value = values[name]
            if isinstance(value, int) and not isinstance(value, bool):
                value = str(value)
            if not ConfigValidator.validate_identifier(value):
                raise TopicValidationError(
                    f"{self.capability}: {name} must be a non-empty numeric string, got {value!r}",
                    capability=self.capability,
                )
            normalized[name] = value

        return Topic(
            name=self.name,
            scope=self.scope_template.format(**normalized),
            capability=self.capability,
            params=tuple(normalized[name] for name in names),
        )

    def match(self, wire_topic: str) -> Optional[Topic]:
        """Parse a wire topic back into a Topic, or None if it is not ours."""
        m = self.pattern.fullmatch(wire_topic)
        if not m:
            return None
        params = tuple(m.group(name) for name in self.params)
        return Topic(
            name=self.name,
            scope=wire_topic[len(self.name) + 1:],
            capability=self.capability,
            params=params,
        )


class TopicRegistry:
    """Registry of topic definitions keyed by capability."""

    def __init__(self, definitions: Optional[List[TopicDefinition]] = None):
        self._definitions: Dict[str, TopicDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: TopicDefinition) -> TopicDefinition:
        """Add a definition; capabilities are unique."""
        if definition.capability in self._definitions:
            raise TopicValidationError(
                f"Capability already registered: {definition.capability}",
                capability=definition.capability,
            )
        if not ConfigValidator.validate_topic_spec(definition.capability):
            raise TopicValidationError(
                f"Invalid capability name: {definition.capability!r}",
                capability=definition.capability,
            )
        self._definitions[definition.capability] = definition
        return definition

    def get(self, capability: str) -> TopicDefinition:
        """Get the definition for a capability."""
        try:
            return self._definitions[capability]
        except KeyError:
            raise TopicValidationError(
                f"Unknown capability: {capability!r} (known: {', '.join(sorted(self._definitions))})",
                capability=capability,
            ) from None

    def resolve(self, capability: str, *args: Any, **kwargs: Any) -> Topic:
        """Concrete Topic for a capability and its parameters."""
        return self.get(capability).build(*args, **kwargs)

    def parse(self, spec: str, defaults: Optional[Dict[str, str]] = None) -> Topic:
        """
        Parse a topic spec string.

        ``"bits:123"`` resolves ``bits`` with ``channel_id=123``; multiple
        parameters are dot-separated (``"moderator:111.222"``). A bare
        capability (``"bits"``) takes its parameters from ``defaults``.
        """
        if not isinstance(spec, str) or not ConfigValidator.validate_topic_spec(spec):
            raise TopicValidationError(f"Invalid topic spec: {spec!r}")

        capability, _, raw_params = spec.partition(":")
        definition = self.get(capability)

        if raw_params:
            return definition.build(*raw_params.split("."))
        return definition.build(**(defaults or {}))

    def lookup(self, wire_topic: str) -> Optional[Tuple[TopicDefinition, Topic]]:
        """Find the definition and Topic for an inbound wire topic."""
        for definition in self._definitions.values():
            topic = definition.match(wire_topic)
            if topic is not None:
                return definition, topic
        return None

    def capabilities(self) -> List[str]:
        return list(self._definitions)

    def __contains__(self, capability: str) -> bool:
        return capability in self._definitions

    def __iter__(self) -> Iterator[TopicDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)
