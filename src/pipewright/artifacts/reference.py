"""Storage-independent artifact identity."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_ARTIFACT_TYPE = "bin"


@dataclass(frozen=True, slots=True)
class ArtifactReference:
    """Immutable identity of a cacheable result.

    Two references name the same artifact iff every field matches.
    """

    name: str
    version: str
    type: str = DEFAULT_ARTIFACT_TYPE
    classifier: str | None = None
    group: str | None = None

    def __post_init__(self) -> None:
        for field_name in ("name", "version", "type"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Artifact reference {field_name} must be a non-empty string")
        if self.classifier is not None and not self.classifier.strip():
            raise ValueError("Artifact reference classifier must be non-empty when given")
        if self.group is not None and not self.group.strip():
            raise ValueError("Artifact reference group must be non-empty when given")

    @property
    def identifier(self) -> str:
        parts = [self.name, self.version]
        if self.group is not None:
            parts.insert(0, self.group)
        if self.classifier is not None:
            parts.append(self.classifier)
        parts.append(self.type)
        return ":".join(parts)

    def __str__(self) -> str:
        return self.identifier
