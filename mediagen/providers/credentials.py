from dataclasses import dataclass

from mediagen.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class Credential:
    family: str
    index: int
    secret: str

    def __repr__(self) -> str:
        return f"Credential(family={self.family!r}, index={self.index})"


class CredentialPool:
    """Ordered, read-only credential lists per provider family.

    Iteration is stateless: callers pass the index they tried last, so
    concurrent requests never share an iterator.
    """

    def __init__(self, tokens: dict[str, list[str]]):
        self._tokens = {family: tuple(values) for family, values in tokens.items()}

    @classmethod
    def from_settings(cls, settings) -> "CredentialPool":
        return cls(settings.credential_tokens())

    def size(self, family: str) -> int:
        tokens = self._tokens.get(family)
        if not tokens:
            raise ConfigurationError(f"No credentials configured for provider '{family}'")
        return len(tokens)

    def next(self, family: str, after_index: int = -1) -> Credential | None:
        """The credential after `after_index`, or None once the list is exhausted."""
        tokens = self._tokens.get(family)
        if not tokens:
            raise ConfigurationError(f"No credentials configured for provider '{family}'")
        index = after_index + 1
        if index >= len(tokens):
            return None
        return Credential(family=family, index=index, secret=tokens[index])
