"""Parameter and header containers owned by a single call.

Both containers are ordered by insertion so that encoded requests are
reproducible. Re-adding an existing name replaces the entry in place.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from rest_proxy.models import Param


class ParamSet:
    """Ordered mapping of parameter name -> Param."""

    def __init__(self) -> None:
        self._params: dict[str, Param] = {}

    def add(self, param: Param) -> None:
        """Add a parameter, replacing any existing one with the same name."""
        self._params[param.name] = param

    def get(self, name: str) -> Param | None:
        """Return the named parameter, or None when absent."""
        return self._params.get(name)

    def remove(self, name: str) -> None:
        """Remove the named parameter. Removing an absent name is a no-op."""
        self._params.pop(name, None)

    def items(self) -> Iterator[tuple[str, Param]]:
        """Yield (name, param) pairs in insertion order.

        Each call returns a fresh iterator, so the sequence can be restarted.
        """
        for name, param in self._params.items():
            yield name, param

    def all_strings(self) -> bool:
        """True when every parameter is a plain string (or the set is empty)."""
        return all(param.is_string for param in self._params.values())

    def as_string_dict(self) -> dict[str, str]:
        """Decoded name -> value mapping of the string parameters."""
        return {
            name: param.value
            for name, param in self._params.items()
            if param.is_string
        }

    def __contains__(self, name: object) -> bool:
        return name in self._params

    def __len__(self) -> int:
        return len(self._params)

    def __iter__(self) -> Iterator[tuple[str, Param]]:
        return self.items()

    def __repr__(self) -> str:
        return f"ParamSet({list(self._params)!r})"


class HeaderSet:
    """Mapping of header name -> single string value.

    Lookups are case-insensitive, as header names are on the wire. The
    casing of the most recent write is what gets sent.
    """

    def __init__(self, headers: Mapping[str, str] | Iterable[tuple[str, str]] | None = None) -> None:
        # lowercased name -> (original name, value)
        self._headers: dict[str, tuple[str, str]] = {}
        if headers is not None:
            self.update(headers)

    def add(self, name: str, value: str) -> None:
        """Set a header. Last write wins."""
        key = name.lower()
        self._headers.pop(key, None)
        self._headers[key] = (name, value)

    def update(self, headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> None:
        pairs = headers.items() if isinstance(headers, Mapping) else headers
        for name, value in pairs:
            self.add(name, value)

    def get(self, name: str) -> str | None:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def remove(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    def clear(self) -> None:
        self._headers.clear()

    def items(self) -> Iterator[tuple[str, str]]:
        for name, value in self._headers.values():
            yield name, value

    def as_dict(self) -> dict[str, str]:
        return dict(self.items())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._headers

    def __len__(self) -> int:
        return len(self._headers)

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return self.items()

    def __repr__(self) -> str:
        return f"HeaderSet({self.as_dict()!r})"
