"""Case-insensitive HTTP header mapping."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, MutableMapping
from typing import Union

HeaderSource = Union[Mapping[str, str], Iterable[tuple[str, str]]]


class HeaderMap(MutableMapping[str, str]):
    """Ordered header mapping keyed case-insensitively.

    Setting a name that already exists (in any letter case) replaces the
    stored value and keeps the original position, so repeated response
    headers collapse to the last one received.  Keys iterate lower-cased.
    """

    __slots__ = ("_store",)

    def __init__(self, headers: HeaderSource | None = None) -> None:
        self._store: dict[str, str] = {}
        if headers is not None:
            self.update(headers)

    def __getitem__(self, name: str) -> str:
        return self._store[name.lower()]

    def __setitem__(self, name: str, value: str) -> None:
        self._store[name.lower()] = value

    def __delitem__(self, name: str) -> None:
        del self._store[name.lower()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._store

    def __iter__(self) -> Iterator[str]:
        return iter(self._store)

    def __len__(self) -> int:
        return len(self._store)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HeaderMap):
            return self._store == other._store
        if isinstance(other, Mapping):
            return self._store == {str(k).lower(): v for k, v in other.items()}
        return NotImplemented

    def __repr__(self) -> str:
        return f"HeaderMap({self._store!r})"

    def copy(self) -> HeaderMap:
        return HeaderMap(self._store)
