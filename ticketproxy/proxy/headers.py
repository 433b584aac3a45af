from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

# Inbound -> upstream: never forwarded.
REQUEST_STRIP = frozenset({
    "host",
    "content-length",
    "connection",
    "accept-encoding",
    "user-agent",
    "x-forwarded-for",
    "x-forwarded-proto",
    "x-forwarded-port",
})

# Upstream -> caller: hop-by-hop and framing headers the proxy owns.
RESPONSE_STRIP = frozenset({
    "connection",
    "transfer-encoding",
    "content-encoding",
    "content-length",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "upgrade",
    "host",
    "x-powered-by",
})

SENSITIVE = frozenset({"authorization", "x-api-key", "cookie", "set-cookie"})
REDACTED = "[REDACTED]"

HeaderSource = Union["HeaderMap", Mapping[str, Union[str, Iterable[str]]], Iterable[Tuple[str, str]]]


class HeaderMap:
    """
    Ordered, case-insensitive, multi-value header mapping.

    Names are stored lowercased; each name keeps its values in arrival order.
    """

    def __init__(self, source: Optional[HeaderSource] = None) -> None:
        self._data: Dict[str, List[str]] = {}
        if source is None:
            return
        if isinstance(source, HeaderMap):
            for name, values in source._data.items():
                self._data[name] = list(values)
        elif isinstance(source, Mapping):
            for name, value in source.items():
                if isinstance(value, (list, tuple)):
                    for v in value:
                        self.add(name, v)
                else:
                    self.add(name, value)
        else:
            for name, value in source:
                self.add(name, value)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[Union[str, bytes], Union[str, bytes]]]) -> "HeaderMap":
        out = cls()
        for name, value in pairs:
            if isinstance(name, bytes):
                name = name.decode("latin-1")
            if isinstance(value, bytes):
                value = value.decode("latin-1")
            out.add(name, value)
        return out

    def add(self, name: str, value: str) -> None:
        self._data.setdefault(name.lower(), []).append(str(value))

    def set(self, name: str, values: Union[str, Iterable[str]]) -> None:
        if isinstance(values, str):
            values = [values]
        self._data[name.lower()] = [str(v) for v in values]

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self._data.get(name.lower())
        if not values:
            return default
        return ", ".join(values)

    def get_all(self, name: str) -> List[str]:
        return list(self._data.get(name.lower(), []))

    def remove(self, name: str) -> None:
        self._data.pop(name.lower(), None)

    def without(self, names: Iterable[str]) -> "HeaderMap":
        drop = {n.lower() for n in names}
        out = HeaderMap()
        for name, values in self._data.items():
            if name not in drop:
                out._data[name] = list(values)
        return out

    def merged_over(self, defaults: "HeaderMap") -> "HeaderMap":
        """Return defaults with every header of self replacing the default of the same name."""
        out = HeaderMap(defaults)
        for name, values in self._data.items():
            out._data[name] = list(values)
        return out

    def redacted(self) -> Dict[str, List[str]]:
        return {
            name: ([REDACTED] if name in SENSITIVE else list(values))
            for name, values in self._data.items()
        }

    def items(self) -> Iterator[Tuple[str, str]]:
        """Flattened (name, value) pairs, one per value."""
        for name, values in self._data.items():
            for value in values:
                yield name, value

    def to_dict(self) -> Dict[str, List[str]]:
        return {name: list(values) for name, values in self._data.items()}

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HeaderMap):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        return f"HeaderMap({self.redacted()!r})"


def filter_request_headers(headers: HeaderMap) -> HeaderMap:
    return headers.without(REQUEST_STRIP)


def filter_response_headers(headers: HeaderMap) -> HeaderMap:
    return headers.without(RESPONSE_STRIP)


def redact(headers: HeaderSource) -> Dict[str, List[str]]:
    if not isinstance(headers, HeaderMap):
        headers = HeaderMap(headers)
    return headers.redacted()
