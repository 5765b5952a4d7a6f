from __future__ import annotations

from enum import Enum


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    PARSE = "parse"


class TermfeedError(Exception):
    pass


class FetchError(TermfeedError):
    kind = FetchErrorKind.NETWORK

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NetworkTimeout(FetchError):
    kind = FetchErrorKind.TIMEOUT


class NetworkError(FetchError):
    kind = FetchErrorKind.NETWORK


class ParseFailure(FetchError):
    kind = FetchErrorKind.PARSE


class PersistenceCorrupt(TermfeedError):
    pass


class ConfigInvalid(TermfeedError):
    pass
