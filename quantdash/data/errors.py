"""Classified data-acquisition errors.

Raw provider and transport messages are reduced to a small taxonomy; the
cache and retry layers look only at the kind to decide retryability.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    PERMISSION = "permission"
    NODATA = "nodata"
    API = "api"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Transient kinds are retried; credential and empty-result kinds are not."""
        return self in (ErrorKind.NETWORK, ErrorKind.API, ErrorKind.UNKNOWN)


_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "网络连接异常",
    ErrorKind.AUTH: "Token 验证失败",
    ErrorKind.PERMISSION: "接口权限不足",
    ErrorKind.NODATA: "暂无数据",
    ErrorKind.API: "API 请求异常",
    ErrorKind.UNKNOWN: "未知错误",
}

# Checked in order; the first matching group wins.
_KEYWORDS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (ErrorKind.NETWORK, ("network", "timeout", "econnrefused", "fetch", "超时", "网络")),
    (ErrorKind.AUTH, ("token", "认证", "auth")),
    (ErrorKind.PERMISSION, ("权限", "permission", "积分")),
    (ErrorKind.NODATA, ("无数据", "no data", "empty")),
    (ErrorKind.API, ("api", "tushare")),
]


class DataFetchError(Exception):
    """An upstream fetch failure carrying its classified kind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.message = message or _MESSAGES[kind]
        self.detail = detail
        super().__init__(self.message if detail is None else f"{self.message}: {detail}")

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "message": self.message,
            "detail": self.detail,
            "retryable": self.retryable,
        }


class RequestCancelled(Exception):
    """Raised to a caller whose request was abandoned before it settled."""


def classify_error(raw_message: str) -> ErrorKind:
    """Map a raw provider/transport message onto an ``ErrorKind``."""
    lower = (raw_message or "").lower()
    for kind, keywords in _KEYWORDS:
        if any(word in lower for word in keywords):
            return kind
    return ErrorKind.UNKNOWN


def error_from_message(raw_message: str) -> DataFetchError:
    """Build a classified ``DataFetchError`` keeping the raw text as detail."""
    return DataFetchError(classify_error(raw_message), detail=raw_message)
