from .engine import ProxyEngine, ProxyRequest, UpstreamResponse
from .headers import HeaderMap
from .retry import Fail, Ok, Retry, RetryState, decide

__all__ = [
    "Fail",
    "HeaderMap",
    "Ok",
    "ProxyEngine",
    "ProxyRequest",
    "Retry",
    "RetryState",
    "UpstreamResponse",
    "decide",
]
