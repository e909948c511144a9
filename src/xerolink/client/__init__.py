"""Provider request execution."""

from .executor import ApiRequest, RequestExecutor


__all__ = ["ApiRequest", "RequestExecutor"]
