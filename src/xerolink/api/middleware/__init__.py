from .errors import setup_error_handlers
from .request_id import RequestIDMiddleware


__all__ = ["setup_error_handlers", "RequestIDMiddleware"]
