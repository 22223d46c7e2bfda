from devteam.middleware.request_id import RequestIDMiddleware, RequestIdLogFilter, get_request_id

__all__ = ["RequestIDMiddleware", "RequestIdLogFilter", "get_request_id"]
