import json
import logging

logger = logging.getLogger("marketplace.access")

REDACTED_FIELDS = ("password", "token")


def _redact(body: str) -> str:
    try:
        payload = json.loads(body)
    except ValueError:
        return body
    if not isinstance(payload, dict):
        return body
    for field in REDACTED_FIELDS:
        if field in payload:
            payload[field] = "***"
    return json.dumps(payload)


class RequestResponseLoggingMiddleware:
    """
    Writes one access log line per request and one per response.

    Multipart uploads and non-text responses (item images) are summarized
    instead of logged, and credentials in JSON bodies are masked.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_body = ""
        content_type = request.META.get("CONTENT_TYPE", "")

        if "multipart/form-data" in content_type:
            request_body = "<Multipart form data - body not logged>"
        elif request.method in ["POST", "PUT", "PATCH"] and request.body:
            try:
                request_body = _redact(request.body.decode("utf-8"))
            except UnicodeDecodeError:
                request_body = "<Could not decode body>"

        logger.info(
            "API Request: %s %s Body: %s",
            request.method,
            request.get_full_path(),
            request_body,
        )

        response = self.get_response(request)

        response_type = response.get("Content-Type", "")
        if getattr(response, "streaming", False):
            response_content = "<Streaming content>"
        elif response_type.startswith("application/json") or response_type.startswith(
            "text/"
        ):
            try:
                response_content = _redact(response.content.decode("utf-8"))
            except UnicodeDecodeError:
                response_content = "<Could not decode content>"
        else:
            response_content = f"<Content-Type: {response_type}>"

        logger.info(
            "API Response: %s %s Status: %d Content: %s",
            request.method,
            request.get_full_path(),
            response.status_code,
            response_content,
        )

        return response
