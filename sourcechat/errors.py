"""Error taxonomy for the chat gateway.

Every error carries an HTTP status and a short ``public_message`` that is
safe to show to end users. Vendor error bodies and raw model output stay in
the logs; only ``public_message`` ever leaves the process.
"""


class GatewayError(Exception):
    status_code = 500
    public_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", public_message: str | None = None):
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class InvalidRequest(GatewayError):
    status_code = 400
    public_message = "The request was invalid."

    def __init__(self, message: str = ""):
        # Validation messages describe the caller's own input, so they are safe to return
        super().__init__(message, public_message=message or None)


class UnsupportedProvider(GatewayError):
    status_code = 400

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"Unsupported LLM provider: {provider}",
            public_message=f"Unsupported LLM provider: {provider}",
        )


class ProviderError(GatewayError):
    status_code = 502
    public_message = "The AI provider failed to generate a response. Please try again."

    def __init__(self, provider: str, message: str = ""):
        self.provider = provider
        super().__init__(f"[{provider}] {message}".strip())


class ConversationBusy(GatewayError):
    status_code = 409

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(
            f"Conversation {conversation_id} already has an active response",
            public_message="A response is already being generated for this chat.",
        )


class ConversationNotFound(GatewayError):
    status_code = 404
    public_message = "Chat not found"

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class RecoveryFailure(GatewayError):
    status_code = 422
    public_message = "The AI response could not be understood."


class MissingField(RecoveryFailure):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Required field '{field}' is missing")


class ConnectionClosed(GatewayError):
    """Raised by a connection handle that can no longer accept frames."""
