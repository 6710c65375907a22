class ProtocolViolation(Exception):
    """An event arrived that the stream protocol does not allow at this point.

    Never expected from a correct server; reducers log it and ignore the event
    unless running in strict mode.
    """

    def __init__(self, event_type: str, reason: str):
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"{event_type}: {reason}")


class StreamRequestError(Exception):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")
