class TermfepError(Exception):
    pass


class SetupError(TermfepError):
    pass


class TransportError(TermfepError):
    pass


class ConnectionLost(TransportError):
    def __init__(self, detail: str = "IME update stream ended"):
        super().__init__(f"Connection to the input method was lost: {detail}")


class TerminalIOError(TermfepError):
    pass


class ProtocolError(TermfepError):
    pass


class NotInContextError(Exception):
    def __init__(self):
        return super().__init__("Must be inside an appropriate context manager")
