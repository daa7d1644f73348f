"""Exception types raised by the storylua parser and runtime."""


class LuaError(Exception):
    """Base class for every error a script can produce."""
    pass


class ParseError(LuaError):
    """Raised when a statement is syntactically malformed"""
    pass


class EvaluationError(LuaError):
    """Raised when text cannot be read as an expression."""

    def __init__(self, text: str):
        self.text = text
        super().__init__(f'Cannot evaluate expression: {text}')


class LuaRuntimeError(LuaError):
    pass


class UnknownFunctionError(LuaRuntimeError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Unknown function: {name}')


class IterationLimitError(LuaError):
    """A loop ran past the iteration cap. Aborts the whole execute() call."""
    pass
