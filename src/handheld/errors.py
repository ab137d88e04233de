from __future__ import annotations


class HandheldError(Exception):
    failure_atom = "HANDHELD:ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ParseError(HandheldError):
    failure_atom = "PARSE:ERROR"

    def __init__(self, line_number: int, text: str, reason: str) -> None:
        super().__init__(f"line {line_number}: {reason}: {text!r}")
        self.line_number = line_number
        self.text = text


class MalformedInstruction(ParseError):
    failure_atom = "PARSE:MALFORMED_INSTRUCTION"


class InvalidOffset(ParseError):
    failure_atom = "PARSE:INVALID_OFFSET"


class NotFlippable(HandheldError):
    failure_atom = "CONTRACT:NOT_FLIPPABLE"


class ProgramCounterOutOfBounds(HandheldError):
    failure_atom = "RUN:PC_OUT_OF_BOUNDS"

    def __init__(self, position: int, length: int) -> None:
        super().__init__(f"position {position} outside [0, {length}]")
        self.position = position
        self.length = length


class NoFixFound(HandheldError):
    failure_atom = "REPAIR:NO_FIX_FOUND"


class ProgramAlreadyTerminates(NoFixFound):
    failure_atom = "REPAIR:NOT_LOOPING"
