"""
Where did a panic come from.

Provenance is taken from the innermost traceback frame of the exception.
When no traceback is attached, a formatted stack string is parsed
instead.
"""

import re
import traceback
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple

_FRAME_LINE = re.compile(r'File "(?P<file>[^"]+)", line (?P<line>\d+)(?:, in (?P<function>\S+))?')


@dataclass(frozen=True)
class PanicInfo:
    """
    Description of a recovered exception.

    Attributes:
        message: str() of the exception
        exception_type: Class name of the exception
        file: Source file of the raising frame
        line: Line number in that file, as a string
        function: Function name of the raising frame
    """

    message: str
    exception_type: str
    file: str = ""
    line: str = ""
    function: str = ""

    @property
    def location(self) -> str:
        """file:line, or an empty string when unknown."""
        if not self.file:
            return ""
        return f"{self.file}:{self.line}"

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


def parse_stack(stack: str) -> Tuple[str, str, str]:
    """
    Find the innermost frame in a formatted Python stack.

    Args:
        stack: Output of traceback.format_exception()/format_stack()

    Returns:
        (file, line, function); empty strings when no frame is found
    """
    last = None
    for match in _FRAME_LINE.finditer(stack or ""):
        last = match
    if last is None:
        return "", "", ""
    return last.group("file"), last.group("line"), last.group("function") or ""


def panic_provenance(exc: BaseException, stack: Optional[str] = None) -> PanicInfo:
    """
    Describe where an exception was raised.

    Args:
        exc: The recovered exception
        stack: Formatted stack to parse when exc carries no traceback

    Returns:
        PanicInfo for the innermost frame
    """
    info = PanicInfo(message=str(exc), exception_type=type(exc).__name__)

    frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
    if frames:
        frame = frames[-1]
        return PanicInfo(
            message=info.message,
            exception_type=info.exception_type,
            file=frame.filename,
            line=str(frame.lineno),
            function=frame.name,
        )

    if stack is None:
        stack = "".join(traceback.format_stack())
    file, line, function = parse_stack(stack)
    return PanicInfo(
        message=info.message,
        exception_type=info.exception_type,
        file=file,
        line=line,
        function=function,
    )
