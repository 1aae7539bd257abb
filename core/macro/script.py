"""
Macro script model (.txt format)
One step per line: ``<TOKEN>`` lines are key tokens, other non-blank lines are literal text
"""

from __future__ import annotations
from typing import Iterable, Iterator, List, Optional, Union
from dataclasses import dataclass, field
import re

from . import keys

_TOKEN_LINE = re.compile(r"^<([A-Za-z0-9_]+)>$")

LOGIN_MACRO = "_Login"
PLACEHOLDER_USER = "{USER}"
PLACEHOLDER_PASS = "{PASS}"


@dataclass(frozen=True)
class TextStep:
    """Literal text typed as-is"""
    text: str

    def to_line(self) -> str:
        return self.text

    def to_bytes(self, encoding: str = "utf-8") -> bytes:
        return self.text.encode(encoding)


@dataclass(frozen=True)
class KeyStep:
    """Reference to an entry of the key token table"""
    name: str

    def __post_init__(self):
        if not keys.is_token(self.name):
            raise ValueError(f"Unknown key token: {self.name}")
        object.__setattr__(self, "name", self.name.upper())

    def to_line(self) -> str:
        return f"<{self.name}>"

    def to_bytes(self, encoding: str = "utf-8") -> bytes:
        return keys.KEY_TOKENS[self.name]


Step = Union[TextStep, KeyStep]


def parse_line(line: str) -> Optional[Step]:
    """Classify one line; None for blank lines"""
    stripped = line.strip()
    if not stripped:
        return None
    match = _TOKEN_LINE.match(stripped)
    if match and keys.is_token(match.group(1)):
        return KeyStep(match.group(1).upper())
    return TextStep(stripped)


@dataclass
class MacroScript:
    """Ordered steps of a macro; order defines replay order"""
    steps: List[Step] = field(default_factory=list)

    @staticmethod
    def parse(text: str) -> 'MacroScript':
        """Total parser: any text is a valid script (unknown tokens stay literal)"""
        steps = []
        for line in text.splitlines():
            step = parse_line(line)
            if step is not None:
                steps.append(step)
        return MacroScript(steps)

    def serialize(self) -> str:
        return "\n".join(step.to_line() for step in self.steps)

    def to_bytes(self, encoding: str = "utf-8") -> bytes:
        """Byte stream a replay of this script would send"""
        return b"".join(step.to_bytes(encoding) for step in self.steps)

    def substitute(self, substitutions: dict) -> 'MacroScript':
        """Copy with placeholders replaced in text steps only"""
        if not substitutions:
            return MacroScript(list(self.steps))
        steps: List[Step] = []
        for step in self.steps:
            if isinstance(step, TextStep):
                text = step.text
                for placeholder, value in substitutions.items():
                    text = text.replace(placeholder, value)
                if text:
                    steps.append(TextStep(text))
            else:
                steps.append(step)
        return MacroScript(steps)

    def __iter__(self) -> Iterator[Step]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @staticmethod
    def of(items: Iterable[Union[str, Step]]) -> 'MacroScript':
        """Build from steps or lines (``"<ENTER>"`` style strings become key steps)"""
        steps = []
        for item in items:
            step = parse_line(item) if isinstance(item, str) else item
            if step is not None:
                steps.append(step)
        return MacroScript(steps)


@dataclass
class Macro:
    """Named script; revision is None until the remote store has persisted it"""
    name: str
    content: MacroScript = field(default_factory=MacroScript)
    revision: Optional[str] = None

    @property
    def is_persisted(self) -> bool:
        return self.revision is not None
