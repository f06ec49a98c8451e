"""Operator input for the interactive menus.

``Prompter`` reads from the terminal through typer. ``ScriptedPrompter``
replays a fixed list of answers, which drives unattended runs
(``--answers``) and the test suite.
"""
from collections import deque
from typing import Iterable, List, Optional

import typer


class PromptExhausted(Exception):
    """Raised when a scripted run asks more questions than it has answers."""


class Prompter:
    """Interactive prompts backed by typer."""

    def ask(self, text: str, default: Optional[str] = None) -> str:
        value = typer.prompt(
            text,
            default="" if default is None else default,
            show_default=bool(default),
        )
        return str(value).strip()

    def secret(self, text: str) -> str:
        return str(typer.prompt(text, default="", show_default=False, hide_input=True))

    def confirm(self, text: str, default: bool = False) -> bool:
        return typer.confirm(text, default=default)

    def choose(self, text: str, options: Iterable) -> Optional[str]:
        """Ask for one of ``options``; return None for anything else."""
        answer = self.ask(text)
        valid = {str(option) for option in options}
        return answer if answer in valid else None

    def pause(self) -> None:
        self.ask("Press Enter to continue", default="")


class ScriptedPrompter(Prompter):
    """Prompter that answers from a predefined list."""

    def __init__(self, answers: Iterable):
        self.answers = deque(str(a) for a in answers)
        self.asked: List[str] = []

    @classmethod
    def from_string(cls, answers: str) -> "ScriptedPrompter":
        """Build from a comma-separated answer list ("1,3,4,,y")."""
        return cls(part.strip() for part in answers.split(","))

    def ask(self, text: str, default: Optional[str] = None) -> str:
        self.asked.append(text)
        if not self.answers:
            raise PromptExhausted(f"No scripted answer for prompt: {text}")
        answer = self.answers.popleft()
        if answer == "" and default is not None:
            return default
        return answer

    def secret(self, text: str) -> str:
        return self.ask(text)

    def confirm(self, text: str, default: bool = False) -> bool:
        answer = self.ask(text, default="y" if default else "n")
        return answer.strip().lower() in ("y", "yes")

    def pause(self) -> None:
        # Unattended runs never stop for Enter
        pass
