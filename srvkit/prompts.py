"""User interaction utilities for server-toolkit."""

from typing import List, Optional, Sequence


def prompt(message: str, default: str = "") -> str:
    """
    Prompt the user for input with an optional default value.

    Args:
        message: The prompt message to display
        default: Default value if user presses Enter

    Returns:
        User input or default value
    """
    if default:
        display = f"{message} [{default}]: "
    else:
        display = f"{message}: "

    try:
        response = input(display).strip()
        return response if response else default
    except EOFError:
        print()
        return default


def pause(message: str = "Press Enter to continue...") -> None:
    try:
        input(message)
    except EOFError:
        print()


def confirm(message: str, default: bool = False, assume_yes: bool = False) -> bool:
    """
    Ask the user for confirmation.

    Args:
        message: The question to ask
        default: Default answer if user presses Enter
        assume_yes: Skip the question and answer yes (``--yes``)

    Returns:
        True if user confirmed, False otherwise
    """
    if assume_yes:
        return True

    if default:
        prompt_suffix = "[Y/n]"
    else:
        prompt_suffix = "[y/N]"

    while True:
        try:
            response = input(f"{message} {prompt_suffix}: ").strip().lower()
        except EOFError:
            print()
            return default

        if not response:
            return default
        if response in ("y", "yes"):
            return True
        if response in ("n", "no"):
            return False
        print("  Please answer 'y' or 'n'")


def choose(title: str, options: Sequence[str]) -> Optional[int]:
    """
    Show a numbered menu and read a choice.

    Returns:
        Index of the chosen option, or None for quit/EOF
    """
    print()
    print(title)
    for i, option in enumerate(options, 1):
        print(f"  {i}) {option}")
    print("  q) Quit")

    while True:
        answer = prompt("Select").lower()
        if answer in ("", "q", "quit"):
            return None
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return int(answer) - 1
        print(f"  Please enter 1-{len(options)} or q")


def read_lines_until_blank(message: str) -> List[str]:
    """Read lines until an empty line or EOF, e.g. pasted public keys."""
    print(message)
    lines = []
    while True:
        try:
            line = input()
        except EOFError:
            break
        if not line.strip():
            break
        lines.append(line)
    return lines
