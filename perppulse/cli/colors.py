"""ANSI color and screen-control codes for terminal output."""


class Colors:
    """ANSI escape codes for terminal coloring."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"


class Screen:
    """Cursor and alternate-screen control sequences."""

    HOME = "\033[H"
    CLEAR = "\033[2J"
    HIDE_CURSOR = "\033[?25l"
    SHOW_CURSOR = "\033[?25h"
    ALT_SCREEN = "\033[?1049h"
    MAIN_SCREEN = "\033[?1049l"


def colorize(text: str, color: str) -> str:
    return f"{color}{text}{Colors.RESET}"


def direction_color(change: float) -> str:
    """Green for up, red for down, cyan for flat."""
    if change > 0:
        return Colors.GREEN
    if change < 0:
        return Colors.RED
    return Colors.CYAN
