"""Operator confirmation before challenges are submitted."""

from collections.abc import Callable

from .logging_config import get_logger

logger = get_logger(__name__)


class ConsoleInstructionPrompt:
    """Logs challenge instructions and waits for ENTER unless auto-accepting."""

    def __init__(
        self, accept_instructions: bool, read_line: Callable[[str], str] = input
    ) -> None:
        self.accept_instructions = accept_instructions
        self.read_line = read_line

    def confirm(self, domain: str, instructions: str) -> None:
        logger.info("%s", instructions, extra={"domain": domain})
        if self.accept_instructions:
            logger.info("Automatically accepting instructions.", extra={"domain": domain})
            return
        self.read_line("Press ENTER to continue")
