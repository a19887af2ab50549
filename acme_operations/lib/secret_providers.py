"""Bundle password sources: static value, interactive console, AWS SSM."""

import getpass
from collections.abc import Callable

from .logging_config import get_logger
from .ssm_client import SSMClient

logger = get_logger(__name__)


class StaticSecretProvider:
    """Password given up front (command line or environment)."""

    def __init__(self, password: str) -> None:
        self._password = password

    def obtain_bundle_password(self) -> str:
        if not self._password:
            raise ValueError("bundle password must not be empty")
        return self._password


class ConsolePasswordProvider:
    """Asks for the password twice until both entries match and are non-empty."""

    def __init__(self, read_password: Callable[[str], str] = getpass.getpass) -> None:
        """Initialize console provider.

        Args:
            read_password: Prompt function, ``getpass.getpass`` by default
        """
        self.read_password = read_password

    def obtain_bundle_password(self) -> str:
        while True:
            first = self.read_password("Enter password for pfx file: ")
            second = self.read_password("Repeat the password: ")
            if first != second:
                logger.warning("The passwords do not match.")
                continue
            if not first.strip():
                logger.warning("The password must not be empty.")
                continue
            return first


class SsmSecretProvider:
    """Reads the password from an SSM SecureString parameter."""

    def __init__(self, parameter_name: str, ssm_client: SSMClient) -> None:
        self.parameter_name = parameter_name
        self.ssm_client = ssm_client

    def obtain_bundle_password(self) -> str:
        """Fetch the password.

        Raises:
            ValueError: If the parameter is missing or empty
        """
        password = self.ssm_client.get_secure_parameter(self.parameter_name)
        if not password:
            raise ValueError(f"SSM parameter {self.parameter_name} is empty")
        return password
