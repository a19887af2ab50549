"""SSM client for reading bundle secrets from AWS Parameter Store."""

import boto3
from botocore.exceptions import ClientError
from mypy_boto3_ssm import SSMClient as SSMClientType


class SSMClient:
    """SSM client for reading SecureString parameters."""

    def __init__(self, region: str = "eu-west-2") -> None:
        """Initialize SSM client.

        Args:
            region: AWS region for SSM client
        """
        self.client: SSMClientType = boto3.client("ssm", region_name=region)

    def get_secure_parameter(self, name: str) -> str:
        """Fetch and decrypt a parameter value.

        Args:
            name: Full parameter name, e.g. ``/acme/example.com/bundle-password``

        Returns:
            Decrypted parameter value

        Raises:
            ValueError: If the parameter does not exist
        """
        try:
            response = self.client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ParameterNotFound":
                raise ValueError(f"Parameter not found in SSM: {name}") from e
            raise

        return response["Parameter"]["Value"]
