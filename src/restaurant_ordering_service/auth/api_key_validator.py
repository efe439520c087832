"""API key validation for privileged (admin and kitchen) endpoints."""

import hmac


class APIKeyValidator:
    """Validates staff API keys against the configured key set."""

    def __init__(self, api_keys: list[str]) -> None:
        """Initialize validator with the accepted API keys.

        Args:
            api_keys: Accepted API key strings; blank entries are ignored

        Raises:
            ValueError: If no usable key is provided
        """
        keys = [key.strip() for key in api_keys if key and key.strip()]
        if not keys:
            raise ValueError("At least one API key must be provided")

        self.api_keys = keys

    def validate(self, api_key: str) -> bool:
        """Check an API key using constant-time comparison.

        Args:
            api_key: The API key presented by the caller

        Returns:
            bool: True if the key is accepted
        """
        return any(hmac.compare_digest(api_key, key) for key in self.api_keys)
