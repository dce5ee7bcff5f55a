"""Identifier normalization for free-form keys."""

import re


def to_identifier(value) -> str:
    """
    Fold a free-form key into a snake_case identifier.

    Example: "GatewayHost" -> "gateway_host", "HTTPProxy" -> "http_proxy",
    "my key" -> "my_key". Characters outside [A-Za-z0-9_] and leading
    digits are dropped.
    """
    text = str(value)
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", text)
    text = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", text)
    text = text.replace(" ", "_")
    text = re.sub(r"[^_a-zA-Z0-9]|^\d+", "", text)
    return text.lower()
