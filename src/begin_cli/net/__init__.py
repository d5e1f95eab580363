"""Outbound HTTP plumbing shared by every remote service client."""

from begin_cli.net.retry import RetryPolicy, RetryingClient, execute  # noqa: F401
