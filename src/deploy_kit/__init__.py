"""deploy-kit: locked, fail-fast deployments of staged cloud applications."""

__version__ = "0.1.0"
