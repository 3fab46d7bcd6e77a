"""GraphQL gateway orchestrating a commerce platform and an identity provider."""

__version__ = "0.1.0"
