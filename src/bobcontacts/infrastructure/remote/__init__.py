"""REST adapters for the remote contact-management backend."""

from bobcontacts.infrastructure.remote.strapi_client import StaticTokenProvider, StrapiClient

__all__ = ["StaticTokenProvider", "StrapiClient"]
