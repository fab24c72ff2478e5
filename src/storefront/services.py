from dataclasses import dataclass

from fastapi import Request

from src.storefront.analytics import BeaconSender
from src.storefront.config import StorefrontConfig
from src.storefront.identity import IdentityResolver
from src.storefront.personalization import PersonalizationClient


@dataclass(frozen=True)
class Services:
    """
    Application-scoped collaborators, built once in create_app and read-only
    afterwards. Handlers receive it through the ``get_services`` dependency.
    """

    config: StorefrontConfig
    personalization: PersonalizationClient
    identity: IdentityResolver
    beacons: BeaconSender


def get_services(request: Request) -> Services:
    return request.app.state.services
