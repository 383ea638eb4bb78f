from fastapi import Request

from medipay.config import Settings, get_settings
from medipay.gateway import GatewayClient
from medipay.notifications import Notifier
from medipay.store import PaymentOrderStore


def settings_dependency() -> Settings:
    return get_settings()


def get_gateway(request: Request) -> GatewayClient:
    return request.app.state.gateway


def get_store(request: Request) -> PaymentOrderStore:
    return request.app.state.store


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier
