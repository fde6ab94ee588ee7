"""Payment provider adapter factory.

Provides get_*_gateway() / set_*_gateway() to swap implementations:
- FakePixGateway / FakeCardGateway for development and testing
- EfiPixGateway / StripeCardGateway when PROTEAN_ENV is "production"

The live instant-payment adapter is kept per process and rebuilt only when
the credentials or certificate stored in the back-office change; the
replaced adapter's connection pool is closed.
"""

import os
import threading

from reconciliation.gateway.fake_adapter import FakeCardGateway, FakePixGateway
from reconciliation.gateway.port import CardGateway, InstantPaymentGateway

_current_pix_gateway: InstantPaymentGateway | None = None
_current_card_gateway: CardGateway | None = None
_live_pix_gateway = None
_live_pix_lock = threading.Lock()


def _live() -> bool:
    return os.environ.get("PROTEAN_ENV") == "production"


def _live_pix() -> InstantPaymentGateway:
    global _live_pix_gateway
    from reconciliation.gateway.credentials import DirectoryCertificateStore, load_pix_credentials
    from reconciliation.gateway.efi_adapter import EfiPixGateway
    from reconciliation.settings.resolver import SettingsResolver

    credentials = load_pix_credentials(SettingsResolver.load(), DirectoryCertificateStore())
    with _live_pix_lock:
        if _live_pix_gateway is not None and _live_pix_gateway.credentials == credentials:
            return _live_pix_gateway
        if _live_pix_gateway is not None:
            _live_pix_gateway.close()
        _live_pix_gateway = EfiPixGateway(credentials)
        return _live_pix_gateway


def get_pix_gateway() -> InstantPaymentGateway:
    """Return the current instant-payment gateway. Defaults to FakePixGateway."""
    global _current_pix_gateway
    if _current_pix_gateway is not None:
        return _current_pix_gateway
    if _live():
        return _live_pix()
    _current_pix_gateway = FakePixGateway()
    return _current_pix_gateway


def get_card_gateway() -> CardGateway:
    """Return the current card gateway. Defaults to FakeCardGateway."""
    global _current_card_gateway
    if _current_card_gateway is None:
        if _live():
            from reconciliation.gateway.stripe_adapter import StripeCardGateway

            _current_card_gateway = StripeCardGateway()
        else:
            _current_card_gateway = FakeCardGateway()
    return _current_card_gateway


def set_pix_gateway(gateway: InstantPaymentGateway) -> None:
    """Override the active instant-payment gateway (useful for tests)."""
    global _current_pix_gateway
    _current_pix_gateway = gateway


def set_card_gateway(gateway: CardGateway) -> None:
    """Override the active card gateway (useful for tests)."""
    global _current_card_gateway
    _current_card_gateway = gateway


def reset_gateways() -> None:
    """Reset both rails to their defaults."""
    global _current_pix_gateway, _current_card_gateway, _live_pix_gateway
    if _live_pix_gateway is not None:
        _live_pix_gateway.close()
    _current_pix_gateway = None
    _current_card_gateway = None
    _live_pix_gateway = None
