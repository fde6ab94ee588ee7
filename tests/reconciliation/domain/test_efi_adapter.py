"""Tests for the Efí instant-payment adapter over a mocked transport."""

import json

import httpx
import pytest
from reconciliation.gateway.credentials import PixCredentials
from reconciliation.gateway.efi_adapter import BASE_URLS, EfiPixGateway
from reconciliation.gateway.port import AuthorizationState, ChargeState, CredentialsError, GatewayError
from reconciliation.settings.resolver import PixEnvironment

CREDENTIALS = PixCredentials(
    client_id="Client_Id_test",
    client_secret="Client_Secret_test",
    certificate_pem=b"unused",
    private_key_pem=b"unused",
    pix_key="chave@hortaflow.test",
    environment=PixEnvironment.SANDBOX,
)


class FakeEfi:
    """Answers like the provider and keeps the requests it saw."""

    def __init__(self, charge_status="ATIVA", rec_status="CRIADA", token_status=200):
        self.charge_status = charge_status
        self.rec_status = rec_status
        self.token_status = token_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/oauth/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": "tok-123", "expires_in": 3600})
        if path.startswith("/v2/cob/"):
            return httpx.Response(200, json={"txid": path.rsplit("/", 1)[1], "status": self.charge_status})
        if path == "/v2/cob":
            return httpx.Response(
                201,
                json={
                    "txid": "newtxid0001",
                    "status": "ATIVA",
                    "loc": {"location": "pix.example/qr/v2/abc"},
                    "pixCopiaECola": "00020101021226",
                },
            )
        if path.startswith("/v2/rec/"):
            return httpx.Response(200, json={"idRec": path.rsplit("/", 1)[1], "status": self.rec_status})
        return httpx.Response(404, json={"nome": "not_found"})

    def paths(self):
        return [request.url.path for request in self.requests]


def _gateway(fake):
    client = httpx.Client(base_url=BASE_URLS[PixEnvironment.SANDBOX], transport=httpx.MockTransport(fake))
    return EfiPixGateway(CREDENTIALS, client=client)


class TestAccessToken:
    def test_token_uses_basic_auth_and_client_credentials(self):
        fake = FakeEfi()
        assert _gateway(fake).obtain_access_token() == "tok-123"

        request = fake.requests[0]
        assert request.method == "POST"
        assert request.headers["Authorization"].startswith("Basic ")
        assert json.loads(request.content) == {"grant_type": "client_credentials"}

    def test_token_is_cached(self):
        fake = FakeEfi()
        gateway = _gateway(fake)
        gateway.query_charge_status("tx1")
        gateway.query_charge_status("tx2")
        assert fake.paths().count("/oauth/token") == 1

    def test_refused_token_raises(self):
        with pytest.raises(GatewayError):
            _gateway(FakeEfi(token_status=401)).obtain_access_token()


class TestChargeStatus:
    @pytest.mark.parametrize(
        "provider_status, state",
        [
            ("ATIVA", ChargeState.ACTIVE),
            ("CONCLUIDA", ChargeState.SETTLED),
            ("REMOVIDA_PELO_USUARIO_RECEBEDOR", ChargeState.REMOVED_BY_PAYEE),
            ("REMOVIDA_PELO_PSP", ChargeState.REMOVED_BY_PROCESSOR),
        ],
    )
    def test_status_mapping(self, provider_status, state):
        status = _gateway(FakeEfi(charge_status=provider_status)).query_charge_status("tx1")
        assert status.state is state
        assert status.provider_status == provider_status
        assert status.transaction_id == "tx1"

    def test_lookup_is_bearer_authorized(self):
        fake = FakeEfi()
        _gateway(fake).query_charge_status("tx1")
        assert fake.requests[-1].headers["Authorization"] == "Bearer tok-123"

    def test_unknown_status_raises(self):
        with pytest.raises(GatewayError):
            _gateway(FakeEfi(charge_status="PERDIDA")).query_charge_status("tx1")

    def test_transport_failure_raises(self):
        def broken(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(base_url=BASE_URLS[PixEnvironment.SANDBOX], transport=httpx.MockTransport(broken))
        with pytest.raises(GatewayError):
            EfiPixGateway(CREDENTIALS, client=client).query_charge_status("tx1")


class TestAuthorizationStatus:
    @pytest.mark.parametrize(
        "provider_status, state",
        [
            ("CRIADA", AuthorizationState.CREATED),
            ("APROVADA", AuthorizationState.APPROVED),
            ("REJEITADA", AuthorizationState.REJECTED),
            ("CANCELADA", AuthorizationState.CANCELLED),
            ("EXPIRADA", AuthorizationState.CANCELLED),
        ],
    )
    def test_status_mapping(self, provider_status, state):
        status = _gateway(FakeEfi(rec_status=provider_status)).query_authorization_status("rec-1")
        assert status.state is state
        assert status.authorization_id == "rec-1"


class TestCreateCharge:
    def test_create_charge_payload(self):
        fake = FakeEfi()
        issued = _gateway(fake).create_charge(37.5, "Pedido #1001", reference="ord-1")

        assert issued.transaction_id == "newtxid0001"
        assert issued.location == "pix.example/qr/v2/abc"
        body = json.loads(fake.requests[-1].content)
        assert body["valor"] == {"original": "37.50"}
        assert body["chave"] == "chave@hortaflow.test"
        assert body["calendario"] == {"expiracao": 3600}
        assert body["infoAdicionais"] == [{"nome": "Referencia", "valor": "ord-1"}]

    def test_create_charge_needs_pix_key(self):
        credentials = PixCredentials("id", "secret", b"c", b"k", pix_key=None)
        with pytest.raises(CredentialsError):
            EfiPixGateway(credentials, client=httpx.Client()).create_charge(10.0, "Pedido")
