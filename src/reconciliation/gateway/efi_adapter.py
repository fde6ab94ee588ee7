"""Efí instant-payment (Pix) adapter.

Every call travels over mutual TLS with the uploaded client certificate. An
OAuth client-credentials token, obtained over that same channel, authorizes
the charge (`/v2/cob`) and recurring authorization (`/v2/rec`) endpoints.
"""

import os
import ssl
import tempfile
import time

import httpx
import structlog

from reconciliation.gateway.credentials import PixCredentials
from reconciliation.gateway.port import (
    AuthorizationState,
    AuthorizationStatus,
    ChargeState,
    ChargeStatus,
    CredentialsError,
    GatewayError,
    InstantPaymentGateway,
    IssuedCharge,
)
from reconciliation.settings.resolver import PixEnvironment

logger = structlog.get_logger(__name__)

BASE_URLS = {
    PixEnvironment.PRODUCTION: "https://pix.api.efipay.com.br",
    PixEnvironment.SANDBOX: "https://pix-h.api.efipay.com.br",
}

CHARGE_EXPIRATION_SECONDS = 3600
_TOKEN_SAFETY_MARGIN_SECONDS = 60

CHARGE_STATES = {
    "ATIVA": ChargeState.ACTIVE,
    "CONCLUIDA": ChargeState.SETTLED,
    "REMOVIDA_PELO_USUARIO_RECEBEDOR": ChargeState.REMOVED_BY_PAYEE,
    "REMOVIDA_PELO_PSP": ChargeState.REMOVED_BY_PROCESSOR,
}

AUTHORIZATION_STATES = {
    "CRIADA": AuthorizationState.CREATED,
    "APROVADA": AuthorizationState.APPROVED,
    "REJEITADA": AuthorizationState.REJECTED,
    "CANCELADA": AuthorizationState.CANCELLED,
    "EXPIRADA": AuthorizationState.CANCELLED,
}


def mtls_context(certificate_pem: bytes, private_key_pem: bytes) -> ssl.SSLContext:
    """SSL context presenting the client certificate.

    `load_cert_chain` only reads files, so the PEM material is written to a
    private temporary directory that is removed right after loading.
    """
    context = ssl.create_default_context()
    with tempfile.TemporaryDirectory() as workdir:
        cert_path = os.path.join(workdir, "client.crt")
        key_path = os.path.join(workdir, "client.key")
        for path, data in ((cert_path, certificate_pem), (key_path, private_key_pem)):
            with open(os.open(path, os.O_WRONLY | os.O_CREAT, 0o600), "wb") as handle:
                handle.write(data)
        try:
            context.load_cert_chain(cert_path, key_path)
        except ssl.SSLError as exc:
            raise CredentialsError(f"Invalid mTLS certificate or key: {exc}", provider="pix") from exc
    return context


class EfiPixGateway(InstantPaymentGateway):
    def __init__(
        self,
        credentials: PixCredentials,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.credentials = credentials
        self.base_url = BASE_URLS[credentials.environment]
        self.timeout = timeout
        self._http = client
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.Client:
        if self._http is None:
            context = mtls_context(self.credentials.certificate_pem, self.credentials.private_key_pem)
            self._http = httpx.Client(base_url=self.base_url, verify=context, timeout=self.timeout)
        return self._http

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------
    def _send(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._client().request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Efí request failed", method=method, path=path, error=str(exc))
            raise GatewayError(f"Efí request {method} {path} failed: {exc}", provider=self.provider) from exc

        if response.status_code >= 400:
            logger.error("Efí returned an error", method=method, path=path, status_code=response.status_code)
            raise GatewayError(
                f"Efí {method} {path} answered {response.status_code}: {response.text}",
                provider=self.provider,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayError(f"Efí {method} {path} answered with invalid JSON", provider=self.provider) from exc
        if not isinstance(body, dict):
            raise GatewayError(f"Efí {method} {path} answered with an unexpected body", provider=self.provider)
        return body

    def _authorized(self, method: str, path: str, **kwargs) -> dict:
        headers = {"Authorization": f"Bearer {self.obtain_access_token()}"}
        return self._send(method, path, headers=headers, **kwargs)

    # -------------------------------------------------------------------
    # Port implementation
    # -------------------------------------------------------------------
    def obtain_access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        body = self._send(
            "POST",
            "/oauth/token",
            auth=(self.credentials.client_id, self.credentials.client_secret),
            json={"grant_type": "client_credentials"},
        )
        token = body.get("access_token")
        if not token:
            raise GatewayError("Efí OAuth answer carries no access_token", provider=self.provider)

        expires_in = int(body.get("expires_in") or 0)
        self._token = token
        self._token_expires_at = time.monotonic() + max(0, expires_in - _TOKEN_SAFETY_MARGIN_SECONDS)
        return token

    def query_charge_status(self, transaction_id: str) -> ChargeStatus:
        body = self._authorized("GET", f"/v2/cob/{transaction_id}")
        provider_status = body.get("status", "")
        state = CHARGE_STATES.get(provider_status)
        if state is None:
            raise GatewayError(f"Unknown Efí charge status '{provider_status}'", provider=self.provider)
        return ChargeStatus(state=state, transaction_id=transaction_id, provider_status=provider_status)

    def query_authorization_status(self, authorization_id: str) -> AuthorizationStatus:
        body = self._authorized("GET", f"/v2/rec/{authorization_id}")
        provider_status = body.get("status", "")
        state = AUTHORIZATION_STATES.get(provider_status)
        if state is None:
            raise GatewayError(f"Unknown Efí authorization status '{provider_status}'", provider=self.provider)
        return AuthorizationStatus(state=state, authorization_id=authorization_id, provider_status=provider_status)

    def create_charge(self, amount: float, description: str, reference: str | None = None) -> IssuedCharge:
        if not self.credentials.pix_key:
            raise CredentialsError("No Pix key configured to receive charges", provider=self.provider)

        payload = {
            "calendario": {"expiracao": CHARGE_EXPIRATION_SECONDS},
            "valor": {"original": f"{amount:.2f}"},
            "chave": self.credentials.pix_key,
            "solicitacaoPagador": description[:140],
        }
        if reference:
            payload["infoAdicionais"] = [{"nome": "Referencia", "valor": reference}]

        body = self._authorized("POST", "/v2/cob", json=payload)
        transaction_id = body.get("txid")
        if not transaction_id:
            raise GatewayError("Efí charge answer carries no txid", provider=self.provider)

        logger.info("Issued instant-payment charge", transaction_id=transaction_id, amount=amount)
        return IssuedCharge(
            transaction_id=transaction_id,
            copy_paste_code=body.get("pixCopiaECola"),
            location=(body.get("loc") or {}).get("location") or body.get("location"),
        )
