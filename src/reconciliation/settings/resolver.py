"""Settings Resolver — typed, tolerant access to the business configuration.

Values live in `Setting` rows either as JSON text or as raw scalars. Each key
is declared once below with its decoder and default; `resolve()` decodes and
falls back to the default whenever the row is missing or malformed, so a bad
setting can never block scheduling or reconciliation.
"""

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from protean.utils.globals import current_domain

from reconciliation.scheduling.delivery_dates import (
    DEFAULT_BUSINESS_WEEKDAYS,
    DEFAULT_CUTOFF,
    DEFAULT_MONTHLY_COUNTS,
    Frequency,
    parse_frequency,
    parse_weekday,
)
from reconciliation.settings.setting import Setting

logger = structlog.get_logger(__name__)

_WINDOW_PATTERN = re.compile(r"^\d{2}:\d{2}-\d{2}:\d{2}$")
_DEFAULT_WINDOWS = ("08:00-09:00", "09:00-10:00", "10:00-11:00", "11:00-12:00")


class PixEnvironment(Enum):
    PRODUCTION = "producao"
    SANDBOX = "homologacao"


# ---------------------------------------------------------------------------
# Decoders: raise ValueError/TypeError on malformed input
# ---------------------------------------------------------------------------
def _as_time(value) -> time:
    hours, _, minutes = str(value).strip().partition(":")
    return time(int(hours), int(minutes or 0))


def _as_dates(value) -> frozenset[date]:
    if not isinstance(value, list):
        raise TypeError("expected a list of dates")
    return frozenset(date.fromisoformat(str(item)) for item in value)


def _as_weekdays(value) -> frozenset[int]:
    if not isinstance(value, list):
        raise TypeError("expected a list of weekday names")
    weekdays = {parse_weekday(item) for item in value}
    if not weekdays or None in weekdays:
        raise ValueError(f"unknown weekday in {value!r}")
    return frozenset(weekdays)


def _as_counts(value) -> dict[Frequency, int]:
    if not isinstance(value, dict):
        raise TypeError("expected a frequency -> count mapping")
    counts = dict(DEFAULT_MONTHLY_COUNTS)
    for name, count in value.items():
        frequency = parse_frequency(name)
        if frequency is not None:
            counts[frequency] = int(count)
    return counts


def _as_windows(value) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(_WINDOW_PATTERN.match(str(item)) for item in value):
        raise ValueError(f"expected HH:MM-HH:MM ranges, got {value!r}")
    return tuple(str(item) for item in value)


def _as_zone(value) -> ZoneInfo:
    try:
        return ZoneInfo(str(value))
    except ZoneInfoNotFoundError as exc:
        raise ValueError(str(exc)) from exc


def _as_environment(value) -> PixEnvironment:
    return PixEnvironment(str(value).strip().lower())


def _as_text(value) -> str:
    if isinstance(value, (dict, list)):
        raise TypeError("expected a scalar")
    return str(value)


def _as_positive_int(value) -> int:
    number = int(value)
    if number <= 0:
        raise ValueError("expected a positive integer")
    return number


def _as_mapping(value) -> dict:
    if not isinstance(value, dict):
        raise TypeError("expected a mapping")
    return value


# ---------------------------------------------------------------------------
# Declarative schema
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class SettingKey:
    name: str
    decode: Callable[[Any], Any]
    default: Any = None


CUTOFF_TIME = SettingKey("hora_limite_entrega_dia", _as_time, DEFAULT_CUTOFF)
HOLIDAYS = SettingKey("feriados", _as_dates, frozenset())
BUSINESS_WEEKDAYS = SettingKey("dias_funcionamento", _as_weekdays, DEFAULT_BUSINESS_WEEKDAYS)
MONTHLY_COUNTS = SettingKey("entregas_por_recorrencia", _as_counts, DEFAULT_MONTHLY_COUNTS)
ORDER_WINDOWS = SettingKey("janelas_horario_entregas_avulsas", _as_windows, _DEFAULT_WINDOWS)
SUBSCRIPTION_WINDOWS = SettingKey("janelas_horario_entregas_assinaturas", _as_windows, _DEFAULT_WINDOWS)
TIMEZONE = SettingKey("fuso_horario", _as_zone, ZoneInfo("America/Sao_Paulo"))
PIX_ENVIRONMENT = SettingKey("ambiente_ativo_pix", _as_environment, PixEnvironment.PRODUCTION)
RATE_LIMIT_PER_MINUTE = SettingKey("limite_consultas_por_minuto", _as_positive_int, 60)

# Credential keys get an "_hml" suffix in the sandbox environment
PIX_CLIENT_ID = SettingKey("pix_client_id", _as_text)
PIX_CLIENT_SECRET = SettingKey("pix_client_secret", _as_text)
PIX_KEY = SettingKey("pix_key", _as_text)
PIX_CERTIFICATES = SettingKey("pix_certificates_meta", _as_mapping, {})


class SettingsResolver:
    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values = dict(values or {})

    @classmethod
    def load(cls) -> "SettingsResolver":
        """Snapshot every Setting row of the active domain."""
        rows = current_domain.repository_for(Setting)._dao.query.all().items
        return cls({row.key: row.value for row in rows})

    def get(self, key: str, default=None):
        """Stored value for `key`, JSON-decoded when possible, else `default`."""
        stored = self._values.get(key)
        if stored is None:
            return default
        if isinstance(stored, str):
            try:
                return json.loads(stored)
            except ValueError:
                return stored
        return stored

    def resolve(self, setting: SettingKey, name: str | None = None):
        key = name or setting.name
        value = self.get(key)
        if value is None:
            return setting.default
        try:
            return setting.decode(value)
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Malformed setting, using default", key=key, error=str(exc))
            return setting.default

    # -------------------------------------------------------------------
    # Typed getters
    # -------------------------------------------------------------------
    @property
    def cutoff_time(self) -> time:
        return self.resolve(CUTOFF_TIME)

    @property
    def holidays(self) -> frozenset[date]:
        return self.resolve(HOLIDAYS)

    @property
    def business_weekdays(self) -> frozenset[int]:
        return self.resolve(BUSINESS_WEEKDAYS)

    @property
    def monthly_counts(self) -> dict[Frequency, int]:
        return self.resolve(MONTHLY_COUNTS)

    @property
    def order_time_windows(self) -> tuple[str, ...]:
        return self.resolve(ORDER_WINDOWS)

    @property
    def subscription_time_windows(self) -> tuple[str, ...]:
        return self.resolve(SUBSCRIPTION_WINDOWS)

    @property
    def timezone(self) -> ZoneInfo:
        return self.resolve(TIMEZONE)

    @property
    def pix_environment(self) -> PixEnvironment:
        return self.resolve(PIX_ENVIRONMENT)

    @property
    def rate_limit_per_minute(self) -> int:
        return self.resolve(RATE_LIMIT_PER_MINUTE)

    def pix_credential(self, setting: SettingKey):
        """Credential value for the active instant-payment environment."""
        name = setting.name
        if self.pix_environment is PixEnvironment.SANDBOX:
            name = f"{name}_hml"
        return self.resolve(setting, name=name)
