from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from auroraguard.keywords import DEFAULT_KEYWORDS

AUDIO_SOURCES = ("phone", "local")
NOTIFY_PROVIDERS = ("http", "twilio", "off")
LOCATION_SOURCES = ("phone", "static", "off")


def _parse_bool(raw: str | None, default: bool = False) -> bool:
    if raw is None:
        return bool(default)
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _parse_float(raw: str | None, default: float | None) -> float | None:
    value = (raw or "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise SystemExit(f"Invalid number: {raw!r}") from None


def _choice(raw: str | None, choices: tuple[str, ...], default: str, name: str) -> str:
    value = (raw or default).strip().lower()
    if value not in choices:
        raise SystemExit(f"{name} must be one of {', '.join(choices)} (got {value!r})")
    return value


@dataclass(frozen=True, slots=True)
class GuardConfig:
    host: str = "127.0.0.1"
    port: int = 8765
    log_level: str = "INFO"
    log_dir: str | None = None

    keywords: tuple[str, ...] = DEFAULT_KEYWORDS
    alert_cooldown_s: float = 10.0
    restart_delay_s: float = 0.1
    continuous: bool = True
    language: str = "en"

    elevenlabs_api_key: str | None = None
    elevenlabs_host: str = "api.elevenlabs.io"
    elevenlabs_model_id: str | None = None
    elevenlabs_commit_strategy: str = "vad"
    elevenlabs_vad_silence_threshold_secs: float = 1.2

    audio_source: str = "phone"
    mic_device: str | None = None

    contacts_path: str | None = "contacts.json"

    notify_provider: str = "off"
    notify_url: str | None = None
    notify_api_key: str | None = None
    notify_timeout_s: float = 30.0
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_phone_number: str | None = None
    alert_log_path: str = "emergency_alerts.jsonl"

    location_source: str = "phone"
    location_lat: float | None = None
    location_lng: float | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GuardConfig:
        env = os.environ if environ is None else environ

        raw_keywords = env.get("KEYWORDS")
        keywords = DEFAULT_KEYWORDS
        if raw_keywords is not None:
            keywords = tuple(k for k in (p.strip() for p in raw_keywords.split(",")) if k)

        try:
            port = int(env.get("PORT") or "8765")
        except ValueError:
            raise SystemExit(f"Invalid PORT: {env.get('PORT')!r}") from None

        return cls(
            host=(env.get("HOST") or "127.0.0.1").strip(),
            port=port,
            log_level=(env.get("LOG_LEVEL") or "INFO").strip(),
            log_dir=(env.get("LOG_DIR") or "").strip() or None,
            keywords=keywords,
            alert_cooldown_s=float(_parse_float(env.get("ALERT_COOLDOWN_S"), 10.0)),
            restart_delay_s=float(_parse_float(env.get("RECOGNITION_RESTART_DELAY_S"), 0.1)),
            continuous=_parse_bool(env.get("RECOGNITION_CONTINUOUS"), default=True),
            language=(env.get("RECOGNITION_LANGUAGE") or "en").strip(),
            elevenlabs_api_key=(env.get("ELEVENLABS_API_KEY") or "").strip() or None,
            elevenlabs_host=(env.get("ELEVENLABS_HOST") or "api.elevenlabs.io").strip(),
            elevenlabs_model_id=(env.get("ELEVENLABS_MODEL_ID") or None),
            elevenlabs_commit_strategy=(env.get("ELEVENLABS_COMMIT_STRATEGY") or "vad"),
            elevenlabs_vad_silence_threshold_secs=float(
                _parse_float(env.get("ELEVENLABS_VAD_SILENCE_THRESHOLD_SECS"), 1.2)
            ),
            audio_source=_choice(env.get("STT_AUDIO_SOURCE"), AUDIO_SOURCES, "phone", "STT_AUDIO_SOURCE"),
            mic_device=(env.get("MIC_DEVICE") or None),
            contacts_path=(env.get("CONTACTS_PATH") or "contacts.json").strip() or None,
            notify_provider=_choice(env.get("NOTIFY_PROVIDER"), NOTIFY_PROVIDERS, "off", "NOTIFY_PROVIDER"),
            notify_url=(env.get("NOTIFY_URL") or "").strip() or None,
            notify_api_key=(env.get("NOTIFY_API_KEY") or "").strip() or None,
            notify_timeout_s=float(_parse_float(env.get("NOTIFY_TIMEOUT_S"), 30.0)),
            twilio_account_sid=(env.get("TWILIO_ACCOUNT_SID") or "").strip() or None,
            twilio_auth_token=(env.get("TWILIO_AUTH_TOKEN") or "").strip() or None,
            twilio_phone_number=(env.get("TWILIO_PHONE_NUMBER") or "").strip() or None,
            alert_log_path=(env.get("ALERT_LOG_PATH") or "emergency_alerts.jsonl").strip(),
            location_source=_choice(env.get("LOCATION_SOURCE"), LOCATION_SOURCES, "phone", "LOCATION_SOURCE"),
            location_lat=_parse_float(env.get("LOCATION_LAT"), None),
            location_lng=_parse_float(env.get("LOCATION_LNG"), None),
        )
