from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from auroraguard.config import GuardConfig


@dataclass(frozen=True, slots=True)
class Capability:
    name: str
    supported: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class Capabilities:
    speech: Capability
    location: Capability
    local_mic: Capability

    def as_dict(self) -> dict[str, dict[str, object]]:
        return {
            c.name: {"supported": c.supported, "reason": c.reason}
            for c in (self.speech, self.location, self.local_mic)
        }


def _probe_local_mic() -> Capability:
    try:
        from auroraguard.mic import list_input_devices

        devices = list_input_devices()
    except Exception as exc:
        return Capability("local_mic", False, f"Local microphone unavailable: {exc}")
    if not devices:
        return Capability("local_mic", False, "No local input devices found")
    return Capability("local_mic", True)


def negotiate_capabilities(
    config: GuardConfig,
    *,
    probe_local_mic: Callable[[], Capability] | None = None,
) -> Capabilities:
    """Decide once, at startup, which external capabilities this process can use."""
    logger = logging.getLogger("auroraguard.capabilities")

    if config.audio_source == "local":
        local_mic = (probe_local_mic or _probe_local_mic)()
    else:
        local_mic = Capability("local_mic", False, "STT_AUDIO_SOURCE is not local")

    if not config.elevenlabs_api_key:
        speech = Capability("speech", False, "Speech recognition is not available (ELEVENLABS_API_KEY not set)")
    elif config.audio_source == "local" and not local_mic.supported:
        speech = Capability("speech", False, f"Speech recognition is not available ({local_mic.reason})")
    else:
        speech = Capability("speech", True)

    if config.location_source == "off":
        location = Capability("location", False, "Geolocation is disabled (LOCATION_SOURCE=off)")
    elif config.location_source == "static" and (config.location_lat is None or config.location_lng is None):
        location = Capability("location", False, "Geolocation is not configured (set LOCATION_LAT and LOCATION_LNG)")
    else:
        location = Capability("location", True)

    caps = Capabilities(speech=speech, location=location, local_mic=local_mic)
    for c in (caps.speech, caps.location, caps.local_mic):
        if c.supported:
            logger.info("Capability %s: supported", c.name)
        else:
            logger.warning("Capability %s: unsupported (%s)", c.name, c.reason)
    return caps
