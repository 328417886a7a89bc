"""In-memory settings store for the voice locale and speech output toggle."""

from __future__ import annotations

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

SUPPORTED_LOCALES: Dict[str, str] = {
    "auto": "Auto-détection",
    "fr_FR": "Français (France)",
    "fr_BE": "Français (Belgique)",
    "fr_CA": "Français (Canada)",
    "en_US": "English (United States)",
    "en_GB": "English (United Kingdom)",
}


class SettingsStore:
    """Process-local preferences; nothing is persisted."""

    def __init__(self, locale: Optional[str] = None, tts_enabled: bool = True) -> None:
        self._locale: Optional[str] = None
        self._tts_enabled = tts_enabled
        self.set_voice_locale(locale)

    def set_voice_locale(self, locale: Optional[str]) -> None:
        """Select a recognition locale; ``None`` or ``"auto"`` means auto-detection."""
        if locale == "auto":
            locale = None
        if locale is not None and locale not in SUPPORTED_LOCALES:
            raise ValueError(f"Unsupported locale '{locale}'")
        self._locale = locale
        logger.info("Voice locale set to %s", locale or "auto")

    def voice_locale(self) -> Optional[str]:
        return self._locale

    def set_tts_enabled(self, enabled: bool) -> None:
        self._tts_enabled = enabled
        logger.info("Speech output %s", "enabled" if enabled else "disabled")

    def tts_enabled(self) -> bool:
        return self._tts_enabled

    def reset(self) -> None:
        self._locale = None
        self._tts_enabled = True
        logger.info("Settings reset to defaults")
