import math
import os
from typing import Optional

from pydantic import ValidationError

from om_compaction.exceptions import ConfigError
from om_compaction.models import (
    AUTO_TOKENS_MAX,
    AUTO_TOKENS_MIN,
    AutoCompactionMode,
    OMConfig,
    SettingsUpdate,
    TriggerState,
)

_MODE_ALIASES = {
    AutoCompactionMode.BUFFERED: ("buffered", "buffer", "bg", "background", "async", "auto"),
    AutoCompactionMode.BLOCKING: ("blocking", "sync", "manual"),
}
_ENABLED_TRUE = ("on", "enable", "enabled", "true", "1")
_ENABLED_FALSE = ("off", "disable", "disabled", "false", "0")
_RETAIN_OFF = ("off", "none", "disable", "disabled", "false")

_KEYED_ARGS = {
    "mode": "mode", "strategy": "mode",
    "enabled": "enabled", "auto": "enabled",
    "observer": "observer", "obs": "observer", "raw": "observer",
    "reflector": "reflector", "reflect": "reflector", "observations": "reflector",
    "retain": "retain", "keep": "retain", "buffer": "retain", "partial": "retain",
}


def parse_token_string(text: str) -> int:
    """
    Parse "30000", "30k", "1.5m", "8_000" or "30,000" into a token count.

    Raises ConfigError for empty, non-numeric or negative input. No range check.
    """
    raw = text.strip().lower().replace(",", "").replace("_", "")
    multiplier = 1
    if raw.endswith("k"):
        multiplier, raw = 1_000, raw[:-1]
    elif raw.endswith("m"):
        multiplier, raw = 1_000_000, raw[:-1]

    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f'Invalid token count "{text}". Use values like 30000 or 30k.') from None
    if not math.isfinite(value) or value < 0:
        raise ConfigError(f'Invalid token count "{text}". Use values like 30000 or 30k.')
    return round(value * multiplier)


def parse_token_count(
    text: str,
    min_tokens: int = AUTO_TOKENS_MIN,
    max_tokens: int = AUTO_TOKENS_MAX,
    allow_zero: bool = False,
) -> int:
    tokens = parse_token_string(text)
    if allow_zero and tokens == 0:
        return 0
    if tokens <= 0 or tokens < min_tokens or tokens > max_tokens:
        raise ConfigError(
            f'Token count "{text}" is outside the allowed range {min_tokens:,}-{max_tokens:,}.'
        )
    return tokens


def parse_retain_tokens(text: str) -> int:
    """Raw-tail retain buffer: a token count, or 0 / "off" to disable."""
    if text.strip().lower() in _RETAIN_OFF:
        return 0
    return parse_token_count(text, min_tokens=0, allow_zero=True)


def parse_mode(text: str) -> AutoCompactionMode:
    normalized = text.strip().lower()
    for mode, aliases in _MODE_ALIASES.items():
        if normalized in aliases:
            return mode
    raise ConfigError(f'Invalid mode "{text}". Use buffered or blocking.')


def parse_enabled(text: str) -> bool:
    normalized = text.strip().lower()
    if normalized in _ENABLED_TRUE:
        return True
    if normalized in _ENABLED_FALSE:
        return False
    raise ConfigError(f'Invalid enabled value "{text}". Use on/off.')


def _try(parser, text):
    try:
        return parser(text)
    except ConfigError:
        return None


def parse_settings_args(args: str) -> SettingsUpdate:
    """
    Parse the settings command grammar into an update.

    Positional: on|off, a mode word, then up to three token counts
    (observer, reflector, retain). Keyed: mode=, enabled=, observer=,
    reflector=, retain= (and their aliases). Any bad token raises
    ConfigError and nothing is applied.
    """
    update = SettingsUpdate()
    positional = 0

    for token in args.split():
        enabled = _try(parse_enabled, token)
        if enabled is not None:
            update.enabled = enabled
            continue

        mode = _try(parse_mode, token)
        if mode is not None:
            update.mode = mode
            continue

        key, sep, value = token.partition("=")
        if sep and key:
            field = _KEYED_ARGS.get(key.strip().lower())
            if field is None:
                raise ConfigError(
                    f'Unknown keyed argument "{key}". '
                    "Use mode=..., observer=..., reflector=..., retain=..., enabled=..."
                )
            if field == "mode":
                update.mode = parse_mode(value)
            elif field == "enabled":
                update.enabled = parse_enabled(value)
            elif field == "observer":
                update.observer_threshold_tokens = parse_token_count(value)
            elif field == "reflector":
                update.reflector_threshold_tokens = parse_token_count(value)
            else:
                update.retain_buffer_tokens = parse_retain_tokens(value)
            continue

        parsed = None
        if positional == 0:
            parsed = _try(parse_token_count, token)
            if parsed is not None:
                update.observer_threshold_tokens = parsed
        elif positional == 1:
            parsed = _try(parse_token_count, token)
            if parsed is not None:
                update.reflector_threshold_tokens = parsed
        elif positional == 2:
            parsed = _try(parse_retain_tokens, token)
            if parsed is not None:
                update.retain_buffer_tokens = parsed
        if parsed is not None:
            positional += 1
            continue

        raise ConfigError(
            f'Invalid argument "{token}". Use on/off, mode, token counts (30000/30k), '
            "or keyed forms: observer=/reflector=/retain=/mode=."
        )

    return update


def apply_settings(state: TriggerState, update: SettingsUpdate) -> TriggerState:
    """
    Apply a validated update to the session state, all or nothing.

    Disabling the observer or switching to blocking releases the in-flight guard.
    """
    values = update.model_dump(exclude_none=True)
    try:
        candidate = state.model_copy(update=values)
        TriggerState.model_validate(candidate.model_dump())
    except ValidationError as e:
        raise ConfigError(str(e)) from e

    for name, value in values.items():
        setattr(state, name, value)
    if not state.enabled or state.mode is AutoCompactionMode.BLOCKING:
        state.in_flight = False
    return state


def from_env(environ: Optional[dict] = None) -> OMConfig:
    """
    Load OMConfig from environment variables.
    Users can override any setting by prefixing the env var with `OM_`.
    """
    env = os.environ if environ is None else environ
    config_kwargs = {}

    if "OM_AUTO_COMPACT" in env:
        config_kwargs["auto_observe"] = parse_enabled(env["OM_AUTO_COMPACT"])
    if "OM_MODE" in env:
        config_kwargs["mode"] = parse_mode(env["OM_MODE"])

    # Thresholds
    if "OM_OBSERVER_THRESHOLD" in env:
        config_kwargs["observer_token_threshold"] = parse_token_count(env["OM_OBSERVER_THRESHOLD"])
    if "OM_REFLECTOR_THRESHOLD" in env:
        config_kwargs["reflector_token_threshold"] = parse_token_count(env["OM_REFLECTOR_THRESHOLD"])
    if "OM_RETAIN_RAW_TAIL" in env:
        config_kwargs["raw_tail_retain_tokens"] = parse_retain_tokens(env["OM_RETAIN_RAW_TAIL"])

    return OMConfig(**config_kwargs)
