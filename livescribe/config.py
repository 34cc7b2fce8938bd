"""Configuration loader and validation."""

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from livescribe._types import DecodingOptions

logger = logging.getLogger(__name__)

__all__ = [
    "AudioConfig",
    "ModelConfig",
    "DecodingConfig",
    "StreamingConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
    "discover_audio_devices",
]

SECTIONS = ("audio", "model", "decoding", "streaming", "general")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class AudioConfig:
    """Audio capture configuration."""

    sample_rate: int = 16000
    channels: int = 1
    chunk_size: int = 1600
    device: int | str | None = None


@dataclass
class ModelConfig:
    """Whisper model configuration (faster-whisper backend)."""

    name: str = "base"
    device: str = "cpu"
    compute_type: str = "int8"
    model_directory: str | None = None
    beam_size: int = 5
    word_timestamps: bool = True


@dataclass
class DecodingConfig:
    """User-configurable decoding values turned into DecodingOptions per call."""

    task: str = "transcribe"
    language: str = "en"
    temperature_start: float = 0.0
    fallback_count: int = 5
    sample_length: int = 224
    enable_prompt_prefill: bool = True
    enable_cache_prefill: bool = True
    enable_special_characters: bool = False
    enable_timestamps: bool = True
    chunking_strategy: str = "none"
    compression_ratio_threshold: float = 2.4
    log_prob_threshold: float = -1.0
    no_speech_threshold: float = 0.6

    def build_options(
        self,
        *,
        clip_start: float = 0.0,
        prefix_tokens: tuple[int, ...] = (),
    ) -> DecodingOptions:
        """Snapshot the current values into an immutable DecodingOptions."""
        return DecodingOptions(
            task=self.task,
            language=None if self.language == "auto" else self.language,
            temperature=self.temperature_start,
            temperature_fallback_count=self.fallback_count,
            sample_length=self.sample_length,
            use_prefill_prompt=self.enable_prompt_prefill,
            use_prefill_cache=self.enable_cache_prefill,
            skip_special_tokens=not self.enable_special_characters,
            without_timestamps=not self.enable_timestamps,
            word_timestamps=True,
            clip_timestamps=(clip_start,),
            prefix_tokens=tuple(prefix_tokens),
            chunking_strategy=self.chunking_strategy,
            compression_ratio_threshold=self.compression_ratio_threshold,
            log_prob_threshold=self.log_prob_threshold,
            no_speech_threshold=self.no_speech_threshold,
        )


@dataclass
class StreamingConfig:
    """Buffer polling and reconciliation settings."""

    eager: bool = False
    use_vad: bool = True
    silence_threshold: float = 0.3
    min_buffer_seconds: float = 1.0
    poll_interval: float = 0.1
    required_segments_for_confirmation: int = 2
    token_confirmations_needed: int = 2
    compression_check_window: int = 60
    error_recovery_delay: float = 1.0


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False


@dataclass
class Config:
    """Main configuration container."""

    audio: AudioConfig = field(default_factory=AudioConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    decoding: DecodingConfig = field(default_factory=DecodingConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. LIVESCRIBE_CONFIG env var
                  2. ./livescribe.toml
                  3. ~/.config/livescribe.toml
                  Defaults are used when none of them exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit config file is missing or parsing fails
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        if resolved_path is None:
            logger.info("No config file found, using defaults")
            raw_data: dict = {}
        else:
            raw_data = _load_toml_file(resolved_path)

        coerced = _coerce_config_values(raw_data)
        try:
            return cls(
                audio=AudioConfig(**coerced["audio"]),
                model=ModelConfig(**coerced["model"]),
                decoding=DecodingConfig(**coerced["decoding"]),
                streaming=StreamingConfig(**coerced["streaming"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any value is out of range
        """
        validate_audio_config(self.audio)
        validate_model_config(self.model)
        validate_decoding_config(self.decoding)
        validate_streaming_config(self.streaming)


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Search order:
    1. CLI-provided path
    2. LIVESCRIBE_CONFIG environment variable
    3. ./livescribe.toml (current directory)
    4. ~/.config/livescribe.toml (user config directory)

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    if env_path := env.get("LIVESCRIBE_CONFIG"):
        env_candidate = Path(env_path)
        if not env_candidate.exists():
            raise ConfigError(f"Config file not found: {env_candidate}")
        logger.info("Using config file: %s", env_candidate.resolve())
        return env_candidate.resolve()

    for candidate in (
        Path("livescribe.toml"),
        Path.home() / ".config" / "livescribe.toml",
    ):
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Raises:
        ConfigError: If a section is not a table or is unknown
    """
    unknown = set(raw_data) - set(SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")

    coerced = {}
    for section in SECTIONS:
        coerced[section] = raw_data.get(section, {})
        if not isinstance(coerced[section], dict):
            raise ConfigError(f"Section [{section}] must be a table")

    # TOML has no null; an empty string selects the default input device
    if coerced["audio"].get("device") == "":
        coerced["audio"]["device"] = None

    for key in ("temperature_start", "compression_ratio_threshold", "log_prob_threshold"):
        if isinstance(coerced["decoding"].get(key), int):
            coerced["decoding"][key] = float(coerced["decoding"][key])

    return coerced


def discover_audio_devices() -> list[dict]:
    """Enumerate available audio capture devices.

    Returns:
        List of device dicts with keys: index, name, channels, sample_rate
        Returns empty list if sounddevice unavailable or no devices found
    """
    try:
        import sounddevice
    except ImportError:
        logger.warning("sounddevice not available, cannot enumerate audio devices")
        return []

    devices = []
    try:
        device_list = sounddevice.query_devices()
        if isinstance(device_list, dict):
            device_list = [device_list]

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) > 0:
                devices.append(
                    {
                        "index": idx,
                        "name": dev_info.get("name", f"Device {idx}"),
                        "channels": dev_info.get("max_input_channels", 0),
                        "sample_rate": dev_info.get("default_samplerate", 0),
                    }
                )
    except Exception as e:
        logger.warning("Error discovering audio devices: %s", e)

    return devices


def validate_audio_config(audio_cfg: AudioConfig) -> None:
    """Validate audio capture configuration.

    Raises:
        ConfigError: If audio configuration is invalid
    """
    if audio_cfg.sample_rate != 16000:
        raise ConfigError(
            f"sample_rate must be 16000 for Whisper models, got {audio_cfg.sample_rate}"
        )
    if audio_cfg.channels not in (1, 2):
        raise ConfigError(f"channels must be 1 or 2, got {audio_cfg.channels}")
    if audio_cfg.chunk_size <= 0:
        raise ConfigError(f"chunk_size must be positive, got {audio_cfg.chunk_size}")


def validate_model_config(model_cfg: ModelConfig) -> None:
    """Validate model configuration.

    Raises:
        ConfigError: If model configuration is invalid
    """
    valid_compute_types = ("int8", "float16", "float32", "default")
    if model_cfg.compute_type not in valid_compute_types:
        raise ConfigError(
            f"Invalid compute_type '{model_cfg.compute_type}'. "
            f"Must be one of: {', '.join(valid_compute_types)}"
        )

    valid_devices = ("cpu", "cuda", "auto")
    if model_cfg.device not in valid_devices:
        raise ConfigError(
            f"Invalid device '{model_cfg.device}'. "
            f"Must be one of: {', '.join(valid_devices)}"
        )

    if model_cfg.beam_size <= 0:
        raise ConfigError(f"beam_size must be positive, got {model_cfg.beam_size}")


def validate_decoding_config(decoding_cfg: DecodingConfig) -> None:
    """Validate decoding configuration.

    Raises:
        ConfigError: If decoding configuration is invalid
    """
    valid_tasks = ("transcribe", "translate")
    if decoding_cfg.task not in valid_tasks:
        raise ConfigError(
            f"Invalid task '{decoding_cfg.task}'. "
            f"Must be one of: {', '.join(valid_tasks)}"
        )

    valid_strategies = ("none", "vad")
    if decoding_cfg.chunking_strategy not in valid_strategies:
        raise ConfigError(
            f"Invalid chunking_strategy '{decoding_cfg.chunking_strategy}'. "
            f"Must be one of: {', '.join(valid_strategies)}"
        )

    if decoding_cfg.temperature_start < 0:
        raise ConfigError(
            f"temperature_start must be non-negative, got {decoding_cfg.temperature_start}"
        )

    if decoding_cfg.fallback_count < 0:
        raise ConfigError(
            f"fallback_count must be non-negative, got {decoding_cfg.fallback_count}"
        )

    if decoding_cfg.sample_length <= 0:
        raise ConfigError(
            f"sample_length must be positive, got {decoding_cfg.sample_length}"
        )


def validate_streaming_config(streaming_cfg: StreamingConfig) -> None:
    """Validate buffer polling and reconciliation settings.

    Raises:
        ConfigError: If streaming configuration is invalid
    """
    if not 0.0 <= streaming_cfg.silence_threshold <= 1.0:
        raise ConfigError(
            f"silence_threshold must be within [0, 1], got {streaming_cfg.silence_threshold}"
        )

    if streaming_cfg.min_buffer_seconds < 0:
        raise ConfigError(
            f"min_buffer_seconds must be non-negative, got {streaming_cfg.min_buffer_seconds}"
        )

    if streaming_cfg.poll_interval <= 0:
        raise ConfigError(
            f"poll_interval must be positive, got {streaming_cfg.poll_interval}"
        )

    if streaming_cfg.required_segments_for_confirmation < 0:
        raise ConfigError(
            "required_segments_for_confirmation must be non-negative, got "
            f"{streaming_cfg.required_segments_for_confirmation}"
        )

    if streaming_cfg.token_confirmations_needed < 1:
        raise ConfigError(
            "token_confirmations_needed must be at least 1, got "
            f"{streaming_cfg.token_confirmations_needed}"
        )

    if streaming_cfg.compression_check_window <= 0:
        raise ConfigError(
            "compression_check_window must be positive, got "
            f"{streaming_cfg.compression_check_window}"
        )

    if streaming_cfg.error_recovery_delay < 0:
        raise ConfigError(
            "error_recovery_delay must be non-negative, got "
            f"{streaming_cfg.error_recovery_delay}"
        )


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().

    Args:
        path: Explicit config file path (optional)
        env: Environment variables (defaults to os.environ)

    Returns:
        Loaded Config instance

    Raises:
        ConfigError: If config cannot be loaded
    """
    return Config.from_toml(path, env=env)
