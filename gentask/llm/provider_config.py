"""Provider/runtime configuration for the completion layer.

Architectural role:
    Centralizes provider selection, endpoint tables, request defaults, and
    credential lookup for `gentask.llm.service` and `gentask.llm.client`.

Credential flow:
    `load_credentials` resolves the key once and wraps it in an immutable
    `Credentials` value that is injected into a completion service at
    construction. Nothing in the orchestration layer reads the environment.

Determinism:
    Deterministic for a fixed process environment and key files. Module-level
    values are resolved at import time (plus key-file reads in `load_key`).

Failure behavior:
    Missing key material is represented as `Credentials(api_key=None)`; the
    orchestrator turns that into an `auth` failure before any network call.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

# Primary model routing controls.
PROVIDER = os.getenv("GENTASK_PROVIDER", "gemini")
MODEL_NAME = os.getenv("GENTASK_MODEL", "gemini-2.5-flash")

# Seconds per HTTP call; no retry loop is layered on top.
REQUEST_TIMEOUT = float(os.getenv("GENTASK_TIMEOUT", "120"))

_temperature = os.getenv("GENTASK_TEMPERATURE")
DEFAULT_TEMPERATURE = float(_temperature) if _temperature else None

# Generic key variable used when no provider-specific one is set.
GENERIC_KEY_ENV = "GENTASK_API_KEY"

GEMINI_API = "gemini"
OPENAI_API = "openai"

# Provider endpoint map. `api` selects the wire dialect in `client.py`.
PROVIDERS = {

    "gemini": {
        "url": "https://generativelanguage.googleapis.com/v1beta/models",
        "key_file": "config/gemini.key",
        "api": GEMINI_API,
    },

    "openai": {
        "url": "https://api.openai.com/v1/chat/completions",
        "key_file": "config/openai.key",
        "api": OPENAI_API,
    },

    "groq": {
        "url": "https://api.groq.com/openai/v1/chat/completions",
        "key_file": "config/groq.key",
        "api": OPENAI_API,
    },

    "together": {
        "url": "https://api.together.xyz/v1/chat/completions",
        "key_file": "config/together.key",
        "api": OPENAI_API,
    },

    "openrouter": {
        "url": "https://openrouter.ai/api/v1/chat/completions",
        "key_file": "config/openrouter.key",
        "api": OPENAI_API,
    },

    "mistral": {
        "url": "https://api.mistral.ai/v1/chat/completions",
        "key_file": "config/mistral.key",
        "api": OPENAI_API,
    },

    "local": {
        "url": "http://127.0.0.1:8080/v1/chat/completions",
        "key_file": None,
        "api": OPENAI_API,
    },

}

GEMINI_URL_TEMPLATE = "{base}/{model}:generateContent"
GEMINI_STREAM_URL_TEMPLATE = "{base}/{model}:streamGenerateContent?alt=sse"


@dataclass(frozen=True)
class Credentials:
    """Provider credential injected into a completion service.

    Attributes:
        provider: Provider label the key belongs to.
        api_key: Secret key (excluded from `repr`).
        required: False for keyless providers such as a local server.
    """

    provider: str
    api_key: str | None = field(default=None, repr=False)
    required: bool = True

    @property
    def is_present(self) -> bool:
        return bool(self.api_key) or not self.required


def load_key(path):
    """Load API key from environment override or key file.

    Resolution order:
        1. Environment variable inferred from file stem (for example
           `config/gemini.key` -> `GEMINI_API_KEY`).
        2. Generic `GENTASK_API_KEY`.
        3. Raw file contents at `path`.

    Args:
        path: Configured key file path or `None`.

    Returns:
        Key string or `None` when not available.

    Edge cases:
        - `None` path returns `None`.
        - Missing or empty file returns `None`.
    """
    if not path:
        return None
    key_name = os.path.splitext(os.path.basename(path))[0].upper() + "_API_KEY"
    env_value = os.getenv(key_name) or os.getenv(GENERIC_KEY_ENV)
    if env_value:
        return env_value.strip()
    if not os.path.exists(path):
        return None
    with open(path, "r") as f:
        return f.read().strip() or None


def get_provider_config(provider=None) -> dict:
    """Return the endpoint entry for `provider` (default: active provider)."""
    name = provider or PROVIDER
    config = PROVIDERS.get(name)
    if config is None:
        raise ValueError(f"Unknown provider: {name}")
    return config


def load_credentials(provider=None) -> Credentials:
    """Resolve credentials for `provider` once, at service construction."""
    name = provider or PROVIDER
    config = get_provider_config(name)
    key_file = config.get("key_file")
    if key_file is None:
        return Credentials(provider=name, api_key=None, required=False)
    return Credentials(provider=name, api_key=load_key(key_file))
