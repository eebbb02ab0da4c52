import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

load_dotenv()

_PLACEHOLDER = re.compile(r'^\$\{([A-Za-z_][A-Za-z0-9_]*)(?::(.*))?\}$')
_DEFAULT_PATH = Path(__file__).parent / 'config.yaml'


def expand_env(node: Any) -> Any:
    """Replace ``${VAR}`` and ``${VAR:default}`` scalars with environment values.

    An unset (or empty) variable without a default becomes ``None`` so that
    optional settings read as absent rather than as the literal placeholder.
    """
    if isinstance(node, dict):
        return {key: expand_env(value) for key, value in node.items()}
    if isinstance(node, list):
        return [expand_env(item) for item in node]
    if not isinstance(node, str):
        return node
    match = _PLACEHOLDER.match(node.strip())
    if not match:
        return node
    env_key, default = match.groups()
    value = os.getenv(env_key)
    if value:
        return value
    return default or None


class SectionProxy(Mapping):
    """Read-only mapping over one config section; nested dicts come back as proxies."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data = data or {}

    @staticmethod
    def _wrap(value: Any) -> Any:
        return SectionProxy(value) if isinstance(value, dict) else value

    def __getitem__(self, key: str) -> Any:
        return self._wrap(self._data[key])

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        if name not in self._data:
            raise AttributeError(f"Config key '{name}' not found")
        return self._wrap(self._data[name])

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._data.get(key)
        return self._wrap(default if value is None else value)

    def to_dict(self) -> Dict[str, Any]:
        return self._data


class Config(SectionProxy):
    """Relay settings from YAML, with environment placeholders resolved at load time."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path or os.getenv('RELAY_CONFIG_PATH') or _DEFAULT_PATH)
        super().__init__(self._load_config())

    def _load_config(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            raise RuntimeError(f"Configuration file not found at {self.config_path}")
        try:
            raw = yaml.safe_load(self.config_path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise RuntimeError(f"Error parsing YAML configuration: {exc}") from exc
        return expand_env(raw)

    def reload(self) -> None:
        self._data = self._load_config()


config = Config()
