"""
Harness configuration.

Settings come from three places, later ones winning:

  1. built-in defaults
  2. environment variables (analyzer location, license token, limits)
  3. explicit overrides from the CLI / MCP caller

The analyzer executable and its license token are never hardcoded so the
same harness runs unmodified against different analyzer installations.
"""

import logging
import os
import shlex
from typing import Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .rule_ids import Standard

logger = logging.getLogger(__name__)

ENV_ANALYZER = "CONFORMANCE_ANALYZER"
ENV_ANALYZER_ARGS = "CONFORMANCE_ANALYZER_ARGS"
ENV_LICENSE = "CONFORMANCE_LICENSE"
ENV_TIMEOUT = "CONFORMANCE_TIMEOUT"
ENV_TIMEOUT_FACTOR = "CONFORMANCE_TIMEOUT_FACTOR"
ENV_WORKERS = "CONFORMANCE_WORKERS"
ENV_OK_EXIT_CODES = "CONFORMANCE_OK_EXIT_CODES"
ENV_EXTRA_STANDARDS = "CONFORMANCE_EXTRA_STANDARDS"

DEFAULT_ANALYZER_ARGS = "--rule-pack {pack} --format json {unit}"
DEFAULT_TOLERANCE = 2


class HarnessConfig(BaseModel):
    """Everything a verification run needs besides the corpus itself."""

    model_config = ConfigDict(frozen=True)

    standard: Standard
    tolerance: int = Field(default=DEFAULT_TOLERANCE, ge=0)
    strict: bool = False
    workers: int = Field(default=4, ge=1)

    analyzer_path: Optional[str] = None
    analyzer_args: str = DEFAULT_ANALYZER_ARGS
    license_token: Optional[str] = None
    timeout: float = Field(default=60.0, gt=0)
    timeout_factor: float = Field(default=2.0, ge=1.0)
    ok_exit_codes: Tuple[int, ...] = (0, 1)
    extra_standards: Tuple[Standard, ...] = ()

    @field_validator("analyzer_args")
    @classmethod
    def _check_args_template(cls, value: str) -> str:
        if "{unit}" not in value:
            raise ValueError("analyzer argument template must contain '{unit}'")
        try:
            for part in shlex.split(value):
                part.format(unit="", pack="", standard="")
        except KeyError as e:
            raise ValueError(
                f"unknown placeholder {{{e.args[0]}}} in analyzer argument template; "
                "use {unit}, {pack} or {standard} (double literal braces)"
            )
        except (AttributeError, IndexError, ValueError) as e:
            raise ValueError(f"malformed analyzer argument template: {e}")
        return value

    @property
    def standards_to_run(self) -> List[Standard]:
        """The standard under test first, then extra packs, without repeats."""
        ordered = [self.standard]
        for std in self.extra_standards:
            if std not in ordered:
                ordered.append(std)
        return ordered

    def pack_for(self, standard: Standard) -> str:
        return standard.default_pack

    def command_for(self, unit_path: str, standard: Standard) -> List[str]:
        """Build the analyzer argv for one unit and one rule pack."""
        if not self.analyzer_path:
            raise ConfigurationError(
                f"No analyzer configured; set {ENV_ANALYZER}",
                hint=f"export {ENV_ANALYZER}=/path/to/analyzer or pass --analyzer-output",
            )
        values = {
            "unit": unit_path,
            "pack": self.pack_for(standard),
            "standard": standard.value,
        }
        return [self.analyzer_path] + [
            part.format(**values) for part in shlex.split(self.analyzer_args)
        ]

    def child_environment(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Environment for the analyzer subprocess (license token passed through)."""
        env = dict(os.environ if base is None else base)
        if self.license_token:
            env[ENV_LICENSE] = self.license_token
        return env

    @classmethod
    def from_env(
        cls,
        standard: Standard,
        environ: Optional[Mapping[str, str]] = None,
        **overrides,
    ) -> "HarnessConfig":
        """Build a config from ``environ`` (default: os.environ) plus overrides.

        Overrides whose value is None are ignored so CLI options left at their
        default do not mask the environment.
        """
        env = os.environ if environ is None else environ
        values: Dict[str, object] = {"standard": standard}

        if env.get(ENV_ANALYZER):
            values["analyzer_path"] = env[ENV_ANALYZER]
        if env.get(ENV_ANALYZER_ARGS):
            values["analyzer_args"] = env[ENV_ANALYZER_ARGS]
        if env.get(ENV_LICENSE):
            values["license_token"] = env[ENV_LICENSE]
        if env.get(ENV_TIMEOUT):
            values["timeout"] = env[ENV_TIMEOUT]
        if env.get(ENV_TIMEOUT_FACTOR):
            values["timeout_factor"] = env[ENV_TIMEOUT_FACTOR]
        if env.get(ENV_WORKERS):
            values["workers"] = env[ENV_WORKERS]
        if env.get(ENV_OK_EXIT_CODES):
            try:
                values["ok_exit_codes"] = tuple(
                    int(code) for code in env[ENV_OK_EXIT_CODES].split(",") if code.strip()
                )
            except ValueError:
                raise ConfigurationError(
                    f"{ENV_OK_EXIT_CODES} must be a comma-separated list of integers, "
                    f"got '{env[ENV_OK_EXIT_CODES]}'"
                )
        if env.get(ENV_EXTRA_STANDARDS):
            values["extra_standards"] = _parse_standards(env[ENV_EXTRA_STANDARDS])

        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            config = cls(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration: {problems}")

        logger.debug(
            "Config: standard=%s tolerance=%d strict=%s workers=%d timeout=%.1fs analyzer=%s",
            config.standard.value, config.tolerance, config.strict,
            config.workers, config.timeout, config.analyzer_path or "<none>",
        )
        return config


def _parse_standards(text: str) -> Tuple[Standard, ...]:
    try:
        return tuple(Standard.from_name(part) for part in text.split(",") if part.strip())
    except ValueError as e:
        raise ConfigurationError(str(e))
