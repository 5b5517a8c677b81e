"""Placeholder resolution for catalog-declared env values and volume strings.

A placeholder is ``{{TOKEN}}``. Tokens are matched against ``RULES`` in order;
the first matching rule produces the replacement. Tokens no rule knows about
are left in place as literal ``{{TOKEN}}`` text.
"""
import re
from typing import Callable, Dict, List, Optional, Tuple

from hostfy.state.models import SystemSecrets, database_name
from hostfy.state.secrets import generate_password, generate_secret

PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")

POSTGRES_USER = "hostfy"

DEFAULT_SERVICE_HOSTS = {
    "postgres": "hostfy_postgres",
    "redis": "hostfy_redis",
}

SECRET_MARKERS = ("GENERATE_SECRET", "SYSTEM_GENERATE")
SECRET_LENGTHS = {"16": 16, "32": 32, "64": 64}

# (matcher, resolver); a resolver returning None means "no match, try the next rule"
Rule = Tuple[Callable[[str], bool], Callable[["TemplateContext", str], Optional[str]]]


def _exact(token: str) -> Callable[[str], bool]:
    return lambda key: key == token


def _prefix(prefix: str) -> Callable[[str], bool]:
    return lambda key: key.startswith(prefix)


def _service_host(ctx: "TemplateContext", key: str) -> Optional[str]:
    if not key.endswith("_HOST"):
        return None
    service = key[len("SERVICE_"):-len("_HOST")]
    return ctx.service_hosts.get(service)


def _postgres_password(ctx: "TemplateContext", key: str) -> str:
    if ctx.secrets is None:
        return ""
    return ctx.secrets.postgres_password


def _generated_secret(ctx: "TemplateContext", key: str) -> str:
    suffix = key[len("GENERATE_SECRET_"):]
    return generate_secret(SECRET_LENGTHS.get(suffix, 16))


RULES: Tuple[Rule, ...] = (
    (_exact("APP_NAME"), lambda ctx, key: ctx.app_name),
    (_exact("APP_DOMAIN"), lambda ctx, key: ctx.app_domain),
    (_exact("APP_DATABASE"), lambda ctx, key: ctx.app_database),
    (_exact("SERVICE_postgres_USER"), lambda ctx, key: POSTGRES_USER),
    (_exact("SERVICE_postgres_PASSWORD"), _postgres_password),
    (_prefix("SERVICE_"), _service_host),
    (_exact("SYSTEM_GENERATE"), lambda ctx, key: generate_password(24)),
    (_prefix("GENERATE_SECRET_"), _generated_secret),
)


def resolve_references(value: str, env: Dict[str, str]) -> str:
    """Replace ``{{KEY}}`` with ``env[KEY]``; unknown keys stay literal."""

    def _replace(match):
        key = match.group(1)
        if key in env:
            return env[key]
        return match.group(0)

    return PLACEHOLDER.sub(_replace, value)


class TemplateContext:
    def __init__(
        self,
        app_name: str,
        app_domain: str,
        secrets: Optional[SystemSecrets] = None,
        service_hosts: Optional[Dict[str, str]] = None,
        preserved_secrets: Optional[Dict[str, str]] = None,
    ):
        self.app_name = app_name
        self.app_domain = app_domain
        self.app_database = database_name(app_name)
        self.secrets = secrets
        self.service_hosts = dict(service_hosts or DEFAULT_SERVICE_HOSTS)
        self.preserved_secrets: Dict[str, str] = dict(preserved_secrets or {})
        # Secrets generated during this resolution session, keyed by env key
        self.generated: Dict[str, str] = {}

    def set_preserved_secrets(self, secrets: Dict[str, str]):
        self.preserved_secrets = dict(secrets)

    def resolve_token(self, key: str) -> str:
        for matches, resolver in RULES:
            if not matches(key):
                continue
            value = resolver(self, key)
            if value is not None:
                return value
        return "{{" + key + "}}"

    def resolve_value(self, value: str) -> str:
        return PLACEHOLDER.sub(lambda m: self.resolve_token(m.group(1)), value)

    def resolve_value_for_key(self, key: str, value: str) -> str:
        """Resolve one env value; a key gets a single generated secret per session."""
        if not any(marker in value for marker in SECRET_MARKERS):
            return self.resolve_value(value)
        if key not in self.generated:
            self.generated[key] = self.resolve_value(value)
        return self.generated[key]

    def resolve_env(self, env: Dict[str, str]) -> Dict[str, str]:
        resolved: Dict[str, str] = {}
        for key, value in (env or {}).items():
            if key in self.preserved_secrets:
                resolved[key] = self.preserved_secrets[key]
            else:
                resolved[key] = self.resolve_value_for_key(key, value)

        for key, value in list(resolved.items()):
            resolved[key] = resolve_references(value, resolved)
        return resolved

    def resolve_volumes(self, volumes: List[str]) -> List[str]:
        return [self.resolve_value(volume) for volume in volumes or []]
