import os

DEFAULT_CATALOG_URL = "https://raw.githubusercontent.com/hostfy/catalog/main/catalog.json"


class Config:
    hostfy_dir = os.getenv("HOSTFY_DIR", "/etc/hostfy")
    catalog_url = os.getenv("HOSTFY_CATALOG_URL", DEFAULT_CATALOG_URL)
    catalog_timeout = int(os.getenv("HOSTFY_CATALOG_TIMEOUT", "15"))
    catalog_ttl_seconds = int(os.getenv("HOSTFY_CATALOG_TTL", "3600"))
    network_name = os.getenv("HOSTFY_NETWORK", "hostfy_network")

    # Shared database engine, as reached from the host running the CLI
    postgres_host = os.getenv("HOSTFY_POSTGRES_HOST", "127.0.0.1")
    postgres_port = int(os.getenv("HOSTFY_POSTGRES_PORT", "5432"))

    health_timeout = int(os.getenv("HOSTFY_HEALTH_TIMEOUT", "60"))
    # Default CLI log level; --verbose and --quiet take precedence
    log_level = os.getenv("HOSTFY_LOG_LEVEL", "INFO").upper()


config = Config()
