import pytest

from hostfy.deploy.orchestrator import Deployer
from hostfy.errors import (
    AlreadyInstalled,
    ContainerOperationFailed,
    HealthTimeout,
    StateRecordNotFound,
)
from hostfy.state.models import AppConfig


@pytest.fixture
def deployer(ctx, databases):
    return Deployer(ctx)


def test_install_single_app_resolves_env_and_records_state(deployer, ctx, runtime, databases):
    result = deployer.install("n8n", "n8n.example.com")

    app = ctx.store.load_app("n8n")
    assert not app.is_stack
    assert app.catalog_app == "n8n"
    assert app.image == "n8nio/n8n:1.0"
    assert app.database == "n8n_db"
    assert databases == {"n8n_db"}
    assert app.env["DB_POSTGRESDB_HOST"] == "hostfy_postgres"
    assert app.env["DB_POSTGRESDB_DATABASE"] == "n8n_db"
    assert app.env["DB_POSTGRESDB_USER"] == "hostfy"
    assert app.env["DB_POSTGRESDB_PASSWORD"] == ctx.secrets.postgres_password
    assert len(app.env["N8N_ENCRYPTION_KEY"]) == 32
    assert app.env["WEBHOOK_URL"] == "https://n8n.example.com/"
    assert app.volumes == ["n8n_data:/home/node/.n8n"]
    assert app.container_id == runtime.containers["n8n"]["id"]

    assert runtime.container_running("n8n")
    labels = runtime.spec("n8n").labels
    assert labels["traefik.http.routers.n8n.rule"] == "Host(`n8n.example.com`)"
    assert labels["traefik.http.services.n8n.loadbalancer.server.port"] == "5678"
    assert labels["hostfy.managed"] == "true"
    assert result.domains == ["n8n.example.com"]
    assert result.database == "n8n_db"


def test_install_starts_dependencies_before_the_app(deployer, runtime):
    deployer.install("n8n", "n8n.example.com")

    assert runtime.network_created
    assert runtime.container_running("hostfy_postgres")
    assert runtime.spec("hostfy_postgres").image == "postgres:16-alpine"
    assert runtime.calls.index(("create_container", "hostfy_postgres")) < runtime.calls.index(
        ("create_container", "n8n")
    )


def test_install_rejects_an_existing_name(deployer):
    deployer.install("n8n", "n8n.example.com")

    with pytest.raises(AlreadyInstalled) as exc:
        deployer.install("n8n", "other.example.com")
    assert "--name" in exc.value.hint


def test_install_under_another_name(deployer, ctx, runtime, databases):
    deployer.install("n8n", "n8n.example.com")
    deployer.install("n8n", "n8n2.example.com", name="n8n-2")

    app = ctx.store.load_app("n8n-2")
    assert app.catalog_app == "n8n"
    assert app.database == "n8n_2_db"
    assert app.volumes == ["n8n-2_data:/home/node/.n8n"]
    assert databases == {"n8n_db", "n8n_2_db"}
    assert runtime.container_running("n8n-2")
    assert "traefik.http.routers.n8n_2.rule" in runtime.spec("n8n-2").labels


def test_install_user_env_defaults_and_overrides(deployer, ctx, runtime):
    result = deployer.install("minio", "s3.example.com", env_overrides={"MINIO_ROOT_USER": "root"})

    assert result.user_env["MINIO_ROOT_USER"] == "root"
    assert len(result.user_env["MINIO_ROOT_PASSWORD"]) == 24
    app = ctx.store.load_app("minio")
    assert app.env["MINIO_ROOT_USER"] == "root"
    assert app.database == ""
    assert runtime.spec("minio").command == "server /data --console-address :9001"
    assert runtime.spec("minio").env["MINIO_ROOT_PASSWORD"] == result.user_env["MINIO_ROOT_PASSWORD"]


def test_install_stack_shares_env_and_routes_only_members_with_a_port(deployer, ctx, runtime, databases):
    deployer.install("chatwoot", "chat.example.com")

    app = ctx.store.load_app("chatwoot")
    assert app.is_stack
    assert [m.name for m in app.containers] == ["web", "worker"]
    assert app.main_member().name == "web"
    assert app.database == "chatwoot_db"
    assert databases == {"chatwoot_db"}
    assert len(app.shared_env["SECRET_KEY_BASE"]) == 64
    assert app.shared_env["REDIS_URL"] == "redis://hostfy_redis:6379"
    assert runtime.container_running("hostfy_redis")

    web = runtime.spec("chatwoot-web")
    worker = runtime.spec("chatwoot-worker")
    assert web.labels["traefik.http.routers.chatwoot_web.rule"] == "Host(`chat.example.com`)"
    assert worker.labels == {"hostfy.managed": "true", "hostfy.app": "chatwoot"}
    assert worker.env["SECRET_KEY_BASE"] == web.env["SECRET_KEY_BASE"]
    assert worker.env["SIDEKIQ_CONCURRENCY"] == "5"
    assert worker.command == "bundle exec sidekiq"


def test_install_stack_without_main_flag_uses_first_member(deployer, ctx, runtime):
    result = deployer.install("evolution", "evo.example.com")

    app = ctx.store.load_app("evolution")
    members = {m.name: m for m in app.containers}
    assert members["app"].is_main
    assert members["app"].domain == "evo.example.com"
    assert members["api"].domain == "api.evo.example.com"
    assert app.shared_env["SERVER_URL"] == "https://api.evo.example.com"
    assert result.domains == ["evo.example.com", "api.evo.example.com"]
    assert runtime.spec("evolution-api").labels[
        "traefik.http.routers.evolution_api.rule"
    ] == "Host(`api.evo.example.com`)"


def test_remove_keeps_data_and_reinstall_reuses_secrets(deployer, ctx, runtime, databases):
    deployer.install("n8n", "n8n.example.com")
    key = ctx.store.load_app("n8n").env["N8N_ENCRYPTION_KEY"]

    report = deployer.remove("n8n")

    assert report.ok
    assert not ctx.store.app_exists("n8n")
    assert not runtime.container_exists("n8n")
    assert ctx.store.secrets_backup_exists("n8n")
    assert "n8n_db" in databases

    result = deployer.install("n8n", "n8n.example.com")
    assert result.reused_secrets
    assert ctx.store.load_app("n8n").env["N8N_ENCRYPTION_KEY"] == key


def test_backup_of_another_catalog_app_is_not_reused(deployer, ctx):
    ctx.store.backup_app_secrets(
        AppConfig(name="n8n", catalog_app="minio", env={"N8N_ENCRYPTION_KEY": "old"})
    )

    result = deployer.install("n8n", "n8n.example.com")

    assert not result.reused_secrets
    assert ctx.store.load_app("n8n").env["N8N_ENCRYPTION_KEY"] != "old"


def test_remove_purge_deletes_database_volumes_and_backup(deployer, ctx, runtime, databases):
    deployer.install("n8n", "n8n.example.com")
    runtime.volumes.add("minio_data")

    report = deployer.remove("n8n", purge=True)

    assert report.ok
    assert databases == set()
    assert runtime.volumes == {"minio_data"}
    assert not ctx.store.secrets_backup_exists("n8n")
    assert not ctx.store.app_exists("n8n")


def test_purge_leaves_volumes_of_apps_sharing_a_name_prefix(deployer, ctx, runtime, databases):
    deployer.install("n8n", "n8n.example.com")
    deployer.install("n8n", "staging.example.com", name="n8n_staging")
    assert runtime.volumes == {"n8n_data", "n8n_staging_data"}

    deployer.remove("n8n", purge=True)

    assert runtime.volumes == {"n8n_staging_data"}
    assert databases == {"n8n_staging_db"}
    assert ctx.store.app_exists("n8n_staging")


def test_purge_skips_bind_mounts(deployer, ctx, runtime):
    ctx.store.save_app(
        AppConfig(
            name="files",
            catalog_app="minio",
            volumes=["/srv/files:/data", "./conf:/conf", "files_cache:/cache"],
        )
    )

    report = deployer.remove("files", purge=True)

    assert report.ok
    assert ("remove_volumes", "files_cache") in runtime.calls


def test_reinstall_after_purge_generates_fresh_secrets(deployer, ctx, databases):
    deployer.install("n8n", "n8n.example.com")
    key = ctx.store.load_app("n8n").env["N8N_ENCRYPTION_KEY"]

    deployer.remove("n8n", purge=True)
    result = deployer.install("n8n", "n8n.example.com")

    assert not result.reused_secrets
    assert ctx.store.load_app("n8n").env["N8N_ENCRYPTION_KEY"] != key


def test_remove_continues_after_an_advisory_failure(deployer, ctx, runtime):
    deployer.install("n8n", "n8n.example.com")
    runtime.failures[("stop_container", "n8n")] = ContainerOperationFailed("boom")

    report = deployer.remove("n8n")

    assert report.warnings == ["stop n8n: boom"]
    assert not runtime.container_exists("n8n")
    assert not ctx.store.app_exists("n8n")


def test_remove_unknown_app(deployer):
    with pytest.raises(StateRecordNotFound):
        deployer.remove("ghost")


def test_update_without_changes_touches_nothing(deployer, runtime):
    deployer.install("n8n", "n8n.example.com")
    calls = list(runtime.calls)

    result = deployer.update("n8n", domain="n8n.example.com")

    assert result.nothing_to_update
    assert runtime.calls == calls


def test_update_domain_rewrites_env_and_recreates(deployer, ctx, runtime):
    deployer.install("n8n", "old.example.com")
    old_id = ctx.store.load_app("n8n").container_id

    result = deployer.update("n8n", domain="new.example.com")

    app = ctx.store.load_app("n8n")
    assert app.domain == "new.example.com"
    assert app.env["N8N_HOST"] == "new.example.com"
    assert app.env["WEBHOOK_URL"] == "https://new.example.com/"
    assert app.container_id != old_id
    assert runtime.container_running("n8n")
    assert runtime.spec("n8n").labels["traefik.http.routers.n8n.rule"] == "Host(`new.example.com`)"
    assert "domain: old.example.com -> new.example.com" in result.changes


def test_update_stack_domain_moves_member_routes(deployer, ctx, runtime):
    deployer.install("evolution", "evo.example.com")

    deployer.update("evolution", domain="msg.example.org")

    app = ctx.store.load_app("evolution")
    members = {m.name: m for m in app.containers}
    assert members["app"].domain == "msg.example.org"
    assert members["api"].domain == "api.msg.example.org"
    assert app.shared_env["API_DOMAIN"] == "api.msg.example.org"
    assert runtime.spec("evolution-api").env["SERVER_URL"] == "https://api.msg.example.org"


def test_update_env_override_reaches_every_stack_member(deployer, ctx, runtime):
    deployer.install("chatwoot", "chat.example.com")

    result = deployer.update(
        "chatwoot", env_overrides={"FRONTEND_URL": "https://support.example.com", "SIDEKIQ_CONCURRENCY": "10"}
    )

    app = ctx.store.load_app("chatwoot")
    assert app.shared_env["FRONTEND_URL"] == "https://support.example.com"
    assert runtime.spec("chatwoot-web").env["FRONTEND_URL"] == "https://support.example.com"
    assert runtime.spec("chatwoot-worker").env["SIDEKIQ_CONCURRENCY"] == "10"
    assert len(result.changes) == 2


def test_upgrade_without_new_images_is_a_no_op(deployer, runtime):
    deployer.install("chatwoot", "chat.example.com")
    pulled = list(runtime.pulled)

    result = deployer.upgrade("chatwoot")

    assert result.up_to_date
    assert runtime.pulled == pulled


def test_upgrade_recreates_only_changed_members(deployer, ctx, runtime, catalog_data):
    deployer.install("chatwoot", "chat.example.com")
    before = ctx.store.load_app("chatwoot")
    stack = catalog_data["apps"]["chatwoot"]
    stack["containers"][1]["image"] = "chatwoot/chatwoot:v3.1"
    stack["shared_env"]["NEW_TOKEN"] = "{{GENERATE_SECRET_16}}"
    stack["shared_env"]["FRONTEND_URL"] = "https://changed.example.com"

    result = deployer.upgrade("chatwoot")

    assert result.upgraded == ["worker"]
    assert result.added_env == ["NEW_TOKEN"]
    assert runtime.pulled.count("chatwoot/chatwoot:v3.1") == 1
    assert len(runtime.created("chatwoot-web")) == 1
    assert len(runtime.created("chatwoot-worker")) == 2
    assert not [call for call in runtime.calls if call[0] == "wait_healthy"]

    app = ctx.store.load_app("chatwoot")
    assert {m.name: m.image for m in app.containers} == {
        "web": "chatwoot/chatwoot:v3.0",
        "worker": "chatwoot/chatwoot:v3.1",
    }
    assert len(app.shared_env["NEW_TOKEN"]) == 16
    assert app.shared_env["FRONTEND_URL"] == "https://chat.example.com"
    assert app.shared_env["SECRET_KEY_BASE"] == before.shared_env["SECRET_KEY_BASE"]
    assert runtime.spec("chatwoot-worker").image == "chatwoot/chatwoot:v3.1"


def test_upgrade_single_app(deployer, ctx, runtime, catalog_data):
    deployer.install("minio", "s3.example.com")
    catalog_data["apps"]["minio"]["image"] = "minio/minio:2025"

    result = deployer.upgrade("minio")

    assert result.upgraded == ["minio"]
    assert ctx.store.load_app("minio").image == "minio/minio:2025"
    assert runtime.spec("minio").image == "minio/minio:2025"


def test_upgrade_health_timeout_keeps_the_new_image_recorded(deployer, ctx, runtime, catalog_data):
    deployer.install("minio", "s3.example.com")
    catalog_data["apps"]["minio"]["image"] = "minio/minio:2025"
    runtime.failures[("wait_healthy", "minio")] = HealthTimeout("minio did not become healthy")

    with pytest.raises(HealthTimeout):
        deployer.upgrade("minio")

    assert ctx.store.load_app("minio").image == "minio/minio:2025"


def test_upgrade_force_recreates_every_member(deployer, runtime):
    deployer.install("chatwoot", "chat.example.com")
    runtime.calls.clear()

    result = deployer.upgrade("chatwoot", force=True)

    assert result.upgraded == ["web", "worker"]
    assert len(runtime.created("chatwoot-web")) == 1
    lifecycle = [call for call in runtime.calls if call[0] in ("start_container", "wait_healthy")]
    assert lifecycle == [
        ("start_container", "chatwoot-web"),
        ("wait_healthy", "chatwoot-web"),
        ("start_container", "chatwoot-worker"),
    ]


def test_stop_runs_in_reverse_member_order(deployer, runtime):
    deployer.install("chatwoot", "chat.example.com")

    deployer.stop("chatwoot")

    stops = [name for op, name in runtime.calls if op == "stop_container"]
    assert stops == ["chatwoot-worker", "chatwoot-web"]
    assert not runtime.container_running("chatwoot-web")

    deployer.start("chatwoot")
    assert runtime.container_running("chatwoot-worker")


def test_logs_selects_stack_member(deployer):
    deployer.install("evolution", "evo.example.com")

    assert list(deployer.logs("evolution")) == ["logs of evolution-app\n"]
    assert list(deployer.logs("evolution", container="api")) == ["logs of evolution-api\n"]
    with pytest.raises(ContainerOperationFailed) as exc:
        deployer.logs("evolution", container="db")
    assert "app, api" in exc.value.hint


def test_start_all_reports_failures_and_keeps_going(deployer, runtime):
    deployer.install("n8n", "n8n.example.com")
    deployer.install("minio", "s3.example.com")
    deployer.stop("n8n")
    deployer.stop("minio")
    runtime.failures[("start_container", "minio")] = ContainerOperationFailed("no space left")

    report = deployer.start_all()

    assert report.warnings == ["start minio: no space left"]
    assert runtime.container_running("hostfy_traefik")
    assert runtime.container_running("n8n")
    assert not runtime.container_exists("hostfy_redis")


def test_restart_all_restarts_existing_infrastructure_and_apps(deployer, runtime):
    deployer.install("n8n", "n8n.example.com")
    runtime.calls.clear()

    report = deployer.restart_all()

    assert report.ok
    restarted = [name for op, name in runtime.calls if op == "restart_container"]
    assert restarted == ["hostfy_postgres", "n8n"]


def test_status_reports_apps_and_services(deployer, runtime):
    deployer.install("chatwoot", "chat.example.com")
    runtime.stop_container("chatwoot-worker")

    status = deployer.status()

    assert status["services"] == {"traefik": False, "postgres": True, "redis": True}
    [app] = status["apps"]
    assert app["name"] == "chatwoot"
    assert app["status"] == "partial"
    assert app["database"] == "chatwoot_db"


def test_describe_secrets(deployer, ctx):
    deployer.install("n8n", "n8n.example.com")

    info = deployer.describe_secrets("n8n")

    assert info["database"]["name"] == "n8n_db"
    assert info["database"]["password"] == ctx.secrets.postgres_password
    assert "N8N_ENCRYPTION_KEY" in info["env"]
    assert "N8N_HOST" not in info["env"]


def test_initialize_prepares_host(deployer, ctx, runtime):
    cfg = deployer.initialize("https://catalog.example.com/catalog.json")

    assert cfg.catalog_url == "https://catalog.example.com/catalog.json"
    assert ctx.store.load_config().catalog_url == cfg.catalog_url
    assert ctx.store.load_secrets().postgres_password
    assert runtime.network_created
    assert runtime.container_running("hostfy_traefik")
