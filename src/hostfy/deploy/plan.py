"""Single-container apps and stacks seen through one shape.

Both catalog shapes become an ``AppShape`` holding one or more ``MemberPlan``
entries, so install/update/upgrade run one algorithm over a list of members.
Installed records get the same treatment through ``installed_members``.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from hostfy.catalog.models import App, UserEnvVar
from hostfy.state.models import AppConfig, ContainerConfig, member_runtime_name


@dataclass
class MemberPlan:
    name: str
    runtime_name: str
    image: str
    port: int = 0
    command: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    volumes: List[str] = field(default_factory=list)
    # Routing template for non-main members, may reference shared env keys
    subdomain: str = ""
    is_main: bool = False
    user_env: List[UserEnvVar] = field(default_factory=list)


@dataclass
class AppShape:
    stack_name: str
    members: List[MemberPlan]
    # Env resolved once and handed to every member
    shared_env: Dict[str, str] = field(default_factory=dict)
    user_env: List[UserEnvVar] = field(default_factory=list)

    is_stack = False


@dataclass
class SingleShape(AppShape):
    is_stack = False


@dataclass
class StackShape(AppShape):
    is_stack = True


def plan_for(app: App, stack_name: str) -> AppShape:
    if not app.is_stack():
        member = MemberPlan(
            name=stack_name,
            runtime_name=stack_name,
            image=app.image or "",
            port=app.port,
            command=app.command,
            volumes=list(app.volumes),
            is_main=True,
        )
        return SingleShape(
            stack_name=stack_name,
            members=[member],
            shared_env=dict(app.env),
            user_env=list(app.user_env),
        )

    main = app.main_container()
    members = [
        MemberPlan(
            name=container.name,
            runtime_name=member_runtime_name(stack_name, container.name),
            image=container.image,
            port=container.port,
            command=container.command,
            env=dict(container.env),
            volumes=list(container.volumes),
            subdomain=container.subdomain_template(),
            is_main=container is main,
            user_env=list(container.user_env),
        )
        for container in app.containers
    ]
    return StackShape(
        stack_name=stack_name,
        members=members,
        shared_env=dict(app.shared_env),
        user_env=list(app.user_env),
    )


def installed_members(app: AppConfig) -> List[ContainerConfig]:
    """Members of an installed app; a single-container app yields one member.

    For single-container apps the returned member is a copy; use
    ``store_member`` to write changes back to the record.
    """
    if app.is_stack:
        return app.containers
    return [
        ContainerConfig(
            name=app.name,
            container_id=app.container_id,
            image=app.image,
            domain=app.domain,
            port=app.port,
            command=app.command,
            env=app.env,
            volumes=app.volumes,
            is_main=True,
        )
    ]


def store_member(app: AppConfig, member: ContainerConfig):
    if app.is_stack:
        return
    app.container_id = member.container_id
    app.image = member.image
    app.env = member.env


def runtime_name(app: AppConfig, member: ContainerConfig) -> str:
    if app.is_stack:
        return member_runtime_name(app.name, member.name)
    return app.name


def runtime_env(app: AppConfig, member: ContainerConfig) -> Dict[str, str]:
    """Environment a member runs with: shared env overlaid by its own env."""
    if not app.is_stack:
        return dict(member.env)
    env = dict(app.shared_env)
    env.update(member.env)
    return env
