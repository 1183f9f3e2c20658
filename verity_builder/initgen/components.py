"""Fragment templates for /sbin/init, one per component."""
from __future__ import annotations

import logging
from typing import Callable, Dict

from ..build_config import BuildSettings
from ..features import COMPONENTS, ComponentManifest
from .fragments import Fragment, FragmentKind, InitScript, Policy, ServiceUnit, Step

logger = logging.getLogger(__name__)

OPEN = Policy.FAIL_OPEN
CLOSED = Policy.FAIL_CLOSED

TERMINAL_ORDER = len(COMPONENTS) + 1
SEED_PATH = "/opt/app/seed.sql"
PGDATA = "/tmp/pgdata"


def base_fragment(settings: BuildSettings) -> Fragment:
    return Fragment(
        name="base",
        kind=FragmentKind.BASE,
        items=(
            Step(
                "mount essential filesystems",
                "mountpoint -q /proc || mount -t proc proc /proc\n"
                "mountpoint -q /sys || mount -t sysfs sys /sys\n"
                "mountpoint -q /dev || mount -t devtmpfs dev /dev",
            ),
            Step(
                "mount writable tmpfs areas",
                "mount -t tmpfs -o mode=1777,nosuid,nodev tmpfs /tmp &&\n"
                "mount -t tmpfs -o mode=0755,nosuid,nodev tmpfs /var/log &&\n"
                "mount -t tmpfs -o mode=0755,nosuid,nodev tmpfs /run &&\n"
                "mkdir -p /var/log/nginx /run/nginx &&\n"
                "chown nginx:nginx /var/log/nginx /run/nginx",
            ),
            Step("remount root read-only", "mount -o remount,ro /"),
            Step("bring up loopback", "ip link set lo up", OPEN),
            Step("bring up eth0", "ip link set eth0 up 2>/dev/null", OPEN),
            Step("dhcp on eth0", "udhcpc -i eth0 -s /usr/share/udhcpc/default.script -b -q 2>/dev/null", OPEN),
            Step("apply sysctl hardening", "sysctl -p /etc/sysctl.conf >/dev/null 2>&1", OPEN),
        ),
    )


def discovery_fragment(settings: BuildSettings) -> Fragment:
    return Fragment(
        name="discovery",
        kind=FragmentKind.OPTIONAL,
        items=(
            ServiceUnit(
                name="avahi",
                order=1,
                start_command="avahi-daemon --no-chroot 2>/dev/null",
                backgrounded=True,
                best_effort=True,
            ),
        ),
    )


def runtime_fragment(settings: BuildSettings) -> Fragment:
    return Fragment(
        name="runtime",
        kind=FragmentKind.OPTIONAL,
        items=(
            ServiceUnit(
                name="node api",
                order=2,
                start_command="node /opt/app/server.js",
                backgrounded=True,
                best_effort=True,
            ),
        ),
    )


POSTGRESQL_CONF = """\
listen_addresses = '127.0.0.1'
port = 5432
max_connections = 20
shared_buffers = 32MB
unix_socket_directories = '/run/postgresql'
logging_collector = off
log_destination = 'stderr'
"""

PG_HBA_CONF = """\
local   all   all                 trust
host    all   all   127.0.0.1/32  trust
"""


def _as_postgres(cmd: str) -> str:
    return f'su -s /bin/sh postgres -c "{cmd}"'


def database_fragment(settings: BuildSettings) -> Fragment:
    attempts = settings.db_ready_attempts
    return Fragment(
        name="database",
        kind=FragmentKind.OPTIONAL,
        items=(
            Step(
                "provision scratch postgres data dir",
                "adduser -D -H -s /sbin/nologin postgres 2>/dev/null || true\n"
                f"mkdir -p {PGDATA} /run/postgresql &&\n"
                f"chown postgres:postgres {PGDATA} /run/postgresql",
                OPEN,
            ),
            Step(
                "initdb",
                _as_postgres(f"initdb -D {PGDATA} --no-locale --auth=trust") + " >/dev/null 2>&1",
                OPEN,
            ),
            Step(
                "write postgresql.conf",
                f"cat > {PGDATA}/postgresql.conf <<'PGCONF'\n{POSTGRESQL_CONF}PGCONF",
                OPEN,
            ),
            Step(
                "write pg_hba.conf",
                f"cat > {PGDATA}/pg_hba.conf <<'PGHBA'\n{PG_HBA_CONF}PGHBA",
                OPEN,
            ),
            ServiceUnit(
                name="postgresql",
                order=3,
                start_command=_as_postgres(f"pg_ctl start -D {PGDATA} -l /var/log/postgresql.log") + " 2>/dev/null",
                backgrounded=True,
                best_effort=True,
            ),
            Step(
                "wait for postgresql",
                "tries=0\n"
                f"until {_as_postgres('pg_isready -h 127.0.0.1')} >/dev/null 2>&1; do\n"
                "    tries=$((tries + 1))\n"
                f"    [ \"$tries\" -ge {attempts} ] && break\n"
                "    sleep 1\n"
                "done\n"
                f"[ \"$tries\" -lt {attempts} ]",
                OPEN,
            ),
            Step("create database", _as_postgres("createdb verity") + " 2>/dev/null", OPEN),
            Step(
                "load seed data",
                f"if [ -f {SEED_PATH} ]; then\n"
                f"    {_as_postgres(f'psql -h 127.0.0.1 -d verity -f {SEED_PATH}')} >/dev/null 2>&1\n"
                "fi",
                OPEN,
            ),
        ),
    )


def terminal_fragment(settings: BuildSettings) -> Fragment:
    return Fragment(
        name="terminal",
        kind=FragmentKind.TERMINAL,
        items=(
            ServiceUnit(
                name="nginx",
                order=TERMINAL_ORDER,
                start_command="nginx -g 'daemon off;'",
                backgrounded=False,
                best_effort=False,
                terminal=True,
            ),
        ),
    )


FRAGMENT_BUILDERS: Dict[str, Callable[[BuildSettings], Fragment]] = {
    "discovery": discovery_fragment,
    "runtime": runtime_fragment,
    "database": database_fragment,
}


def build_init_script(manifest: ComponentManifest, settings: BuildSettings) -> InitScript:
    """Compose base + enabled component fragments (manifest order) + terminal."""

    fragments = [base_fragment(settings)]
    for comp in manifest.components:
        if comp.init_fragment is None:
            continue
        fragments.append(FRAGMENT_BUILDERS[comp.init_fragment](settings))
    fragments.append(terminal_fragment(settings))

    script = InitScript(fragments=tuple(fragments))
    logger.info("Init script fragments: %s", " -> ".join(script.fragment_names))
    return script
