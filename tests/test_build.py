import json
from pathlib import Path

import pytest
import yaml

from verity_builder import build as build_mod
from verity_builder.build import main, run_build
from verity_builder.errors import CommandError, ConfigError
from verity_builder.lib import bootloader, download

from .conftest import make_base_rootfs, sha256_bytes
from .test_download import ARCHIVE, FakeMirror
from .test_initramfs import fake_cpio
from .test_package_image import ISO_BYTES, write_output


@pytest.fixture
def project(tmp_path, monkeypatch, fake_cmd):
    """A project dir with config, app sources and a host that passes preflight."""

    proj = tmp_path / "project"
    (proj / "app").mkdir(parents=True)
    (proj / "app/server.js").write_text("require('http')", encoding="utf-8")
    (proj / "app/package.json").write_text("{}", encoding="utf-8")
    (proj / "www").mkdir()
    (proj / "www/index.html").write_text("<h1>verity</h1>", encoding="utf-8")

    monkeypatch.setattr(build_mod, "check_host", lambda: None)

    syslinux = tmp_path / "syslinux"
    syslinux.mkdir()
    (syslinux / "isolinux.bin").write_bytes(b"isolinux")
    monkeypatch.setattr(bootloader, "ISOLINUX_BIN_CANDIDATES", (str(syslinux / "isolinux.bin"),))
    monkeypatch.setattr(bootloader, "LDLINUX_CANDIDATES", ())

    fake_cmd.hooks.append(("tar xzf", lambda argv, cwd: make_base_rootfs(Path(argv[-1]))))
    fake_cmd.hooks.append(("cpio", fake_cpio))
    fake_cmd.hooks.append(("mksquashfs", write_output(None, b"hsqs")))
    fake_cmd.hooks.append(("xorriso", write_output("-o", ISO_BYTES)))
    return proj


def write_config(proj, tmp_path, flags, **build):
    cfg = dict(flags)
    cfg["build"] = {"work_dir": str(tmp_path / "work"), "alpine_release": "3.21.3", **build}
    path = proj / "verity.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return path


@pytest.fixture
def mirror(monkeypatch):
    name = "alpine-minirootfs-3.21.3-x86_64.tar.gz"
    m = FakeMirror(
        {
            f"{name}.sha256": f"{sha256_bytes(ARCHIVE)}  {name}\n".encode("utf-8"),
            name: ARCHIVE,
        }
    )
    monkeypatch.setattr(download.requests, "get", m)
    return m


def test_full_build(project, tmp_path, fake_cmd, mirror):
    config = write_config(project, tmp_path, {"runtime": True, "database": True})

    state = run_build(config_path=str(config), project_dir=str(project))

    assert state["execution"]["completed_steps"] == [
        "10_acquire_base",
        "20_install_packages",
        "30_build_initramfs",
        "40_generate_init",
        "50_harden",
        "60_package_image",
    ]
    iso = project / "build/verity.iso"
    assert iso.read_bytes() == ISO_BYTES
    assert state["artifact"]["boot"]["memory_mb"] == 1024

    rootfs = tmp_path / "work/rootfs"
    init = (rootfs / "sbin/init").read_text(encoding="utf-8")
    assert init.index("# --- fragment: runtime ---") < init.index("# --- fragment: database ---")
    assert (rootfs / "opt/app/server.js").exists()
    assert (rootfs / "var/www/html/index.html").exists()
    assert not (rootfs / "sbin/apk").exists()
    assert not (rootfs / "lib/modules").exists()
    assert "proxy_pass" in (rootfs / "etc/nginx/nginx.conf").read_text(encoding="utf-8")

    chrooted = fake_cmd.chroot_commands()
    assert chrooted[0] == ["apk", "update"]
    assert chrooted[1][:3] == ["apk", "add", "--no-cache"]
    assert "postgresql" in chrooted[1] and "nodejs" in chrooted[1]
    assert state["packages"]["mounts_released"] == [
        str(rootfs / "dev"),
        str(rootfs / "sys"),
        str(rootfs / "proc"),
    ]

    saved = json.loads((tmp_path / "work/build_state.json").read_text(encoding="utf-8"))
    assert saved["manifest"] == ["runtime", "database"]
    assert saved["execution"]["errors"] == []

    # the build log sits next to the record, every line tagged with its step
    log = tmp_path / "work/verity-build.log"
    assert saved["log_path"] == str(log)
    lines = log.read_text(encoding="utf-8").splitlines()
    assert any("[20_install_packages]" in ln and "Chroot mounts established" in ln for ln in lines)
    assert any("[60_package_image]" in ln and "Artifact " in ln for ln in lines)


@pytest.mark.parametrize(
    "flags, build, message",
    [
        ({"database": True}, {}, "requires 'runtime'"),
        ({}, {"scan_attempts": "ten"}, "build.scan_attempts must be a positive integer"),
        ({}, {"scan_attempts": 0}, "build.scan_attempts must be a positive integer"),
    ],
)
def test_invalid_config_fails_before_side_effects(project, tmp_path, fake_cmd, mirror, monkeypatch, flags, build, message):
    config = write_config(project, tmp_path, flags, **build)
    monkeypatch.chdir(tmp_path)

    with pytest.raises(ConfigError, match=message):
        run_build(config_path=str(config), project_dir=str(project))

    assert mirror.requested == []
    assert fake_cmd.calls == []
    assert not (tmp_path / "work").exists()
    assert not (tmp_path / "build").exists()


def test_install_failure_records_error_and_releases_mounts(project, tmp_path, fake_cmd, mirror):
    config = write_config(project, tmp_path, {})
    fake_cmd.fail_on.append("apk add")

    with pytest.raises(CommandError):
        run_build(config_path=str(config), log_path=str(tmp_path / "build.log"), project_dir=str(project))

    umounts = [c[-1] for c in fake_cmd.commands("umount")]
    rootfs = tmp_path / "work/rootfs"
    assert umounts == [str(rootfs / "dev"), str(rootfs / "sys"), str(rootfs / "proc")]
    saved = json.loads((tmp_path / "work/build_state.json").read_text(encoding="utf-8"))
    assert saved["execution"]["completed_steps"] == ["10_acquire_base"]
    assert saved["execution"]["errors"][0]["step"] == "20_install_packages"
    assert saved["execution"]["errors"][0]["type"] == "CommandError"
    assert not (project / "build/verity.iso").exists()


def test_missing_app_sources_is_a_packaging_error(project, tmp_path, fake_cmd, mirror):
    (project / "app/server.js").unlink()
    config = write_config(project, tmp_path, {"runtime": True})

    assert main(["-v", "--config", str(config), "--project-dir", str(project), "build", "--log", str(tmp_path / "b.log")]) == 1
    assert fake_cmd.chroot_commands() == []


def test_main_config_error_exit_code(tmp_path, capsys):
    config = tmp_path / "verity.json"
    config.write_text(json.dumps({"database": True, "runtime": False}), encoding="utf-8")
    assert main(["--config", str(config), "plan"]) == 2
    assert "requires 'runtime'" in capsys.readouterr().err


def test_plan_output(tmp_path, capsys):
    config = tmp_path / "verity.conf"
    config.write_text("ENABLE_MDNS=yes\nENABLE_NODE=yes\nENABLE_POSTGRES=no\n", encoding="utf-8")
    assert main(["--config", str(config), "plan"]) == 0
    out = capsys.readouterr().out
    assert "components: discovery, runtime" in out
    assert "init fragments: base -> discovery -> runtime -> terminal" in out
    assert "boot memory: 512 MiB" in out


def test_render_init_stages(tmp_path, capsys):
    config = tmp_path / "missing.yaml"
    assert main(["--config", str(config), "render-init", "--stage", "1"]) == 0
    stage1 = capsys.readouterr().out
    assert "exec switch_root /newroot /sbin/init" in stage1
    assert main(["--config", str(config), "render-init"]) == 0
    stage2 = capsys.readouterr().out
    assert "exec nginx -g 'daemon off;'\nverity_halt \"nginx failed to start\"" in stage2


def test_render_init_rejects_unusable_scan_settings(tmp_path, capsys):
    config = tmp_path / "verity.yaml"
    config.write_text("build:\n  scan_attempts: ten\n", encoding="utf-8")
    assert main(["--config", str(config), "render-init", "--stage", "1"]) == 2
    assert "build.scan_attempts must be a positive integer" in capsys.readouterr().err
