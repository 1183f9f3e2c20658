from __future__ import annotations

from typing import Sequence

from ..build_config import BuildSettings

# Applets Stage 1 needs from the static busybox
STAGE1_APPLETS = ("sh", "mount", "umount", "mkdir", "sleep", "modprobe", "losetup", "switch_root")

ROOT_IMAGE_NAME = "rootfs.squashfs"
MEDIA_MOUNT = "/media"
NEWROOT = "/newroot"
DEVICE_GLOBS = ("/dev/sr*", "/dev/vd*", "/dev/sd*")

STAGE1_TEMPLATE = """\
#!/bin/sh

# Verity stage 1 init (initramfs, generated by verity-build)

export PATH=/bin

halt_forever() {{
    echo "verity: FATAL: $*"
    while :; do sleep 3600; done
}}

mkdir -p /proc /sys /dev {media} {newroot}
mount -t proc proc /proc
mount -t sysfs sys /sys
mount -t devtmpfs dev /dev

for mod in {modules}; do
    modprobe "$mod" 2>/dev/null
done

found=""
attempt=0
while [ -z "$found" ] && [ "$attempt" -lt {attempts} ]; do
    attempt=$((attempt + 1))
    for dev in {device_globs}; do
        [ -e "$dev" ] || continue
        mount -o ro "$dev" {media} 2>/dev/null || continue
        if [ -f {media}/{image} ]; then
            found="$dev"
            break
        fi
        umount {media}
    done
    [ -n "$found" ] || [ "$attempt" -ge {attempts} ] || sleep {delay}
done

[ -n "$found" ] || halt_forever "no boot medium carrying {image} after $attempt scans"

echo "verity: root medium $found"
mount -t squashfs -o ro,loop {media}/{image} {newroot} || halt_forever "cannot mount {image}"
mount --move {media} {newroot}{media}
umount /proc /sys /dev

exec switch_root {newroot} /sbin/init
"""


def render_stage1_init(
    settings: BuildSettings,
    modules: Sequence[str],
    *,
    media: str = MEDIA_MOUNT,
    newroot: str = NEWROOT,
    device_globs: Sequence[str] = DEVICE_GLOBS,
) -> str:
    """Render the initramfs /init that discovers and switches to the root image."""

    return STAGE1_TEMPLATE.format(
        media=media,
        newroot=newroot,
        modules=" ".join(modules),
        attempts=settings.scan_attempts,
        delay=settings.scan_delay,
        device_globs=" ".join(device_globs),
        image=ROOT_IMAGE_NAME,
    )
