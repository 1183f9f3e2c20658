"""Verity image builder.

Builds a minimal, immutable, single-purpose Alpine Linux ISO:
- Feature flags resolved into a fixed component manifest
- Verified base rootfs, packages installed in a scoped chroot
- Generated two-stage boot sequencer (initramfs /init + /sbin/init)
- Hardened, read-only squashfs root packaged into a bootable ISO
"""

__all__ = []
