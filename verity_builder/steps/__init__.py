from .step_10_acquire_base import AcquireBaseStep
from .step_20_install_packages import InstallPackagesStep
from .step_30_build_initramfs import BuildInitramfsStep
from .step_40_generate_init import GenerateInitStep
from .step_50_harden import HardenStep
from .step_60_package_image import PackageImageStep

__all__ = [
    "AcquireBaseStep",
    "InstallPackagesStep",
    "BuildInitramfsStep",
    "GenerateInitStep",
    "HardenStep",
    "PackageImageStep",
]
