from .components import build_init_script
from .fragments import Fragment, FragmentKind, InitScript, Policy, ServiceUnit, Step
from .stage1 import render_stage1_init

__all__ = [
    "Fragment",
    "FragmentKind",
    "InitScript",
    "Policy",
    "ServiceUnit",
    "Step",
    "build_init_script",
    "render_stage1_init",
]
