from .sequencer import BootSequencer, BootStage, DiscoveryState, Stage1Discovery, Stage2Executor

__all__ = ["BootSequencer", "BootStage", "DiscoveryState", "Stage1Discovery", "Stage2Executor"]
