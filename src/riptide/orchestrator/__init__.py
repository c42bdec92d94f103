from riptide.orchestrator.pipeline import GenerateResult, GeneratorConfig, check, generate, render
from riptide.orchestrator.sink import FilesystemSink, MemorySink

__all__ = [
    "FilesystemSink",
    "GenerateResult",
    "GeneratorConfig",
    "MemorySink",
    "check",
    "generate",
    "render",
]
