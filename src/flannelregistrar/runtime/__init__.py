"""Container runtime access."""

from flannelregistrar.runtime.container import (
    ContainerRuntime,
    DockerRuntime,
    get_container_runtime,
)

__all__ = ["ContainerRuntime", "DockerRuntime", "get_container_runtime"]
