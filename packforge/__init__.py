"""packforge: build runnable container images from app source with buildpacks.

A build runs six isolated lifecycle phases (detect, restore, analyze,
build, export, cache) against one ephemeral workspace volume, reusing
layers from the previous image through its metadata label.
"""

__version__ = "0.1.0"
__description__ = "Buildpack build orchestration engine"

from packforge.core.build_factory import BuildConfig, BuildFactory, build
from packforge.core.lifecycle import Lifecycle

__all__ = ["BuildConfig", "BuildFactory", "Lifecycle", "build", "__version__"]
