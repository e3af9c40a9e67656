"""packforge data models — Pydantic v2, frozen."""

from packforge.models.build import BuildFlags, BuildSpec, LifecycleConfig
from packforge.models.descriptors import (
    BuildpackDescriptor,
    BuildpackRef,
    GroupDescriptor,
    LayerDescriptor,
    OrderDescriptor,
    OrderGroup,
)
from packforge.models.images import ContainerSpec, ImageInfo
from packforge.models.metadata import (
    BUILDER_METADATA_LABEL,
    METADATA_LABEL,
    RUN_IMAGE_LABEL,
    STACK_LABEL,
    AppImageMetadata,
    BuilderImageMetadata,
    BuilderRunImage,
    BuildpackMetadata,
    DigestMetadata,
    LayerMetadata,
    RunImageMetadata,
)
from packforge.models.phases import (
    DETECT_NO_GROUP_EXIT_CODE,
    PHASE_ORDER,
    VALID_LAYER_TRANSITIONS,
    AccessMode,
    DaemonAccess,
    LayerState,
    NoAccess,
    PhaseName,
    RegistryAccess,
)

__all__ = [
    # build
    "BuildFlags",
    "BuildSpec",
    "LifecycleConfig",
    # descriptors
    "BuildpackDescriptor",
    "BuildpackRef",
    "GroupDescriptor",
    "LayerDescriptor",
    "OrderDescriptor",
    "OrderGroup",
    # images
    "ContainerSpec",
    "ImageInfo",
    # metadata
    "METADATA_LABEL",
    "RUN_IMAGE_LABEL",
    "STACK_LABEL",
    "BUILDER_METADATA_LABEL",
    "AppImageMetadata",
    "BuilderImageMetadata",
    "BuilderRunImage",
    "BuildpackMetadata",
    "DigestMetadata",
    "LayerMetadata",
    "RunImageMetadata",
    # phases
    "PhaseName",
    "PHASE_ORDER",
    "DETECT_NO_GROUP_EXIT_CODE",
    "AccessMode",
    "NoAccess",
    "DaemonAccess",
    "RegistryAccess",
    "LayerState",
    "VALID_LAYER_TRANSITIONS",
]
