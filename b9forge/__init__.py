"""b9forge: shared-image repository and incremental build cache for b9 builds."""

__version__ = "0.1.0"
