"""
Native OS helper integration.

The helper is a separate executable that provides accessibility context,
global key events and system-audio control over JSON-RPC on stdio.
"""


# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    if name == "NativeHelperBridge":
        from dictation.helper.bridge import NativeHelperBridge

        return NativeHelperBridge
    elif name == "PermissionCache":
        from dictation.helper.permissions import PermissionCache

        return PermissionCache
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["NativeHelperBridge", "PermissionCache"]
