# Shared modules package
#
# Leaf components of the file sync engine with no server dependencies:
#
#   from syncshared import (
#       HashIndex, WirePathCodec, DesiredSetResolver, IgnoreMatcher,
#   )
#
# Lazy loading: imports are deferred via __getattr__ so that importing one
# helper does not pull in the whole discovery pipeline.

# Mapping from public name -> (module_path, attribute_name)
_LAZY_IMPORTS = {
    # Hashing
    "HashIndex": (".hash_index", "HashIndex"),
    "FileEntry": (".hash_index", "FileEntry"),
    # Wire paths
    "WirePathCodec": (".wire_paths", "WirePathCodec"),
    "to_wire_path": (".wire_paths", "to_wire_path"),
    "from_wire_path": (".wire_paths", "from_wire_path"),
    "rebuild_wire_path_cache": (".wire_paths", "rebuild_wire_path_cache"),
    # Discovery
    "DesiredSetResolver": (".discovery.resolver", "DesiredSetResolver"),
    "DiscoveryResult": (".discovery.resolver", "DiscoveryResult"),
    # Utilities
    "IgnoreMatcher": (".utils.ignore", "IgnoreMatcher"),
    "score_path": (".path_utils", "score_path"),
}


def __getattr__(name):
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        import importlib
        module = importlib.import_module(module_path, __name__)
        value = getattr(module, attr_name)
        globals()[name] = value
        return value
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = list(_LAZY_IMPORTS)
