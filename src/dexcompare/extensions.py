"""
Engine namespaces on CountMatrix.

Each engine subpackage registers one accessor class, so its functions are
reachable as ``counts.<engine>.<function>(...)`` once the subpackage has
been imported:

    >>> import dexcompare.edger
    >>> norm = counts.edger.calc_norm_factors()
    >>> counts.edger.exact_test(groups, norm=norm)
"""

from __future__ import annotations

import warnings
from typing import Callable, Type


class AccessorRegistrationWarning(Warning):
    """An accessor name replaced an attribute that already existed."""


class _CachedAccessor:
    """
    Descriptor returning one accessor instance per CountMatrix.

    Accessed on the class it returns the accessor class itself, which keeps
    ``help(CountMatrix.edger)`` useful.
    """

    def __init__(self, name: str, accessor_cls: Type) -> None:
        self.name = name
        self.accessor_cls = accessor_cls

    def __get__(self, counts, owner):
        if counts is None:
            return self.accessor_cls

        built = counts.__dict__.setdefault("_accessors", {})
        if self.name not in built:
            try:
                built[self.name] = self.accessor_cls(counts)
            except AttributeError as err:
                # An AttributeError here would make the accessor look absent
                raise RuntimeError(f"Could not build the {self.name!r} accessor") from err
        return built[self.name]


def register_counts_accessor(name: str) -> Callable[[Type], Type]:
    """
    Class decorator installing an accessor on CountMatrix under ``name``.

    Args:
        name: Attribute name, e.g. "edger" or "limma". Reusing a name that
            CountMatrix already has emits an AccessorRegistrationWarning and
            replaces it.

    Returns:
        Decorator returning the class unchanged.

    Example:
        >>> @register_counts_accessor("my_tool")
        ... class MyToolAccessor:
        ...     def __init__(self, counts):
        ...         self._counts = counts
        >>> counts.my_tool
    """
    def install(accessor_cls: Type) -> Type:
        from .countmatrix import CountMatrix

        if hasattr(CountMatrix, name):
            warnings.warn(
                f"Accessor {accessor_cls.__name__} replaces existing CountMatrix attribute {name!r}",
                AccessorRegistrationWarning,
                stacklevel=2,
            )
        setattr(CountMatrix, name, _CachedAccessor(name, accessor_cls))
        return accessor_cls

    return install
