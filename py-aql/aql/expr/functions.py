"""Compiling caller callbacks into FUNC terms."""

import contextvars
import inspect
import itertools
from typing import Any, Callable, List, Optional, Sequence, Tuple

from ..errors import TypeMismatch
from ..shapes import ANY, Shape
from .base import Term
from .folding import fold_with_shape
from .types import func, var_ref

_var_ids = itertools.count(1)

# Parameter names bound by the callbacks currently being compiled, outermost
# first. Only consulted to keep nested callbacks from shadowing each other.
_bound_names: contextvars.ContextVar[Tuple[str, ...]] = contextvars.ContextVar(
    "aql_bound_names", default=()
)


def _fresh_name() -> str:
    return f"_var{next(_var_ids)}"


def _positional_params(fn: Callable) -> Optional[List[str]]:
    """Names of fn's positional parameters, or None if it takes *args."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return None
    names = []
    for p in sig.parameters.values():
        if p.kind == p.VAR_POSITIONAL:
            return None
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            names.append(p.name)
    return names


def _param_names(declared: Optional[List[str]], arity: int) -> List[str]:
    bound = set(_bound_names.get())
    names: List[str] = []
    for i in range(arity):
        name = declared[i] if declared is not None and i < len(declared) else None
        if name is None or name in bound or name in names:
            name = _fresh_name()
        names.append(name)
    return names


def compile_function(
    fn: Callable[..., Any],
    shapes: Sequence[Shape],
    factories: Optional[Sequence[Optional[Callable[[Term, Shape], Any]]]] = None,
) -> Tuple[Term, Shape]:
    """
    Invoke a callback on symbolic parameters and fold what it returns.

    Each parameter is a VAR term named after the callback's own parameter
    (``lambda doc: ...`` binds "doc"), wrapped in a value proxy of the given
    shape, or in whatever the matching factory builds (group() passes a
    Stream). Callbacks may declare fewer parameters than offered.

    Args:
        fn: The caller's callback
        shapes: Declared shape of each parameter
        factories: Optional per-parameter constructors taking (var term, shape)

    Returns:
        (FUNC term, shape of the callback's result)

    Raises:
        TypeMismatch: fn is not callable or needs more parameters than offered
    """
    from .proxy import make_proxy

    if not callable(fn):
        raise TypeMismatch(f"Expected a callable, got {type(fn).__name__}")

    declared = _positional_params(fn)
    arity = len(shapes)
    if declared is not None and len(declared) > arity:
        raise TypeMismatch(
            f"Callback takes {len(declared)} parameters but only {arity} are provided"
        )
    names = _param_names(declared, arity)

    params = []
    for i, (name, shape) in enumerate(zip(names, shapes)):
        factory = factories[i] if factories is not None else None
        term = var_ref(name)
        params.append(factory(term, shape) if factory else make_proxy(term, shape))

    passed = params if declared is None else params[: len(declared)]
    token = _bound_names.set(_bound_names.get() + tuple(names))
    try:
        result = fn(*passed)
    finally:
        _bound_names.reset(token)

    body, shape = fold_with_shape(result)
    return func(names, body), shape


def var(name: str, shape: Any = None):
    """
    Reference a binding introduced by an enclosing callback.

    Callback parameters are bound under their Python names, so inside nested
    subqueries ``var("doc")`` names the ``doc`` of ``lambda doc: ...``. Names
    resolve against the evaluation environment; a name that no enclosing
    callback binds fails when the query runs.

    Args:
        name: Parameter name of an enclosing callback
        shape: Optional declared shape of the bound value

    Example:
        >>> users.map(lambda user: orders.filter(lambda o: o["uid"] == var("user")["id"]))
    """
    from .proxy import make_proxy

    if not isinstance(name, str) or not name:
        raise TypeMismatch("var() needs a non-empty string name")
    return make_proxy(var_ref(name), Shape.of(shape) if shape is not None else ANY)


def expr(value: Any):
    """
    Lift a raw value (or a literal/proxy mixture) into a value proxy.

    Example:
        >>> expr([1, 2, 3]).sum()
    """
    from .proxy import make_proxy

    term, shape = fold_with_shape(value)
    return make_proxy(term, shape)
