"""
Additive sub-terms of a storm arrival intensity function.

Every term reads its own slice of the shared parameter vector and is
evaluated independently and identically across an array of times. ``tlast``
is the start time of the most recent event (or the observation start) and
broadcasts against ``t``.
"""

from __future__ import annotations

import ast
import operator
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from .errors import SpecificationError


Covariate = Callable[[np.ndarray], np.ndarray]


class RateTerm:
    kind = "term"
    labels: Tuple[str, ...] = ()
    default_start: Tuple[float, ...] = ()
    default_scale: Tuple[float, ...] = ()
    uses_covariate = False
    uses_tlast = False

    def __init__(
        self,
        start: Optional[Sequence[float]] = None,
        scale: Optional[Sequence[float]] = None,
        name: Optional[str] = None,
    ) -> None:
        self.name = name or self.kind
        self.start = self._vector(start, self.default_start, "start")
        self.scale = self._vector(scale, self.default_scale, "scale")
        if np.any(self.scale <= 0):
            raise SpecificationError(f"Term '{self.name}' has non-positive parameter scale {self.scale}")

    @property
    def n_params(self) -> int:
        return len(self.labels)

    @property
    def param_names(self) -> Tuple[str, ...]:
        return tuple(f"{self.name}.{label}" for label in self.labels)

    def _vector(self, values: Optional[Sequence[float]], default: Sequence[float], what: str) -> np.ndarray:
        arr = np.array(default if values is None else values, dtype=float).reshape(-1)
        if arr.size != self.n_params:
            raise SpecificationError(
                f"Term '{self.name}' declares {self.n_params} parameters but its {what} vector has {arr.size}"
            )
        if not np.all(np.isfinite(arr)):
            raise SpecificationError(f"Term '{self.name}' has a non-finite {what} vector {arr}")
        return arr

    def evaluate(
        self,
        p: np.ndarray,
        t: np.ndarray,
        tlast: np.ndarray,
        covariate: Optional[Covariate] = None,
    ) -> np.ndarray:
        raise NotImplementedError

    def expression(self, offset: int = 0) -> str:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, start={self.start.tolist()}, scale={self.scale.tolist()})"


class _Periodic(RateTerm):
    def __init__(
        self,
        start: Optional[Sequence[float]] = None,
        scale: Optional[Sequence[float]] = None,
        name: Optional[str] = None,
        period: float = 1.0,
    ) -> None:
        if period <= 0:
            raise SpecificationError(f"Period must be positive, got {period}")
        self.period = float(period)
        super().__init__(start, scale, name)

    def _over_period(self) -> str:
        return "" if self.period == 1.0 else f"/{self.period:g}"


class Constant(RateTerm):
    kind = "constant"
    labels = ("rate",)
    default_start = (1.0,)
    default_scale = (1.0,)

    def evaluate(self, p, t, tlast, covariate=None):
        return np.full(np.shape(t), p[0])

    def expression(self, offset: int = 0) -> str:
        return f"p[{offset}]"


class LinearTrend(RateTerm):
    kind = "trend"
    labels = ("intercept", "slope")
    default_start = (1.0, 0.01)
    default_scale = (1.0, 0.01)

    def __init__(self, start=None, scale=None, name=None, origin: float = 0.0) -> None:
        self.origin = float(origin)
        super().__init__(start, scale, name)

    def evaluate(self, p, t, tlast, covariate=None):
        return p[0] + p[1] * (t - self.origin)

    def expression(self, offset: int = 0) -> str:
        return f"p[{offset}] + p[{offset + 1}]*(t - {self.origin:g})"


class CovariateLinear(RateTerm):
    kind = "covariate"
    labels = ("intercept", "covariate_slope")
    default_start = (1.0, 0.0)
    default_scale = (1.0, 0.1)
    uses_covariate = True

    def evaluate(self, p, t, tlast, covariate=None):
        if covariate is None:
            raise SpecificationError(f"Term '{self.name}' needs a covariate lookup")
        return p[0] + p[1] * covariate(t)

    def expression(self, offset: int = 0) -> str:
        return f"p[{offset}] + p[{offset + 1}]*cov(t)"


class SingleSinusoid(_Periodic):
    kind = "sinusoid"
    labels = ("amplitude", "phase")
    default_start = (0.5, 0.25)
    default_scale = (1.0, 0.1)

    def evaluate(self, p, t, tlast, covariate=None):
        return p[0] * np.sin(2.0 * np.pi * (t + p[1]) / self.period)

    def expression(self, offset: int = 0) -> str:
        return f"p[{offset}]*sin(2*pi*(t + p[{offset + 1}]){self._over_period()})"


class DoubleSinusoid(_Periodic):
    kind = "double_sinusoid"
    labels = ("amplitude", "phase", "amplitude2", "phase2")
    default_start = (0.5, 0.25, 0.1, 0.25)
    default_scale = (1.0, 0.1, 1.0, 0.1)

    def evaluate(self, p, t, tlast, covariate=None):
        base = 2.0 * np.pi / self.period
        return p[0] * np.sin(base * (t + p[1])) + p[2] * np.sin(2.0 * base * (t + p[3]))

    def expression(self, offset: int = 0) -> str:
        o, per = offset, self._over_period()
        return f"p[{o}]*sin(2*pi*(t + p[{o + 1}]){per}) + p[{o + 2}]*sin(4*pi*(t + p[{o + 3}]){per})"


class Sawtooth(_Periodic):
    """Zero-mean sawtooth: rises linearly through each period then drops."""

    kind = "sawtooth"
    labels = ("amplitude", "phase")
    default_start = (0.5, 0.25)
    default_scale = (1.0, 0.1)

    def evaluate(self, p, t, tlast, covariate=None):
        frac = np.mod((t + p[1]) / self.period, 1.0)
        return p[0] * (2.0 * frac - 1.0)

    def expression(self, offset: int = 0) -> str:
        return f"p[{offset}]*(2*mod((t + p[{offset + 1}]){self._over_period()}, 1) - 1)"


class ExponentialCluster(RateTerm):
    """Excess rate right after an event, decaying with time since that event."""

    kind = "cluster"
    labels = ("amplitude", "decay")
    default_start = (0.5, 20.0)
    default_scale = (1.0, 10.0)
    uses_tlast = True

    def evaluate(self, p, t, tlast, covariate=None):
        return p[0] * np.exp(-p[1] * (t - tlast))

    def expression(self, offset: int = 0) -> str:
        return f"p[{offset}]*exp(-p[{offset + 1}]*(t - tlast))"


_FUNCTIONS: Dict[str, Callable] = {
    "exp": np.exp,
    "log": np.log,
    "sqrt": np.sqrt,
    "sin": np.sin,
    "cos": np.cos,
    "tan": np.tan,
    "tanh": np.tanh,
    "abs": np.abs,
    "floor": np.floor,
    "mod": np.mod,
    "minimum": np.minimum,
    "maximum": np.maximum,
    "where": np.where,
}
_CONSTANTS = {"pi": np.pi, "e": np.e}
_VARIABLES = {"t", "tlast", "cov", "p"}
_ALLOWED_NODES = (
    ast.Expression,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.Call,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.Subscript,
    ast.operator,
    ast.unaryop,
    ast.cmpop,
)
_BINARY_OPS: Dict[type, Callable] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
    ast.Mod: np.mod,
    ast.FloorDiv: np.floor_divide,
}
_UNARY_OPS: Dict[type, Callable] = {
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}
_COMPARE_OPS: Dict[type, Callable] = {
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
}


def _evaluate_node(node: ast.AST, p: np.ndarray, names: Dict[str, object]):
    """Evaluate a checked formula tree against parameters ``p`` and variables ``names``."""
    if isinstance(node, ast.Expression):
        return _evaluate_node(node.body, p, names)
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Subscript):
        return p[node.slice.value]
    if isinstance(node, ast.Name):
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        return names[node.id]
    if isinstance(node, ast.BinOp):
        left = _evaluate_node(node.left, p, names)
        right = _evaluate_node(node.right, p, names)
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPS[type(node.op)](_evaluate_node(node.operand, p, names))
    if isinstance(node, ast.Compare):
        left = _evaluate_node(node.left, p, names)
        result = True
        for op, comparator in zip(node.ops, node.comparators):
            right = _evaluate_node(comparator, p, names)
            result = np.logical_and(result, _COMPARE_OPS[type(op)](left, right))
            left = right
        return result
    if isinstance(node, ast.Call):
        args = [_evaluate_node(arg, p, names) for arg in node.args]
        return _FUNCTIONS[node.func.id](*args)
    raise SpecificationError(f"Cannot evaluate '{type(node).__name__}' in a rate formula")


class _ShiftIndices(ast.NodeTransformer):
    def __init__(self, offset: int) -> None:
        self.offset = offset

    def visit_Subscript(self, node: ast.Subscript) -> ast.Subscript:
        node.slice = ast.Constant(node.slice.value + self.offset)
        return node


class FormulaTerm(RateTerm):
    """User-written sub-term such as ``"p[0]*exp(-p[1]*(t - tlast))"``.

    The expression may use ``t``, ``tlast``, ``cov`` (the covariate at ``t``),
    literal indices ``p[i]`` into this term's own parameters, ``pi``/``e``
    and a fixed set of numpy functions. It is parsed and checked once, here.
    """

    kind = "formula"

    def __init__(
        self,
        formula: str,
        n_params: int,
        start: Optional[Sequence[float]] = None,
        scale: Optional[Sequence[float]] = None,
        name: Optional[str] = None,
    ) -> None:
        if n_params < 1:
            raise SpecificationError(f"Formula term must declare at least one parameter, got {n_params}")
        self.formula = formula
        self._n_params = int(n_params)
        self.labels = tuple(f"p{i}" for i in range(self._n_params))
        self._tree = self._check()
        super().__init__(
            start if start is not None else np.ones(self._n_params),
            scale if scale is not None else np.ones(self._n_params),
            name,
        )

    @property
    def n_params(self) -> int:
        return self._n_params

    def _check(self) -> ast.Expression:
        try:
            tree = ast.parse(self.formula, mode="eval")
        except SyntaxError as exc:
            raise SpecificationError(f"Cannot parse rate formula {self.formula!r}: {exc.msg}") from exc
        used = set()
        bare_p = 0
        for node in ast.walk(tree):
            if not isinstance(node, _ALLOWED_NODES):
                raise SpecificationError(
                    f"Unsupported syntax '{type(node).__name__}' in rate formula {self.formula!r}"
                )
            if isinstance(node, (ast.operator, ast.unaryop, ast.cmpop)):
                if type(node) not in _BINARY_OPS and type(node) not in _UNARY_OPS and type(node) not in _COMPARE_OPS:
                    raise SpecificationError(
                        f"Unsupported operator '{type(node).__name__}' in rate formula {self.formula!r}"
                    )
            elif isinstance(node, ast.Call):
                if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS or node.keywords:
                    raise SpecificationError(f"Unsupported function call in rate formula {self.formula!r}")
            elif isinstance(node, ast.Subscript):
                index = node.slice
                if not (isinstance(node.value, ast.Name) and node.value.id == "p"):
                    raise SpecificationError(f"Only p[...] may be indexed in rate formula {self.formula!r}")
                if not (isinstance(index, ast.Constant) and type(index.value) is int):
                    raise SpecificationError(f"Parameter indices must be integer literals in {self.formula!r}")
                if not 0 <= index.value < self._n_params:
                    raise SpecificationError(
                        f"Rate formula {self.formula!r} references p[{index.value}] "
                        f"but declares {self._n_params} parameters"
                    )
                used.add(index.value)
            elif isinstance(node, ast.Name):
                if node.id not in _VARIABLES and node.id not in _FUNCTIONS and node.id not in _CONSTANTS:
                    raise SpecificationError(f"Unknown name '{node.id}' in rate formula {self.formula!r}")
                if node.id == "p":
                    bare_p += 1
            elif isinstance(node, ast.Constant) and not isinstance(node.value, (int, float)):
                raise SpecificationError(f"Only numeric literals are allowed in {self.formula!r}")
        if bare_p != sum(isinstance(n, ast.Subscript) for n in ast.walk(tree)):
            raise SpecificationError(f"'p' must always be indexed in rate formula {self.formula!r}")
        if used != set(range(self._n_params)):
            unused = sorted(set(range(self._n_params)) - used)
            raise SpecificationError(
                f"Rate formula {self.formula!r} declares {self._n_params} parameters "
                f"but never uses p{unused}"
            )
        self.uses_covariate = any(isinstance(n, ast.Name) and n.id == "cov" for n in ast.walk(tree))
        self.uses_tlast = any(isinstance(n, ast.Name) and n.id == "tlast" for n in ast.walk(tree))
        return tree

    def evaluate(self, p, t, tlast, covariate=None):
        names = {"t": t, "tlast": tlast}
        if self.uses_covariate:
            if covariate is None:
                raise SpecificationError(f"Term '{self.name}' needs a covariate lookup")
            names["cov"] = covariate(t)
        value = _evaluate_node(self._tree, p, names)
        return np.broadcast_to(np.asarray(value, dtype=float), np.broadcast(t, tlast).shape)

    def expression(self, offset: int = 0) -> str:
        tree = _ShiftIndices(offset).visit(ast.parse(self.formula, mode="eval"))
        return ast.unparse(tree)


__all__ = [
    "RateTerm",
    "Constant",
    "LinearTrend",
    "CovariateLinear",
    "SingleSinusoid",
    "DoubleSinusoid",
    "Sawtooth",
    "ExponentialCluster",
    "FormulaTerm",
]
