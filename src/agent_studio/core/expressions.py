"""
沙箱表达式求值

Transform 节点、计算器工具和数组过滤都通过这里求值，只暴露白名单中的名字和函数。
"""
import math
from typing import Any, Dict, Optional

from simpleeval import EvalWithCompoundTypes, InvalidExpression

from ..exceptions import ExpressionError


SAFE_FUNCTIONS: Dict[str, Any] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "sum": sum,
    "round": round,
    "sorted": sorted,
    "any": any,
    "all": all,
    "list": list,
    "dict": dict,
}

MATH_FUNCTIONS: Dict[str, Any] = {
    "abs": abs,
    "acos": math.acos,
    "asin": math.asin,
    "atan": math.atan,
    "ceil": math.ceil,
    "cos": math.cos,
    "exp": math.exp,
    "floor": math.floor,
    "log": math.log,
    "max": max,
    "min": min,
    "pow": pow,
    "round": round,
    "sin": math.sin,
    "sqrt": math.sqrt,
    "tan": math.tan,
}

MATH_CONSTANTS: Dict[str, Any] = {
    "PI": math.pi,
    "pi": math.pi,
    "E": math.e,
    "e": math.e,
}

_LITERALS = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
    "True": True,
    "False": False,
    "None": None,
}


def evaluate(
    expression: str,
    names: Optional[Dict[str, Any]] = None,
    functions: Optional[Dict[str, Any]] = None
) -> Any:
    """在白名单环境中对表达式求值

    Args:
        expression: 表达式文本
        names: 可见的变量
        functions: 可调用的函数，默认使用 SAFE_FUNCTIONS

    Raises:
        ExpressionError: 表达式非法或求值失败
    """
    scope = dict(_LITERALS)
    scope.update(names or {})
    evaluator = EvalWithCompoundTypes(
        names=scope,
        functions=functions if functions is not None else SAFE_FUNCTIONS,
    )
    try:
        return evaluator.eval(expression)
    except InvalidExpression as e:
        raise ExpressionError(expression, str(e)) from e
    except Exception as e:
        raise ExpressionError(expression, f"{type(e).__name__}: {e}") from e


def evaluate_math(expression: str) -> float:
    """计算数学表达式，结果必须是有效数字"""
    result = evaluate(expression, MATH_CONSTANTS, MATH_FUNCTIONS)
    if isinstance(result, bool) or not isinstance(result, (int, float)) or math.isnan(result):
        raise ExpressionError(expression, "Result is not a valid number")
    return result
