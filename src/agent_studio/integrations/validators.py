"""
Schema验证器实现
"""
from typing import Dict, Any, List
import json
from jsonschema import Draft7Validator, ValidationError
from jsonschema.exceptions import SchemaError
import logging


logger = logging.getLogger(__name__)


_JSON_TYPE_NAMES = {
    dict: "object",
    list: "array",
    str: "string",
    bool: "boolean",
    int: "number",
    float: "number",
    type(None): "null",
}


def json_type_name(value: Any) -> str:
    """返回值对应的 JSON 类型名"""
    return _JSON_TYPE_NAMES.get(type(value), type(value).__name__)


def describe_error(error: ValidationError) -> str:
    """把 jsonschema 错误转换为面向用户的参数错误信息"""
    name = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
    rule = error.validator_value

    if error.validator == "required":
        missing = error.message.split("'")[1] if "'" in error.message else error.message
        return f"Required parameter missing: {missing}"
    if error.validator == "type":
        return (
            f"Invalid type for parameter {name}: expected {rule}, "
            f"got {json_type_name(error.instance)}"
        )
    if error.validator == "minLength":
        return f"{name} must be at least {rule} characters"
    if error.validator == "maxLength":
        return f"{name} must be at most {rule} characters"
    if error.validator == "pattern":
        return f"{name} does not match required pattern"
    if error.validator == "minimum":
        return f"{name} must be at least {rule}"
    if error.validator == "maximum":
        return f"{name} must be at most {rule}"
    if error.validator == "enum":
        return f"Invalid value for {name}: must be one of {', '.join(str(v) for v in rule)}"
    return f"{name}: {error.message}"


class SchemaValidator:
    """Schema验证器"""

    def __init__(self):
        self.validators_cache: Dict[str, Draft7Validator] = {}

    def validate(self, data: Dict[str, Any], schema: Dict[str, Any]) -> List[str]:
        """
        按 JSON Schema (Draft 7) 验证数据

        Returns:
            验证错误列表，如果没有错误返回空列表
        """
        schema_str = json.dumps(schema, sort_keys=True, default=str)
        if schema_str not in self.validators_cache:
            try:
                Draft7Validator.check_schema(schema)
            except SchemaError as e:
                logger.error(f"Invalid schema: {e.message}")
                return [f"Invalid schema: {e.message}"]
            self.validators_cache[schema_str] = Draft7Validator(schema)

        validator = self.validators_cache[schema_str]

        # 收集所有验证错误，按参数顺序输出
        errors = sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
        return [describe_error(error) for error in errors]
